# SPDX-License-Identifier: GPL-3.0-or-later
# This file is part of HVPilot.
#
# HVPilot is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# HVPilot is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with HVPilot.  If not, see <https://www.gnu.org/licenses/>.

"""网络映射表相关数据模型。"""
from __future__ import annotations
from typing import List, Optional
from pydantic import BaseModel, Field, IPvAnyAddress, field_validator

from hvpilot.common.ip_utils import normalize_mac
from hvpilot.common.system_constants import VLAN_MAX, VLAN_MIN

# 适配器角色：physical 为物理网卡（参与 SET 组队），host_vnic 为管理 OS 虚拟网卡
ADAPTER_ROLES = {"physical", "host_vnic"}


class NetworkMappingRow(BaseModel):
    host: str = Field(..., description="主机名")
    adapter: str = Field(..., description="当前适配器名称或期望名称")
    new_name: Optional[str] = Field(None, description="期望重命名后的名称")
    mac_address: Optional[str] = None
    role: str = "physical"
    switch: Optional[str] = None
    vlan_id: Optional[int] = Field(None, ge=VLAN_MIN, le=VLAN_MAX)
    ip_address: Optional[IPvAnyAddress] = None
    prefix_length: Optional[int] = Field(None, ge=0, le=128)
    gateway: Optional[IPvAnyAddress] = None
    dns_servers: List[str] = Field(default_factory=list)
    rdma: Optional[bool] = None
    jumbo_packet: Optional[int] = Field(None, ge=1514, le=9614)
    qos_priority: Optional[int] = Field(None, ge=0, le=7, description="802.1p 优先级，设置后生成 QoS 策略")
    qos_bandwidth_percent: Optional[int] = Field(None, ge=1, le=99)

    @field_validator("mac_address", mode="before")
    @classmethod
    def _normalize_mac(cls, value):
        return normalize_mac(value) if value else None

    @field_validator("role", mode="before")
    @classmethod
    def _check_role(cls, value):
        text = str(value or "physical").strip().lower().replace("-", "_").replace(" ", "_")
        if text in {"vnic", "host", "management"}:
            text = "host_vnic"
        if text not in ADAPTER_ROLES:
            raise ValueError(f"未知适配器角色: {value}")
        return text

    @property
    def target_name(self) -> str:
        return self.new_name or self.adapter


class NetworkMapping(BaseModel):
    rows: List[NetworkMappingRow] = []
    source_file: Optional[str] = None

    def hosts(self) -> List[str]:
        seen: List[str] = []
        for row in self.rows:
            if row.host.lower() not in {h.lower() for h in seen}:
                seen.append(row.host)
        return seen

    def rows_for_host(self, host: str) -> List[NetworkMappingRow]:
        wanted = host.strip().lower()
        # 允许映射表使用短名，而命令行传入 FQDN
        short = wanted.split(".")[0]
        return [
            row for row in self.rows
            if row.host.strip().lower() in {wanted, short}
        ]
