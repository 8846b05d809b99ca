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

"""巡检结果数据模型。"""
from __future__ import annotations
from typing import List, Optional
from pydantic import BaseModel, Field


class AdapterRecord(BaseModel):
    name: str
    description: Optional[str] = None
    mac_address: Optional[str] = None
    status: Optional[str] = None
    link_speed: Optional[str] = None
    vlan_id: Optional[int] = None
    rdma_enabled: Optional[bool] = None
    jumbo_packet: Optional[int] = None
    ip_addresses: List[str] = Field(default_factory=list)
    virtual: bool = False


class SwitchRecord(BaseModel):
    name: str
    switch_type: Optional[str] = None
    embedded_teaming: bool = False
    members: List[str] = Field(default_factory=list)


class VmAdapterRecord(BaseModel):
    name: str
    switch: Optional[str] = None
    mac_address: Optional[str] = None
    vlan_id: Optional[int] = None
    ip_addresses: List[str] = Field(default_factory=list)


class VmRecord(BaseModel):
    name: str
    state: Optional[str] = None
    processor_count: Optional[int] = None
    memory_gb: Optional[float] = None
    clustered: Optional[bool] = None
    adapters: List[VmAdapterRecord] = Field(default_factory=list)


class DriftRecord(BaseModel):
    host: str
    adapter: str
    field: str
    expected: Optional[str] = None
    actual: Optional[str] = None


class HostInventory(BaseModel):
    host: str
    adapters: List[AdapterRecord] = Field(default_factory=list)
    switches: List[SwitchRecord] = Field(default_factory=list)
    vms: List[VmRecord] = Field(default_factory=list)
    error: Optional[str] = None
