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

"""虚机 JSON 定义相关数据模型。

定义文件是一个以虚机名为键的 JSON 对象::

    {
      "web-01": {"host": "hv01", "path": "C:\\ClusterStorage\\Volume1", ...},
      "db-01":  {...}
    }

字段名兼容 PascalCase（沿用早期脚本生成的文件），加载时统一转为 snake_case。
"""
from __future__ import annotations

import json
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from hvpilot.common.ip_utils import normalize_mac
from hvpilot.common.system_constants import CLUSTER_PRIORITY, VLAN_MAX, VLAN_MIN


class DefinitionError(ValueError):
    """虚机定义缺失或无法解析。"""


def _to_snake(name: str) -> str:
    text = re.sub(r"(?<=[A-Z])([A-Z][a-z])", r"_\1", name)
    text = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", text)
    return text.replace("-", "_").replace(" ", "_").lower()


def _snake_keys(data: Any) -> Any:
    if isinstance(data, dict):
        return {_to_snake(str(k)): v for k, v in data.items()}
    return data


def _enum_text(value: Any) -> str:
    return str(value.value) if isinstance(value, Enum) else str(value)


class _DefinitionModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        return _snake_keys(data)


class ControllerType(str, Enum):
    SCSI = "SCSI"
    IDE = "IDE"


class VlanMode(str, Enum):
    UNTAGGED = "Untagged"
    ACCESS = "Access"
    TRUNK = "Trunk"


class MacPolicy(str, Enum):
    DYNAMIC = "Dynamic"
    STATIC = "Static"


class IpMode(str, Enum):
    DHCP = "dhcp"
    STATIC = "static"
    NONE = "none"


class DeploymentMethod(str, Enum):
    NONE = "none"
    ISO = "iso"
    VHD = "vhd"
    WDS = "wds"
    SCCM = "sccm"


class HardDiskSpec(_DefinitionModel):
    path: str = Field(..., description="VHDX 完整路径")
    size_gb: int = Field(60, ge=1, le=65536)
    controller_type: ControllerType = ControllerType.SCSI
    controller_number: int = Field(0, ge=0, le=3)
    controller_location: int = Field(0, ge=0, le=63)
    dynamic: bool = True
    boot: bool = False

    @field_validator("controller_type", mode="before")
    @classmethod
    def _upper_controller(cls, value: Any) -> Any:
        return _enum_text(value).upper() if value is not None else value

    @property
    def slot(self) -> tuple[str, int, int]:
        return (self.controller_type.value, self.controller_number, self.controller_location)


class NetworkAdapterSpec(_DefinitionModel):
    name: str = "Network Adapter"
    switch: str
    vlan_mode: VlanMode = VlanMode.UNTAGGED
    vlan_id: Optional[int] = Field(None, ge=VLAN_MIN, le=VLAN_MAX)
    native_vlan_id: Optional[int] = Field(None, ge=VLAN_MIN, le=VLAN_MAX)
    allowed_vlans: Optional[str] = Field(None, description="Trunk 允许的 VLAN 列表，如 10,20-30")
    mac_policy: MacPolicy = MacPolicy.DYNAMIC
    mac_address: Optional[str] = None
    ip_mode: IpMode = IpMode.DHCP
    ip_address: Optional[str] = None
    prefix_length: Optional[int] = Field(None, ge=0, le=32)
    gateway: Optional[str] = None
    dns_servers: List[str] = Field(default_factory=list)
    dhcp_scope: Optional[str] = None
    register_dns: bool = False

    @field_validator("vlan_mode", mode="before")
    @classmethod
    def _title_vlan_mode(cls, value: Any) -> Any:
        return _enum_text(value).capitalize() if value is not None else value

    @field_validator("mac_policy", mode="before")
    @classmethod
    def _title_mac_policy(cls, value: Any) -> Any:
        return _enum_text(value).capitalize() if value is not None else value

    @field_validator("ip_mode", mode="before")
    @classmethod
    def _lower_ip_mode(cls, value: Any) -> Any:
        return _enum_text(value).lower() if value is not None else value

    @field_validator("mac_address", mode="before")
    @classmethod
    def _normalize_mac(cls, value: Any) -> Any:
        return normalize_mac(value) if value else None

    @field_validator("dns_servers", mode="before")
    @classmethod
    def _split_dns(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in re.split(r"[,;\s]+", value) if part.strip()]
        return value


class OsDeployment(_DefinitionModel):
    method: DeploymentMethod = DeploymentMethod.NONE
    iso_path: Optional[str] = None
    template_vhd_path: Optional[str] = None
    boot_image: Optional[str] = None
    unattend_file: Optional[str] = None
    wds_server: Optional[str] = None
    wds_group: Optional[str] = None
    sccm_collection: Optional[str] = None
    domain_join: bool = False

    @field_validator("method", mode="before")
    @classmethod
    def _lower_method(cls, value: Any) -> Any:
        return _enum_text(value).lower() if value else DeploymentMethod.NONE


class ClusterPlacement(_DefinitionModel):
    clustered: bool = False
    priority: str = "medium"
    anti_affinity_classes: List[str] = Field(default_factory=list)
    preferred_owners: List[str] = Field(default_factory=list)

    @field_validator("priority", mode="before")
    @classmethod
    def _check_priority(cls, value: Any) -> Any:
        if value is None:
            return "medium"
        if isinstance(value, int):
            for name, number in CLUSTER_PRIORITY.items():
                if number == value:
                    return name
            raise ValueError(f"不支持的集群优先级: {value}")
        text = str(value).strip().lower().replace(" ", "_")
        if text not in CLUSTER_PRIORITY:
            raise ValueError(f"不支持的集群优先级: {value}")
        return text

    @property
    def priority_value(self) -> int:
        return CLUSTER_PRIORITY[self.priority]


class VmDefinition(_DefinitionModel):
    name: str = Field(..., min_length=1, max_length=64)
    host: str = Field(..., min_length=1)
    path: str = Field(..., min_length=1, description="虚机配置文件所在目录")
    generation: int = Field(2, ge=1, le=2)
    processor_count: int = Field(2, ge=1, le=240)
    memory_startup_gb: float = Field(4, gt=0)
    dynamic_memory: bool = False
    memory_minimum_gb: Optional[float] = Field(None, gt=0)
    memory_maximum_gb: Optional[float] = Field(None, gt=0)
    hard_disks: List[HardDiskSpec] = Field(default_factory=list)
    network_adapters: List[NetworkAdapterSpec] = Field(default_factory=list)
    os_deployment: OsDeployment = Field(default_factory=OsDeployment)
    cluster: ClusterPlacement = Field(default_factory=ClusterPlacement)
    notes: Optional[str] = None

    @property
    def boot_disk(self) -> Optional[HardDiskSpec]:
        for disk in self.hard_disks:
            if disk.boot:
                return disk
        return self.hard_disks[0] if self.hard_disks else None

    def to_record(self) -> Dict[str, Any]:
        """序列化为定义文件中的单条记录（不含 name 键）。"""
        data = self.model_dump(mode="json", exclude_none=True)
        data.pop("name", None)
        return data


class VmDefinitionFile:
    """以虚机名为键的 JSON 定义文件。"""

    def __init__(self, path: Path, records: Dict[str, Dict[str, Any]] | None = None):
        self.path = Path(path)
        self.records: Dict[str, Dict[str, Any]] = records or {}

    @classmethod
    def load(cls, path: Path, *, missing_ok: bool = False) -> "VmDefinitionFile":
        path = Path(path)
        if not path.exists():
            if missing_ok:
                return cls(path)
            raise DefinitionError(f"虚机定义文件不存在: {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8-sig") or "{}")
        except json.JSONDecodeError as exc:
            raise DefinitionError(f"虚机定义文件不是合法 JSON: {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise DefinitionError(f"虚机定义文件顶层必须是以虚机名为键的对象: {path}")
        return cls(path, data)

    def names(self) -> List[str]:
        return sorted(self.records)

    def _find_key(self, name: str) -> Optional[str]:
        if name in self.records:
            return name
        lowered = name.lower()
        for key in self.records:
            if key.lower() == lowered:
                return key
        return None

    def get(self, name: str) -> VmDefinition:
        key = self._find_key(name)
        if key is None:
            raise DefinitionError(f"定义文件 {self.path} 中不存在虚机 {name}")
        record = dict(self.records[key])
        record.setdefault("name", key)
        try:
            return VmDefinition.model_validate(record)
        except ValueError as exc:
            raise DefinitionError(f"虚机 {key} 定义无效: {exc}") from exc

    def upsert(self, definition: VmDefinition) -> None:
        key = self._find_key(definition.name) or definition.name
        self.records[key] = definition.to_record()

    def remove(self, name: str) -> bool:
        key = self._find_key(name)
        if key is None:
            return False
        del self.records[key]
        return True

    def dump(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        ordered = {key: self.records[key] for key in sorted(self.records)}
        self.path.write_text(json.dumps(ordered, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
