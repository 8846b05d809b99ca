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

"""虚机定义文件的读取、写回与从现网反向生成。"""
from __future__ import annotations

import logging
import math
from pathlib import Path, PureWindowsPath
from typing import Any, Dict, List, Optional

from hvpilot.common.ip_utils import normalize_mac
from hvpilot.integrations.hyperv import cluster_api, vm_api
from hvpilot.models import (
    ClusterPlacement,
    DefinitionError,
    HardDiskSpec,
    MacPolicy,
    NetworkAdapterSpec,
    VlanMode,
    VmDefinition,
    VmDefinitionFile,
)

logger = logging.getLogger(__name__)


def load_definition(path: Path, name: str) -> VmDefinition:
    return VmDefinitionFile.load(path).get(name)


def write_definition(path: Path, definition: VmDefinition) -> Path:
    """按虚机名写入（或覆盖）定义文件中的一条记录。"""
    store = VmDefinitionFile.load(path, missing_ok=True)
    store.upsert(definition)
    store.dump()
    logger.info("已写入虚机定义 %s -> %s", definition.name, store.path)
    return store.path


def _disk_spec(session, row: Dict[str, Any], boot_path: Optional[str]) -> HardDiskSpec:
    path = str(row.get("Path") or "")
    vhd = vm_api.get_vhd(session, path) or {}
    size = vhd.get("Size")
    size_gb = max(1, math.ceil(int(size) / vm_api.GIB)) if size else 60
    return HardDiskSpec(
        path=path,
        size_gb=size_gb,
        controller_type=row.get("ControllerType") or "SCSI",
        controller_number=int(row.get("ControllerNumber") or 0),
        controller_location=int(row.get("ControllerLocation") or 0),
        dynamic=str(vhd.get("VhdType") or "Dynamic") != "Fixed",
        boot=bool(boot_path) and path.lower() == str(boot_path).lower(),
    )


def _adapter_spec(row: Dict[str, Any]) -> NetworkAdapterSpec:
    mode = str(row.get("VlanMode") or "Untagged")
    static = row.get("DynamicMacAddressEnabled") is False
    data: Dict[str, Any] = {
        "name": row.get("Name") or "Network Adapter",
        "switch": row.get("SwitchName") or "",
        "vlan_mode": mode,
        "mac_policy": MacPolicy.STATIC if static else MacPolicy.DYNAMIC,
        "mac_address": normalize_mac(row.get("MacAddress")) if static else None,
    }
    if mode == VlanMode.ACCESS.value:
        data["vlan_id"] = row.get("VlanId")
    elif mode == VlanMode.TRUNK.value:
        data["native_vlan_id"] = row.get("NativeVlanId")
        data["allowed_vlans"] = row.get("AllowedVlans")
    return NetworkAdapterSpec.model_validate(data)


def _cluster_placement(session, name: str) -> ClusterPlacement:
    group = cluster_api.get_cluster_group(session, name)
    if group is None:
        logger.warning("虚机 %s 标记为集群虚机，但未查询到集群角色", name)
        return ClusterPlacement(clustered=True)
    return ClusterPlacement(
        clustered=True,
        priority=int(group.get("Priority") or 2000),
        anti_affinity_classes=list(group.get("AntiAffinityClassNames") or []),
        preferred_owners=cluster_api.get_cluster_group_owners(session, name),
    )


def capture_vm_definition(session, host: str, name: str) -> VmDefinition:
    """读取现网虚机并生成等价的定义记录。

    部署方式固定为 ``none``：系统已安装，重放定义时不应再次部署。
    """

    vm = vm_api.get_vm(session, name)
    if vm is None:
        raise DefinitionError(f"主机 {host} 上不存在虚机 {name}")

    generation = int(vm.get("Generation") or 2)
    first_boot = vm_api.get_vm_first_boot_device(session, name, generation) or {}
    disks_raw = vm_api.get_vm_hard_disks(session, name)
    boot_path = first_boot.get("path") if first_boot.get("device") == "disk" else None
    if boot_path is None and disks_raw:
        boot_path = disks_raw[0].get("Path")

    disks: List[HardDiskSpec] = [_disk_spec(session, row, boot_path) for row in disks_raw]
    adapters = [_adapter_spec(row) for row in vm_api.get_vm_network_adapters(session, name)]

    dynamic = bool(vm.get("DynamicMemoryEnabled"))
    vm_path = str(vm.get("Path") or "")
    parent = str(PureWindowsPath(vm_path).parent) if vm_path else ""
    definition = VmDefinition(
        name=vm.get("Name") or name,
        host=host,
        path=parent or vm_path,
        generation=generation,
        processor_count=int(vm.get("ProcessorCount") or 1),
        memory_startup_gb=vm_api.bytes_to_gib(vm.get("MemoryStartup")) or 1,
        dynamic_memory=dynamic,
        memory_minimum_gb=vm_api.bytes_to_gib(vm.get("MemoryMinimum")) if dynamic else None,
        memory_maximum_gb=vm_api.bytes_to_gib(vm.get("MemoryMaximum")) if dynamic else None,
        hard_disks=disks,
        network_adapters=adapters,
        cluster=_cluster_placement(session, name) if vm.get("IsClustered") else ClusterPlacement(),
        notes=vm.get("Notes") or None,
    )
    logger.info("已采集虚机 %s：%d 块磁盘，%d 块网卡", name, len(disks), len(adapters))
    return definition
