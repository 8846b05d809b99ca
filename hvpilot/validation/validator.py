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

"""数据验证入口：规则校验 + 现网存在性校验。

``live_state`` 为目标主机状态快照，可包含以下键::

    {
      "switches": ["SETswitch"],          # 主机上的虚拟交换机
      "dhcp_scopes": ["10.0.10.0"],        # DHCP 服务器上已存在的作用域
      "paths": {"C:\\VMs": True},         # 路径 -> 是否存在
      "vm_exists": False,                  # 同名虚机是否已存在
    }

未提供的键不做对应检查。
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from hvpilot.models import NetworkMapping, VmDefinition
from .rules import validate_network_mapping, validate_vm_definition


def _parent(path: str) -> str:
    text = path.rstrip("\\/")
    index = max(text.rfind("\\"), text.rfind("/"))
    return text[:index] if index > 0 else text


def _check_live_state(defn: VmDefinition, live_state: Mapping[str, Any]) -> Dict[str, List[str]]:
    errors: List[str] = []
    warnings: List[str] = []

    switches = live_state.get("switches")
    if switches is not None:
        known = {str(s).lower() for s in switches}
        for nic in defn.network_adapters:
            if nic.switch.lower() not in known:
                errors.append(f"主机 {defn.host} 上不存在虚拟交换机 {nic.switch}")

    scopes = live_state.get("dhcp_scopes")
    if scopes is not None:
        known_scopes = {str(s) for s in scopes}
        for nic in defn.network_adapters:
            if nic.dhcp_scope and nic.dhcp_scope not in known_scopes:
                errors.append(f"DHCP 作用域 {nic.dhcp_scope} 不存在")

    paths: Optional[Mapping[str, bool]] = live_state.get("paths")
    if paths is not None:
        lowered = {str(k).lower(): v for k, v in paths.items()}
        for disk in defn.hard_disks:
            parent = _parent(disk.path).lower()
            if lowered.get(parent) is False:
                warnings.append(f"磁盘目录 {_parent(disk.path)} 不存在，将自动创建")
        template = defn.os_deployment.template_vhd_path
        if template and lowered.get(template.lower()) is False:
            errors.append(f"模板磁盘 {template} 不存在")
        iso = defn.os_deployment.iso_path
        if iso and lowered.get(iso.lower()) is False:
            errors.append(f"ISO 文件 {iso} 不存在")

    if live_state.get("vm_exists"):
        warnings.append(f"主机 {defn.host} 上已存在同名虚机 {defn.name}，将按现有状态补齐")

    return {"errors": errors, "warnings": warnings}


def validate(defn: VmDefinition, live_state: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    report = validate_vm_definition(defn)
    errors = list(report["errors"])
    warnings = list(report["warnings"])
    if live_state:
        live = _check_live_state(defn, live_state)
        errors.extend(live["errors"])
        warnings.extend(live["warnings"])
    return {"errors": errors, "warnings": warnings, "ok": not errors}


def validate_mapping(mapping: NetworkMapping, *, known_hosts: Optional[List[str]] = None) -> Dict[str, Any]:
    report = validate_network_mapping(mapping)
    errors = list(report["errors"])
    warnings = list(report["warnings"])
    if known_hosts is not None:
        wanted = {h.lower().split(".")[0] for h in known_hosts}
        for host in mapping.hosts():
            if host.lower().split(".")[0] not in wanted:
                warnings.append(f"映射表主机 {host} 不在本次目标主机列表中")
    return {"errors": errors, "warnings": warnings, "ok": not errors}
