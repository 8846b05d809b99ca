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

"""SET 虚拟交换机与管理 OS 虚拟网卡。"""
from __future__ import annotations

import logging
from typing import Dict, List, Sequence

from hvpilot.core.changes import ChangeSet
from hvpilot.integrations.hyperv import host_network_api as net
from hvpilot.integrations.hyperv import vm_api
from hvpilot.models import NetworkMappingRow

logger = logging.getLogger(__name__)


def _team_members(rows: Sequence[NetworkMappingRow]) -> Dict[str, List[NetworkMappingRow]]:
    grouped: Dict[str, List[NetworkMappingRow]] = {}
    for row in rows:
        if row.role == "physical" and row.switch:
            grouped.setdefault(row.switch, []).append(row)
    return grouped


def _ensure_switches(session, rows: Sequence[NetworkMappingRow], changes: ChangeSet) -> None:
    switches = {str(s.get("Name")).lower(): s for s in vm_api.get_vm_switch(session)}
    adapters = {str(a.get("Name")).lower(): a for a in net.get_net_adapters(session)}

    for switch, members in _team_members(rows).items():
        names = [m.target_name for m in members]
        existing = switches.get(switch.lower())
        if existing is None:
            changes.apply(switch, "创建 SET 交换机", net.new_vm_switch, session, switch, names, detail=", ".join(names))
            continue
        if not existing.get("EmbeddedTeamingEnabled"):
            logger.warning("交换机 %s 已存在但未启用嵌入式组队，不调整成员", switch)
            changes.skip(switch, "SET 成员", "非 SET 交换机")
            continue
        current = set(existing.get("Members") or [])
        for member in members:
            adapter = adapters.get(member.target_name.lower()) or adapters.get(member.adapter.lower())
            if adapter is None:
                logger.warning("主机上未找到网卡 %s，无法加入交换机 %s", member.target_name, switch)
                changes.skip(switch, "SET 成员", f"{member.target_name} 未找到")
            elif adapter.get("InterfaceDescription") in current:
                changes.skip(switch, "SET 成员", member.target_name)
            else:
                changes.apply(switch, "SET 成员", net.add_vm_switch_team_member, session, switch, adapter["Name"],
                              detail=str(adapter["Name"]))


def _ensure_host_vnics(session, rows: Sequence[NetworkMappingRow], changes: ChangeSet) -> None:
    vnic_rows = [r for r in rows if r.role == "host_vnic"]
    if not vnic_rows:
        return
    current = {str(a.get("Name")).lower(): a for a in net.get_management_os_adapters(session)}

    for row in vnic_rows:
        name = row.target_name
        if not row.switch:
            logger.warning("虚拟网卡 %s 未指定交换机，跳过", name)
            continue
        existing = current.get(name.lower())
        if existing is None:
            changes.apply(name, "添加虚拟网卡", net.add_management_os_adapter, session, name, row.switch, detail=row.switch)
            existing = {"SwitchName": row.switch, "VlanMode": "Untagged", "VlanId": 0}
        elif str(existing.get("SwitchName") or "").lower() != row.switch.lower():
            logger.warning("虚拟网卡 %s 连接在 %s 上，映射表要求 %s", name, existing.get("SwitchName"), row.switch)

        actual_vlan = int(existing.get("VlanId") or 0) if existing.get("VlanMode") == "Access" else 0
        wanted_vlan = int(row.vlan_id or 0)
        if actual_vlan == wanted_vlan:
            changes.skip(name, "VLAN", str(wanted_vlan or "untagged"))
        else:
            changes.apply(name, "VLAN", net.set_management_os_adapter_vlan, session, name, row.vlan_id,
                          detail=f"{actual_vlan} -> {wanted_vlan}")


def configure_virtual_switch(session, rows: Sequence[NetworkMappingRow], changes: ChangeSet | None = None) -> ChangeSet:
    changes = changes if changes is not None else ChangeSet()
    _ensure_switches(session, rows, changes)
    _ensure_host_vnics(session, rows, changes)
    return changes
