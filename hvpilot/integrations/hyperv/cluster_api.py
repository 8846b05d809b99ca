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

"""故障转移集群 cmdlet 封装（在集群任一节点上执行）。"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from hvpilot.integrations.winrm.powershell import build_command, ps_quote, ps_value

GROUP_FIELDS = (
    "Name, Priority, "
    "@{n='OwnerNode';e={$_.OwnerNode.Name}}, "
    "@{n='State';e={$_.State.ToString()}}, "
    "@{n='AntiAffinityClassNames';e={@($_.AntiAffinityClassNames)}}"
)


def get_cluster_group(session, name: str) -> Optional[Dict[str, Any]]:
    script = f"Get-ClusterGroup -Name {ps_quote(name)} -ErrorAction SilentlyContinue | Select-Object {GROUP_FIELDS}"
    rows = session.invoke_json(script, context=f"查询集群角色 {name}")
    return rows[0] if rows else None


def get_cluster_nodes(session) -> List[Dict[str, Any]]:
    return session.invoke_json(
        "Get-ClusterNode | Select-Object Name, @{n='State';e={$_.State.ToString()}}",
        context="查询集群节点",
    )


def add_cluster_vm_role(session, vm_name: str) -> None:
    session.invoke(
        build_command("Add-ClusterVirtualMachineRole", {"VMName": vm_name}) + " | Out-Null",
        context=f"加入集群 {vm_name}",
    )


def remove_cluster_group(session, name: str) -> None:
    session.invoke(
        build_command("Remove-ClusterGroup", {"Name": name, "RemoveResources": True, "Force": True}),
        context=f"移出集群 {name}",
    )


def set_cluster_group_priority(session, name: str, priority: int) -> None:
    session.invoke(
        f"(Get-ClusterGroup -Name {ps_quote(name)}).Priority = {int(priority)}",
        context=f"设置集群角色 {name} 优先级",
    )


def set_cluster_group_anti_affinity(session, name: str, classes: List[str]) -> None:
    body = (
        "$classes = New-Object System.Collections.Specialized.StringCollection\n"
        f"foreach ($c in {ps_value(list(classes))}) {{ [void]$classes.Add($c) }}\n"
        f"(Get-ClusterGroup -Name {ps_quote(name)}).AntiAffinityClassNames = $classes"
    )
    session.invoke(body, context=f"设置集群角色 {name} 反亲和")


def get_cluster_group_owners(session, name: str) -> List[str]:
    script = (
        f"Get-ClusterOwnerNode -Group {ps_quote(name)} | "
        "ForEach-Object { $_.OwnerNodes } | ForEach-Object { $_.Name }"
    )
    return [str(n) for n in session.invoke_json(script, context=f"查询集群角色 {name} 首选节点")]


def set_cluster_group_preferred_owners(session, name: str, owners: List[str]) -> None:
    session.invoke(
        build_command("Set-ClusterOwnerNode", {"Group": name, "Owners": list(owners)}),
        context=f"设置集群角色 {name} 首选节点",
    )


def move_cluster_vm_role(session, name: str, node: str, *, migration_type: str = "Live") -> None:
    session.invoke(
        build_command(
            "Move-ClusterVirtualMachineRole",
            {"Name": name, "Node": node, "MigrationType": migration_type},
        ) + " | Out-Null",
        context=f"集群迁移 {name} -> {node}",
    )
