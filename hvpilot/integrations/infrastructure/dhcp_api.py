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

"""DHCP 服务器（IPv4）作用域与保留地址。"""
from __future__ import annotations

from typing import Any, Dict, Optional

from hvpilot.common.ip_utils import format_mac
from hvpilot.integrations.winrm.powershell import build_command, ps_quote

RESERVATION_FIELDS = (
    "@{n='IPAddress';e={$_.IPAddress.ToString()}}, "
    "@{n='ScopeId';e={$_.ScopeId.ToString()}}, ClientId, Name, Description"
)


def get_scope(session, scope_id: str) -> Optional[Dict[str, Any]]:
    script = (
        f"Get-DhcpServerv4Scope -ScopeId {ps_quote(scope_id)} -ErrorAction SilentlyContinue | "
        "Select-Object @{n='ScopeId';e={$_.ScopeId.ToString()}}, Name, "
        "@{n='SubnetMask';e={$_.SubnetMask.ToString()}}, @{n='State';e={$_.State.ToString()}}"
    )
    rows = session.invoke_json(script, context=f"查询 DHCP 作用域 {scope_id}")
    return rows[0] if rows else None


def get_reservation(session, scope_id: str, *, mac: str | None = None, ip: str | None = None) -> Optional[Dict[str, Any]]:
    """按 MAC 或 IP 查询保留地址；两者都未给出时返回 ``None``。"""
    if mac:
        condition = f"$_.ClientId -eq {ps_quote(format_mac(mac))}"
    elif ip:
        condition = f"$_.IPAddress.ToString() -eq {ps_quote(ip)}"
    else:
        return None
    script = (
        f"Get-DhcpServerv4Reservation -ScopeId {ps_quote(scope_id)} -ErrorAction SilentlyContinue | "
        f"Where-Object {{ {condition} }} | Select-Object {RESERVATION_FIELDS}"
    )
    rows = session.invoke_json(script, context=f"查询 DHCP 保留 {mac or ip}")
    return rows[0] if rows else None


def get_free_ip(session, scope_id: str) -> Optional[str]:
    script = (
        f"Get-DhcpServerv4FreeIPAddress -ScopeId {ps_quote(scope_id)} -ErrorAction SilentlyContinue | "
        "ForEach-Object { $_.ToString() }"
    )
    rows = session.invoke_json(script, context=f"查询作用域 {scope_id} 空闲地址")
    return rows[0] if rows else None


def add_reservation(session, scope_id: str, ip: str, mac: str, name: str, *, description: str | None = None) -> None:
    session.invoke(
        build_command(
            "Add-DhcpServerv4Reservation",
            {
                "ScopeId": scope_id,
                "IPAddress": ip,
                "ClientId": format_mac(mac),
                "Name": name,
                "Description": description,
            },
        ),
        context=f"添加 DHCP 保留 {name} {ip}",
    )


def remove_reservation(session, scope_id: str, mac: str) -> None:
    session.invoke(
        build_command("Remove-DhcpServerv4Reservation", {"ScopeId": scope_id, "ClientId": format_mac(mac)}),
        context=f"删除 DHCP 保留 {mac}",
    )


def remove_lease(session, scope_id: str, mac: str) -> None:
    # 租约可能已过期，不存在时静默
    session.invoke(
        build_command(
            "Remove-DhcpServerv4Lease",
            {"ScopeId": scope_id, "ClientId": format_mac(mac), "ErrorAction": "SilentlyContinue"},
        ),
        context=f"删除 DHCP 租约 {mac}",
    )
