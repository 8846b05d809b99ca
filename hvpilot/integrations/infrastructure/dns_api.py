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

"""DNS 服务器 A 记录。"""
from __future__ import annotations

from typing import Any, Dict, List

from hvpilot.integrations.winrm.powershell import build_command, ps_quote


def get_a_record(session, zone: str, name: str) -> List[Dict[str, Any]]:
    script = (
        f"Get-DnsServerResourceRecord -ZoneName {ps_quote(zone)} -Name {ps_quote(name)} -RRType A "
        "-ErrorAction SilentlyContinue | Select-Object HostName, "
        "@{n='IPv4Address';e={$_.RecordData.IPv4Address.ToString()}}"
    )
    return session.invoke_json(script, context=f"查询 DNS 记录 {name}.{zone}")


def add_a_record(session, zone: str, name: str, ip: str, *, create_ptr: bool = True) -> None:
    session.invoke(
        build_command(
            "Add-DnsServerResourceRecordA",
            {"ZoneName": zone, "Name": name, "IPv4Address": ip, "CreatePtr": bool(create_ptr)},
        ),
        context=f"添加 DNS 记录 {name} -> {ip}",
    )


def remove_a_record(session, zone: str, name: str) -> None:
    session.invoke(
        build_command("Remove-DnsServerResourceRecord", {"ZoneName": zone, "Name": name, "RRType": "A", "Force": True}),
        context=f"删除 DNS 记录 {name}.{zone}",
    )
