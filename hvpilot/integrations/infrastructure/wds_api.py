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

"""WDS 预置客户端。"""
from __future__ import annotations

from typing import Any, Dict, Optional

from hvpilot.common.ip_utils import format_mac
from hvpilot.integrations.winrm.powershell import build_command, ps_quote


def get_wds_client(session, name: str) -> Optional[Dict[str, Any]]:
    script = (
        f"Get-WdsClient -DeviceName {ps_quote(name)} -ErrorAction SilentlyContinue | "
        "Select-Object DeviceName, DeviceID, BootImagePath, Group"
    )
    rows = session.invoke_json(script, context=f"查询 WDS 客户端 {name}")
    return rows[0] if rows else None


def new_wds_client(
    session,
    name: str,
    mac: str,
    *,
    boot_image: str | None = None,
    group: str | None = None,
    unattend_file: str | None = None,
) -> None:
    session.invoke(
        build_command(
            "New-WdsClient",
            {
                "DeviceID": format_mac(mac),
                "DeviceName": name,
                "BootImagePath": boot_image,
                "Group": group,
                "WdsClientUnattend": unattend_file,
            },
        ) + " | Out-Null",
        context=f"预置 WDS 客户端 {name}",
    )


def remove_wds_client(session, name: str) -> None:
    session.invoke(build_command("Remove-WdsClient", {"DeviceName": name}), context=f"删除 WDS 客户端 {name}")
