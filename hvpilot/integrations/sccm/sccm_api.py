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

"""SCCM 站点服务器上的 ConfigurationManager cmdlet。

所有写操作都在站点服务器上执行，脚本先加载控制台模块并切换到站点驱动器。
"""
from __future__ import annotations

from hvpilot.common.ip_utils import format_mac
from hvpilot.integrations.winrm.powershell import build_command, ps_quote


def _site_prelude(site_code: str) -> str:
    return (
        "Import-Module (Join-Path $env:SMS_ADMIN_UI_PATH '..\\ConfigurationManager.psd1')\n"
        f"Set-Location ({ps_quote(site_code)} + ':')\n"
    )


def import_computer(session, site_code: str, name: str, mac: str, collection: str) -> None:
    body = _site_prelude(site_code) + build_command(
        "Import-CMComputerInformation",
        {
            "CollectionName": collection,
            "ComputerName": name,
            "MacAddress": format_mac(mac, sep=":"),
        },
    )
    session.invoke(body, context=f"导入 SCCM 计算机 {name}")


def remove_device(session, site_code: str, name: str) -> None:
    body = _site_prelude(site_code) + (
        f"Get-CMDevice -Name {ps_quote(name)} | ForEach-Object {{ Remove-CMDevice -InputObject $_ -Force }}"
    )
    session.invoke(body, context=f"删除 SCCM 设备 {name}")


def update_collection_membership(session, site_code: str, collection: str) -> None:
    body = _site_prelude(site_code) + build_command("Invoke-CMCollectionUpdate", {"Name": collection})
    session.invoke(body, context=f"刷新集合 {collection}")
