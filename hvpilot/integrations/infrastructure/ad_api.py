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

"""Active Directory 计算机对象。"""
from __future__ import annotations

from typing import Any, Dict, Optional

from hvpilot.integrations.winrm.powershell import ps_quote


def get_computer(session, name: str) -> Optional[Dict[str, Any]]:
    name_filter = "Name -eq '%s'" % name
    script = (
        f"Get-ADComputer -Filter {ps_quote(name_filter)} | "
        "Select-Object Name, DistinguishedName, Enabled"
    )
    rows = session.invoke_json(script, context=f"查询 AD 计算机 {name}")
    return rows[0] if rows else None


def remove_computer(session, distinguished_name: str) -> None:
    # 计算机对象下可能挂有 BitLocker / Hyper-V 子对象，需递归删除
    session.invoke(
        f"Remove-ADObject -Identity {ps_quote(distinguished_name)} -Recursive -Confirm:$false",
        context=f"删除 AD 计算机 {distinguished_name}",
    )
