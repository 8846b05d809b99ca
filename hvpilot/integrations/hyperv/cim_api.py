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

"""CIM/WMI 查询。"""
from __future__ import annotations

from typing import Any, Dict, List, Sequence

from hvpilot.integrations.winrm.powershell import build_command

STANDARD_NAMESPACE = "root/cimv2"
NETWORK_NAMESPACE = "root/StandardCimv2"


def get_cim_instances(
    session,
    class_name: str,
    namespace: str = STANDARD_NAMESPACE,
    filter: str | None = None,
    properties: Sequence[str] | None = None,
) -> List[Dict[str, Any]]:
    script = build_command(
        "Get-CimInstance",
        {"ClassName": class_name, "Namespace": namespace, "Filter": filter},
    )
    if properties:
        script += " | Select-Object " + ", ".join(properties)
    else:
        # 去掉 CIM 元数据，避免 ConvertTo-Json 输出过大
        script += " | Select-Object * -ExcludeProperty Cim*"
    return session.invoke_json(script, context=f"CIM 查询 {namespace}:{class_name}")


def get_net_adapter_instances(session) -> List[Dict[str, Any]]:
    return get_cim_instances(
        session,
        "MSFT_NetAdapter",
        NETWORK_NAMESPACE,
        properties=("Name", "InterfaceDescription", "PermanentAddress", "Speed", "HardwareInterface", "Virtual"),
    )
