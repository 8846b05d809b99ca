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

"""现网状态预检：交换机、DHCP 作用域、路径与同名虚机。"""
from __future__ import annotations

from typing import Any, Dict, List, Tuple

from hvpilot.integrations.hyperv import vm_api
from hvpilot.integrations.infrastructure import dhcp_api
from hvpilot.integrations.winrm import RemoteCommandError, SessionError
from hvpilot.models import VmDefinition
from ..runtime_context import RunContext
from .types import ProbeRecord
from .utils import log_debug, same_host


def _parent(path: str) -> str:
    text = path.rstrip("\\/")
    index = max(text.rfind("\\"), text.rfind("/"))
    return text[:index] if index > 0 else text


def collect_target_state(ctx: RunContext, *, logger) -> Tuple[List[ProbeRecord], Dict[str, Any]]:
    """新建虚机前收集目标主机状态，返回 (记录, live_state)。"""

    defn: VmDefinition = ctx.definition
    records: List[ProbeRecord] = []
    live: Dict[str, Any] = {}
    try:
        session = ctx.session_for(defn.host)
        switches = [s.get("Name") for s in vm_api.get_vm_switch(session)]
        live["switches"] = switches
        live["vm_exists"] = vm_api.get_vm(session, defn.name) is not None

        paths = {defn.path}
        paths.update(_parent(d.path) for d in defn.hard_disks)
        for candidate in (defn.os_deployment.template_vhd_path, defn.os_deployment.iso_path):
            if candidate:
                paths.add(candidate)
        live["paths"] = {p: vm_api.test_path(session, p) for p in sorted(paths)}
    except (RemoteCommandError, SessionError) as exc:
        records.append(ProbeRecord(category="host_state", target=defn.host, level="error", message=str(exc)))
        return records, {}

    records.append(
        ProbeRecord(
            category="host_state",
            target=defn.host,
            level="info" if live["vm_exists"] else "ok",
            message="同名虚机已存在" if live["vm_exists"] else "主机状态已收集",
            probes={"switches": switches},
        )
    )

    scopes = sorted({n.dhcp_scope for n in defn.network_adapters if n.dhcp_scope})
    if scopes:
        dhcp = ctx.infra_session("dhcp")
        if dhcp is None:
            records.append(
                ProbeRecord(category="dhcp", target="-", level="error", message="定义中使用了 DHCP 保留但未配置 DHCP 服务器")
            )
        else:
            try:
                live["dhcp_scopes"] = [s for s in scopes if dhcp_api.get_scope(dhcp, s) is not None]
            except (RemoteCommandError, SessionError) as exc:
                records.append(ProbeRecord(category="dhcp", target=dhcp.host, level="error", message=str(exc)))

    log_debug(logger, "目标主机状态", {"host": defn.host, "live_state": live})
    return records, live


def inspect_destination(ctx: RunContext, destination: str, *, logger) -> List[ProbeRecord]:
    """迁移目标主机检查：交换机齐全且不存在同名虚机。"""

    defn: VmDefinition = ctx.definition
    records: List[ProbeRecord] = []
    if same_host(destination, defn.host):
        return records
    try:
        session = ctx.session_for(destination)
        switches = {str(s.get("Name")).lower() for s in vm_api.get_vm_switch(session)}
        existing = vm_api.get_vm(session, defn.name)
    except (RemoteCommandError, SessionError) as exc:
        return [ProbeRecord(category="destination", target=destination, level="error", message=str(exc))]

    missing = sorted({n.switch for n in defn.network_adapters if n.switch.lower() not in switches})
    if missing:
        records.append(
            ProbeRecord(category="destination", target=destination, level="error",
                        message=f"目标主机缺少虚拟交换机: {', '.join(missing)}")
        )
    if existing is not None:
        records.append(
            ProbeRecord(category="destination", target=destination, level="warning",
                        message=f"目标主机已存在虚机 {defn.name}", probes={"vm": existing})
        )
    if not records:
        records.append(ProbeRecord(category="destination", target=destination, level="ok", message="目标主机检查通过"))
    log_debug(logger, "目标主机检查", {"destination": destination, "records": [r.to_dict() for r in records]})
    return records
