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

"""WinRM 连通性预检。"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence

from hvpilot.common.config import get_section
from hvpilot.common.network_utils import ProbeResult, ProbeTask, run_probe_tasks
from hvpilot.integrations.winrm import WinRMSettings
from .types import ProbeRecord
from .utils import log_debug, resolve_workers, update_level


def inspect(hosts: Sequence[str], config: Mapping[str, Any], *, logger) -> List[ProbeRecord]:
    """对每台主机做 TCP 握手与 ``/wsman`` 监听探测。"""

    records: List[ProbeRecord] = []
    targets = [h for h in dict.fromkeys(hosts) if h]
    if not targets:
        return records

    settings = WinRMSettings.from_config(config)
    probe_cfg = get_section(config, "precheck", "winrm_probe")
    timeout = float(probe_cfg.get("timeout", 3))
    retries = int(probe_cfg.get("retries", 0))

    tasks: List[ProbeTask] = []
    for host in targets:
        tasks.append(
            ProbeTask(target=host, kind="tcp", port=settings.port, timeout=timeout, retries=retries,
                      metadata={"host": host, "probe": "tcp"})
        )
        tasks.append(
            ProbeTask(target=host, kind="winrm", port=settings.port, timeout=timeout, retries=retries,
                      ssl=settings.ssl, metadata={"host": host, "probe": "winrm"})
        )

    workers = resolve_workers(get_section(config, "precheck"), len(tasks))
    results = run_probe_tasks(tasks, max_workers=workers, logger=logger)

    aggregated: Dict[str, Dict[str, ProbeResult]] = {}
    for result in results:
        aggregated.setdefault(result.task.metadata["host"], {})[result.task.metadata["probe"]] = result

    for host in targets:
        probe_map = aggregated.get(host, {})
        level = "ok"
        messages: List[str] = []
        tcp = probe_map.get("tcp")
        listener = probe_map.get("winrm")
        if tcp is not None and not tcp.success:
            level = update_level(level, "error")
            messages.append(f"WinRM 端口 {settings.port} 不可达")
        elif listener is not None and not listener.success:
            level = update_level(level, "warning")
            messages.append(f"WinRM 监听未响应: {listener.detail}")
        record = ProbeRecord(
            category="winrm",
            target=host,
            level=level,
            message="；".join(messages) if messages else "WinRM 连通性正常",
            probes={k: v.to_dict() for k, v in probe_map.items()},
        )
        records.append(record)
        log_debug(logger, "WinRM 探测详情", record.to_dict())
    return records
