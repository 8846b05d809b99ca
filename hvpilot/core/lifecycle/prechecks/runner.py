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

"""预检调度入口。"""
from __future__ import annotations

import logging
from typing import List

from hvpilot.common.config import get_section
from ..runtime_context import RunContext
from ..stage_manager import Workflow
from . import connectivity, host_state
from .types import PrecheckReport


def _get_logger(stage_logger) -> logging.Logger | logging.LoggerAdapter:
    if isinstance(stage_logger, (logging.Logger, logging.LoggerAdapter)):
        return stage_logger
    return logging.getLogger(__name__)


def run_lifecycle_prechecks(
    ctx: RunContext,
    workflow: Workflow,
    *,
    stage_logger=None,
    destination: str | None = None,
) -> PrecheckReport:
    """按工作流执行预检；WinRM 不可达的主机不再做状态检查。"""

    logger = _get_logger(stage_logger)
    defn = ctx.definition
    if defn is None:
        raise RuntimeError("运行上下文缺少虚机定义，无法执行预检")
    cfg = ctx.config or {}

    hosts: List[str] = [defn.host]
    if destination:
        hosts.append(destination)

    report = PrecheckReport()
    if not get_section(cfg, "precheck", "winrm_probe").get("enabled", True):
        logger.debug("已跳过 WinRM 端口探测")
    else:
        report.extend(connectivity.inspect(hosts, cfg, logger=logger))
    unreachable = report.targets_at("error")

    if workflow == Workflow.new_vm and defn.host not in unreachable:
        records, live = host_state.collect_target_state(ctx, logger=logger)
        report.extend(records)
        report.live_state = live
    elif workflow in (Workflow.move_vm, Workflow.move_vm_offline) and destination and destination not in unreachable:
        report.extend(host_state.inspect_destination(ctx, destination, logger=logger))

    return report
