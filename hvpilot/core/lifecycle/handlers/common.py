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

# 多个工作流共用的阶段：关机、开机、写回定义文件
from __future__ import annotations

import logging
from pathlib import PureWindowsPath
from typing import Any, Dict, List

from hvpilot.common.i18n import tr
from hvpilot.core.lifecycle.progress import create_stage_progress_logger
from hvpilot.core.lifecycle.runtime_context import RunContext
from hvpilot.core.lifecycle.stage_manager import STAGE_SKIPPED, Stage, stage_handler
from hvpilot.core.vm_definition_store import write_definition
from hvpilot.integrations.hyperv import vm_api
from hvpilot.integrations.winrm import RemoteCommandError
from hvpilot.models import VmDefinitionFile

logger = logging.getLogger(__name__)


def stage_logger_for(ctx: RunContext, stage: Stage):
    """创建阶段日志器，并让 ChangeSet 的记录也带上阶段前缀。"""
    stage_logger = create_stage_progress_logger(ctx, stage.value, logger=logger, prefix=f"[{stage.value}]")
    ctx.changes.log = stage_logger
    return stage_logger


def planned_only(ctx: RunContext) -> bool:
    """演练模式下虚机尚未创建，后续阶段按空状态规划。"""
    return bool(ctx.extra.get("vm_planned_only"))


def vm_folder(base_path: str, name: str) -> str:
    # New-VM -Path 会在其下建立以虚机名命名的目录
    return vm_api.join_windows_path(base_path, name)


def check_precheck_report(report, stage_logger) -> None:
    """按级别输出预检结果，存在 error 时抛出 RuntimeError。"""
    warnings = report.by_level("warning")
    infos = report.by_level("info")
    errors = report.by_level("error")
    if warnings:
        stage_logger.warning(tr("lifecycle.precheck.warning"), progress_extra={"warnings": [r.to_dict() for r in warnings]})
    if infos:
        stage_logger.info(tr("lifecycle.precheck.info"), progress_extra={"infos": [r.to_dict() for r in infos]})
    if errors:
        stage_logger.error(tr("lifecycle.precheck.error"), progress_extra={"errors": [r.to_dict() for r in errors]})
        raise RuntimeError(tr("lifecycle.precheck.failed_raise", count=len(errors)))


def shutdown_vm(session, name: str, log) -> None:
    """先正常关机，失败再强制断电。"""
    try:
        vm_api.stop_vm(session, name)
    except RemoteCommandError as exc:
        log.warning(tr("lifecycle.stop_vm.turn_off", name=name, error=exc.stderr or str(exc)))
        vm_api.stop_vm(session, name, turn_off=True)


@stage_handler(Stage.stop_vm)
def handle_stop_vm(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.stop_vm)
    if ctx.extra.get("vm_absent") or ctx.extra.get("move_noop"):
        stage_logger.info(tr("lifecycle.common.nothing_to_do"))
        return STAGE_SKIPPED

    session = ctx.host_session()
    vm = vm_api.get_vm(session, ctx.vm_name)
    if vm is None:
        stage_logger.warning(tr("lifecycle.common.vm_missing", name=ctx.vm_name, host=ctx.current_host))
        return STAGE_SKIPPED
    state = str(vm.get("State") or "")
    ctx.extra["was_running"] = state == "Running"
    if state == "Off":
        ctx.changes.skip(ctx.vm_name, "关闭虚机", state)
        return STAGE_SKIPPED
    ctx.changes.apply(ctx.vm_name, "关闭虚机", shutdown_vm, session, ctx.vm_name, stage_logger, detail=state)
    return None


@stage_handler(Stage.start_vm)
def handle_start_vm(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.start_vm)
    if ctx.extra.get("move_noop"):
        stage_logger.info(tr("lifecycle.common.nothing_to_do"))
        return STAGE_SKIPPED
    if ctx.extra.get("was_running") is False:
        stage_logger.info(tr("lifecycle.start_vm.keep_off", name=ctx.vm_name))
        return STAGE_SKIPPED

    session = ctx.host_session()
    vm = None if planned_only(ctx) else vm_api.get_vm(session, ctx.vm_name)
    if vm is None and not ctx.dry_run:
        raise RuntimeError(tr("lifecycle.common.vm_missing", name=ctx.vm_name, host=ctx.current_host))
    if vm is not None and vm.get("State") == "Running":
        ctx.changes.skip(ctx.vm_name, "启动虚机", "Running")
        return STAGE_SKIPPED
    ctx.changes.apply(ctx.vm_name, "启动虚机", vm_api.start_vm, session, ctx.vm_name, detail=ctx.current_host)
    return None


def _relocated_disks(ctx: RunContext) -> Dict[str, str]:
    """迁移后磁盘的新路径，按文件名索引。"""
    moved: List[str] = ctx.extra.get("moved_disk_paths") or []
    return {PureWindowsPath(p).name.lower(): p for p in moved}


@stage_handler(Stage.update_definition)
def handle_update_definition(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.update_definition)
    defn = ctx.definition
    if ctx.definition_file is None:
        stage_logger.warning(tr("lifecycle.update_definition.no_file"))
        return STAGE_SKIPPED

    destination = ctx.extra.get("destination_host") or ctx.current_host
    new_path = ctx.extra.get("destination_path") or defn.path
    relocated = _relocated_disks(ctx)
    disks = [
        disk.model_copy(update={"path": relocated.get(PureWindowsPath(disk.path).name.lower(), disk.path)})
        for disk in defn.hard_disks
    ]
    updated = defn.model_copy(update={"host": destination, "path": new_path, "hard_disks": disks})

    existing: Dict[str, Any] | None = VmDefinitionFile.load(ctx.definition_file, missing_ok=True).records.get(defn.name)
    if existing is not None and existing == updated.to_record():
        ctx.changes.skip(str(ctx.definition_file), "更新定义", defn.name)
        return STAGE_SKIPPED
    ctx.changes.apply(
        str(ctx.definition_file),
        "更新定义",
        write_definition,
        ctx.definition_file,
        updated,
        detail=f"{defn.name}: host={destination} path={new_path}",
    )
    if not ctx.dry_run:
        ctx.definition = updated
    return None
