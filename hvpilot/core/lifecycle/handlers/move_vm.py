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

# 在线迁移（集群角色迁移 / Move-VM）与离线迁移（导出 -> 导入 -> 清理源端）
from __future__ import annotations

import logging

from hvpilot.common.config import get_section
from hvpilot.common.i18n import tr
from hvpilot.core.lifecycle.prechecks import run_lifecycle_prechecks
from hvpilot.core.lifecycle.prechecks.utils import same_host
from hvpilot.core.lifecycle.runtime_context import RunContext
from hvpilot.core.lifecycle.stage_manager import STAGE_SKIPPED, Stage, Workflow, raise_if_aborted, stage_handler
from hvpilot.integrations.hyperv import cluster_api, vm_api
from hvpilot.validation.rules import is_shared_storage_path
from .common import check_precheck_report, stage_logger_for, vm_folder

logger = logging.getLogger(__name__)


def _destination(ctx: RunContext) -> str:
    return ctx.extra.get("destination_host") or ""


@stage_handler(Stage.prepare_move)
def handle_prepare_move(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.prepare_move)
    defn = ctx.definition
    opts = ctx.options
    destination = opts.get("destination_host")
    if not destination:
        raise RuntimeError(tr("lifecycle.prepare_move.destination_missing"))
    workflow = Workflow(ctx.extra.get("workflow", Workflow.move_vm.value))
    offline = workflow == Workflow.move_vm_offline

    ctx.extra["destination_host"] = destination
    ctx.extra["destination_path"] = opts.get("destination_path") or defn.path

    if same_host(destination, defn.host):
        stage_logger.warning(tr("lifecycle.prepare_move.same_host", host=destination))
        ctx.extra["move_noop"] = True
        return STAGE_SKIPPED

    source = ctx.session_for(defn.host)
    vm = vm_api.get_vm(source, defn.name)
    if vm is None:
        if vm_api.get_vm(ctx.session_for(destination), defn.name) is not None:
            stage_logger.info(tr("lifecycle.prepare_move.already_moved", name=defn.name, host=destination))
            ctx.extra["move_noop"] = True
            ctx.extra["current_host"] = destination
            return STAGE_SKIPPED
        raise RuntimeError(tr("lifecycle.common.vm_missing", name=defn.name, host=defn.host))

    report = run_lifecycle_prechecks(ctx, workflow, stage_logger=stage_logger, destination=destination)
    check_precheck_report(report, stage_logger)

    clustered = bool(vm.get("IsClustered"))
    ctx.extra["vm_clustered"] = clustered
    ctx.extra["source_disk_paths"] = [
        str(d.get("Path")) for d in vm_api.get_vm_hard_disks(source, defn.name) if d.get("Path")
    ]
    if offline:
        if clustered:
            raise RuntimeError(tr("lifecycle.prepare_move.offline_clustered", name=defn.name))
        export_path = opts.get("export_path") or get_section(ctx.config, "lifecycle").get("export_path")
        if not export_path:
            raise RuntimeError(tr("lifecycle.prepare_move.export_path_missing"))
        ctx.extra["export_path"] = export_path

    stage_logger.info(
        tr("lifecycle.prepare_move.ready", name=defn.name, source=defn.host, destination=destination),
        progress_extra={"clustered": clustered, "offline": offline, "destination_path": ctx.extra["destination_path"]},
    )
    return None


@stage_handler(Stage.migrate_vm)
def handle_migrate_vm(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.migrate_vm)
    if ctx.extra.get("move_noop"):
        stage_logger.info(tr("lifecycle.common.nothing_to_do"))
        return STAGE_SKIPPED
    defn = ctx.definition
    destination = _destination(ctx)
    source = ctx.session_for(defn.host)

    if ctx.extra.get("vm_clustered"):
        if ctx.extra["destination_path"].lower() != defn.path.lower():
            stage_logger.warning(tr("lifecycle.migrate_vm.cluster_path_ignored", path=ctx.extra["destination_path"]))
            ctx.extra["destination_path"] = defn.path
        ctx.changes.apply(defn.name, "集群实时迁移", cluster_api.move_cluster_vm_role, source, defn.name, destination,
                          detail=f"{defn.host} -> {destination}")
    else:
        storage = vm_folder(ctx.extra["destination_path"], defn.name)
        ctx.changes.apply(defn.name, "迁移虚机", vm_api.move_vm, source, defn.name, destination,
                          destination_path=storage, detail=f"{defn.host} -> {destination} {storage}")

    ctx.extra["current_host"] = destination
    if not ctx.dry_run:
        ctx.extra["moved_disk_paths"] = [
            str(d.get("Path")) for d in vm_api.get_vm_hard_disks(ctx.session_for(destination), defn.name) if d.get("Path")
        ]
    return None


@stage_handler(Stage.export_vm)
def handle_export_vm(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.export_vm)
    if ctx.extra.get("move_noop"):
        stage_logger.info(tr("lifecycle.common.nothing_to_do"))
        return STAGE_SKIPPED
    defn = ctx.definition
    export_path = ctx.extra["export_path"]
    source = ctx.session_for(defn.host)
    target = vm_folder(export_path, defn.name)
    if vm_api.test_path(source, target):
        stage_logger.warning(tr("lifecycle.export_vm.reuse", path=target))
        ctx.changes.skip(defn.name, "导出虚机", target)
        return STAGE_SKIPPED
    ctx.changes.apply(defn.name, "导出虚机", vm_api.export_vm, source, defn.name, export_path, detail=target)
    return None


@stage_handler(Stage.import_vm)
def handle_import_vm(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.import_vm)
    if ctx.extra.get("move_noop"):
        stage_logger.info(tr("lifecycle.common.nothing_to_do"))
        return STAGE_SKIPPED
    # 导入前检查终止请求
    raise_if_aborted(ctx_dict, stage_logger=stage_logger, hint=Stage.import_vm.value)
    defn = ctx.definition
    destination = _destination(ctx)
    target = ctx.session_for(destination)
    vm_path = vm_folder(ctx.extra["destination_path"], defn.name)

    if vm_api.get_vm(target, defn.name) is not None:
        ctx.changes.skip(defn.name, "导入虚机", destination)
    else:
        ctx.changes.apply(defn.name, "导入虚机", vm_api.import_vm, target, defn.name, ctx.extra["export_path"], vm_path,
                          detail=f"{destination} {vm_path}")
    ctx.extra["current_host"] = destination
    if not ctx.dry_run:
        ctx.extra["moved_disk_paths"] = [
            str(d.get("Path")) for d in vm_api.get_vm_hard_disks(target, defn.name) if d.get("Path")
        ]
    return None


@stage_handler(Stage.remove_source)
def handle_remove_source(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.remove_source)
    if ctx.extra.get("move_noop"):
        stage_logger.info(tr("lifecycle.common.nothing_to_do"))
        return STAGE_SKIPPED
    defn = ctx.definition
    source = ctx.session_for(defn.host)

    if vm_api.get_vm(source, defn.name) is not None:
        ctx.changes.apply(defn.name, "注销源虚机", vm_api.remove_vm, source, defn.name, detail=defn.host)
    else:
        ctx.changes.skip(defn.name, "注销源虚机", "不存在")

    # 路径相同且位于共享存储时，源文件就是迁移后虚机正在使用的文件
    same_path = ctx.extra["destination_path"].lower() == defn.path.lower()
    if same_path and is_shared_storage_path(defn.path):
        stage_logger.info(tr("lifecycle.remove_source.shared_storage", path=defn.path))
    else:
        for path in [*ctx.extra.get("source_disk_paths", []), vm_folder(defn.path, defn.name)]:
            if vm_api.test_path(source, path):
                ctx.changes.apply(path, "删除源文件", vm_api.remove_path, source, path)

    export_dir = vm_folder(ctx.extra["export_path"], defn.name)
    if vm_api.test_path(source, export_dir):
        ctx.changes.apply(export_dir, "删除导出目录", vm_api.remove_path, source, export_dir)
    return None
