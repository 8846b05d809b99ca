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

"""生命周期阶段与调度。"""
from __future__ import annotations
import enum
import importlib
import logging
import pkgutil
from dataclasses import dataclass
from threading import Event
from typing import Any, Callable, Dict, List, Optional

from hvpilot.common.i18n import tr
from .runtime_context import RunContext

logger = logging.getLogger(__name__)

STAGE_COMPLETED = "completed"
STAGE_SKIPPED = "skipped"


class Stage(enum.Enum):
    # 新建
    prepare = "prepare"
    create_vm = "create_vm"
    configure_compute = "configure_compute"
    attach_disks = "attach_disks"
    attach_adapters = "attach_adapters"
    provision_os = "provision_os"
    register_network = "register_network"
    start_vm = "start_vm"
    join_cluster = "join_cluster"
    # 删除
    prepare_removal = "prepare_removal"
    stop_vm = "stop_vm"
    leave_cluster = "leave_cluster"
    unregister_network = "unregister_network"
    remove_deployment_records = "remove_deployment_records"
    remove_ad_computer = "remove_ad_computer"
    remove_vm = "remove_vm"
    remove_files = "remove_files"
    # 迁移
    prepare_move = "prepare_move"
    migrate_vm = "migrate_vm"
    export_vm = "export_vm"
    import_vm = "import_vm"
    remove_source = "remove_source"
    update_definition = "update_definition"


class Workflow(enum.Enum):
    new_vm = "new_vm"
    remove_vm = "remove_vm"
    move_vm = "move_vm"
    move_vm_offline = "move_vm_offline"


WORKFLOW_STAGES: Dict[Workflow, List[Stage]] = {
    Workflow.new_vm: [
        Stage.prepare,
        Stage.create_vm,
        Stage.configure_compute,
        Stage.attach_disks,
        Stage.attach_adapters,
        Stage.provision_os,
        Stage.register_network,
        Stage.start_vm,
        Stage.join_cluster,
    ],
    Workflow.remove_vm: [
        Stage.prepare_removal,
        Stage.stop_vm,
        Stage.leave_cluster,
        Stage.unregister_network,
        Stage.remove_deployment_records,
        Stage.remove_ad_computer,
        Stage.remove_vm,
        Stage.remove_files,
    ],
    Workflow.move_vm: [
        Stage.prepare_move,
        Stage.migrate_vm,
        Stage.update_definition,
    ],
    Workflow.move_vm_offline: [
        Stage.prepare_move,
        Stage.stop_vm,
        Stage.export_vm,
        Stage.import_vm,
        Stage.remove_source,
        Stage.start_vm,
        Stage.update_definition,
    ],
}

Handler = Callable[[Dict[str, Any]], Optional[str]]
ProgressCallback = Callable[[str, Stage, Optional[RunContext]], None]

_STAGE_HANDLERS: Dict[Stage, Handler] = {}
_HANDLERS_LOADED = False


class AbortRequestedError(RuntimeError):
    """在外部请求终止时抛出，用于打断阶段执行。"""


@dataclass(frozen=True)
class StageInfo:
    name: str
    label: str
    description: str
    group: str | None = None
    order: int = 0


_STAGE_METADATA: Dict[Stage, tuple[str, str, str]] = {
    Stage.prepare: ("定义校验与预检", "校验虚机定义、检查主机连通性与交换机/DHCP 作用域等依赖。", "新建"),
    Stage.create_vm: ("创建虚机", "在目标主机创建虚机（不含磁盘）。", "新建"),
    Stage.configure_compute: ("计算资源", "设置处理器数量、内存与备注。", "新建"),
    Stage.attach_disks: ("挂载磁盘", "创建缺失的 VHDX 并挂载到指定控制器槽位。", "新建"),
    Stage.attach_adapters: ("挂载网卡", "添加网卡、连接交换机、设置 VLAN 与静态 MAC。", "新建"),
    Stage.provision_os: ("系统部署", "按部署方式挂载 ISO、复制模板磁盘或在 WDS/SCCM 中预置。", "新建"),
    Stage.register_network: ("登记网络", "创建 DHCP 保留地址与 DNS A 记录。", "新建"),
    Stage.start_vm: ("启动虚机", "启动虚机。", "通用"),
    Stage.join_cluster: ("加入集群", "注册为集群角色并设置优先级、反亲和与首选节点。", "新建"),
    Stage.prepare_removal: ("删除预检", "确认虚机现状并收集需要清理的对象。", "删除"),
    Stage.stop_vm: ("关闭虚机", "关闭虚机，无法正常关机时强制断电。", "通用"),
    Stage.leave_cluster: ("移出集群", "删除虚机对应的集群角色。", "删除"),
    Stage.unregister_network: ("注销网络", "删除 DHCP 保留/租约与 DNS 记录。", "删除"),
    Stage.remove_deployment_records: ("清理部署记录", "删除 WDS 预置客户端或 SCCM 设备。", "删除"),
    Stage.remove_ad_computer: ("清理 AD", "删除 AD 计算机对象。", "删除"),
    Stage.remove_vm: ("删除虚机", "从主机注销虚机。", "删除"),
    Stage.remove_files: ("删除文件", "删除虚机配置目录与磁盘文件（需 --force）。", "删除"),
    Stage.prepare_move: ("迁移预检", "检查源主机、目标主机与目标交换机。", "迁移"),
    Stage.migrate_vm: ("在线迁移", "集群虚机走集群实时迁移，其余使用 Move-VM。", "迁移"),
    Stage.export_vm: ("导出虚机", "将虚机导出到共享目录。", "离线迁移"),
    Stage.import_vm: ("导入虚机", "在目标主机复制导入并保留虚机 ID。", "离线迁移"),
    Stage.remove_source: ("清理源端", "注销源主机上的虚机并删除导出目录。", "离线迁移"),
    Stage.update_definition: ("更新定义", "将新主机与路径写回 JSON 定义文件。", "迁移"),
}


def get_stage_info(stage: Stage) -> StageInfo:
    order = list(Stage).index(stage) + 1
    meta = _STAGE_METADATA.get(stage)
    if meta is None:
        return StageInfo(name=stage.value, label=stage.value.replace("_", " ").title(), description="", order=order)
    label, description, group = meta
    return StageInfo(name=stage.value, label=label, description=description, group=group, order=order)


def list_stage_info(workflow: Workflow | None = None) -> List[StageInfo]:
    stages = WORKFLOW_STAGES[workflow] if workflow else list(Stage)
    return [get_stage_info(stage) for stage in stages]


def stage_handler(stage: Stage):  # decorator
    def wrapper(func: Handler):
        _STAGE_HANDLERS[stage] = func
        return func
    return wrapper


def load_handlers() -> None:
    """导入 handlers 包下全部模块，触发 ``@stage_handler`` 注册。

    只有全部模块导入成功后才标记为已加载，导入失败时下次调用会重试并再次抛出。
    """
    global _HANDLERS_LOADED
    if _HANDLERS_LOADED:
        return
    package = __name__.rsplit(".", 1)[0] + ".handlers"
    pkg = importlib.import_module(package)
    for m in pkgutil.walk_packages(pkg.__path__, pkg.__name__ + "."):
        importlib.import_module(m.name)
    _HANDLERS_LOADED = True


def raise_if_aborted(
    ctx: Dict[str, Any],
    *,
    abort_signal: Optional[Event] = None,
    stage_logger: Optional[logging.LoggerAdapter] = None,
    hint: str | None = None,
) -> None:
    """检测终止信号，必要时抛出 :class:`AbortRequestedError`。"""

    signal = abort_signal
    if signal is None:
        signal = ctx.get("abort_signal")
    if signal is None:
        ctx_obj = ctx.get("ctx")
        if isinstance(ctx_obj, RunContext):
            signal = ctx_obj.extra.get("abort_signal")
    if signal is None or not signal.is_set():
        return

    message = tr("lifecycle.stage_manager.abort_detected")
    if hint:
        message = tr("lifecycle.stage_manager.abort_detected_hint", hint=hint)
    (stage_logger or logger).warning(message)
    raise AbortRequestedError("任务已被外部终止")


def run_stages(
    selected: List[Stage],
    ctx: Dict[str, Any],
    progress_callback: Optional[ProgressCallback] = None,
    abort_signal: Optional[Event] = None,
) -> None:
    load_handlers()
    ctx.setdefault("abort_signal", abort_signal)
    ctx_obj = ctx.get("ctx")
    run_ctx = ctx_obj if isinstance(ctx_obj, RunContext) else None
    for st in selected:
        handler = _STAGE_HANDLERS.get(st)
        if not handler:
            raise RuntimeError(tr("lifecycle.stage_manager.handler_missing", stage=st.value))
        if abort_signal is not None and abort_signal.is_set():
            logger.warning(tr("lifecycle.stage_manager.abort_signal_triggered"))
            raise AbortRequestedError("任务已被外部终止")
        logger.info(tr("lifecycle.stage_manager.start_stage", stage=st.value))
        if progress_callback:
            progress_callback("start", st, run_ctx)
        outcome = handler(ctx) or STAGE_COMPLETED
        if abort_signal is not None and abort_signal.is_set():
            logger.warning(tr("lifecycle.stage_manager.abort_during_stage", stage=st.value))
            raise AbortRequestedError("任务已被外部终止")
        if run_ctx is not None:
            run_ctx.completed_stages.append(st.value)
            run_ctx.stage_results[st.value] = outcome
        if progress_callback:
            progress_callback("complete", st, run_ctx)
        logger.info(tr("lifecycle.stage_manager.end_stage", stage=st.value, outcome=outcome))
