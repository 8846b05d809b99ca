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

"""命令行接口。

退出码：1 表示输入错误（文件缺失、定义/映射表无法解析、参数冲突），
2 表示校验失败或执行失败。
"""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .common.config import Config, get_section, load_config
from .common.logging_config import setup_logging
from .core.audit import collect_inventories, compare_with_mapping, write_report
from .core.host import (
    apply_to_hosts,
    configure_addresses,
    configure_host,
    configure_physical,
    configure_virtual_switch,
)
from .core.lifecycle.lifecycle_executor import RunOptions, execute_workflow, resolve_stages
from .core.lifecycle.stage_manager import Workflow, list_stage_info
from .core.vm_definition_store import capture_vm_definition, load_definition, write_definition
from .integrations.tabular.network_mapping_parser import find_mapping_file, load_mapping
from .integrations.winrm import SessionPool, WinRMSettings
from .models import DefinitionError, NetworkMapping
from .validation import validate, validate_mapping

app = typer.Typer(help="HVPilot Hyper-V 自动化 CLI")
vm_app = typer.Typer(help="虚机生命周期：新建、删除、迁移、采集与校验")
host_app = typer.Typer(help="主机网络配置：网卡命名、QoS、RDMA、巨帧、交换机与地址")
audit_app = typer.Typer(help="主机与虚机巡检报告")
app.add_typer(vm_app, name="vm")
app.add_typer(host_app, name="host")
app.add_typer(audit_app, name="audit")

console = Console()

_STATE: Dict[str, Any] = {"config_file": None}


@app.callback()
def main(
    config_file: Optional[Path] = typer.Option(None, "--config", help="配置文件路径，缺省使用内置 default.yml"),
):
    _STATE["config_file"] = config_file


def _config() -> Config:
    return load_config(_STATE.get("config_file"))


def _init_logging(cfg: Config, debug: bool | None = None) -> None:
    section = get_section(cfg, "logging")
    debug = debug or bool(section.get("debug"))
    setup_logging(
        "DEBUG" if debug else str(section.get("level", "INFO")),
        section.get("file"),
        max_bytes=int(section.get("max_bytes") or 2 * 1024 * 1024),
        backup_count=int(section.get("backup_count") or 5),
    )


def _fail(message: str, code: int) -> typer.Exit:
    console.print(f"[red]{message}[/red]")
    return typer.Exit(code=code)


def _print_report(report: Dict[str, Any]) -> None:
    for warning in report.get("warnings", []):
        console.print(f"[yellow]警告[/yellow] {warning}")
    for error in report.get("errors", []):
        console.print(f"[red]错误[/red] {error}")


def _print_changes(changes: List[Dict[str, Any]], title: str) -> None:
    if not changes:
        return
    table = Table(title=title, title_justify="left")
    for column in ("Target", "Action", "Status", "Detail"):
        table.add_column(column)
    for change in changes:
        table.add_row(str(change.get("target")), str(change.get("action")), str(change.get("status")),
                      str(change.get("detail") or ""))
    console.print(table)


def _parse_stages(stages: Optional[str], workflow: Workflow):
    if not stages:
        return None
    tokens = [part.strip() for part in stages.split(",") if part.strip()]
    if not tokens:
        raise _fail("请至少指定一个阶段", 1)
    try:
        return resolve_stages(tokens, workflow)
    except ValueError as exc:
        raise _fail(str(exc), 1) from exc


def _run_workflow(
    workflow: Workflow,
    definition_file: Path,
    name: str,
    options: RunOptions,
    stages: Optional[str],
) -> None:
    cfg = _config()
    _init_logging(cfg, options.debug)
    selected = _parse_stages(stages, workflow)
    try:
        definition = load_definition(definition_file, name)
    except DefinitionError as exc:
        raise _fail(str(exc), 1) from exc

    try:
        result = execute_workflow(
            workflow,
            definition,
            options,
            definition_file=definition_file,
            config=cfg,
            stages=selected,
        )
    except Exception as exc:  # noqa: BLE001 - 统一转成退出码 2
        raise _fail(f"执行失败: {exc}", 2) from exc

    payload = result.to_dict()
    _print_changes(payload.get("changes", []), f"{workflow.value} {name}")
    for stage, lines in payload.get("notes", {}).items():
        for line in lines:
            console.print(f"[yellow]{escape(stage)}[/yellow] {escape(line)}")
    console.print_json(data={"status": "ok", **payload})


DefinitionFileOption = typer.Option(..., "--definition-file", "-f", help="JSON 虚机定义文件")
NameOption = typer.Option(..., "--name", "-n", help="虚机名称（定义文件中的键）")
DryRunOption = typer.Option(None, "--dry-run/--no-dry-run", help="只记录计划变更，不修改现网")
StrictOption = typer.Option(None, "--strict-validation/--no-strict-validation", help="严格验证：警告视为错误")
DebugOption = typer.Option(None, "--debug/--no-debug", help="调试模式：输出 DEBUG 日志")
StagesOption = typer.Option(None, "--stages", help="逗号分隔的阶段子集，缺省执行全部阶段")


@vm_app.command("new")
def vm_new(
    definition_file: Path = DefinitionFileOption,
    name: str = NameOption,
    dry_run: Optional[bool] = DryRunOption,
    strict_validation: Optional[bool] = StrictOption,
    debug: Optional[bool] = DebugOption,
    stages: Optional[str] = StagesOption,
):
    """按 JSON 定义创建虚机并部署系统。"""
    opts = RunOptions(dry_run=dry_run, strict_validation=strict_validation, debug=debug)
    _run_workflow(Workflow.new_vm, definition_file, name, opts, stages)


@vm_app.command("remove")
def vm_remove(
    definition_file: Path = DefinitionFileOption,
    name: str = NameOption,
    dry_run: Optional[bool] = DryRunOption,
    debug: Optional[bool] = DebugOption,
    force: bool = typer.Option(False, "--force", help="同时删除磁盘与虚机目录"),
    stages: Optional[str] = StagesOption,
):
    """删除虚机并清理集群、DHCP、DNS、部署与 AD 记录。"""
    opts = RunOptions(dry_run=dry_run, debug=debug, force=force)
    _run_workflow(Workflow.remove_vm, definition_file, name, opts, stages)


@vm_app.command("move")
def vm_move(
    definition_file: Path = DefinitionFileOption,
    name: str = NameOption,
    destination_host: str = typer.Option(..., "--destination-host", help="目标主机"),
    destination_path: Optional[str] = typer.Option(None, "--destination-path", help="目标存储路径"),
    dry_run: Optional[bool] = DryRunOption,
    debug: Optional[bool] = DebugOption,
    stages: Optional[str] = StagesOption,
):
    """在线迁移虚机（集群虚机走集群角色迁移）。"""
    opts = RunOptions(
        dry_run=dry_run, debug=debug, destination_host=destination_host, destination_path=destination_path
    )
    _run_workflow(Workflow.move_vm, definition_file, name, opts, stages)


@vm_app.command("move-offline")
def vm_move_offline(
    definition_file: Path = DefinitionFileOption,
    name: str = NameOption,
    destination_host: str = typer.Option(..., "--destination-host", help="目标主机"),
    destination_path: Optional[str] = typer.Option(None, "--destination-path", help="目标存储路径"),
    export_path: Optional[str] = typer.Option(None, "--export-path", help="导出共享目录，缺省取配置 lifecycle.export_path"),
    dry_run: Optional[bool] = DryRunOption,
    debug: Optional[bool] = DebugOption,
    stages: Optional[str] = StagesOption,
):
    """关机、导出、导入并清理源端。"""
    opts = RunOptions(
        dry_run=dry_run,
        debug=debug,
        destination_host=destination_host,
        destination_path=destination_path,
        export_path=export_path,
    )
    _run_workflow(Workflow.move_vm_offline, definition_file, name, opts, stages)


@vm_app.command("capture")
def vm_capture(
    host: str = typer.Option(..., "--host", help="虚机所在主机"),
    name: str = NameOption,
    definition_file: Optional[Path] = typer.Option(None, "--definition-file", "-f", help="写入的 JSON 定义文件"),
    debug: Optional[bool] = DebugOption,
):
    """读取现网虚机生成定义；指定文件时按名称写回。"""
    cfg = _config()
    _init_logging(cfg, debug)
    try:
        with SessionPool(WinRMSettings.from_config(cfg)) as pool:
            definition = capture_vm_definition(pool.get(host), host, name)
    except DefinitionError as exc:
        raise _fail(str(exc), 1) from exc
    except Exception as exc:  # noqa: BLE001
        raise _fail(f"采集失败: {exc}", 2) from exc

    if definition_file is not None:
        written = write_definition(definition_file, definition)
        console.print(f"[green]已写入[/green] {written}")
    console.print_json(data=definition.to_record())


@vm_app.command("check")
def vm_check(
    definition_file: Path = DefinitionFileOption,
    name: str = NameOption,
    live: bool = typer.Option(False, "--live", help="连接目标主机做预检（只读）"),
    strict_validation: Optional[bool] = StrictOption,
    debug: Optional[bool] = DebugOption,
):
    """校验虚机定义；``--live`` 时额外执行预检阶段。"""
    if live:
        opts = RunOptions(dry_run=True, strict_validation=strict_validation, debug=debug)
        _run_workflow(Workflow.new_vm, definition_file, name, opts, "prepare")
        return

    cfg = _config()
    _init_logging(cfg, debug)
    try:
        definition = load_definition(definition_file, name)
    except DefinitionError as exc:
        raise _fail(str(exc), 1) from exc
    report = validate(definition)
    strict = bool(get_section(cfg, "validation").get("strict", False)) if strict_validation is None else strict_validation
    _print_report(report)
    console.print_json(data={"name": definition.name, "host": definition.host, **report})
    if not report["ok"] or (strict and report["warnings"]):
        raise typer.Exit(code=2)


# --------------------------------------------------------------------------- host


def _load_mapping(mapping: Optional[Path]) -> NetworkMapping:
    path = mapping or find_mapping_file(Path.cwd())
    if not path:
        raise _fail("未找到网络映射表文件", 1)
    try:
        return load_mapping(path)
    except (OSError, ValueError) as exc:
        raise _fail(f"映射表读取失败: {exc}", 1) from exc


def _run_host_operation(
    operation: Callable[..., Any],
    hosts: Optional[List[str]],
    mapping_file: Optional[Path],
    dry_run: Optional[bool],
    debug: Optional[bool],
    **kwargs: Any,
) -> None:
    cfg = _config()
    _init_logging(cfg, debug)
    mapping = _load_mapping(mapping_file)
    report = validate_mapping(mapping, known_hosts=hosts or None)
    _print_report(report)
    if not report["ok"]:
        raise typer.Exit(code=2)

    targets = hosts or mapping.hosts()
    if not targets:
        raise _fail("映射表中没有任何主机", 1)
    effective_dry_run = bool(get_section(cfg, "lifecycle").get("dry_run", False)) if dry_run is None else dry_run

    try:
        with SessionPool(WinRMSettings.from_config(cfg)) as pool:
            results = apply_to_hosts(mapping, targets, operation, pool=pool, dry_run=effective_dry_run, **kwargs)
    except Exception as exc:  # noqa: BLE001
        raise _fail(f"执行失败: {exc}", 2) from exc

    payload = {}
    for host, changes in results.items():
        _print_changes(changes.to_list(), host)
        payload[host] = {"summary": changes.summary(), "changed": changes.changed}
    console.print_json(data={"status": "ok", "dry_run": effective_dry_run, "hosts": payload})


HostOption = typer.Option(None, "--host", help="目标主机，可重复；缺省取映射表全部主机")
MappingOption = typer.Option(None, "--mapping", help="网络映射表 (csv/xlsx)，缺省在当前目录查找")


@host_app.command("configure")
def host_configure(
    host: Optional[List[str]] = HostOption,
    mapping: Optional[Path] = MappingOption,
    add: bool = typer.Option(False, "--add", help="创建/修正 QoS 策略与流量类（默认）"),
    remove: bool = typer.Option(False, "--remove", help="删除映射表中列出的 QoS 策略与流量类"),
    clear: bool = typer.Option(False, "--clear", help="删除主机上全部 QoS 策略与流量类"),
    dry_run: Optional[bool] = DryRunOption,
    debug: Optional[bool] = DebugOption,
):
    """按 MAC 重命名网卡并维护 QoS。"""
    chosen = [action for action, flag in (("add", add), ("remove", remove), ("clear", clear)) if flag]
    if len(chosen) > 1:
        raise _fail("--add/--remove/--clear 只能选择一个", 1)
    qos_action = chosen[0] if chosen else "add"
    _run_host_operation(configure_host, host, mapping, dry_run, debug, qos_action=qos_action)


@host_app.command("physical")
def host_physical(
    host: Optional[List[str]] = HostOption,
    mapping: Optional[Path] = MappingOption,
    dry_run: Optional[bool] = DryRunOption,
    debug: Optional[bool] = DebugOption,
):
    """设置巨帧与 RDMA。"""
    _run_host_operation(configure_physical, host, mapping, dry_run, debug)


@host_app.command("vswitch")
def host_vswitch(
    host: Optional[List[str]] = HostOption,
    mapping: Optional[Path] = MappingOption,
    dry_run: Optional[bool] = DryRunOption,
    debug: Optional[bool] = DebugOption,
):
    """创建 SET 交换机与管理 OS 虚拟网卡。"""
    _run_host_operation(configure_virtual_switch, host, mapping, dry_run, debug)


@host_app.command("addresses")
def host_addresses(
    host: Optional[List[str]] = HostOption,
    mapping: Optional[Path] = MappingOption,
    dry_run: Optional[bool] = DryRunOption,
    debug: Optional[bool] = DebugOption,
):
    """配置 IP 地址、默认网关与 DNS。"""
    _run_host_operation(configure_addresses, host, mapping, dry_run, debug)


# --------------------------------------------------------------------------- audit


def _report_path(cfg: Config, output: Optional[Path], kind: str) -> Path:
    if output is not None:
        return output
    base = Path(str(get_section(cfg, "audit").get("output_dir") or "artifacts/reports"))
    return base / f"{kind}-{datetime.now():%Y%m%d-%H%M%S}.txt"


def _run_audit(
    kind: str,
    hosts: Optional[List[str]],
    mapping_file: Optional[Path],
    output: Optional[Path],
    debug: Optional[bool],
) -> None:
    cfg = _config()
    _init_logging(cfg, debug)
    mapping = _load_mapping(mapping_file) if (mapping_file or not hosts) else None
    targets = list(hosts or (mapping.hosts() if mapping else []))
    if not targets:
        raise _fail("请通过 --host 或映射表指定主机", 1)

    include_vms = kind == "vms"
    with SessionPool(WinRMSettings.from_config(cfg)) as pool:
        inventories = collect_inventories(targets, pool, cfg, include_vms=include_vms)

    drift = None
    if mapping is not None and not include_vms:
        drift = []
        for inventory in inventories:
            drift.extend(compare_with_mapping(inventory, mapping.rows_for_host(inventory.host)))

    sections = ("vms",) if include_vms else ("adapters", "switches")
    path = write_report(inventories, _report_path(cfg, output, kind), drift, sections=sections)
    failed = [inv.host for inv in inventories if inv.error]
    console.print_json(
        data={
            "report": str(path),
            "hosts": len(inventories),
            "failed": failed,
            "drift": len(drift) if drift is not None else None,
        }
    )
    if failed:
        raise typer.Exit(code=2)


AuditHostOption = typer.Option(None, "--host", help="巡检主机，可重复；缺省取映射表全部主机")
OutputOption = typer.Option(None, "--output", "-o", help="报告文件路径")


@audit_app.command("hosts")
def audit_hosts(
    host: Optional[List[str]] = AuditHostOption,
    mapping: Optional[Path] = MappingOption,
    output: Optional[Path] = OutputOption,
    debug: Optional[bool] = DebugOption,
):
    """主机网卡与交换机巡检；提供映射表时附带偏差列表。"""
    _run_audit("hosts", host, mapping, output, debug)


@audit_app.command("vms")
def audit_vms(
    host: Optional[List[str]] = AuditHostOption,
    mapping: Optional[Path] = MappingOption,
    output: Optional[Path] = OutputOption,
    debug: Optional[bool] = DebugOption,
):
    """虚机及其网卡巡检。"""
    _run_audit("vms", host, mapping, output, debug)


@app.command()
def stages_list(
    workflow: Optional[str] = typer.Option(None, "--workflow", help="仅列出指定工作流的阶段"),
):
    """列出所有可用阶段及说明。"""
    selected = None
    if workflow:
        try:
            selected = Workflow(workflow.replace("-", "_"))
        except ValueError as exc:
            raise _fail(f"未知工作流: {workflow}", 1) from exc
    info = [
        {
            "name": meta.name,
            "label": meta.label,
            "description": meta.description,
            "group": meta.group,
        }
        for meta in list_stage_info(selected)
    ]
    console.print_json(data=info)


if __name__ == "__main__":  # pragma: no cover
    app()
