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

"""Workflow execution helpers shared by the CLI and tests."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from threading import Event
from typing import Any, Callable, Dict, Iterable, List, Sequence

from hvpilot.common.config import Config, get_section, load_config
from hvpilot.common.system_constants import DEFAULT_CONFIG_FILE
from hvpilot.core.changes import ChangeSet
from hvpilot.integrations.winrm import SessionPool, WinRMSettings
from hvpilot.models import VmDefinition
from .progress import stage_notes
from .runtime_context import RunContext
from .stage_manager import WORKFLOW_STAGES, Stage, Workflow, run_stages

logger = logging.getLogger(__name__)


@dataclass
class RunOptions:
    """User provided run options (mirrors CLI flags)."""

    dry_run: bool | None = None
    strict_validation: bool | None = None
    debug: bool | None = None
    destination_host: str | None = None
    destination_path: str | None = None
    export_path: str | None = None
    force: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EffectiveRunOptions:
    """Resolved run options after applying configuration defaults."""

    dry_run: bool
    strict_validation: bool
    debug: bool
    log_level: str
    force: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RunResult:
    """Outcome of a workflow run."""

    workflow: str
    vm_name: str
    completed_stages: List[str]
    stage_results: Dict[str, str]
    options: EffectiveRunOptions
    started_at: datetime
    finished_at: datetime
    changes: List[Dict[str, Any]] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)
    notes: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow": self.workflow,
            "vm_name": self.vm_name,
            "completed_stages": self.completed_stages,
            "stage_results": self.stage_results,
            "options": self.options.to_dict(),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "changes": self.changes,
            "summary": self.summary,
            "notes": self.notes,
        }


def resolve_stages(stage_refs: Iterable[Stage | str], workflow: Workflow | None = None) -> List[Stage]:
    """Normalize user supplied stage references into Stage enums.

    When ``workflow`` is given, stages outside of it are rejected and the
    result follows the workflow order.
    """

    resolved: List[Stage] = []
    for ref in stage_refs:
        if isinstance(ref, Stage):
            resolved.append(ref)
            continue
        try:
            resolved.append(Stage(ref))
        except ValueError as exc:
            raise ValueError(f"未知阶段: {ref}") from exc
    if workflow is None:
        return resolved
    allowed = WORKFLOW_STAGES[workflow]
    foreign = [s.value for s in resolved if s not in allowed]
    if foreign:
        raise ValueError(f"阶段 {foreign} 不属于工作流 {workflow.value}")
    return [s for s in allowed if s in resolved]


def _resolve_effective_options(cfg: Config, options: RunOptions | None) -> EffectiveRunOptions:
    provided = options or RunOptions()

    cfg_logging = get_section(cfg, "logging")
    strict_default = bool(get_section(cfg, "validation").get("strict", False))
    dry_run_default = bool(get_section(cfg, "lifecycle").get("dry_run", False))

    level = str(cfg_logging.get("level", "INFO")).upper()
    debug_default = bool(cfg_logging.get("debug", False)) or level == "DEBUG"

    strict = strict_default if provided.strict_validation is None else provided.strict_validation
    dry_run = dry_run_default if provided.dry_run is None else provided.dry_run
    debug = debug_default if provided.debug is None else provided.debug

    resolved = EffectiveRunOptions(
        dry_run=dry_run,
        strict_validation=strict,
        debug=debug,
        log_level="DEBUG" if debug else level,
        force=bool(provided.force),
    )
    logger.debug("解析运行参数: %s", resolved.to_dict())
    return resolved


def _build_summary(ctx: RunContext) -> Dict[str, Any]:
    precheck = ctx.extra.get("precheck", {})
    report = precheck.get("report", {})
    return {
        "host": ctx.current_host,
        "changes": ctx.changes.summary(),
        "changed": ctx.changes.changed,
        "report": {
            "ok": report.get("ok"),
            "warnings": report.get("warnings", []),
            "errors": report.get("errors", []),
        },
    }


def execute_workflow(
    workflow: Workflow,
    definition: VmDefinition,
    options: RunOptions | None = None,
    *,
    definition_file: Path | None = None,
    config: Config | None = None,
    pool: SessionPool | None = None,
    stages: Sequence[Stage | str] | None = None,
    progress_callback: Callable[[str, Stage, RunContext | None], None] | None = None,
    abort_signal: Event | None = None,
) -> RunResult:
    """Run the stages of ``workflow`` against one VM definition."""

    cfg = config if config is not None else load_config(DEFAULT_CONFIG_FILE)
    effective = _resolve_effective_options(cfg, options)
    selected = resolve_stages(stages, workflow) if stages else list(WORKFLOW_STAGES[workflow])
    provided = options or RunOptions()

    logger.info("工作流 %s，虚机 %s，主机 %s", workflow.value, definition.name, definition.host)
    logger.info("执行阶段: %s", [s.value for s in selected])
    logger.info("运行参数: %s", effective.to_dict())

    own_pool = pool is None
    sessions = pool if pool is not None else SessionPool(WinRMSettings.from_config(cfg))
    ctx = RunContext(
        definition=definition,
        config=cfg,
        sessions=sessions,
        dry_run=effective.dry_run,
        changes=ChangeSet(dry_run=effective.dry_run),
        definition_file=Path(definition_file) if definition_file else None,
    )
    ctx.extra["workflow"] = workflow.value
    ctx.extra["selected_stages"] = [s.value for s in selected]
    ctx.options.update(
        {
            "dry_run": effective.dry_run,
            "strict_validation": effective.strict_validation,
            "debug": effective.debug,
            "force": effective.force,
            "destination_host": provided.destination_host,
            "destination_path": provided.destination_path,
            "export_path": provided.export_path,
        }
    )
    if abort_signal is not None:
        ctx.extra.setdefault("abort_signal", abort_signal)

    started = datetime.now(timezone.utc)
    try:
        run_stages(selected, ctx={"ctx": ctx}, progress_callback=progress_callback, abort_signal=abort_signal)
    finally:
        logger.info("变更汇总: %s", ctx.changes.summary())
        if own_pool:
            sessions.close_all()
    finished = datetime.now(timezone.utc)

    return RunResult(
        workflow=workflow.value,
        vm_name=definition.name,
        completed_stages=ctx.completed_stages[:],
        stage_results=dict(ctx.stage_results),
        options=effective,
        started_at=started,
        finished_at=finished,
        changes=ctx.changes.to_list(),
        summary=_build_summary(ctx),
        notes=stage_notes(ctx),
    )
