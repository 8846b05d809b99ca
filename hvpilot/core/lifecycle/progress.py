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

"""Stage progress feed.

Stage loggers write every entry twice: to the normal logger and to
``RunContext.extra["progress_messages"]``. An optional callable stored under
``extra["progress_log_sink"]`` receives each entry as it is recorded.
:func:`stage_notes` folds the feed into per-stage warning/error lines for the
run result.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping

from .runtime_context import RunContext

PROGRESS_MESSAGES_KEY = "progress_messages"
PROGRESS_SINK_KEY = "progress_log_sink"

NOTE_LEVELS = ("warning", "error", "critical")


def _as_text(stage: Any) -> str | None:
    return None if stage is None else str(getattr(stage, "value", stage))


def _level_text(level: Any) -> str:
    if isinstance(level, int):
        level = logging.getLevelName(level)
    return str(level or "info").lower()


def record_progress(
    ctx: RunContext | None,
    message: str,
    *,
    stage: Any = None,
    level: Any = "info",
    extra: Dict[str, Any] | None = None,
) -> None:
    if ctx is None:
        return
    entry: Dict[str, Any] = {
        "at": datetime.now(timezone.utc),
        "stage": _as_text(stage),
        "level": _level_text(level),
        "message": message,
    }
    if extra:
        entry["extra"] = extra
    ctx.extra.setdefault(PROGRESS_MESSAGES_KEY, []).append(entry)
    sink = ctx.extra.get(PROGRESS_SINK_KEY)
    if callable(sink):
        sink(entry)


def stage_notes(ctx: RunContext | None) -> Dict[str, List[str]]:
    """按阶段汇总 warning 及以上级别的进度消息。"""
    notes: Dict[str, List[str]] = {}
    if ctx is None:
        return notes
    for entry in ctx.extra.get(PROGRESS_MESSAGES_KEY, []):
        if entry["level"] in NOTE_LEVELS:
            notes.setdefault(entry["stage"] or "-", []).append(f"{entry['level']}: {entry['message']}")
    return notes


class ProgressLoggerAdapter(logging.LoggerAdapter):
    """Stage logger; ``progress_extra=`` attaches structured detail to the entry."""

    def __init__(self, logger: logging.Logger, ctx: RunContext | None, stage: Any, *, prefix: str | None = None) -> None:
        self.stage = _as_text(stage)
        super().__init__(logger, {"stage": self.stage} if self.stage else {})
        self.ctx = ctx
        self.prefix = prefix

    def log(self, level: int, msg: str, *args: Any, progress_extra: Mapping[str, Any] | None = None, **kwargs: Any) -> None:  # type: ignore[override]
        text = msg % args if args else msg
        detail = dict(progress_extra) if progress_extra else None
        record_progress(self.ctx, text, stage=self.stage, level=level, extra=detail)
        if not self.logger.isEnabledFor(level):
            return
        parts = [self.prefix, text] if self.prefix else [text]
        if detail:
            parts.append(f"| extra={detail!r}")
        line, kwargs = self.process(" ".join(parts), kwargs)
        self.logger.log(level, line, **kwargs)


def create_stage_progress_logger(
    ctx: RunContext | None,
    stage: Any,
    *,
    logger: logging.Logger | None = None,
    prefix: str | None = None,
) -> ProgressLoggerAdapter:
    return ProgressLoggerAdapter(logger or logging.getLogger(__name__), ctx, stage, prefix=prefix)
