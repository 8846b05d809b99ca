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

"""变更记录：所有对现网的写操作都经由 ChangeSet 执行或在演练模式下仅记录。"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

PLANNED = "planned"
APPLIED = "applied"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class ChangeRecord:
    target: str
    action: str
    detail: str = ""
    status: str = PLANNED
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ChangeSet:
    dry_run: bool = False
    records: List[ChangeRecord] = field(default_factory=list)
    log: Any = None

    def _logger(self):
        return self.log or logger

    def apply(
        self,
        target: str,
        action: str,
        func: Callable[..., Any],
        *args: Any,
        detail: str = "",
        **kwargs: Any,
    ) -> Any:
        """执行一次变更；演练模式下只记录为 planned。失败时记录后继续抛出。"""
        record = ChangeRecord(target=target, action=action, detail=detail)
        self.records.append(record)
        log = self._logger()
        if self.dry_run:
            log.info("[演练] %s: %s %s", target, action, detail)
            return None
        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            record.status = FAILED
            record.error = str(exc)
            log.error("%s: %s 失败: %s", target, action, exc)
            raise
        record.status = APPLIED
        log.info("%s: %s %s", target, action, detail)
        return result

    def skip(self, target: str, action: str, detail: str = "") -> ChangeRecord:
        record = ChangeRecord(target=target, action=action, detail=detail, status=SKIPPED)
        self.records.append(record)
        self._logger().info("%s: %s 已满足，跳过 %s", target, action, detail)
        return record

    def extend(self, other: "ChangeSet") -> None:
        self.records.extend(other.records)

    def summary(self) -> Dict[str, int]:
        counts = {PLANNED: 0, APPLIED: 0, SKIPPED: 0, FAILED: 0}
        for record in self.records:
            counts[record.status] = counts.get(record.status, 0) + 1
        return counts

    @property
    def has_failures(self) -> bool:
        return any(r.status == FAILED for r in self.records)

    @property
    def changed(self) -> bool:
        return any(r.status in (PLANNED, APPLIED) for r in self.records)

    def to_list(self) -> List[Dict[str, Any]]:
        return [r.to_dict() for r in self.records]
