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

"""预检结果：单条 ``ProbeRecord`` 与汇总的 ``PrecheckReport``。"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Set

# 由轻到重
LEVELS = ("ok", "info", "warning", "error")


@dataclass
class ProbeRecord:
    category: str
    target: str
    level: str
    message: str
    probes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PrecheckReport:
    """``live_state`` 只在新建虚机预检时填充，供 :func:`hvpilot.validation.validate` 使用。"""

    records: List[ProbeRecord] = field(default_factory=list)
    live_state: Dict[str, Any] = field(default_factory=dict)

    def extend(self, records: Iterable[ProbeRecord]) -> None:
        self.records += list(records)

    def by_level(self, level: str) -> List[ProbeRecord]:
        return [r for r in self.records if r.level == level]

    def targets_at(self, level: str) -> Set[str]:
        return {r.target for r in self.by_level(level)}

    @property
    def has_error(self) -> bool:
        return bool(self.by_level("error"))

    @property
    def worst_level(self) -> str:
        ranks = [LEVELS.index(r.level) for r in self.records if r.level in LEVELS]
        return LEVELS[max(ranks)] if ranks else "ok"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.worst_level,
            "has_error": self.has_error,
            "records": [r.to_dict() for r in self.records],
        }
