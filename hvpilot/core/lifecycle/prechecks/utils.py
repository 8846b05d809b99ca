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

"""预检通用工具函数。"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping

from .types import LEVELS


def update_level(current: str, candidate: str) -> str:
    """按 error > warning > info > ok 合并级别。"""
    rank = {level: i for i, level in enumerate(LEVELS)}
    return candidate if rank.get(candidate, 0) > rank.get(current, 0) else current


def log_debug(logger: logging.Logger | logging.LoggerAdapter, title: str, payload: Dict[str, Any]) -> None:
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("%s %s", title, json.dumps(payload, ensure_ascii=False, default=str))


def resolve_workers(precheck_cfg: Mapping[str, Any], task_count: int) -> int:
    configured = int(precheck_cfg.get("concurrency", 4) or 4)
    return max(1, min(configured, task_count))


def same_host(left: str | None, right: str | None) -> bool:
    """主机名比较，忽略大小写与域名后缀。"""
    if not left or not right:
        return False
    return left.strip().lower().split(".")[0] == right.strip().lower().split(".")[0]
