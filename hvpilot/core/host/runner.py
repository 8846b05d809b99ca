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

"""逐台主机执行配置操作。"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable

from hvpilot.core.changes import ChangeSet
from hvpilot.integrations.winrm import SessionPool
from hvpilot.models import NetworkMapping

logger = logging.getLogger(__name__)


def apply_to_hosts(
    mapping: NetworkMapping,
    hosts: Iterable[str],
    operation: Callable[..., ChangeSet],
    *,
    pool: SessionPool,
    dry_run: bool = False,
    **kwargs: Any,
) -> Dict[str, ChangeSet]:
    """按顺序对每台主机执行 ``operation``，返回主机 -> ChangeSet。

    某台主机失败时异常直接抛出，已完成主机的结果不回滚。
    """

    results: Dict[str, ChangeSet] = {}
    for host in hosts:
        rows = mapping.rows_for_host(host)
        if not rows:
            logger.warning("映射表中没有主机 %s 的记录，跳过", host)
            continue
        logger.info("配置主机 %s：%d 行映射，操作 %s", host, len(rows), getattr(operation, "__name__", operation))
        changes = ChangeSet(dry_run=dry_run)
        results[host] = changes
        operation(pool.get(host), rows, changes, **kwargs)
        logger.info("主机 %s 完成: %s", host, changes.summary())
    return results
