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

"""并发执行相关辅助函数。"""
from __future__ import annotations

import concurrent.futures as cf
from typing import Any, Callable, Iterable, List


def parallel_map(func: Callable[[Any], Any], items: Iterable[Any], max_workers: int = 8) -> List[Any]:
    """并发执行 *func*，结果顺序与输入一致。

    单个任务的异常不会中断其它任务，而是放在对应位置返回，便于上层判断。
    """
    item_list = list(items)
    if not item_list:
        return []
    results: List[Any] = [None] * len(item_list)
    with cf.ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        future_map = {executor.submit(func, item): idx for idx, item in enumerate(item_list)}
        for future in cf.as_completed(future_map):
            idx = future_map[future]
            try:
                results[idx] = future.result()
            except Exception as exc:  # noqa: BLE001 - 直接返回异常供调用方处理
                results[idx] = exc
    return results
