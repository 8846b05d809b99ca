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

"""网络连通性与 WinRM 监听检测工具。

两类探测：

* ``tcp``：与端口完成握手即成功；
* ``winrm``：向 ``/wsman`` 发 GET，未认证请求会得到 401/405，拿到任意 HTTP
  响应即视为监听存在，连接/超时/TLS 错误视为失败。
"""
from __future__ import annotations

import socket
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional

import httpx

RETRY_PAUSE = 0.05


@dataclass
class ProbeTask:
    target: str
    kind: Literal["tcp", "winrm"]
    port: Optional[int] = None
    timeout: float = 1.0
    retries: int = 0
    ssl: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProbeResult:
    task: ProbeTask
    success: bool
    detail: str = ""
    elapsed: float = 0.0
    status_code: int | None = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self.task)
        data.update(success=self.success, detail=self.detail, elapsed=round(self.elapsed, 3),
                    status_code=self.status_code)
        return data


def check_port(host: str, port: int, timeout: float = 1.0) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def _attempts(task: ProbeTask, once: Callable[[], ProbeResult]) -> ProbeResult:
    """执行 ``retries + 1`` 次，首个成功即返回；耗时按全部尝试累计。"""
    started = time.perf_counter()
    result = ProbeResult(task=task, success=False)
    for attempt in range(task.retries + 1):
        if attempt:
            time.sleep(RETRY_PAUSE)
        result = once()
        if result.success:
            break
    result.elapsed = time.perf_counter() - started
    return result


def probe_tcp(host: str, port: int, timeout: float = 1.0, *, retries: int = 0) -> ProbeResult:
    task = ProbeTask(target=host, kind="tcp", port=port, timeout=timeout, retries=retries)

    def once() -> ProbeResult:
        ok = check_port(host, port, timeout=timeout)
        return ProbeResult(task=task, success=ok, detail="" if ok else f"tcp {port} unreachable")

    return _attempts(task, once)


def probe_winrm_listener(
    host: str,
    port: int,
    *,
    ssl: bool = False,
    timeout: float = 3.0,
    retries: int = 0,
) -> ProbeResult:
    task = ProbeTask(target=host, kind="winrm", port=port, timeout=timeout, retries=retries, ssl=ssl)
    url = f"{'https' if ssl else 'http'}://{host}:{port}/wsman"

    def once() -> ProbeResult:
        try:
            # 自签名证书在 WinRM HTTPS 监听上很常见，这里只判断监听是否存在
            resp = httpx.get(url, timeout=timeout, verify=False)
        except httpx.HTTPError as exc:
            return ProbeResult(task=task, success=False, detail=str(exc) or type(exc).__name__)
        return ProbeResult(task=task, success=True, detail=f"HTTP {resp.status_code}", status_code=resp.status_code)

    return _attempts(task, once)


def _dispatch(task: ProbeTask) -> ProbeResult:
    if task.kind not in ("tcp", "winrm"):
        raise ValueError(f"未知探测类型: {task.kind}")
    if task.port is None:
        raise ValueError(f"{task.kind} 探测需要指定端口")
    if task.kind == "tcp":
        return probe_tcp(task.target, task.port, timeout=task.timeout, retries=task.retries)
    return probe_winrm_listener(task.target, task.port, ssl=task.ssl, timeout=task.timeout, retries=task.retries)


def run_probe_tasks(
    tasks: Iterable[ProbeTask],
    *,
    max_workers: int = 8,
    logger=None,
) -> List[ProbeResult]:
    """并发执行探测，结果顺序与输入一致；单个任务抛出的异常记为失败结果。"""
    pending = list(tasks)
    if not pending:
        return []

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        futures = [pool.submit(_dispatch, task) for task in pending]

    results: List[ProbeResult] = []
    for task, future in zip(pending, futures):
        exc = future.exception()
        if exc is None:
            result = future.result()
        else:
            result = ProbeResult(task=task, success=False, detail=str(exc) or "probe failed")
        if logger is not None:
            logger.debug("探测 %s:%s (%s) -> %s", task.target, task.port, task.kind, result.detail or "ok")
        results.append(result)
    return results
