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

"""WinRM 远程会话与按主机名缓存的会话池。"""
from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

import requests
import winrm
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from winrm.exceptions import WinRMError, WinRMOperationTimeoutError, WinRMTransportError

from .powershell import JSON_DEPTH, wrap_json_script, wrap_script

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (
    WinRMTransportError,
    WinRMOperationTimeoutError,
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
)


def _short_repr(value: Any, limit: int = 200) -> str:
    if value is None:
        return "None"
    rendered = str(value)
    if len(rendered) > limit:
        return f"{rendered[:limit]}...<trimmed>"
    return rendered


class SessionError(RuntimeError):
    """无法建立远程会话。"""


class RemoteCommandError(RuntimeError):
    """远程 PowerShell 执行失败。"""

    def __init__(self, host: str, script: str, stderr: str, status_code: int, context: str | None = None):
        self.host = host
        self.script = script
        self.stderr = stderr
        self.status_code = status_code
        self.context = context
        prefix = f"{context}: " if context else ""
        super().__init__(f"{prefix}[{host}] 远程命令失败(status={status_code}): {_short_repr(stderr.strip())}")


@dataclass
class WinRMSettings:
    username: str = ""
    password: str = ""
    transport: str = "ntlm"
    port: int = 5985
    ssl: bool = False
    server_cert_validation: str = "ignore"
    operation_timeout: int = 60
    read_timeout: int = 90
    connect_retries: int = 3

    @classmethod
    def from_config(cls, config: Mapping[str, Any] | None) -> "WinRMSettings":
        cfg = dict((config or {}).get("winrm", {}) or {})
        settings = cls()
        for key in settings.__dataclass_fields__:
            if key in cfg and cfg[key] is not None:
                setattr(settings, key, cfg[key])
        settings.port = int(settings.port)
        settings.operation_timeout = int(settings.operation_timeout)
        settings.read_timeout = int(settings.read_timeout)
        # pywinrm 要求 read_timeout 严格大于 operation_timeout
        if settings.read_timeout <= settings.operation_timeout:
            settings.read_timeout = settings.operation_timeout + 10
        settings.connect_retries = max(1, int(settings.connect_retries))
        return settings

    def endpoint(self, host: str) -> str:
        scheme = "https" if self.ssl else "http"
        return f"{scheme}://{host}:{self.port}/wsman"


@dataclass
class RemoteResult:
    stdout: str
    stderr: str
    status_code: int

    @property
    def ok(self) -> bool:
        return self.status_code == 0


class RemoteSession:
    """对单台主机的 PowerShell 远程执行封装。

    底层 ``winrm.Session`` 延迟创建；传输层错误按配置重试，
    命令本身的失败直接抛出 :class:`RemoteCommandError`。
    """

    def __init__(
        self,
        host: str,
        settings: WinRMSettings,
        *,
        session_factory: Optional[Callable[..., Any]] = None,
    ):
        self.host = host
        self.settings = settings
        self._session_factory = session_factory or winrm.Session
        self._session: Any = None

    def _ensure_session(self):
        if self._session is not None:
            return self._session
        if not self.settings.username:
            raise SessionError(f"[{self.host}] 未配置 WinRM 用户名")
        endpoint = self.settings.endpoint(self.host)
        logger.debug("建立 WinRM 会话: %s transport=%s", endpoint, self.settings.transport)
        try:
            self._session = self._session_factory(
                endpoint,
                auth=(self.settings.username, self.settings.password),
                transport=self.settings.transport,
                server_cert_validation=self.settings.server_cert_validation,
                operation_timeout_sec=self.settings.operation_timeout,
                read_timeout_sec=self.settings.read_timeout,
            )
        except (ValueError, WinRMError) as exc:
            raise SessionError(f"[{self.host}] 创建 WinRM 会话失败: {exc}") from exc
        return self._session

    def run(self, script: str) -> RemoteResult:
        """执行脚本并返回原始结果，不判断成功与否。"""
        retrying = retry(
            stop=stop_after_attempt(self.settings.connect_retries),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            retry=retry_if_exception_type(_TRANSPORT_ERRORS),
            reraise=True,
        )
        return retrying(self._run_once)(script)

    def _run_once(self, script: str) -> RemoteResult:
        session = self._ensure_session()
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("PS[%s] >>> %s", self.host, _short_repr(script, 400))
        response = session.run_ps(script)
        result = RemoteResult(
            stdout=response.std_out.decode("utf-8", errors="replace"),
            stderr=response.std_err.decode("utf-8", errors="replace"),
            status_code=response.status_code,
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "PS[%s] <<< status=%s stdout=%s",
                self.host,
                result.status_code,
                _short_repr(result.stdout, 300),
            )
        return result

    def invoke(self, body: str, *, context: str | None = None) -> str:
        """执行无返回值命令，失败时抛出 :class:`RemoteCommandError`。"""
        script = wrap_script(body)
        result = self.run(script)
        if not result.ok:
            logger.error("[%s] 远程命令失败: %s", self.host, _short_repr(result.stderr.strip()))
            raise RemoteCommandError(self.host, body, result.stderr, result.status_code, context)
        return result.stdout

    def invoke_json(self, body: str, *, context: str | None = None, depth: int = JSON_DEPTH) -> List[Any]:
        """执行查询并将输出解析为列表；无输出时返回空列表。"""
        script = wrap_json_script(body, depth=depth)
        result = self.run(script)
        if not result.ok:
            logger.error("[%s] 远程查询失败: %s", self.host, _short_repr(result.stderr.strip()))
            raise RemoteCommandError(self.host, body, result.stderr, result.status_code, context)
        return parse_json_output(result.stdout)

    def close(self) -> None:
        self._session = None


def parse_json_output(stdout: str) -> List[Any]:
    text = (stdout or "").strip()
    if not text:
        return []
    data = json.loads(text)
    if data is None:
        return []
    if isinstance(data, list):
        return data
    return [data]


class SessionPool:
    """按主机名缓存的远程会话表，同一次运行内复用。"""

    def __init__(
        self,
        settings: WinRMSettings,
        *,
        factory: Optional[Callable[[str, WinRMSettings], RemoteSession]] = None,
    ):
        self.settings = settings
        self._factory = factory or (lambda host, cfg: RemoteSession(host, cfg))
        self._sessions: Dict[str, RemoteSession] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(host: str) -> str:
        return str(host).strip().lower()

    def get(self, host: str) -> RemoteSession:
        if not host or not str(host).strip():
            raise SessionError("主机名为空，无法建立会话")
        key = self._key(host)
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                session = self._factory(str(host).strip(), self.settings)
                self._sessions[key] = session
                logger.debug("缓存新会话: %s (共 %d 个)", key, len(self._sessions))
        return session

    def __contains__(self, host: str) -> bool:
        return self._key(host) in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()

    def __enter__(self) -> "SessionPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close_all()
