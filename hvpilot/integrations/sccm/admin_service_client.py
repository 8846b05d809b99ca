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

"""SCCM AdminService REST 客户端（只读查询）。"""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import requests
from requests_ntlm import HttpNtlmAuth
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from hvpilot.common.ip_utils import format_mac

logger = logging.getLogger(__name__)


_SENSITIVE_HEADER_KEYS = {"authorization", "cookie", "token"}


def _mask_value(value: str) -> str:
    if not value:
        return ""
    if len(value) <= 4:
        return "***"
    return f"{value[:2]}***{value[-2:]}"


def _sanitize_headers(headers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    if not headers:
        return {}
    sanitized: Dict[str, Any] = {}
    for key, val in headers.items():
        if isinstance(val, str) and key.lower() in _SENSITIVE_HEADER_KEYS:
            sanitized[key] = _mask_value(val)
        else:
            sanitized[key] = val
    return sanitized


class APIError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, APIError):
        return (exc.status_code or 0) >= 500
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))


class AdminServiceClient:
    """支持 Mock 与真实 HTTP 调用的 AdminService 客户端。

    ``base_url`` 形如 ``https://sccm01.corp.local/AdminService``；
    认证沿用 WinRM 账号，走 NTLM。
    """

    def __init__(
        self,
        base_url: str,
        *,
        auth: Optional[Tuple[str, str]] = None,
        mock: bool = False,
        timeout: int = 15,
        verify: Union[bool, str] = True,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.mock = mock
        self.timeout = timeout
        self.session = session or requests.Session()
        if auth and auth[0]:
            self.session.auth = HttpNtlmAuth(auth[0], auth[1])
        self.session.verify = verify
        self.session.headers.setdefault("Accept", "application/json")
        if verify is False and not self.mock:
            logger.warning("AdminService 客户端已禁用 SSL 证书校验")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "AdminServiceClient":
        sccm = dict(((config.get("infrastructure") or {}).get("sccm") or {}))
        winrm_cfg = dict(config.get("winrm") or {})
        base_url = sccm.get("base_url") or ""
        if not base_url and sccm.get("site_server"):
            base_url = f"https://{sccm['site_server']}/AdminService"
        return cls(
            base_url,
            auth=(winrm_cfg.get("username", ""), winrm_cfg.get("password", "")),
            mock=bool(sccm.get("mock", False)),
            timeout=int(sccm.get("timeout", 15)),
            verify=sccm.get("verify_ssl", True),
        )

    def _full_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception(_is_retryable),
        reraise=True,
    )
    def get(self, path: str, params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        if self.mock:
            logger.debug("MOCK GET %s params=%s", path, params)
            return {"value": [], "path": path, "params": params or {}}
        url = self._full_url(path)
        try:
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    "HTTP GET %s headers=%s params=%s",
                    url,
                    _sanitize_headers({**self.session.headers, **(headers or {})}),
                    params,
                )
            r = self.session.get(url, params=params, timeout=self.timeout, headers=headers)
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("HTTP RESPONSE GET %s status=%s body=%s", url, r.status_code, r.text[:200])
            if r.status_code >= 400:
                raise APIError(f"GET {url} status={r.status_code} body={r.text[:200]}", r.status_code)
            return r.json() if r.content else {}
        except requests.RequestException as e:
            logger.error("GET失败: %s", e)
            raise

    def query(self, wmi_class: str, *, filter: str | None = None, select: str | None = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {}
        if filter:
            params["$filter"] = filter
        if select:
            params["$select"] = select
        data = self.get(f"wmi/{wmi_class}", params=params or None)
        return list(data.get("value") or [])

    def find_device(self, name: str) -> Optional[Dict[str, Any]]:
        rows = self.query(
            "SMS_R_System",
            filter=f"Name eq '{name}'",
            select="ResourceId,Name,MACAddresses,Active",
        )
        return rows[0] if rows else None

    def find_device_by_mac(self, mac: str) -> Optional[Dict[str, Any]]:
        # AdminService 中 MAC 以冒号分隔
        wanted = format_mac(mac, sep=":")
        rows = self.query(
            "SMS_R_System",
            filter=f"MACAddresses/any(m: m eq '{wanted}')",
            select="ResourceId,Name,MACAddresses,Active",
        )
        return rows[0] if rows else None
