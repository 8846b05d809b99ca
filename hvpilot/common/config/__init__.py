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

"""配置加载模块。"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import os
import yaml

from ..system_constants import DEFAULT_CONFIG_FILE, WINRM_HTTP_PORT, WINRM_HTTPS_PORT


_TRUE_VALUES = {"1", "true", "yes", "on"}


class Config(dict):
    """配置对象，dict子类，支持点式访问（简单实现）。"""

    def __getattr__(self, item):  # noqa: D401
        try:
            return self[item]
        except KeyError as exc:
            raise AttributeError(item) from exc


def load_config(path: Path | None = None) -> Config:
    """加载YAML配置，返回Config对象。"""

    cfg_path = path or DEFAULT_CONFIG_FILE
    data: Dict[str, Any] = {}
    if cfg_path.exists():
        with cfg_path.open("r", encoding="utf-8") as file:
            data = yaml.safe_load(file) or {}

    env_overrides = _load_env_overrides()
    if env_overrides:
        data = _deep_merge_dicts(data, env_overrides)

    data = _normalize_winrm(data)

    return Config(data)


def get_section(config: Dict[str, Any] | None, *names: str) -> Dict[str, Any]:
    """按路径逐级获取子字典，缺失时返回空字典。"""

    node: Any = config or {}
    for name in names:
        if not isinstance(node, dict):
            return {}
        node = node.get(name, {})
    return dict(node) if isinstance(node, dict) else {}


def _load_env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}

    def _pick_env(*keys: str) -> str | None:
        for key in keys:
            value = os.getenv(key)
            if value:
                return value.strip()
        return None

    username = _pick_env("HVPILOT_WINRM_USERNAME", "WINRM_USERNAME")
    if username:
        overrides.setdefault("winrm", {})["username"] = username

    password = _pick_env("HVPILOT_WINRM_PASSWORD", "WINRM_PASSWORD")
    if password:
        overrides.setdefault("winrm", {})["password"] = password

    transport = _pick_env("HVPILOT_WINRM_TRANSPORT")
    if transport:
        overrides.setdefault("winrm", {})["transport"] = transport.lower()

    port_raw = _pick_env("HVPILOT_WINRM_PORT")
    if port_raw:
        try:
            overrides.setdefault("winrm", {})["port"] = int(port_raw)
        except ValueError:
            pass

    ssl_raw = _pick_env("HVPILOT_WINRM_SSL")
    if ssl_raw is not None:
        overrides.setdefault("winrm", {})["ssl"] = ssl_raw.lower() in _TRUE_VALUES

    sccm_url = _pick_env("HVPILOT_SCCM_BASE_URL")
    if sccm_url:
        overrides.setdefault("infrastructure", {}).setdefault("sccm", {})["base_url"] = sccm_url

    dry_run = _pick_env("HVPILOT_DRY_RUN")
    if dry_run is not None:
        overrides.setdefault("lifecycle", {})["dry_run"] = dry_run.lower() in _TRUE_VALUES

    return overrides


def _deep_merge_dicts(original: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(original)
    for key, value in updates.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge_dicts(result[key], value)
        else:
            result[key] = value
    return result


def _normalize_winrm(data: Dict[str, Any] | None) -> Dict[str, Any]:
    base = data or {}
    result = dict(base)
    winrm_cfg = dict(result.get("winrm", {}) or {})

    ssl = bool(winrm_cfg.get("ssl", False))
    winrm_cfg["ssl"] = ssl
    # 未显式指定端口时按是否启用 SSL 推断
    if not winrm_cfg.get("port"):
        winrm_cfg["port"] = WINRM_HTTPS_PORT if ssl else WINRM_HTTP_PORT
    winrm_cfg["transport"] = str(winrm_cfg.get("transport") or "ntlm").lower()

    result["winrm"] = winrm_cfg
    return result
