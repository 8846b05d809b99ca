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

"""中英文提示文案。

文案位于 ``hvpilot/langs/<lang>.yml``，键以点号分层（如
``lifecycle.remove_files.force_required``）。语言取 ``HVPILOT_LANG``，其次
``LANG`` / ``LC_ALL``，缺省中文。查找顺序：当前语言、英文、键名本身；
格式化参数不匹配时返回未格式化文案，不让日志调用抛异常。
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Dict, Optional

import yaml

from .system_constants import LANG_DIR

DEFAULT_LANG = "zh"
FALLBACK_LANG = "en"
SUPPORTED_LANGS = ("zh", "en")


@lru_cache(maxsize=None)
def _catalog(lang: str) -> Dict[str, Any]:
    path = LANG_DIR / f"{lang}.yml"
    if not path.is_file():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    return data if isinstance(data, dict) else {}


def resolve_lang(raw: Optional[str] = None) -> str:
    """把 ``zh_CN.UTF-8``、``en-US`` 之类的写法归一为受支持的语言代码。"""
    if raw is None:
        raw = os.environ.get("HVPILOT_LANG") or os.environ.get("LANG") or os.environ.get("LC_ALL")
    code = (raw or "").strip().lower()[:2]
    return code if code in SUPPORTED_LANGS else DEFAULT_LANG


def _find(catalog: Dict[str, Any], key: str) -> Optional[str]:
    node: Any = catalog
    for part in key.split("."):
        if not isinstance(node, dict):
            return None
        node = node.get(part)
    return node if isinstance(node, str) else None


def tr(key: str, lang: str | None = None, **kwargs: Any) -> str:
    code = resolve_lang(lang)
    template = _find(_catalog(code), key) or _find(_catalog(FALLBACK_LANG), key) or key
    if not kwargs:
        return template
    try:
        return template.format(**kwargs)
    except (KeyError, IndexError, ValueError):
        return template
