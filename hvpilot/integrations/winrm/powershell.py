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

"""PowerShell 脚本拼装工具。

所有用户输入都必须经过 :func:`ps_value` 转义后再拼接进脚本，
字符串统一使用单引号字面量，避免变量展开与注入。
"""
from __future__ import annotations

from typing import Any, Mapping

JSON_DEPTH = 6


def ps_quote(value: Any) -> str:
    """转为单引号字符串字面量，内部单引号加倍。"""
    text = str(value)
    # 弯引号在 PowerShell 中同样被视为单引号
    for quote in ("'", "‘", "’", "‚", "‛"):
        text = text.replace(quote, quote * 2)
    return f"'{text}'"


def ps_value(value: Any) -> str:
    """将 Python 值转换为 PowerShell 字面量。"""
    if value is None:
        return "$null"
    if isinstance(value, bool):
        return "$true" if value else "$false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, Mapping):
        pairs = "; ".join(f"{ps_quote(k)} = {ps_value(v)}" for k, v in value.items())
        return f"@{{{pairs}}}"
    if isinstance(value, (list, tuple, set)):
        return "@(" + ", ".join(ps_value(item) for item in value) + ")"
    return ps_quote(value)


def ps_args(params: Mapping[str, Any] | None = None) -> str:
    """将参数字典渲染为 ``-Name value`` 形式。

    * ``None`` 值被忽略；
    * 布尔值使用 ``-Name:$true`` 写法，同时兼容开关参数与布尔参数。
    """
    if not params:
        return ""
    parts = []
    for name, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            parts.append(f"-{name}:{ps_value(value)}")
        else:
            parts.append(f"-{name} {ps_value(value)}")
    return " ".join(parts)


def build_command(cmdlet: str, params: Mapping[str, Any] | None = None) -> str:
    args = ps_args(params)
    return f"{cmdlet} {args}".strip()


def wrap_json_script(body: str, depth: int = JSON_DEPTH) -> str:
    """包装脚本：出错即终止，结果统一输出为 JSON 数组。"""
    return (
        "$ErrorActionPreference = 'Stop'\n"
        "$ProgressPreference = 'SilentlyContinue'\n"
        "try {\n"
        f"  $__result = @(\n{body}\n  )\n"
        "  if ($__result.Count -gt 0) {\n"
        f"    ConvertTo-Json -InputObject $__result -Depth {depth} -Compress\n"
        "  }\n"
        "} catch {\n"
        "  [Console]::Error.WriteLine($_.Exception.Message)\n"
        "  exit 1\n"
        "}\n"
    )


def wrap_script(body: str) -> str:
    """包装无返回值脚本：出错即以非零状态退出。"""
    return (
        "$ErrorActionPreference = 'Stop'\n"
        "$ProgressPreference = 'SilentlyContinue'\n"
        "try {\n"
        f"{body}\n"
        "} catch {\n"
        "  [Console]::Error.WriteLine($_.Exception.Message)\n"
        "  exit 1\n"
        "}\n"
    )
