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

"""IP / 掩码 / MAC 相关辅助函数。

提供：
* is_ipv4 / is_ipv6
* prefix_to_mask / mask_to_prefix 前缀长度与点分掩码互转
* address_in_subnet 判断地址是否落在给定子网
* validate_cidrs 返回(有效列表, 错误信息列表, 重叠警告列表)
* normalize_mac / format_mac MAC 地址格式统一（Hyper-V 使用无分隔符大写）
"""
from __future__ import annotations
import re
from ipaddress import IPv4Address, IPv4Network, IPv6Address, ip_address, ip_interface, ip_network
from typing import Iterable, List, Tuple

_MAC_RE = re.compile(r"^[0-9A-F]{12}$")


def is_ipv4(val: str) -> bool:
    try:
        return isinstance(ip_address(val), IPv4Address)
    except ValueError:
        return False


def is_ipv6(val: str) -> bool:
    try:
        return isinstance(ip_address(val), IPv6Address)
    except ValueError:
        return False


def prefix_to_mask(prefix: int) -> str:
    """24 -> 255.255.255.0"""
    if not 0 <= int(prefix) <= 32:
        raise ValueError(f"非法前缀长度: {prefix}")
    return str(IPv4Network(f"0.0.0.0/{int(prefix)}").netmask)


def mask_to_prefix(mask: str) -> int:
    """255.255.255.0 -> 24；也接受 "/24" 与 "24" 形式。"""
    text = str(mask).strip().lstrip("/")
    if text.isdigit():
        value = int(text)
        if not 0 <= value <= 32:
            raise ValueError(f"非法前缀长度: {mask}")
        return value
    try:
        return IPv4Network(f"0.0.0.0/{text}").prefixlen
    except ValueError as exc:
        raise ValueError(f"非法子网掩码: {mask}") from exc


def address_in_subnet(ip: str, subnet: str, prefix: int | None = None) -> bool:
    """判断 *ip* 是否位于子网内。

    *subnet* 可以是 CIDR，也可以是与 *prefix* 配合的接口地址（例如主机自身 IP）。
    """
    try:
        if prefix is not None:
            network = ip_interface(f"{subnet}/{prefix}").network
        else:
            network = ip_network(subnet, strict=False)
        return ip_address(ip) in network
    except ValueError:
        return False


def validate_cidrs(cidrs: Iterable[str]) -> Tuple[List[str], List[str], List[str]]:
    ok: List[str] = []
    errors: List[str] = []
    overlaps: List[str] = []
    cidr_list = []
    for c in cidrs:
        if not c:
            continue
        try:
            net = ip_network(c, strict=False)
            cidr_list.append((c, net))
            ok.append(c)
        except ValueError:
            errors.append(f"非法CIDR: {c}")
    # 重叠检查 O(n^2) 规模小可接受
    for i in range(len(cidr_list)):
        for j in range(i + 1, len(cidr_list)):
            c1, n1 = cidr_list[i]
            c2, n2 = cidr_list[j]
            if n1.overlaps(n2):
                overlaps.append(f"CIDR重叠: {c1} <-> {c2}")
    return ok, errors, overlaps


def normalize_mac(mac: str | None) -> str | None:
    """统一为 Hyper-V 风格的 12 位大写十六进制；非法输入抛出 ValueError。"""
    if mac is None:
        return None
    cleaned = re.sub(r"[\s:\-.]", "", str(mac)).upper()
    if not cleaned:
        return None
    if not _MAC_RE.match(cleaned):
        raise ValueError(f"非法MAC地址: {mac}")
    return cleaned


def format_mac(mac: str, sep: str = "-") -> str:
    """AABBCCDDEEFF -> AA-BB-CC-DD-EE-FF（DHCP / Get-NetAdapter 使用的格式）。"""
    normalized = normalize_mac(mac)
    if normalized is None:
        raise ValueError("MAC地址为空")
    return sep.join(normalized[i:i + 2] for i in range(0, 12, 2))
