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

"""网卡 IPv4 地址、默认网关与 DNS 客户端。"""
from __future__ import annotations

import logging
from typing import Sequence

from hvpilot.core.changes import ChangeSet
from hvpilot.integrations.hyperv import host_network_api as net
from hvpilot.models import NetworkMappingRow
from .physical_adapters import interface_alias

logger = logging.getLogger(__name__)


def _ensure_address(session, alias: str, row: NetworkMappingRow, changes: ChangeSet) -> None:
    ip = str(row.ip_address)
    prefix = int(row.prefix_length)
    current = net.get_ip_addresses(session, alias)
    matched = [c for c in current if c.get("IPAddress") == ip]

    if matched and int(matched[0].get("PrefixLength") or 0) == prefix:
        changes.skip(alias, "IP 地址", f"{ip}/{prefix}")
    else:
        if matched:
            changes.apply(alias, "删除 IP 地址", net.remove_ip_address, session, alias, ip,
                          detail=f"{ip}/{matched[0].get('PrefixLength')}")
        if any(c.get("PrefixOrigin") == "Dhcp" for c in current):
            changes.apply(alias, "关闭 DHCP", net.disable_dhcp, session, alias)
        changes.apply(alias, "IP 地址", net.new_ip_address, session, alias, ip, prefix, detail=f"{ip}/{prefix}")

    for stray in current:
        address = stray.get("IPAddress")
        if address != ip and stray.get("PrefixOrigin") == "Manual":
            changes.apply(alias, "删除多余地址", net.remove_ip_address, session, alias, address, detail=str(address))


def _ensure_gateway(session, alias: str, gateway: str, changes: ChangeSet) -> None:
    current = net.get_default_gateway(session, alias)
    if current == gateway:
        changes.skip(alias, "默认网关", gateway)
        return
    if current:
        changes.apply(alias, "删除默认网关", net.remove_default_gateway, session, alias, detail=current)
    changes.apply(alias, "默认网关", net.new_default_route, session, alias, gateway, detail=gateway)


def _ensure_dns(session, alias: str, servers: list, changes: ChangeSet) -> None:
    current = net.get_dns_client_servers(session, alias)
    if current == servers:
        changes.skip(alias, "DNS 服务器", ", ".join(servers))
        return
    changes.apply(alias, "DNS 服务器", net.set_dns_client_servers, session, alias, servers,
                  detail=f"{', '.join(current) or '-'} -> {', '.join(servers)}")


def configure_addresses(session, rows: Sequence[NetworkMappingRow], changes: ChangeSet | None = None) -> ChangeSet:
    changes = changes if changes is not None else ChangeSet()
    for row in rows:
        if row.ip_address is None:
            continue
        alias = interface_alias(row)
        if row.ip_address.version != 4:
            logger.warning("网卡 %s 的地址 %s 不是 IPv4，跳过", alias, row.ip_address)
            continue
        if row.prefix_length is None:
            logger.warning("网卡 %s 缺少前缀长度，跳过地址配置", alias)
            continue
        _ensure_address(session, alias, row, changes)
        if row.gateway is not None:
            _ensure_gateway(session, alias, str(row.gateway), changes)
        if row.dns_servers:
            _ensure_dns(session, alias, list(row.dns_servers), changes)
    return changes
