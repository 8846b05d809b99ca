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

"""巨帧与 RDMA。"""
from __future__ import annotations

import logging
from typing import Sequence

from hvpilot.core.changes import ChangeSet
from hvpilot.integrations.hyperv import host_network_api as net
from hvpilot.models import NetworkMappingRow

logger = logging.getLogger(__name__)

JUMBO_KEYWORD = "*JumboPacket"


def interface_alias(row: NetworkMappingRow) -> str:
    return row.target_name if row.role == "physical" else net.host_vnic_alias(row.target_name)


def configure_physical(session, rows: Sequence[NetworkMappingRow], changes: ChangeSet | None = None) -> ChangeSet:
    changes = changes if changes is not None else ChangeSet()
    wanted = [r for r in rows if r.jumbo_packet is not None or r.rdma is not None]
    if not wanted:
        logger.info("映射表中没有巨帧/RDMA 配置")
        return changes

    jumbo = {str(k).lower(): v for k, v in net.get_jumbo_packets(session).items()}
    rdma = {str(r.get("Name")).lower(): bool(r.get("Enabled")) for r in net.get_adapter_rdma(session)}

    for row in wanted:
        alias = interface_alias(row)
        if row.jumbo_packet is not None:
            key = alias.lower()
            if key not in jumbo:
                logger.warning("网卡 %s 不支持 %s", alias, JUMBO_KEYWORD)
                changes.skip(alias, "巨帧", "不支持")
            elif jumbo[key] == row.jumbo_packet:
                changes.skip(alias, "巨帧", str(row.jumbo_packet))
            else:
                changes.apply(
                    alias, "巨帧", net.set_adapter_advanced_property, session, alias, JUMBO_KEYWORD, row.jumbo_packet,
                    detail=f"{jumbo[key]} -> {row.jumbo_packet}",
                )
        if row.rdma is not None:
            current = rdma.get(alias.lower())
            if current is None:
                logger.warning("网卡 %s 不支持 RDMA", alias)
                changes.skip(alias, "RDMA", "不支持")
            elif current == row.rdma:
                changes.skip(alias, "RDMA", "enabled" if current else "disabled")
            else:
                changes.apply(alias, "RDMA", net.set_adapter_rdma, session, alias, row.rdma,
                              detail="enable" if row.rdma else "disable")
    return changes
