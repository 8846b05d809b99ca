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

"""主机基础配置：按 MAC 重命名网卡，维护 QoS 策略与流量类。

QoS 支持三种动作：

* ``add``：按映射表中带 ``qos_priority`` 的行创建/修正策略与流量类，RDMA 行开启 PFC；
* ``remove``：删除映射表中列出的策略与流量类；
* ``clear``：删除主机上全部策略与非默认流量类。
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from hvpilot.common.ip_utils import normalize_mac
from hvpilot.core.changes import ChangeSet
from hvpilot.integrations.hyperv import host_network_api as net
from hvpilot.models import NetworkMappingRow

logger = logging.getLogger(__name__)

QOS_ACTIONS = ("add", "remove", "clear")
DEFAULT_TRAFFIC_CLASS = "[Default]"
# SMB Direct 端口
NETDIRECT_PORT = 445
# 名称无法推断模板时按优先级取常见约定
PRIORITY_TEMPLATES = {3: "smb", 5: "livemigration", 7: "cluster"}


def infer_qos_template(name: str, priority: int) -> Optional[str]:
    compact = name.lower().replace(" ", "").replace("_", "").replace("-", "")
    for key in net.QOS_TEMPLATES:
        if key != "default" and key in compact:
            return key
    return PRIORITY_TEMPLATES.get(priority)


def rename_adapters(session, rows: Sequence[NetworkMappingRow], changes: ChangeSet) -> ChangeSet:
    adapters = net.get_net_adapters(session)
    by_mac = {normalize_mac(a["MacAddress"]): a for a in adapters if a.get("MacAddress")}
    by_name = {str(a.get("Name")).lower(): a for a in adapters}

    for row in rows:
        if row.role != "physical":
            continue
        target = row.target_name
        current = by_mac.get(row.mac_address) if row.mac_address else None
        if current is None:
            current = by_name.get(row.adapter.lower())
        if current is None:
            logger.warning("主机上未找到网卡 %s (MAC %s)", row.adapter, row.mac_address or "-")
            changes.skip(row.adapter, "重命名网卡", "未找到")
            continue
        name = str(current.get("Name"))
        if name == target:
            changes.skip(name, "重命名网卡", target)
            continue
        occupant = by_name.get(target.lower())
        if occupant is not None and occupant is not current:
            logger.warning("名称 %s 已被网卡 %s 占用，跳过重命名 %s", target, occupant.get("InterfaceDescription"), name)
            changes.skip(name, "重命名网卡", f"{target} 已被占用")
            continue
        changes.apply(name, "重命名网卡", net.rename_net_adapter, session, name, target, detail=f"-> {target}")
        by_name.pop(name.lower(), None)
        current["Name"] = target
        by_name[target.lower()] = current
    return changes


def _clear_qos(session, changes: ChangeSet) -> None:
    for policy in net.get_qos_policies(session):
        changes.apply(policy["Name"], "删除 QoS 策略", net.remove_qos_policy, session, policy["Name"])
    for traffic_class in net.get_qos_traffic_classes(session):
        if traffic_class.get("Name") != DEFAULT_TRAFFIC_CLASS:
            changes.apply(traffic_class["Name"], "删除 QoS 流量类", net.remove_qos_traffic_class, session, traffic_class["Name"])


def _remove_qos(session, rows: List[NetworkMappingRow], changes: ChangeSet) -> None:
    policies = {str(p.get("Name")).lower() for p in net.get_qos_policies(session)}
    classes = {str(c.get("Name")).lower() for c in net.get_qos_traffic_classes(session)}
    for row in rows:
        name = row.target_name
        if name.lower() in policies:
            changes.apply(name, "删除 QoS 策略", net.remove_qos_policy, session, name)
        else:
            changes.skip(name, "删除 QoS 策略", "不存在")
        if name.lower() in classes:
            changes.apply(name, "删除 QoS 流量类", net.remove_qos_traffic_class, session, name)


def _add_qos(session, rows: List[NetworkMappingRow], changes: ChangeSet) -> None:
    policies: Dict[str, dict] = {str(p.get("Name")).lower(): p for p in net.get_qos_policies(session)}
    classes: Dict[str, dict] = {str(c.get("Name")).lower(): c for c in net.get_qos_traffic_classes(session)}
    pfc = set()

    for row in rows:
        name = row.target_name
        priority = int(row.qos_priority)
        existing = policies.get(name.lower())
        if existing is not None and str(existing.get("PriorityValue8021Action")) == str(priority):
            changes.skip(name, "QoS 策略", f"priority={priority}")
        else:
            if existing is not None:
                changes.apply(name, "删除 QoS 策略", net.remove_qos_policy, session, name,
                              detail=f"priority {existing.get('PriorityValue8021Action')} -> {priority}")
            template = infer_qos_template(name, priority)
            changes.apply(
                name,
                "QoS 策略",
                net.new_qos_policy,
                session,
                name,
                priority,
                template=template,
                netdirect_port=NETDIRECT_PORT if (row.rdma and not template) else None,
                detail=f"priority={priority} template={template or '-'}",
            )

        if row.qos_bandwidth_percent:
            current = classes.get(name.lower())
            wanted = int(row.qos_bandwidth_percent)
            if current is not None and int(current.get("BandwidthPercentage") or 0) == wanted \
                    and priority in [int(p) for p in (current.get("Priority") or [])]:
                changes.skip(name, "QoS 流量类", f"{wanted}%")
            else:
                if current is not None:
                    changes.apply(name, "删除 QoS 流量类", net.remove_qos_traffic_class, session, name)
                changes.apply(name, "QoS 流量类", net.new_qos_traffic_class, session, name, priority, wanted,
                              detail=f"priority={priority} {wanted}%")
        if row.rdma:
            pfc.add(priority)

    if pfc:
        changes.apply("PFC", "启用流控", net.enable_qos_flow_control, session, sorted(pfc), detail=str(sorted(pfc)))


def configure_qos(session, rows: Sequence[NetworkMappingRow], changes: ChangeSet, action: str = "add") -> ChangeSet:
    if action not in QOS_ACTIONS:
        raise ValueError(f"未知 QoS 动作: {action}")
    if action == "clear":
        _clear_qos(session, changes)
        return changes
    qos_rows = [r for r in rows if r.qos_priority is not None]
    if not qos_rows:
        logger.info("映射表中没有 QoS 配置行")
        return changes
    if action == "remove":
        _remove_qos(session, qos_rows, changes)
    else:
        _add_qos(session, qos_rows, changes)
    return changes


def configure_host(
    session,
    rows: Sequence[NetworkMappingRow],
    changes: ChangeSet | None = None,
    *,
    qos_action: str | None = "add",
) -> ChangeSet:
    changes = changes if changes is not None else ChangeSet()
    rename_adapters(session, rows, changes)
    if qos_action:
        configure_qos(session, rows, changes, qos_action)
    return changes
