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

"""主机巡检：采集网卡、交换机、虚机现状，并与映射表比对。

采集以 cmdlet 为主，``MSFT_NetAdapter`` 的 CIM 数据用于区分物理/虚拟网卡。
单台主机采集失败不会中断其它主机，错误写入 ``HostInventory.error``。
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from hvpilot.common.config import Config, get_section
from hvpilot.common.ip_utils import normalize_mac
from hvpilot.common.parallel_utils import parallel_map
from hvpilot.integrations.hyperv import cim_api, vm_api
from hvpilot.integrations.hyperv import host_network_api as net
from hvpilot.integrations.winrm import RemoteCommandError, SessionError, SessionPool
from hvpilot.models import (
    AdapterRecord,
    DriftRecord,
    HostInventory,
    NetworkMappingRow,
    SwitchRecord,
    VmAdapterRecord,
    VmRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _mac(value: Any) -> Optional[str]:
    if not value:
        return None
    try:
        return normalize_mac(value)
    except ValueError:
        return str(value)


def _collect_adapters(session) -> List[AdapterRecord]:
    adapters = net.get_net_adapters(session)
    virtual = {
        str(row.get("Name")).lower(): bool(row.get("Virtual")) or not row.get("HardwareInterface", True)
        for row in cim_api.get_net_adapter_instances(session)
    }
    jumbo = {str(k).lower(): v for k, v in net.get_jumbo_packets(session).items()}
    rdma = {str(r.get("Name")).lower(): bool(r.get("Enabled")) for r in net.get_adapter_rdma(session)}

    addresses: Dict[str, List[str]] = {}
    for row in net.get_ip_addresses(session):
        addresses.setdefault(str(row.get("InterfaceAlias")).lower(), []).append(
            f"{row.get('IPAddress')}/{row.get('PrefixLength')}"
        )

    vnic_vlans: Dict[str, Optional[int]] = {}
    for row in net.get_management_os_adapters(session):
        vlan = _as_int(row.get("VlanId")) if row.get("VlanMode") == "Access" else None
        vnic_vlans[net.host_vnic_alias(str(row.get("Name"))).lower()] = vlan

    records = []
    for row in adapters:
        name = str(row.get("Name"))
        key = name.lower()
        records.append(
            AdapterRecord(
                name=name,
                description=row.get("InterfaceDescription"),
                mac_address=_mac(row.get("MacAddress")),
                status=row.get("Status"),
                link_speed=row.get("LinkSpeed"),
                vlan_id=vnic_vlans[key] if key in vnic_vlans else _as_int(row.get("VlanID")),
                rdma_enabled=rdma.get(key),
                jumbo_packet=jumbo.get(key),
                ip_addresses=addresses.get(key, []),
                virtual=virtual.get(key, key in vnic_vlans),
            )
        )
    return records


def _collect_switches(session) -> List[SwitchRecord]:
    return [
        SwitchRecord(
            name=str(row.get("Name")),
            switch_type=row.get("SwitchType"),
            embedded_teaming=bool(row.get("EmbeddedTeamingEnabled")),
            members=list(row.get("Members") or []),
        )
        for row in vm_api.get_vm_switch(session)
    ]


def _collect_vms(session) -> List[VmRecord]:
    by_vm: Dict[str, List[VmAdapterRecord]] = {}
    for row in vm_api.list_vm_network_adapters(session):
        vlan = _as_int(row.get("VlanId")) if row.get("VlanMode") == "Access" else None
        by_vm.setdefault(str(row.get("VMName")).lower(), []).append(
            VmAdapterRecord(
                name=str(row.get("Name")),
                switch=row.get("SwitchName"),
                mac_address=_mac(row.get("MacAddress")),
                vlan_id=vlan,
                ip_addresses=[str(ip) for ip in (row.get("IPAddresses") or [])],
            )
        )
    records = []
    for row in vm_api.list_vms(session):
        name = str(row.get("Name"))
        records.append(
            VmRecord(
                name=name,
                state=row.get("State"),
                processor_count=_as_int(row.get("ProcessorCount")),
                memory_gb=vm_api.bytes_to_gib(row.get("MemoryStartup")),
                clustered=row.get("IsClustered"),
                adapters=by_vm.get(name.lower(), []),
            )
        )
    return records


def collect_host_inventory(session, host: str, *, include_vms: bool = True) -> HostInventory:
    inventory = HostInventory(host=host)
    try:
        inventory.adapters = _collect_adapters(session)
        inventory.switches = _collect_switches(session)
        if include_vms:
            inventory.vms = _collect_vms(session)
    except (RemoteCommandError, SessionError) as exc:
        logger.error("主机 %s 巡检失败: %s", host, exc)
        inventory.error = str(exc)
    else:
        logger.info(
            "主机 %s 巡检完成: 网卡 %d 个, 交换机 %d 个, 虚机 %d 台",
            host, len(inventory.adapters), len(inventory.switches), len(inventory.vms),
        )
    return inventory


def collect_inventories(
    hosts: Iterable[str],
    pool: SessionPool,
    config: Config | None = None,
    *,
    include_vms: bool = True,
) -> List[HostInventory]:
    """并发采集多台主机，返回顺序与输入一致。"""
    host_list = list(hosts)
    audit_cfg = get_section(config, "audit")
    max_workers = int(audit_cfg.get("max_workers") or DEFAULT_MAX_WORKERS)

    def _collect(host: str) -> HostInventory:
        return collect_host_inventory(pool.get(host), host, include_vms=include_vms)

    results = parallel_map(_collect, host_list, max_workers=max_workers)
    inventories = []
    for host, result in zip(host_list, results):
        if isinstance(result, Exception):
            logger.error("主机 %s 巡检异常: %s", host, result)
            result = HostInventory(host=host, error=str(result))
        inventories.append(result)
    return inventories


def _drift(inventory: HostInventory, adapter: str, field: str, expected: Any, actual: Any) -> DriftRecord:
    return DriftRecord(
        host=inventory.host,
        adapter=adapter,
        field=field,
        expected=None if expected is None else str(expected),
        actual=None if actual is None else str(actual),
    )


def compare_with_mapping(inventory: HostInventory, rows: Sequence[NetworkMappingRow]) -> List[DriftRecord]:
    """比对映射表与巡检结果，返回差异列表；巡检失败的主机不做比对。"""
    if inventory.error:
        return []
    by_name = {a.name.lower(): a for a in inventory.adapters}
    by_mac = {a.mac_address: a for a in inventory.adapters if a.mac_address}
    switches = {s.name.lower(): s for s in inventory.switches}
    drift: List[DriftRecord] = []

    for row in rows:
        alias = row.target_name if row.role == "physical" else net.host_vnic_alias(row.target_name)
        adapter = by_name.get(alias.lower())
        if adapter is None and row.role == "physical" and row.mac_address:
            adapter = by_mac.get(row.mac_address)
            if adapter is not None:
                drift.append(_drift(inventory, alias, "name", alias, adapter.name))
        if adapter is None:
            drift.append(_drift(inventory, alias, "present", "yes", "missing"))
            continue

        if row.role == "physical" and row.mac_address and adapter.mac_address != row.mac_address:
            drift.append(_drift(inventory, alias, "mac_address", row.mac_address, adapter.mac_address))
        if row.jumbo_packet is not None and adapter.jumbo_packet != row.jumbo_packet:
            drift.append(_drift(inventory, alias, "jumbo_packet", row.jumbo_packet, adapter.jumbo_packet))
        if row.rdma is not None and adapter.rdma_enabled != row.rdma:
            drift.append(_drift(inventory, alias, "rdma", row.rdma, adapter.rdma_enabled))
        if row.role == "host_vnic" and (row.vlan_id or None) != (adapter.vlan_id or None):
            drift.append(_drift(inventory, alias, "vlan_id", row.vlan_id, adapter.vlan_id))
        if row.ip_address is not None and row.prefix_length is not None:
            wanted = f"{row.ip_address}/{row.prefix_length}"
            if wanted not in adapter.ip_addresses:
                drift.append(_drift(inventory, alias, "ip_address", wanted, ", ".join(adapter.ip_addresses) or None))
        if row.role == "physical" and row.switch:
            switch = switches.get(row.switch.lower())
            if switch is None:
                drift.append(_drift(inventory, alias, "switch", row.switch, None))
            elif adapter.description not in switch.members:
                drift.append(_drift(inventory, alias, "switch", row.switch, "not a member"))
    return drift
