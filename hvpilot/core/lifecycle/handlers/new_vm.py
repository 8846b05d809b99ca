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

# 新建虚机：校验 -> 创建 -> 计算资源 -> 磁盘 -> 网卡 -> 系统部署 -> 登记网络 -> 开机 -> 入集群
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List

from hvpilot.common.config import get_section
from hvpilot.common.i18n import tr
from hvpilot.common.ip_utils import normalize_mac
from hvpilot.core.lifecycle.prechecks import run_lifecycle_prechecks
from hvpilot.core.lifecycle.runtime_context import RunContext
from hvpilot.core.lifecycle.stage_manager import STAGE_SKIPPED, Stage, Workflow, stage_handler
from hvpilot.core.provisioning import get_provisioner
from hvpilot.integrations.hyperv import cluster_api, vm_api
from hvpilot.integrations.infrastructure import dhcp_api, dns_api
from hvpilot.models import DeploymentMethod, IpMode, NetworkAdapterSpec, VlanMode
from hvpilot.validation import validate
from .common import check_precheck_report, planned_only, stage_logger_for

logger = logging.getLogger(__name__)

# New-VM 自带一块未连接的默认网卡
DEFAULT_ADAPTER = "Network Adapter"


@stage_handler(Stage.prepare)
def handle_prepare(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.prepare)
    defn = ctx.definition
    stage_logger.info(tr("lifecycle.prepare.start", name=defn.name, host=defn.host))

    cli_opts = ctx.options
    strict_flag = cli_opts.get("strict_validation")
    if strict_flag is None:
        strict_flag = get_section(ctx.config, "validation").get("strict", False)
    cli_opts["strict_validation"] = bool(strict_flag)

    report = run_lifecycle_prechecks(ctx, Workflow.new_vm, stage_logger=stage_logger)
    check_precheck_report(report, stage_logger)

    result = validate(defn, report.live_state)
    if not result["ok"]:
        stage_logger.error(tr("lifecycle.prepare.validate_failed"), progress_extra={"errors": result["errors"]})
        raise RuntimeError(tr("lifecycle.prepare.validate_failed_raise", count=len(result["errors"])))
    warnings = result.get("warnings", [])
    if strict_flag and warnings:
        stage_logger.error(tr("lifecycle.prepare.strict_with_warnings"), progress_extra={"warnings": warnings})
        raise RuntimeError(tr("lifecycle.prepare.strict_with_warnings_raise"))
    stage_logger.info(tr("lifecycle.prepare.validate_ok"), progress_extra={"warnings": len(warnings)})

    ctx.extra["precheck"] = {"strict": bool(strict_flag), "report": result, "probes": report.to_dict()}
    return None


@stage_handler(Stage.create_vm)
def handle_create_vm(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.create_vm)
    defn = ctx.definition
    session = ctx.host_session()

    existing = vm_api.get_vm(session, defn.name)
    if existing is not None:
        if int(existing.get("Generation") or defn.generation) != defn.generation:
            stage_logger.warning(
                tr("lifecycle.create_vm.generation_mismatch", name=defn.name,
                   actual=existing.get("Generation"), expected=defn.generation)
            )
        ctx.changes.skip(defn.name, "创建虚机", f"已存在于 {defn.host}")
        return STAGE_SKIPPED

    ctx.changes.apply(
        defn.name,
        "创建虚机",
        vm_api.new_vm,
        session,
        defn.name,
        defn.path,
        defn.generation,
        defn.memory_startup_gb,
        detail=f"{defn.host} {defn.path} Gen{defn.generation}",
    )
    if ctx.dry_run:
        ctx.extra["vm_planned_only"] = True
    return None


def _memory_matches(current: Dict[str, Any], defn) -> bool:
    if bool(current.get("DynamicMemoryEnabled")) != defn.dynamic_memory:
        return False
    if current.get("MemoryStartup") != vm_api.gib_to_bytes(defn.memory_startup_gb):
        return False
    if defn.dynamic_memory:
        if defn.memory_minimum_gb and current.get("MemoryMinimum") != vm_api.gib_to_bytes(defn.memory_minimum_gb):
            return False
        if defn.memory_maximum_gb and current.get("MemoryMaximum") != vm_api.gib_to_bytes(defn.memory_maximum_gb):
            return False
    return True


@stage_handler(Stage.configure_compute)
def handle_configure_compute(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.configure_compute)
    defn = ctx.definition
    session = ctx.host_session()
    current = {} if planned_only(ctx) else (vm_api.get_vm(session, defn.name) or {})
    running = current.get("State") == "Running"
    changed = False

    if current.get("ProcessorCount") != defn.processor_count:
        if running:
            stage_logger.warning(tr("lifecycle.configure_compute.running", name=defn.name, item="processor"))
        else:
            ctx.changes.apply(
                defn.name, "设置处理器", vm_api.set_vm_processor, session, defn.name, defn.processor_count,
                detail=f"{current.get('ProcessorCount')} -> {defn.processor_count}",
            )
            changed = True
    else:
        ctx.changes.skip(defn.name, "设置处理器", str(defn.processor_count))

    if not _memory_matches(current, defn):
        if running:
            stage_logger.warning(tr("lifecycle.configure_compute.running", name=defn.name, item="memory"))
        else:
            ctx.changes.apply(
                defn.name,
                "设置内存",
                vm_api.set_vm_memory,
                session,
                defn.name,
                startup_gb=defn.memory_startup_gb,
                dynamic=defn.dynamic_memory,
                minimum_gb=defn.memory_minimum_gb,
                maximum_gb=defn.memory_maximum_gb,
                detail=f"{defn.memory_startup_gb}GB dynamic={defn.dynamic_memory}",
            )
            changed = True
    else:
        ctx.changes.skip(defn.name, "设置内存", f"{defn.memory_startup_gb}GB")

    if defn.notes and (current.get("Notes") or "") != defn.notes:
        ctx.changes.apply(defn.name, "设置备注", vm_api.set_vm_notes, session, defn.name, defn.notes)
        changed = True

    return None if changed else STAGE_SKIPPED


@stage_handler(Stage.attach_disks)
def handle_attach_disks(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.attach_disks)
    defn = ctx.definition
    session = ctx.host_session()
    attached = [] if planned_only(ctx) else vm_api.get_vm_hard_disks(session, defn.name)
    by_path = {str(d.get("Path") or "").lower() for d in attached}
    slots = {
        (str(d.get("ControllerType") or "").upper(), int(d.get("ControllerNumber") or 0), int(d.get("ControllerLocation") or 0)): d.get("Path")
        for d in attached
    }
    # 模板部署时系统盘由部署阶段复制并挂载
    boot_by_template = defn.os_deployment.method == DeploymentMethod.VHD
    boot_disk = defn.boot_disk
    changed = False

    for disk in defn.hard_disks:
        if boot_by_template and disk is boot_disk:
            stage_logger.info(tr("lifecycle.attach_disks.boot_from_template", path=disk.path))
            continue
        if disk.path.lower() in by_path:
            ctx.changes.skip(defn.name, "挂载磁盘", disk.path)
            continue
        occupant = slots.get(disk.slot)
        if occupant:
            raise RuntimeError(tr("lifecycle.attach_disks.slot_conflict", slot="/".join(map(str, disk.slot)), path=occupant))

        if vm_api.test_path(session, disk.path):
            stage_logger.info(tr("lifecycle.attach_disks.reuse_vhd", path=disk.path))
        else:
            ctx.changes.apply(
                disk.path, "创建虚拟磁盘", vm_api.new_vhd, session, disk.path, disk.size_gb, dynamic=disk.dynamic,
                detail=f"{disk.size_gb}GB {'dynamic' if disk.dynamic else 'fixed'}",
            )
        ctx.changes.apply(
            defn.name,
            "挂载磁盘",
            vm_api.add_vm_hard_disk,
            session,
            defn.name,
            disk.path,
            controller_type=disk.controller_type.value,
            controller_number=disk.controller_number,
            controller_location=disk.controller_location,
            detail=f"{disk.path} @ {'/'.join(map(str, disk.slot))}",
        )
        slots[disk.slot] = disk.path
        changed = True
    return None if changed else STAGE_SKIPPED


def _vlan_matches(current: Dict[str, Any], nic: NetworkAdapterSpec) -> bool:
    mode = str(current.get("VlanMode") or VlanMode.UNTAGGED.value)
    if mode.lower() != nic.vlan_mode.value.lower():
        return False
    if nic.vlan_mode == VlanMode.ACCESS:
        return int(current.get("VlanId") or 0) == int(nic.vlan_id or 0)
    if nic.vlan_mode == VlanMode.TRUNK:
        wanted = re.sub(r"\s", "", nic.allowed_vlans or "1-4094")
        actual = re.sub(r"\s", "", str(current.get("AllowedVlans") or ""))
        return int(current.get("NativeVlanId") or 0) == int(nic.native_vlan_id or 0) and wanted == actual
    return True


@stage_handler(Stage.attach_adapters)
def handle_attach_adapters(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.attach_adapters)
    defn = ctx.definition
    session = ctx.host_session()
    vm = ctx.vm_name

    if planned_only(ctx):
        current: List[Dict[str, Any]] = [{"Name": DEFAULT_ADAPTER, "SwitchName": None, "DynamicMacAddressEnabled": True}]
        running = False
    else:
        current = vm_api.get_vm_network_adapters(session, vm)
        running = (vm_api.get_vm(session, vm) or {}).get("State") == "Running"
    by_name = {str(a.get("Name")).lower(): a for a in current}
    wanted_names = {n.name.lower() for n in defn.network_adapters}

    for index, nic in enumerate(defn.network_adapters):
        key = nic.name.lower()
        # 声明了 mac_address 即按静态 MAC 处理，与策略字段无关
        static_mac = nic.mac_address or None
        existing = by_name.get(key)

        if existing is None and index == 0 and DEFAULT_ADAPTER.lower() in by_name and DEFAULT_ADAPTER.lower() not in wanted_names:
            ctx.changes.apply(vm, "重命名默认网卡", vm_api.rename_vm_network_adapter, session, vm, DEFAULT_ADAPTER, nic.name,
                              detail=f"{DEFAULT_ADAPTER} -> {nic.name}")
            existing = by_name.pop(DEFAULT_ADAPTER.lower())
            by_name[key] = existing

        if existing is None:
            ctx.changes.apply(
                vm, "添加网卡", vm_api.add_vm_network_adapter, session, vm, nic.name, nic.switch, static_mac=static_mac,
                detail=f"{nic.name} -> {nic.switch}",
            )
            existing = {"Name": nic.name, "SwitchName": nic.switch, "MacAddress": static_mac,
                        "DynamicMacAddressEnabled": static_mac is None}
            by_name[key] = existing
        else:
            if str(existing.get("SwitchName") or "").lower() != nic.switch.lower():
                ctx.changes.apply(vm, "连接交换机", vm_api.connect_vm_network_adapter, session, vm, nic.name, nic.switch,
                                  detail=f"{nic.name} -> {nic.switch}")
            else:
                ctx.changes.skip(vm, "连接交换机", f"{nic.name} -> {nic.switch}")
            if static_mac:
                current_mac = normalize_mac(existing.get("MacAddress")) if existing.get("MacAddress") else None
                if existing.get("DynamicMacAddressEnabled") or current_mac != static_mac:
                    if running:
                        stage_logger.warning(tr("lifecycle.attach_adapters.mac_running", name=vm, adapter=nic.name))
                    else:
                        ctx.changes.apply(vm, "设置静态MAC", vm_api.set_vm_static_mac, session, vm, nic.name, static_mac,
                                          detail=f"{nic.name} {static_mac}")

        if _vlan_matches(existing, nic):
            ctx.changes.skip(vm, "设置 VLAN", f"{nic.name} {nic.vlan_mode.value}")
        else:
            ctx.changes.apply(
                vm,
                "设置 VLAN",
                vm_api.set_vm_network_adapter_vlan,
                session,
                vm,
                nic.name,
                mode=nic.vlan_mode.value,
                vlan_id=nic.vlan_id,
                native_vlan_id=nic.native_vlan_id,
                allowed_vlans=nic.allowed_vlans,
                detail=f"{nic.name} {nic.vlan_mode.value} {nic.vlan_id or nic.allowed_vlans or ''}".rstrip(),
            )

    extras = sorted(set(by_name) - wanted_names)
    if extras:
        stage_logger.warning(tr("lifecycle.attach_adapters.extra_adapters", names=", ".join(extras)))
    return None


@stage_handler(Stage.provision_os)
def handle_provision_os(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.provision_os)
    method = ctx.definition.os_deployment.method
    prov = get_provisioner(method)
    if prov is None:
        stage_logger.info(tr("lifecycle.provision_os.none"))
        return STAGE_SKIPPED
    stage_logger.info(tr("lifecycle.provision_os.start", method=method.value))
    return prov.provision(ctx, stage_logger)


def _ensure_reservation(ctx: RunContext, dhcp, nic: NetworkAdapterSpec, stage_logger) -> str | None:
    defn = ctx.definition
    scope = nic.dhcp_scope
    mac = nic.mac_address
    existing = dhcp_api.get_reservation(dhcp, scope, mac=mac)
    if existing is not None:
        reserved_ip = existing.get("IPAddress")
        if not nic.ip_address or reserved_ip == nic.ip_address:
            ctx.changes.skip(defn.name, "DHCP 保留", f"{scope} {reserved_ip}")
            return reserved_ip
        stage_logger.warning(tr("lifecycle.register_network.reservation_mismatch", mac=mac, actual=reserved_ip, expected=nic.ip_address))
        ctx.changes.apply(defn.name, "删除 DHCP 保留", dhcp_api.remove_reservation, dhcp, scope, mac, detail=f"{scope} {reserved_ip}")

    ip = nic.ip_address or dhcp_api.get_free_ip(dhcp, scope)
    if not ip:
        raise RuntimeError(tr("lifecycle.register_network.scope_full", scope=scope))
    holder = dhcp_api.get_reservation(dhcp, scope, ip=ip)
    if holder is not None:
        raise RuntimeError(tr("lifecycle.register_network.ip_taken", ip=ip, holder=holder.get("Name")))
    ctx.changes.apply(
        defn.name, "DHCP 保留", dhcp_api.add_reservation, dhcp, scope, ip, mac, defn.name,
        description=f"HVPilot {defn.host}", detail=f"{scope} {ip} {mac}",
    )
    return ip


def _ensure_a_record(ctx: RunContext, dns, zone: str, ip: str) -> None:
    name = ctx.vm_name
    records = dns_api.get_a_record(dns, zone, name)
    addresses = {r.get("IPv4Address") for r in records}
    if addresses == {ip}:
        ctx.changes.skip(f"{name}.{zone}", "DNS A 记录", ip)
        return
    if records:
        ctx.changes.apply(f"{name}.{zone}", "删除 DNS A 记录", dns_api.remove_a_record, dns, zone, name,
                          detail=", ".join(sorted(a for a in addresses if a)))
    ctx.changes.apply(f"{name}.{zone}", "DNS A 记录", dns_api.add_a_record, dns, zone, name, ip, detail=ip)


@stage_handler(Stage.register_network)
def handle_register_network(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.register_network)
    defn = ctx.definition
    dhcp = ctx.infra_session("dhcp")
    dns = ctx.infra_session("dns")
    zone = get_section(ctx.config, "infrastructure", "dns").get("zone")
    touched = False

    for nic in defn.network_adapters:
        address = None
        if nic.dhcp_scope:
            if dhcp is None:
                stage_logger.warning(tr("lifecycle.register_network.no_dhcp", adapter=nic.name))
            elif not nic.mac_address:
                stage_logger.warning(tr("lifecycle.register_network.no_mac", adapter=nic.name))
            else:
                address = _ensure_reservation(ctx, dhcp, nic, stage_logger)
                touched = True
        elif nic.ip_mode == IpMode.STATIC:
            address = nic.ip_address

        if not nic.register_dns:
            continue
        if dns is None or not zone:
            stage_logger.warning(tr("lifecycle.register_network.no_dns", adapter=nic.name))
            continue
        if not address:
            stage_logger.warning(tr("lifecycle.register_network.no_address", adapter=nic.name))
            continue
        _ensure_a_record(ctx, dns, zone, address)
        touched = True

    return None if touched else STAGE_SKIPPED


@stage_handler(Stage.join_cluster)
def handle_join_cluster(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.join_cluster)
    defn = ctx.definition
    placement = defn.cluster
    if not placement.clustered:
        stage_logger.info(tr("lifecycle.join_cluster.not_clustered", name=defn.name))
        return STAGE_SKIPPED

    session = ctx.host_session()
    group = None if planned_only(ctx) else cluster_api.get_cluster_group(session, defn.name)
    if group is None:
        ctx.changes.apply(defn.name, "加入集群", cluster_api.add_cluster_vm_role, session, defn.name, detail=defn.host)
        group = {} if ctx.dry_run else (cluster_api.get_cluster_group(session, defn.name) or {})
    else:
        ctx.changes.skip(defn.name, "加入集群", str(group.get("OwnerNode") or ""))

    if group.get("Priority") != placement.priority_value:
        ctx.changes.apply(defn.name, "集群优先级", cluster_api.set_cluster_group_priority, session, defn.name,
                          placement.priority_value, detail=placement.priority)

    wanted_classes = sorted(placement.anti_affinity_classes)
    if wanted_classes and sorted(group.get("AntiAffinityClassNames") or []) != wanted_classes:
        ctx.changes.apply(defn.name, "反亲和分组", cluster_api.set_cluster_group_anti_affinity, session, defn.name,
                          wanted_classes, detail=", ".join(wanted_classes))

    if placement.preferred_owners:
        nodes = {str(n.get("Name")).lower() for n in cluster_api.get_cluster_nodes(session)}
        unknown = [o for o in placement.preferred_owners if o.lower() not in nodes]
        if unknown:
            raise RuntimeError(f"首选节点不是集群成员: {', '.join(unknown)}")
        owners = [] if not group else cluster_api.get_cluster_group_owners(session, defn.name)
        if [o.lower() for o in owners] != [o.lower() for o in placement.preferred_owners]:
            ctx.changes.apply(defn.name, "首选节点", cluster_api.set_cluster_group_preferred_owners, session,
                              defn.name, placement.preferred_owners, detail=", ".join(placement.preferred_owners))
    return None
