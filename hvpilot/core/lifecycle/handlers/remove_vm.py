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

# 删除虚机及其外部依赖：集群角色、DHCP/DNS、部署记录、AD 对象、磁盘文件
from __future__ import annotations

import logging
from typing import List

from hvpilot.common.config import get_section
from hvpilot.common.i18n import tr
from hvpilot.common.ip_utils import normalize_mac
from hvpilot.core.lifecycle.runtime_context import RunContext
from hvpilot.core.lifecycle.stage_manager import STAGE_SKIPPED, Stage, stage_handler
from hvpilot.core.provisioning import get_provisioner
from hvpilot.integrations.hyperv import cluster_api, vm_api
from hvpilot.integrations.infrastructure import ad_api, dhcp_api, dns_api
from .common import stage_logger_for, vm_folder

logger = logging.getLogger(__name__)


def _snapshot(ctx: RunContext) -> dict:
    return ctx.extra.setdefault("vm_snapshot", {})


@stage_handler(Stage.prepare_removal)
def handle_prepare_removal(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.prepare_removal)
    defn = ctx.definition
    session = ctx.host_session()
    snapshot = _snapshot(ctx)

    vm = vm_api.get_vm(session, defn.name)
    if vm is None:
        stage_logger.warning(tr("lifecycle.prepare_removal.vm_absent", name=defn.name, host=defn.host))
        ctx.extra["vm_absent"] = True
        snapshot.update(
            {
                "disks": [d.path for d in defn.hard_disks],
                "macs": [n.mac_address for n in defn.network_adapters if n.mac_address],
                "clustered": defn.cluster.clustered,
            }
        )
        return STAGE_SKIPPED

    disks = [str(d.get("Path")) for d in vm_api.get_vm_hard_disks(session, defn.name) if d.get("Path")]
    macs: List[str] = []
    for adapter in vm_api.get_vm_network_adapters(session, defn.name):
        mac = adapter.get("MacAddress")
        if mac and normalize_mac(mac) != "000000000000":
            macs.append(normalize_mac(mac))
    for nic in defn.network_adapters:
        if nic.mac_address and nic.mac_address not in macs:
            macs.append(nic.mac_address)

    snapshot.update(
        {
            "state": vm.get("State"),
            "disks": disks,
            "macs": macs,
            "clustered": bool(vm.get("IsClustered")) or defn.cluster.clustered,
        }
    )
    stage_logger.info(tr("lifecycle.prepare_removal.snapshot"), progress_extra=dict(snapshot))
    return None


@stage_handler(Stage.leave_cluster)
def handle_leave_cluster(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.leave_cluster)
    name = ctx.vm_name
    if not _snapshot(ctx).get("clustered"):
        stage_logger.info(tr("lifecycle.join_cluster.not_clustered", name=name))
        return STAGE_SKIPPED
    session = ctx.host_session()
    if cluster_api.get_cluster_group(session, name) is None:
        ctx.changes.skip(name, "移出集群", "集群角色不存在")
        return STAGE_SKIPPED
    ctx.changes.apply(name, "移出集群", cluster_api.remove_cluster_group, session, name)
    return None


@stage_handler(Stage.unregister_network)
def handle_unregister_network(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.unregister_network)
    defn = ctx.definition
    macs = _snapshot(ctx).get("macs") or []
    scopes = sorted({n.dhcp_scope for n in defn.network_adapters if n.dhcp_scope})
    touched = False

    dhcp = ctx.infra_session("dhcp")
    if scopes and dhcp is None:
        stage_logger.warning(tr("lifecycle.register_network.no_dhcp", adapter="*"))
    elif dhcp is not None:
        for scope in scopes:
            for mac in macs:
                if dhcp_api.get_reservation(dhcp, scope, mac=mac) is None:
                    ctx.changes.skip(defn.name, "删除 DHCP 保留", f"{scope} {mac}")
                else:
                    ctx.changes.apply(defn.name, "删除 DHCP 保留", dhcp_api.remove_reservation, dhcp, scope, mac,
                                      detail=f"{scope} {mac}")
                ctx.changes.apply(defn.name, "清除 DHCP 租约", dhcp_api.remove_lease, dhcp, scope, mac,
                                  detail=f"{scope} {mac}")
                touched = True

    dns = ctx.infra_session("dns")
    zone = get_section(ctx.config, "infrastructure", "dns").get("zone")
    if dns is None or not zone:
        if any(n.register_dns for n in defn.network_adapters):
            stage_logger.warning(tr("lifecycle.register_network.no_dns", adapter="*"))
    elif dns_api.get_a_record(dns, zone, defn.name):
        ctx.changes.apply(f"{defn.name}.{zone}", "删除 DNS A 记录", dns_api.remove_a_record, dns, zone, defn.name)
        touched = True
    else:
        ctx.changes.skip(f"{defn.name}.{zone}", "删除 DNS A 记录", "不存在")

    return None if touched else STAGE_SKIPPED


@stage_handler(Stage.remove_deployment_records)
def handle_remove_deployment_records(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.remove_deployment_records)
    prov = get_provisioner(ctx.definition.os_deployment.method)
    if prov is None:
        stage_logger.info(tr("lifecycle.provision_os.none"))
        return STAGE_SKIPPED
    return prov.remove(ctx, stage_logger)


@stage_handler(Stage.remove_ad_computer)
def handle_remove_ad_computer(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.remove_ad_computer)
    name = ctx.vm_name
    ad = ctx.infra_session("ad")
    if ad is None:
        stage_logger.warning(tr("lifecycle.remove_ad_computer.no_server"))
        return STAGE_SKIPPED
    computer = ad_api.get_computer(ad, name)
    if computer is None:
        ctx.changes.skip(name, "删除 AD 计算机", "不存在")
        return STAGE_SKIPPED
    dn = computer.get("DistinguishedName")
    ctx.changes.apply(name, "删除 AD 计算机", ad_api.remove_computer, ad, dn, detail=dn)
    return None


@stage_handler(Stage.remove_vm)
def handle_remove_vm(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger_for(ctx, Stage.remove_vm)
    name = ctx.vm_name
    session = ctx.host_session()
    if ctx.extra.get("vm_absent") or vm_api.get_vm(session, name) is None:
        ctx.changes.skip(name, "删除虚机", "不存在")
        return STAGE_SKIPPED
    ctx.changes.apply(name, "删除虚机", vm_api.remove_vm, session, name, detail=ctx.current_host)
    return None


@stage_handler(Stage.remove_files)
def handle_remove_files(ctx_dict):
    ctx: RunContext = ctx_dict["ctx"]
    stage_logger = stage_logger_for(ctx, Stage.remove_files)
    defn = ctx.definition
    paths = list(_snapshot(ctx).get("disks") or [d.path for d in defn.hard_disks])
    paths.append(vm_folder(defn.path, defn.name))

    if not ctx.options.get("force"):
        stage_logger.warning(tr("lifecycle.remove_files.force_required", count=len(paths)))
        for path in paths:
            ctx.changes.skip(path, "删除文件", "未指定 --force")
        return STAGE_SKIPPED

    session = ctx.host_session()
    for path in paths:
        if vm_api.test_path(session, path):
            ctx.changes.apply(path, "删除文件", vm_api.remove_path, session, path)
        else:
            ctx.changes.skip(path, "删除文件", "不存在")
    return None
