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

"""SCCM 任务序列部署。

设备查询走 AdminService（HTTP），导入与集合刷新走站点服务器上的 ConfigurationManager cmdlet。
"""
from __future__ import annotations

from hvpilot.common.config import get_section
from hvpilot.common.ip_utils import format_mac, normalize_mac
from hvpilot.core.lifecycle.stage_manager import STAGE_SKIPPED
from hvpilot.integrations.sccm import AdminServiceClient, import_computer, remove_device, update_collection_membership
from hvpilot.models import DeploymentMethod
from .base import Provisioner, ensure_first_boot, first_adapter_mac, provisioner


def _site(ctx):
    server = ctx.infra_server("sccm")
    site_code = get_section(ctx.config, "infrastructure", "sccm").get("site_code")
    return server, site_code


def _device_macs(device) -> set:
    raw = device.get("MACAddresses") or []
    if isinstance(raw, str):
        raw = [raw]
    return {normalize_mac(m) for m in raw if m}


@provisioner(DeploymentMethod.SCCM)
class SccmProvisioner(Provisioner):

    def provision(self, ctx, log):
        defn = ctx.definition
        mac = first_adapter_mac(defn)
        server, site_code = _site(ctx)
        collection = defn.os_deployment.sccm_collection
        if not server or not site_code:
            raise RuntimeError("部署方式为 sccm 但未配置站点服务器或站点代码")
        if not collection:
            raise RuntimeError(f"虚机 {defn.name} 未指定 sccm_collection")

        client = AdminServiceClient.from_config(ctx.config or {})
        site = ctx.session_for(server)
        device = client.find_device(defn.name)
        if device is not None and mac not in _device_macs(device):
            log.warning(
                "SCCM 设备 %s 的 MAC %s 与定义的 %s 不一致，删除后重新导入",
                defn.name, device.get("MACAddresses"), format_mac(mac, sep=":"),
            )
            ctx.changes.apply(defn.name, "删除 SCCM 设备", remove_device, site, site_code, defn.name,
                              detail=f"ResourceId={device.get('ResourceId')}")
            device = None

        if device is not None:
            log.info("SCCM 中已存在设备 %s (ResourceId=%s)", defn.name, device.get("ResourceId"))
            ctx.changes.skip(defn.name, "导入 SCCM 计算机", collection)
        else:
            holder = client.find_device_by_mac(mac)
            if holder is not None and str(holder.get("Name") or "").lower() != defn.name.lower():
                raise RuntimeError(f"MAC {format_mac(mac, sep=':')} 已被 SCCM 设备 {holder.get('Name')} 占用")
            ctx.changes.apply(
                defn.name, "导入 SCCM 计算机", import_computer, site, site_code, defn.name, mac, collection,
                detail=f"{collection} {mac}",
            )
            ctx.changes.apply(collection, "刷新集合成员", update_collection_membership, site, site_code, collection)

        ensure_first_boot(ctx, log, "network")
        return None

    def remove(self, ctx, log):
        defn = ctx.definition
        server, site_code = _site(ctx)
        if not server or not site_code:
            log.warning("未配置 SCCM 站点，跳过设备清理")
            return STAGE_SKIPPED
        client = AdminServiceClient.from_config(ctx.config or {})
        if client.find_device(defn.name) is None:
            ctx.changes.skip(defn.name, "删除 SCCM 设备", "不存在")
            return STAGE_SKIPPED
        ctx.changes.apply(defn.name, "删除 SCCM 设备", remove_device, ctx.session_for(server), site_code, defn.name)
        return None
