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

"""WDS 网络部署：按静态 MAC 预置客户端，首启动设备设为网卡。"""
from __future__ import annotations

from hvpilot.common.config import get_section
from hvpilot.common.ip_utils import normalize_mac
from hvpilot.core.lifecycle.stage_manager import STAGE_SKIPPED
from hvpilot.integrations.infrastructure import wds_api
from hvpilot.models import DeploymentMethod
from .base import Provisioner, ensure_first_boot, first_adapter_mac, provisioner


def _wds_session(ctx):
    server = ctx.definition.os_deployment.wds_server or ctx.infra_server("wds")
    if not server:
        return None
    return ctx.session_for(server)


@provisioner(DeploymentMethod.WDS)
class WdsProvisioner(Provisioner):

    def provision(self, ctx, log):
        defn = ctx.definition
        mac = first_adapter_mac(defn)
        wds = _wds_session(ctx)
        if wds is None:
            raise RuntimeError("部署方式为 wds 但未配置 WDS 服务器")
        boot_image = defn.os_deployment.boot_image or get_section(ctx.config, "infrastructure", "wds").get("boot_image")

        client = wds_api.get_wds_client(wds, defn.name)
        if client is not None and normalize_mac(client.get("DeviceID")) != mac:
            log.warning("WDS 客户端 %s 的 MAC %s 与定义不符，重新预置", defn.name, client.get("DeviceID"))
            ctx.changes.apply(defn.name, "删除 WDS 客户端", wds_api.remove_wds_client, wds, defn.name)
            client = None
        if client is None:
            ctx.changes.apply(
                defn.name,
                "预置 WDS 客户端",
                wds_api.new_wds_client,
                wds,
                defn.name,
                mac,
                boot_image=boot_image or None,
                group=defn.os_deployment.wds_group,
                unattend_file=defn.os_deployment.unattend_file,
                detail=mac,
            )
        else:
            ctx.changes.skip(defn.name, "预置 WDS 客户端", mac)

        ensure_first_boot(ctx, log, "network")
        return None

    def remove(self, ctx, log):
        defn = ctx.definition
        wds = _wds_session(ctx)
        if wds is None:
            log.warning("未配置 WDS 服务器，跳过 WDS 客户端清理")
            return STAGE_SKIPPED
        if wds_api.get_wds_client(wds, defn.name) is None:
            ctx.changes.skip(defn.name, "删除 WDS 客户端", "不存在")
            return STAGE_SKIPPED
        ctx.changes.apply(defn.name, "删除 WDS 客户端", wds_api.remove_wds_client, wds, defn.name)
        return None
