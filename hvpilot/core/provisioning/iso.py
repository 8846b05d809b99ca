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

"""ISO 安装：挂载光驱并从光驱启动。"""
from __future__ import annotations

from hvpilot.integrations.hyperv import vm_api
from hvpilot.models import DeploymentMethod
from .base import Provisioner, ensure_first_boot, provisioner


@provisioner(DeploymentMethod.ISO)
class IsoProvisioner(Provisioner):

    def provision(self, ctx, log):
        defn = ctx.definition
        iso = defn.os_deployment.iso_path
        if not iso:
            raise RuntimeError(f"虚机 {defn.name} 部署方式为 iso 但未提供 iso_path")
        session = ctx.host_session()
        drives = [] if ctx.extra.get("vm_planned_only") else vm_api.get_vm_dvd_drives(session, defn.name)

        if not drives:
            ctx.changes.apply(defn.name, "添加光驱", vm_api.add_vm_dvd_drive, session, defn.name, iso, detail=iso)
        elif any(str(d.get("Path") or "").lower() == iso.lower() for d in drives):
            ctx.changes.skip(defn.name, "挂载 ISO", iso)
        else:
            log.info("光驱当前介质为 %s，替换为 %s", drives[0].get("Path"), iso)
            ctx.changes.apply(defn.name, "挂载 ISO", vm_api.set_vm_dvd_media, session, defn.name, iso, detail=iso)

        ensure_first_boot(ctx, log, "dvd")
        return None
