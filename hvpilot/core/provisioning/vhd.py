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

"""模板磁盘部署：复制已 sysprep 的 VHDX 作为系统盘。"""
from __future__ import annotations

from hvpilot.integrations.hyperv import vm_api
from hvpilot.models import DeploymentMethod
from .base import Provisioner, ensure_first_boot, provisioner


@provisioner(DeploymentMethod.VHD)
class VhdProvisioner(Provisioner):

    def provision(self, ctx, log):
        defn = ctx.definition
        template = defn.os_deployment.template_vhd_path
        boot = defn.boot_disk
        if not template:
            raise RuntimeError(f"虚机 {defn.name} 部署方式为 vhd 但未提供 template_vhd_path")
        if boot is None:
            raise RuntimeError(f"虚机 {defn.name} 未定义系统盘")
        session = ctx.host_session()

        # 目标已存在时不覆盖，避免抹掉已部署的系统
        if vm_api.test_path(session, boot.path):
            ctx.changes.skip(boot.path, "复制模板磁盘", template)
        else:
            ctx.changes.apply(
                boot.path, "复制模板磁盘", vm_api.copy_file, session, template, boot.path, detail=template
            )

        attached = [] if ctx.extra.get("vm_planned_only") else vm_api.get_vm_hard_disks(session, defn.name)
        if any(str(d.get("Path") or "").lower() == boot.path.lower() for d in attached):
            ctx.changes.skip(defn.name, "挂载系统盘", boot.path)
        else:
            ctx.changes.apply(
                defn.name,
                "挂载系统盘",
                vm_api.add_vm_hard_disk,
                session,
                defn.name,
                boot.path,
                controller_type=boot.controller_type.value,
                controller_number=boot.controller_number,
                controller_location=boot.controller_location,
                detail=boot.path,
            )

        ensure_first_boot(ctx, log, "disk", disk_path=boot.path)
        return None
