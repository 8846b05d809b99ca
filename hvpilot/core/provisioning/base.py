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

"""系统部署方式注册表与公共步骤。

每种部署方式实现 ``provision``（新建时调用）与 ``remove``（删除时清理外部记录）。
返回 ``None`` 表示阶段完成，返回 ``"skipped"`` 表示无需处理。
"""
from __future__ import annotations

import logging
from typing import Dict, Optional, Type

from hvpilot.core.lifecycle.runtime_context import RunContext
from hvpilot.core.lifecycle.stage_manager import STAGE_SKIPPED
from hvpilot.integrations.hyperv import vm_api
from hvpilot.models import DeploymentMethod, VmDefinition

logger = logging.getLogger(__name__)

_PROVISIONERS: Dict[DeploymentMethod, Type["Provisioner"]] = {}


def provisioner(method: DeploymentMethod):  # decorator
    def wrapper(cls):
        cls.method = method
        _PROVISIONERS[method] = cls
        return cls
    return wrapper


def get_provisioner(method: DeploymentMethod | str) -> Optional["Provisioner"]:
    """返回部署方式对应的实例；``none`` 返回 ``None``。"""
    key = DeploymentMethod(method)
    if key == DeploymentMethod.NONE:
        return None
    cls = _PROVISIONERS.get(key)
    if cls is None:
        raise ValueError(f"不支持的部署方式: {key.value}")
    return cls()


class Provisioner:
    method: DeploymentMethod = DeploymentMethod.NONE

    def provision(self, ctx: RunContext, log) -> Optional[str]:
        raise NotImplementedError

    def remove(self, ctx: RunContext, log) -> Optional[str]:
        log.info("部署方式 %s 无外部记录需要清理", self.method.value)
        return STAGE_SKIPPED


def first_adapter_mac(defn: VmDefinition) -> str:
    """网络部署依赖首块网卡的静态 MAC。"""
    if defn.generation == 1:
        raise RuntimeError(f"虚机 {defn.name} 为第一代，合成网卡无法 PXE 启动，不支持网络部署")
    nic = defn.network_adapters[0] if defn.network_adapters else None
    if nic is None or not nic.mac_address:
        raise RuntimeError(f"虚机 {defn.name} 的首块网卡未配置静态 MAC，无法进行网络部署")
    return nic.mac_address


def ensure_first_boot(ctx: RunContext, log, device: str, *, disk_path: str | None = None) -> None:
    defn = ctx.definition
    session = ctx.host_session()
    current = None
    if not ctx.extra.get("vm_planned_only"):
        current = vm_api.get_vm_first_boot_device(session, defn.name, defn.generation)
    if current and current.get("device") == device:
        same_disk = device != "disk" or not disk_path or not current.get("path") \
            or str(current["path"]).lower() == disk_path.lower()
        if same_disk:
            ctx.changes.skip(defn.name, "首启动设备", device)
            return
    ctx.changes.apply(
        defn.name,
        "首启动设备",
        vm_api.set_vm_first_boot_device,
        session,
        defn.name,
        device=device,
        generation=defn.generation,
        disk_path=disk_path,
        detail=device,
    )
