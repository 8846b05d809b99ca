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

"""巡检报告：用 rich 表格渲染成纯文本文件。"""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from hvpilot.models import DriftRecord, HostInventory

logger = logging.getLogger(__name__)

REPORT_WIDTH = 200
SECTIONS = ("adapters", "switches", "vms")


def _text(value) -> str:
    if value is None or value == "":
        return "-"
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value) or "-"
    return str(value)


def _adapter_table(inventory: HostInventory) -> Table:
    table = Table(title=f"{inventory.host} 网卡", box=box.ASCII, title_justify="left")
    for column in ("Name", "MAC", "Status", "LinkSpeed", "VLAN", "RDMA", "Jumbo", "IP", "Virtual", "Description"):
        table.add_column(column)
    for a in sorted(inventory.adapters, key=lambda item: item.name.lower()):
        table.add_row(
            a.name, _text(a.mac_address), _text(a.status), _text(a.link_speed), _text(a.vlan_id),
            _text(a.rdma_enabled), _text(a.jumbo_packet), _text(a.ip_addresses), _text(a.virtual), _text(a.description),
        )
    return table


def _switch_table(inventory: HostInventory) -> Table:
    table = Table(title=f"{inventory.host} 虚拟交换机", box=box.ASCII, title_justify="left")
    for column in ("Name", "Type", "SET", "Members"):
        table.add_column(column)
    for s in inventory.switches:
        table.add_row(s.name, _text(s.switch_type), _text(s.embedded_teaming), _text(s.members))
    return table


def _vm_table(inventory: HostInventory) -> Table:
    table = Table(title=f"{inventory.host} 虚机", box=box.ASCII, title_justify="left")
    for column in ("VM", "State", "CPU", "MemoryGB", "Clustered", "Adapter", "Switch", "MAC", "VLAN", "IP"):
        table.add_column(column)
    for vm in sorted(inventory.vms, key=lambda item: item.name.lower()):
        base = [vm.name, _text(vm.state), _text(vm.processor_count), _text(vm.memory_gb), _text(vm.clustered)]
        if not vm.adapters:
            table.add_row(*base, "-", "-", "-", "-", "-")
            continue
        for idx, nic in enumerate(vm.adapters):
            # 同一虚机的后续网卡行不重复虚机列
            lead = base if idx == 0 else [""] * len(base)
            table.add_row(
                *lead, nic.name, _text(nic.switch), _text(nic.mac_address), _text(nic.vlan_id), _text(nic.ip_addresses)
            )
    return table


def _drift_table(drift: Sequence[DriftRecord]) -> Table:
    table = Table(title="配置偏差", box=box.ASCII, title_justify="left")
    for column in ("Host", "Adapter", "Field", "Expected", "Actual"):
        table.add_column(column)
    for d in drift:
        table.add_row(d.host, d.adapter, d.field, _text(d.expected), _text(d.actual))
    return table


def write_report(
    inventories: Iterable[HostInventory],
    path: str | Path,
    drift: Optional[Sequence[DriftRecord]] = None,
    *,
    sections: Sequence[str] = SECTIONS,
) -> Path:
    unknown = [s for s in sections if s not in SECTIONS]
    if unknown:
        raise ValueError(f"未知报告章节: {', '.join(unknown)}")

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    items: List[HostInventory] = list(inventories)

    with target.open("w", encoding="utf-8") as fh:
        console = Console(file=fh, width=REPORT_WIDTH, no_color=True, force_terminal=False, highlight=False)
        console.print(f"HVPilot 巡检报告  {datetime.now():%Y-%m-%d %H:%M:%S}  主机数: {len(items)}")
        for inventory in items:
            console.print()
            console.rule(inventory.host, style="none")
            if inventory.error:
                console.print(f"巡检失败: {inventory.error}", markup=False)
                continue
            if "adapters" in sections:
                console.print(_adapter_table(inventory))
            if "switches" in sections:
                console.print(_switch_table(inventory))
            if "vms" in sections:
                console.print(_vm_table(inventory))
        if drift is not None:
            console.print()
            if drift:
                console.print(_drift_table(drift))
            else:
                console.print("与映射表无偏差")

    logger.info("巡检报告已写入 %s", target)
    return target
