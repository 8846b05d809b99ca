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

"""详细验证规则：在基础模型校验后进行语义与冲突检查。"""
from __future__ import annotations
import re
from collections import Counter
from typing import Dict, List, Set, Tuple

from hvpilot.common.ip_utils import address_in_subnet, validate_cidrs
from hvpilot.models import (
    ControllerType,
    DeploymentMethod,
    IpMode,
    MacPolicy,
    NetworkMapping,
    VlanMode,
    VmDefinition,
)

NETBIOS_MAX = 15
_VLAN_LIST_RE = re.compile(r"^\s*\d+(\s*-\s*\d+)?(\s*,\s*\d+(\s*-\s*\d+)?)*\s*$")


def validate_vm_definition(defn: VmDefinition) -> dict:
    errors: List[str] = []
    warnings: List[str] = []
    method = defn.os_deployment.method

    # 磁盘槽位 / 路径
    slots = Counter(d.slot for d in defn.hard_disks)
    for slot, count in slots.items():
        if count > 1:
            errors.append(f"磁盘控制器槽位重复: {slot[0]} {slot[1]}:{slot[2]}")
    paths = Counter(d.path.lower() for d in defn.hard_disks)
    for path, count in paths.items():
        if count > 1:
            errors.append(f"磁盘路径重复: {path}")
    boot_disks = [d for d in defn.hard_disks if d.boot]
    if len(boot_disks) > 1:
        errors.append(f"存在多个启动盘: {[d.path for d in boot_disks]}")
    for disk in defn.hard_disks:
        if defn.generation == 2 and disk.controller_type == ControllerType.IDE:
            errors.append(f"第二代虚机不支持 IDE 控制器: {disk.path}")
        if disk.controller_type == ControllerType.IDE and (disk.controller_number > 1 or disk.controller_location > 1):
            errors.append(f"IDE 控制器槽位超出范围(0-1:0-1): {disk.path}")
        if not disk.path.lower().endswith((".vhdx", ".vhd")):
            warnings.append(f"磁盘路径扩展名不是 .vhdx/.vhd: {disk.path}")
    if defn.generation == 1 and defn.boot_disk and defn.boot_disk.controller_type != ControllerType.IDE:
        errors.append(f"第一代虚机只能从 IDE 磁盘启动: {defn.boot_disk.path}")
    if not defn.hard_disks and method in (DeploymentMethod.NONE, DeploymentMethod.ISO):
        warnings.append("未定义任何磁盘")

    # 内存
    if defn.dynamic_memory:
        low = defn.memory_minimum_gb or defn.memory_startup_gb
        high = defn.memory_maximum_gb or defn.memory_startup_gb
        if not low <= defn.memory_startup_gb <= high:
            errors.append(
                f"动态内存范围不一致: 最小 {low}GB / 启动 {defn.memory_startup_gb}GB / 最大 {high}GB"
            )
    elif defn.memory_minimum_gb or defn.memory_maximum_gb:
        warnings.append("未启用动态内存，memory_minimum_gb/memory_maximum_gb 将被忽略")

    # 网卡
    names = Counter(n.name.lower() for n in defn.network_adapters)
    for name, count in names.items():
        if count > 1:
            errors.append(f"网卡名称重复: {name}")
    macs = Counter(n.mac_address for n in defn.network_adapters if n.mac_address)
    for mac, count in macs.items():
        if count > 1:
            errors.append(f"MAC 地址重复: {mac}")
    ips: List[str] = []
    for nic in defn.network_adapters:
        label = f"网卡 {nic.name}"
        if nic.mac_policy == MacPolicy.STATIC and not nic.mac_address:
            errors.append(f"{label} 为静态 MAC 但未提供 mac_address")
        if nic.mac_address and nic.mac_policy == MacPolicy.DYNAMIC:
            warnings.append(f"{label} 提供了 mac_address 但策略为 Dynamic，将按静态 MAC 处理")
        if nic.vlan_mode == VlanMode.ACCESS and nic.vlan_id is None:
            errors.append(f"{label} VLAN 模式为 Access 但缺少 vlan_id")
        if nic.vlan_mode == VlanMode.TRUNK:
            if not nic.allowed_vlans:
                warnings.append(f"{label} Trunk 未指定 allowed_vlans，默认放行 1-4094")
            elif not _VLAN_LIST_RE.match(nic.allowed_vlans):
                errors.append(f"{label} allowed_vlans 格式非法: {nic.allowed_vlans}")
        if nic.ip_mode == IpMode.STATIC:
            if not nic.ip_address:
                errors.append(f"{label} 为静态 IP 但缺少 ip_address")
            elif nic.prefix_length is None:
                errors.append(f"{label} 静态 IP 缺少 prefix_length")
            else:
                ips.append(f"{nic.ip_address}/{nic.prefix_length}")
                if nic.gateway and not address_in_subnet(nic.gateway, nic.ip_address, nic.prefix_length):
                    warnings.append(f"{label} 网关 {nic.gateway} 不在 {nic.ip_address}/{nic.prefix_length} 子网内")
        if nic.dhcp_scope and not nic.mac_address:
            errors.append(f"{label} 需要 DHCP 保留但没有静态 MAC")
        if nic.register_dns and not (nic.ip_address or nic.dhcp_scope):
            warnings.append(f"{label} 要求注册 DNS 但没有可用地址")
    _, cidr_errors, _ = validate_cidrs(ips)
    errors.extend(cidr_errors)

    # 部署方式
    deploy = defn.os_deployment
    if method == DeploymentMethod.ISO and not deploy.iso_path:
        errors.append("ISO 部署缺少 iso_path")
    if method == DeploymentMethod.VHD:
        if not deploy.template_vhd_path:
            errors.append("VHD 部署缺少 template_vhd_path")
        if not defn.hard_disks:
            errors.append("VHD 部署需要至少一块启动盘")
    if method in (DeploymentMethod.WDS, DeploymentMethod.SCCM):
        if defn.generation == 1:
            errors.append(f"第一代虚机不支持 {method.value.upper()} 网络部署（添加的是合成网卡，无法 PXE 启动）")
        boot_nic = defn.network_adapters[0] if defn.network_adapters else None
        if boot_nic is None:
            errors.append(f"{method.value.upper()} 部署需要至少一块网卡")
        elif not boot_nic.mac_address:
            errors.append(f"{method.value.upper()} 部署要求首块网卡使用静态 MAC")
    if method == DeploymentMethod.SCCM and not deploy.sccm_collection:
        errors.append("SCCM 部署缺少 sccm_collection")
    if (deploy.domain_join or any(n.register_dns for n in defn.network_adapters)) and len(defn.name) > NETBIOS_MAX:
        warnings.append(f"虚机名 {defn.name} 超过 {NETBIOS_MAX} 个字符，计算机名将被截断")

    # 集群
    cluster = defn.cluster
    if not cluster.clustered and (cluster.anti_affinity_classes or cluster.preferred_owners):
        warnings.append("未加入集群，anti_affinity_classes / preferred_owners 将被忽略")
    if cluster.clustered and not is_shared_storage_path(defn.path):
        warnings.append(f"集群虚机路径 {defn.path} 不在共享存储(ClusterStorage/SMB)上")

    return {"errors": errors, "warnings": warnings, "ok": not errors}


def is_shared_storage_path(path: str) -> bool:
    """SMB 共享或 CSV 卷上的路径，集群内各节点看到的是同一份文件。"""
    lowered = path.lower()
    return lowered.startswith("\\\\") or "clusterstorage" in lowered


def validate_network_mapping(mapping: NetworkMapping) -> dict:
    errors: List[str] = []
    warnings: List[str] = []

    if not mapping.rows:
        errors.append("网络映射表为空")

    seen: Dict[Tuple[str, str], int] = {}
    host_macs: Set[Tuple[str, str]] = set()
    all_ips: Counter = Counter()
    cidrs: List[str] = []
    bandwidth: Counter = Counter()
    for row in mapping.rows:
        host = row.host.lower()
        key = (host, row.target_name.lower())
        seen[key] = seen.get(key, 0) + 1
        if row.mac_address:
            if (host, row.mac_address) in host_macs:
                errors.append(f"{row.host} MAC 地址重复: {row.mac_address}")
            host_macs.add((host, row.mac_address))
        if row.ip_address is not None:
            all_ips[str(row.ip_address)] += 1
            if row.prefix_length is None:
                errors.append(f"{row.host}/{row.target_name} 缺少前缀长度")
            else:
                cidrs.append(f"{row.ip_address}/{row.prefix_length}")
                if row.gateway and not address_in_subnet(str(row.gateway), str(row.ip_address), row.prefix_length):
                    warnings.append(f"{row.host}/{row.target_name} 网关 {row.gateway} 不在子网内")
        if row.role == "host_vnic" and not row.switch:
            errors.append(f"{row.host}/{row.target_name} 为管理 OS 虚拟网卡但未指定交换机")
        if row.role != "physical" and row.rdma:
            warnings.append(f"{row.host}/{row.target_name} 非物理网卡启用 RDMA，需确认交换机支持")
        if row.role != "physical" and row.jumbo_packet:
            warnings.append(f"{row.host}/{row.target_name} 巨帧仅作用于物理网卡")
        if row.role == "physical" and row.switch and row.ip_address is not None:
            warnings.append(f"{row.host}/{row.target_name} 为交换机成员，IP 应配置在虚拟网卡上")
        if row.qos_bandwidth_percent:
            bandwidth[host] += row.qos_bandwidth_percent
        if row.qos_bandwidth_percent and row.qos_priority is None:
            errors.append(f"{row.host}/{row.target_name} 设置了带宽但缺少 qos_priority")

    for (host, name), count in seen.items():
        if count > 1:
            errors.append(f"{host} 适配器重复: {name}")
    for ip, count in all_ips.items():
        if count > 1:
            errors.append(f"IP 地址重复: {ip}")
    for host, total in bandwidth.items():
        if total >= 100:
            errors.append(f"{host} QoS 带宽合计 {total}% 超过上限")
    _, cidr_errors, _ = validate_cidrs(cidrs)
    errors.extend(cidr_errors)

    return {"errors": errors, "warnings": warnings, "ok": not errors}
