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

"""宿主机网络：物理网卡、QoS、SET 交换机、管理 OS 虚拟网卡与 IP 地址。"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from hvpilot.integrations.winrm.powershell import build_command, ps_quote, ps_value

ADAPTER_FIELDS = (
    "Name, InterfaceDescription, MacAddress, Status, LinkSpeed, VlanID, ifIndex"
)

# New-NetQosPolicy 内置模板对应的开关参数
QOS_TEMPLATES = {
    "smb": "SMB",
    "cluster": "Cluster",
    "livemigration": "LiveMigration",
    "default": "Default",
    "iscsi": "iSCSI",
    "nfs": "NFS",
}


def host_vnic_alias(name: str) -> str:
    """管理 OS 虚拟网卡在网络栈中的接口别名。"""
    return f"vEthernet ({name})"


def get_net_adapters(session, *, physical_only: bool = False) -> List[Dict[str, Any]]:
    cmd = "Get-NetAdapter -Physical" if physical_only else "Get-NetAdapter"
    return session.invoke_json(f"{cmd} | Select-Object {ADAPTER_FIELDS}", context="查询网卡")


def rename_net_adapter(session, current: str, new_name: str) -> None:
    session.invoke(
        build_command("Rename-NetAdapter", {"Name": current, "NewName": new_name}),
        context=f"重命名网卡 {current} -> {new_name}",
    )


def set_adapter_advanced_property(session, adapter: str, keyword: str, value: Any) -> None:
    session.invoke(
        build_command(
            "Set-NetAdapterAdvancedProperty",
            {"Name": adapter, "RegistryKeyword": keyword, "RegistryValue": str(value)},
        ),
        context=f"设置网卡 {adapter} {keyword}={value}",
    )


def get_jumbo_packets(session) -> Dict[str, Optional[int]]:
    """全部网卡的 ``*JumboPacket`` 取值，按网卡名索引。"""
    script = (
        "Get-NetAdapterAdvancedProperty -RegistryKeyword '*JumboPacket' -ErrorAction SilentlyContinue | "
        "Select-Object Name, @{n='RegistryValue';e={@($_.RegistryValue) -join ','}}"
    )
    values: Dict[str, Optional[int]] = {}
    for row in session.invoke_json(script, context="查询巨帧设置"):
        raw = str(row.get("RegistryValue") or "").split(",")[0]
        values[row.get("Name")] = int(raw) if raw.isdigit() else None
    return values


def get_adapter_rdma(session, adapter: str | None = None) -> List[Dict[str, Any]]:
    name = f" -Name {ps_quote(adapter)}" if adapter else ""
    script = f"Get-NetAdapterRdma{name} -ErrorAction SilentlyContinue | Select-Object Name, Enabled"
    return session.invoke_json(script, context="查询 RDMA 状态")


def set_adapter_rdma(session, adapter: str, enabled: bool) -> None:
    cmdlet = "Enable-NetAdapterRdma" if enabled else "Disable-NetAdapterRdma"
    session.invoke(build_command(cmdlet, {"Name": adapter}), context=f"{cmdlet} {adapter}")


# --------------------------------------------------------------------------- QoS


def get_qos_policies(session) -> List[Dict[str, Any]]:
    script = (
        "Get-NetQosPolicy | Select-Object Name, PriorityValue8021Action, NetDirectPortMatchCondition, "
        "@{n='Template';e={$_.Template.ToString()}}"
    )
    return session.invoke_json(script, context="查询 QoS 策略")


def new_qos_policy(
    session,
    name: str,
    priority: int,
    *,
    template: str | None = None,
    netdirect_port: int | None = None,
) -> None:
    params: Dict[str, Any] = {"Name": name}
    if template:
        switch = QOS_TEMPLATES.get(template.strip().lower())
        if switch is None:
            raise ValueError(f"未知 QoS 模板: {template}")
        params[switch] = True
    elif netdirect_port:
        params["NetDirectPortMatchCondition"] = int(netdirect_port)
    params["PriorityValue8021Action"] = int(priority)
    session.invoke(build_command("New-NetQosPolicy", params) + " | Out-Null", context=f"创建 QoS 策略 {name}")


def remove_qos_policy(session, name: str) -> None:
    session.invoke(
        build_command("Remove-NetQosPolicy", {"Name": name, "Confirm": False}),
        context=f"删除 QoS 策略 {name}",
    )


def get_qos_traffic_classes(session) -> List[Dict[str, Any]]:
    script = (
        "Get-NetQosTrafficClass | Select-Object Name, BandwidthPercentage, "
        "@{n='Priority';e={@($_.Priority)}}, @{n='Algorithm';e={$_.Algorithm.ToString()}}"
    )
    return session.invoke_json(script, context="查询 QoS 流量类")


def new_qos_traffic_class(session, name: str, priority: int, bandwidth_percent: int, *, algorithm: str = "ETS") -> None:
    session.invoke(
        build_command(
            "New-NetQosTrafficClass",
            {
                "Name": name,
                "Priority": int(priority),
                "BandwidthPercentage": int(bandwidth_percent),
                "Algorithm": algorithm,
            },
        ) + " | Out-Null",
        context=f"创建 QoS 流量类 {name}",
    )


def remove_qos_traffic_class(session, name: str) -> None:
    session.invoke(
        build_command("Remove-NetQosTrafficClass", {"Name": name, "Confirm": False}),
        context=f"删除 QoS 流量类 {name}",
    )


def enable_qos_flow_control(session, priorities: Iterable[int]) -> None:
    values = sorted({int(p) for p in priorities})
    if not values:
        return
    session.invoke(
        f"Enable-NetQosFlowControl -Priority {ps_value(values)}",
        context=f"启用 PFC 优先级 {values}",
    )


# --------------------------------------------------------------------------- 交换机 / 管理 OS 网卡


def new_vm_switch(session, name: str, adapters: List[str], *, allow_management_os: bool = False) -> None:
    session.invoke(
        build_command(
            "New-VMSwitch",
            {
                "Name": name,
                "NetAdapterName": list(adapters),
                "EnableEmbeddedTeaming": True,
                "AllowManagementOS": bool(allow_management_os),
            },
        ) + " | Out-Null",
        context=f"创建 SET 交换机 {name}",
    )


def add_vm_switch_team_member(session, switch: str, adapter: str) -> None:
    session.invoke(
        build_command("Add-VMSwitchTeamMember", {"VMSwitchName": switch, "NetAdapterName": adapter}),
        context=f"添加交换机 {switch} 成员 {adapter}",
    )


def get_management_os_adapters(session) -> List[Dict[str, Any]]:
    script = (
        "Get-VMNetworkAdapter -ManagementOS | Select-Object Name, SwitchName, MacAddress, "
        "@{n='VlanMode';e={$_.VlanSetting.OperationMode.ToString()}}, "
        "@{n='VlanId';e={$_.VlanSetting.AccessVlanId}}"
    )
    return session.invoke_json(script, context="查询管理 OS 虚拟网卡")


def add_management_os_adapter(session, name: str, switch: str) -> None:
    session.invoke(
        build_command("Add-VMNetworkAdapter", {"ManagementOS": True, "Name": name, "SwitchName": switch}),
        context=f"添加管理 OS 虚拟网卡 {name}",
    )


def set_management_os_adapter_vlan(session, name: str, vlan_id: int | None) -> None:
    params: Dict[str, Any] = {"ManagementOS": True, "VMNetworkAdapterName": name}
    if vlan_id:
        params.update({"Access": True, "VlanId": int(vlan_id)})
    else:
        params["Untagged"] = True
    session.invoke(build_command("Set-VMNetworkAdapterVlan", params), context=f"设置虚拟网卡 {name} VLAN")


# --------------------------------------------------------------------------- IP 地址


def get_ip_addresses(session, interface_alias: str | None = None) -> List[Dict[str, Any]]:
    alias = f" -InterfaceAlias {ps_quote(interface_alias)}" if interface_alias else ""
    script = (
        f"Get-NetIPAddress -AddressFamily IPv4{alias} -ErrorAction SilentlyContinue | "
        "Where-Object { $_.PrefixOrigin -ne 'WellKnown' } | "
        "Select-Object InterfaceAlias, IPAddress, PrefixLength, "
        "@{n='PrefixOrigin';e={$_.PrefixOrigin.ToString()}}"
    )
    return session.invoke_json(script, context="查询 IP 地址")


def new_ip_address(session, interface_alias: str, ip: str, prefix_length: int, *, gateway: str | None = None) -> None:
    params: Dict[str, Any] = {
        "InterfaceAlias": interface_alias,
        "IPAddress": ip,
        "PrefixLength": int(prefix_length),
    }
    if gateway:
        params["DefaultGateway"] = gateway
    session.invoke(build_command("New-NetIPAddress", params) + " | Out-Null", context=f"配置 {interface_alias} 地址 {ip}")


def remove_ip_address(session, interface_alias: str, ip: str) -> None:
    session.invoke(
        build_command("Remove-NetIPAddress", {"InterfaceAlias": interface_alias, "IPAddress": ip, "Confirm": False}),
        context=f"删除 {interface_alias} 地址 {ip}",
    )


def get_default_gateway(session, interface_alias: str) -> Optional[str]:
    script = (
        f"Get-NetRoute -InterfaceAlias {ps_quote(interface_alias)} -DestinationPrefix '0.0.0.0/0' "
        "-ErrorAction SilentlyContinue | Select-Object NextHop"
    )
    rows = session.invoke_json(script, context=f"查询 {interface_alias} 默认网关")
    return rows[0].get("NextHop") if rows else None


def new_default_route(session, interface_alias: str, gateway: str) -> None:
    session.invoke(
        build_command(
            "New-NetRoute",
            {"InterfaceAlias": interface_alias, "DestinationPrefix": "0.0.0.0/0", "NextHop": gateway},
        ) + " | Out-Null",
        context=f"设置 {interface_alias} 默认网关 {gateway}",
    )


def remove_default_gateway(session, interface_alias: str) -> None:
    session.invoke(
        f"Remove-NetRoute -InterfaceAlias {ps_quote(interface_alias)} -DestinationPrefix '0.0.0.0/0' -Confirm:$false",
        context=f"删除 {interface_alias} 默认网关",
    )


def disable_dhcp(session, interface_alias: str) -> None:
    session.invoke(
        build_command("Set-NetIPInterface", {"InterfaceAlias": interface_alias, "Dhcp": "Disabled"}),
        context=f"关闭 {interface_alias} DHCP",
    )


def get_dns_client_servers(session, interface_alias: str) -> List[str]:
    script = (
        f"Get-DnsClientServerAddress -InterfaceAlias {ps_quote(interface_alias)} -AddressFamily IPv4 "
        "| Select-Object @{n='Servers';e={@($_.ServerAddresses)}}"
    )
    rows = session.invoke_json(script, context=f"查询 {interface_alias} DNS")
    if not rows:
        return []
    return list(rows[0].get("Servers") or [])


def set_dns_client_servers(session, interface_alias: str, servers: List[str]) -> None:
    session.invoke(
        build_command("Set-DnsClientServerAddress", {"InterfaceAlias": interface_alias, "ServerAddresses": list(servers)}),
        context=f"设置 {interface_alias} DNS",
    )
