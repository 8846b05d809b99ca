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

"""Hyper-V 虚机相关 cmdlet 封装。

函数均以远程会话为第一个参数，返回纯字典，枚举值统一转为字符串。
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from hvpilot.integrations.winrm.powershell import build_command, ps_args, ps_quote, ps_value

logger = logging.getLogger(__name__)

GIB = 1024 ** 3

VM_FIELDS = (
    "Name",
    "@{n='Id';e={$_.Id.ToString()}}",
    "@{n='State';e={$_.State.ToString()}}",
    "Path",
    "Generation",
    "ProcessorCount",
    "MemoryStartup",
    "DynamicMemoryEnabled",
    "MemoryMinimum",
    "MemoryMaximum",
    "IsClustered",
    "ComputerName",
    "Notes",
)

DISK_FIELDS = (
    "@{n='ControllerType';e={$_.ControllerType.ToString()}}",
    "ControllerNumber",
    "ControllerLocation",
    "Path",
)

ADAPTER_FIELDS = (
    "Name",
    "SwitchName",
    "MacAddress",
    "DynamicMacAddressEnabled",
    "IPAddresses",
    "@{n='VlanMode';e={$_.VlanSetting.OperationMode.ToString()}}",
    "@{n='VlanId';e={$_.VlanSetting.AccessVlanId}}",
    "@{n='NativeVlanId';e={$_.VlanSetting.NativeVlanId}}",
    "@{n='AllowedVlans';e={$_.VlanSetting.AllowedVlanIdListString}}",
)


def gib_to_bytes(value: float) -> int:
    return int(round(float(value) * GIB))


def bytes_to_gib(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    return round(int(value) / GIB, 2)


def _select(fields: Sequence[str]) -> str:
    return "Select-Object " + ", ".join(fields)


def _first(rows: List[Any]) -> Optional[Dict[str, Any]]:
    return rows[0] if rows else None


# --------------------------------------------------------------------------- 查询


def get_vm(session, name: str) -> Optional[Dict[str, Any]]:
    script = f"Get-VM -Name {ps_quote(name)} -ErrorAction SilentlyContinue | {_select(VM_FIELDS)}"
    return _first(session.invoke_json(script, context=f"查询虚机 {name}"))


def list_vms(session) -> List[Dict[str, Any]]:
    return session.invoke_json(f"Get-VM | {_select(VM_FIELDS)}", context="列出虚机")


def get_vm_hard_disks(session, name: str) -> List[Dict[str, Any]]:
    script = f"Get-VMHardDiskDrive -VMName {ps_quote(name)} | {_select(DISK_FIELDS)}"
    return session.invoke_json(script, context=f"查询虚机 {name} 磁盘")


def get_vm_network_adapters(session, name: str) -> List[Dict[str, Any]]:
    script = f"Get-VMNetworkAdapter -VMName {ps_quote(name)} | {_select(ADAPTER_FIELDS)}"
    return session.invoke_json(script, context=f"查询虚机 {name} 网卡")


def get_vm_dvd_drives(session, name: str) -> List[Dict[str, Any]]:
    script = (
        f"Get-VMDvdDrive -VMName {ps_quote(name)} | "
        "Select-Object ControllerNumber, ControllerLocation, Path"
    )
    return session.invoke_json(script, context=f"查询虚机 {name} 光驱")


def list_vm_network_adapters(session) -> List[Dict[str, Any]]:
    """主机上全部虚机的网卡，带 ``VMName`` 字段。"""
    script = f"Get-VM | Get-VMNetworkAdapter | {_select(('VMName',) + ADAPTER_FIELDS)}"
    return session.invoke_json(script, context="列出虚机网卡")


def get_vhd(session, path: str) -> Optional[Dict[str, Any]]:
    script = (
        f"Get-VHD -Path {ps_quote(path)} -ErrorAction SilentlyContinue | "
        "Select-Object Path, Size, FileSize, @{n='VhdType';e={$_.VhdType.ToString()}}"
    )
    return _first(session.invoke_json(script, context=f"查询虚拟磁盘 {path}"))


def get_vm_first_boot_device(session, name: str, generation: int) -> Optional[Dict[str, Any]]:
    """返回 ``{"device": "dvd|disk|network|other", "path": ...}``。"""
    if int(generation) == 1:
        script = f"(Get-VMBios -VMName {ps_quote(name)}).StartupOrder | Select-Object -First 1 | ForEach-Object {{ $_.ToString() }}"
        rows = session.invoke_json(script, context=f"查询虚机 {name} 启动顺序")
        if not rows:
            return None
        mapping = {"CD": "dvd", "IDE": "disk", "LegacyNetworkAdapter": "network"}
        return {"device": mapping.get(str(rows[0]), "other"), "path": None}

    script = (
        f"$b = (Get-VMFirmware -VMName {ps_quote(name)}).BootOrder | Select-Object -First 1\n"
        "if ($b) {\n"
        "  [pscustomobject]@{\n"
        "    BootType = $b.BootType.ToString()\n"
        "    DeviceType = if ($b.Device) { $b.Device.GetType().Name } else { $null }\n"
        "    Path = if ($b.Device -and $b.Device.PSObject.Properties['Path']) { $b.Device.Path } else { $null }\n"
        "  }\n"
        "}"
    )
    row = _first(session.invoke_json(script, context=f"查询虚机 {name} 首启动设备"))
    if row is None:
        return None
    device_type = str(row.get("DeviceType") or "")
    if "Dvd" in device_type:
        device = "dvd"
    elif "HardDisk" in device_type:
        device = "disk"
    elif "NetworkAdapter" in device_type or row.get("BootType") == "Network":
        device = "network"
    else:
        device = "other"
    return {"device": device, "path": row.get("Path")}


def get_vm_switch(session, name: str | None = None) -> List[Dict[str, Any]]:
    params = {"Name": name, "ErrorAction": "SilentlyContinue"} if name else None
    script = (
        f"{build_command('Get-VMSwitch', params)} | Select-Object Name, "
        "@{n='SwitchType';e={$_.SwitchType.ToString()}}, EmbeddedTeamingEnabled, "
        "@{n='Members';e={@($_.NetAdapterInterfaceDescriptions)}}"
    )
    return session.invoke_json(script, context="查询虚拟交换机")


def test_path(session, path: str) -> bool:
    rows = session.invoke_json(f"Test-Path -LiteralPath {ps_quote(path)}", context=f"检查路径 {path}")
    return bool(rows and rows[0] is True)


# --------------------------------------------------------------------------- 创建 / 修改


def new_vm(session, name: str, path: str, generation: int, memory_startup_gb: float) -> Optional[Dict[str, Any]]:
    body = build_command(
        "New-VM",
        {
            "Name": name,
            "Path": path,
            "Generation": int(generation),
            "MemoryStartupBytes": gib_to_bytes(memory_startup_gb),
            "NoVHD": True,
        },
    ) + " | Out-Null"
    session.invoke(body, context=f"创建虚机 {name}")
    return get_vm(session, name)


def set_vm_processor(session, name: str, count: int) -> None:
    session.invoke(
        build_command("Set-VMProcessor", {"VMName": name, "Count": int(count)}),
        context=f"设置虚机 {name} 处理器",
    )


def set_vm_memory(
    session,
    name: str,
    *,
    startup_gb: float,
    dynamic: bool,
    minimum_gb: float | None = None,
    maximum_gb: float | None = None,
) -> None:
    params: Dict[str, Any] = {
        "VMName": name,
        "DynamicMemoryEnabled": bool(dynamic),
        "StartupBytes": gib_to_bytes(startup_gb),
    }
    if dynamic:
        if minimum_gb:
            params["MinimumBytes"] = gib_to_bytes(minimum_gb)
        if maximum_gb:
            params["MaximumBytes"] = gib_to_bytes(maximum_gb)
    session.invoke(build_command("Set-VMMemory", params), context=f"设置虚机 {name} 内存")


def new_vhd(session, path: str, size_gb: int, *, dynamic: bool = True) -> None:
    params: Dict[str, Any] = {"Path": path, "SizeBytes": gib_to_bytes(size_gb)}
    params["Dynamic" if dynamic else "Fixed"] = True
    body = (
        f"New-Item -ItemType Directory -Force -Path (Split-Path -Parent {ps_quote(path)}) | Out-Null\n"
        + build_command("New-VHD", params) + " | Out-Null"
    )
    session.invoke(body, context=f"创建虚拟磁盘 {path}")


def add_vm_hard_disk(
    session,
    name: str,
    path: str,
    *,
    controller_type: str,
    controller_number: int,
    controller_location: int,
) -> None:
    session.invoke(
        build_command(
            "Add-VMHardDiskDrive",
            {
                "VMName": name,
                "Path": path,
                "ControllerType": controller_type,
                "ControllerNumber": int(controller_number),
                "ControllerLocation": int(controller_location),
            },
        ),
        context=f"挂载磁盘 {path} 到 {name}",
    )


def add_vm_network_adapter(session, vm: str, adapter: str, switch: str, *, static_mac: str | None = None) -> None:
    params: Dict[str, Any] = {"VMName": vm, "Name": adapter, "SwitchName": switch}
    if static_mac:
        params["StaticMacAddress"] = static_mac
    session.invoke(build_command("Add-VMNetworkAdapter", params), context=f"添加网卡 {adapter} 到 {vm}")


def rename_vm_network_adapter(session, vm: str, current: str, new_name: str) -> None:
    session.invoke(
        build_command("Rename-VMNetworkAdapter", {"VMName": vm, "Name": current, "NewName": new_name}),
        context=f"重命名网卡 {current} -> {new_name}",
    )


def connect_vm_network_adapter(session, vm: str, adapter: str, switch: str) -> None:
    session.invoke(
        build_command("Connect-VMNetworkAdapter", {"VMName": vm, "Name": adapter, "SwitchName": switch}),
        context=f"连接网卡 {adapter} 到交换机 {switch}",
    )


def set_vm_static_mac(session, vm: str, adapter: str, mac: str) -> None:
    session.invoke(
        build_command("Set-VMNetworkAdapter", {"VMName": vm, "Name": adapter, "StaticMacAddress": mac}),
        context=f"设置网卡 {adapter} 静态MAC",
    )


def set_vm_network_adapter_vlan(
    session,
    vm: str,
    adapter: str,
    *,
    mode: str,
    vlan_id: int | None = None,
    native_vlan_id: int | None = None,
    allowed_vlans: str | None = None,
) -> None:
    params: Dict[str, Any] = {"VMName": vm, "VMNetworkAdapterName": adapter}
    mode_key = mode.capitalize()
    if mode_key == "Access":
        params.update({"Access": True, "VlanId": int(vlan_id or 0)})
    elif mode_key == "Trunk":
        params.update(
            {
                "Trunk": True,
                "NativeVlanId": int(native_vlan_id or 0),
                "AllowedVlanIdList": allowed_vlans or "1-4094",
            }
        )
    else:
        params["Untagged"] = True
    session.invoke(build_command("Set-VMNetworkAdapterVlan", params), context=f"设置网卡 {adapter} VLAN")


def add_vm_dvd_drive(session, vm: str, iso_path: str) -> None:
    session.invoke(
        build_command("Add-VMDvdDrive", {"VMName": vm, "Path": iso_path}),
        context=f"挂载 ISO {iso_path}",
    )


def set_vm_dvd_media(session, vm: str, iso_path: str | None) -> None:
    body = (
        f"Get-VMDvdDrive -VMName {ps_quote(vm)} | Select-Object -First 1 | "
        f"Set-VMDvdDrive -Path {ps_value(iso_path)}"
    )
    session.invoke(body, context=f"更换虚机 {vm} 光驱介质")


def set_vm_first_boot_device(
    session,
    vm: str,
    *,
    device: str,
    generation: int,
    disk_path: str | None = None,
) -> None:
    """设置首启动设备：``dvd`` / ``disk`` / ``network``。"""
    if int(generation) == 1:
        order = {
            "dvd": "@('CD', 'IDE', 'LegacyNetworkAdapter', 'Floppy')",
            "disk": "@('IDE', 'CD', 'LegacyNetworkAdapter', 'Floppy')",
        }.get(device)
        if order is None:
            raise ValueError(f"未知启动设备: {device}")
        session.invoke(
            f"Set-VMBios -VMName {ps_quote(vm)} -StartupOrder {order}",
            context=f"设置虚机 {vm} 启动顺序",
        )
        return

    if device == "dvd":
        selector = "Get-VMDvdDrive -VM $vm | Select-Object -First 1"
    elif device == "disk":
        if disk_path:
            selector = f"Get-VMHardDiskDrive -VM $vm | Where-Object {{ $_.Path -eq {ps_quote(disk_path)} }} | Select-Object -First 1"
        else:
            selector = "Get-VMHardDiskDrive -VM $vm | Select-Object -First 1"
    elif device == "network":
        selector = "Get-VMNetworkAdapter -VM $vm | Select-Object -First 1"
    else:
        raise ValueError(f"未知启动设备: {device}")
    body = (
        f"$vm = Get-VM -Name {ps_quote(vm)}\n"
        f"$dev = {selector}\n"
        f"if (-not $dev) {{ throw {ps_quote(f'虚机 {vm} 上不存在启动设备 {device}')} }}\n"
        "Set-VMFirmware -VM $vm -FirstBootDevice $dev"
    )
    session.invoke(body, context=f"设置虚机 {vm} 首启动设备")


def set_vm_notes(session, vm: str, notes: str) -> None:
    session.invoke(build_command("Set-VM", {"Name": vm, "Notes": notes}), context=f"设置虚机 {vm} 备注")


# --------------------------------------------------------------------------- 电源 / 删除 / 迁移


def start_vm(session, name: str) -> None:
    session.invoke(build_command("Start-VM", {"Name": name}), context=f"启动虚机 {name}")


def stop_vm(session, name: str, *, turn_off: bool = False) -> None:
    params: Dict[str, Any] = {"Name": name, "Force": True}
    if turn_off:
        params["TurnOff"] = True
    session.invoke(build_command("Stop-VM", params), context=f"关闭虚机 {name}")


def remove_vm(session, name: str) -> None:
    session.invoke(build_command("Remove-VM", {"Name": name, "Force": True}), context=f"删除虚机 {name}")


def move_vm(
    session,
    name: str,
    destination_host: str,
    *,
    destination_path: str | None = None,
) -> None:
    params: Dict[str, Any] = {"Name": name, "DestinationHost": destination_host}
    if destination_path:
        params["IncludeStorage"] = True
        params["DestinationStoragePath"] = destination_path
    session.invoke(build_command("Move-VM", params), context=f"迁移虚机 {name} 到 {destination_host}")


def export_vm(session, name: str, export_path: str) -> None:
    session.invoke(
        build_command("Export-VM", {"Name": name, "Path": export_path}),
        context=f"导出虚机 {name}",
    )


def join_windows_path(*parts: str) -> str:
    """拼接 Windows 路径（本机可能不是 Windows，不能用 pathlib）。"""
    cleaned = [str(part).strip("\\/") for part in parts[1:] if part]
    head = str(parts[0]).rstrip("\\/")
    return "\\".join([head, *cleaned])


def import_vm(session, name: str, export_path: str, destination_path: str) -> Optional[Dict[str, Any]]:
    """从导出目录复制导入，保留原虚机 ID。"""
    export_root = join_windows_path(export_path, name, "Virtual Machines")
    args = ps_args(
        {
            "VirtualMachinePath": destination_path,
            "VhdDestinationPath": join_windows_path(destination_path, "Virtual Hard Disks"),
            "SnapshotFilePath": destination_path,
            "Copy": True,
        }
    )
    body = (
        f"$vmcx = Get-ChildItem -LiteralPath {ps_quote(export_root)} -Filter '*.vmcx' | Select-Object -First 1\n"
        f"if (-not $vmcx) {{ throw {ps_quote(f'导出目录中未找到 {name} 的 vmcx 文件')} }}\n"
        f"Import-VM -Path $vmcx.FullName {args} | Out-Null"
    )
    session.invoke(body, context=f"导入虚机 {name}")
    return get_vm(session, name)


# --------------------------------------------------------------------------- 文件


def copy_file(session, source: str, destination: str) -> None:
    body = (
        f"New-Item -ItemType Directory -Force -Path (Split-Path -Parent {ps_quote(destination)}) | Out-Null\n"
        f"Copy-Item -LiteralPath {ps_quote(source)} -Destination {ps_quote(destination)}"
    )
    session.invoke(body, context=f"复制 {source} -> {destination}")


def remove_path(session, path: str) -> None:
    body = (
        f"if (Test-Path -LiteralPath {ps_quote(path)}) {{\n"
        f"  Remove-Item -LiteralPath {ps_quote(path)} -Recurse -Force\n"
        "}"
    )
    session.invoke(body, context=f"删除 {path}")
