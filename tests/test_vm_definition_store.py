import json

import pytest

from conftest import FakeSession
from hvpilot.core.vm_definition_store import capture_vm_definition, load_definition, write_definition
from hvpilot.models import DefinitionError, MacPolicy, VlanMode

GIB = 1024 ** 3
ROOT = "C:\\ClusterStorage\\Volume1\\Hyper-V"
OS_DISK = ROOT + "\\app01\\app01-os.vhdx"
DATA_DISK = ROOT + "\\app01\\app01-data.vhdx"


def _vm_session(clustered=True):
    session = FakeSession()
    session.reply("Get-VM -Name 'app01'", {
        "Name": "app01",
        "Generation": 2,
        "Path": ROOT + "\\app01",
        "ProcessorCount": 4,
        "MemoryStartup": 8 * GIB,
        "DynamicMemoryEnabled": True,
        "MemoryMinimum": 2 * GIB,
        "MemoryMaximum": 16 * GIB,
        "IsClustered": clustered,
        "Notes": "web tier",
    })
    session.reply("Get-VMFirmware", {"BootType": "Drive", "DeviceType": "HardDiskDrive", "Path": OS_DISK})
    session.reply("Get-VMHardDiskDrive", [
        {"Path": DATA_DISK, "ControllerType": "SCSI", "ControllerNumber": 0, "ControllerLocation": 1},
        {"Path": OS_DISK, "ControllerType": "SCSI", "ControllerNumber": 0, "ControllerLocation": 0},
    ])
    session.reply(f"Get-VHD -Path '{OS_DISK}'", {"Path": OS_DISK, "Size": 80 * GIB, "VhdType": "Dynamic"})
    session.reply(f"Get-VHD -Path '{DATA_DISK}'", {"Path": DATA_DISK, "Size": int(100.5 * GIB), "VhdType": "Fixed"})
    session.reply("Get-VMNetworkAdapter -VMName", [
        {"Name": "LAN", "SwitchName": "SETswitch", "MacAddress": "00155D010203",
         "DynamicMacAddressEnabled": False, "VlanMode": "Access", "VlanId": 20},
        {"Name": "Trunk", "SwitchName": "SETswitch", "MacAddress": "00155D0A0B0C",
         "DynamicMacAddressEnabled": True, "VlanMode": "Trunk", "NativeVlanId": 10, "AllowedVlans": "10,20-30"},
    ])
    session.reply("Get-ClusterGroup -Name", {"Name": "app01", "Priority": 3000, "AntiAffinityClassNames": ["web"]})
    session.reply("Get-ClusterOwnerNode", ["hv01", "hv02"])
    return session


def test_capture_running_vm():
    definition = capture_vm_definition(_vm_session(), "hv01", "app01")

    assert definition.host == "hv01"
    assert definition.path == ROOT
    assert definition.memory_startup_gb == 8.0
    assert definition.dynamic_memory is True
    assert (definition.memory_minimum_gb, definition.memory_maximum_gb) == (2.0, 16.0)
    assert definition.notes == "web tier"
    assert definition.os_deployment.method.value == "none"

    data, boot = definition.hard_disks
    assert boot.boot and not data.boot
    assert definition.boot_disk.path == OS_DISK
    assert boot.size_gb == 80 and boot.dynamic
    assert data.size_gb == 101 and not data.dynamic
    assert data.controller_location == 1

    lan, trunk = definition.network_adapters
    assert lan.mac_policy == MacPolicy.STATIC
    assert lan.mac_address == "00155D010203"
    assert lan.vlan_mode == VlanMode.ACCESS and lan.vlan_id == 20
    assert trunk.mac_policy == MacPolicy.DYNAMIC and trunk.mac_address is None
    assert (trunk.native_vlan_id, trunk.allowed_vlans) == (10, "10,20-30")

    assert definition.cluster.clustered
    assert definition.cluster.priority == "high"
    assert definition.cluster.anti_affinity_classes == ["web"]
    assert definition.cluster.preferred_owners == ["hv01", "hv02"]


def test_capture_standalone_vm_without_boot_entry():
    session = _vm_session(clustered=False)
    session.reply("Get-VMFirmware", None)

    definition = capture_vm_definition(session, "hv01", "app01")

    assert not definition.cluster.clustered
    assert not any("Get-Cluster" in q for q in session.queries)
    # 没有启动项时取第一块磁盘
    assert definition.boot_disk.path == DATA_DISK


def test_capture_clustered_vm_without_group_keeps_defaults():
    session = _vm_session()
    session.reply("Get-ClusterGroup -Name", None)

    definition = capture_vm_definition(session, "hv01", "app01")

    assert definition.cluster.clustered
    assert definition.cluster.priority == "medium"
    assert definition.cluster.preferred_owners == []


def test_capture_missing_vm():
    with pytest.raises(DefinitionError):
        capture_vm_definition(FakeSession(), "hv01", "ghost")


def test_written_capture_loads_back(tmp_path):
    path = tmp_path / "defs" / "vms.json"
    definition = capture_vm_definition(_vm_session(), "hv01", "app01")

    assert write_definition(path, definition) == path

    stored = json.loads(path.read_text(encoding="utf-8"))
    assert list(stored) == ["app01"]
    assert "name" not in stored["app01"]
    assert stored["app01"]["network_adapters"][0]["mac_policy"] == "Static"
    assert load_definition(path, "APP01") == definition


def test_write_definition_keeps_other_records(definition_file, definition_record):
    definition = capture_vm_definition(_vm_session(), "hv02", "app01")
    other = dict(definition_record, host="hv03")
    data = json.loads(definition_file.read_text(encoding="utf-8"))
    data["db01"] = other
    definition_file.write_text(json.dumps(data), encoding="utf-8")

    write_definition(definition_file, definition)

    stored = json.loads(definition_file.read_text(encoding="utf-8"))
    assert list(stored) == ["app01", "db01"]
    assert stored["app01"]["host"] == "hv02"
    assert stored["db01"]["host"] == "hv03"
