import pytest

from conftest import FakeSession
from hvpilot.core.audit import collect_host_inventory, collect_inventories, compare_with_mapping, write_report
from hvpilot.integrations.winrm import RemoteCommandError
from hvpilot.models import AdapterRecord, DriftRecord, HostInventory, NetworkMappingRow, SwitchRecord


def _host_session(host="hv01"):
    session = FakeSession(host)
    session.reply("Get-NetAdapter | Select-Object", [
        {"Name": "SMB1", "InterfaceDescription": "Mellanox #1", "MacAddress": "00-15-5D-01-02-03",
         "Status": "Up", "LinkSpeed": "25 Gbps", "VlanID": 0},
        {"Name": "vEthernet (Mgmt)", "InterfaceDescription": "Hyper-V Virtual Ethernet Adapter",
         "MacAddress": "00-15-5D-0A-0B-0C", "Status": "Up", "LinkSpeed": "10 Gbps"},
    ])
    session.reply("MSFT_NetAdapter", [
        {"Name": "SMB1", "HardwareInterface": True, "Virtual": False},
        {"Name": "vEthernet (Mgmt)", "HardwareInterface": False, "Virtual": True},
    ])
    session.reply("-RegistryKeyword '*JumboPacket'", [{"Name": "SMB1", "RegistryValue": "9014"}])
    session.reply("Get-NetAdapterRdma", [{"Name": "SMB1", "Enabled": True}])
    session.reply("Get-NetIPAddress", [
        {"InterfaceAlias": "vEthernet (Mgmt)", "IPAddress": "10.0.0.11", "PrefixLength": 24},
    ])
    session.reply("Get-VMNetworkAdapter -ManagementOS", [
        {"Name": "Mgmt", "SwitchName": "SETswitch", "VlanMode": "Access", "VlanId": 10},
    ])
    session.reply("Get-VMSwitch", [
        {"Name": "SETswitch", "SwitchType": "External", "EmbeddedTeamingEnabled": True, "Members": ["Mellanox #1"]},
    ])
    session.reply("Get-VM | Select-Object", [
        {"Name": "app01", "State": "Running", "ProcessorCount": 4, "MemoryStartup": 8 * 1024 ** 3, "IsClustered": True},
        {"Name": "idle01", "State": "Off", "ProcessorCount": 2, "MemoryStartup": 2 * 1024 ** 3, "IsClustered": False},
    ])
    session.reply("Get-VM | Get-VMNetworkAdapter", [
        {"VMName": "app01", "Name": "LAN", "SwitchName": "SETswitch", "MacAddress": "00155D010203",
         "VlanMode": "Access", "VlanId": 20, "IPAddresses": ["10.0.20.15", "fe80::1"]},
    ])
    return session


def test_collect_host_inventory():
    inventory = collect_host_inventory(_host_session(), "hv01")

    assert inventory.error is None
    smb1, mgmt = inventory.adapters
    assert smb1.mac_address == "00155D010203"
    assert smb1.jumbo_packet == 9014
    assert smb1.rdma_enabled is True
    assert smb1.virtual is False
    assert mgmt.virtual is True
    assert mgmt.vlan_id == 10
    assert mgmt.ip_addresses == ["10.0.0.11/24"]
    assert inventory.switches[0].members == ["Mellanox #1"]

    app01 = inventory.vms[0]
    assert app01.memory_gb == 8.0
    assert app01.adapters[0].vlan_id == 20
    assert app01.adapters[0].mac_address == "00155D010203"
    assert inventory.vms[1].adapters == []


def test_collect_host_inventory_without_vms():
    session = _host_session()
    inventory = collect_host_inventory(session, "hv01", include_vms=False)

    assert inventory.vms == []
    assert not any(q.startswith("Get-VM |") for q in session.queries)


def test_collect_host_inventory_records_remote_failure():
    session = FakeSession().reply(
        "Get-NetAdapter | Select-Object", RemoteCommandError("hv01", "Get-NetAdapter", "access denied", 1, "查询网卡")
    )

    inventory = collect_host_inventory(session, "hv01")

    assert "access denied" in inventory.error
    assert inventory.adapters == []


def test_collect_inventories_keeps_host_order(make_pool, base_config):
    broken = FakeSession("hv02").reply("Get-NetAdapter | Select-Object", RuntimeError("boom"))
    pool = make_pool({"hv01": _host_session("hv01"), "hv02": broken, "hv03": _host_session("hv03")})

    inventories = collect_inventories(["hv01", "hv02", "hv03"], pool, base_config)

    assert [i.host for i in inventories] == ["hv01", "hv02", "hv03"]
    assert inventories[1].error == "boom"
    assert inventories[0].error is None and inventories[2].error is None
    assert len(inventories[2].vms) == 2


def _inventory():
    return HostInventory(
        host="hv01",
        adapters=[
            AdapterRecord(name="SMB1", description="Mellanox #1", mac_address="00155D010203",
                          jumbo_packet=9014, rdma_enabled=True),
            AdapterRecord(name="Ethernet 5", description="Mellanox #2", mac_address="00155D010204",
                          jumbo_packet=1514, rdma_enabled=False),
            AdapterRecord(name="vEthernet (Mgmt)", vlan_id=10, ip_addresses=["10.0.0.11/24"], virtual=True),
        ],
        switches=[SwitchRecord(name="SETswitch", embedded_teaming=True, members=["Mellanox #1"])],
    )


def test_compare_with_mapping_reports_drift():
    rows = [
        NetworkMappingRow(host="hv01", adapter="SMB1", mac_address="00-15-5D-01-02-03",
                          jumbo_packet=9014, rdma=True, switch="SETswitch"),
        NetworkMappingRow(host="hv01", adapter="SMB2", mac_address="00-15-5D-01-02-04",
                          jumbo_packet=9014, rdma=True, switch="SETswitch"),
        NetworkMappingRow(host="hv01", adapter="Mgmt", role="host_vnic", vlan_id=20,
                          ip_address="10.0.0.12", prefix_length=24),
        NetworkMappingRow(host="hv01", adapter="Backup"),
    ]

    drift = compare_with_mapping(_inventory(), rows)

    found = [(d.adapter, d.field, d.expected, d.actual) for d in drift]
    assert found == [
        ("SMB2", "name", "SMB2", "Ethernet 5"),
        ("SMB2", "jumbo_packet", "9014", "1514"),
        ("SMB2", "rdma", "True", "False"),
        ("SMB2", "switch", "SETswitch", "not a member"),
        ("vEthernet (Mgmt)", "vlan_id", "20", "10"),
        ("vEthernet (Mgmt)", "ip_address", "10.0.0.12/24", "10.0.0.11/24"),
        ("Backup", "present", "yes", "missing"),
    ]


def test_compare_with_mapping_skips_failed_inventory():
    inventory = HostInventory(host="hv01", error="timeout")
    assert compare_with_mapping(inventory, [NetworkMappingRow(host="hv01", adapter="SMB1")]) == []


def test_write_report(tmp_path):
    inventories = [collect_host_inventory(_host_session(), "hv01"), HostInventory(host="hv02", error="boom")]
    drift = [DriftRecord(host="hv01", adapter="SMB2", field="rdma", expected="True", actual=None)]

    path = write_report(inventories, tmp_path / "reports" / "audit.txt", drift)

    text = path.read_text(encoding="utf-8")
    assert text.startswith("HVPilot 巡检报告")
    assert "主机数: 2" in text
    assert "hv01 网卡" in text
    assert "hv01 虚拟交换机" in text
    assert "hv01 虚机" in text
    assert "idle01" in text
    assert "巡检失败: boom" in text
    assert "配置偏差" in text
    assert "+--" in text


def test_write_report_sections_and_empty_drift(tmp_path):
    inventories = [collect_host_inventory(_host_session(), "hv01")]

    text = write_report(inventories, tmp_path / "audit.txt", [], sections=("switches",)).read_text(encoding="utf-8")

    assert "hv01 虚拟交换机" in text
    assert "hv01 网卡" not in text
    assert "app01" not in text
    assert "与映射表无偏差" in text


def test_write_report_rejects_unknown_section(tmp_path):
    with pytest.raises(ValueError):
        write_report([], tmp_path / "audit.txt", sections=("disks",))
