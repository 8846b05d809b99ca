import pytest

from conftest import FakeSession
from hvpilot.core.changes import APPLIED, FAILED, PLANNED, SKIPPED, ChangeSet
from hvpilot.core.host import (
    apply_to_hosts,
    configure_addresses,
    configure_host,
    configure_physical,
    configure_qos,
    configure_virtual_switch,
    rename_adapters,
)
from hvpilot.core.host.host_configurator import infer_qos_template
from hvpilot.integrations.winrm import RemoteCommandError
from hvpilot.models import NetworkMapping, NetworkMappingRow

ADAPTERS = "Get-NetAdapter | Select-Object"


def _row(**kwargs):
    kwargs.setdefault("host", "hv01")
    return NetworkMappingRow(**kwargs)


def _statuses(changes, action):
    return [r.status for r in changes.records if r.action == action]


# ---------------------------------------------------------------- 重命名


def test_rename_adapter_matched_by_mac():
    session = FakeSession().reply(
        ADAPTERS,
        [
            {"Name": "Ethernet 3", "MacAddress": "00-15-5D-01-02-03", "InterfaceDescription": "Mellanox #1"},
            {"Name": "Ethernet 4", "MacAddress": "00-15-5D-01-02-04", "InterfaceDescription": "Mellanox #2"},
        ],
    )
    rows = [_row(adapter="NIC1", new_name="SMB1", mac_address="00:15:5d:01:02:03")]

    changes = rename_adapters(session, rows, ChangeSet())

    assert session.commands == ["Rename-NetAdapter -Name 'Ethernet 3' -NewName 'SMB1'"]
    assert _statuses(changes, "重命名网卡") == [APPLIED]


def test_rename_skips_missing_done_and_occupied():
    session = FakeSession().reply(
        ADAPTERS,
        [
            {"Name": "SMB1", "MacAddress": "00-15-5D-01-02-03", "InterfaceDescription": "Mellanox #1"},
            {"Name": "SMB2", "MacAddress": "00-15-5D-01-02-04", "InterfaceDescription": "Mellanox #2"},
            {"Name": "Ethernet 5", "MacAddress": "00-15-5D-01-02-05", "InterfaceDescription": "Intel #1"},
        ],
    )
    rows = [
        _row(adapter="SMB1", mac_address="00-15-5D-01-02-03"),
        _row(adapter="Ethernet 5", new_name="SMB2"),
        _row(adapter="Ghost", new_name="MGMT", mac_address="00-15-5D-FF-FF-FF"),
        _row(adapter="Mgmt", role="host_vnic"),
    ]

    changes = rename_adapters(session, rows, ChangeSet())

    assert session.commands == []
    details = [r.detail for r in changes.records]
    assert details == ["SMB1", "SMB2 已被占用", "未找到"]
    assert not changes.changed


def test_rename_failure_is_recorded_and_raised():
    session = FakeSession(fail_on=["Rename-NetAdapter"]).reply(
        ADAPTERS, [{"Name": "Ethernet 3", "MacAddress": "00-15-5D-01-02-03"}]
    )
    changes = ChangeSet()

    with pytest.raises(RemoteCommandError):
        rename_adapters(session, [_row(adapter="Ethernet 3", new_name="SMB1")], changes)

    assert changes.has_failures
    assert _statuses(changes, "重命名网卡") == [FAILED]


# ---------------------------------------------------------------- QoS


def test_infer_qos_template_from_name_then_priority():
    assert infer_qos_template("SMB_Direct", 4) == "smb"
    assert infer_qos_template("Live-Migration", 2) == "livemigration"
    assert infer_qos_template("Storage", 3) == "smb"
    assert infer_qos_template("Storage", 4) is None


def test_qos_add_creates_policy_class_and_pfc():
    session = FakeSession()
    rows = [
        _row(adapter="SMB1", qos_priority=3, qos_bandwidth_percent=50, rdma=True),
        _row(adapter="Mgmt", role="host_vnic"),
    ]

    changes = configure_qos(session, rows, ChangeSet())

    assert session.commands == [
        "New-NetQosPolicy -Name 'SMB1' -SMB:$true -PriorityValue8021Action 3 | Out-Null",
        "New-NetQosTrafficClass -Name 'SMB1' -Priority 3 -BandwidthPercentage 50 -Algorithm 'ETS' | Out-Null",
        "Enable-NetQosFlowControl -Priority @(3)",
    ]
    assert changes.summary()[APPLIED] == 3


def test_qos_add_without_template_matches_smb_direct_port():
    session = FakeSession()
    configure_qos(session, [_row(adapter="Storage-A", qos_priority=4, rdma=True)], ChangeSet())

    assert session.ran("New-NetQosPolicy -Name 'Storage-A' -NetDirectPortMatchCondition 445 -PriorityValue8021Action 4")


def test_qos_add_skips_converged_and_recreates_changed_policy():
    session = FakeSession()
    session.reply("Get-NetQosPolicy", [
        {"Name": "SMB1", "PriorityValue8021Action": 3},
        {"Name": "Cluster", "PriorityValue8021Action": 5},
    ])
    session.reply("Get-NetQosTrafficClass", [
        {"Name": "[Default]", "BandwidthPercentage": 50, "Priority": [0, 1, 2]},
        {"Name": "SMB1", "BandwidthPercentage": 50, "Priority": [3]},
    ])
    rows = [
        _row(adapter="SMB1", qos_priority=3, qos_bandwidth_percent=50),
        _row(adapter="Cluster", qos_priority=7),
    ]

    changes = configure_qos(session, rows, ChangeSet())

    assert session.commands == [
        "Remove-NetQosPolicy -Name 'Cluster' -Confirm:$false",
        "New-NetQosPolicy -Name 'Cluster' -Cluster:$true -PriorityValue8021Action 7 | Out-Null",
    ]
    assert _statuses(changes, "QoS 策略") == [SKIPPED, APPLIED]
    assert _statuses(changes, "QoS 流量类") == [SKIPPED]


def test_qos_remove_only_listed_policies():
    session = FakeSession()
    session.reply("Get-NetQosPolicy", [{"Name": "SMB1", "PriorityValue8021Action": 3}])
    session.reply("Get-NetQosTrafficClass", [{"Name": "SMB1", "BandwidthPercentage": 50, "Priority": [3]}])
    rows = [_row(adapter="SMB1", qos_priority=3), _row(adapter="Cluster", qos_priority=7)]

    changes = configure_qos(session, rows, ChangeSet(), "remove")

    assert session.commands == [
        "Remove-NetQosPolicy -Name 'SMB1' -Confirm:$false",
        "Remove-NetQosTrafficClass -Name 'SMB1' -Confirm:$false",
    ]
    assert [r.detail for r in changes.records if r.status == SKIPPED] == ["不存在"]


def test_qos_clear_keeps_default_traffic_class():
    session = FakeSession()
    session.reply("Get-NetQosPolicy", [{"Name": "SMB1"}, {"Name": "Cluster"}])
    session.reply("Get-NetQosTrafficClass", [{"Name": "[Default]"}, {"Name": "SMB1"}])

    configure_qos(session, [], ChangeSet(), "clear")

    assert len(session.ran("Remove-NetQosPolicy")) == 2
    assert session.ran("Remove-NetQosTrafficClass") == ["Remove-NetQosTrafficClass -Name 'SMB1' -Confirm:$false"]


def test_qos_unknown_action():
    with pytest.raises(ValueError):
        configure_qos(FakeSession(), [], ChangeSet(), "bogus")


def test_configure_host_renames_then_applies_qos_in_dry_run():
    session = FakeSession().reply(ADAPTERS, [{"Name": "Ethernet 3", "MacAddress": "00-15-5D-01-02-03"}])
    rows = [_row(adapter="Ethernet 3", new_name="SMB1", qos_priority=3, qos_bandwidth_percent=40, rdma=True)]

    changes = configure_host(session, rows, ChangeSet(dry_run=True))

    assert session.commands == []
    assert [r.action for r in changes.records] == ["重命名网卡", "QoS 策略", "QoS 流量类", "启用流控"]
    assert changes.summary()[PLANNED] == 4


def test_configure_host_without_qos():
    session = FakeSession()
    configure_host(session, [_row(adapter="SMB1", qos_priority=3)], qos_action=None)

    assert not any("NetQos" in q for q in session.queries)


# ---------------------------------------------------------------- 巨帧 / RDMA


def test_physical_sets_jumbo_and_rdma():
    session = FakeSession()
    session.reply("-RegistryKeyword '*JumboPacket'", [{"Name": "SMB1", "RegistryValue": "1514"}])
    session.reply("Get-NetAdapterRdma", [{"Name": "SMB1", "Enabled": False}])

    changes = configure_physical(session, [_row(adapter="SMB1", jumbo_packet=9014, rdma=True)])

    assert session.commands == [
        "Set-NetAdapterAdvancedProperty -Name 'SMB1' -RegistryKeyword '*JumboPacket' -RegistryValue '9014'",
        "Enable-NetAdapterRdma -Name 'SMB1'",
    ]
    assert changes.records[0].detail == "1514 -> 9014"


def test_physical_converged_and_unsupported():
    session = FakeSession()
    session.reply("-RegistryKeyword '*JumboPacket'", [{"Name": "SMB1", "RegistryValue": "9014"}])
    session.reply("Get-NetAdapterRdma", [{"Name": "SMB1", "Enabled": True}])
    rows = [
        _row(adapter="SMB1", jumbo_packet=9014, rdma=True),
        _row(adapter="Mgmt", role="host_vnic", jumbo_packet=9014, rdma=False),
    ]

    changes = configure_physical(session, rows)

    assert session.commands == []
    assert [r.detail for r in changes.records] == ["9014", "enabled", "不支持", "不支持"]
    assert changes.records[2].target == "vEthernet (Mgmt)"


def test_physical_without_settings_queries_nothing():
    session = FakeSession()
    configure_physical(session, [_row(adapter="SMB1")])
    assert session.queries == []


# ---------------------------------------------------------------- SET 交换机


def _switch_rows():
    return [
        _row(adapter="SMB1", switch="SETswitch"),
        _row(adapter="SMB2", switch="SETswitch"),
        _row(adapter="Mgmt", role="host_vnic", switch="SETswitch", vlan_id=10),
    ]


def test_virtual_switch_created_with_host_vnic():
    session = FakeSession()

    changes = configure_virtual_switch(session, _switch_rows())

    assert session.commands[0].startswith("New-VMSwitch -Name 'SETswitch' -NetAdapterName @('SMB1', 'SMB2')")
    assert "-EnableEmbeddedTeaming:$true" in session.commands[0]
    assert session.ran("Add-VMNetworkAdapter -ManagementOS:$true -Name 'Mgmt' -SwitchName 'SETswitch'")
    assert session.ran("Set-VMNetworkAdapterVlan -ManagementOS:$true -VMNetworkAdapterName 'Mgmt' -Access:$true -VlanId 10")
    assert [r.action for r in changes.records] == ["创建 SET 交换机", "添加虚拟网卡", "VLAN"]


def test_virtual_switch_adds_missing_member_only():
    session = FakeSession()
    session.reply("Get-VMSwitch", [{"Name": "SETswitch", "EmbeddedTeamingEnabled": True, "Members": ["Mellanox #1"]}])
    session.reply(ADAPTERS, [
        {"Name": "SMB1", "InterfaceDescription": "Mellanox #1"},
        {"Name": "SMB2", "InterfaceDescription": "Mellanox #2"},
    ])
    session.reply("Get-VMNetworkAdapter -ManagementOS", [
        {"Name": "Mgmt", "SwitchName": "SETswitch", "VlanMode": "Access", "VlanId": 10},
    ])

    changes = configure_virtual_switch(session, _switch_rows())

    assert session.commands == ["Add-VMSwitchTeamMember -VMSwitchName 'SETswitch' -NetAdapterName 'SMB2'"]
    assert _statuses(changes, "VLAN") == [SKIPPED]


def test_virtual_switch_without_embedded_teaming_is_left_alone():
    session = FakeSession().reply("Get-VMSwitch", [{"Name": "SETswitch", "EmbeddedTeamingEnabled": False}])
    session.reply("Get-VMNetworkAdapter -ManagementOS", [
        {"Name": "Mgmt", "SwitchName": "SETswitch", "VlanMode": "Untagged", "VlanId": 0},
    ])

    changes = configure_virtual_switch(session, _switch_rows())

    assert not session.ran("Add-VMSwitchTeamMember")
    assert changes.records[0].detail == "非 SET 交换机"
    assert session.ran("Set-VMNetworkAdapterVlan")


# ---------------------------------------------------------------- IP 地址


def _address_row(**kwargs):
    values = dict(
        adapter="MGMT",
        ip_address="10.0.0.11",
        prefix_length=24,
        gateway="10.0.0.1",
        dns_servers=["10.0.0.5", "10.0.0.6"],
    )
    values.update(kwargs)
    return _row(**values)


def test_addresses_replace_dhcp_lease_gateway_and_dns():
    session = FakeSession()
    session.reply("Get-NetIPAddress", [{"IPAddress": "10.0.0.50", "PrefixLength": 24, "PrefixOrigin": "Dhcp"}])
    session.reply("Get-NetRoute", {"NextHop": "10.0.0.254"})
    session.reply("Get-DnsClientServerAddress", {"Servers": ["10.0.0.9"]})

    changes = configure_addresses(session, [_address_row()])

    assert [r.action for r in changes.records] == ["关闭 DHCP", "IP 地址", "删除默认网关", "默认网关", "DNS 服务器"]
    assert session.commands[0] == "Set-NetIPInterface -InterfaceAlias 'MGMT' -Dhcp 'Disabled'"
    assert session.ran("New-NetIPAddress -InterfaceAlias 'MGMT' -IPAddress '10.0.0.11'")
    assert session.ran("New-NetRoute -InterfaceAlias 'MGMT' -DestinationPrefix '0.0.0.0/0' -NextHop '10.0.0.1'")
    assert session.ran("Set-DnsClientServerAddress -InterfaceAlias 'MGMT' -ServerAddresses @('10.0.0.5', '10.0.0.6')")


def test_addresses_fix_prefix_and_drop_stray_manual_address():
    session = FakeSession()
    session.reply("Get-NetIPAddress", [
        {"IPAddress": "10.0.0.11", "PrefixLength": 16, "PrefixOrigin": "Manual"},
        {"IPAddress": "10.0.0.99", "PrefixLength": 24, "PrefixOrigin": "Manual"},
    ])

    changes = configure_addresses(session, [_address_row(gateway=None, dns_servers=[])])

    assert [r.action for r in changes.records] == ["删除 IP 地址", "IP 地址", "删除多余地址"]
    assert session.ran("Remove-NetIPAddress -InterfaceAlias 'MGMT' -IPAddress '10.0.0.99'")


def test_addresses_converged_host_vnic():
    session = FakeSession()
    session.reply("Get-NetIPAddress", [{"IPAddress": "10.0.0.11", "PrefixLength": 24, "PrefixOrigin": "Manual"}])
    session.reply("Get-NetRoute", {"NextHop": "10.0.0.1"})
    session.reply("Get-DnsClientServerAddress", {"Servers": ["10.0.0.5", "10.0.0.6"]})

    changes = configure_addresses(session, [_address_row(role="host_vnic", switch="SETswitch")])

    assert session.commands == []
    assert {r.target for r in changes.records} == {"vEthernet (MGMT)"}
    assert not changes.changed


def test_addresses_skip_ipv6_and_missing_prefix():
    session = FakeSession()
    rows = [_address_row(ip_address="fd00::11", prefix_length=64), _address_row(prefix_length=None)]

    changes = configure_addresses(session, rows)

    assert session.queries == []
    assert changes.records == []


# ---------------------------------------------------------------- 多主机


def test_apply_to_hosts_matches_short_names_and_skips_unknown(make_pool):
    mapping = NetworkMapping(rows=[
        _row(adapter="SMB1", host="hv01", qos_priority=3),
        _row(adapter="SMB1", host="hv02", qos_priority=3),
    ])
    first = FakeSession("hv01.corp.local")
    pool = make_pool({"hv01.corp.local": first})

    results = apply_to_hosts(mapping, ["hv01.corp.local", "hv03"], configure_qos, pool=pool, dry_run=True)

    assert list(results) == ["hv01.corp.local"]
    assert results["hv01.corp.local"].dry_run
    assert results["hv01.corp.local"].summary()[PLANNED] == 1
    assert first.commands == []
    assert first.queries


def test_apply_to_hosts_passes_keyword_arguments(make_pool):
    mapping = NetworkMapping(rows=[_row(adapter="SMB1", qos_priority=3)])
    session = FakeSession()
    session.reply("Get-NetQosPolicy", [{"Name": "Other"}])

    results = apply_to_hosts(mapping, ["hv01"], configure_qos, pool=make_pool({"hv01": session}), action="clear")

    assert session.commands == ["Remove-NetQosPolicy -Name 'Other' -Confirm:$false"]
    assert results["hv01"].summary()[APPLIED] == 1
