import pytest

from hvpilot.common.config import Config
from hvpilot.core.lifecycle.lifecycle_executor import RunOptions, execute_workflow
from hvpilot.core.lifecycle.stage_manager import Workflow
from hvpilot.integrations.winrm import RemoteCommandError
from hvpilot.models import VmDefinition

from conftest import FakeSession

DISK = "C:\\ClusterStorage\\Volume1\\Hyper-V\\app01\\app01-os.vhdx"


@pytest.fixture
def defn(definition_record):
    return VmDefinition.model_validate({"name": "app01", **definition_record})


def _running_host(session_cls=FakeSession, **vm):
    session = session_cls("hv01")
    session.reply("Get-VM -Name", {"Name": "app01", "State": "Running", "IsClustered": False, **vm})
    session.reply("Get-VMHardDiskDrive", [{"Path": DISK}])
    session.reply("Get-VMNetworkAdapter -VMName", [{"Name": "LAN", "MacAddress": "00155D010203"}])
    return session


def test_remove_keeps_files_without_force(defn, base_config, make_pool):
    session = _running_host()

    result = execute_workflow(Workflow.remove_vm, defn, RunOptions(), config=base_config, pool=make_pool({"hv01": session}))

    assert session.ran("Stop-VM")
    assert session.ran("Remove-VM")
    assert not session.ran("Remove-Item")
    kept = [c for c in result.changes if c["action"] == "删除文件"]
    assert [c["target"] for c in kept] == [DISK, "C:\\ClusterStorage\\Volume1\\Hyper-V\\app01"]
    assert all(c["detail"] == "未指定 --force" for c in kept)


def test_remove_with_force_deletes_files(defn, base_config, make_pool):
    session = _running_host()
    session.reply("Test-Path", True)

    execute_workflow(Workflow.remove_vm, defn, RunOptions(force=True), config=base_config, pool=make_pool({"hv01": session}))

    assert len(session.ran("Remove-Item")) == 2


def test_stop_falls_back_to_turn_off(defn, base_config, make_pool):
    class StuckShutdown(FakeSession):
        def invoke(self, body, *, context=None):
            if body.startswith("Stop-VM") and "-TurnOff" not in body:
                self.commands.append(body)
                raise RemoteCommandError(self.host, body, "The shutdown integration service is not available", 1)
            return super().invoke(body, context=context)

    session = _running_host(StuckShutdown)

    execute_workflow(Workflow.remove_vm, defn, RunOptions(), config=base_config, pool=make_pool({"hv01": session}))

    assert "-TurnOff:$true" in session.ran("Stop-VM")[-1]


def test_absent_vm_cleans_records_only(defn, base_config, make_pool):
    session = FakeSession("hv01")

    result = execute_workflow(
        Workflow.remove_vm, defn, RunOptions(force=True), config=base_config, pool=make_pool({"hv01": session})
    )

    assert session.commands == []
    assert result.stage_results["stop_vm"] == "skipped"
    assert {c["detail"] for c in result.changes if c["action"] == "删除文件"} == {"不存在"}


def test_clustered_vm_leaves_cluster_and_network_records(defn, base_config, make_pool):
    cfg = Config(dict(base_config))
    cfg["infrastructure"] = {
        "dhcp": {"server": "dhcp01"},
        "dns": {"server": "dns01", "zone": "corp.local"},
        "ad": {"server": "dc01"},
    }
    nic = defn.network_adapters[0].model_copy(update={"dhcp_scope": "10.0.20.0", "register_dns": True})
    defn = defn.model_copy(update={"network_adapters": [nic]})

    host = _running_host(IsClustered=True)
    host.reply("Get-ClusterGroup -Name", {"Name": "app01", "Priority": 2000})
    dhcp = FakeSession("dhcp01").reply("Get-DhcpServerv4Reservation", {"IPAddress": "10.0.20.15"})
    dns = FakeSession("dns01").reply("Get-DnsServerResourceRecord", {"HostName": "app01", "IPv4Address": "10.0.20.15"})
    ad = FakeSession("dc01").reply("Get-ADComputer", {"Name": "app01", "DistinguishedName": "CN=app01,OU=VMs,DC=corp"})
    pool = make_pool({"hv01": host, "dhcp01": dhcp, "dns01": dns, "dc01": ad})

    execute_workflow(Workflow.remove_vm, defn, RunOptions(), config=cfg, pool=pool)

    assert host.ran("Remove-ClusterGroup")
    assert "00-15-5D-01-02-03" in dhcp.ran("Remove-DhcpServerv4Reservation")[0]
    assert dhcp.ran("Remove-DhcpServerv4Lease")
    assert dns.ran("Remove-DnsServerResourceRecord")
    assert "CN=app01,OU=VMs,DC=corp" in ad.ran("Remove-ADObject")[0]
