import logging

import pytest

from conftest import FakeSession
from hvpilot.common.network_utils import ProbeResult
from hvpilot.core.changes import ChangeSet
from hvpilot.core.lifecycle.prechecks import connectivity, host_state
from hvpilot.core.lifecycle.prechecks.runner import run_lifecycle_prechecks
from hvpilot.core.lifecycle.prechecks.types import PrecheckReport, ProbeRecord
from hvpilot.core.lifecycle.prechecks.utils import same_host, update_level
from hvpilot.core.lifecycle.runtime_context import RunContext
from hvpilot.core.lifecycle.stage_manager import Workflow
from hvpilot.models import VmDefinition

log = logging.getLogger("tests.prechecks")


def _fake_probes(tcp_down=(), listener_down=()):
    def fake_run_probe_tasks(tasks, max_workers=1, logger=None):
        results = []
        for task in tasks:
            if task.kind == "tcp":
                ok = task.target not in tcp_down
                results.append(ProbeResult(task=task, success=ok, detail="" if ok else "tcp 5985 unreachable"))
            else:
                ok = task.target not in listener_down
                results.append(ProbeResult(task=task, success=ok, detail="HTTP 405" if ok else "timed out"))
        return results

    return fake_run_probe_tasks


def _ctx(record, config, pool):
    return RunContext(
        definition=VmDefinition.model_validate({"name": "app01", **record}),
        config=config,
        sessions=pool,
        changes=ChangeSet(),
    )


def test_level_helpers():
    assert update_level("ok", "warning") == "warning"
    assert update_level("error", "info") == "error"
    assert same_host("HV01.corp.local", "hv01")
    assert not same_host("hv01", None)


def test_connectivity_levels(monkeypatch):
    monkeypatch.setattr(connectivity, "run_probe_tasks", _fake_probes(tcp_down={"hv02"}, listener_down={"hv03"}))
    config = {"winrm": {"username": "admin"}, "precheck": {"winrm_probe": {"timeout": 1}}}

    records = connectivity.inspect(["hv01", "hv02", "hv01", "", "hv03"], config, logger=log)

    assert [(r.target, r.level) for r in records] == [("hv01", "ok"), ("hv02", "error"), ("hv03", "warning")]
    assert "5985 不可达" in records[1].message
    assert "timed out" in records[2].message
    assert set(records[0].probes) == {"tcp", "winrm"}


def test_connectivity_uses_https_port(monkeypatch):
    seen = []

    def fake_run_probe_tasks(tasks, max_workers=1, logger=None):
        seen.extend(tasks)
        return [ProbeResult(task=t, success=True) for t in tasks]

    monkeypatch.setattr(connectivity, "run_probe_tasks", fake_run_probe_tasks)
    connectivity.inspect(["hv01"], {"winrm": {"port": 5986, "ssl": True}}, logger=log)

    assert {t.port for t in seen} == {5986}
    assert [t.ssl for t in seen if t.kind == "winrm"] == [True]


def test_new_vm_prechecks_collect_live_state(definition_record, base_config, make_pool):
    session = FakeSession()
    session.reply("Get-VMSwitch", [{"Name": "SETswitch"}])
    session.reply("Test-Path", True)
    ctx = _ctx(definition_record, base_config, make_pool({"hv01": session}))

    report = run_lifecycle_prechecks(ctx, Workflow.new_vm, stage_logger=log)

    assert not report.has_error
    assert report.live_state["switches"] == ["SETswitch"]
    assert report.live_state["vm_exists"] is False
    assert report.live_state["paths"] == {
        "C:\\ClusterStorage\\Volume1\\Hyper-V": True,
        "C:\\ClusterStorage\\Volume1\\Hyper-V\\app01": True,
    }


def test_unreachable_host_skips_state_collection(definition_record, base_config, make_pool, monkeypatch):
    monkeypatch.setattr(connectivity, "run_probe_tasks", _fake_probes(tcp_down={"hv01"}))
    base_config["precheck"]["winrm_probe"]["enabled"] = True
    session = FakeSession()
    ctx = _ctx(definition_record, base_config, make_pool({"hv01": session}))

    report = run_lifecycle_prechecks(ctx, Workflow.new_vm, stage_logger=log)

    assert report.has_error
    assert session.queries == []
    assert report.live_state == {}


def test_dhcp_scope_without_server(definition_record, base_config, make_pool):
    record = dict(definition_record)
    record["network_adapters"] = [dict(record["network_adapters"][0], dhcp_scope="10.0.20.0")]
    ctx = _ctx(record, base_config, make_pool({"hv01": FakeSession()}))

    records, live = host_state.collect_target_state(ctx, logger=log)

    assert [r.category for r in records if r.level == "error"] == ["dhcp"]
    assert "dhcp_scopes" not in live


def test_destination_checks(definition_record, base_config, make_pool):
    destination = FakeSession("hv02")
    destination.reply("Get-VMSwitch", [{"Name": "OtherSwitch"}])
    destination.reply("Get-VM -Name 'app01'", {"Name": "app01", "State": "Off"})
    ctx = _ctx(definition_record, base_config, make_pool({"hv02": destination}))

    records = host_state.inspect_destination(ctx, "hv02", logger=log)

    assert [r.level for r in records] == ["error", "warning"]
    assert "SETswitch" in records[0].message
    assert host_state.inspect_destination(ctx, "HV01.corp.local", logger=log) == []


@pytest.mark.parametrize("workflow", [Workflow.move_vm, Workflow.move_vm_offline])
def test_move_prechecks_inspect_destination(workflow, definition_record, base_config, make_pool):
    destination = FakeSession("hv02").reply("Get-VMSwitch", [{"Name": "SETswitch"}])
    ctx = _ctx(definition_record, base_config, make_pool({"hv02": destination}))

    report = run_lifecycle_prechecks(ctx, workflow, stage_logger=log, destination="hv02")

    assert [r.message for r in report.records] == ["目标主机检查通过"]


def test_report_worst_level_and_targets():
    report = PrecheckReport()
    assert report.to_dict() == {"level": "ok", "has_error": False, "records": []}

    report.extend([
        ProbeRecord("winrm", "hv01", "ok", "WinRM 可达"),
        ProbeRecord("winrm", "hv02", "warning", "监听未响应"),
        ProbeRecord("switch", "hv02", "error", "交换机不存在"),
    ])

    assert report.worst_level == "error"
    assert report.targets_at("error") == {"hv02"}
    assert report.to_dict()["records"][1]["level"] == "warning"
