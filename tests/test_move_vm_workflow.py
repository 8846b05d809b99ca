import json
import threading

import pytest

from hvpilot.core.changes import ChangeSet
from hvpilot.core.lifecycle.lifecycle_executor import RunOptions, execute_workflow
from hvpilot.core.lifecycle.runtime_context import RunContext
from hvpilot.core.lifecycle.stage_manager import AbortRequestedError, Stage, Workflow, raise_if_aborted
from hvpilot.models import VmDefinition

from conftest import FakeSession

SOURCE_DISK = "C:\\ClusterStorage\\Volume1\\Hyper-V\\app01\\app01-os.vhdx"


@pytest.fixture
def defn(definition_record):
    return VmDefinition.model_validate({"name": "app01", **definition_record})


def _source(**vm):
    session = FakeSession("hv01")
    session.reply("Get-VM -Name", {"Name": "app01", "State": "Running", "IsClustered": False, **vm})
    session.reply("Get-VMHardDiskDrive", [{"Path": SOURCE_DISK}])
    return session


def _destination(disk_path=None):
    session = FakeSession("hv02")
    session.reply("Get-VMSwitch", [{"Name": "SETswitch"}])
    if disk_path:
        session.reply("Get-VMHardDiskDrive", [{"Path": disk_path}])
    return session


def test_online_move_updates_definition(defn, definition_file, base_config, make_pool):
    source = _source()
    destination = _destination("D:\\VMs\\app01\\app01-os.vhdx")

    execute_workflow(
        Workflow.move_vm,
        defn,
        RunOptions(destination_host="hv02", destination_path="D:\\VMs"),
        definition_file=definition_file,
        config=base_config,
        pool=make_pool({"hv01": source, "hv02": destination}),
    )

    move = source.ran("Move-VM")[0]
    assert "-DestinationHost 'hv02'" in move
    assert "-DestinationStoragePath 'D:\\VMs\\app01'" in move
    record = json.loads(definition_file.read_text(encoding="utf-8"))["app01"]
    assert record["host"] == "hv02"
    assert record["path"] == "D:\\VMs"
    assert record["hard_disks"][0]["path"] == "D:\\VMs\\app01\\app01-os.vhdx"


def test_clustered_move_uses_cluster_role(defn, definition_file, base_config, make_pool):
    source = _source(IsClustered=True)
    destination = _destination(SOURCE_DISK)

    execute_workflow(
        Workflow.move_vm,
        defn,
        RunOptions(destination_host="hv02", destination_path="D:\\Elsewhere"),
        definition_file=definition_file,
        config=base_config,
        pool=make_pool({"hv01": source, "hv02": destination}),
    )

    assert source.ran("Move-ClusterVirtualMachineRole")
    assert not source.ran("Move-VM ")
    record = json.loads(definition_file.read_text(encoding="utf-8"))["app01"]
    assert record["path"] == defn.path


def test_move_to_same_host_is_noop(defn, base_config, make_pool):
    source = _source()

    result = execute_workflow(
        Workflow.move_vm, defn, RunOptions(destination_host="HV01.corp.local"), config=base_config,
        pool=make_pool({"hv01": source}),
    )

    assert source.commands == []
    assert result.stage_results["migrate_vm"] == "skipped"


def test_already_moved_vm_is_noop(defn, base_config, make_pool):
    source = FakeSession("hv01")
    destination = _destination().reply("Get-VM -Name", {"Name": "app01", "State": "Running"})

    result = execute_workflow(
        Workflow.move_vm, defn, RunOptions(destination_host="hv02"), config=base_config,
        pool=make_pool({"hv01": source, "hv02": destination}),
    )

    assert source.commands == [] and destination.commands == []
    assert result.summary["host"] == "hv02"


def test_destination_missing_switch_fails(defn, base_config, make_pool):
    source = _source()
    destination = FakeSession("hv02").reply("Get-VMSwitch", [{"Name": "Other"}])

    with pytest.raises(RuntimeError):
        execute_workflow(
            Workflow.move_vm, defn, RunOptions(destination_host="hv02"), config=base_config,
            pool=make_pool({"hv01": source, "hv02": destination}),
        )
    assert source.commands == []


def test_offline_move_rejects_clustered_vm(defn, base_config, make_pool):
    source = _source(IsClustered=True)

    with pytest.raises(RuntimeError):
        execute_workflow(
            Workflow.move_vm_offline, defn,
            RunOptions(destination_host="hv02", export_path="\\\\fs01\\export"),
            config=base_config, pool=make_pool({"hv01": source, "hv02": _destination()}),
        )


def test_offline_move_requires_export_path(defn, base_config, make_pool):
    with pytest.raises(RuntimeError):
        execute_workflow(
            Workflow.move_vm_offline, defn, RunOptions(destination_host="hv02"),
            config=base_config, pool=make_pool({"hv01": _source(), "hv02": _destination()}),
        )


def test_offline_move_exports_imports_and_cleans_source(defn, definition_file, base_config, make_pool):
    source = _source()
    exported = "\\\\fs01\\export\\app01"
    source.reply("Test-Path", lambda body: "fs01" in body and bool(source.ran("Export-VM")) or "Volume1" in body)
    destination = _destination("D:\\VMs\\app01\\Virtual Hard Disks\\app01-os.vhdx")
    destination.reply("Get-VM -Name", lambda body: [{"Name": "app01", "State": "Off"}] if destination.ran("Import-VM") else [])

    result = execute_workflow(
        Workflow.move_vm_offline,
        defn,
        RunOptions(destination_host="hv02", destination_path="D:\\VMs", export_path="\\\\fs01\\export"),
        definition_file=definition_file,
        config=base_config,
        pool=make_pool({"hv01": source, "hv02": destination}),
    )

    assert source.ran("Stop-VM")
    assert source.ran("Export-VM")
    assert destination.ran("Import-VM")
    assert source.ran("Remove-VM")
    removed = source.ran("Remove-Item")
    assert any(SOURCE_DISK in c for c in removed)
    assert any(exported in c for c in removed)
    assert destination.ran("Start-VM")
    assert result.summary["host"] == "hv02"
    record = json.loads(definition_file.read_text(encoding="utf-8"))["app01"]
    assert record["hard_disks"][0]["path"] == "D:\\VMs\\app01\\Virtual Hard Disks\\app01-os.vhdx"


def test_offline_move_stops_after_export_when_aborted(defn, base_config, make_pool):
    source = _source()
    source.reply("Test-Path", lambda body: "Volume1" in body)
    destination = _destination()
    abort = threading.Event()

    def on_progress(event, stage, ctx):
        if event == "complete" and stage == Stage.export_vm:
            abort.set()

    with pytest.raises(AbortRequestedError):
        execute_workflow(
            Workflow.move_vm_offline,
            defn,
            RunOptions(destination_host="hv02", destination_path="D:\\VMs", export_path="\\\\fs01\\export"),
            config=base_config,
            pool=make_pool({"hv01": source, "hv02": destination}),
            progress_callback=on_progress,
            abort_signal=abort,
        )

    assert source.ran("Export-VM")
    assert not destination.ran("Import-VM")
    assert not source.ran("Remove-VM")


def test_import_checks_abort_signal_in_context(defn, base_config, make_pool):
    ctx = RunContext(definition=defn, config=base_config, sessions=make_pool({}), changes=ChangeSet())
    ctx.extra["abort_signal"] = threading.Event()

    raise_if_aborted({"ctx": ctx})

    ctx.extra["abort_signal"].set()
    with pytest.raises(AbortRequestedError):
        raise_if_aborted({"ctx": ctx}, hint="import_vm")


def _offline_move_same_path(definition_record, definition_file, base_config, make_pool, base_path):
    disk = f"{base_path}\\app01\\app01-os.vhdx"
    record = {**definition_record, "path": base_path,
              "hard_disks": [{**definition_record["hard_disks"][0], "path": disk}]}
    defn = VmDefinition.model_validate({"name": "app01", **record})
    source = _source()
    source.reply("Get-VMHardDiskDrive", [{"Path": disk}])
    source.reply("Test-Path", lambda body: bool(source.ran("Export-VM")))
    destination = _destination(disk)
    destination.reply("Get-VM -Name", lambda body: [{"Name": "app01", "State": "Off"}] if destination.ran("Import-VM") else [])

    execute_workflow(
        Workflow.move_vm_offline, defn,
        RunOptions(destination_host="hv02", export_path="\\\\fs01\\export"),
        definition_file=definition_file, config=base_config,
        pool=make_pool({"hv01": source, "hv02": destination}),
    )
    return source, disk


def test_offline_move_local_same_path_still_cleans_source(definition_record, definition_file, base_config, make_pool):
    source, disk = _offline_move_same_path(definition_record, definition_file, base_config, make_pool, "D:\\VMs")

    removed = source.ran("Remove-Item")
    assert any(disk in c for c in removed)
    assert any("D:\\VMs\\app01" in c for c in removed)


def test_offline_move_on_shared_storage_keeps_files(definition_record, definition_file, base_config, make_pool):
    source, disk = _offline_move_same_path(
        definition_record, definition_file, base_config, make_pool, "C:\\ClusterStorage\\Volume1\\Hyper-V"
    )

    removed = source.ran("Remove-Item")
    assert not any(disk in c for c in removed)
    assert any("\\\\fs01\\export\\app01" in c for c in removed)
