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

import json
from types import SimpleNamespace

import pytest
import yaml
from typer.testing import CliRunner

from conftest import FakeSession
from hvpilot import command_line_interface as cli
from hvpilot.common import logging_config
from hvpilot.core.lifecycle.stage_manager import Stage, Workflow
from hvpilot.integrations.winrm import RemoteCommandError

runner = CliRunner()

MAPPING_CSV = """Host Name,Adapter,New Name,MAC Address,Role,vSwitch,VLAN,IP Address,Gateway,DNS,RDMA,MTU,Priority,Bandwidth
hv01,SLOT 2 Port 1,SMB1,00-15-5D-01-02-03,physical,SETswitch,,,,,yes,,3,50
"""


@pytest.fixture(autouse=True)
def _log_to_tmp(tmp_path, monkeypatch):
    monkeypatch.setattr(logging_config, "DEFAULT_LOG_FILE", tmp_path / "logs" / "hvpilot.log")


@pytest.fixture
def config_file(tmp_path, base_config):
    path = tmp_path / "config.yml"
    path.write_text(yaml.safe_dump(dict(base_config), allow_unicode=True), encoding="utf-8")
    return path


@pytest.fixture
def mapping_file(tmp_path):
    path = tmp_path / "network-mapping.csv"
    path.write_text(MAPPING_CSV, encoding="utf-8")
    return path


def _invoke(config_file, *args):
    return runner.invoke(cli.app, ["--config", str(config_file), *args])


def test_stages_list_for_workflow(config_file):
    result = _invoke(config_file, "stages-list", "--workflow", "move-vm-offline")

    assert result.exit_code == 0
    names = [item["name"] for item in json.loads(result.stdout)]
    assert names[0] == "prepare_move"
    assert "export_vm" in names
    assert "create_vm" not in names


def test_stages_list_unknown_workflow(config_file):
    result = _invoke(config_file, "stages-list", "--workflow", "clone")
    assert result.exit_code == 1


def test_vm_check_offline(config_file, definition_file):
    result = _invoke(config_file, "vm", "check", "-f", str(definition_file), "-n", "app01")

    assert result.exit_code == 0, result.stdout
    assert '"ok": true' in result.stdout


def test_vm_check_unknown_name(config_file, definition_file):
    result = _invoke(config_file, "vm", "check", "-f", str(definition_file), "-n", "ghost")
    assert result.exit_code == 1


def test_vm_check_invalid_definition(config_file, tmp_path, definition_record):
    record = dict(definition_record)
    record["hard_disks"] = [dict(record["hard_disks"][0], controller_type="IDE")]
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"app01": record}), encoding="utf-8")

    result = _invoke(config_file, "vm", "check", "-f", str(path), "-n", "app01")

    assert result.exit_code == 2
    assert '"ok": false' in result.stdout


def test_vm_remove_passes_options_to_workflow(config_file, definition_file, monkeypatch):
    seen = {}

    def fake_execute(workflow, definition, options, **kwargs):
        seen.update(workflow=workflow, definition=definition, options=options, **kwargs)
        return SimpleNamespace(to_dict=lambda: {"changes": [], "summary": {"host": definition.host}})

    monkeypatch.setattr(cli, "execute_workflow", fake_execute)

    result = _invoke(
        config_file, "vm", "remove", "-f", str(definition_file), "-n", "app01",
        "--force", "--dry-run", "--stages", "remove_vm,prepare_removal",
    )

    assert result.exit_code == 0, result.stdout
    assert seen["workflow"] is Workflow.remove_vm
    assert seen["options"].force is True
    assert seen["options"].dry_run is True
    assert seen["stages"] == [Stage.prepare_removal, Stage.remove_vm]
    assert seen["definition_file"] == definition_file
    assert '"status": "ok"' in result.stdout


def test_vm_new_rejects_foreign_stage(config_file, definition_file):
    result = _invoke(config_file, "vm", "new", "-f", str(definition_file), "-n", "app01", "--stages", "export_vm")
    assert result.exit_code == 1


def test_vm_new_failure_exit_code(config_file, definition_file, monkeypatch):
    def fake_execute(*args, **kwargs):
        raise RuntimeError("交换机不存在")

    monkeypatch.setattr(cli, "execute_workflow", fake_execute)

    result = _invoke(config_file, "vm", "new", "-f", str(definition_file), "-n", "app01")

    assert result.exit_code == 2
    assert "交换机不存在" in result.stdout


def test_host_configure_rejects_conflicting_qos_flags(config_file, mapping_file):
    result = _invoke(config_file, "host", "configure", "--mapping", str(mapping_file), "--add", "--clear")
    assert result.exit_code == 1


def test_host_physical_dry_run(config_file, mapping_file, monkeypatch, make_pool):
    session = FakeSession()
    session.reply("Get-NetAdapterRdma", [{"Name": "SMB1", "Enabled": False}])
    pool = make_pool({"hv01": session})
    monkeypatch.setattr(cli, "SessionPool", lambda settings: pool)

    result = _invoke(config_file, "host", "physical", "--mapping", str(mapping_file), "--dry-run")

    assert result.exit_code == 0, result.stdout
    assert session.commands == []
    assert any("Get-NetAdapterRdma" in q for q in session.queries)
    assert '"dry_run": true' in result.stdout
    assert session.closed


def test_host_operation_with_missing_mapping(config_file, tmp_path):
    result = _invoke(config_file, "host", "vswitch", "--mapping", str(tmp_path / "absent.csv"))
    assert result.exit_code == 1


def test_audit_hosts_writes_report(config_file, tmp_path, monkeypatch, make_pool):
    pool = make_pool({"hv01": FakeSession("hv01")})
    monkeypatch.setattr(cli, "SessionPool", lambda settings: pool)
    output = tmp_path / "out" / "hosts.txt"

    result = _invoke(config_file, "audit", "hosts", "--host", "hv01", "-o", str(output))

    assert result.exit_code == 0, result.stdout
    assert output.exists()
    assert "HVPilot 巡检报告" in output.read_text(encoding="utf-8")


def test_audit_vms_reports_failed_host(config_file, tmp_path, monkeypatch, make_pool):
    broken = FakeSession("hv02").reply(
        "Get-NetAdapter | Select-Object", RemoteCommandError("hv02", "Get-NetAdapter", "WinRM 拒绝访问", 5)
    )
    pool = make_pool({"hv01": FakeSession("hv01"), "hv02": broken})
    monkeypatch.setattr(cli, "SessionPool", lambda settings: pool)
    output = tmp_path / "vms.txt"

    result = _invoke(config_file, "audit", "vms", "--host", "hv01", "--host", "hv02", "-o", str(output))

    assert result.exit_code == 2
    assert "WinRM 拒绝访问" in output.read_text(encoding="utf-8")
