from hvpilot.integrations.winrm import build_command, ps_args, ps_quote, ps_value
from hvpilot.integrations.winrm.powershell import wrap_json_script, wrap_script


def test_ps_quote_doubles_single_quotes():
    assert ps_quote("O'Brien") == "'O''Brien'"
    assert ps_quote("a’b") == "'a’’b'"


def test_ps_value_literals():
    assert ps_value(None) == "$null"
    assert ps_value(True) == "$true"
    assert ps_value(8) == "8"
    assert ps_value(["a", 1]) == "@('a', 1)"
    assert ps_value({"Name": "x"}) == "@{'Name' = 'x'}"


def test_ps_args_skips_none_and_uses_colon_for_bool():
    rendered = ps_args({"Name": "vm 1", "Generation": 2, "Path": None, "Force": True})

    assert rendered == "-Name 'vm 1' -Generation 2 -Force:$true"


def test_build_command_without_params():
    assert build_command("Get-VM") == "Get-VM"
    assert build_command("Stop-VM", {"Name": "db"}) == "Stop-VM -Name 'db'"


def test_wrappers_stop_on_error():
    json_script = wrap_json_script("Get-VM", depth=3)
    plain = wrap_script("Start-VM -Name 'x'")

    assert "$ErrorActionPreference = 'Stop'" in json_script
    assert "ConvertTo-Json -InputObject $__result -Depth 3" in json_script
    assert "exit 1" in plain
    assert "Start-VM -Name 'x'" in plain
