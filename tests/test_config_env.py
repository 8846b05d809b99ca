from hvpilot.common.config import get_section, load_config


def test_load_config_uses_env_credentials(tmp_path, monkeypatch):
    cfg_file = tmp_path / "config.yml"
    cfg_file.write_text("winrm:\n  username: file-user\n  password: file-pass\n", encoding="utf-8")

    monkeypatch.setenv("HVPILOT_WINRM_USERNAME", "CORP\\svc-hv")
    monkeypatch.setenv("HVPILOT_WINRM_PASSWORD", "env-pass")

    cfg = load_config(cfg_file)

    assert cfg["winrm"]["username"] == "CORP\\svc-hv"
    assert cfg["winrm"]["password"] == "env-pass"


def test_environment_boolean_and_port_overrides(tmp_path, monkeypatch):
    cfg_file = tmp_path / "conf.yml"
    cfg_file.write_text("winrm:\n  ssl: false\nlifecycle:\n  dry_run: false\n", encoding="utf-8")

    monkeypatch.setenv("HVPILOT_WINRM_SSL", "true")
    monkeypatch.setenv("HVPILOT_WINRM_PORT", "15986")
    monkeypatch.setenv("HVPILOT_WINRM_TRANSPORT", "Kerberos")
    monkeypatch.setenv("HVPILOT_DRY_RUN", "yes")
    monkeypatch.setenv("HVPILOT_SCCM_BASE_URL", "https://sccm.example/AdminService")

    cfg = load_config(cfg_file)

    assert cfg["winrm"]["ssl"] is True
    assert cfg["winrm"]["port"] == 15986
    assert cfg["winrm"]["transport"] == "kerberos"
    assert cfg["lifecycle"]["dry_run"] is True
    assert cfg["infrastructure"]["sccm"]["base_url"] == "https://sccm.example/AdminService"


def test_port_inferred_from_ssl(tmp_path, monkeypatch):
    for key in ("HVPILOT_WINRM_PORT", "HVPILOT_WINRM_SSL"):
        monkeypatch.delenv(key, raising=False)

    plain = tmp_path / "plain.yml"
    plain.write_text("{}", encoding="utf-8")
    secure = tmp_path / "secure.yml"
    secure.write_text("winrm:\n  ssl: true\n", encoding="utf-8")

    assert load_config(plain)["winrm"]["port"] == 5985
    assert load_config(plain)["winrm"]["transport"] == "ntlm"
    assert load_config(secure)["winrm"]["port"] == 5986


def test_get_section_tolerates_missing_levels():
    cfg = {"infrastructure": {"dhcp": {"server": "dhcp01"}, "dns": None}}

    assert get_section(cfg, "infrastructure", "dhcp") == {"server": "dhcp01"}
    assert get_section(cfg, "infrastructure", "dns") == {}
    assert get_section(cfg, "audit", "output_dir") == {}
    assert get_section(None, "winrm") == {}
