import httpx

from hvpilot.common import network_utils
from hvpilot.common.network_utils import ProbeTask, probe_tcp, probe_winrm_listener, run_probe_tasks


def test_probe_tcp_retries_until_open(monkeypatch):
    answers = iter([False, False, True])
    monkeypatch.setattr(network_utils, "check_port", lambda host, port, timeout=1.0: next(answers))
    monkeypatch.setattr(network_utils, "RETRY_PAUSE", 0)

    result = probe_tcp("hv01", 5985, retries=2)

    assert result.success
    assert result.to_dict()["kind"] == "tcp"


def test_probe_tcp_reports_closed_port(monkeypatch):
    monkeypatch.setattr(network_utils, "check_port", lambda host, port, timeout=1.0: False)
    monkeypatch.setattr(network_utils, "RETRY_PAUSE", 0)

    result = probe_tcp("hv01", 5985, retries=1)

    assert not result.success
    assert result.detail == "tcp 5985 unreachable"


def test_winrm_listener_accepts_any_http_status(monkeypatch):
    seen = []

    def fake_get(url, timeout, verify):
        seen.append(url)
        return httpx.Response(405)

    monkeypatch.setattr(network_utils.httpx, "get", fake_get)

    result = probe_winrm_listener("hv01", 5986, ssl=True)

    assert result.success
    assert result.status_code == 405
    assert seen == ["https://hv01:5986/wsman"]


def test_winrm_listener_connection_error(monkeypatch):
    def fake_get(url, timeout, verify):
        raise httpx.ConnectTimeout("timed out")

    monkeypatch.setattr(network_utils.httpx, "get", fake_get)

    result = probe_winrm_listener("hv01", 5985)

    assert not result.success
    assert result.detail == "timed out"


def test_run_probe_tasks_keeps_order_and_captures_errors(monkeypatch):
    monkeypatch.setattr(network_utils, "check_port", lambda host, port, timeout=1.0: host != "hv02")
    tasks = [
        ProbeTask(target="hv01", kind="tcp", port=5985),
        ProbeTask(target="hv02", kind="tcp", port=5985),
        ProbeTask(target="hv03", kind="tcp"),
    ]

    results = run_probe_tasks(tasks, max_workers=3)

    assert [r.task.target for r in results] == ["hv01", "hv02", "hv03"]
    assert [r.success for r in results] == [True, False, False]
    assert "端口" in results[2].detail
    assert run_probe_tasks([]) == []
