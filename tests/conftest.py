import json

import pytest

from hvpilot.common.config import Config
from hvpilot.integrations.winrm import RemoteCommandError, SessionPool, WinRMSettings


class FakeSession:
    """按脚本子串回放查询结果的远程会话替身。

    ``replies`` 中先登记的模式优先匹配；值为异常实例时直接抛出。
    ``invoke`` 只记录脚本，``fail_on`` 中的子串会让其抛出 RemoteCommandError。
    """

    def __init__(self, host="hv01", replies=None, fail_on=None):
        self.host = host
        self.replies = list(replies or [])
        self.fail_on = list(fail_on or [])
        self.queries = []
        self.commands = []
        self.closed = False

    def reply(self, pattern, value):
        self.replies.insert(0, (pattern, value))
        return self

    def invoke_json(self, body, *, context=None, depth=6):
        self.queries.append(body)
        for pattern, value in self.replies:
            if pattern in body:
                if isinstance(value, Exception):
                    raise value
                if callable(value):
                    value = value(body)
                if value is None:
                    return []
                return list(value) if isinstance(value, list) else [value]
        return []

    def invoke(self, body, *, context=None):
        self.commands.append(body)
        for pattern in self.fail_on:
            if pattern in body:
                raise RemoteCommandError(self.host, body, f"failed: {pattern}", 1, context)
        return ""

    def ran(self, fragment):
        return [c for c in self.commands if fragment in c]

    def close(self):
        self.closed = True


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def make_pool():
    def _make(sessions):
        by_host = {k.lower(): v for k, v in sessions.items()}

        def factory(host, settings):
            return by_host.setdefault(host.lower(), FakeSession(host))

        return SessionPool(WinRMSettings(username="admin"), factory=factory)

    return _make


@pytest.fixture
def base_config():
    return Config(
        {
            "winrm": {"username": "admin", "password": "secret"},
            "infrastructure": {
                "dhcp": {"server": ""},
                "dns": {"server": "", "zone": ""},
                "ad": {"server": ""},
                "wds": {"server": "", "boot_image": ""},
                "sccm": {"site_server": "", "site_code": "", "mock": True},
            },
            "lifecycle": {"dry_run": False, "export_path": ""},
            "precheck": {"winrm_probe": {"enabled": False}},
            "validation": {"strict": False},
            "audit": {"max_workers": 2},
            "logging": {"level": "INFO"},
        }
    )


@pytest.fixture
def definition_record():
    return {
        "host": "hv01",
        "path": "C:\\ClusterStorage\\Volume1\\Hyper-V",
        "generation": 2,
        "processor_count": 4,
        "memory_startup_gb": 8,
        "hard_disks": [
            {"path": "C:\\ClusterStorage\\Volume1\\Hyper-V\\app01\\app01-os.vhdx", "size_gb": 80, "boot": True},
        ],
        "network_adapters": [
            {"name": "LAN", "switch": "SETswitch", "vlan_mode": "access", "vlan_id": 20},
        ],
    }


@pytest.fixture
def definition_file(tmp_path, definition_record):
    path = tmp_path / "vms.json"
    path.write_text(json.dumps({"app01": definition_record}, ensure_ascii=False), encoding="utf-8")
    return path
