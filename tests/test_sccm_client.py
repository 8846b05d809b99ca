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
import logging
from types import SimpleNamespace

import pytest

from hvpilot.integrations import sccm
from hvpilot.integrations.sccm import AdminServiceClient, APIError


class RecordingHttp:
    def __init__(self, status=200, payload=None):
        self.headers = {}
        self.auth = None
        self.verify = True
        self.status = status
        self.payload = payload if payload is not None else {"value": []}
        self.calls = []

    def get(self, url, params=None, timeout=None, headers=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        body = json.dumps(self.payload)
        return SimpleNamespace(status_code=self.status, text=body, content=body.encode(), json=lambda: self.payload)


def test_from_config_derives_base_url():
    client = AdminServiceClient.from_config(
        {"infrastructure": {"sccm": {"site_server": "sccm01.corp.local", "mock": True}}, "winrm": {"username": ""}}
    )

    assert client.base_url == "https://sccm01.corp.local/AdminService"
    assert client.mock is True


def test_mock_mode_finds_nothing():
    client = AdminServiceClient("https://sccm01/AdminService", mock=True)

    assert client.find_device("app01") is None


def test_find_device_builds_odata_query():
    http = RecordingHttp(payload={"value": [{"ResourceId": 16777220, "Name": "APP01"}]})
    client = AdminServiceClient("https://sccm01/AdminService/", session=http, timeout=7)

    device = client.find_device("APP01")

    assert device["ResourceId"] == 16777220
    call = http.calls[0]
    assert call["url"] == "https://sccm01/AdminService/wmi/SMS_R_System"
    assert call["params"]["$filter"] == "Name eq 'APP01'"
    assert call["timeout"] == 7
    assert http.headers["Accept"] == "application/json"


def test_find_device_by_mac_uses_colon_format():
    http = RecordingHttp()
    client = AdminServiceClient("https://sccm01/AdminService", session=http)

    assert client.find_device_by_mac("00155d010203") is None
    assert "00:15:5D:01:02:03" in http.calls[0]["params"]["$filter"]


def test_client_error_is_not_retried():
    http = RecordingHttp(status=404, payload={"error": "not found"})
    client = AdminServiceClient("https://sccm01/AdminService", session=http)

    with pytest.raises(APIError) as info:
        client.get("wmi/SMS_Collection")

    assert info.value.status_code == 404
    assert len(http.calls) == 1


def test_debug_log_masks_authorization(caplog):
    http = RecordingHttp()
    http.headers["Authorization"] = "NTLM abcdefgh"
    client = AdminServiceClient("https://sccm01/AdminService", session=http)

    with caplog.at_level(logging.DEBUG, logger="hvpilot.integrations.sccm.admin_service_client"):
        client.get("wmi/SMS_R_System")

    assert "abcdefgh" not in caplog.text
    assert "NT***gh" in caplog.text


def test_package_exports_site_cmdlet_helpers():
    for name in ("import_computer", "remove_device", "update_collection_membership"):
        assert getattr(sccm, name) is getattr(sccm.sccm_api, name)
