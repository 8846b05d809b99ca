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

"""运行时上下文对象。"""
from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from hvpilot.common.config import Config
from hvpilot.core.changes import ChangeSet
from hvpilot.integrations.winrm import RemoteSession, SessionPool
from hvpilot.models import VmDefinition


@dataclass
class RunContext:
    definition: VmDefinition | None = None
    config: Config | None = None
    sessions: SessionPool | None = None
    dry_run: bool = False
    changes: ChangeSet = field(default_factory=ChangeSet)
    definition_file: Path | None = None
    work_dir: Path = field(default_factory=Path.cwd)
    extra: Dict[str, Any] = field(default_factory=dict)
    completed_stages: List[str] = field(default_factory=list)
    stage_results: Dict[str, str] = field(default_factory=dict)

    @property
    def vm_name(self) -> str:
        if self.definition is None:
            raise RuntimeError("运行上下文缺少虚机定义")
        return self.definition.name

    @property
    def current_host(self) -> str:
        """虚机当前所在主机；迁移完成后指向目标主机。"""
        host = self.extra.get("current_host")
        if host:
            return host
        if self.definition is None:
            raise RuntimeError("运行上下文缺少虚机定义")
        return self.definition.host

    @property
    def options(self) -> Dict[str, Any]:
        return self.extra.setdefault("cli_options", {})

    def session_for(self, host: str) -> RemoteSession:
        if self.sessions is None:
            raise RuntimeError("运行上下文缺少会话池")
        return self.sessions.get(host)

    def host_session(self) -> RemoteSession:
        return self.session_for(self.current_host)

    def infra_server(self, role: str) -> Optional[str]:
        infra = (self.config or {}).get("infrastructure", {}) or {}
        section = infra.get(role, {}) or {}
        server = section.get("server") or section.get("site_server")
        return str(server) if server else None

    def infra_session(self, role: str) -> Optional[RemoteSession]:
        server = self.infra_server(role)
        return self.session_for(server) if server else None
