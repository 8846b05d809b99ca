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

"""Hyper-V 声明式运维工具包。

提供：
- JSON 虚机定义解析与验证
- 分阶段虚机生命周期工作流（创建 / 下线 / 迁移）
- 主机网络配置调和
- WinRM 远程会话与平台 API 封装
- 巡检报表
"""
from .application_version import __version__  # noqa: F401
