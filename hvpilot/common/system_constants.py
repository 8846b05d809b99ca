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

"""全局常量与魔法字符串集中管理。"""
from pathlib import Path

# 网络映射表定位关键词
MAPPING_KEYWORDS = ["network", "mapping"]
MAPPING_SUFFIXES = (".csv", ".xlsx")

# 日志与配置目录
PACKAGE_DIR = Path(__file__).resolve().parent.parent
PROJECT_ROOT = PACKAGE_DIR.parent
CONFIG_DIR = PACKAGE_DIR / "common" / "config"
LANG_DIR = PACKAGE_DIR / "langs"
LOG_DIR = PROJECT_ROOT / "logs"
ARTIFACTS_DIR = PROJECT_ROOT / "artifacts"

DEFAULT_CONFIG_FILE = CONFIG_DIR / "default.yml"

# WinRM 默认端口
WINRM_HTTP_PORT = 5985
WINRM_HTTPS_PORT = 5986

# 集群角色优先级（Get-ClusterGroup Priority）
CLUSTER_PRIORITY = {
    "high": 3000,
    "medium": 2000,
    "low": 1000,
    "no_auto": 0,
}

# VLAN 合法范围
VLAN_MIN = 0
VLAN_MAX = 4094

# 巨帧取值（*JumboPacket 高级属性）
JUMBO_PACKET_DEFAULT = 9014
STANDARD_PACKET = 1514
