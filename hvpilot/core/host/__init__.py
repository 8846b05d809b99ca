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

"""主机网络配置调和。"""
from .host_configurator import configure_host, configure_qos, rename_adapters  # noqa: F401
from .network_addresses import configure_addresses  # noqa: F401
from .physical_adapters import configure_physical  # noqa: F401
from .runner import apply_to_hosts  # noqa: F401
from .virtual_switch import configure_virtual_switch  # noqa: F401
