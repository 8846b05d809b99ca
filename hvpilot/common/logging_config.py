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

"""日志初始化：控制台 + 轮转文件。

文件位置与轮转参数可由配置的 ``logging`` 段覆盖::

    logging:
      level: INFO
      file: logs/hvpilot.log
      max_bytes: 2097152
      backup_count: 5
"""
from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .system_constants import LOG_DIR

DEFAULT_LOG_FILE = LOG_DIR / "hvpilot.log"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# pywinrm / requests 的连接日志在 DEBUG 下会刷屏
TRANSPORT_LOGGERS = ("urllib3", "requests_ntlm", "winrm")


def setup_logging(
    level: str = "INFO",
    log_file: str | Path | None = None,
    *,
    max_bytes: int = 2 * 1024 * 1024,
    backup_count: int = 5,
) -> Path:
    """按级别重建根日志器的处理器，返回日志文件路径。"""
    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    target = Path(log_file) if log_file else DEFAULT_LOG_FILE

    # force=True 会移除旧处理器，重复调用时级别随之更新
    logging.basicConfig(level=numeric, format=LOG_FORMAT, datefmt=DATE_FORMAT, force=True)

    target.parent.mkdir(parents=True, exist_ok=True)
    rotating = RotatingFileHandler(target, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    rotating.setLevel(numeric)
    rotating.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    logging.getLogger().addHandler(rotating)

    for name in TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))

    logging.getLogger(__name__).debug("日志输出到 %s（级别 %s）", target, logging.getLevelName(numeric))
    return target
