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

"""网络映射表（CSV / XLSX）解析与数据清洗。"""
from __future__ import annotations

import csv
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import openpyxl
from pydantic import ValidationError

from hvpilot.common.ip_utils import mask_to_prefix
from hvpilot.common.system_constants import MAPPING_KEYWORDS, MAPPING_SUFFIXES
from hvpilot.models import NetworkMapping, NetworkMappingRow

logger = logging.getLogger(__name__)

# 归一化表头 -> 字段名
HEADER_ALIASES: Dict[str, str] = {
    "host": "host",
    "hostname": "host",
    "computername": "host",
    "server": "host",
    "主机": "host",
    "主机名": "host",
    "adapter": "adapter",
    "adaptername": "adapter",
    "name": "adapter",
    "interface": "adapter",
    "interfacealias": "adapter",
    "nic": "adapter",
    "网卡": "adapter",
    "newname": "new_name",
    "newadaptername": "new_name",
    "targetname": "new_name",
    "rename": "new_name",
    "目标名称": "new_name",
    "mac": "mac_address",
    "macaddress": "mac_address",
    "physicaladdress": "mac_address",
    "role": "role",
    "type": "role",
    "adaptertype": "role",
    "角色": "role",
    "switch": "switch",
    "switchname": "switch",
    "vswitch": "switch",
    "virtualswitch": "switch",
    "交换机": "switch",
    "vlan": "vlan_id",
    "vlanid": "vlan_id",
    "ip": "ip_address",
    "ipaddress": "ip_address",
    "address": "ip_address",
    "地址": "ip_address",
    "prefix": "prefix_length",
    "prefixlength": "prefix_length",
    "mask": "prefix_length",
    "netmask": "prefix_length",
    "subnetmask": "prefix_length",
    "掩码": "prefix_length",
    "gateway": "gateway",
    "defaultgateway": "gateway",
    "router": "gateway",
    "网关": "gateway",
    "dns": "dns_servers",
    "dnsservers": "dns_servers",
    "rdma": "rdma",
    "jumbo": "jumbo_packet",
    "jumbopacket": "jumbo_packet",
    "jumboframe": "jumbo_packet",
    "mtu": "jumbo_packet",
    "qospriority": "qos_priority",
    "priority": "qos_priority",
    "pfcpriority": "qos_priority",
    "bandwidth": "qos_bandwidth_percent",
    "bandwidthpercent": "qos_bandwidth_percent",
    "qosbandwidth": "qos_bandwidth_percent",
    "minbandwidth": "qos_bandwidth_percent",
}

_TRUE = {"yes", "y", "true", "1", "enabled", "enable", "on", "是"}
_FALSE = {"no", "n", "false", "0", "disabled", "disable", "off", "否"}


def find_mapping_file(base_dir: Path) -> Path | None:
    """模糊匹配定位映射表文件，取修改时间最新的一个。"""
    candidates = []
    base = Path(base_dir)
    for p in (base.iterdir() if base.is_dir() else []):
        name = p.name.lower()
        if p.suffix.lower() not in MAPPING_SUFFIXES or name.startswith("~$"):
            continue
        if all(k in name for k in MAPPING_KEYWORDS):
            candidates.append(p)
    if not candidates:
        return None
    candidates.sort(key=lambda x: x.stat().st_mtime, reverse=True)
    return candidates[0]


def normalize_header(header: Any) -> Optional[str]:
    if header is None:
        return None
    key = re.sub(r"[\s_\-./()]+", "", str(header)).lower()
    return HEADER_ALIASES.get(key)


def _clean_cell(value: Any) -> Any:
    if isinstance(value, str):
        value = re.sub(r"\s+", " ", value.replace("\n", " ").replace("\r", " ")).strip()
        return value or None
    return value


def _to_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"无法识别的布尔值: {value}")


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, float):
        return int(value)
    return int(str(value).strip())


def _to_jumbo(value: Any) -> Optional[int]:
    number = _to_int(value)
    # MTU 列常写 1500 / 9000，换算为 *JumboPacket 取值
    if number in (1500, 9000):
        return number + 14
    return number


def _clean_record(raw: Dict[str, Any]) -> Dict[str, Any]:
    record: Dict[str, Any] = {}
    for key, value in raw.items():
        value = _clean_cell(value)
        if value is None:
            continue
        if key in {"vlan_id", "qos_priority", "qos_bandwidth_percent"}:
            record[key] = _to_int(value)
        elif key == "jumbo_packet":
            record[key] = _to_jumbo(value)
        elif key == "rdma":
            record[key] = _to_bool(value)
        elif key == "prefix_length":
            record[key] = mask_to_prefix(str(value))
        elif key == "dns_servers":
            record[key] = [part for part in re.split(r"[,;\s]+", str(value)) if part]
        else:
            record[key] = str(value) if not isinstance(value, str) else value
    ip = record.get("ip_address")
    if ip and "/" in ip:
        address, _, prefix = ip.partition("/")
        record["ip_address"] = address
        record.setdefault("prefix_length", mask_to_prefix(prefix))
    return record


def _read_csv(path: Path) -> Iterable[List[Any]]:
    with path.open("r", encoding="utf-8-sig", newline="") as handle:
        for row in csv.reader(handle):
            yield row


def _read_xlsx(path: Path) -> Iterable[List[Any]]:
    workbook = openpyxl.load_workbook(path, data_only=True, read_only=True)
    try:
        sheet = workbook.active
        for row in sheet.iter_rows(values_only=True):
            yield list(row)
    finally:
        workbook.close()


def parse_mapping(path: Path) -> Dict[str, Any]:
    """读取映射表，返回 ``{"records": [...], "_meta": {...}}``。"""
    path = Path(path)
    reader = _read_xlsx(path) if path.suffix.lower() == ".xlsx" else _read_csv(path)

    columns: List[Optional[str]] = []
    unknown: List[str] = []
    records: List[Dict[str, Any]] = []
    errors: List[str] = []
    for line_no, row in enumerate(reader, start=1):
        if not columns:
            if not any(_clean_cell(c) for c in row):
                continue
            columns = [normalize_header(c) for c in row]
            unknown = [str(c) for c, key in zip(row, columns) if c and key is None]
            if "host" not in columns or "adapter" not in columns:
                raise ValueError(f"映射表缺少 host/adapter 列: {path}")
            continue
        first = _clean_cell(row[0]) if row else None
        if isinstance(first, str) and first.startswith("#"):
            continue
        raw = {key: value for key, value in zip(columns, row) if key}
        if not any(_clean_cell(v) is not None for v in raw.values()):
            continue
        try:
            record = _clean_record(raw)
        except ValueError as exc:
            errors.append(f"第 {line_no} 行: {exc}")
            continue
        record["_line"] = line_no
        records.append(record)

    for column in unknown:
        logger.warning("映射表中存在未识别的列: %s", column)
    return {
        "records": records,
        "_meta": {"source_file": str(path), "unknown_columns": unknown, "errors": errors},
    }


def to_model(parsed: Dict[str, Any], *, strict: bool = False) -> NetworkMapping:
    """转换为 :class:`NetworkMapping`；非严格模式下跳过非法行并告警。"""
    meta = parsed.get("_meta", {}) or {}
    problems: List[str] = list(meta.get("errors") or [])
    rows: List[NetworkMappingRow] = []
    for record in parsed.get("records", []):
        data = {k: v for k, v in record.items() if not k.startswith("_")}
        try:
            rows.append(NetworkMappingRow(**data))
        except ValidationError as exc:
            problems.append(f"第 {record.get('_line', '?')} 行: {exc.errors()[0].get('msg')}")
    if problems:
        if strict:
            raise ValueError("映射表存在非法行: " + "; ".join(problems))
        for problem in problems:
            logger.warning("跳过映射表非法行 %s", problem)
    return NetworkMapping(rows=rows, source_file=meta.get("source_file"))


def load_mapping(path: Path, *, strict: bool = False) -> NetworkMapping:
    return to_model(parse_mapping(path), strict=strict)


def rows_for_host(mapping: NetworkMapping, host: str) -> List[NetworkMappingRow]:
    return mapping.rows_for_host(host)
