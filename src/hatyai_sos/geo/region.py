# Copyright 2025 msq
"""泰国南部地区判定：省份白名单 + 海岸线多边形包含测试。"""

from __future__ import annotations

from typing import Callable, Iterable, List, Sequence, Tuple

from hatyai_sos.feed.schema import SOSRecord

SOUTHERN_PROVINCES = frozenset(
    {
        "phuket",
        "krabi",
        "phang nga",
        "ranong",
        "chumphon",
        "surat thani",
        "nakhon si thammarat",
        "phatthalung",
        "trang",
        "satun",
        "songkhla",
        "pattani",
        "yala",
        "narathiwat",
        "ภูเก็ต",
        "กระบี่",
        "พังงา",
        "ระนอง",
        "ชุมพร",
        "สุราษฎร์ธานี",
        "นครศรีธรรมราช",
        "พัทลุง",
        "ตรัง",
        "สตูล",
        "สงขลา",
        "ปัตตานี",
        "ยะลา",
        "นราธิวาส",
    }
)

# (经度, 纬度)，按顺序连接，最后一点隐式连回第一点
SOUTHERN_POLYGON: Tuple[Tuple[float, float], ...] = (
    (98.20, 8.30),  # Phuket NW
    (98.30, 7.70),  # Phuket South
    (98.45, 7.20),  # Krabi
    (98.80, 6.80),  # Trang
    (99.10, 6.50),  # Satun
    (100.00, 5.60),  # Yala South
    (101.30, 5.75),  # Narathiwat South
    (102.10, 6.50),  # Gulf East
    (102.10, 7.80),  # Narathiwat East
    (101.90, 8.80),  # Nakhon Si Thammarat
    (101.50, 9.60),
    (101.00, 10.50),  # Surat Thani
    (100.50, 11.10),  # Chumphon
    (99.50, 11.10),
    (98.80, 10.50),
    (98.30, 9.50),  # Ranong
    (98.20, 8.80),
)

SOUTHERN_LAT_RANGE = (5.6, 11.1)
SOUTHERN_LON_RANGE = (98.3, 102.1)


def is_southern_province(province: str) -> bool:
    return province.strip().lower() in SOUTHERN_PROVINCES


def point_in_polygon(lat: float, lon: float, polygon: Sequence[Tuple[float, float]]) -> bool:
    """射线法：统计从点出发的水平射线与多边形边的交点奇偶性。

    边界上的点由奇偶规则决定（一侧包含、另一侧不包含），不保证对称。
    """
    inside = False
    n = len(polygon)
    j = n - 1
    for i in range(n):
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        if (yi > lat) != (yj > lat) and lon < (xj - xi) * (lat - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def in_southern_thailand(lat: float, lon: float) -> bool:
    """先用包围盒快速排除，再做多边形测试。"""
    if lat < SOUTHERN_LAT_RANGE[0] or lat > SOUTHERN_LAT_RANGE[1]:
        return False
    if lon < SOUTHERN_LON_RANGE[0] or lon > SOUTHERN_LON_RANGE[1]:
        return False
    return point_in_polygon(lat, lon, SOUTHERN_POLYGON)


def filter_by_province(records: Iterable[SOSRecord], allow: Callable[[str], bool]) -> List[SOSRecord]:
    return [record for record in records if allow(record.properties.province)]


def filter_by_lat_lon(records: Iterable[SOSRecord], allow: Callable[[float, float], bool]) -> List[SOSRecord]:
    """按坐标过滤；缺少坐标的记录直接排除。"""
    filtered: List[SOSRecord] = []
    for record in records:
        lon_lat = record.location.geometry.lon_lat
        if lon_lat is None:
            continue
        lon, lat = lon_lat
        if allow(lat, lon):
            filtered.append(record)
    return filtered


def southern_records(records: Iterable[SOSRecord]) -> List[SOSRecord]:
    """同时满足省份白名单与多边形范围的记录。"""
    return filter_by_lat_lon(filter_by_province(records, is_southern_province), in_southern_thailand)


__all__ = [
    "SOUTHERN_POLYGON",
    "SOUTHERN_PROVINCES",
    "filter_by_lat_lon",
    "filter_by_province",
    "in_southern_thailand",
    "is_southern_province",
    "point_in_polygon",
    "southern_records",
]
