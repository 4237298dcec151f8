from __future__ import annotations

from typing import Callable, Dict, Iterable, List

from pydantic import BaseModel

from hatyai_sos.feed.schema import SOSRecord

KeyExtractor = Callable[[SOSRecord], str]


class NameCount(BaseModel):
    name: str
    count: int


class CountGroup(BaseModel):
    total: int
    items: List[NameCount]


class AreaSummary(BaseModel):
    provinces: CountGroup
    districts: CountGroup
    subdistricts: CountGroup


def province_of(record: SOSRecord) -> str:
    return record.properties.province


def district_of(record: SOSRecord) -> str:
    return record.properties.district


def subdistrict_of(record: SOSRecord) -> str:
    return record.properties.subdistrict


def group_count(records: Iterable[SOSRecord], key: KeyExtractor) -> List[NameCount]:
    """按字段分组计数。

    去重键为去空白后的小写值，展示名保留首次出现的写法；空值跳过。
    结果按小写名称升序排列。
    """
    counts: Dict[str, List] = {}
    for record in records:
        name = key(record).strip()
        if not name:
            continue
        dedup_key = name.lower()
        slot = counts.get(dedup_key)
        if slot is None:
            counts[dedup_key] = [name, 1]
        else:
            slot[1] += 1

    return [
        NameCount(name=name, count=count)
        for name, count in sorted(counts.values(), key=lambda item: item[0].lower())
    ]


def filter_by_field(records: Iterable[SOSRecord], target: str, key: KeyExtractor) -> List[SOSRecord]:
    """字段精确匹配（大小写不敏感，去除两端空白）；目标为空时返回空列表。"""
    wanted = target.strip().lower()
    if not wanted:
        return []
    return [record for record in records if key(record).strip().lower() == wanted]


def summarize_areas(records: Iterable[SOSRecord]) -> AreaSummary:
    items = list(records)
    groups = {}
    for field_name, key in (
        ("provinces", province_of),
        ("districts", district_of),
        ("subdistricts", subdistrict_of),
    ):
        counted = group_count(items, key)
        groups[field_name] = CountGroup(total=len(counted), items=counted)
    return AreaSummary(**groups)


__all__ = [
    "AreaSummary",
    "CountGroup",
    "KeyExtractor",
    "NameCount",
    "district_of",
    "filter_by_field",
    "group_count",
    "province_of",
    "subdistrict_of",
    "summarize_areas",
]
