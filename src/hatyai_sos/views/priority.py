# Copyright 2025 msq
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional

from pydantic import BaseModel

from hatyai_sos.feed.schema import SOSRecord
from hatyai_sos.scoring.severity import SeverityResult, calculate, parse_timestamp

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class PrioritizedRecord(BaseModel):
    record: SOSRecord
    priority: SeverityResult

    def to_payload(self) -> dict:
        """展开为记录字段 + priority，与 /v1/south 的条目结构保持一致。"""
        payload = self.record.model_dump(mode="json", by_alias=True)
        payload["priority"] = self.priority.model_dump(mode="json")
        return payload


class PriorityView(BaseModel):
    count: int
    items: List[PrioritizedRecord]


def most_recent_update(record: SOSRecord) -> datetime:
    """优先取记录级 updated_at，其次取属性中的 updated_at；都无法解析时视为最旧。"""
    for candidate in (record.updated_at, record.properties.updated_at):
        parsed = parse_timestamp(candidate)
        if parsed is not None:
            return parsed
    return _EPOCH


def prioritize(
    records: Iterable[SOSRecord],
    *,
    level: Optional[str] = None,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PriorityView:
    """评分并排序：分数降序，同分按最近更新时间降序（稳定排序）。

    level 为空或 "all" 时不过滤；limit 仅在为正且小于总数时生效，
    count 始终是截断前的数量。
    """
    items = [PrioritizedRecord(record=r, priority=calculate(r.properties, now=now)) for r in records]

    wanted = (level or "").strip().lower()
    if wanted and wanted != "all":
        items = [item for item in items if item.priority.level.value == wanted]

    items.sort(key=lambda item: (-item.priority.score, -most_recent_update(item.record).timestamp()))

    count = len(items)
    if limit is not None and 0 < limit < count:
        items = items[:limit]
    return PriorityView(count=count, items=items)


__all__ = ["PrioritizedRecord", "PriorityView", "most_recent_update", "prioritize"]
