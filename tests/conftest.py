from __future__ import annotations

import os
import sys
import threading
from concurrent.futures import Executor, Future
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pytest

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, os.fspath(ROOT / "src"))

from hatyai_sos.cache.redis_store import CacheEntry  # noqa: E402
from hatyai_sos.feed.fetcher import FetchResult  # noqa: E402
from hatyai_sos.feed.schema import SOSDataset  # noqa: E402


class FakeClock:
    """可手动推进的单调时钟。"""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStore:
    """内存版持久缓存，记录每次写入。"""

    def __init__(self, entry: Optional[CacheEntry] = None) -> None:
        self.entry = entry
        self.puts: List[tuple[CacheEntry, float]] = []
        self.get_calls = 0
        self.fail_puts = False
        self.healthy = True

    def get(self) -> Optional[CacheEntry]:
        self.get_calls += 1
        return self.entry

    def put(self, entry: CacheEntry, ttl: float) -> bool:
        if self.fail_puts:
            return False
        self.puts.append((entry, ttl))
        self.entry = entry
        return True

    def ping(self) -> bool:
        return self.healthy


class FakeFetcher:
    """按脚本返回结果；脚本用完后一律返回 304。

    gate 不为空时，fetch 会阻塞直到 gate 被 set，用于模拟慢速上游。
    """

    def __init__(
        self,
        responses: Sequence[Union[FetchResult, Exception]] = (),
        *,
        gate: Optional[threading.Event] = None,
    ) -> None:
        self._responses = list(responses)
        self.calls: List[str] = []
        self.gate = gate
        self.started = threading.Event()

    def fetch(self, etag: str) -> FetchResult:
        self.calls.append(etag)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if not self._responses:
            return FetchResult(dataset=None, etag=etag, not_modified=True)
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class ImmediateExecutor(Executor):
    """在调用线程内同步执行任务，使后台刷新结果可确定地断言。"""

    def __init__(self) -> None:
        self.submitted = 0

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
        self.submitted += 1
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as exc:
            future.set_exception(exc)
        return future


def _record(record_id: str, **props: Any) -> Dict[str, Any]:
    coordinates = props.pop("coordinates", [100.47, 7.01])
    updated_at = props.pop("record_updated_at", None)
    base: Dict[str, Any] = {
        "other": "",
        "victims": [],
        "patient": 0,
        "province": "Songkhla",
        "district": "Hat Yai",
        "subdistrict": "Khlong Hae",
        "sick_level_summary": 0,
        "ages": "",
        "disease": "",
    }
    base.update(props)
    return {
        "_id": record_id,
        "location": {
            "type": "Feature",
            "properties": base,
            "geometry": {"type": "Point", "coordinates": coordinates},
        },
        "running_number": record_id.upper(),
        "updated_at": updated_at,
        "created_at": "2025-11-25T08:00:00Z",
    }


@pytest.fixture
def make_record() -> Callable[..., Dict[str, Any]]:
    """构造单条上游记录（dict），属性可通过关键字参数覆盖。"""
    return _record


@pytest.fixture
def make_dataset() -> Callable[..., SOSDataset]:
    def factory(*records: Dict[str, Any], fetched_at: str = "2025-11-26T10:00:00Z") -> SOSDataset:
        items = list(records) or [_record("sos-1")]
        return SOSDataset.model_validate({"fetched_at": fetched_at, "data": {"data": items}})

    return factory


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def immediate_executor() -> ImmediateExecutor:
    return ImmediateExecutor()


@pytest.fixture
def fetcher_factory() -> Callable[..., FakeFetcher]:
    return FakeFetcher


@pytest.fixture
def store_factory() -> Callable[..., FakeStore]:
    return FakeStore
