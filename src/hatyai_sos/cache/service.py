# Copyright 2025 msq
from __future__ import annotations

import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Callable, Optional

import structlog
from prometheus_client import Counter

from hatyai_sos.cache.redis_store import CacheEntry, DurableStore
from hatyai_sos.errors import DecodeError, EmptyResultError, SOSFeedError, UpstreamError
from hatyai_sos.feed.fetcher import SOSFetcher
from hatyai_sos.feed.schema import SOSDataset, decode_dataset, encode_dataset

_CACHE_READS = Counter("sos_cache_reads_total", "SOS cache reads by serving tier", ["tier"])
_CACHE_REFRESH = Counter("sos_cache_refresh_total", "Background refresh outcomes", ["outcome"])

# 上游不可用时旧快照的重试窗口（秒）
STALE_RETRY_SECONDS = 5.0


@dataclass(frozen=True, slots=True)
class MemorySnapshot:
    """进程内缓存快照，只整体替换，从不原地修改。"""

    raw: bytes
    etag: str
    expires_at: float
    parsed: Optional[SOSDataset] = None


def memory_ttl(durable_ttl: float, margin: float) -> float:
    """进程缓存TTL = 持久TTL - 安全余量；余量过大导致非正值时退回持久TTL。"""
    ttl = durable_ttl - margin
    if ttl <= 0:
        return durable_ttl
    return ttl


class SOSCacheService:
    """两级缓存（进程内 + Redis）与后台重验证。

    读取顺序：进程快照 → Redis → 同步拉取上游。命中缓存时在后台触发
    一次条件刷新，同一实例同时最多只有一个刷新在执行；刷新失败保留旧数据。
    """

    def __init__(
        self,
        store: DurableStore,
        fetcher: SOSFetcher,
        *,
        ttl_seconds: float = 60.0,
        memory_margin_seconds: float = 5.0,
        executor: Executor | None = None,
        max_workers: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds 必须大于 0")
        if memory_margin_seconds <= 0:
            raise ValueError("memory_margin_seconds 必须大于 0")
        self._store = store
        self._fetcher = fetcher
        self._ttl = float(ttl_seconds)
        self._memory_ttl = memory_ttl(self._ttl, float(memory_margin_seconds))
        self._clock = clock
        self._owns_executor = executor is None
        self._executor: Executor = executor or ThreadPoolExecutor(
            max_workers=max(1, max_workers),
            thread_name_prefix="sos-refresh",
        )
        self._snapshot: MemorySnapshot | None = None
        # 单飞刷新锁：只做非阻塞尝试，由后台任务在 finally 中释放
        self._refresh_lock = threading.Lock()
        # 冷启动合并：并发的全未命中请求共享一次同步拉取
        self._cold_lock = threading.Lock()
        self._logger = structlog.get_logger(__name__)

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def memory_ttl_seconds(self) -> float:
        return self._memory_ttl

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh_lock.locked()

    def snapshot(self) -> MemorySnapshot | None:
        """返回当前快照（可能已过期），不触发任何加载。"""
        return self._snapshot

    def get_raw(self) -> bytes:
        """返回上游原始JSON字节。

        Raises:
            UpstreamError: 冷启动同步拉取失败且没有任何旧数据可用。
            EmptyResultError: 上游成功响应但没有数据且没有旧数据可用。
        """
        return self._load().raw

    def get_dataset(self) -> SOSDataset:
        """与 get_raw 相同的读取路径，返回快照中已解析的数据集。"""
        snapshot = self._load()
        if snapshot.parsed is not None:
            return snapshot.parsed
        return decode_dataset(snapshot.raw)

    def try_refresh(self, etag: str) -> bool:
        """尝试在后台发起一次条件刷新。

        已有刷新在执行时直接返回 False（不是错误）；成功调度返回 True。
        """
        if not self._refresh_lock.acquire(blocking=False):
            _CACHE_REFRESH.labels(outcome="skipped").inc()
            self._logger.debug("sos_cache_refresh_skipped", etag=etag)
            return False

        try:
            self._executor.submit(self._refresh, etag)
        except RuntimeError as exc:
            # 线程池已关闭
            self._refresh_lock.release()
            self._logger.warning("sos_cache_refresh_not_scheduled", error=str(exc))
            return False
        return True

    def ping(self) -> bool:
        return self._store.ping()

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def _refresh(self, etag: str) -> None:
        try:
            try:
                result = self._fetcher.fetch(etag)
            except SOSFeedError as exc:
                _CACHE_REFRESH.labels(outcome="failed").inc()
                self._logger.warning(
                    "sos_cache_refresh_failed",
                    etag=etag,
                    error=str(exc),
                    transient=isinstance(exc, UpstreamError) and exc.transient,
                )
                return

            if result.not_modified or result.dataset is None:
                _CACHE_REFRESH.labels(outcome="not_modified").inc()
                self._touch(etag)
                return

            self._save(result.etag, encode_dataset(result.dataset), result.dataset)
            _CACHE_REFRESH.labels(outcome="updated").inc()
            self._logger.info(
                "sos_cache_refreshed",
                etag=result.etag,
                items=len(result.dataset.records),
            )
        except Exception:
            _CACHE_REFRESH.labels(outcome="failed").inc()
            self._logger.exception("sos_cache_refresh_crashed", etag=etag)
        finally:
            self._refresh_lock.release()

    def _load(self) -> MemorySnapshot:
        cached = self._load_valid_snapshot()
        if cached is not None:
            _CACHE_READS.labels(tier="memory").inc()
            self.try_refresh(cached.etag)
            return cached

        durable = self._load_durable()
        if durable is not None:
            _CACHE_READS.labels(tier="durable").inc()
            self.try_refresh(durable.etag)
            return durable

        return self._load_cold()

    def _load_valid_snapshot(self) -> MemorySnapshot | None:
        snapshot = self._snapshot
        if snapshot is not None and self._clock() < snapshot.expires_at:
            return snapshot
        return None

    def _load_durable(self) -> MemorySnapshot | None:
        entry = self._store.get()
        if entry is None:
            return None
        try:
            parsed = decode_dataset(entry.payload)
        except DecodeError as exc:
            self._logger.warning("sos_durable_payload_invalid", etag=entry.etag, error=str(exc))
            return None
        return self._store_memory(entry.payload, entry.etag, parsed)

    def _load_cold(self) -> MemorySnapshot:
        with self._cold_lock:
            cached = self._load_valid_snapshot()
            if cached is not None:
                _CACHE_READS.labels(tier="memory").inc()
                return cached

            try:
                result = self._fetcher.fetch("")
                if result.dataset is None:
                    raise EmptyResultError("no data returned from fetcher")
            except SOSFeedError as exc:
                stale = self._snapshot
                if stale is None:
                    raise
                _CACHE_READS.labels(tier="stale").inc()
                retry_in = min(STALE_RETRY_SECONDS, self._memory_ttl)
                self._logger.warning(
                    "sos_cache_serving_stale",
                    etag=stale.etag,
                    error=str(exc),
                    retry_in_seconds=retry_in,
                )
                # 只在进程内延长旧快照，排队中的请求直接复用，不再各自同步拉取
                restamped = replace(stale, expires_at=self._clock() + retry_in)
                self._snapshot = restamped
                return restamped

            _CACHE_READS.labels(tier="upstream").inc()
            return self._save(result.etag, encode_dataset(result.dataset), result.dataset)

    def _save(self, etag: str, raw: bytes, parsed: SOSDataset | None) -> MemorySnapshot:
        # 持久层写失败只记录日志：Redis 暂时落后于进程缓存，直到下一次刷新成功
        if not self._store.put(CacheEntry(etag=etag, payload=raw), self._ttl):
            self._logger.warning("sos_durable_write_skipped", etag=etag)
        return self._store_memory(raw, etag, parsed)

    def _store_memory(self, raw: bytes, etag: str, parsed: SOSDataset | None) -> MemorySnapshot:
        snapshot = MemorySnapshot(
            raw=raw,
            etag=etag,
            expires_at=self._clock() + self._memory_ttl,
            parsed=parsed,
        )
        self._snapshot = snapshot
        return snapshot

    def _touch(self, etag: str) -> None:
        """304：只延长两级缓存的过期时间，沿用已有字节。"""
        current = self._snapshot
        if current is None or not current.raw:
            return
        self._save(etag, current.raw, current.parsed)
        self._logger.debug("sos_cache_touched", etag=etag)


__all__ = ["MemorySnapshot", "SOSCacheService", "memory_ttl"]
