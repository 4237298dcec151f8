"""
Redis持久缓存层

功能：
- 单键保存上游最近一次的原始JSON字节及其ETag（信封格式 {"etag": ..., "json": <原样JSON>}）
- 写入时原子设置TTL，进程在两次写入之间崩溃也不会留下永久数据
- 安全的错误处理（Redis不可用或信封损坏时记录日志并按未命中处理）
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, TypeVar

import structlog
from redis import ConnectionPool, Redis, RedisError

from hatyai_sos.config import DEFAULT_CACHE_KEY
from hatyai_sos.errors import DecodeError, StoreError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_WHITESPACE = " \t\n\r"


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """持久缓存条目：payload 为上游 JSON 的原始字节，不做二次序列化。"""

    etag: str
    payload: bytes


class DurableStore(Protocol):
    def get(self) -> Optional[CacheEntry]:
        ...

    def put(self, entry: CacheEntry, ttl: float) -> bool:
        ...

    def ping(self) -> bool:
        ...


def encode_envelope(entry: CacheEntry) -> bytes:
    etag = json.dumps(entry.etag, ensure_ascii=False).encode("utf-8")
    return b'{"etag":' + etag + b',"json":' + entry.payload + b"}"


def _skip_ws(text: str, idx: int) -> int:
    while idx < len(text) and text[idx] in _WHITESPACE:
        idx += 1
    return idx


def decode_envelope(value: bytes) -> CacheEntry:
    """解析信封，"json" 字段按原始文本切片返回，保证与写入时字节一致。"""
    try:
        text = value.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError("cache envelope is not valid utf-8") from exc

    decoder = json.JSONDecoder()
    etag = ""
    payload: Optional[str] = None

    idx = _skip_ws(text, 0)
    if text[idx : idx + 1] != "{":
        raise DecodeError("cache envelope must be a JSON object")
    idx = _skip_ws(text, idx + 1)
    try:
        while text[idx : idx + 1] != "}":
            key, idx = decoder.raw_decode(text, idx)
            idx = _skip_ws(text, idx)
            if text[idx : idx + 1] != ":":
                raise DecodeError("cache envelope: expected ':'")
            idx = _skip_ws(text, idx + 1)
            start = idx
            field_value, idx = decoder.raw_decode(text, idx)
            if key == "etag":
                if not isinstance(field_value, str):
                    raise DecodeError("cache envelope: etag must be a string")
                etag = field_value
            elif key == "json":
                payload = text[start:idx]
            idx = _skip_ws(text, idx)
            if text[idx : idx + 1] == ",":
                idx = _skip_ws(text, idx + 1)
            elif text[idx : idx + 1] != "}":
                raise DecodeError("cache envelope: expected ',' or '}'")
    except ValueError as exc:
        raise DecodeError(f"cache envelope is not valid JSON: {exc}") from exc

    if _skip_ws(text, idx + 1) != len(text):
        raise DecodeError("cache envelope: trailing data")
    if payload is None or payload == "null":
        raise DecodeError("cache envelope: missing json payload")
    return CacheEntry(etag=etag, payload=payload.encode("utf-8"))


class RedisDurableStore:
    """基于Redis的持久缓存，跨进程共享、进程重启后仍可用。"""

    def __init__(
        self,
        *,
        redis_url: str = "redis://localhost:6379/0",
        password: str | None = None,
        key: str = DEFAULT_CACHE_KEY,
        socket_timeout: float = 5.0,
        health_timeout: float = 1.0,
        client: Redis | None = None,
    ) -> None:
        self._key = key
        self._client: Redis | None = client
        self._health_client: Redis | None = client
        if client is not None:
            return

        # 二进制模式：payload 需按原始字节往返
        pool = ConnectionPool.from_url(
            redis_url,
            password=password,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            decode_responses=False,
            health_check_interval=30,
        )
        health_pool = ConnectionPool.from_url(
            redis_url,
            password=password,
            socket_timeout=health_timeout,
            socket_connect_timeout=health_timeout,
            max_connections=2,
        )
        self._client = Redis(connection_pool=pool)
        self._health_client = Redis(connection_pool=health_pool)
        logger.info("redis_store_initialized", redis_url=redis_url, key=key)

    @property
    def key(self) -> str:
        return self._key

    def _call(self, operation: str, fn: Callable[[Redis], T]) -> T:
        assert self._client is not None
        try:
            return fn(self._client)
        except RedisError as exc:
            raise StoreError(f"redis {operation} failed: {exc}") from exc

    def get(self) -> Optional[CacheEntry]:
        """读取缓存条目；不存在、Redis出错或信封损坏均返回None。"""
        try:
            value = self._call("get", lambda client: client.get(self._key))
        except StoreError as exc:
            logger.warning("redis_get_failed", key=self._key, error=str(exc))
            return None

        if value is None:
            logger.debug("redis_cache_miss", key=self._key)
            return None

        try:
            entry = decode_envelope(value)
        except DecodeError as exc:
            logger.warning("redis_envelope_invalid", key=self._key, error=str(exc))
            return None
        logger.debug("redis_cache_hit", key=self._key, etag=entry.etag)
        return entry

    def put(self, entry: CacheEntry, ttl: float) -> bool:
        """写入缓存条目并原子设置TTL，返回是否成功。"""
        value = encode_envelope(entry)
        ttl_ms = max(1, int(ttl * 1000))
        try:
            self._call("set", lambda client: client.set(self._key, value, px=ttl_ms))
        except StoreError as exc:
            logger.warning("redis_set_failed", key=self._key, error=str(exc))
            return False

        logger.info(
            "redis_cache_updated",
            key=self._key,
            etag=entry.etag,
            ttl_seconds=ttl,
            size_bytes=len(value),
        )
        return True

    def ping(self) -> bool:
        assert self._health_client is not None
        try:
            return bool(self._health_client.ping())
        except RedisError as exc:
            logger.warning("redis_ping_failed", error=str(exc))
            return False


__all__ = [
    "CacheEntry",
    "DurableStore",
    "RedisDurableStore",
    "encode_envelope",
    "decode_envelope",
]
