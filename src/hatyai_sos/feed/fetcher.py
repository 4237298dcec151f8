# Copyright 2025 msq
from __future__ import annotations

import atexit
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Tuple

import httpx
import structlog
from prometheus_client import Histogram

from hatyai_sos.config import DEFAULT_UPSTREAM_URL
from hatyai_sos.errors import DecodeError, UpstreamError
from hatyai_sos.feed.schema import SOSDataset, decode_dataset

logger = structlog.get_logger(__name__)

_FETCH_LATENCY = Histogram("sos_upstream_fetch_seconds", "Latency of upstream SOS feed requests")


@dataclass(frozen=True, slots=True)
class FetchResult:
    """一次条件请求的结果。

    not_modified 为 True 时 dataset 为 None、etag 为请求时携带的旧标签，
    调用方必须保留已有数据。
    """

    dataset: Optional[SOSDataset]
    etag: str
    not_modified: bool = False


class SOSFetcher(Protocol):
    def fetch(self, etag: str) -> FetchResult:
        ...


class HttpSOSFetcher:
    """上游 SOS 数据的条件 GET 客户端，携带 If-None-Match 避免重复下载。

    timeout 是整个请求（连接、响应头与响应体）的总时限；httpx 自身的超时
    只约束单次读写，慢速逐字节返回的上游需要按截止时间另行中断。
    超时与网络错误统一转为 transient 的 UpstreamError，不在此处重试，
    由缓存服务在下一次刷新周期处理。
    """

    def __init__(
        self,
        *,
        url: str = DEFAULT_UPSTREAM_URL,
        timeout: float = 5.0,
        http_client: httpx.Client | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout 必须大于 0")
        self._url = url
        self._timeout = float(timeout)
        self._clock = clock
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=httpx.Timeout(timeout))
        if self._owns_client:
            atexit.register(self.close)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def fetch(self, etag: str) -> FetchResult:
        headers: dict[str, str] = {}
        if etag:
            headers["If-None-Match"] = etag

        started = self._clock()
        try:
            response, body = self._download(headers, deadline=started + self._timeout)
        except httpx.TimeoutException as exc:
            raise UpstreamError(f"upstream timeout: {exc}", transient=True) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"upstream request failed: {exc}", transient=True) from exc
        finally:
            _FETCH_LATENCY.observe(self._clock() - started)

        if response.status_code == httpx.codes.NOT_MODIFIED:
            logger.info("sos_upstream_not_modified", etag=etag)
            return FetchResult(dataset=None, etag=etag, not_modified=True)

        if response.status_code != httpx.codes.OK:
            status_text = f"{response.status_code} {response.reason_phrase}".strip()
            raise UpstreamError(
                f"Upstream API error, Status: {status_text}",
                status=response.status_code,
            )

        try:
            dataset = decode_dataset(body)
        except DecodeError:
            logger.warning("sos_upstream_decode_failed", url=self._url, size_bytes=len(body))
            raise

        new_etag = response.headers.get("ETag", "")
        logger.info(
            "sos_upstream_fetched",
            items=len(dataset.records),
            url=self._url,
            status=response.status_code,
            etag=new_etag,
        )
        return FetchResult(dataset=dataset, etag=new_etag)

    def _download(self, headers: dict[str, str], *, deadline: float) -> Tuple[httpx.Response, bytes]:
        """流式读取响应体，每收到一块检查一次总截止时间；非 200 响应不读取响应体。"""
        with self._client.stream("GET", self._url, headers=headers) as response:
            if response.status_code != httpx.codes.OK:
                return response, b""
            chunks: List[bytes] = []
            for chunk in response.iter_bytes():
                if self._clock() > deadline:
                    logger.warning(
                        "sos_upstream_deadline_exceeded",
                        url=self._url,
                        timeout_seconds=self._timeout,
                        received_bytes=sum(len(c) for c in chunks),
                    )
                    raise UpstreamError(
                        f"upstream timeout: response not completed within {self._timeout:g}s",
                        transient=True,
                    )
                chunks.append(chunk)
            return response, b"".join(chunks)


__all__ = ["FetchResult", "SOSFetcher", "HttpSOSFetcher"]
