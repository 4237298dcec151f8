#!/usr/bin/env python3
# Copyright 2025 msq
"""应用装配：配置、日志、缓存服务、路由与指标。

启动方式：uvicorn hatyai_sos.api.main:create_app --factory
"""

from __future__ import annotations

import threading
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.middleware.base import BaseHTTPMiddleware

from hatyai_sos.api.routes import router
from hatyai_sos.cache.redis_store import RedisDurableStore
from hatyai_sos.cache.service import SOSCacheService
from hatyai_sos.config import AppConfig
from hatyai_sos.errors import SOSFeedError
from hatyai_sos.feed.fetcher import HttpSOSFetcher
from hatyai_sos.logging import clear_trace_id, configure_logging, set_trace_id

logger = structlog.get_logger(__name__)


class TraceIDMiddleware(BaseHTTPMiddleware):
    """为每个HTTP请求注入trace-id：复用客户端 X-Trace-Id，否则生成UUID，并在响应头返回。"""

    async def dispatch(self, request: Request, call_next):
        trace_id = request.headers.get("X-Trace-Id") or str(uuid.uuid4())
        set_trace_id(trace_id)
        try:
            response = await call_next(request)
            response.headers["X-Trace-Id"] = trace_id
            return response
        finally:
            clear_trace_id()


def build_cache_service(cfg: AppConfig) -> SOSCacheService:
    store = RedisDurableStore(
        redis_url=cfg.redis_url,
        password=cfg.redis_password,
        key=cfg.cache_key,
        socket_timeout=cfg.redis_socket_timeout,
        health_timeout=cfg.health_timeout,
    )
    fetcher = HttpSOSFetcher(url=cfg.upstream_url, timeout=cfg.upstream_timeout)
    return SOSCacheService(
        store,
        fetcher,
        ttl_seconds=cfg.cache_ttl_seconds,
        memory_margin_seconds=cfg.memory_ttl_margin_seconds,
        max_workers=cfg.refresh_workers,
    )


def _warm_up(service: SOSCacheService) -> None:
    try:
        service.get_raw()
    except SOSFeedError as exc:
        logger.warning("sos_cache_warmup_failed", error=str(exc))
        return
    logger.info("sos_cache_warmup_completed")


def create_app(
    service: SOSCacheService | None = None,
    *,
    cfg: AppConfig | None = None,
    warm_up: bool = True,
    enable_metrics: bool = True,
) -> FastAPI:
    cfg = cfg or AppConfig.load_from_env()
    configure_logging(
        json_logs=cfg.log_json,
        log_level=cfg.log_level,
        suppress_periodic_logs=cfg.suppress_periodic_logs,
    )
    sos_service = service or build_cache_service(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if warm_up:
            threading.Thread(
                target=_warm_up,
                args=(sos_service,),
                name="sos-warmup",
                daemon=True,
            ).start()
        try:
            yield
        finally:
            sos_service.close()

    app = FastAPI(title="Hat Yai SOS API", lifespan=lifespan)
    app.state.sos_service = sos_service
    app.add_middleware(TraceIDMiddleware)
    app.include_router(router)

    if enable_metrics:
        Instrumentator().instrument(app).expose(app)

    logger.info(
        "sos_api_created",
        upstream_url=cfg.upstream_url,
        cache_key=cfg.cache_key,
        ttl_seconds=sos_service.ttl_seconds,
        memory_ttl_seconds=sos_service.memory_ttl_seconds,
    )
    return app


__all__ = ["TraceIDMiddleware", "build_cache_service", "create_app"]
