"""
统一日志模块

提供全局structlog配置，包括：
- 统一processor链（时间戳、堆栈、trace-id注入）
- JSON/控制台双渲染模式
- 日志事件计数（Prometheus）
- 周期性噪声日志抑制（后台刷新、304命中）
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Any

import structlog
from prometheus_client import Counter

# 是否丢弃后台刷新类日志；由 configure_logging 设置
_suppress_periodic_logs: bool = False

# ========== ContextVar：跨线程池边界的trace-id传递 ==========
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)

log_count_metric = Counter(
    "sos_log_total",
    "日志总数（按级别和模块分类）",
    ["level", "module"],
)

# 每次请求都可能触发的刷新事件，量大且无诊断价值
PERIODIC_EVENTS = frozenset(
    {
        "sos_cache_refresh_skipped",
        "sos_upstream_not_modified",
        "sos_cache_touched",
    }
)


def add_trace_id(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """从ContextVar中提取trace-id并注入到日志上下文"""
    trace_id = trace_id_var.get()
    if trace_id:
        event_dict["trace_id"] = trace_id
    return event_dict


def add_prometheus_metrics(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    level = event_dict.get("level", "info")
    module = event_dict.get("logger", "unknown")
    log_count_metric.labels(level=level, module=module).inc()
    return event_dict


def drop_periodic_logs(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """开启抑制时丢弃后台刷新产生的噪声日志（只按事件名过滤）。"""
    if not _suppress_periodic_logs:
        return event_dict
    if str(event_dict.get("event", "")) in PERIODIC_EVENTS:
        raise structlog.DropEvent
    return event_dict


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
    suppress_periodic_logs: bool = False,
) -> None:
    """
    配置全局structlog

    Args:
        json_logs: 是否输出JSON格式（生产环境推荐True）
        log_level: 日志级别（DEBUG/INFO/WARNING/ERROR）
        suppress_periodic_logs: 是否丢弃 PERIODIC_EVENTS 中的后台刷新日志

    使用方式：
        from hatyai_sos.logging import configure_logging
        configure_logging(json_logs=True, log_level="INFO")

        import structlog
        logger = structlog.get_logger(__name__)
        logger.info("sos_cache_refresh_failed", error="timeout")
    """
    global _suppress_periodic_logs
    _suppress_periodic_logs = suppress_periodic_logs

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    processors: list[Any] = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        # 在Prometheus计数前过滤
        drop_periodic_logs,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_trace_id,
        add_prometheus_metrics,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def set_trace_id(trace_id: str) -> None:
    trace_id_var.set(trace_id)


def clear_trace_id() -> None:
    """清除当前上下文的trace-id（防止上下文泄漏）"""
    trace_id_var.set(None)


# 模块导入时按开发环境默认初始化；生产环境在应用启动时显式调用 configure_logging(json_logs=True)
configure_logging(json_logs=False, log_level="INFO")
