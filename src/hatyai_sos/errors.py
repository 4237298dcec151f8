from __future__ import annotations


class SOSFeedError(RuntimeError):
    """SOS 数据获取链路错误的基类，路由层统一映射为 502。"""


class UpstreamError(SOSFeedError):
    """上游返回非 200/304、网络失败或超时。

    transient 为 True 时表示超时或连接类错误，后台刷新会在下一周期自然重试。
    """

    def __init__(self, message: str, *, status: int | None = None, transient: bool = False) -> None:
        super().__init__(message)
        self.status = status
        self.transient = transient


class DecodeError(SOSFeedError):
    """上游响应体或 Redis 信封无法解析。"""


class StoreError(SOSFeedError):
    """Redis 不可达或写入失败；只在存储层内部抛出，由缓存服务记录日志后降级。"""


class EmptyResultError(SOSFeedError):
    """上游请求成功但没有可用的数据。"""


__all__ = [
    "SOSFeedError",
    "UpstreamError",
    "DecodeError",
    "StoreError",
    "EmptyResultError",
]
