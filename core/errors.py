"""
异常定义模块

单页 / 单图的错误在本地吸收，只有启动失败、关闭时持久化失败
以及熔断会传播到进程边界。
"""
from typing import Optional


class CrawlerError(Exception):
    """爬虫异常基类"""


class FetchError(CrawlerError):
    """
    页面加载失败（超时、网络错误、导航失败）

    Args:
        url: 页面URL
        reason: 失败原因
        status: HTTP 状态码（如果有）
    """

    BLOCK_STATUSES = (403, 429)

    def __init__(self, url: str, reason: str, status: Optional[int] = None):
        self.url = url
        self.reason = reason
        self.status = status
        detail = f"HTTP {status}: {reason}" if status is not None else reason
        super().__init__(f"{url} - {detail}")

    @property
    def blocked(self) -> bool:
        """远端是否疑似限流 / 封禁"""
        return self.status in self.BLOCK_STATUSES


class ExtractionError(CrawlerError):
    """页面已加载，但解析时出错"""


class AssetError(CrawlerError):
    """单个图片候选下载失败"""


class PersistenceError(CrawlerError):
    """检查点或数据集写入失败"""


class FatalStartupError(CrawlerError):
    """页面获取能力无法初始化（浏览器启动失败等）"""


class TooManyConsecutiveErrors(CrawlerError):
    """连续失败页数达到阈值，主动中止"""

    def __init__(self, count: int, threshold: int):
        self.count = count
        self.threshold = threshold
        super().__init__(f"{count} consecutive failed pages (threshold {threshold})")
