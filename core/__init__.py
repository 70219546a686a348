"""
核心模块

包含爬取引擎组件：
- models: 商品记录 / 爬取状态
- errors: 异常定义
- ledger: 去重台账
- checkpoint: 检查点存储（断点续传）
- sink: 增量数据集输出
- assets: 商品图片下载器
- events: 结构化事件流
- orchestrator: 爬取编排器
"""
from .models import ItemRecord, CrawlState, CrawlPhase, PageResult
from .errors import (
    CrawlerError,
    FetchError,
    ExtractionError,
    AssetError,
    PersistenceError,
    FatalStartupError,
    TooManyConsecutiveErrors,
)
from .ledger import DedupLedger
from .checkpoint import CheckpointStore
from .sink import IncrementalSink
from .assets import AssetFetcher
from .events import EventFeed
from .orchestrator import CrawlOrchestrator

__all__ = [
    'ItemRecord',
    'CrawlState',
    'CrawlPhase',
    'PageResult',
    'CrawlerError',
    'FetchError',
    'ExtractionError',
    'AssetError',
    'PersistenceError',
    'FatalStartupError',
    'TooManyConsecutiveErrors',
    'DedupLedger',
    'CheckpointStore',
    'IncrementalSink',
    'AssetFetcher',
    'EventFeed',
    'CrawlOrchestrator',
]
