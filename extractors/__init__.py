"""
页面解析适配器模块

- PageExtractor: 适配器基类（编排器只依赖这个接口）
- BrowserSession: 无头浏览器会话
- CatalogExtractor: 分页商品目录
- StockCheckExtractor: 按编码复查库存
"""
from extractors.base import PageExtractor
from extractors.browser import BrowserSession
from extractors.catalog import CatalogExtractor
from extractors.stock import StockCheckExtractor

__all__ = ['PageExtractor', 'BrowserSession', 'CatalogExtractor', 'StockCheckExtractor']
