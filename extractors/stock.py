"""
库存复查解析器

按商品编码逐个搜索，刷新已发布数据集中的库存数量。
第N页 = 第N个待查编码的搜索页（库存低的商品优先）。
"""
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, quote

from loguru import logger

from config import Config
from core.errors import ExtractionError, FatalStartupError, FetchError
from core.models import ItemRecord, PageResult
from core.sink import read_dataset
from extractors.base import PageExtractor
from extractors.browser import BrowserSession


QTY_RE = re.compile(r"(?:disponibilit[àa]|giacenza|stock|quantit[àa])\s*:?\s*(\d+)", re.IGNORECASE)
OUT_RE = re.compile(r"non disponibile|esaurito|out of stock", re.IGNORECASE)
IN_RE = re.compile(r"disponibile|in stock|acquista", re.IGNORECASE)

# 库存不高于该值的商品优先复查
LOW_STOCK = 10


def prioritize(records: List[ItemRecord], limit: Optional[int] = None) -> List[ItemRecord]:
    """低库存优先（保持原有相对顺序），截取前 limit 个"""
    low = [r for r in records if r.stock_quantity <= LOW_STOCK]
    normal = [r for r in records if r.stock_quantity > LOW_STOCK]
    ordered = low + normal
    return ordered[:limit] if limit else ordered


def parse_stock(body_text: str) -> int:
    """从页面文本提取库存数量"""
    match = QTY_RE.search(body_text)
    if match:
        return int(match.group(1))
    if OUT_RE.search(body_text):
        return 0
    if IN_RE.search(body_text):
        return 1
    return 0


class StockCheckExtractor(PageExtractor):
    """库存复查解析器"""

    name = "stock"

    def __init__(
        self,
        config: Config,
        browser: Optional[BrowserSession] = None,
        limit: Optional[int] = None,
        targets: Optional[List[ItemRecord]] = None,
    ):
        """
        初始化解析器

        Args:
            config: 全局配置
            browser: 浏览器会话（默认新建）
            limit: 最多复查的商品数
            targets: 待查商品（默认 start() 时从数据集加载）
        """
        self.config = config
        self.catalog = config.catalog
        self.browser = browser or BrowserSession()
        self.limit = limit
        self.targets: List[ItemRecord] = prioritize(targets, limit) if targets is not None else []
        self._loaded = targets is not None
        self._order: List[str] = []
        self.stats = {
            "checked": 0,
            "updated": 0,
            "not_found": 0,
            "blocked": 0,
        }
        self.out_of_stock: List[str] = []
        self.back_in_stock: List[str] = []

    def load_targets(self) -> int:
        """
        从已发布的数据集加载待查商品

        首次运行按低库存优先排序；恢复运行沿用检查点中记录的编码顺序，
        数据集在中断前已被部分刷新，重新排序会让页码指向别的商品。

        Returns:
            待查商品数
        """
        dataset_path = self.config.output.dataset_path
        records = read_dataset(dataset_path)
        if not records:
            raise FatalStartupError(f"no products to check in {dataset_path}")
        if self._order:
            by_sku = {r.sku: r for r in records}
            self.targets = [by_sku[sku] for sku in self._order if sku in by_sku]
            missing = len(self._order) - len(self.targets)
            if missing:
                logger.warning("⚠️ 检查点中有 {} 个编码已不在数据集中，复查顺序会偏移", missing)
            logger.info("📋 沿用检查点中的复查顺序: {} 个商品", len(self.targets))
        else:
            self.targets = prioritize(records, self.limit)
            low = sum(1 for r in self.targets if r.stock_quantity <= LOW_STOCK)
            logger.info("📋 待复查 {} 个商品（低库存优先 {} 个）", len(self.targets), low)
        self._loaded = True
        return len(self.targets)

    def snapshot_state(self) -> Dict[str, Any]:
        """复查顺序（第N页 = 第N个编码）"""
        return {"order": [r.sku for r in self.targets]}

    def restore_state(self, data: Dict[str, Any]):
        order = data.get("order")
        if isinstance(order, list):
            self._order = [str(sku) for sku in order]

    async def start(self):
        if not self._loaded:
            self.load_targets()
        await self.browser.start()

    async def close(self):
        await self.browser.close()
        if self.out_of_stock or self.back_in_stock:
            logger.info("库存变化: 售罄 {} 个，补货 {} 个", len(self.out_of_stock), len(self.back_in_stock))

    def target(self, page_number: int) -> Optional[ItemRecord]:
        if 1 <= page_number <= len(self.targets):
            return self.targets[page_number - 1]
        return None

    def page_url(self, page_number: int) -> Optional[str]:
        target = self.target(page_number)
        if target is None:
            return None
        path = self.catalog.search_path_template.format(sku=quote(target.sku, safe=""))
        return urljoin(self.catalog.base_url, path)

    async def fetch(self, url: str):
        status = await self.browser.goto(
            url, timeout=self.config.crawler.page_timeout, wait_until="domcontentloaded"
        )
        if status is None:
            raise FetchError(url, "no response")
        if status >= 400:
            if status in FetchError.BLOCK_STATUSES:
                self.stats["blocked"] += 1
            raise FetchError(url, "bad response", status)

    async def extract(self, page_number: int, url: str) -> PageResult:
        target = self.target(page_number)
        if target is None:
            raise ExtractionError(f"no product for page {page_number}")
        body = await self.browser.body_text()
        record = self.parse(body, target)
        return PageResult(records=[record], next_url=self.page_url(page_number + 1))

    def parse(self, body_text: str, target: ItemRecord) -> ItemRecord:
        """
        用搜索结果刷新库存

        Args:
            body_text: 页面文本
            target: 数据集中的原记录

        Returns:
            库存已更新的新记录

        Raises:
            ExtractionError: 页面中找不到该商品编码
        """
        if target.sku.lower() not in body_text.lower():
            self.stats["not_found"] += 1
            raise ExtractionError(f"{target.sku} not found on search page")

        quantity = parse_stock(body_text)
        self.stats["checked"] += 1
        if quantity != target.stock_quantity:
            self.stats["updated"] += 1
            if target.stock_quantity > 0 and quantity == 0:
                self.out_of_stock.append(target.sku)
                logger.info("❌ 售罄: {}", target.sku)
            elif target.stock_quantity == 0 and quantity > 0:
                self.back_in_stock.append(target.sku)
                logger.info("✓ 补货: {} ({})", target.sku, quantity)
        return target.model_copy(update={"stock_quantity": quantity})
