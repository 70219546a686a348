"""
商品目录解析器

分页列表页（第N页通过 pg=N 访问），每个商品卡片解析出：
编码、名称、价格、库存、品牌、品质、包装、颜色、兼容机型、候选图片。
"""
import re
from decimal import Decimal
from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from loguru import logger

from config import Config
from core.errors import FetchError
from core.models import ItemRecord, PageResult
from extractors.base import PageExtractor
from extractors.browser import BrowserSession


SKU_PATTERNS = [
    r"(?:cod\.?\s*art\.?|sku|codice)[:.]?\s*([A-Z0-9\-_]+)",
]
LINK_SKU_PATTERNS = [
    r"[?&]codArt=([^&#]+)",
    r"[?&]cod=([^&#]+)",
]

PRICE_NUMBER = r"(\d+(?:\.\d{3})*(?:[,.]\d{1,2})?)"
DISCOUNT_RE = re.compile(r"€\s*" + PRICE_NUMBER + r"\s*sconto\s*\d+\s*%\s*€\s*" + PRICE_NUMBER, re.IGNORECASE)
EURO_PRICE_RE = re.compile(r"€\s*" + PRICE_NUMBER)
ALT_PRICE_RE = re.compile(r"(?:EUR|prezzo[:.]?)\s*" + PRICE_NUMBER, re.IGNORECASE)

STOCK_PARENS_RE = re.compile(r"disponibile\s*\(\s*(\d+)\s*PZ\s*\)", re.IGNORECASE)
OUT_OF_STOCK_RE = re.compile(r"non\s+disponibile|esaurito|sold\s*out", re.IGNORECASE)
IN_STOCK_RE = re.compile(r"disponibile|available|in\s*stock", re.IGNORECASE)
STOCK_QTY_RE = re.compile(r"(?:pezzi|pz|qty|quantità)[:.]?\s*(\d+)", re.IGNORECASE)

BRAND_RE = re.compile(r"(?:marca|brand|marchio|produttore)[:.]?\s*([A-Z][A-Za-z0-9 &\-]+)", re.IGNORECASE)
KNOWN_BRANDS = [
    "Apple", "Samsung", "Huawei", "Xiaomi", "LG", "Sony", "Nokia",
    "Motorola", "Oppo", "OnePlus", "Google", "Asus", "Honor",
]
QUALITY_RE = re.compile(r"(?:qualità|quality)[:.]?\s*(\w+)", re.IGNORECASE)
PACKAGING_RE = re.compile(r"(?:confezione|packaging|package|conf\.)[:.]?\s*([^\n\r€]{3,50})", re.IGNORECASE)
COMPAT_RE = re.compile(
    r"(?:compatibil[eità]+|per|for)[:.]?\s*"
    r"(iPhone\s+[^\s,€]+|Samsung\s+[^\s,€]+|Huawei\s+[^\s,€]+|Xiaomi\s+[^\s,€]+)",
    re.IGNORECASE,
)
MODEL_RE = re.compile(r"\b(iPhone\s+\d+[^\s,]*|Galaxy\s+[A-Z]\d+|Mi\s+\d+|P\d+\s+Pro)\b", re.IGNORECASE)
COLOR_RE = re.compile(r"(?:colore|color|colour)[:.]?\s*([A-Za-zàèéìòù]+)", re.IGNORECASE)
PRODUCT_TYPE_RE = re.compile(r"display|lcd|batteria|battery|cover|cable|cavo|vetro|glass|flex", re.IGNORECASE)
DESCRIPTION_RE = re.compile(r"(?:descrizione|prodotto|articolo)[:.]?\s*([^€\n]{10,100})", re.IGNORECASE)

IMAGE_SELECTOR = 'img[src*="Foto"], img[src*="foto"], img[src*=".jpg"], img[src*=".JPG"], img[src*=".png"]'
IMAGE_ID_RE = re.compile(r"^(.*/)?(\d+)(?:_\d)?\.JPG$", re.IGNORECASE)
PAGE_PARAM_RE = re.compile(r"([?&])pg=(\d+)")

MAX_TEXT = 200


def clean_text(text: Optional[str], limit: int = MAX_TEXT) -> str:
    """合并空白、去掉引号、截断"""
    if not text:
        return ""
    text = re.sub(r"\s+", " ", text).strip()
    text = text.replace('"', "").replace("'", "")
    return text[:limit]


def parse_price(raw: str) -> Optional[Decimal]:
    """'1.234,56' / '12,90' / '12.90' -> Decimal"""
    raw = raw.strip()
    if "," in raw:
        raw = raw.replace(".", "").replace(",", ".")
    elif raw.count(".") > 1 or re.search(r"\.\d{3}$", raw):
        raw = raw.replace(".", "")
    try:
        return Decimal(raw)
    except ArithmeticError:
        return None


def build_image_candidates(image_url: str) -> List[str]:
    """
    候选图片URL（高分辨率优先）

    .../12345.JPG -> 12345_3.JPG, 12345_2.JPG, 12345_1.JPG, 12345.JPG
    不符合命名规则的URL原样返回
    """
    if not image_url:
        return []
    match = IMAGE_ID_RE.match(image_url.split("?")[0])
    if not match:
        return [image_url]
    prefix = match.group(1) or ""
    image_id = match.group(2)
    return [f"{prefix}{image_id}{suffix}.JPG" for suffix in ("_3", "_2", "_1", "")]


def set_page_param(url: str, page: int) -> str:
    """把 URL 的 pg 参数设为 page（没有则追加）"""
    if PAGE_PARAM_RE.search(url):
        return PAGE_PARAM_RE.sub(lambda m: f"{m.group(1)}pg={page}", url, count=1)
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}pg={page}"


class CatalogExtractor(PageExtractor):
    """
    商品目录解析器

    Example:
        extractor = CatalogExtractor(config)
        async with extractor:
            await extractor.fetch(extractor.page_url(1))
            result = await extractor.extract(1, extractor.page_url(1))
    """

    name = "catalog"
    CARD_SELECTOR = 'div[class*="prod"]'

    def __init__(self, config: Config, browser: Optional[BrowserSession] = None):
        """
        初始化解析器

        Args:
            config: 全局配置
            browser: 浏览器会话（默认新建）
        """
        self.config = config
        self.catalog = config.catalog
        self.browser = browser or BrowserSession()
        self.stats = {
            "pages_loaded": 0,
            "cards_seen": 0,
            "cards_skipped": 0,
        }

    async def start(self):
        await self.browser.start()

    async def close(self):
        await self.browser.close()
        logger.debug("Catalog extractor stats: {}", self.stats)

    def page_url(self, page_number: int) -> str:
        start_url = urljoin(self.catalog.base_url, self.catalog.start_path)
        if page_number <= 1:
            return start_url
        return set_page_param(start_url, page_number)

    async def fetch(self, url: str):
        """打开列表页并滚动到底部，触发懒加载图片"""
        logger.debug("📄 加载: {}", url)
        status = await self.browser.goto(url, timeout=self.config.crawler.page_timeout)
        if status is not None and status >= 400:
            raise FetchError(url, "bad response", status)
        await self.browser.wait(800)
        await self.browser.evaluate("() => window.scrollTo(0, document.body.scrollHeight)")
        await self.browser.wait(600)
        self.stats["pages_loaded"] += 1

    async def extract(self, page_number: int, url: str) -> PageResult:
        html = await self.browser.content()
        current_url = await self.browser.current_url() or url
        return self.parse(html, current_url)

    # ------------------------------------------------------------------
    # 解析（纯函数部分，便于测试）
    # ------------------------------------------------------------------

    def parse(self, html: str, url: str) -> PageResult:
        """
        解析列表页HTML

        Args:
            html: 页面HTML
            url: 页面URL（解析相对链接、推算下一页）

        Returns:
            PageResult
        """
        soup = BeautifulSoup(html, "html.parser")
        records = []
        for card in soup.select(self.CARD_SELECTOR):
            # 只解析最内层卡片，外层容器会包含多个商品的文本
            if card.select_one(self.CARD_SELECTOR):
                continue
            self.stats["cards_seen"] += 1
            record = self.parse_card(card, url)
            if record is None:
                self.stats["cards_skipped"] += 1
                continue
            records.append(record)

        if records:
            first = records[0]
            logger.debug("Found {} products, e.g. SKU={} price={}", len(records), first.sku, first.price)
        return PageResult(records=records, next_url=self.next_page_url(soup, url))

    def parse_card(self, card, page_url: str) -> Optional[ItemRecord]:
        """解析单个商品卡片；没有商品编码时返回 None"""
        text = card.get_text("\n", strip=True)

        sku = self._extract_sku(card, text)
        if not sku:
            logger.debug("Card without product code skipped: {}", text[:60])
            return None

        price, original_price = self._extract_price(text)
        brand = clean_text(self._extract_brand(text), 50)
        compatibility = clean_text(self._match(COMPAT_RE, text) or self._match(MODEL_RE, text), 100)
        name = self._clean_name(self._extract_name(card, text), sku, text)

        image_tag = card.select_one(IMAGE_SELECTOR)
        image_url = self._get_image_url(image_tag, page_url) if image_tag else None

        return ItemRecord(
            sku=clean_text(sku, 50),
            name=clean_text(name),
            price=price,
            stock_quantity=self._extract_stock(text),
            categories=self.catalog.category_label,
            tags=self._build_tags(compatibility, brand),
            short_description=self._build_short_description(name, brand, compatibility, price, original_price),
            product_type=self.catalog.product_type,
            brand=brand,
            quality=clean_text(self._match(QUALITY_RE, text), 30),
            packaging=clean_text(self._match(PACKAGING_RE, text), 100),
            color=clean_text(self._match(COLOR_RE, text), 30),
            compatibility=compatibility,
            model=compatibility,
            image_candidates=build_image_candidates(image_url) if image_url else [],
        )

    def next_page_url(self, soup: BeautifulSoup, url: str) -> Optional[str]:
        """显式的 pg=N+1 链接优先，否则在页码上限内推算"""
        match = PAGE_PARAM_RE.search(url)
        current = int(match.group(2)) if match else 1
        wanted = current + 1

        for link in soup.select('a[href*="pg="]'):
            href = link.get("href", "")
            link_match = PAGE_PARAM_RE.search(href)
            if link_match and int(link_match.group(2)) == wanted:
                return urljoin(url, href)

        if current < self.catalog.max_catalog_pages:
            return set_page_param(url, wanted)
        return None

    # ------------------------------------------------------------------
    # 字段提取
    # ------------------------------------------------------------------

    @staticmethod
    def _match(pattern, text: str) -> str:
        match = pattern.search(text)
        return match.group(1).strip() if match else ""

    def _extract_sku(self, card, text: str) -> Optional[str]:
        sku = self._extract_id(text, SKU_PATTERNS)
        if sku:
            return sku
        tag = card.select_one("[data-sku], [data-code], .sku, .codice")
        if tag:
            sku = tag.get("data-sku") or tag.get("data-code") or tag.get_text(strip=True)
            if sku:
                return sku.strip()
        for link in card.select("a[href]"):
            sku = self._extract_id(link["href"], LINK_SKU_PATTERNS)
            if sku:
                return sku
        return None

    def _extract_name(self, card, text: str) -> str:
        link = card.select_one('a[href*=".asp"]')
        if link:
            link_text = link.get_text(" ", strip=True)
            if len(link_text) > 3 and not link_text.isdigit():
                return link_text
            if link.get("title"):
                return link["title"].strip()

        heading = card.select_one("h2, h3, h4, .product-title, .prod-title, .nome-prodotto")
        if heading and len(heading.get_text(strip=True)) > 3:
            return heading.get_text(" ", strip=True)

        title = card.select_one('[class*="title"], [class*="nome"], [class*="name"], .descrizione')
        if title:
            title_text = title.get_text(" ", strip=True)
            if len(title_text) > 3 and not re.match(r"^(cod|sku|art)", title_text, re.IGNORECASE):
                return title_text

        description = self._match(DESCRIPTION_RE, text)
        if description:
            return description

        image = card.select_one("img[alt]")
        if image and len(image["alt"].strip()) > 3:
            return image["alt"].strip()
        return ""

    def _clean_name(self, name: str, sku: str, text: str) -> str:
        if sku in name and len(name) > len(sku) + 5:
            name = name.replace(sku, "").strip()
        name = EURO_PRICE_RE.sub("", name, count=1)
        name = re.sub(r"[^\w\s\-()/&.,àèéìòù]", " ", name)
        name = re.sub(r"\s+", " ", name).strip()
        if len(name) < 5:
            type_match = PRODUCT_TYPE_RE.search(text)
            name = f"{type_match.group(0)} {sku}" if type_match else f"Componente {sku}"
        return name

    def _extract_price(self, text: str):
        """返回 (最终价格, 原价)；有折扣时原价为划线价"""
        discount = DISCOUNT_RE.search(text)
        if discount:
            return parse_price(discount.group(2)), parse_price(discount.group(1))

        prices = [parse_price(p) for p in EURO_PRICE_RE.findall(text)]
        prices = [p for p in prices if p is not None]
        if prices:
            final = prices[-1]
            original = prices[0] if len(prices) >= 2 and prices[0] > final else None
            return final, original

        alt = self._match(ALT_PRICE_RE, text)
        return (parse_price(alt) if alt else None), None

    @staticmethod
    def _extract_stock(text: str) -> int:
        match = STOCK_PARENS_RE.search(text)
        if match:
            return int(match.group(1))
        if OUT_OF_STOCK_RE.search(text):
            return 0
        if IN_STOCK_RE.search(text):
            # 只写了“有货”没有数量
            return 10
        match = STOCK_QTY_RE.search(text)
        if match:
            return int(match.group(1))
        return 1

    def _extract_brand(self, text: str) -> str:
        labelled = self._match(BRAND_RE, text)
        if labelled:
            return re.split(r"[\n\r€]", labelled)[0].strip()
        for brand in KNOWN_BRANDS:
            if re.search(rf"\b{brand}\b", text, re.IGNORECASE):
                return brand
        return ""

    @staticmethod
    def _build_tags(compatibility: str, brand: str) -> str:
        tags = []
        if compatibility:
            tags.append("compatible-" + re.sub(r"\s+", "-", compatibility.lower()))
        if brand:
            tags.append(brand.lower())
        return ",".join(tags)[:100]

    @staticmethod
    def _build_short_description(name, brand, compatibility, price, original_price) -> str:
        parts = [name]
        if brand:
            parts.append(brand)
        if compatibility:
            parts.append(f"Compatibile con {compatibility}")
        if price is not None and original_price and original_price != price:
            discount = round((1 - price / original_price) * 100)
            if discount > 0:
                parts.append(f"Sconto {discount}%")
        return clean_text(" - ".join(parts), 150)
