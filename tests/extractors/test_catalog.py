"""
CatalogExtractor 单元测试
"""
import asyncio
import unittest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from config import CatalogConfig, Config
from core.errors import FetchError
from extractors.catalog import (
    CatalogExtractor,
    build_image_candidates,
    clean_text,
    parse_price,
    set_page_param,
)


FIRST_PAGE = "https://www.componentidigitali.com/default.asp?cmdString=iphone&cmd=searchProd&bFormSearch=1"

# 列表页片段：外层容器 + 4 个商品卡片（最后一个没有编码）+ 分页
SAMPLE_LIST_HTML = """
<html><body>
<div class="product-list">
  <div class="prod-card">
    <a href="/scheda.asp?codArt=IP13LCD">Display LCD iPhone 13 Nero</a>
    <img src="/Foto/12345.JPG" alt="Display">
    <span>Cod. Art.: IP13LCD</span>
    <span>€ 89,90 sconto 10% € 80,91</span>
    <span>Disponibile (7 PZ)</span>
    <span>Qualità: Originale</span>
    <span>Colore: Nero</span>
    <span>Compatibile iPhone 13</span>
    <span>Marca: Apple</span>
  </div>
  <div class="prod-card">
    <span class="sku" data-sku="BAT-S21"></span>
    <h3>Batteria Samsung Galaxy S21</h3>
    <span>€ 24,50</span>
    <span>Esaurito</span>
  </div>
  <div class="prod-card">
    <a href="/scheda.asp?cod=XYZ9">Vetro temperato</a>
    <span>Prezzo: 3,50</span>
    <span>Pezzi: 4</span>
  </div>
  <div class="prod-card">
    <h3>Accessorio misterioso</h3>
    <span>€ 5,00</span>
  </div>
</div>
<div class="pager">
  <a href="/default.asp?cmdString=iphone&amp;cmd=searchProd&amp;bFormSearch=1&amp;pg=2">2</a>
</div>
</body></html>
"""


class TestHelpers(unittest.TestCase):
    """模块级工具函数"""

    def test_parse_price(self):
        self.assertEqual(parse_price("12,90"), Decimal("12.90"))
        self.assertEqual(parse_price("1.234,56"), Decimal("1234.56"))
        self.assertEqual(parse_price("12.90"), Decimal("12.90"))
        self.assertEqual(parse_price("1.234"), Decimal("1234"))
        self.assertIsNone(parse_price("n/d"))

    def test_clean_text(self):
        self.assertEqual(clean_text('  Cover  "Nera" \n per  iPhone '), "Cover Nera per iPhone")
        self.assertEqual(clean_text("x" * 300), "x" * 200)
        self.assertEqual(clean_text(None), "")

    def test_build_image_candidates(self):
        self.assertEqual(
            build_image_candidates("https://cdn.test/Foto/12345.JPG"),
            [
                "https://cdn.test/Foto/12345_3.JPG",
                "https://cdn.test/Foto/12345_2.JPG",
                "https://cdn.test/Foto/12345_1.JPG",
                "https://cdn.test/Foto/12345.JPG",
            ],
        )
        self.assertEqual(build_image_candidates("https://cdn.test/Foto/12345_1.jpg")[0], "https://cdn.test/Foto/12345_3.JPG")
        self.assertEqual(build_image_candidates("https://cdn.test/a/cover.png"), ["https://cdn.test/a/cover.png"])
        self.assertEqual(build_image_candidates(""), [])

    def test_set_page_param(self):
        self.assertEqual(set_page_param("https://shop.test/list", 3), "https://shop.test/list?pg=3")
        self.assertEqual(set_page_param("https://shop.test/list?a=1", 3), "https://shop.test/list?a=1&pg=3")
        self.assertEqual(set_page_param("https://shop.test/list?a=1&pg=2", 7), "https://shop.test/list?a=1&pg=7")


class TestCatalogParse(unittest.TestCase):
    """parse() 测试（不启动浏览器）"""

    def setUp(self):
        self.extractor = CatalogExtractor(Config(), browser=MagicMock())
        self.result = self.extractor.parse(SAMPLE_LIST_HTML, FIRST_PAGE)
        self.records = {r.sku: r for r in self.result.records}

    def test_cards_in_page_order(self):
        """只解析最内层卡片，没有编码的卡片被跳过"""
        self.assertEqual([r.sku for r in self.result.records], ["IP13LCD", "BAT-S21", "XYZ9"])
        self.assertEqual(self.extractor.stats["cards_seen"], 4)
        self.assertEqual(self.extractor.stats["cards_skipped"], 1)

    def test_full_card(self):
        record = self.records["IP13LCD"]
        self.assertEqual(record.name, "Display LCD iPhone 13 Nero")
        self.assertEqual(record.price, Decimal("80.91"))
        self.assertEqual(record.stock_quantity, 7)
        self.assertEqual(record.brand, "Apple")
        self.assertEqual(record.quality, "Originale")
        self.assertEqual(record.color, "Nero")
        self.assertEqual(record.compatibility, "iPhone 13")
        self.assertEqual(record.model, "iPhone 13")
        self.assertEqual(record.to_row()["Attribute:Model"], "iPhone 13")
        self.assertEqual(record.tags, "compatible-iphone-13,apple")
        self.assertEqual(record.categories, "Componenti")
        self.assertEqual(record.product_type, "simple")
        self.assertIn("Compatibile con iPhone 13", record.short_description)
        self.assertIn("Sconto 10%", record.short_description)
        self.assertEqual(record.image, "")
        self.assertEqual(record.image_candidates[0], "https://www.componentidigitali.com/Foto/12345_3.JPG")
        self.assertEqual(len(record.image_candidates), 4)

    def test_code_from_attribute_and_known_brand(self):
        record = self.records["BAT-S21"]
        self.assertEqual(record.name, "Batteria Samsung Galaxy S21")
        self.assertEqual(record.price, Decimal("24.50"))
        self.assertEqual(record.stock_quantity, 0)
        self.assertEqual(record.stock_status, "outofstock")
        self.assertEqual(record.brand, "Samsung")
        self.assertEqual(record.image_candidates, [])

    def test_code_from_link_and_labelled_price(self):
        record = self.records["XYZ9"]
        self.assertEqual(record.price, Decimal("3.50"))
        self.assertEqual(record.stock_quantity, 4)
        self.assertEqual(record.brand, "")

    def test_explicit_next_page_link(self):
        self.assertEqual(self.result.next_url, FIRST_PAGE + "&pg=2")

    def test_next_page_synthesised(self):
        result = self.extractor.parse("<html><body></body></html>", FIRST_PAGE + "&pg=5")
        self.assertEqual(result.records, [])
        self.assertEqual(result.next_url, FIRST_PAGE + "&pg=6")

    def test_next_page_limit(self):
        extractor = CatalogExtractor(Config(catalog=CatalogConfig(max_catalog_pages=5)), browser=MagicMock())
        result = extractor.parse("<html><body></body></html>", FIRST_PAGE + "&pg=5")
        self.assertIsNone(result.next_url)

    def test_stock_without_quantity(self):
        self.assertEqual(CatalogExtractor._extract_stock("Disponibile"), 10)
        self.assertEqual(CatalogExtractor._extract_stock("Non disponibile"), 0)
        self.assertEqual(CatalogExtractor._extract_stock("Scheda prodotto"), 1)

    def test_short_name_replaced(self):
        name = self.extractor._clean_name("LCD", "AB1", "Display LCD AB1")
        self.assertEqual(name, "Display AB1")


class TestCatalogBrowser(unittest.TestCase):
    """fetch / extract（mock 浏览器会话）"""

    def setUp(self):
        self.browser = MagicMock()
        self.browser.goto = AsyncMock(return_value=200)
        self.browser.wait = AsyncMock()
        self.browser.evaluate = AsyncMock()
        self.browser.content = AsyncMock(return_value=SAMPLE_LIST_HTML)
        self.browser.current_url = AsyncMock(return_value=FIRST_PAGE)
        self.extractor = CatalogExtractor(Config(), browser=self.browser)

    def test_page_url(self):
        self.assertEqual(self.extractor.page_url(1), FIRST_PAGE)
        self.assertEqual(self.extractor.page_url(3), FIRST_PAGE + "&pg=3")

    def test_fetch_and_extract(self):
        async def run():
            await self.extractor.fetch(FIRST_PAGE)
            return await self.extractor.extract(1, FIRST_PAGE)

        result = asyncio.run(run())
        self.assertEqual(len(result.records), 3)
        self.assertEqual(self.extractor.stats["pages_loaded"], 1)
        self.browser.evaluate.assert_awaited_once()

    def test_fetch_error_status(self):
        self.browser.goto = AsyncMock(return_value=503)
        with self.assertRaises(FetchError) as ctx:
            asyncio.run(self.extractor.fetch(FIRST_PAGE))
        self.assertEqual(ctx.exception.status, 503)
        self.assertFalse(ctx.exception.blocked)


if __name__ == '__main__':
    unittest.main()
