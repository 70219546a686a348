"""
数据模型单元测试
"""
import unittest
from decimal import Decimal

from pydantic import ValidationError

from core.models import CSV_HEADER, CrawlState, ItemRecord


class TestItemRecord(unittest.TestCase):
    """ItemRecord 测试"""

    def test_stock_status_derived(self):
        self.assertEqual(ItemRecord(sku="A", stock_quantity=3).stock_status, "instock")
        self.assertEqual(ItemRecord(sku="A", stock_quantity=0).stock_status, "outofstock")

    def test_sku_immutable(self):
        record = ItemRecord(sku="A1")
        with self.assertRaises(ValidationError):
            record.sku = "B2"

    def test_negative_stock_rejected(self):
        with self.assertRaises(ValidationError):
            ItemRecord(sku="A", stock_quantity=-1)

    def test_price_parsing(self):
        self.assertEqual(ItemRecord(sku="A", price="12,90").price, Decimal("12.90"))
        self.assertEqual(ItemRecord(sku="A", price="€ 1.234,50").price, Decimal("1234.50"))
        self.assertEqual(ItemRecord(sku="A", price="9.5").price, Decimal("9.5"))
        self.assertIsNone(ItemRecord(sku="A", price="").price)
        self.assertIsNone(ItemRecord(sku="A", price="n/a").price)

    def test_to_row_column_order(self):
        record = ItemRecord(sku="A1", name="Display", price="19,9", stock_quantity=4, color="Nero")
        row = record.to_row()
        self.assertEqual(list(row.keys()), CSV_HEADER)
        self.assertEqual(row["Regular price"], "19.90")
        self.assertEqual(row["Stock status"], "instock")
        self.assertEqual(row["Attribute:Color"], "Nero")

    def test_row_round_trip_ignores_transient_fields(self):
        record = ItemRecord(sku="A1", name="Display", image_candidates=["https://x/1.JPG"])
        restored = ItemRecord.from_row(record.to_row())
        self.assertEqual(restored.sku, "A1")
        self.assertEqual(restored.image_candidates, [])

    def test_from_row_bad_quantity(self):
        restored = ItemRecord.from_row({"SKU": "A1", "Stock quantity": "abc"})
        self.assertEqual(restored.stock_quantity, 0)


class TestCrawlState(unittest.TestCase):
    """CrawlState 测试"""

    def test_counters(self):
        state = CrawlState(pages_processed=3, items_found=10)
        state.record_error(2, "u", "boom")
        counters = state.counters()
        self.assertEqual(counters["pages_processed"], 3)
        self.assertEqual(counters["items_found"], 10)
        self.assertEqual(counters["errors"], 1)

    def test_run_ids_unique(self):
        self.assertNotEqual(CrawlState().run_id, CrawlState().run_id)


if __name__ == '__main__':
    unittest.main()
