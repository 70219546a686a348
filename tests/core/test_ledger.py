"""
DedupLedger 单元测试
"""
import unittest

from core.ledger import DedupLedger


class TestDedupLedger(unittest.TestCase):
    """DedupLedger 测试类"""

    def setUp(self):
        self.ledger = DedupLedger()

    def test_contains_and_add(self):
        self.assertFalse(self.ledger.contains("A1"))
        self.ledger.add("A1")
        self.assertTrue(self.ledger.contains("A1"))
        self.assertIn("A1", self.ledger)
        self.assertEqual(len(self.ledger), 1)

    def test_stats(self):
        self.ledger.add("A1")
        self.ledger.contains("A1")
        self.ledger.contains("B2")
        stats = self.ledger.get_stats()
        self.assertEqual(stats["checked"], 2)
        self.assertEqual(stats["duplicates"], 1)
        self.assertEqual(stats["unique"], 1)

    def test_seed(self):
        """恢复运行时用已发布编码预填"""
        added = self.ledger.seed(["A1", "B2", "", "A1"])
        self.assertEqual(added, 2)
        self.assertTrue(self.ledger.contains("B2"))

    def test_clear(self):
        self.ledger.add("A1")
        self.ledger.clear()
        self.assertEqual(len(self.ledger), 0)


if __name__ == '__main__':
    unittest.main()
