"""
CLI commands 单元测试
"""
import unittest
from cli.commands import create_parser


class TestCreateParser(unittest.TestCase):
    """create_parser 测试"""

    def test_parser_requires_command(self):
        """无子命令时应报错"""
        parser = create_parser()
        with self.assertRaises(SystemExit):
            parser.parse_args([])

    def test_parse_crawl_defaults(self):
        args = create_parser().parse_args(["crawl"])
        self.assertEqual(args.command, "crawl")
        self.assertIsNone(args.max_pages)
        self.assertIsNone(args.start_page)
        self.assertTrue(args.resume)
        self.assertTrue(args.download_images)

    def test_parse_crawl_options(self):
        args = create_parser().parse_args([
            "crawl", "--max-pages", "50", "--start-page", "10", "--no-resume", "--no-images",
        ])
        self.assertEqual(args.max_pages, 50)
        self.assertEqual(args.start_page, 10)
        self.assertFalse(args.resume)
        self.assertFalse(args.download_images)

    def test_parse_stock_check(self):
        args = create_parser().parse_args(["stock-check", "--limit", "500"])
        self.assertEqual(args.command, "stock-check")
        self.assertEqual(args.limit, 500)
        self.assertTrue(args.resume)
        self.assertEqual(create_parser().parse_args(["stock-check"]).limit, 5000)

    def test_parse_status(self):
        args = create_parser().parse_args(["status", "--events", "20", "--stock", "--clear"])
        self.assertEqual(args.command, "status")
        self.assertEqual(args.events, 20)
        self.assertTrue(args.stock)
        self.assertTrue(args.clear)

    def test_unknown_command(self):
        with self.assertRaises(SystemExit):
            create_parser().parse_args(["crawl-bbs"])


if __name__ == '__main__':
    unittest.main()
