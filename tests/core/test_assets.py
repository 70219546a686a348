"""
AssetFetcher 单元测试（mock aiohttp）
"""
import asyncio
import io
import os
import shutil
import tempfile
import time
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

from PIL import Image

from core.assets import AssetFetcher, image_filename


def _response(status: int, body: bytes = b""):
    """模拟 aiohttp 响应（异步上下文管理器 + 分块读取）"""
    resp = MagicMock()
    resp.status = status

    async def iter_chunked(size):
        for i in range(0, len(body), size):
            yield body[i:i + size]

    resp.content.iter_chunked = iter_chunked
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=None)
    return resp


def _session(responses: dict):
    session = MagicMock()

    def get(url, headers=None):
        result = responses[url]
        if isinstance(result, Exception):
            raise result
        return result

    session.get.side_effect = get
    session.close = AsyncMock(return_value=None)
    return session


class TestImageFilename(unittest.TestCase):

    def test_non_alphanumeric_replaced(self):
        self.assertEqual(image_filename("AB-12/3 x"), "AB_12_3_x.jpg")
        self.assertEqual(image_filename("ABC123"), "ABC123.jpg")


class TestAssetFetcher(unittest.TestCase):
    """AssetFetcher 测试类"""

    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp())
        self.now = time.time()
        self.fetcher = AssetFetcher(self.test_dir, min_size=2000, clock=lambda: self.now)

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_get_headers(self):
        fetcher = AssetFetcher(self.test_dir, referer="https://shop.example")
        headers = fetcher.get_headers()
        self.assertIn("User-Agent", headers)
        self.assertEqual(headers["Referer"], "https://shop.example")

    def test_fallback_order(self):
        """A 404、B 只有 50 字节、C 5000 字节：使用 C，不留下半成品文件"""
        self.fetcher.session = _session({
            "A": _response(404),
            "B": _response(200, b"x" * 50),
            "C": _response(200, b"c" * 5000),
        })

        ok = asyncio.run(self.fetcher.fetch(["A", "B", "C"], "item.jpg"))

        self.assertTrue(ok)
        self.assertEqual((self.test_dir / "item.jpg").read_bytes(), b"c" * 5000)
        self.assertEqual(os.listdir(self.test_dir), ["item.jpg"])
        self.assertEqual(self.fetcher.stats["downloaded"], 1)
        self.assertEqual(self.fetcher.stats["candidates_rejected"], 2)

    def test_stops_at_first_success(self):
        session = _session({
            "A": _response(200, b"a" * 3000),
            "B": _response(200, b"b" * 3000),
        })
        self.fetcher.session = session
        self.assertTrue(asyncio.run(self.fetcher.fetch(["A", "B"], "item.jpg")))
        self.assertEqual(session.get.call_count, 1)

    def test_all_candidates_fail(self):
        self.fetcher.session = _session({
            "A": _response(500),
            "B": asyncio.TimeoutError(),
        })
        self.assertFalse(asyncio.run(self.fetcher.fetch(["A", "B"], "item.jpg")))
        self.assertEqual(os.listdir(self.test_dir), [])
        self.assertEqual(self.fetcher.stats["failed"], 1)

    def test_fresh_cache_skips_network(self):
        (self.test_dir / "item.jpg").write_bytes(b"old" * 1000)
        session = _session({})
        self.fetcher.session = session

        self.assertTrue(asyncio.run(self.fetcher.fetch(["A"], "item.jpg")))
        session.get.assert_not_called()
        self.assertEqual(self.fetcher.stats["cached"], 1)

    def test_stale_cache_replaced(self):
        """超过缓存期的文件重新下载"""
        (self.test_dir / "item.jpg").write_bytes(b"old" * 1000)
        self.now = time.time() + 31 * 86400
        self.fetcher.session = _session({"A": _response(200, b"n" * 4000)})

        self.assertTrue(asyncio.run(self.fetcher.fetch(["A"], "item.jpg")))
        self.assertEqual((self.test_dir / "item.jpg").read_bytes(), b"n" * 4000)

    def test_stale_cache_kept_when_download_fails(self):
        (self.test_dir / "item.jpg").write_bytes(b"old" * 1000)
        self.now = time.time() + 31 * 86400
        self.fetcher.session = _session({"A": _response(404)})

        self.assertTrue(asyncio.run(self.fetcher.fetch(["A"], "item.jpg")))
        self.assertEqual((self.test_dir / "item.jpg").read_bytes(), b"old" * 1000)
        self.assertEqual(self.fetcher.stats["stale_kept"], 1)

    def test_verify_rejects_undecodable_payload(self):
        buffer = io.BytesIO()
        Image.new("RGB", (100, 100), (200, 10, 10)).save(buffer, format="BMP")
        fetcher = AssetFetcher(self.test_dir, verify_images=True)
        fetcher.session = _session({
            "junk": _response(200, b"j" * 5000),
            "real": _response(200, buffer.getvalue()),
        })

        self.assertTrue(asyncio.run(fetcher.fetch(["junk", "real"], "item.jpg")))
        self.assertEqual((self.test_dir / "item.jpg").read_bytes(), buffer.getvalue())
        self.assertEqual(fetcher.stats["candidates_rejected"], 1)

    def test_fetch_batch(self):
        self.fetcher.session = _session({
            "A": _response(200, b"a" * 3000),
            "B": _response(404),
        })
        results = asyncio.run(self.fetcher.fetch_batch([(["A"], "a.jpg"), (["B"], "b.jpg")], max_concurrent=1))
        self.assertEqual(results, [True, False])

    def test_fetch_batch_empty(self):
        self.assertEqual(asyncio.run(self.fetcher.fetch_batch([])), [])

    @patch("core.assets.aiohttp.ClientSession")
    def test_context_manager_opens_and_closes_session(self, mock_session_cls):
        mock_session = MagicMock()
        mock_session.close = AsyncMock(return_value=None)
        mock_session_cls.return_value = mock_session

        async def run():
            async with self.fetcher as fetcher:
                self.assertIs(fetcher.session, mock_session)
            mock_session.close.assert_awaited_once()
            self.assertIsNone(self.fetcher.session)

        asyncio.run(run())


if __name__ == '__main__':
    unittest.main()
