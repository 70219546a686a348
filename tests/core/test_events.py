"""
EventFeed 单元测试（挂载到 loguru）
"""
import json
import shutil
import tempfile
import unittest
from pathlib import Path

from loguru import logger

from core.events import EventFeed
from core.models import CrawlState


class TestEventFeed(unittest.TestCase):
    """EventFeed 测试类"""

    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp())
        self.path = self.test_dir / "events.jsonl"

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_captures_info_and_above(self):
        feed = EventFeed(self.path, max_events=10)
        feed.attach()
        try:
            logger.debug("hidden")
            logger.info("page done")
            logger.warning("slow down")
        finally:
            feed.detach()

        messages = [e["message"] for e in feed.recent(10)]
        self.assertEqual(messages, ["page done", "slow down"])
        self.assertEqual(feed.recent(1)[0]["level"], "WARNING")

    def test_event_carries_run_id_and_counters(self):
        state = CrawlState(pages_processed=4, items_found=80)
        feed = EventFeed(None, max_events=10)
        feed.track(state)
        feed.attach()
        try:
            logger.info("tick")
        finally:
            feed.detach()

        event = feed.recent(1)[0]
        self.assertEqual(event["run_id"], state.run_id)
        self.assertEqual(event["counters"]["items_found"], 80)

    def test_contextualized_run_id_wins(self):
        feed = EventFeed(None)
        feed.attach()
        try:
            with logger.contextualize(run_id="abc123"):
                logger.info("inside")
        finally:
            feed.detach()
        self.assertEqual(feed.recent(1)[0]["run_id"], "abc123")

    def test_bounded_memory_and_file_compaction(self):
        feed = EventFeed(self.path, max_events=5)
        feed.attach()
        try:
            for i in range(12):
                logger.info("event {}", i)
        finally:
            feed.detach()

        self.assertEqual(len(feed.events), 5)
        self.assertEqual(feed.recent(5)[-1]["message"], "event 11")
        lines = self.path.read_text(encoding="utf-8").splitlines()
        self.assertLessEqual(len(lines), 10)
        self.assertEqual(json.loads(lines[-1])["message"], "event 11")

    def test_load_skips_bad_lines(self):
        self.path.write_text(
            json.dumps({"message": "a"}) + "\n{broken\n\n" + json.dumps({"message": "b"}) + "\n",
            encoding="utf-8",
        )
        self.assertEqual([e["message"] for e in EventFeed.load(self.path)], ["a", "b"])
        self.assertEqual([e["message"] for e in EventFeed.load(self.path, n=1)], ["b"])
        self.assertEqual(EventFeed.load(self.test_dir / "missing.jsonl"), [])

    def test_recent_non_positive(self):
        self.assertEqual(EventFeed(None).recent(0), [])


if __name__ == '__main__':
    unittest.main()
