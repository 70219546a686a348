"""
事件流

作为 loguru 的额外 sink 挂载，把 INFO 及以上日志转成结构化事件：
{timestamp, level, message, run_id, counters}

- 内存中只保留最近 max_events 条
- 同时逐行写入 JSONL 文件，超过 2 倍上限时压缩回最近 max_events 条
- 供外部监控（status 命令）只读消费
"""
import json
from collections import deque
from pathlib import Path
from typing import Optional, List, Dict, Any

from loguru import logger

from core.models import CrawlState


class EventFeed:
    """结构化事件流"""

    def __init__(self, path: Optional[Path] = None, max_events: int = 500, level: str = "INFO"):
        """
        初始化事件流

        Args:
            path: JSONL 文件路径（None 表示只在内存中保留）
            max_events: 保留条数
            level: 最低日志级别
        """
        self.path = Path(path) if path else None
        self.max_events = max_events
        self.level = level
        self.events = deque(maxlen=max_events)
        self.state: Optional[CrawlState] = None
        self._handler_id: Optional[int] = None
        self._lines = self._count_lines()

    def _count_lines(self) -> int:
        if not self.path or not self.path.exists():
            return 0
        with open(self.path, "r", encoding="utf-8") as f:
            return sum(1 for _ in f)

    def track(self, state: CrawlState):
        """绑定当前运行的爬取状态（事件附带其计数器快照）"""
        self.state = state

    def attach(self) -> int:
        """挂载为 loguru sink"""
        if self._handler_id is None:
            self._handler_id = logger.add(self.write, level=self.level, format="{message}", catch=True)
        return self._handler_id

    def detach(self):
        """卸载 sink"""
        if self._handler_id is not None:
            logger.remove(self._handler_id)
            self._handler_id = None

    def write(self, message):
        """loguru sink 回调"""
        record = message.record
        state = self.state
        event = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name,
            "message": record["message"],
            "run_id": record["extra"].get("run_id") or (state.run_id if state else None),
            "counters": state.counters() if state else {},
        }
        self.events.append(event)
        if self.path:
            self._persist(event)

    def _persist(self, event: Dict[str, Any]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(event, ensure_ascii=False) + "\n")
        self._lines += 1
        if self._lines > self.max_events * 2:
            self._compact()

    def _compact(self):
        """压缩文件，只保留最近 max_events 条"""
        with open(self.path, "r", encoding="utf-8") as f:
            lines = f.readlines()[-self.max_events:]
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.writelines(lines)
        tmp_path.replace(self.path)
        self._lines = len(lines)

    def recent(self, n: int = 20) -> List[Dict[str, Any]]:
        """最近 n 条事件"""
        if n <= 0:
            return []
        return list(self.events)[-n:]

    @staticmethod
    def load(path: Path, n: Optional[int] = None) -> List[Dict[str, Any]]:
        """读取持久化的事件流（跳过损坏行）"""
        path = Path(path)
        if not path.exists():
            return []
        events = []
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(json.loads(line))
                except ValueError:
                    continue
        return events[-n:] if n else events
