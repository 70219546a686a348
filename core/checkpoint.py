"""
检查点管理器 - 基于本地 JSON 文件

保存: 先写临时文件再 os.replace，读者不会看到写了一半的检查点。
加载: 超过有效期、损坏或已完成的检查点一律视为不存在。
"""
import json
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional, Callable

from loguru import logger
from pydantic import ValidationError

from core.models import CrawlState


class CheckpointStore:
    """
    检查点存储

    只由编排器写入（单写者），同一时刻只有一个运行，不需要加锁。
    """

    def __init__(
        self,
        path: Path,
        max_age_hours: float = 24.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        初始化检查点存储

        Args:
            path: 检查点文件路径
            max_age_hours: 有效期（小时），超过即丢弃
            clock: 时间函数（返回 epoch 秒）
        """
        self.path = Path(path)
        self.max_age_hours = max_age_hours
        self.clock = clock

    def save(self, state: CrawlState, status: Optional[str] = None, items_captured: Optional[int] = None) -> bool:
        """
        保存检查点（失败只记日志，不抛异常）

        Args:
            state: 爬取状态
            status: 状态标记（running / interrupted / aborted / error）
            items_captured: 已写入数据集的记录数

        Returns:
            是否保存成功
        """
        status = status or state.status
        now = self.clock()
        checkpoint = {
            "run_id": state.run_id,
            "current_page": state.current_page,
            "total_pages": state.total_pages,
            "items_captured": state.items_found if items_captured is None else items_captured,
            "timestamp": now,
            "saved_at": datetime.fromtimestamp(now).isoformat(),
            "status": status,
            "start_time": state.start_time.isoformat(),
            "stats": state.counters(),
            "errors": state.errors,
            "extractor_state": state.extractor_state,
        }
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(checkpoint, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
            logger.debug("Checkpoint saved: page {} ({})", state.current_page, status)
            return True
        except Exception as e:
            logger.error("Save checkpoint failed: {}", e)
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                pass
            return False

    def read(self) -> Optional[Dict[str, Any]]:
        """读取原始检查点（不做有效期判断，供 status 命令展示）"""
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Checkpoint unreadable, ignored: {}", e)
            return None
        if not isinstance(data, dict):
            logger.warning("Checkpoint malformed, ignored")
            return None
        return data

    def age_hours(self, data: Dict[str, Any]) -> Optional[float]:
        """检查点年龄（小时）"""
        timestamp = data.get("timestamp")
        if not isinstance(timestamp, (int, float)):
            return None
        return (self.clock() - timestamp) / 3600

    def load(self) -> Optional[CrawlState]:
        """
        加载可恢复的检查点

        Returns:
            爬取状态；不存在、过期、损坏或已完成时返回 None
        """
        data = self.read()
        if data is None:
            return None

        age = self.age_hours(data)
        if age is None:
            logger.warning("Checkpoint has no timestamp, ignored")
            return None
        if age > self.max_age_hours:
            logger.info("Checkpoint expired ({:.1f}h old), starting fresh", age)
            return None
        if data.get("status") == "completed":
            logger.info("Checkpoint marks a completed run, starting fresh")
            return None

        stats = data.get("stats") or {}
        try:
            state = CrawlState(
                run_id=data.get("run_id") or CrawlState().run_id,
                current_page=int(data["current_page"]),
                total_pages=int(data.get("total_pages") or 0),
                pages_processed=int(stats.get("pages_processed", 0)),
                items_found=int(data.get("items_captured", stats.get("items_found", 0))),
                images_downloaded=int(stats.get("images_downloaded", 0)),
                images_cached=int(stats.get("images_cached", 0)),
                empty_pages=int(stats.get("empty_pages", 0)),
                errors=list(data.get("errors") or []),
                extractor_state=dict(data.get("extractor_state") or {}),
                status="running",
            )
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning("Checkpoint corrupt, ignored: {}", e)
            return None

        logger.info("Checkpoint loaded: page {} ({:.1f}h old)", state.current_page, age)
        return state

    def clear(self) -> bool:
        """清除检查点（运行完成后调用，避免误恢复）"""
        try:
            self.path.unlink(missing_ok=True)
            logger.info("Checkpoint cleared: {}", self.path.name)
            return True
        except OSError as e:
            logger.error("Clear checkpoint failed: {}", e)
            return False

    def exists(self) -> bool:
        """检查点文件是否存在"""
        return self.path.exists()
