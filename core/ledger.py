"""
去重台账

记录本次运行已接收的商品编码，重复出现时静默跳过
（不重复写入数据集，也不重复下载图片）。
"""
from typing import Set, Iterable, Dict
from loguru import logger


class DedupLedger:
    """商品编码去重台账"""

    def __init__(self):
        self.ids: Set[str] = set()
        self.stats = {
            "checked": 0,
            "duplicates": 0,
        }

    def contains(self, item_id: str) -> bool:
        """
        检查编码是否已接收

        Args:
            item_id: 商品编码

        Returns:
            是否重复
        """
        self.stats["checked"] += 1
        if item_id in self.ids:
            self.stats["duplicates"] += 1
            logger.debug("Duplicate item skipped: {}", item_id)
            return True
        return False

    def add(self, item_id: str):
        self.ids.add(item_id)

    def seed(self, item_ids: Iterable[str]) -> int:
        """用已发布数据集中的编码预填台账（恢复运行时）"""
        before = len(self.ids)
        self.ids.update(i for i in item_ids if i)
        added = len(self.ids) - before
        logger.info("Dedup ledger seeded with {} ids", added)
        return added

    def clear(self):
        self.ids.clear()

    def __contains__(self, item_id: str) -> bool:
        return item_id in self.ids

    def __len__(self) -> int:
        return len(self.ids)

    def get_stats(self) -> Dict[str, int]:
        """获取去重统计"""
        return {**self.stats, "unique": len(self.ids)}
