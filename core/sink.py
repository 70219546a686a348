"""
增量数据集输出（CSV）

记录先累积在内存中，按节奏发布到磁盘：
- publish_partial: 写工作文件，再以副本原子替换数据集（工作文件保留）
- publish_final: 写工作文件并原子重命名为数据集，另存日期归档

数据集路径只会被完整写好的文件替换，读者不会看到写了一半的文件。
"""
import csv
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import List, Dict, Optional, Callable

from loguru import logger

from core.models import ItemRecord, CSV_HEADER


def read_dataset(path: Path) -> List[ItemRecord]:
    """
    读取数据集文件

    Args:
        path: CSV 文件路径

    Returns:
        商品记录列表（文件不存在时为空）
    """
    path = Path(path)
    if not path.exists():
        return []
    records = []
    with open(path, "r", encoding="utf-8", newline="") as f:
        for row in csv.DictReader(f):
            if not (row.get("SKU") or "").strip():
                continue
            try:
                records.append(ItemRecord.from_row(row))
            except ValueError as e:
                logger.warning("Skipping malformed row {}: {}", row.get("SKU"), e)
    return records


class IncrementalSink:
    """增量数据集输出"""

    def __init__(
        self,
        output_dir: Path,
        dataset_name: str = "products_latest.csv",
        working_name: str = "products.tmp.csv",
        archive_prefix: str = "products_full_",
        archive_keep: int = 7,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        初始化输出

        Args:
            output_dir: 输出目录
            dataset_name: 数据集文件名（下游读取的规范路径）
            working_name: 工作文件名
            archive_prefix: 归档文件前缀
            archive_keep: 保留归档数量
            clock: 当前时间函数（归档文件日期）
        """
        self.output_dir = Path(output_dir)
        self.dataset_path = self.output_dir / dataset_name
        self.working_path = self.output_dir / working_name
        self.archive_prefix = archive_prefix
        self.archive_keep = archive_keep
        self.clock = clock

        self.records: List[ItemRecord] = []
        self.baseline: List[ItemRecord] = []
        self._published = 0
        self.stats = {
            "partial_publishes": 0,
            "final_publishes": 0,
            "publish_failures": 0,
        }

    @classmethod
    def from_config(cls, output_config) -> "IncrementalSink":
        """从 OutputConfig 创建"""
        return cls(
            output_dir=output_config.output_dir,
            dataset_name=output_config.dataset_name,
            working_name=output_config.working_name,
            archive_prefix=output_config.archive_prefix,
            archive_keep=output_config.archive_keep,
        )

    def append(self, record: ItemRecord):
        self.records.append(record)

    def __len__(self) -> int:
        return len(self.records)

    @property
    def dirty(self) -> int:
        """上次成功发布后新增的记录数"""
        return len(self.records) - self._published

    @property
    def is_empty(self) -> bool:
        return not self.records and not self.baseline

    @property
    def baseline_ids(self) -> List[str]:
        return [r.sku for r in self.baseline]

    def load_baseline(self) -> int:
        """
        读取上一轮发布的数据集作为基线（不回放到 records）

        Returns:
            基线行数
        """
        try:
            self.baseline = read_dataset(self.dataset_path)
        except OSError as e:
            logger.warning("Baseline unreadable, continuing without: {}", e)
            self.baseline = []
        logger.info("Baseline loaded: {} rows from {}", len(self.baseline), self.dataset_path.name)
        return len(self.baseline)

    def rows(self) -> List[ItemRecord]:
        """待发布的全部行：基线在前（同编码就地替换），新编码按追加顺序在后"""
        if not self.baseline:
            return list(self.records)
        fresh: Dict[str, ItemRecord] = {}
        for record in self.records:
            fresh[record.sku] = record
        merged = []
        for old in self.baseline:
            merged.append(fresh.pop(old.sku, old))
        merged.extend(r for r in self.records if r.sku in fresh)
        return merged

    def _write(self, path: Path, rows: List[ItemRecord]):
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_HEADER)
            writer.writeheader()
            for record in rows:
                writer.writerow(record.to_row())
            f.flush()
            os.fsync(f.fileno())

    def publish_partial(self) -> bool:
        """
        部分发布（可重复调用，不做最终重命名）

        Returns:
            是否成功（没有可写内容时视为成功）
        """
        if self.is_empty:
            logger.debug("Partial publish skipped: nothing captured yet")
            return True
        rows = self.rows()
        swap_path = self.dataset_path.with_name(self.dataset_path.name + ".swap")
        try:
            self._write(self.working_path, rows)
            shutil.copyfile(self.working_path, swap_path)
            os.replace(swap_path, self.dataset_path)
        except OSError as e:
            self.stats["publish_failures"] += 1
            logger.error("Partial publish failed: {}", e)
            try:
                swap_path.unlink(missing_ok=True)
            except OSError:
                pass
            return False
        self._published = len(self.records)
        self.stats["partial_publishes"] += 1
        logger.info("Partial dataset published: {} rows", len(rows))
        return True

    def publish_final(self) -> bool:
        """
        最终发布：写工作文件并原子重命名为数据集，然后写日期归档

        Returns:
            是否成功
        """
        if self.is_empty:
            logger.warning("Final publish skipped: dataset is empty")
            return False
        rows = self.rows()
        try:
            self._write(self.working_path, rows)
            self._promote()
        except OSError as e:
            self.stats["publish_failures"] += 1
            logger.error("Final publish failed: {}", e)
            return False
        self._published = len(self.records)
        self.stats["final_publishes"] += 1
        logger.success("Dataset published: {} rows -> {}", len(rows), self.dataset_path)
        self._archive()
        return True

    def _promote(self):
        """工作文件 -> 数据集；跨设备等无法原子重命名时退化为复制再删除"""
        try:
            os.replace(self.working_path, self.dataset_path)
        except OSError as e:
            logger.warning("Atomic rename unavailable ({}), falling back to copy", e)
            swap_path = self.dataset_path.with_name(self.dataset_path.name + ".swap")
            shutil.copyfile(self.working_path, swap_path)
            os.replace(swap_path, self.dataset_path)
            self.working_path.unlink(missing_ok=True)

    def _archive(self):
        """日期归档 + 清理旧归档（失败只记日志）"""
        archive_path = self.output_dir / f"{self.archive_prefix}{self.clock():%Y%m%d}.csv"
        try:
            shutil.copyfile(self.dataset_path, archive_path)
            archives = sorted(self.output_dir.glob(f"{self.archive_prefix}*.csv"), reverse=True)
            for old in archives[self.archive_keep:]:
                old.unlink()
                logger.debug("Old archive removed: {}", old.name)
        except OSError as e:
            logger.warning("Archive failed: {}", e)

    def read_dataset(self, path: Optional[Path] = None) -> List[ItemRecord]:
        """读取数据集（默认规范路径）"""
        return read_dataset(path or self.dataset_path)

    def get_stats(self) -> Dict[str, int]:
        """获取输出统计"""
        return {**self.stats, "records": len(self.records), "baseline": len(self.baseline)}
