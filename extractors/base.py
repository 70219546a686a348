"""
页面解析适配器基类

编排器只通过这个接口获取页面：
- page_url(): 第N页的URL
- fetch(): 加载页面（失败抛 FetchError）
- extract(): 解析出候选记录和下一页URL（失败抛 ExtractionError）
"""
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

from core.models import PageResult


class PageExtractor(ABC):
    """
    页面解析适配器基类

    子类需要实现:
    - page_url(): 页码 -> URL
    - fetch(): 加载页面
    - extract(): 解析已加载的页面
    start() / close() 默认无操作，持有浏览器等资源的子类重写。
    页码与内容的对应依赖运行时数据的子类，通过 snapshot_state() / restore_state() 让恢复后的页码指向同一内容。
    """

    name = "base"

    async def start(self):
        """初始化页面获取能力（失败抛 FatalStartupError）"""

    async def close(self):
        """释放资源"""

    def snapshot_state(self) -> Dict[str, Any]:
        """需要随检查点保存的解析器数据（默认无）"""
        return {}

    def restore_state(self, data: Dict[str, Any]):
        """从检查点恢复 snapshot_state() 保存的数据（在 start() 之前调用）"""

    async def __aenter__(self):
        """异步上下文管理器入口"""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """异步上下文管理器出口"""
        await self.close()

    @abstractmethod
    def page_url(self, page_number: int) -> str:
        """第 page_number 页的URL"""

    @abstractmethod
    async def fetch(self, url: str):
        """加载页面"""

    @abstractmethod
    async def extract(self, page_number: int, url: str) -> PageResult:
        """解析已加载的页面"""

    def _extract_id(self, text: str, patterns: List[str]) -> Optional[str]:
        """
        按正则列表提取ID

        Args:
            text: URL 或文本
            patterns: 正则表达式列表（第1组为ID）

        Returns:
            提取的ID，全部不匹配时返回 None
        """
        for pattern in patterns:
            match = re.search(pattern, text, re.IGNORECASE)
            if match:
                return match.group(1).strip()
        return None

    def _get_image_url(self, img_tag, base_url: str) -> Optional[str]:
        """从img标签获取图片URL（兼容懒加载属性，相对路径转绝对）"""
        src = img_tag.get("src") or img_tag.get("data-src") or img_tag.get("data-original")
        if not src or src.startswith("data:"):
            return None
        return urljoin(base_url, src)
