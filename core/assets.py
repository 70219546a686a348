"""
商品图片下载器

按调用方给出的候选URL优先级逐个尝试，第一个成功即停止：
- HTTP 200
- 在超时内完成
- 大小不低于 min_size（过滤返回 200 的占位小图）

本地已有且未超过缓存期的文件直接复用，不访问网络。
"""
import asyncio
import io
import os
import re
import time
from pathlib import Path
from typing import Optional, Dict, List, Tuple, Callable

import aiohttp
from fake_useragent import UserAgent
from loguru import logger
from PIL import Image

from core.errors import AssetError


def image_filename(sku: str) -> str:
    """商品编码 -> 图片文件名（非字母数字替换为下划线）"""
    return re.sub(r"[^a-zA-Z0-9]", "_", sku) + ".jpg"


class AssetFetcher:
    """图片下载器"""

    CHUNK_SIZE = 8192

    def __init__(
        self,
        images_dir: Path,
        min_size: int = 2000,
        download_timeout: float = 30.0,
        cache_days: int = 30,
        verify_images: bool = False,
        referer: str = "",
        rotate_user_agent: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        """
        初始化下载器

        Args:
            images_dir: 图片目录
            min_size: 最小文件大小（字节）
            download_timeout: 单个候选的下载超时（秒）
            cache_days: 本地缓存有效天数
            verify_images: 是否用 Pillow 校验图片可解码
            referer: Referer 请求头
            rotate_user_agent: 是否轮换UA
            clock: 时间函数（epoch 秒）
        """
        self.images_dir = Path(images_dir)
        self.min_size = min_size
        self.download_timeout = download_timeout
        self.cache_days = cache_days
        self.verify_images = verify_images
        self.referer = referer
        self.rotate_user_agent = rotate_user_agent
        self.clock = clock
        self.ua = UserAgent()
        self.session: Optional[aiohttp.ClientSession] = None
        self.stats = {
            "downloaded": 0,
            "cached": 0,
            "stale_kept": 0,
            "failed": 0,
            "candidates_rejected": 0,
        }

    @classmethod
    def from_config(cls, config) -> "AssetFetcher":
        """从全局 Config 创建"""
        return cls(
            images_dir=config.image.images_dir,
            min_size=config.image.min_size,
            download_timeout=config.image.download_timeout,
            cache_days=config.image.cache_days,
            verify_images=config.image.verify_images,
            referer=config.catalog.base_url,
            rotate_user_agent=config.crawler.rotate_user_agent,
        )

    async def __aenter__(self):
        """异步上下文管理器入口"""
        await self.init_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """异步上下文管理器出口"""
        await self.close()

    async def init_session(self):
        """初始化HTTP会话"""
        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.download_timeout)
            self.session = aiohttp.ClientSession(timeout=timeout)
            logger.debug("Asset fetcher session initialized")

    async def close(self):
        """关闭会话"""
        if self.session:
            await self.session.close()
            self.session = None
            logger.info("Asset stats: {}", self.stats)

    def get_headers(self) -> Dict[str, str]:
        """获取请求头"""
        headers = {
            "User-Agent": self.ua.random if self.rotate_user_agent else self.ua.chrome,
            "Accept": "image/webp,image/apng,image/*,*/*;q=0.8",
            "Accept-Language": "it-IT,it;q=0.9,en;q=0.8",
        }
        if self.referer:
            headers["Referer"] = self.referer
        return headers

    def is_fresh(self, path: Path) -> bool:
        """本地缓存是否仍在有效期内"""
        try:
            age_days = (self.clock() - path.stat().st_mtime) / 86400
        except OSError:
            return False
        return age_days < self.cache_days

    async def fetch(self, candidates: List[str], key: str) -> bool:
        """
        下载一张商品图片

        Args:
            candidates: 候选URL（按优先级）
            key: 目标文件名

        Returns:
            目标文件是否可用（新下载或缓存）
        """
        dest = self.images_dir / key
        if dest.exists() and self.is_fresh(dest):
            self.stats["cached"] += 1
            logger.debug("Image cached: {}", key)
            return True

        for url in candidates:
            try:
                size = await self._download(url, dest)
            except AssetError as e:
                self.stats["candidates_rejected"] += 1
                logger.debug("Image candidate rejected: {}", e)
                continue
            self.stats["downloaded"] += 1
            logger.debug("Image downloaded: {} ({} bytes)", key, size)
            return True

        if dest.exists():
            # 过期副本仍优于空图片列
            self.stats["stale_kept"] += 1
            logger.debug("All candidates failed, keeping stale copy: {}", key)
            return True

        self.stats["failed"] += 1
        if candidates:
            logger.warning("No usable image for {} ({} candidates)", key, len(candidates))
        return False

    async def _download(self, url: str, dest: Path) -> int:
        """下载单个候选到 .part 文件，校验通过后替换目标；失败时删除 .part"""
        await self.init_session()
        dest.parent.mkdir(parents=True, exist_ok=True)
        part_path = dest.with_name(dest.name + ".part")
        size = 0
        try:
            async with self.session.get(url, headers=self.get_headers()) as response:
                if response.status != 200:
                    raise AssetError(f"{url}: HTTP {response.status}")
                with open(part_path, "wb") as f:
                    async for chunk in response.content.iter_chunked(self.CHUNK_SIZE):
                        f.write(chunk)
                        size += len(chunk)
            if size < self.min_size:
                raise AssetError(f"{url}: too small ({size} bytes)")
            if self.verify_images:
                self._verify(part_path, url)
            os.replace(part_path, dest)
            return size
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise AssetError(f"{url}: {e.__class__.__name__} {e}") from e
        finally:
            if part_path.exists():
                part_path.unlink()

    def _verify(self, path: Path, url: str):
        """用 Pillow 校验图片可解码"""
        try:
            with open(path, "rb") as f:
                Image.open(io.BytesIO(f.read())).verify()
        except Exception as e:
            raise AssetError(f"{url}: not a decodable image ({e})") from e

    async def fetch_batch(
        self,
        jobs: List[Tuple[List[str], str]],
        max_concurrent: int = 4,
    ) -> List[bool]:
        """
        并发下载一页的图片（带并发限制），全部完成后返回

        Args:
            jobs: [(候选URL列表, 目标文件名), ...]
            max_concurrent: 并发数

        Returns:
            与 jobs 一一对应的结果
        """
        if not jobs:
            return []

        semaphore = asyncio.Semaphore(max_concurrent)

        async def fetch_with_semaphore(candidates, key):
            async with semaphore:
                return await self.fetch(candidates, key)

        results = await asyncio.gather(
            *[fetch_with_semaphore(c, k) for c, k in jobs],
            return_exceptions=True
        )
        outcome = []
        for (_, key), result in zip(jobs, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                logger.warning("Image fetch crashed for {}: {}", key, result)
                outcome.append(False)
            else:
                outcome.append(result)
        return outcome

    def get_stats(self) -> Dict[str, int]:
        """获取下载统计"""
        return self.stats.copy()
