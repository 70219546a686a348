"""
无头浏览器会话（Playwright / Chromium）

只提供编排器需要的几个能力：打开页面、取HTML、执行脚本、等待。
"""
from typing import Optional, Any

from fake_useragent import UserAgent
from loguru import logger

from core.errors import FatalStartupError, FetchError


class BrowserSession:
    """
    浏览器会话

    Example:
        async with BrowserSession() as browser:
            status = await browser.goto("https://example.com", timeout=45)
            html = await browser.content()
    """

    LAUNCH_ARGS = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-gpu",
    ]

    def __init__(self, headless: bool = True, user_agent: Optional[str] = None):
        """
        初始化会话

        Args:
            headless: 是否无头模式
            user_agent: 固定UA（None 时随机取一个 Chrome UA）
        """
        self.headless = headless
        self.user_agent = user_agent
        self._playwright = None
        self._browser = None
        self._context = None
        self.page = None

    async def __aenter__(self):
        """异步上下文管理器入口"""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """异步上下文管理器出口"""
        await self.close()

    @property
    def started(self) -> bool:
        return self.page is not None

    async def start(self):
        """启动浏览器（失败抛 FatalStartupError）"""
        if self.started:
            return
        try:
            from playwright.async_api import async_playwright
        except ImportError as e:
            raise FatalStartupError("playwright is not installed") from e

        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless, args=self.LAUNCH_ARGS
            )
            self._context = await self._browser.new_context(
                user_agent=self.user_agent or UserAgent().chrome,
                locale="it-IT",
            )
            self.page = await self._context.new_page()
        except Exception as e:
            await self.close()
            raise FatalStartupError(f"browser launch failed: {e}") from e
        logger.info("🌐 Chromium {} 已启动", self._browser.version)

    async def close(self):
        """关闭浏览器（可重复调用）"""
        for name in ("page", "_context", "_browser"):
            resource = getattr(self, name)
            if resource is not None:
                try:
                    await resource.close()
                except Exception as e:
                    logger.debug("Closing {} failed: {}", name, e)
                setattr(self, name, None)
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.debug("Stopping playwright failed: {}", e)
            self._playwright = None

    async def goto(self, url: str, timeout: float = 45.0, wait_until: str = "networkidle") -> Optional[int]:
        """
        打开页面

        Args:
            url: 页面URL
            timeout: 超时（秒）
            wait_until: 加载完成判定

        Returns:
            HTTP 状态码（没有响应对象时为 None）
        """
        if not self.started:
            raise FetchError(url, "browser not started")
        try:
            response = await self.page.goto(url, wait_until=wait_until, timeout=timeout * 1000)
        except Exception as e:
            raise FetchError(url, f"{e.__class__.__name__}: {e}") from e
        return response.status if response else None

    async def content(self) -> str:
        return await self.page.content()

    async def evaluate(self, script: str) -> Any:
        return await self.page.evaluate(script)

    async def wait(self, ms: int):
        await self.page.wait_for_timeout(ms)

    async def body_text(self) -> str:
        return await self.page.evaluate("() => document.body ? document.body.innerText : ''")

    async def current_url(self) -> str:
        return self.page.url
