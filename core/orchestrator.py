"""
爬取编排器

逐页驱动：加载 -> 解析 -> 去重 -> 下载图片 -> 写入数据集 -> 检查点 -> 限速 -> 下一页

- 同一时刻只有一个页面在加载（限速依赖固定的请求间隔）
- 单页的图片下载有限并发，全部完成后该页才算处理完
- 单页失败重试后放弃并记录，不中断运行
- 收到停止信号后：不再开始新页面 -> 发布部分数据 -> 检查点标记 interrupted -> 释放浏览器
"""
import asyncio
import random
import signal
from typing import Optional, List

from loguru import logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_fixed,
)

from config import Config
from core.assets import AssetFetcher, image_filename
from core.checkpoint import CheckpointStore
from core.errors import (
    CrawlerError,
    ExtractionError,
    FatalStartupError,
    FetchError,
    PersistenceError,
    TooManyConsecutiveErrors,
)
from core.events import EventFeed
from core.ledger import DedupLedger
from core.models import CrawlPhase, CrawlState, ItemRecord, PageResult
from core.sink import IncrementalSink

# 页面被停止信号取消
PAGE_CANCELLED = object()


class CrawlOrchestrator:
    """
    爬取编排器

    全量爬取与库存复查共用同一个编排器，区别只在解析适配器和配置：

    Example:
        orchestrator = CrawlOrchestrator(config, CatalogExtractor(config), sink, store)
        orchestrator.install_signal_handlers()
        state = await orchestrator.run(max_pages=200)
    """

    # 低产出告警：处理页数超过阈值且平均每页商品数低于下限
    LOW_YIELD_MIN_PAGES = 150
    LOW_YIELD_PER_PAGE = 20

    def __init__(
        self,
        config: Config,
        extractor,
        sink: IncrementalSink,
        checkpoint: CheckpointStore,
        ledger: Optional[DedupLedger] = None,
        fetcher: Optional[AssetFetcher] = None,
        events: Optional[EventFeed] = None,
    ):
        """
        初始化编排器

        Args:
            config: 全局配置
            extractor: 页面解析适配器（PageExtractor）
            sink: 数据集输出
            checkpoint: 检查点存储
            ledger: 去重台账（默认新建）
            fetcher: 图片下载器（None 表示不下载图片）
            events: 事件流（可选）
        """
        self.config = config
        self.crawler = config.crawler
        self.extractor = extractor
        self.sink = sink
        self.checkpoint = checkpoint
        self.ledger = ledger if ledger is not None else DedupLedger()
        self.fetcher = fetcher
        self.events = events

        self.state: Optional[CrawlState] = None
        self.phase = CrawlPhase.INIT
        self.shutdown_event = asyncio.Event()
        self.shutdown_reason: Optional[str] = None
        self.resumed = False
        self._consecutive_failures = 0
        self.page_delay = self.crawler.page_delay
        self._success_streak = 0
        self._failure_streak = 0

    # ------------------------------------------------------------------
    # 停止信号
    # ------------------------------------------------------------------

    @property
    def shutdown_requested(self) -> bool:
        return self.shutdown_event.is_set()

    def request_shutdown(self, reason: str = "signal"):
        """请求优雅退出（幂等，重复调用无效果）"""
        if self.shutdown_event.is_set():
            logger.debug("Shutdown already in progress, ignoring {}", reason)
            return
        self.shutdown_reason = reason
        logger.warning("🛑 收到停止请求 ({})，正在保存进度...", reason)
        self.shutdown_event.set()

    def install_signal_handlers(self):
        """在当前事件循环上注册 SIGINT / SIGTERM"""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
            except (NotImplementedError, RuntimeError) as e:
                logger.debug("Signal handler unavailable for {}: {}", sig.name, e)

    # ------------------------------------------------------------------
    # 主流程
    # ------------------------------------------------------------------

    async def run(self, max_pages: Optional[int] = None) -> CrawlState:
        """
        执行一次运行

        Args:
            max_pages: 页数预算（最大页码），默认取配置

        Returns:
            最终的爬取状态（status: completed / interrupted / aborted / error）

        Raises:
            FatalStartupError: 页面获取能力无法启动
            PersistenceError: 退出时数据集无法保存
        """
        budget = max_pages or self.crawler.max_pages
        start_page = self._init_state(budget)
        if self.events:
            self.events.track(self.state)

        with logger.contextualize(run_id=self.state.run_id):
            logger.info(
                "🚀 开始爬取: 第 {} 页起，预算 {} 页{}",
                start_page, budget, "（从检查点恢复）" if self.resumed else "",
            )
            await self._startup()

            try:
                await self._crawl(start_page, budget)
            except TooManyConsecutiveErrors as e:
                logger.error("🚨 熔断: {}，中止运行", e)
                self.state.status = "aborted"
                await self._shutdown("aborted")
            except Exception as e:
                logger.exception("💥 运行异常: {}", e)
                self.state.status = "error"
                await self._shutdown("error", raise_on_failure=False)
                raise
            else:
                if self.shutdown_requested:
                    self.state.status = "interrupted"
                    await self._shutdown("interrupted")
                else:
                    await self._complete()

            self._log_summary()
        return self.state

    def _init_state(self, budget: int) -> int:
        """INIT / RESUMING：建立爬取状态，返回起始页码"""
        self.phase = CrawlPhase.INIT
        restored = None
        if self.crawler.resume:
            self.phase = CrawlPhase.RESUMING
            restored = self.checkpoint.load()

        if restored is not None:
            self.resumed = True
            self.state = restored
            self.state.total_pages = budget
            start_page = restored.current_page + 1
        else:
            start_page = self.crawler.start_page
            self.state = CrawlState(total_pages=budget, current_page=start_page - 1)

        if self.crawler.baseline_mode == "extend" or self.resumed:
            self.sink.load_baseline()
            if self.resumed and self.crawler.dedup_scope == "resume":
                self.ledger.seed(self.sink.baseline_ids)
        return start_page

    async def _startup(self):
        """
        启动页面获取能力；失败时先尽量保存已有数据再终止

        恢复运行时先把检查点中的解析器数据交还解析器，启动后再记录新的快照。

        Raises:
            FatalStartupError: 解析器启动失败（非预期异常也归为此类）
        """
        if self.resumed:
            self.extractor.restore_state(self.state.extractor_state)
        try:
            await self.extractor.start()
        except Exception as e:
            error = e if isinstance(e, FatalStartupError) else FatalStartupError(f"{e.__class__.__name__}: {e}")
            logger.critical("💥 无法启动页面获取: {}", error)
            self.state.status = "error"
            self.sink.publish_partial()
            if error is e:
                raise
            raise error from e
        self.state.extractor_state = self.extractor.snapshot_state()

    async def _crawl(self, start_page: int, budget: int):
        page = start_page
        url = self.extractor.page_url(page) if page <= budget else None
        visited = 0

        while url and not self.shutdown_requested:
            next_url = await self._run_page(page, url)
            if next_url is PAGE_CANCELLED:
                break

            visited += 1
            self.state.current_page = page
            self._persistence_tick(visited)

            if not next_url or next_url == url or page >= budget:
                logger.info("🏁 没有下一页或已达预算（第 {} 页）", page)
                break

            await self._pace(visited)
            page += 1
            url = next_url

        self.phase = CrawlPhase.DONE

    async def _run_page(self, page: int, url: str):
        """处理一页，与停止信号竞速；停止信号先到时取消该页（不写入半页数据）"""
        task = asyncio.ensure_future(self._process_page(page, url))
        stopper = asyncio.ensure_future(self.shutdown_event.wait())
        try:
            done, _ = await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
        if task not in done:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            logger.warning("⏹️ 第 {} 页被中断，未写入", page)
            return PAGE_CANCELLED
        return task.result()

    async def _process_page(self, page: int, url: str) -> Optional[str]:
        """单页：加载 + 解析（带重试） -> 处理商品；返回下一页URL"""
        try:
            result = await self._fetch_with_retry(page, url)
        except (FetchError, ExtractionError) as e:
            return self._abandon_page(page, url, e)

        self._consecutive_failures = 0
        await self._process_items(page, result.records)
        self.state.pages_processed += 1
        self._adapt_pace(success=True)
        return result.next_url

    def _abandon_page(self, page: int, url: str, error: CrawlerError) -> str:
        """重试耗尽：记录一次错误，按页码推算下一页继续"""
        self.state.record_error(page, url, str(error))
        self._consecutive_failures += 1
        logger.error("❌ 第 {} 页放弃: {}", page, error)
        self._adapt_pace(success=False)

        threshold = self.crawler.max_consecutive_errors
        if threshold and self._consecutive_failures >= threshold:
            raise TooManyConsecutiveErrors(self._consecutive_failures, threshold)
        return self.extractor.page_url(page + 1)

    async def _fetch_with_retry(self, page: int, url: str) -> PageResult:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.crawler.max_retries + 1) | stop_when_event_set(self.shutdown_event),
            wait=wait_fixed(self.crawler.retry_delay),
            retry=retry_if_exception_type((FetchError, ExtractionError)),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await self._attempt(page, url)
        return result

    def _log_retry(self, retry_state):
        error = retry_state.outcome.exception()
        logger.warning(
            "🔄 重试 {}/{}: {}",
            retry_state.attempt_number, self.crawler.max_retries, error,
        )

    async def _attempt(self, page: int, url: str) -> PageResult:
        """一次加载 + 解析；适配器抛出的非预期异常归类为 FetchError / ExtractionError"""
        self.phase = CrawlPhase.FETCHING
        try:
            await self.extractor.fetch(url)
        except FetchError as e:
            if e.blocked:
                logger.warning("🚫 疑似被限流 (HTTP {})，暂停 {}s", e.status, self.crawler.pause_after_block)
                self._on_blocked()
                await self._sleep(self.crawler.pause_after_block)
            raise
        except CrawlerError:
            raise
        except Exception as e:
            raise FetchError(url, f"{e.__class__.__name__}: {e}") from e

        self.phase = CrawlPhase.EXTRACTING
        try:
            return await self.extractor.extract(page, url)
        except CrawlerError:
            raise
        except Exception as e:
            raise ExtractionError(f"page {page}: {e.__class__.__name__}: {e}") from e

    async def _process_items(self, page: int, candidates: List[ItemRecord]):
        """去重 -> 下载图片 -> 按解析顺序写入数据集"""
        self.phase = CrawlPhase.PROCESSING_ITEMS
        if not candidates:
            self.state.empty_pages += 1
            logger.warning("⚠️ 第 {} 页加载成功但没有商品（目录末尾或解析规则失效）", page)
            return

        accepted = []
        for record in candidates:
            if self.ledger.contains(record.sku):
                continue
            self.ledger.add(record.sku)
            accepted.append(record)

        await self._resolve_images(accepted)

        for record in accepted:
            self.sink.append(record)
        self.state.items_found += len(accepted)
        logger.info(
            "📦 第 {} 页: {} 个商品，新增 {} 个（累计 {}）",
            page, len(candidates), len(accepted), self.state.items_found,
        )

    async def _resolve_images(self, records: List[ItemRecord]):
        """图片下载尽力而为，失败只留空图片列"""
        if not self.fetcher:
            return
        targets = [r for r in records if r.image_candidates]
        if not targets:
            return

        before = self.fetcher.get_stats()
        jobs = [(r.image_candidates, image_filename(r.sku)) for r in targets]
        results = await self.fetcher.fetch_batch(jobs, self.crawler.max_concurrent_downloads)
        for record, (_, filename), ok in zip(targets, jobs, results):
            if ok:
                record.image = self._image_ref(filename)

        after = self.fetcher.get_stats()
        self.state.images_downloaded += after["downloaded"] - before["downloaded"]
        self.state.images_cached += (
            after["cached"] - before["cached"] + after["stale_kept"] - before["stale_kept"]
        )

    def _image_ref(self, filename: str) -> str:
        base_url = self.config.image.images_base_url
        if base_url:
            return f"{base_url.rstrip('/')}/{filename}"
        return f"images/{filename}"

    # ------------------------------------------------------------------
    # 持久化 / 限速
    # ------------------------------------------------------------------

    def _persistence_tick(self, visited: int):
        """先发布部分数据；只有发布成功才写检查点（检查点不会指向未落盘的数据）"""
        at_checkpoint = visited % self.crawler.checkpoint_every == 0
        at_publish = visited % self.crawler.publish_every == 0
        if not (at_checkpoint or at_publish):
            return

        self.phase = CrawlPhase.CHECKPOINTING
        published = self.sink.publish_partial() if self.sink.dirty else True
        if not at_checkpoint:
            return
        if published:
            self.checkpoint.save(self.state, "running")
            logger.info("💾 检查点: 第 {} 页，{} 个商品", self.state.current_page, self.state.items_found)
        else:
            logger.warning("⚠️ 数据集发布失败，检查点推迟到下一次")

    async def _pace(self, visited: int):
        """两级限速：页间随机延迟 + 每批结束后的长暂停"""
        self.phase = CrawlPhase.PACING
        delay = self.page_delay + random.uniform(0, self.crawler.page_jitter)
        await self._sleep(delay)
        if visited % self.crawler.batch_size == 0 and not self.shutdown_requested:
            logger.info("⏸️ 批次完成（{} 页），暂停 {}s", visited, self.crawler.batch_pause)
            await self._sleep(self.crawler.batch_pause)

    def _adapt_pace(self, success: bool):
        """自适应延迟：连续成功 speedup_after 页缩短，连续失败 slowdown_after 页延长"""
        if not self.crawler.adaptive_pacing:
            return
        if success:
            self._success_streak += 1
            self._failure_streak = 0
            if self._success_streak >= self.crawler.speedup_after:
                self._success_streak = 0
                self._set_page_delay(self.page_delay - self.crawler.speedup_step, "⚡ 加速")
        else:
            self._failure_streak += 1
            self._success_streak = 0
            if self._failure_streak >= self.crawler.slowdown_after:
                self._failure_streak = 0
                self._set_page_delay(self.page_delay + self.crawler.slowdown_step, "🐢 减速")

    def _on_blocked(self):
        """被限流时延迟立即翻倍"""
        if self.crawler.adaptive_pacing:
            self._success_streak = 0
            self._set_page_delay(max(self.page_delay, self.crawler.min_page_delay) * 2, "🐢 减速")

    def _set_page_delay(self, delay: float, label: str):
        delay = round(min(self.crawler.max_page_delay, max(self.crawler.min_page_delay, delay)), 3)
        if delay != self.page_delay:
            logger.info("{}: 页间延迟 {}s -> {}s", label, self.page_delay, delay)
            self.page_delay = delay

    async def _sleep(self, seconds: float):
        """可被停止信号提前唤醒的 sleep"""
        if seconds <= 0 or self.shutdown_requested:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self.shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # ------------------------------------------------------------------
    # 结束
    # ------------------------------------------------------------------

    async def _complete(self):
        """正常完成：最终发布 -> 清除检查点"""
        if self.sink.is_empty:
            logger.warning("⚠️ 本次运行没有采集到任何商品，不生成数据集")
            self.checkpoint.clear()
            self.state.status = "completed"
        elif self.sink.publish_final():
            self.checkpoint.clear()
            self.state.status = "completed"
        else:
            # 保留可恢复的检查点，下次运行直接重试发布
            self.sink.publish_partial()
            self.checkpoint.save(self.state, "running")
            self.state.status = "error"
        await self._close_resources()
        self.phase = CrawlPhase.TERMINATED

    async def _shutdown(self, status: str, raise_on_failure: bool = True):
        """
        退出流程，每一步都有超时

        Args:
            status: 检查点状态标记
            raise_on_failure: 数据集保存失败时是否抛出 PersistenceError
        """
        self.phase = CrawlPhase.SHUTTING_DOWN
        published = await self._bounded(asyncio.to_thread(self.sink.publish_partial), "partial publish")
        saved = await self._bounded(
            asyncio.to_thread(self.checkpoint.save, self.state, status), "checkpoint"
        )
        await self._bounded(self._close_resources(), "release resources")
        self.phase = CrawlPhase.TERMINATED

        logger.info("💾 已保存: 数据集={} 检查点={} ({})", bool(published), bool(saved), status)
        if not published and raise_on_failure:
            raise PersistenceError("dataset could not be saved during shutdown")

    async def _bounded(self, awaitable, label: str):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.crawler.shutdown_step_timeout)
        except asyncio.TimeoutError:
            logger.error("⏱️ {} 超时（{}s）", label, self.crawler.shutdown_step_timeout)
            return False

    async def _close_resources(self):
        """释放浏览器与HTTP会话（单个失败不影响其余）"""
        try:
            await self.extractor.close()
        except Exception as e:
            logger.error("Extractor close failed: {}", e)
        if self.fetcher:
            try:
                await self.fetcher.close()
            except Exception as e:
                logger.error("Asset fetcher close failed: {}", e)
        return True

    def _log_summary(self):
        """运行汇总"""
        state = self.state
        records = self.sink.records
        total = len(records) or 1

        def share(count: int) -> str:
            return f"{count} ({count * 100 // total}%)"

        logger.info("=" * 60)
        logger.info("📊 运行结束: {}", state.status)
        logger.info("   商品: {}  页面: {} (空页 {})", state.items_found, state.pages_processed, state.empty_pages)
        logger.info("   图片: 下载 {}，缓存 {}", state.images_downloaded, state.images_cached)
        logger.info("   错误页: {}", len(state.errors))
        if records:
            logger.info(
                "   有价格 {}，有品牌 {}，有兼容机型 {}，有库存 {}",
                share(sum(1 for r in records if r.price is not None)),
                share(sum(1 for r in records if r.brand)),
                share(sum(1 for r in records if r.compatibility)),
                share(sum(1 for r in records if r.stock_quantity > 0)),
            )
        if (state.pages_processed > self.LOW_YIELD_MIN_PAGES
                and state.items_found < state.pages_processed * self.LOW_YIELD_PER_PAGE):
            logger.warning(
                "⚠️ 产出偏低: {} 页只有 {} 个商品，请检查解析规则",
                state.pages_processed, state.items_found,
            )
        logger.info("=" * 60)
