"""
CLI命令处理函数

返回值即进程退出码：
0 = 完成或被中断（进度已保存），1 = 启动失败 / 保存失败 / 异常，2 = 熔断中止
"""
from datetime import datetime
from typing import Optional

from loguru import logger

from config import Config, CrawlProfiles, load_config_from_env
from core.assets import AssetFetcher
from core.checkpoint import CheckpointStore
from core.errors import FatalStartupError, PersistenceError
from core.events import EventFeed
from core.ledger import DedupLedger
from core.models import CrawlState
from core.orchestrator import CrawlOrchestrator
from core.sink import IncrementalSink
from extractors.catalog import CatalogExtractor
from extractors.stock import StockCheckExtractor


EXIT_CODES = {
    "completed": 0,
    "interrupted": 0,
    "aborted": 2,
    "error": 1,
}


def build_orchestrator(config: Config, extractor, download_images: bool = True) -> CrawlOrchestrator:
    """按配置组装编排器及其组件"""
    config.ensure_directories()
    events = EventFeed(config.output.events_path, max_events=config.output.events_max)
    return CrawlOrchestrator(
        config=config,
        extractor=extractor,
        sink=IncrementalSink.from_config(config.output),
        checkpoint=CheckpointStore(config.output.checkpoint_path, config.output.checkpoint_max_age_hours),
        ledger=DedupLedger(),
        fetcher=AssetFetcher.from_config(config) if download_images else None,
        events=events,
    )


async def run_orchestrator(orchestrator: CrawlOrchestrator, max_pages: Optional[int] = None) -> int:
    """执行一次运行并换算退出码"""
    events = orchestrator.events
    if events:
        events.attach()
    try:
        orchestrator.install_signal_handlers()
        state = await orchestrator.run(max_pages=max_pages)
    except FatalStartupError as e:
        logger.error("❌ 启动失败: {}", e)
        return 1
    except PersistenceError as e:
        logger.error("❌ 数据未能保存: {}", e)
        return 1
    except Exception as e:
        logger.error("❌ 运行失败: {}", e)
        return 1
    finally:
        if events:
            events.detach()

    print_statistics(state)
    return EXIT_CODES.get(state.status, 1)


async def handle_crawl(args, config: Optional[Config] = None) -> int:
    """处理 crawl 子命令"""
    print(f"\n📌 命令: 全量目录爬取")
    config = CrawlProfiles.catalog(config or load_config_from_env())
    config.crawler.resume = args.resume
    if args.start_page:
        config.crawler.start_page = args.start_page

    extractor = CatalogExtractor(config)
    orchestrator = build_orchestrator(config, extractor, download_images=args.download_images)
    return await run_orchestrator(orchestrator, max_pages=args.max_pages)


async def handle_stock_check(args, config: Optional[Config] = None) -> int:
    """处理 stock-check 子命令"""
    print(f"\n📌 命令: 库存复查")
    config = CrawlProfiles.stock_check(config or load_config_from_env())
    config.crawler.resume = args.resume

    if not config.output.dataset_path.exists():
        print(f"❌ 数据集不存在: {config.output.dataset_path}（请先运行 crawl）")
        return 1

    extractor = StockCheckExtractor(config, limit=args.limit)
    orchestrator = build_orchestrator(config, extractor, download_images=False)
    return await run_orchestrator(orchestrator, max_pages=args.limit)


def handle_status(args, config: Optional[Config] = None) -> int:
    """处理 status 子命令"""
    base = config or load_config_from_env()
    config = CrawlProfiles.stock_check(base) if args.stock else CrawlProfiles.catalog(base)
    store = CheckpointStore(config.output.checkpoint_path, config.output.checkpoint_max_age_hours)

    print(f"\n📌 命令: 查看进度")
    if args.clear:
        if store.exists():
            store.clear()
            print("✅ 检查点已清除")
        else:
            print("ℹ️  没有找到检查点")
        return 0

    data = store.read()
    if not data:
        print("ℹ️  没有找到检查点")
        print(f"   路径: {store.path}")
    else:
        age = store.age_hours(data)
        resumable = age is not None and age <= store.max_age_hours and data.get("status") != "completed"
        print("\n" + "=" * 60)
        print("📂 检查点信息:")
        print(f"  路径: {store.path}")
        print(f"  状态: {data.get('status', 'unknown')}{'（可恢复）' if resumable else '（不会被恢复）'}")
        print(f"  当前页: {data.get('current_page', 0)} / {data.get('total_pages', 0)}")
        print(f"  已采集: {data.get('items_captured', 0)}")
        print(f"  保存时间: {data.get('saved_at', 'N/A')}")
        if age is not None:
            print(f"  距今: {age:.1f} 小时")
        stats = data.get('stats', {})
        if stats:
            print("\n📊 统计信息:")
            for key, value in stats.items():
                print(f"  {key}: {value}")
        print("=" * 60)

    if args.events > 0:
        events = EventFeed.load(config.output.events_path, n=args.events)
        if events:
            print(f"\n📰 最近 {len(events)} 条事件:")
            for event in events:
                timestamp = event.get("timestamp", "")[:19]
                print(f"  {timestamp} | {event.get('level', ''):<8} | {event.get('message', '')}")
    return 0


def print_statistics(state: CrawlState):
    """输出统计信息"""
    elapsed = datetime.now() - state.start_time
    print("\n" + "=" * 60)
    print(f"📊 爬取统计（{state.status}）:")
    print(f"  当前页: {state.current_page} / {state.total_pages}")
    print(f"  处理页数: {state.pages_processed}")
    print(f"  商品数: {state.items_found}")
    print(f"  下载图片: {state.images_downloaded}")
    print(f"  缓存图片: {state.images_cached}")
    print(f"  空页: {state.empty_pages}")
    print(f"  失败页: {len(state.errors)}")
    print(f"  耗时: {str(elapsed).split('.')[0]}")
    print("=" * 60)
