"""
商品目录爬虫 - 入口

子命令：crawl / stock-check / status（见 cli/commands.py）
"""
import asyncio
import sys

from loguru import logger

from config import Config, load_config_from_env
from cli.commands import create_parser
from cli.handlers import handle_crawl, handle_stock_check, handle_status


def setup_logging(config: Config):
    """配置日志：彩色终端 + 按大小轮转的文件"""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=config.log.log_level,
        colorize=True
    )

    log_file = config.log.log_dir / config.log.log_file
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_file,
        rotation=config.log.rotation,
        retention=config.log.retention,
        encoding="utf-8",
        level="DEBUG"
    )


async def main(argv=None) -> int:
    """主函数 - 子命令模式"""
    parser = create_parser()
    args = parser.parse_args(argv)

    config = load_config_from_env()
    setup_logging(config)

    print("\n" + "=" * 60)
    print("🕷️  商品目录爬虫")
    print("=" * 60)

    # 根据子命令执行相应操作
    if args.command == 'crawl':
        return await handle_crawl(args, config)
    elif args.command == 'stock-check':
        return await handle_stock_check(args, config)
    elif args.command == 'status':
        return handle_status(args, config)
    return 1


def run():
    """命令行入口"""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
