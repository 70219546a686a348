"""
CLI命令定义（argparse）
"""
import argparse


def create_parser() -> argparse.ArgumentParser:
    """
    创建命令行参数解析器

    Returns:
        ArgumentParser 实例
    """
    parser = argparse.ArgumentParser(
        prog='crawler.py',
        description='商品目录爬虫（断点续传 / 增量输出）',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
示例:
  # 全量目录爬取（默认 200 页，自动从检查点恢复）
  python crawler.py crawl
  python crawler.py crawl --max-pages 50
  python crawler.py crawl --no-resume --start-page 10

  # 按商品编码复查库存（读取已发布的数据集）
  python crawler.py stock-check --limit 500

  # 查看进度 / 最近事件，或清除检查点
  python crawler.py status --events 20
  python crawler.py status --clear
        '''
    )

    # 创建子命令
    subparsers = parser.add_subparsers(dest='command', help='子命令', required=True)

    # ============================================================================
    # 子命令: crawl - 全量目录爬取
    # ============================================================================
    parser_crawl = subparsers.add_parser('crawl', help='分页爬取商品目录')
    parser_crawl.add_argument('--max-pages', type=int, default=None,
                              help='页数预算（默认取配置，200）')
    parser_crawl.add_argument('--start-page', type=int, default=None,
                              help='起始页码（无检查点时生效）')
    parser_crawl.add_argument('--resume', action='store_true', default=True,
                              help='从检查点恢复（默认：启用）')
    parser_crawl.add_argument('--no-resume', dest='resume', action='store_false',
                              help='不从检查点恢复')
    parser_crawl.add_argument('--no-images', dest='download_images', action='store_false', default=True,
                              help='不下载商品图片')

    # ============================================================================
    # 子命令: stock-check - 库存复查
    # ============================================================================
    parser_stock = subparsers.add_parser('stock-check', help='按商品编码复查库存')
    parser_stock.add_argument('--limit', type=int, default=5000,
                              help='最多复查的商品数（默认：5000）')
    parser_stock.add_argument('--resume', action='store_true', default=True,
                              help='从检查点恢复（默认：启用）')
    parser_stock.add_argument('--no-resume', dest='resume', action='store_false',
                              help='不从检查点恢复')

    # ============================================================================
    # 子命令: status - 查看进度
    # ============================================================================
    parser_status = subparsers.add_parser('status', help='查看检查点与最近事件')
    parser_status.add_argument('--events', type=int, default=10,
                               help='显示最近 N 条事件（默认：10）')
    parser_status.add_argument('--stock', action='store_true',
                               help='查看库存复查的检查点')
    parser_status.add_argument('--clear', action='store_true', help='清除检查点')

    return parser
