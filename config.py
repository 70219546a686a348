"""
配置管理模块 - 商品目录爬虫
统一配置管理，支持全量爬取 / 库存复查两种运行模式
"""
from pydantic import BaseModel, Field
from typing import Optional
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# 项目根目录
BASE_DIR = Path(__file__).parent
# 数据根目录（部署环境可通过 DATA_DIR 指向持久化磁盘）
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR)))


class CatalogConfig(BaseModel):
    """目标商品目录配置"""
    name: str = Field(default="componentidigitali", description="目录名称")
    base_url: str = Field(default="https://www.componentidigitali.com", description="站点基础URL")
    start_path: str = Field(
        default="/default.asp?cmdString=iphone&cmd=searchProd&bFormSearch=1",
        description="列表起始页路径（第N页通过 pg=N 参数访问）"
    )
    search_path_template: str = Field(
        default="/default.asp?cmdString={sku}&cmd=searchProd&bFormSearch=1",
        description="按商品编码查询的路径模板（库存复查模式）"
    )
    category_label: str = Field(default="Componenti", description="分类列固定值")
    product_type: str = Field(default="simple", description="商品类型列固定值")
    max_catalog_pages: int = Field(default=200, description="推算下一页URL时的页码上限")


class CrawlerConfig(BaseModel):
    """爬取流程配置"""
    # 页数预算
    max_pages: int = Field(default=200, ge=1, description="最大页数（页数预算）")
    start_page: int = Field(default=1, ge=1, description="起始页码")
    page_timeout: float = Field(default=45.0, description="页面加载超时（秒）")

    # 重试配置
    max_retries: int = Field(default=3, ge=0, description="单页最大重试次数")
    retry_delay: float = Field(default=5.0, ge=0, description="重试间隔（秒，固定）")

    # 限速配置（两级：页间 + 批间）
    page_delay: float = Field(default=2.0, ge=0, description="页间基础延迟（秒）")
    page_jitter: float = Field(default=2.0, ge=0, description="页间随机抖动上限（秒）")
    batch_size: int = Field(default=5, ge=1, description="每批页数")
    batch_pause: float = Field(default=15.0, ge=0, description="批间暂停（秒）")
    pause_after_block: float = Field(default=30.0, ge=0, description="疑似被封（403/429）后暂停（秒）")

    # 自适应页间延迟（连续成功加速，连续失败或被封减速）
    adaptive_pacing: bool = Field(default=False, description="是否启用自适应页间延迟")
    min_page_delay: float = Field(default=0.4, ge=0, description="自适应延迟下限（秒）")
    max_page_delay: float = Field(default=3.0, ge=0, description="自适应延迟上限（秒）")
    speedup_after: int = Field(default=20, ge=1, description="连续成功N页后缩短延迟")
    speedup_step: float = Field(default=0.05, ge=0, description="每次缩短的秒数")
    slowdown_after: int = Field(default=5, ge=1, description="连续失败N页后延长延迟")
    slowdown_step: float = Field(default=0.2, ge=0, description="每次延长的秒数")

    # 持久化节奏
    checkpoint_every: int = Field(default=5, ge=1, description="每N页保存检查点")
    publish_every: int = Field(default=10, ge=1, description="每N页发布一次部分数据")

    # 熔断
    max_consecutive_errors: Optional[int] = Field(default=None, description="连续失败页数阈值（None 表示不熔断）")

    # 图片并发
    max_concurrent_downloads: int = Field(default=4, ge=1, description="单页图片下载并发数")

    # 去重 / 基线
    dedup_scope: str = Field(default="resume", description="去重范围: run（每次清空）/ resume（恢复时从基线重建）")
    baseline_mode: str = Field(default="overwrite", description="基线处理: overwrite / extend")

    # 关闭流程
    shutdown_step_timeout: float = Field(default=10.0, description="优雅退出每一步的超时（秒）")
    resume: bool = Field(default=True, description="是否从检查点恢复")

    # User-Agent配置
    rotate_user_agent: bool = Field(default=True, description="是否轮换UA")


class ImageConfig(BaseModel):
    """图片配置"""
    images_dir: Path = Field(default=DATA_DIR / "output" / "images", description="图片目录")
    images_base_url: str = Field(default="", description="图片公开访问前缀（为空则写 images/<文件名>）")
    min_size: int = Field(default=2000, description="最小文件大小（字节），过滤占位图")
    download_timeout: float = Field(default=30.0, description="单张图片下载超时（秒）")
    cache_days: int = Field(default=30, description="本地缓存有效天数")
    verify_images: bool = Field(default=False, description="是否用 Pillow 校验图片可解码")


class OutputConfig(BaseModel):
    """输出文件配置"""
    output_dir: Path = Field(default=DATA_DIR / "output", description="输出目录")
    dataset_name: str = Field(default="products_latest.csv", description="数据集文件名（下游导入读取）")
    working_name: str = Field(default="products.tmp.csv", description="工作文件名")
    archive_prefix: str = Field(default="products_full_", description="归档文件前缀")
    archive_keep: int = Field(default=7, description="保留的归档数量")
    checkpoint_name: str = Field(default="checkpoint.json", description="检查点文件名")
    checkpoint_max_age_hours: float = Field(default=24.0, description="检查点有效期（小时）")
    events_name: str = Field(default="events.jsonl", description="事件流文件名")
    events_max: int = Field(default=500, description="事件流保留条数")

    @property
    def dataset_path(self) -> Path:
        return self.output_dir / self.dataset_name

    @property
    def working_path(self) -> Path:
        return self.output_dir / self.working_name

    @property
    def checkpoint_path(self) -> Path:
        return self.output_dir / self.checkpoint_name

    @property
    def events_path(self) -> Path:
        return self.output_dir / self.events_name


class LogConfig(BaseModel):
    """日志配置"""
    log_level: str = Field(default="INFO", description="日志级别")
    log_dir: Path = Field(default=DATA_DIR / "logs", description="日志目录")
    log_file: str = Field(default="crawler.log", description="日志文件名")
    rotation: str = Field(default="100 MB", description="日志轮转大小")
    retention: str = Field(default="30 days", description="日志保留时间")


class Config(BaseModel):
    """全局配置"""
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    crawler: CrawlerConfig = Field(default_factory=CrawlerConfig)
    image: ImageConfig = Field(default_factory=ImageConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    log: LogConfig = Field(default_factory=LogConfig)

    def ensure_directories(self):
        """创建必要的目录"""
        self.output.output_dir.mkdir(parents=True, exist_ok=True)
        self.image.images_dir.mkdir(parents=True, exist_ok=True)
        self.log.log_dir.mkdir(parents=True, exist_ok=True)


# ============================================================================
# 运行模式预设
# ============================================================================

class CrawlProfiles:
    """
    运行模式预设

    两种模式共用同一个编排引擎，只是参数不同：
    - catalog: 全量分页爬取（慢速、长时间运行）
    - stock_check: 按商品编码复查库存（快节奏 + 熔断）
    """

    @staticmethod
    def catalog(base: Optional[Config] = None) -> Config:
        """全量目录爬取"""
        config = (base or load_config_from_env()).model_copy(deep=True)
        config.crawler.dedup_scope = "resume"
        config.crawler.baseline_mode = "overwrite"
        return config

    @staticmethod
    def stock_check(base: Optional[Config] = None) -> Config:
        """库存复查"""
        config = (base or load_config_from_env()).model_copy(deep=True)
        config.crawler = config.crawler.model_copy(update={
            "max_pages": 5000,
            "page_timeout": 10.0,
            "max_retries": 1,
            "retry_delay": 5.0,
            "page_delay": 0.5,
            "page_jitter": 0.1,
            "adaptive_pacing": True,
            "min_page_delay": 0.4,
            "max_page_delay": 3.0,
            "batch_size": 50,
            "batch_pause": 5.0,
            "checkpoint_every": 50,
            "publish_every": 50,
            "max_consecutive_errors": 10,
            "dedup_scope": "run",
            "baseline_mode": "extend",
        })
        config.output = config.output.model_copy(update={
            "checkpoint_name": "stock_checker_progress.json",
            "checkpoint_max_age_hours": 2.0,
        })
        return config


# 从环境变量加载配置
def load_config_from_env() -> Config:
    """从环境变量加载配置"""
    data_dir = Path(os.getenv("DATA_DIR", str(DATA_DIR)))
    output_dir = data_dir / "output"
    config_data = {
        "catalog": {
            "base_url": os.getenv("CATALOG_BASE_URL", CatalogConfig().base_url),
        },
        "crawler": {
            "max_pages": int(os.getenv("MAX_PAGES", "200")),
            "max_concurrent_downloads": int(os.getenv("MAX_CONCURRENT_DOWNLOADS", "4")),
            "page_delay": float(os.getenv("PAGE_DELAY", "2.0")),
            "batch_pause": float(os.getenv("BATCH_PAUSE", "15.0")),
        },
        "image": {
            "images_dir": output_dir / "images",
            "images_base_url": os.getenv("IMAGES_BASE_URL", ""),
        },
        "output": {
            "output_dir": output_dir,
        },
        "log": {
            "log_level": os.getenv("LOG_LEVEL", "INFO"),
            "log_dir": data_dir / "logs",
        }
    }
    return Config(**config_data)


# 全局配置实例（默认从环境变量加载）
config = load_config_from_env()
