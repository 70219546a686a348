"""
数据模型

- ItemRecord: 一条商品记录（sku 为唯一去重键，赋值后不可变）
- CrawlState: 一次运行的爬取状态（检查点的内容）
- PageResult: 解析器对一页的输出
"""
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# 数据集列顺序（下游批量导入依赖，不可重排或改名）
CSV_COLUMNS = [
    ("sku", "SKU"),
    ("name", "Name"),
    ("price", "Regular price"),
    ("stock_quantity", "Stock quantity"),
    ("stock_status", "Stock status"),
    ("image", "Images"),
    ("categories", "Categories"),
    ("tags", "Tags"),
    ("short_description", "Short description"),
    ("product_type", "Product type"),
    ("brand", "Brand"),
    ("quality", "Quality"),
    ("packaging", "Packaging"),
    ("color", "Attribute:Color"),
    ("model", "Attribute:Model"),
    ("compatibility", "Attribute:Compatibility"),
]
CSV_HEADER = [title for _, title in CSV_COLUMNS]


class ItemRecord(BaseModel):
    """商品记录"""
    model_config = ConfigDict(validate_assignment=True)

    sku: str = Field(min_length=1, frozen=True, description="商品编码（唯一）")
    name: str = Field(default="", description="商品名称")
    price: Optional[Decimal] = Field(default=None, description="价格")
    stock_quantity: int = Field(default=0, ge=0, description="库存数量")
    image: str = Field(default="", description="图片引用（公开URL或相对路径）")
    categories: str = Field(default="", description="分类")
    tags: str = Field(default="", description="标签（逗号分隔）")
    short_description: str = Field(default="", description="简短描述")
    product_type: str = Field(default="simple", description="商品类型")
    brand: str = Field(default="", description="品牌")
    quality: str = Field(default="", description="品质等级")
    packaging: str = Field(default="", description="包装说明")
    color: str = Field(default="", description="颜色")
    model: str = Field(default="", description="型号")
    compatibility: str = Field(default="", description="兼容机型")

    # 仅在内存中流转，不写入CSV
    image_candidates: List[str] = Field(default_factory=list, exclude=True, description="候选图片URL（按优先级）")

    @field_validator("price", mode="before")
    @classmethod
    def _parse_price(cls, value):
        if value is None or isinstance(value, Decimal):
            return value
        if isinstance(value, (int, float)):
            return Decimal(str(value))
        text = str(value).strip().replace("€", "").replace(" ", "")
        if not text:
            return None
        # 意大利格式：1.234,56
        if "," in text:
            text = text.replace(".", "").replace(",", ".")
        try:
            return Decimal(text)
        except InvalidOperation:
            return None

    @property
    def stock_status(self) -> str:
        return "instock" if self.stock_quantity > 0 else "outofstock"

    def to_row(self) -> Dict[str, str]:
        """转换为CSV行（键为列标题）"""
        row = {}
        for field, title in CSV_COLUMNS:
            if field == "stock_status":
                value = self.stock_status
            elif field == "price":
                value = "" if self.price is None else f"{self.price:.2f}"
            else:
                value = getattr(self, field)
            row[title] = "" if value is None else str(value)
        return row

    @classmethod
    def from_row(cls, row: Dict[str, str]) -> "ItemRecord":
        """从CSV行还原（stock_status 由库存数量推导，忽略）"""
        data = {}
        for field, title in CSV_COLUMNS:
            if field == "stock_status":
                continue
            value = (row.get(title) or "").strip()
            if field == "stock_quantity":
                try:
                    data[field] = max(int(float(value or 0)), 0)
                except ValueError:
                    data[field] = 0
            else:
                data[field] = value
        return cls(**data)


class CrawlPhase(str, Enum):
    """编排器状态"""
    INIT = "init"
    RESUMING = "resuming"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    PROCESSING_ITEMS = "processing_items"
    CHECKPOINTING = "checkpointing"
    PACING = "pacing"
    DONE = "done"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class CrawlState(BaseModel):
    """爬取状态（每页由编排器更新一次，按节奏写入检查点）"""
    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12], description="运行ID")
    current_page: int = Field(default=0, description="最后处理完成的页码")
    total_pages: int = Field(default=0, description="页数预算")
    start_time: datetime = Field(default_factory=datetime.now, description="开始时间")
    pages_processed: int = 0
    items_found: int = 0
    images_downloaded: int = 0
    images_cached: int = 0
    empty_pages: int = 0
    errors: List[Dict[str, Any]] = Field(default_factory=list, description="放弃的页面 {page, url, error}")
    status: str = Field(default="running", description="running / completed / interrupted / aborted / error")
    extractor_state: Dict[str, Any] = Field(default_factory=dict, description="解析器的恢复数据（如复查顺序）")

    def record_error(self, page: int, url: str, error: str):
        self.errors.append({"page": page, "url": url, "error": error})

    def counters(self) -> Dict[str, int]:
        """计数器快照"""
        return {
            "pages_processed": self.pages_processed,
            "items_found": self.items_found,
            "images_downloaded": self.images_downloaded,
            "images_cached": self.images_cached,
            "empty_pages": self.empty_pages,
            "errors": len(self.errors),
        }


class PageResult(BaseModel):
    """单页解析结果；next_url 为 None 表示没有后续页"""
    records: List[ItemRecord] = Field(default_factory=list)
    next_url: Optional[str] = None
