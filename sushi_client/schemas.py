from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, computed_field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# The ordering API expects JSON numbers for money, not strings.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used='json')]

def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

class OrderStatus(IntEnum):
    PENDING = 0
    PROCESSING = 1
    SHIPPED = 2
    DELIVERED = 3
    CANCELLED = 4

class SyncState(str, Enum):
    SYNCED = 'synced'
    PENDING_UPLOAD = 'pending_upload'

class Product(ApiModel):
    id: int = 0
    name: str = Field(min_length=1)
    description: Optional[str] = ''
    price: Money = Field(default=Decimal('0'), ge=0)
    image_url: Optional[str] = ''
    category_id: int = 0
    stock_quantity: int = Field(default=0, ge=0)

    @property
    def in_stock(self) -> bool:
        return self.stock_quantity > 0

class Category(ApiModel):
    id: int = 0
    name: str = Field(min_length=1)
    description: Optional[str] = ''
    products: List[Product] = []

class OrderItem(ApiModel):
    id: Optional[int] = None
    order_id: Optional[int] = None
    product_id: Optional[int] = None
    product_name: Optional[str] = None
    quantity: int
    unit_price: Money

    @model_validator(mode='before')
    @classmethod
    def _snapshot_product_name(cls, data):
        # the API may embed the full product instead of a name snapshot
        if isinstance(data, dict) and not (data.get('productName') or data.get('product_name')):
            product = data.get('product')
            if isinstance(product, dict) and product.get('name'):
                data = {**data, 'productName': product['name']}
        return data

    @computed_field(alias='subTotal')
    @property
    def subtotal(self) -> Decimal:
        return self.quantity * self.unit_price

class Order(ApiModel):
    id: int = 0
    order_date: datetime = Field(default_factory=now_utc)
    customer_name: str
    customer_email: str
    delivery_address: str
    status: OrderStatus = OrderStatus.PENDING
    items: List[OrderItem] = Field(default_factory=list, alias='orderItems')
    sync_state: SyncState = Field(default=SyncState.SYNCED, exclude=True)

    @field_validator('order_date')
    @classmethod
    def _naive_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is not None:
            v = v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

    @field_validator('status', mode='before')
    @classmethod
    def _status_by_name(cls, v):
        if isinstance(v, str) and not v.isdigit():
            try:
                return OrderStatus[v.upper()]
            except KeyError:
                raise ValueError(f'unknown order status {v!r}')
        return v

    @computed_field(alias='totalAmount')
    @property
    def total_amount(self) -> Decimal:
        return sum((it.subtotal for it in self.items), Decimal('0'))

    @property
    def is_placeholder(self) -> bool:
        """True while the id is a local placeholder rather than a server id."""
        return self.id <= 0

    def to_remote_payload(self) -> dict:
        # ids are assigned by the server; sync_state never leaves the client
        return self.model_dump(
            mode='json',
            by_alias=True,
            exclude={'id': True, 'items': {'__all__': {'id', 'order_id'}}},
        )

class OrderStatusUpdate(ApiModel):
    status: OrderStatus

class SyncReport(BaseModel):
    attempted: int = 0
    synced: int = 0
    failed: int = 0
    # placeholder id -> server id
    rewritten_ids: Dict[int, int] = {}

class CatalogDiagnostics(BaseModel):
    cached_categories: int
    cached_products: int
    last_category_sync: Optional[datetime] = None
    last_product_sync: Optional[datetime] = None
