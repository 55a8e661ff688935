import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sushi_client.core.errors import ValidationError
from sushi_client.schemas import OrderItem, Product

logger = logging.getLogger(__name__)


class Cart:
    """Session-scoped basket, one line per product id. Never persisted."""

    def __init__(self):
        self._lines: Dict[int, OrderItem] = {}

    @property
    def items(self) -> List[OrderItem]:
        return list(self._lines.values())

    def add(self, product: Product, qty: int = 1) -> Optional[OrderItem]:
        if qty <= 0:
            raise ValidationError('Quantity must be greater than zero')
        if product is None or not product.in_stock:
            logger.debug('Not adding %s to cart: out of stock', getattr(product, 'name', None))
            return None
        line = self._lines.get(product.id)
        if line is not None:
            line.quantity += qty
            logger.debug('Updated %s quantity to %s', product.name, line.quantity)
        else:
            # price is captured now so later catalog changes don't alter the order
            line = OrderItem(product_id=product.id, product_name=product.name, quantity=qty, unit_price=product.price)
            self._lines[product.id] = line
            logger.debug('Added %s to cart', product.name)
        return line

    def remove(self, product_id: int) -> bool:
        return self._lines.pop(product_id, None) is not None

    def set_quantity(self, product_id: int, qty: int) -> None:
        line = self._lines.get(product_id)
        if line is None:
            return
        if qty <= 0:
            self.remove(product_id)
        else:
            line.quantity = qty

    def total(self) -> Decimal:
        return sum((it.subtotal for it in self._lines.values()), Decimal('0'))

    def item_count(self) -> int:
        return sum(it.quantity for it in self._lines.values())

    def clear(self) -> None:
        self._lines.clear()

    def __len__(self) -> int:
        return len(self._lines)
