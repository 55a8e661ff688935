"""Write-behind queue for orders.

An order is "placed" as soon as it is durably stored: either the API
accepted it (synced) or it was queued locally (pending upload) to be sent
later by ``sync_pending_orders``.

Order creation is not idempotent. If the API commits an order but the
response is lost, the order is queued locally and uploaded again on the
next sync, which yields a second server order. The API has no idempotency
key to prevent this.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, List, Optional

from sushi_client.core.errors import ValidationError
from sushi_client.core.metrics import ORDERS_QUEUED, ORDERS_SYNCED, SERVED_FROM_CACHE
from sushi_client.core.config import settings
from sushi_client.remote.client import RemoteSource, path_segment
from sushi_client.schemas import Order, OrderItem, OrderStatus, OrderStatusUpdate, SyncReport, SyncState, now_utc
from sushi_client.store.cart_store import Cart
from sushi_client.store.local_store import OrderStore

logger = logging.getLogger(__name__)


def validate_order_input(customer_name: str, customer_email: str, delivery_address: str, items: Iterable[OrderItem]) -> List[OrderItem]:
    for label, value in (('Customer name', customer_name), ('Customer email', customer_email), ('Delivery address', delivery_address)):
        if value is None or not str(value).strip():
            raise ValidationError(f'{label} is required')
    items = list(items or [])
    if not items:
        raise ValidationError('Order must contain at least one item')
    for it in items:
        if it.product_id is None or it.product_id <= 0:
            raise ValidationError(f'Invalid product id {it.product_id!r}')
        if it.quantity <= 0:
            raise ValidationError(f'Quantity for product {it.product_id} must be greater than zero')
        if it.unit_price < 0:
            raise ValidationError(f'Unit price for product {it.product_id} cannot be negative')
    return items


def _newest_first(orders: Iterable[Order]) -> List[Order]:
    return sorted(orders, key=lambda o: o.order_date, reverse=True)


class OrderSyncCoordinator:
    def __init__(self, remote: RemoteSource, orders: OrderStore, cart: Cart, clock: Callable[[], datetime] = now_utc):
        self.remote = remote
        self.orders = orders
        self.cart = cart
        self._clock = clock

    # ---------- creation ----------
    async def create_order(self, customer_name: str, customer_email: str, delivery_address: str, items: Iterable[OrderItem]) -> Optional[Order]:
        """Place an order: API first, local queue when the API is unavailable.

        Returns None only when the order could not be stored anywhere; the
        cart is left untouched in that case.
        """
        items = validate_order_input(customer_name, customer_email, delivery_address, items)
        order = Order(
            customer_name=customer_name.strip(),
            customer_email=customer_email.strip(),
            delivery_address=delivery_address.strip(),
            order_date=self._clock(),
            status=OrderStatus.PENDING,
            # copies, so clearing the cart can't empty the order
            items=[it.model_copy() for it in items],
        )

        result = await self.remote.post('orders', order.to_remote_payload(), Order)
        if result.ok and result.value is not None and result.value.id > 0:
            created = result.value
            if not created.items:
                created.items = order.items
            created.sync_state = SyncState.SYNCED
            if await self.orders.add(created) is None:
                logger.warning('Order #%s created via API but could not be cached locally', created.id)
            self.cart.clear()
            logger.info('Order #%s created via API', created.id)
            return created

        logger.warning('Saving order locally for later sync')
        order.sync_state = SyncState.PENDING_UPLOAD
        stored = await self.orders.add(order)
        if stored is None:
            logger.error('Order for %s could not be queued locally', order.customer_email)
            return None
        ORDERS_QUEUED.inc()
        self.cart.clear()
        logger.info('Order queued locally as #%s (pending upload)', stored.id)
        return stored

    async def sync_pending_orders(self) -> SyncReport:
        report = SyncReport()
        pending = await self.orders.get_pending()
        logger.info('Syncing %d pending orders with API', len(pending))
        for order in pending:
            report.attempted += 1
            result = await self.remote.post('orders', order.to_remote_payload(), Order)
            if not result.ok or result.value is None or result.value.id <= 0:
                report.failed += 1
                logger.warning('Order #%s not synced, will retry on next sync', order.id)
                continue
            promoted = await self.orders.promote(order.id, result.value.id)
            if promoted is None:
                # uploaded but the local row could not be rewritten; it stays pending
                report.failed += 1
                logger.error('Order #%s uploaded as #%s but local record was not updated', order.id, result.value.id)
                continue
            report.synced += 1
            report.rewritten_ids[order.id] = promoted.id
            ORDERS_SYNCED.inc()
            logger.info('Synced local order #%s to API as #%s', order.id, promoted.id)
        logger.info('Synced %d of %d pending orders', report.synced, report.attempted)
        return report

    # ---------- retrieval ----------
    async def get_order_history(self, customer_email: str) -> List[Order]:
        if not customer_email or not customer_email.strip():
            return []
        email = customer_email.strip()
        result = await self.remote.get(f'orders/customer/{path_segment(email)}', List[Order])
        if result.ok and result.value:
            await self.orders.replace_synced(result.value)
            known = {o.id for o in result.value}
            pending = [o for o in await self.orders.get_by_customer_email(email)
                       if o.sync_state is SyncState.PENDING_UPLOAD and o.id not in known]
            logger.info('Synced %d orders from API (%d still pending upload)', len(result.value), len(pending))
            return _newest_first([*result.value, *pending])
        SERVED_FROM_CACHE.labels(resource='orders').inc()
        local = await self.orders.get_by_customer_email(email)
        logger.info('Using %d orders from local cache', len(local))
        return local

    async def get_order_by_id(self, order_id: int) -> Optional[Order]:
        if order_id > 0:
            result = await self.remote.get(f'orders/{order_id}', Order)
            if result.ok and result.value is not None:
                return result.value
            SERVED_FROM_CACHE.labels(resource='orders').inc()
        return await self.orders.get_by_id(order_id)

    async def get_orders_by_status(self, status: OrderStatus) -> List[Order]:
        result = await self.remote.get(f'orders/status/{int(status)}', List[Order])
        if result.ok and result.value:
            return result.value
        SERVED_FROM_CACHE.labels(resource='orders').inc()
        return await self.orders.get_by_status(status)

    async def get_recent_orders(self, count: Optional[int] = None) -> List[Order]:
        count = settings.RECENT_ORDERS_DEFAULT if count is None else count
        result = await self.remote.get('orders/recent', List[Order], params={'count': count})
        if result.ok and result.value:
            return result.value
        SERVED_FROM_CACHE.labels(resource='orders').inc()
        return await self.orders.get_recent(count)

    async def get_pending_orders(self) -> List[Order]:
        return await self.orders.get_pending()

    async def get_total_revenue(self) -> Decimal:
        return await self.orders.total_revenue()

    # ---------- management ----------
    async def update_order_status(self, order_id: int, status: OrderStatus) -> bool:
        if order_id > 0:
            result = await self.remote.put(f'orders/{order_id}/status', OrderStatusUpdate(status=status))
            if result.ok:
                await self.orders.update_status(order_id, status)
                logger.info('Order #%s status set to %s via API', order_id, status.name)
                return True
            logger.debug('API status update failed for order #%s, updating local only', order_id)
        return await self.orders.update_status(order_id, status)

    async def delete_order(self, order_id: int) -> bool:
        if order_id > 0:
            result = await self.remote.delete(f'orders/{order_id}')
            if result.ok:
                await self.orders.delete(order_id)
                logger.info('Order #%s deleted via API', order_id)
                return True
            logger.debug('API delete failed for order #%s, deleting local only', order_id)
        return await self.orders.delete(order_id)
