"""Persistent local mirror of the catalog and of the customer's orders.

Every public method is a coroutine that runs its SQLAlchemy work on a worker
thread inside a single transaction. Storage failures never escape: they are
logged, counted and turned into an empty/False/None result so that all
fallback decisions stay in the coordinators.
"""
import asyncio
import logging
from decimal import Decimal
from typing import Callable, Generic, Iterable, List, Optional, Type, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from sushi_client.core.errors import StorageError
from sushi_client.core.metrics import STORAGE_ERRORS
from sushi_client.db import models
from sushi_client.schemas import Category, Order, OrderItem, OrderStatus, Product, SyncState

logger = logging.getLogger(__name__)

RowT = TypeVar('RowT')
EntityT = TypeVar('EntityT')
T = TypeVar('T')


class LocalStore(Generic[RowT, EntityT]):
    row_model: Type = None
    resource: str = ''

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    # ---------- plumbing ----------
    def _in_session(self, operation: str, fn: Callable[[Session], T]) -> T:
        try:
            with self._session_factory() as db:
                with db.begin():
                    return fn(db)
        except SQLAlchemyError as exc:
            raise StorageError(f'{self.resource}.{operation}', str(exc)) from exc

    async def _run(self, operation: str, fn: Callable[[Session], T], default: T) -> T:
        try:
            return await asyncio.to_thread(self._in_session, operation, fn)
        except StorageError as exc:
            logger.error('Local store %s failed: %s', exc.operation, exc, exc_info=exc.__cause__)
            STORAGE_ERRORS.labels(operation=exc.operation).inc()
            return default

    def _to_row(self, entity: EntityT) -> RowT:
        raise NotImplementedError

    def _to_entity(self, row: RowT) -> EntityT:
        raise NotImplementedError

    def _select_all(self):
        return select(self.row_model).order_by(self.row_model.id)

    def _clear(self, db: Session) -> None:
        db.execute(delete(self.row_model))

    def _entities(self, db: Session, stmt) -> List[EntityT]:
        return [self._to_entity(r) for r in db.execute(stmt).scalars().unique().all()]

    # ---------- reads ----------
    async def get_by_id(self, entity_id: int) -> Optional[EntityT]:
        def _get(db: Session):
            row = db.get(self.row_model, entity_id)
            return self._to_entity(row) if row is not None else None
        return await self._run('get_by_id', _get, None)

    async def get_all(self) -> List[EntityT]:
        return await self._run('get_all', lambda db: self._entities(db, self._select_all()), [])

    async def count(self) -> int:
        return await self._run('count', lambda db: db.scalar(select(func.count()).select_from(self.row_model)) or 0, 0)

    async def exists(self, entity_id: int) -> bool:
        return await self._run('exists', lambda db: db.get(self.row_model, entity_id) is not None, False)

    # ---------- writes ----------
    async def add(self, entity: EntityT) -> Optional[EntityT]:
        def _add(db: Session):
            row = self._to_row(entity)
            db.add(row)
            db.flush()
            return self._to_entity(row)
        return await self._run('add', _add, None)

    async def add_many(self, entities: Iterable[EntityT]) -> bool:
        entities = list(entities)
        if not entities:
            return True
        def _add_many(db: Session):
            db.add_all([self._to_row(e) for e in entities])
            return True
        return await self._run('add_many', _add_many, False)

    async def update(self, entity: EntityT) -> bool:
        def _update(db: Session):
            if db.get(self.row_model, entity.id) is None:
                return False
            db.merge(self._to_row(entity))
            return True
        return await self._run('update', _update, False)

    async def delete(self, entity_id: int) -> bool:
        def _delete(db: Session):
            row = db.get(self.row_model, entity_id)
            if row is None:
                return False
            db.delete(row)
            return True
        return await self._run('delete', _delete, False)

    async def clear_all(self) -> bool:
        def _clear(db: Session):
            self._clear(db)
            return True
        return await self._run('clear_all', _clear, False)

    async def replace_all(self, entities: Iterable[EntityT]) -> bool:
        """Clear and re-insert in one transaction.

        Concurrent readers see either the old rows or the new ones. On failure
        the old rows are kept.
        """
        entities = list(entities)
        def _replace(db: Session):
            self._clear(db)
            db.flush()
            db.add_all([self._to_row(e) for e in entities])
            return True
        return await self._run('replace_all', _replace, False)


class ProductStore(LocalStore[models.Product, Product]):
    row_model = models.Product
    resource = 'products'

    def _to_row(self, p: Product) -> models.Product:
        return models.Product(
            id=p.id, name=p.name, description=p.description or '', price=p.price,
            image_url=p.image_url or '', category_id=p.category_id, stock_quantity=p.stock_quantity,
        )

    def _to_entity(self, row: models.Product) -> Product:
        return Product(
            id=row.id, name=row.name, description=row.description, price=row.price,
            image_url=row.image_url, category_id=row.category_id, stock_quantity=row.stock_quantity,
        )

    async def get_by_category(self, category_id: int) -> List[Product]:
        stmt = select(models.Product).where(models.Product.category_id == category_id).order_by(models.Product.id)
        return await self._run('get_by_category', lambda db: self._entities(db, stmt), [])

    async def search(self, term: str) -> List[Product]:
        if not term or not term.strip():
            return []
        like = f'%{term.strip().lower()}%'
        stmt = (
            select(models.Product)
            .where(func.lower(models.Product.name).like(like) | func.lower(models.Product.description).like(like))
            .order_by(models.Product.name)
        )
        return await self._run('search', lambda db: self._entities(db, stmt), [])

    async def replace_all(self, products: Iterable[Product]) -> bool:
        """Replace the product mirror with the products whose category is cached."""
        products = list(products)
        def _replace(db: Session):
            known = set(db.scalars(select(models.Category.id)))
            rows = [p for p in products if p.category_id in known]
            if len(rows) < len(products):
                logger.warning('Skipping %d products whose category is not cached', len(products) - len(rows))
            self._clear(db)
            db.flush()
            db.add_all([self._to_row(p) for p in rows])
            return True
        return await self._run('replace_all', _replace, False)

    async def get_in_stock(self) -> List[Product]:
        stmt = select(models.Product).where(models.Product.stock_quantity > 0).order_by(models.Product.name)
        return await self._run('get_in_stock', lambda db: self._entities(db, stmt), [])


class CategoryStore(LocalStore[models.Category, Category]):
    row_model = models.Category
    resource = 'categories'

    def __init__(self, session_factory: sessionmaker):
        super().__init__(session_factory)
        self._products = ProductStore(session_factory)

    def _select_all(self):
        return select(models.Category).options(selectinload(models.Category.products)).order_by(models.Category.id)

    def _to_row(self, c: Category) -> models.Category:
        # nested products are cached by their own refresh
        return models.Category(id=c.id, name=c.name, description=c.description or '')

    def _to_entity(self, row: models.Category) -> Category:
        return Category(
            id=row.id, name=row.name, description=row.description,
            products=[self._products._to_entity(p) for p in row.products],
        )

    async def replace_all(self, categories: Iterable[Category]) -> bool:
        """Mirror exactly ``categories`` in one transaction.

        Dropped categories are deleted together with their products. Kept
        categories keep their cached products, and products nested in the
        payload are written under their category.
        """
        categories = list(categories)
        def _replace(db: Session):
            keep = [c.id for c in categories]
            for row in db.scalars(select(models.Category).where(models.Category.id.not_in(keep))).all():
                db.delete(row)
            db.flush()
            for c in categories:
                db.merge(self._to_row(c))
            db.flush()
            for c in categories:
                for p in c.products:
                    db.merge(self._products._to_row(p.model_copy(update={'category_id': c.id})))
            return True
        return await self._run('replace_all', _replace, False)

    async def search_by_name(self, name: str) -> List[Category]:
        if not name or not name.strip():
            return []
        stmt = self._select_all().where(func.lower(models.Category.name).like(f'%{name.strip().lower()}%'))
        return await self._run('search_by_name', lambda db: self._entities(db, stmt), [])

    async def exists_by_name(self, name: str) -> bool:
        if not name or not name.strip():
            return False
        stmt = select(func.count()).select_from(models.Category).where(func.lower(models.Category.name) == name.strip().lower())
        return await self._run('exists_by_name', lambda db: (db.scalar(stmt) or 0) > 0, False)


_OPEN_STATUSES = (int(OrderStatus.PENDING), int(OrderStatus.PROCESSING))
_REVENUE_STATUSES = (int(OrderStatus.SHIPPED), int(OrderStatus.DELIVERED))


class OrderStore(LocalStore[models.Order, Order]):
    """Orders known to the server (synced) plus orders waiting for upload.

    Pending orders carry negative placeholder ids so they can never collide
    with a server-assigned id.
    """
    row_model = models.Order
    resource = 'orders'

    def _select_all(self):
        return select(models.Order).options(selectinload(models.Order.items)).order_by(models.Order.order_date.desc())

    def _clear(self, db: Session) -> None:
        db.execute(delete(models.OrderItem))
        db.execute(delete(models.Order))

    def _to_row(self, o: Order) -> models.Order:
        return models.Order(
            id=o.id,
            order_date=o.order_date,
            customer_name=o.customer_name,
            customer_email=o.customer_email,
            delivery_address=o.delivery_address,
            status=int(o.status),
            sync_state=o.sync_state.value,
            items=[
                models.OrderItem(product_id=it.product_id, product_name=it.product_name,
                                 quantity=it.quantity, unit_price=it.unit_price)
                for it in o.items
            ],
        )

    def _to_entity(self, row: models.Order) -> Order:
        return Order(
            id=row.id,
            order_date=row.order_date,
            customer_name=row.customer_name,
            customer_email=row.customer_email,
            delivery_address=row.delivery_address,
            status=OrderStatus(row.status),
            sync_state=SyncState(row.sync_state),
            items=[
                OrderItem(id=it.id, order_id=row.id, product_id=it.product_id, product_name=it.product_name,
                          quantity=it.quantity, unit_price=it.unit_price)
                for it in row.items
            ],
        )

    def _put(self, db: Session, order: Order) -> models.Order:
        existing = db.get(models.Order, order.id)
        if existing is not None:
            db.delete(existing)
            db.flush()
        row = self._to_row(order)
        db.add(row)
        db.flush()
        return row

    def _next_placeholder_id(self, db: Session) -> int:
        """Take the next placeholder id from the sequence row.

        The UPDATE runs before anything is read, so the transaction holds the
        write lock and concurrent allocations queue behind it.
        """
        seq = models.PlaceholderSequence
        bumped = db.execute(update(seq).where(seq.id == 1).values(last_id=seq.last_id - 1))
        if bumped.rowcount == 0:
            db.add(seq(id=1, last_id=-1))
            db.flush()
        row = db.get(seq, 1)
        lowest = db.scalar(select(func.min(models.Order.id))) or 0
        if lowest <= row.last_id:
            # rows written before the sequence existed
            row.last_id = lowest - 1
        return row.last_id

    async def add(self, order: Order) -> Optional[Order]:
        """Insert or overwrite an order; a non-positive id gets a fresh placeholder."""
        def _add(db: Session):
            if order.id > 0:
                return self._to_entity(self._put(db, order))
            row = self._to_row(order.model_copy(update={'id': self._next_placeholder_id(db)}))
            db.add(row)
            db.flush()
            return self._to_entity(row)
        return await self._run('add', _add, None)

    async def add_many(self, orders: Iterable[Order]) -> bool:
        orders = list(orders)
        def _add_many(db: Session):
            for o in orders:
                self._put(db, o)
            return True
        return await self._run('add_many', _add_many, False)

    async def update(self, order: Order) -> bool:
        def _update(db: Session):
            if db.get(models.Order, order.id) is None:
                return False
            self._put(db, order)
            return True
        return await self._run('update', _update, False)

    async def replace_all(self, orders: Iterable[Order]) -> bool:
        orders = list(orders)
        def _replace(db: Session):
            self._clear(db)
            db.flush()
            for o in orders:
                self._put(db, o)
            return True
        return await self._run('replace_all', _replace, False)

    async def replace_synced(self, orders: Iterable[Order]) -> bool:
        """Replace every synced row with ``orders``; pending uploads survive."""
        orders = {o.id: o for o in orders if o.id > 0}
        def _replace(db: Session):
            synced = select(models.Order.id).where(models.Order.sync_state == SyncState.SYNCED.value)
            db.execute(delete(models.OrderItem).where(models.OrderItem.order_id.in_(synced)))
            db.execute(delete(models.Order).where(models.Order.sync_state == SyncState.SYNCED.value))
            db.flush()
            for o in orders.values():
                self._put(db, o.model_copy(update={'sync_state': SyncState.SYNCED}))
            return True
        return await self._run('replace_synced', _replace, False)

    async def promote(self, placeholder_id: int, server_id: int) -> Optional[Order]:
        """Rewrite a pending order's identity to the server id and mark it synced."""
        def _promote(db: Session):
            row = db.get(models.Order, placeholder_id)
            if row is None:
                return None
            order = self._to_entity(row).model_copy(update={'id': server_id, 'sync_state': SyncState.SYNCED})
            db.delete(row)
            db.flush()
            return self._to_entity(self._put(db, order))
        return await self._run('promote', _promote, None)

    async def update_status(self, order_id: int, status: OrderStatus) -> bool:
        def _update_status(db: Session):
            row = db.get(models.Order, order_id)
            if row is None:
                return False
            row.status = int(status)
            return True
        return await self._run('update_status', _update_status, False)

    async def get_by_customer_email(self, email: str) -> List[Order]:
        if not email or not email.strip():
            return []
        stmt = self._select_all().where(func.lower(models.Order.customer_email) == email.strip().lower())
        return await self._run('get_by_customer_email', lambda db: self._entities(db, stmt), [])

    async def get_by_status(self, status: OrderStatus) -> List[Order]:
        stmt = self._select_all().where(models.Order.status == int(status))
        return await self._run('get_by_status', lambda db: self._entities(db, stmt), [])

    async def get_recent(self, count: int = 10) -> List[Order]:
        stmt = self._select_all().limit(max(count, 0))
        return await self._run('get_recent', lambda db: self._entities(db, stmt), [])

    async def get_pending(self) -> List[Order]:
        """Orders still waiting for upload, oldest first."""
        stmt = (
            select(models.Order)
            .options(selectinload(models.Order.items))
            .where(models.Order.sync_state == SyncState.PENDING_UPLOAD.value)
            .where(models.Order.status.in_(_OPEN_STATUSES))
            .order_by(models.Order.order_date, models.Order.id.desc())
        )
        return await self._run('get_pending', lambda db: self._entities(db, stmt), [])

    async def total_revenue(self) -> Decimal:
        """Sum of totals of the shipped and delivered orders held locally."""
        stmt = self._select_all().where(models.Order.status.in_(_REVENUE_STATUSES))
        def _revenue(db: Session):
            return sum((o.total_amount for o in self._entities(db, stmt)), Decimal('0'))
        return await self._run('total_revenue', _revenue, Decimal('0'))
