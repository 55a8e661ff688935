from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, DateTime, ForeignKey, Numeric
from datetime import datetime
from decimal import Decimal
from sushi_client.db.session import Base

class Category(Base):
    __tablename__ = 'categories'
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(String(500), default='')
    products = relationship('Product', back_populates='category', cascade='all, delete-orphan', order_by='Product.id')

class Product(Base):
    __tablename__ = 'products'
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default='')
    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    image_url: Mapped[str] = mapped_column(String(500), default='')
    category_id: Mapped[int] = mapped_column(ForeignKey('categories.id', ondelete='CASCADE'), index=True)
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0)
    category = relationship('Category', back_populates='products')

class Order(Base):
    __tablename__ = 'orders'
    # server ids are positive, local placeholders are negative
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    order_date: Mapped[datetime] = mapped_column(DateTime(), nullable=False, index=True)
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(300), nullable=False, index=True)
    delivery_address: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    sync_state: Mapped[str] = mapped_column(String(32), nullable=False, default='synced', index=True)

    items = relationship('OrderItem', back_populates='order', cascade='all, delete-orphan', order_by='OrderItem.id')

class OrderItem(Base):
    __tablename__ = 'order_items'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('orders.id', ondelete='CASCADE'))
    # no FK: catalog replaces must not touch order history
    product_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    product_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    order = relationship('Order', back_populates='items')

class PlaceholderSequence(Base):
    __tablename__ = 'order_placeholder_sequence'
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    # most recently issued placeholder order id; only ever decreases
    last_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
