"""SQLAlchemy ORM models for the receipt intake pipeline.

These models define the relational schema used by the pipeline: the
processing ledger plus the product and order tables the pipeline writes
draft rows into.  Products and orders are owned by the surrounding CRUD
layer; only the columns the pipeline needs are modelled here.

If you extend or modify these models remember to add an Alembic
migration or call the ``init_db`` helper during development to recreate
the tables.
"""

from __future__ import annotations

import datetime as dt

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Date,
    Boolean,
    Enum,
    Float,
    ForeignKey,
    Text,
)
from sqlalchemy.orm import relationship

from receipt_intake.core.database import Base
from .enums import ProcessingStatus, OrderSource


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class EmailProcessingLog(Base):
    """Processing ledger entry, one per distinct message fingerprint."""

    __tablename__ = "email_processing_logs"

    id = Column(Integer, primary_key=True, index=True)
    # Unique constraint is what makes concurrent deduplication atomic.
    fingerprint = Column(String(64), unique=True, nullable=False, index=True)
    sender_email = Column(String, nullable=False)
    subject = Column(String, nullable=True)
    # Retained for audit and retry; never returned by list endpoints.
    raw_content = Column(Text, nullable=False)
    status = Column(Enum(ProcessingStatus), default=ProcessingStatus.PENDING, nullable=False, index=True)
    error_message = Column(Text, nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    order = relationship("Order")


class Product(Base):
    """Catalog product; rows created by the pipeline are flagged as drafts."""

    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=True)
    is_draft = Column(Boolean, default=False, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class Order(Base):
    """Purchase order; the pipeline only creates drafts sourced from email."""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    merchant_name = Column(String(255), nullable=True)
    purchase_date = Column(Date, nullable=False)
    currency = Column(String(8), nullable=True)
    total = Column(Float, nullable=True)
    is_draft = Column(Boolean, default=False, nullable=False)
    source = Column(Enum(OrderSource), default=OrderSource.MANUAL, nullable=False)
    original_fingerprint = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    line_items = relationship(
        "OrderLineItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLineItem.id",
    )


class OrderLineItem(Base):
    """Single product line on an order."""

    __tablename__ = "order_line_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=True)

    order = relationship("Order", back_populates="line_items")
    product = relationship("Product")
