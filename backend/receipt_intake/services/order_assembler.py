"""Draft order assembly.

Turns an ``ExtractedReceipt`` into one draft ``Order`` with a line item per
extracted item.  Items are resolved against the product catalog first;
unmatched items become draft products.  All rows are written in a single
transaction so a failure never leaves a partial order behind.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from receipt_intake.core.errors import PersistenceFailed
from receipt_intake.models.enums import OrderSource
from receipt_intake.models.schemas import ExtractedLineItem, ExtractedReceipt, ProductMatch
from receipt_intake.models.tables import Order, OrderLineItem, Product
from receipt_intake.services.product_matching import ProductResolver

logger = logging.getLogger(__name__)

# Uppercase alphanumeric runs of 6+ chars containing a digit (SKUs, item codes)
_SKU_RE = re.compile(r"\b(?=[A-Z0-9]*\d)[A-Z0-9]{6,}\b")
_WHITESPACE = re.compile(r"\s+")
MAX_PRODUCT_NAME_LENGTH = 100
UNKNOWN_MERCHANT = "Unknown Store"


def clean_product_name(description: str) -> str:
    """Strip SKU-like codes, collapse whitespace and cap the length."""
    cleaned = _WHITESPACE.sub(" ", _SKU_RE.sub("", description or "")).strip()
    if not cleaned:
        cleaned = _WHITESPACE.sub(" ", description or "").strip()
    return cleaned[:MAX_PRODUCT_NAME_LENGTH].strip()


def build_order_name(receipt: ExtractedReceipt) -> str:
    merchant = receipt.merchant_name or UNKNOWN_MERCHANT
    return f"Email Receipt - {merchant} ({receipt.purchase_date.isoformat()})"


@dataclass
class _PlannedLine:
    item: ExtractedLineItem
    match: Optional[ProductMatch]


class DraftOrderAssembler:
    """Create draft orders (and draft products) from extracted receipts."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], resolver: ProductResolver) -> None:
        self._session_factory = session_factory
        self.resolver = resolver

    async def assemble(self, receipt: ExtractedReceipt, fingerprint: str, sender_email: str) -> int:
        """Persist the draft order and return its id."""
        # Resolution reads the catalog; do it before opening the write transaction.
        plan: List[_PlannedLine] = []
        for item in receipt.items:
            plan.append(_PlannedLine(item=item, match=await self.resolver.resolve(item.description)))

        created_products = 0
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    drafts: dict[str, Product] = {}
                    order = Order(
                        name=build_order_name(receipt),
                        merchant_name=receipt.merchant_name,
                        purchase_date=receipt.purchase_date,
                        currency=receipt.currency,
                        total=receipt.total,
                        is_draft=True,
                        source=OrderSource.EMAIL,
                        original_fingerprint=fingerprint,
                    )
                    for line in plan:
                        if line.match is not None:
                            line_item = OrderLineItem(product_id=line.match.product.id, quantity=line.item.quantity)
                        else:
                            name = clean_product_name(line.item.description)
                            product = drafts.get(name)
                            if product is None:
                                product = Product(
                                    name=name,
                                    description=line.item.description,
                                    price=line.item.unit_price,
                                    is_draft=True,
                                )
                                session.add(product)
                                drafts[name] = product
                                created_products += 1
                            line_item = OrderLineItem(product=product, quantity=line.item.quantity)
                        line_item.unit_price = line.item.unit_price
                        order.line_items.append(line_item)
                    session.add(order)
                    await session.flush()
                    order_id = order.id
        except SQLAlchemyError as exc:
            # session.begin() has already rolled back
            raise PersistenceFailed(f"Draft order creation failed: {exc}") from exc
        finally:
            if created_products:
                self.resolver.invalidate()

        logger.info(
            "[assemble] order=%s fingerprint=%s sender=%s lines=%d new_draft_products=%d",
            order_id,
            fingerprint,
            sender_email,
            len(plan),
            created_products,
        )
        return order_id
