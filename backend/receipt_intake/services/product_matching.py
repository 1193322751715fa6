"""Product resolution: map an extracted line item to an existing product.

Two strategies share one catalog:

* ``TokenSetMatcher`` (default) scores the Jaccard similarity of token sets
  against each product's name and description.
* ``LLMProductMatcher`` asks the generative text service to pick a product
  from the embedded candidate list.

Only non-draft products are candidates.  The catalog is cached for a short
TTL and must be invalidated after writes that create products.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Iterable, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from receipt_intake.core.config import settings
from receipt_intake.core.errors import GenerationError, InvalidStructuredResponse, ResolutionFailed
from receipt_intake.models.schemas import ProductCandidate, ProductMatch
from receipt_intake.models.tables import Product
from receipt_intake.services.cache import Clock, ExpiringValue
from receipt_intake.utils.prompts import build_product_matching_prompt

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")
# "2L" -> "2", "l"; "500ml" -> "500", "ml"
_LETTER_DIGIT = re.compile(r"[^\W\d_]+|\d+")


def normalize_text(value: Optional[str]) -> str:
    """Lowercase, replace punctuation with spaces and collapse whitespace."""
    if not value:
        return ""
    text = _PUNCTUATION.sub(" ", value.lower())
    return _WHITESPACE.sub(" ", text).strip()


def tokenize(value: Optional[str]) -> frozenset[str]:
    """Token set of a string.

    Words split further at letter/digit boundaries.  A single-letter
    fragment split off a number inside one word (the ``l`` in ``2l``) is a
    unit suffix and is ignored; standalone one-letter words are kept.
    """
    tokens = set()
    for word in normalize_text(value).split():
        fragments = _LETTER_DIGIT.findall(word)
        if len(fragments) > 1:
            fragments = [f for f in fragments if f.isdigit() or len(f) > 1]
        tokens.update(fragments)
    return frozenset(tokens)


def token_set_similarity(left: Optional[str], right: Optional[str]) -> float:
    """Jaccard similarity of the token sets of two strings, in [0, 1]."""
    a, b = normalize_text(left), normalize_text(right)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    ta, tb = tokenize(a), tokenize(b)
    union = ta | tb
    if not union:
        return 0.0
    return len(ta & tb) / len(union)


class ProductCatalog:
    """Cached list of non-draft products, newest first."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl_seconds: Optional[float] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self._session_factory = session_factory
        ttl = settings.PRODUCT_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._cache: ExpiringValue[List[ProductCandidate]] = ExpiringValue(ttl, clock=clock)

    async def _load(self) -> List[ProductCandidate]:
        stmt = (
            select(Product)
            .where(Product.is_draft.is_(False))
            .order_by(Product.created_at.desc(), Product.id.desc())
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                products = [ProductCandidate.model_validate(p) for p in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise ResolutionFailed(f"Failed to load product catalog: {exc}") from exc
        logger.info("[catalog] loaded %d products", len(products))
        return products

    async def candidates(self) -> List[ProductCandidate]:
        return await self._cache.get_or_load(self._load)

    def invalidate(self) -> None:
        self._cache.invalidate()


class ProductResolver(Protocol):
    async def resolve(self, description: str) -> Optional[ProductMatch]: ...

    def invalidate(self) -> None: ...


class TokenSetMatcher:
    """Pick the candidate with the highest token-set similarity."""

    def __init__(self, catalog: ProductCatalog, threshold: Optional[float] = None) -> None:
        self.catalog = catalog
        self.threshold = settings.MATCH_THRESHOLD if threshold is None else threshold

    def best_match(self, description: str, candidates: Iterable[ProductCandidate]) -> Optional[ProductMatch]:
        best: Optional[ProductMatch] = None
        for candidate in candidates:
            score = max(
                token_set_similarity(description, candidate.name),
                token_set_similarity(description, candidate.description),
            )
            # strict ">" keeps the earliest candidate on ties
            if score >= self.threshold and (best is None or score > best.confidence):
                best = ProductMatch(
                    product=candidate,
                    confidence=score,
                    reason=f"String similarity: {score:.2f}",
                )
        return best

    async def resolve(self, description: str) -> Optional[ProductMatch]:
        candidates = await self.catalog.candidates()
        if not candidates:
            logger.info("[match] no existing products; %r will become a draft", description)
            return None
        match = self.best_match(description, candidates)
        if match is None:
            logger.info("[match] no suitable match for %r", description)
        else:
            logger.info("[match] %r -> %r (%.2f)", description, match.product.name, match.confidence)
        return match

    def invalidate(self) -> None:
        self.catalog.invalidate()


class _BestMatch(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    product_id: Optional[str] = Field(default=None, alias="productId")
    confidence: float = 0.0
    reason: str = ""

    @field_validator("product_id", mode="before")
    def _stringify_id(cls, v):
        if v is None:
            return None
        text = str(v).strip()
        return None if not text or text.lower() == "null" else text

    @field_validator("reason", mode="before")
    def _reason_text(cls, v):
        return "" if v is None else str(v)


class _MatchingResponse(BaseModel):
    best_match: _BestMatch = Field(alias="bestMatch")


class LLMProductMatcher:
    """Ask the generative text service to choose among the catalog."""

    def __init__(
        self,
        catalog: ProductCatalog,
        client: Any,
        threshold: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> None:
        self.catalog = catalog
        self.client = client
        self.threshold = settings.MATCH_THRESHOLD if threshold is None else threshold
        self.max_tokens = max_tokens or settings.MATCH_MAX_OUTPUT_TOKENS

    async def resolve(self, description: str) -> Optional[ProductMatch]:
        candidates = await self.catalog.candidates()
        if not candidates:
            return None

        prompt = build_product_matching_prompt(description, candidates)
        try:
            payload = await self.client.generate_json(prompt, temperature=0.1, max_tokens=self.max_tokens)
            best = _MatchingResponse.model_validate(payload).best_match
        except (GenerationError, InvalidStructuredResponse, ValidationError) as exc:
            logger.warning("[match] llm matching failed for %r: %s", description, exc)
            return None

        if best.product_id is None or best.confidence < self.threshold:
            return None
        by_id = {str(c.id): c for c in candidates}
        product = by_id.get(best.product_id)
        if product is None:
            logger.warning("[match] llm returned unknown product id %s", best.product_id)
            return None
        confidence = min(max(best.confidence, 0.0), 1.0)
        logger.info("[match] llm %r -> %r (%.2f)", description, product.name, confidence)
        return ProductMatch(product=product, confidence=confidence, reason=best.reason)

    def invalidate(self) -> None:
        self.catalog.invalidate()
