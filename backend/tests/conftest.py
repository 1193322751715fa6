from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Any, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Add backend folder to sys.path so `import receipt_intake...` works when running from the repo root
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./receipt_intake_test.db")

from receipt_intake.core.database import init_db  # noqa: E402
from receipt_intake.models.schemas import GenerationResult, InboundEmail  # noqa: E402
from receipt_intake.models.tables import Product  # noqa: E402

SENDER = "receipts@example.com"


class FakeTextClient:
    """Stand-in for GenerativeTextClient returning canned payloads in order.

    Each response may be a dict/list (returned as decoded JSON), a string
    (parsed like model output) or an exception instance (raised).
    """

    def __init__(self, responses: Optional[List[Any]] = None) -> None:
        self.responses = list(responses or [])
        self.prompts: List[str] = []
        self.closed = False

    def queue(self, *responses: Any) -> None:
        self.responses.extend(responses)

    async def generate(self, prompt: str, temperature: float = 0.1, max_tokens: int = 1024) -> GenerationResult:
        self.prompts.append(prompt)
        if not self.responses:
            raise AssertionError("FakeTextClient has no canned response left")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        text = response if isinstance(response, str) else json.dumps(response)
        return GenerationResult(text=text, model="fake-model")

    async def generate_json(self, prompt: str, temperature: float = 0.1, max_tokens: int = 1024) -> Any:
        from receipt_intake.services.text_generation import parse_json_payload

        result = await self.generate(prompt, temperature=temperature, max_tokens=max_tokens)
        return parse_json_payload(result.text)

    async def close(self) -> None:
        self.closed = True


def receipt_payload(*items: dict, merchant: str = "Corner Market", date: str = "2024-03-01") -> dict:
    return {
        "merchantName": merchant,
        "purchaseDate": date,
        "items": list(items),
        "subtotal": None,
        "tax": None,
        "total": None,
        "currency": "USD",
    }


def make_inbound(body: str = "Milk 2L x1 $3.49", subject: str = "Your receipt", sender: str = SENDER, **extra: Any) -> InboundEmail:
    data = {"sender": sender, "subject": subject, "body-plain": body}
    data.update(extra)
    return InboundEmail.model_validate(data)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    yield factory
    await engine.dispose()


@pytest.fixture
def fake_client():
    return FakeTextClient()


@pytest.fixture
def add_product(session_factory):
    async def _add(name: str, description: Optional[str] = None, is_draft: bool = False) -> int:
        async with session_factory() as session:
            product = Product(name=name, description=description, is_draft=is_draft)
            session.add(product)
            await session.commit()
            return product.id

    return _add
