from __future__ import annotations

import asyncio
import datetime as dt

import pytest

from receipt_intake.core.errors import (
    EmptyExtractionContent,
    ExtractionFailed,
    ExtractionTimeout,
    GenerationError,
    InvalidStructuredResponse,
    NoValidItems,
)
from receipt_intake.services.extraction_service import ReceiptExtractor

from conftest import FakeTextClient, receipt_payload


@pytest.mark.asyncio
async def test_extract_normalizes_receipt():
    client = FakeTextClient([
        receipt_payload(
            {"description": " Milk 2L ", "quantity": 2, "unitPrice": "$3.49", "totalPrice": 6.98},
            {"description": "", "quantity": 1},
            {"description": "Bag fee", "quantity": 0},
            {"description": "Eggs", "quantity": None},
            merchant="Corner Market",
            date="2024-03-01",
        )
    ])
    receipt = await ReceiptExtractor(client).extract("<p>Milk 2L x2 $6.98</p><script>evil()</script>")

    assert receipt.merchant_name == "Corner Market"
    assert receipt.purchase_date == dt.date(2024, 3, 1)
    assert receipt.currency == "USD"
    assert len(receipt.items) == 1
    item = receipt.items[0]
    assert item.description == "Milk 2L"
    assert item.quantity == 2
    assert item.unit_price == 3.49
    # the prompt carries sanitized text only
    assert "evil" not in client.prompts[0]
    assert "Milk 2L x2 $6.98" in client.prompts[0]


@pytest.mark.asyncio
async def test_missing_date_and_currency_get_defaults():
    payload = {"merchantName": "null", "items": [{"description": "Bread", "quantity": 1}], "currency": None}
    receipt = await ReceiptExtractor(FakeTextClient([payload])).extract("Bread x1")
    assert receipt.purchase_date == dt.date.today()
    assert receipt.currency == "USD"
    assert receipt.merchant_name is None


@pytest.mark.asyncio
async def test_unparseable_date_becomes_today():
    payload = receipt_payload({"description": "Bread", "quantity": 1}, date="sometime last week")
    receipt = await ReceiptExtractor(FakeTextClient([payload])).extract("Bread x1")
    assert receipt.purchase_date == dt.date.today()


@pytest.mark.asyncio
async def test_fenced_json_is_recovered():
    text = '```json\n{"items": [{"description": "Tea", "quantity": 3}]}\n```'
    receipt = await ReceiptExtractor(FakeTextClient([text])).extract("Tea x3")
    assert receipt.items[0].quantity == 3


@pytest.mark.asyncio
async def test_empty_items_raise_no_valid_items():
    extractor = ReceiptExtractor(FakeTextClient([receipt_payload()]))
    with pytest.raises(NoValidItems) as exc:
        await extractor.extract("Thanks for shopping")
    assert "no valid items" in str(exc.value)


@pytest.mark.asyncio
async def test_invalid_json_and_non_object_payloads():
    with pytest.raises(InvalidStructuredResponse) as exc:
        await ReceiptExtractor(FakeTextClient(["not json at all"])).extract("Tea")
    assert "invalid structured response" in str(exc.value)

    with pytest.raises(InvalidStructuredResponse):
        await ReceiptExtractor(FakeTextClient([[1, 2, 3]])).extract("Tea")


@pytest.mark.asyncio
async def test_empty_content_after_sanitization():
    client = FakeTextClient()
    with pytest.raises(EmptyExtractionContent):
        await ReceiptExtractor(client).extract("<script>only()</script>")
    assert client.prompts == []


@pytest.mark.asyncio
async def test_service_error_maps_to_extraction_failed():
    extractor = ReceiptExtractor(FakeTextClient([GenerationError("upstream 500")]))
    with pytest.raises(ExtractionFailed) as exc:
        await extractor.extract("Tea")
    assert "upstream 500" in str(exc.value)


@pytest.mark.asyncio
async def test_slow_service_times_out():
    class SlowClient:
        async def generate_json(self, prompt, temperature=0.1, max_tokens=1024):
            await asyncio.sleep(5)

    extractor = ReceiptExtractor(SlowClient(), timeout_seconds=0.01)
    with pytest.raises(ExtractionTimeout):
        await extractor.extract("Tea")
