"""
Unit tests for webhook payload handling.

Covers envelope normalization, aliasing, the probe heuristic and the
processor's dedup / status transitions against a real in-memory store.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from paysync.errors import DuplicatePaymentError, ExternalServiceError, PersistenceError, ValidationError
from paysync.tasks import BackgroundWorker
from paysync.webhook import (
    PaymentWebhookProcessor,
    apply_field_aliases,
    build_payment_record,
    extract_payment_data,
    is_probe_payload,
    missing_required_fields,
    synthesize_transaction_id,
)

ATTRS = {"client_id": 7, "amount": "250.00", "transaction_id": "TX-7", "payment_type": "cash"}


class TestExtractPaymentData:

    def test_json_api_shape(self):
        assert extract_payment_data({"data": {"attributes": dict(ATTRS)}}) == ATTRS

    def test_payment_envelope(self):
        assert extract_payment_data({"payment": dict(ATTRS)}) == ATTRS

    def test_bare_body(self):
        assert extract_payment_data(dict(ATTRS)) == ATTRS

    def test_all_shapes_agree(self):
        shapes = [{"data": {"attributes": dict(ATTRS)}}, {"payment": dict(ATTRS)}, dict(ATTRS)]
        results = [extract_payment_data(s) for s in shapes]
        assert results[0] == results[1] == results[2]

    def test_returns_copy(self):
        body = {"payment": {"client_id": 1}}
        data = extract_payment_data(body)
        data["amount"] = 5
        assert "amount" not in body["payment"]

    def test_empty_and_non_dict(self):
        assert extract_payment_data({}) == {}
        assert extract_payment_data(None) == {}
        assert extract_payment_data([1, 2]) == {}

    def test_unknown_shape_is_bare(self):
        body = {"event": "something", "id": 3}
        assert extract_payment_data(body) == body


class TestFieldRules:

    def test_customer_id_alias(self):
        data = apply_field_aliases({"customer_id": 12, "amount": 1})
        assert data["client_id"] == 12

    def test_alias_does_not_override_client_id(self):
        data = apply_field_aliases({"customer_id": 12, "client_id": 5})
        assert data["client_id"] == 5

    def test_missing_fields(self):
        assert missing_required_fields({"client_id": 1}) == ["amount"]
        assert missing_required_fields({"foo": 1}) == ["client_id", "amount"]
        assert missing_required_fields({"client_id": 1, "amount": 10}) == []

    def test_probe_threshold(self):
        assert is_probe_payload({"client_id": 1})
        assert is_probe_payload({"a": 1, "b": 2})
        assert not is_probe_payload({"a": 1, "b": 2, "c": 3})

    def test_synthesized_id(self):
        assert synthesize_transaction_id(42, now_ms=1700000000000) == "SPLYNX-1700000000000-42"
        assert synthesize_transaction_id(1) != synthesize_transaction_id(2)

    def test_record_defaults(self):
        rec = build_payment_record({"transaction_id": "T", "client_id": 1, "amount": 100, "payment_type": "bank"})
        assert rec.currency_code == "KES"
        assert rec.payment_method == "bank"
        assert rec.client_id == "1"
        assert rec.amount == "100"
        assert rec.created_at


@pytest.fixture
def uisp():
    u = MagicMock()
    u.post_payment = AsyncMock(return_value={"id": 555})
    return u


@pytest.fixture
def synchronizer():
    s = MagicMock()
    s.sync_single_client = AsyncMock(return_value={"id": 7})
    return s


@pytest.fixture
def processor(store, uisp, synchronizer):
    return PaymentWebhookProcessor(store, uisp, synchronizer, BackgroundWorker())


class TestPaymentWebhookProcessor:

    @pytest.mark.asyncio
    async def test_empty_body_is_ping(self, processor, store, uisp):
        result = await processor.process({})
        assert result.status_code == 200
        assert result.body["success"] is True
        assert await store.get_all_payments() == []
        uisp.post_payment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_small_incomplete_payload_is_probe(self, processor, store):
        result = await processor.process({"client_id": 1})
        assert result.status_code == 200
        assert await store.get_all_payments() == []

    @pytest.mark.asyncio
    async def test_incomplete_payment_raises(self, processor):
        with pytest.raises(ValidationError) as exc:
            await processor.process({"client_id": 1, "foo": 1, "bar": 2})
        assert exc.value.missing_fields == ["amount"]

    @pytest.mark.asyncio
    async def test_success_flow(self, processor, store, uisp, synchronizer):
        result = await processor.process({"payment": dict(ATTRS)})
        assert result.status_code == 200
        assert result.body["uispPaymentId"] == 555

        payment = await store.get_payment_by_transaction_id("TX-7")
        assert payment["status"] == "success"
        assert '"id": 555' in payment["response_payload"]

        await processor.worker.drain()
        synchronizer.sync_single_client.assert_awaited_once_with(7)

    @pytest.mark.asyncio
    async def test_synthesized_transaction_id_and_currency(self, processor, store):
        result = await processor.process({"client_id": 1, "amount": 100})
        tid = result.body["transactionId"]
        assert tid.startswith("SPLYNX-") and tid.endswith("-1")
        payment = await store.get_payment_by_transaction_id(tid)
        assert payment["currency_code"] == "KES"

    @pytest.mark.asyncio
    async def test_redelivery_is_not_reprocessed(self, processor, store, uisp):
        await processor.process(dict(ATTRS))
        second = await processor.process(dict(ATTRS))

        assert second.status_code == 200
        assert second.body["message"] == "Payment already processed"
        assert second.body["status"] == "success"
        assert uisp.post_payment.await_count == 1
        assert len(await store.get_all_payments()) == 1

    @pytest.mark.asyncio
    async def test_external_failure_marks_failed(self, processor, store, uisp):
        uisp.post_payment.side_effect = ExternalServiceError("UISP API error 422: bad client")
        result = await processor.process(dict(ATTRS))

        assert result.status_code == 500
        assert result.body["transactionId"] == "TX-7"
        payment = await store.get_payment_by_transaction_id("TX-7")
        assert payment["status"] == "failed"
        assert "bad client" in payment["error_message"]

        again = await processor.process(dict(ATTRS))
        assert again.body["status"] == "failed"
        assert uisp.post_payment.await_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_insert_reported_as_duplicate(self, processor, store, uisp, payment_record):
        await store.insert_payment(dict(payment_record, transaction_id="TX-7"))
        # pre-check misses the row, unique constraint catches it
        processor.store.get_payment_by_transaction_id = AsyncMock(side_effect=[None, {"status": "pending"}])
        result = await processor.process(dict(ATTRS))

        assert result.body["message"] == "Payment already processed"
        uisp.post_payment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_duplicate_without_stored_row_is_an_error(self, processor, uisp):
        processor.store.insert_payment = AsyncMock(side_effect=DuplicatePaymentError("TX-7"))
        processor.store.get_payment_by_transaction_id = AsyncMock(side_effect=[None, None])

        with pytest.raises(PersistenceError):
            await processor.process(dict(ATTRS))
        uisp.post_payment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_amount_kept_as_text(self, processor, store):
        await processor.process(dict(ATTRS))
        payment = await store.get_payment_by_transaction_id("TX-7")
        assert payment["amount"] == "250.00"

    @pytest.mark.asyncio
    async def test_webhook_logged_even_for_ping(self, processor, store):
        store.log_webhook = AsyncMock()
        await processor.process({}, headers={"x": "1"}, source_ip="10.0.0.1", validated=True)
        store.log_webhook.assert_awaited_once_with({}, {"x": "1"}, "10.0.0.1", True)

    @pytest.mark.asyncio
    async def test_background_sync_failure_is_swallowed(self, processor, store, synchronizer):
        synchronizer.sync_single_client.side_effect = ExternalServiceError("UISP down")
        result = await processor.process(dict(ATTRS))
        await processor.worker.drain()

        assert result.status_code == 200
        assert processor.worker.failures == 1


@pytest.mark.asyncio
async def test_duplicate_insert_raises(store, payment_record):
    await store.insert_payment(payment_record)
    with pytest.raises(DuplicatePaymentError):
        await store.insert_payment(payment_record)
