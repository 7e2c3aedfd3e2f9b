"""
Tests for the delivery wire format and HMAC signatures.
"""

import copy
import hashlib
import hmac
import json

from hypothesis import given, strategies as st

from cancellation.domain import CancellationEvent, CancellationEventType
from webhooks.signing import (
    build_delivery_body,
    build_delivery_headers,
    canonical_json,
    epoch_millis,
    serialize_event,
    sign_payload,
    verify_signature,
)
from webhooks.tests.conftest import START, make_webhook

SECRET = "s3cret-s3cret-s3cret"


def completed_event() -> CancellationEvent:
    return CancellationEvent(
        type=CancellationEventType.CANCELLATION_COMPLETED,
        data={"refund_amount": "50.00", "currency": "USD"},
        timestamp=START,
        correlation_id="corr-1",
        order_id="order-1",
        product_id="A",
    )


class TestSerializeEvent:
    def test_wire_shape(self) -> None:
        payload = serialize_event(completed_event())

        assert payload == {
            "type": "cancellation.completed",
            "data": {
                "refund_amount": "50.00",
                "currency": "USD",
                "order_id": "order-1",
                "product_id": "A",
            },
            "timestamp": START.isoformat(),
            "correlationId": "corr-1",
        }

    def test_existing_data_keys_are_kept(self) -> None:
        event = completed_event().model_copy(
            update={"data": {"order_id": "from-data"}}
        )

        assert serialize_event(event)["data"]["order_id"] == "from-data"


class TestSignature:
    def test_signature_is_hmac_sha256_of_canonical_event(self) -> None:
        payload = serialize_event(completed_event())

        expected = hmac.new(
            SECRET.encode(),
            json.dumps(
                payload, separators=(",", ":"), sort_keys=True
            ).encode(),
            hashlib.sha256,
        ).hexdigest()

        assert sign_payload(payload, SECRET) == expected
        assert verify_signature(payload, SECRET, expected) is True

    def test_mutating_payload_after_signing_breaks_verification(self) -> None:
        # Arrange
        payload = serialize_event(completed_event())
        signature = sign_payload(payload, SECRET)

        # Act
        tampered = copy.deepcopy(payload)
        tampered["data"]["refund_amount"] = "5000.00"

        # Assert
        assert verify_signature(tampered, SECRET, signature) is False

    def test_wrong_secret_fails_verification(self) -> None:
        payload = serialize_event(completed_event())
        signature = sign_payload(payload, SECRET)

        other = "another-secret-xx"
        assert verify_signature(payload, other, signature) is False

    def test_key_order_does_not_change_signature(self) -> None:
        assert sign_payload({"a": 1, "b": 2}, SECRET) == sign_payload(
            {"b": 2, "a": 1}, SECRET
        )

    @given(
        st.dictionaries(st.text(max_size=8), st.integers(), min_size=1),
        st.text(min_size=16, max_size=40),
    )
    def test_any_value_change_is_detected(self, data, secret) -> None:
        payload = {"type": "cancellation.failed", "data": data}
        signature = sign_payload(payload, secret)
        key = next(iter(data))

        changed = {"type": payload["type"], "data": dict(data)}
        changed["data"][key] = data[key] + 1

        assert verify_signature(payload, secret, signature) is True
        assert verify_signature(changed, secret, signature) is False


class TestDeliveryBody:
    def test_signed_body(self) -> None:
        payload = serialize_event(completed_event())

        body = build_delivery_body(payload, SECRET, START)

        assert body["event"] == payload
        assert body["timestamp"] == epoch_millis(START)
        assert verify_signature(body["event"], SECRET, body["signature"])

    def test_unsigned_body_without_secret(self) -> None:
        body = build_delivery_body({"type": "x"}, None, START)

        assert "signature" not in body

    def test_body_survives_a_json_round_trip(self) -> None:
        payload = serialize_event(completed_event())
        body = build_delivery_body(payload, SECRET, START)

        received = json.loads(canonical_json(body))

        assert verify_signature(
            received["event"], SECRET, received["signature"]
        )


class TestDeliveryHeaders:
    def test_standard_headers_and_custom_headers(self) -> None:
        webhook = make_webhook(headers={"Authorization": "Bearer abc"})

        headers = build_delivery_headers(
            webhook, "cancellation.completed", "corr-1", "Agent/1.0"
        )

        assert headers == {
            "Content-Type": "application/json",
            "User-Agent": "Agent/1.0",
            "X-Webhook-Id": "wh-1",
            "X-Event-Type": "cancellation.completed",
            "X-Correlation-Id": "corr-1",
            "Authorization": "Bearer abc",
        }
