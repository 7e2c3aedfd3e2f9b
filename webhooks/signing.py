"""
Wire format and HMAC signing of webhook deliveries.

A delivery body looks like::

    {
        "event": {
            "type": ..., "data": {...},
            "timestamp": ..., "correlationId": ...
        },
        "timestamp": 1718000000000,
        "signature": "<hex>"
    }

``signature`` is present only when the webhook has a secret. It is the
HMAC-SHA256 hex digest, keyed with the secret, of the ``event`` object
serialized as compact JSON with sorted keys. Receivers verify by
re-serializing ``event`` the same way.
"""

import hashlib
import hmac
import json
from datetime import datetime
from typing import Any, Dict, Optional

from cancellation.domain import CancellationEvent
from webhooks.domain import Webhook

SIGNATURE_ALGORITHM = "sha256"


def serialize_event(event: CancellationEvent) -> Dict[str, Any]:
    """Wire representation of a lifecycle event."""
    data = dict(event.data)
    if event.order_id is not None:
        data.setdefault("order_id", event.order_id)
    if event.product_id is not None:
        data.setdefault("product_id", event.product_id)
    return {
        "type": event.type.value,
        "data": data,
        "timestamp": event.timestamp.isoformat(),
        "correlationId": event.correlation_id,
    }


def canonical_json(payload: Dict[str, Any]) -> str:
    return json.dumps(
        payload, separators=(",", ":"), sort_keys=True, default=str
    )


def sign_payload(payload: Dict[str, Any], secret: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        canonical_json(payload).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_signature(
    payload: Dict[str, Any], secret: str, signature: str
) -> bool:
    expected = sign_payload(payload, secret)
    return hmac.compare_digest(expected, signature)


def epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def build_delivery_body(
    event_payload: Dict[str, Any],
    secret: Optional[str],
    sent_at: datetime,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "event": event_payload,
        "timestamp": epoch_millis(sent_at),
    }
    if secret:
        body["signature"] = sign_payload(event_payload, secret)
    return body


def build_delivery_headers(
    webhook: Webhook,
    event_type: str,
    correlation_id: str,
    user_agent: str,
) -> Dict[str, str]:
    """Standard delivery headers followed by the webhook's own headers."""
    headers = {
        "Content-Type": "application/json",
        "User-Agent": user_agent,
        "X-Webhook-Id": webhook.id,
        "X-Event-Type": event_type,
        "X-Correlation-Id": correlation_id,
    }
    headers.update(webhook.headers)
    return headers
