"""HMAC signatures for webhook traffic.

Outbound ``call_webhook`` actions are signed when a signing secret is
configured, and inbound domain events posted to the events endpoint are
verified against the same scheme.

Headers:
  X-Automation-Signature: sha256=<hex_digest>
  X-Automation-Timestamp: <unix_timestamp>
  X-Automation-Delivery: <delivery_id>

The delivery id of an action is derived from (run, node, visit) so a
receiver can drop the duplicate deliveries that at-least-once execution
may produce.

Signature: HMAC-SHA256 over ``f"{timestamp}.".encode() + body``.
"""

import hashlib
import hmac
import time
from typing import Optional
from uuid import uuid4

SIGNATURE_HEADER = "X-Automation-Signature"
TIMESTAMP_HEADER = "X-Automation-Timestamp"
DELIVERY_HEADER = "X-Automation-Delivery"

DEFAULT_TOLERANCE_SECONDS = 300


def _digest(payload: bytes, secret: str, ts: int) -> str:
    return hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()


def sign_webhook_payload(
    payload: bytes,
    secret: str,
    timestamp: Optional[int] = None,
    delivery_id: Optional[str] = None,
) -> dict[str, str]:
    """Return the signature headers for ``payload``.

    Args:
        payload: Raw request body bytes
        secret: Signing secret shared with the receiver
        timestamp: Unix timestamp (defaults to now)
        delivery_id: Idempotency key for the receiver (defaults to a UUID)
    """
    ts = timestamp or int(time.time())
    return {
        SIGNATURE_HEADER: f"sha256={_digest(payload, secret, ts)}",
        TIMESTAMP_HEADER: str(ts),
        DELIVERY_HEADER: delivery_id or str(uuid4()),
    }


def verify_webhook_signature(
    payload: bytes,
    secret: str,
    signature_header: Optional[str],
    timestamp_header: Optional[str],
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[int] = None,
) -> bool:
    """Check a signature produced by ``sign_webhook_payload``.

    Returns False for a missing or malformed header, a timestamp outside
    ``tolerance`` seconds, or a digest mismatch.
    """
    try:
        ts = int(timestamp_header)
    except (ValueError, TypeError):
        return False

    current = now if now is not None else int(time.time())
    if abs(current - ts) > tolerance:
        return False

    if not signature_header or not signature_header.startswith("sha256="):
        return False

    return hmac.compare_digest(_digest(payload, secret, ts), signature_header[7:])
