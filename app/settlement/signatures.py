"""
HMAC helpers for client confirmations and completion codes.

Client confirmation:
    After paying, the client reports "order_id|payment_id" together with
    an HMAC-SHA256 signature issued by the server-side secret. Nothing is
    trusted until verify_confirmation() accepts it.

Completion codes:
    Codes are stored as a keyed digest bound to the completion record, so
    a leaked digest cannot be matched against another record.
"""

from __future__ import annotations

import hashlib
import hmac

from django.conf import settings


def _hmac_hex(secret: str, message: str) -> str:
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def sign_confirmation(order_id: str, payment_id: str, secret: str | None = None) -> str:
    """
    Signature over "order_id|payment_id".

    Example:
        sign_confirmation("pi_123", "ch_456")  # 64 hex chars
    """
    secret = secret or settings.GATEWAY_SIGNING_SECRET
    return _hmac_hex(secret, f"{order_id}|{payment_id}")


def verify_confirmation(
    order_id: str, payment_id: str, signature: str, secret: str | None = None
) -> bool:
    """Constant-time check of a client-supplied confirmation signature."""
    if not signature:
        return False
    expected = sign_confirmation(order_id, payment_id, secret=secret)
    return hmac.compare_digest(expected, signature.strip().lower())


def completion_code_digest(record_id, code: str) -> str:
    return _hmac_hex(settings.SECRET_KEY, f"completion:{record_id}:{code}")


def completion_code_matches(record_id, code: str, digest: str) -> bool:
    return hmac.compare_digest(completion_code_digest(record_id, code), digest)
