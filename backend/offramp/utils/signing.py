"""
Webhook Signing — canonical JSON bodies and HMAC-SHA256 signatures.

Partners verify `X-Signature` over the exact raw body they receive, so the
body is serialized once and stored verbatim.
"""
import hashlib
import hmac
import json
from typing import Any

SIGNATURE_PREFIX = "sha256="


def canonical_json(payload: Any) -> str:
    """Deterministic JSON: sorted keys, no insignificant whitespace."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str, ensure_ascii=False)


def _as_bytes(value: str | bytes) -> bytes:
    return value if isinstance(value, bytes) else value.encode("utf-8")


def sign(body: str | bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of `body` keyed by `secret`."""
    return hmac.new(_as_bytes(secret), _as_bytes(body), hashlib.sha256).hexdigest()


def verify(body: str | bytes, signature: str | None, secret: str) -> bool:
    """Constant-time signature check; accepts an optional 'sha256=' prefix."""
    if not signature or not secret:
        return False
    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX):]
    return hmac.compare_digest(sign(body, secret), signature.strip().lower())
