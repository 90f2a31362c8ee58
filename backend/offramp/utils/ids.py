"""
Identifier generation for partner-facing references.
"""
import secrets
import uuid


def new_id(prefix: str, length: int = 16) -> str:
    """Opaque, prefixed reference, e.g. quote_3f9a0c1e7b2d4a55."""
    return f"{prefix}_{uuid.uuid4().hex[:length]}"


def new_token() -> str:
    return secrets.token_urlsafe(32)


def new_utr() -> str:
    """UTR-style settlement reference: 'N' followed by 16 digits."""
    return "N" + "".join(secrets.choice("0123456789") for _ in range(16))
