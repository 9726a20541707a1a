"""
API key generation and hashing.
"""

import hashlib
import secrets
import string
from dataclasses import dataclass

API_KEY_PREFIX = "llm_sk_"
API_KEY_RANDOM_LENGTH = 32
DISPLAY_PREFIX_LENGTH = 12

_ALPHABET = string.ascii_letters + string.digits


@dataclass(frozen=True)
class GeneratedApiKey:
    """A freshly minted key; ``raw_key`` must only be shown once."""

    raw_key: str
    key_hash: str
    display_prefix: str


def hash_api_key(raw_key: str) -> str:
    """SHA-256 hex digest stored in place of the key."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def display_prefix(raw_key: str) -> str:
    return raw_key[:DISPLAY_PREFIX_LENGTH] + "..."


def looks_like_api_key(value: str) -> bool:
    """Cheap format check before touching the database."""
    if not value.startswith(API_KEY_PREFIX):
        return False
    body = value[len(API_KEY_PREFIX):]
    return len(body) == API_KEY_RANDOM_LENGTH and all(c in _ALPHABET for c in body)


def generate_api_key() -> GeneratedApiKey:
    random_part = "".join(secrets.choice(_ALPHABET) for _ in range(API_KEY_RANDOM_LENGTH))
    raw_key = f"{API_KEY_PREFIX}{random_part}"
    return GeneratedApiKey(
        raw_key=raw_key,
        key_hash=hash_api_key(raw_key),
        display_prefix=display_prefix(raw_key),
    )
