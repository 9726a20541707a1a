"""
Unit tests for tokens, password hashing and API key primitives.
"""

from datetime import UTC, datetime

import pytest

from core.security import PasswordHasher, TokenService
from core.security.api_keys import (
    API_KEY_PREFIX,
    API_KEY_RANDOM_LENGTH,
    display_prefix,
    generate_api_key,
    hash_api_key,
    looks_like_api_key,
)
from core.security.password import check_password_strength


class TestTokenService:
    def setup_method(self):
        self.service = TokenService(secret_key="unit-test-secret", access_token_expire_minutes=15)

    def test_access_token_round_trip(self):
        token = self.service.create_access_token("user-1", email="a@example.com", role="admin")
        payload = self.service.verify_access_token(token)

        assert payload.sub == "user-1"
        assert payload.email == "a@example.com"
        assert payload.role == "admin"
        assert payload.type == "access"
        assert payload.exp > datetime.now(UTC)
        assert self.service.access_token_ttl_seconds == 900

    def test_token_types_are_not_interchangeable(self):
        access, refresh = self.service.create_token_pair("user-1")
        assert self.service.verify_refresh_token(access) is None
        assert self.service.verify_access_token(refresh) is None
        assert self.service.verify_refresh_token(refresh).sub == "user-1"

    def test_wrong_secret_rejected(self):
        token = TokenService(secret_key="other").create_access_token("user-1")
        assert self.service.decode_token(token) is None

    def test_garbage_rejected(self):
        assert self.service.decode_token("not-a-jwt") is None


class TestPasswordHasher:
    def test_hash_and_verify(self):
        hasher = PasswordHasher(rounds=4)
        hashed = hasher.hash("Secret123")
        assert hashed != "Secret123"
        assert hasher.verify("Secret123", hashed) is True
        assert hasher.verify("wrong", hashed) is False

    def test_unknown_account_never_verifies(self):
        assert PasswordHasher(rounds=4).verify("anything", None) is False

    def test_current_hash_is_not_upgraded(self):
        hasher = PasswordHasher(rounds=4)
        assert hasher.upgraded_hash("Secret123", hasher.hash("Secret123")) is None


class TestPasswordStrength:
    def test_strong_password_passes(self):
        assert check_password_strength("SecurePass123") == "SecurePass123"

    @pytest.mark.parametrize(
        "password, message",
        [
            ("Ab1", "at least 8"),
            ("lowercase123", "uppercase"),
            ("UPPERCASE123", "lowercase"),
            ("NoDigitsHere", "digit"),
        ],
    )
    def test_first_broken_rule_is_reported(self, password, message):
        with pytest.raises(ValueError, match=message):
            check_password_strength(password)


class TestApiKeys:
    def test_generated_key_format(self):
        generated = generate_api_key()
        assert generated.raw_key.startswith(API_KEY_PREFIX)
        assert len(generated.raw_key) == len(API_KEY_PREFIX) + API_KEY_RANDOM_LENGTH
        assert looks_like_api_key(generated.raw_key)
        assert generated.key_hash == hash_api_key(generated.raw_key)
        assert generated.display_prefix == display_prefix(generated.raw_key)
        assert generated.display_prefix.endswith("...")

    def test_keys_are_unique(self):
        assert generate_api_key().raw_key != generate_api_key().raw_key

    def test_hash_is_sha256_hex(self):
        digest = hash_api_key("llm_sk_abc")
        assert len(digest) == 64
        assert all(c in "0123456789abcdef" for c in digest)

    def test_looks_like_api_key(self):
        assert not looks_like_api_key("sk_live_123")
        assert not looks_like_api_key(API_KEY_PREFIX + "short")
        assert not looks_like_api_key(API_KEY_PREFIX + "!" * API_KEY_RANDOM_LENGTH)
