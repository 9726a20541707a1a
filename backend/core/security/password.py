"""
Password hashing and strength rules.

Hashes are bcrypt via passlib. Accounts whose hash was produced with other
parameters are rehashed on their next successful login.
"""

from passlib.context import CryptContext

MIN_PASSWORD_LENGTH = 8

_STRENGTH_RULES = (
    (str.isupper, "Password must contain at least one uppercase letter"),
    (str.islower, "Password must contain at least one lowercase letter"),
    (str.isdigit, "Password must contain at least one digit"),
)


def check_password_strength(password: str) -> str:
    """Return ``password`` unchanged, or raise ValueError naming the first rule it breaks."""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    for predicate, message in _STRENGTH_RULES:
        if not any(predicate(c) for c in password):
            raise ValueError(message)
    return password


class PasswordHasher:
    """bcrypt hashing with a constant-time path for unknown accounts."""

    def __init__(self, rounds: int = 12):
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
        )
        # Verified against when the account does not exist so that login
        # timing does not reveal which emails are registered.
        self._dummy_hash = self._context.hash("not-a-real-password")

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, plain_password: str, hashed_password: str | None) -> bool:
        """
        Check a login attempt.

        Args:
            plain_password: Password as typed
            hashed_password: Stored hash, or None when the account is unknown

        Returns:
            True only for a known account with a matching password
        """
        if hashed_password is None:
            self._context.verify(plain_password, self._dummy_hash)
            return False
        return self._context.verify(plain_password, hashed_password)

    def upgraded_hash(self, plain_password: str, hashed_password: str) -> str | None:
        """New hash for a verified password whose stored hash is outdated, else None."""
        if self._context.needs_update(hashed_password):
            return self._context.hash(plain_password)
        return None


password_hasher = PasswordHasher()
