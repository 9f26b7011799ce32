"""Password and refresh-token hashing.

Learn: Passwords use bcrypt, which salts automatically and is slow on
purpose (cost 12 ≈ 100ms per hash). Passwords are truncated to 72 bytes,
bcrypt's limit.

Refresh tokens are NOT bcrypt-hashed: a JWT's first 72 bytes are the
header plus the start of the payload, so bcrypt would see the same input
for every token of a user. They get a SHA-256 digest instead (same as
opaque API keys would), compared in constant time.
"""

import hashlib
import secrets

import bcrypt


class PasswordHasher:
    """bcrypt wrapper with an injectable work factor."""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def hash(self, password: str) -> str:
        pw_bytes = password.encode("utf-8")[:72]
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(pw_bytes, salt).decode("utf-8")

    def verify(self, password: str, password_hash: str | None) -> bool:
        """Check a password against its bcrypt hash. Malformed hashes fail."""
        if not password_hash:
            return False
        try:
            pw_bytes = password.encode("utf-8")[:72]
            return bcrypt.checkpw(pw_bytes, password_hash.encode("utf-8"))
        except (ValueError, TypeError):
            return False


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a refresh token, for server-side storage."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def token_matches(token: str, stored_hash: str | None) -> bool:
    if not stored_hash:
        return False
    return secrets.compare_digest(hash_token(token), stored_hash)
