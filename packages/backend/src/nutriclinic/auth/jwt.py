"""JWT token creation and verification.

Learn: JWT (JSON Web Token) provides stateless authentication.
- Access token: short-lived (24h by default), used for API calls
- Refresh token: fixed 7 days, exchanged for new access tokens

Payload: {sub, email, role, tenantId?, type, jti, iat, exp}.
`jti` is random so two tokens minted in the same second still differ.
The signer gets its secret/algorithm/expiry injected; it never reads
global settings.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

ACCESS = "access"
REFRESH = "refresh"
REFRESH_TOKEN_EXPIRE_DAYS = 7


class TokenError(Exception):
    """Raised when token creation/verification fails."""


def build_claims(user) -> dict:
    """Token claims from a user record (or anything with the same attrs)."""
    claims = {
        "sub": str(user.id),
        "email": user.email,
        "role": str(getattr(user.role, "value", user.role)),
    }
    if user.tenant_id:
        claims["tenantId"] = str(user.tenant_id)
    return claims


class TokenSigner:
    """Signs and verifies HS256 tokens with an injected secret."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        access_expire_minutes: int = 60 * 24,
    ):
        self.secret = secret
        self.algorithm = algorithm
        self.access_expire = timedelta(minutes=access_expire_minutes)
        self.refresh_expire = timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS)

    def sign(
        self,
        claims: dict,
        token_type: str = ACCESS,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        if expires_delta is None:
            expires_delta = (
                self.refresh_expire if token_type == REFRESH else self.access_expire
            )
        now = datetime.now(timezone.utc)
        payload = {
            **claims,
            "type": token_type,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": now + expires_delta,
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def create_access_token(self, claims: dict) -> str:
        return self.sign(claims, ACCESS)

    def create_refresh_token(self, claims: dict) -> str:
        return self.sign(claims, REFRESH)

    def verify(self, token: str, expected_type: Optional[str] = None) -> dict:
        """Verify and decode a token.

        Returns the payload dict on success.
        Raises TokenError on failure (expired, malformed, bad signature,
        or wrong token type when expected_type is given).
        """
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise TokenError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise TokenError(f"Invalid token: {e}")

        if expected_type and payload.get("type") != expected_type:
            raise TokenError(f"Wrong token type, expected {expected_type}")
        if "sub" not in payload:
            raise TokenError("Token has no subject")
        return payload
