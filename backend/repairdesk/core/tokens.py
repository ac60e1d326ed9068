"""Access-token codec (JWT) and opaque refresh-token helpers."""

from __future__ import annotations

import hashlib
import re
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from repairdesk.config import Settings, settings
from repairdesk.core.auth import utf8_bytes
from repairdesk.core.errors import ConfigurationError, TokenExpired, TokenMalformed, WrongTokenType
from repairdesk.core.timeutil import utcnow

ACCESS_TOKEN_TYPE = "access"
DEFAULT_TTL = timedelta(minutes=15)

_TTL_RE = re.compile(r"^(\d+)([smhd])$")
_TTL_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def parse_ttl(value: str | None) -> timedelta:
    """Parse '30s', '15m', '1h', '7d'. Unparseable values fall back to 15 minutes."""
    match = _TTL_RE.match((value or "").strip())
    if not match:
        return DEFAULT_TTL
    amount, unit = match.groups()
    return timedelta(**{_TTL_UNITS[unit]: int(amount)})


def ttl_millis(value: str | None) -> int:
    return int(parse_ttl(value).total_seconds() * 1000)


def create_refresh_token() -> str:
    """Generate a new refresh token (512 random bits, hex). Caller must hash and store."""
    return secrets.token_hex(64)


def hash_refresh_token(token: str) -> str:
    """SHA256 hash of refresh token for storage."""
    return hashlib.sha256(utf8_bytes(token)).hexdigest()


def _to_millis(value: datetime) -> int:
    return int(round(value.timestamp() * 1000))


class TokenCodec:
    """Signs and verifies access tokens. Holds no state beyond keys and a clock."""

    def __init__(
        self,
        signing_key: str,
        verification_key: str | None = None,
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if not signing_key:
            raise ConfigurationError("JWT signing key not configured")
        self.signing_key = signing_key
        self.verification_key = verification_key or signing_key
        self.algorithm = algorithm
        self.clock = clock

    @classmethod
    def from_settings(cls, config: Settings = settings, clock: Callable[[], datetime] = utcnow) -> "TokenCodec":
        if config.use_rs256:
            return cls(config.jwt_private_key.strip(), config.jwt_public_key.strip(), "RS256", clock)
        return cls(config.secret_key, algorithm=config.jwt_algorithm, clock=clock)

    def issue_access(self, user_id: int, ttl: timedelta) -> tuple[str, datetime]:
        now = self.clock()
        expires_at = now + ttl
        payload = {
            "sub": str(user_id),
            "type": ACCESS_TOKEN_TYPE,
            "iat": int(now.timestamp()),
            # NumericDate may be fractional; millisecond precision keeps short TTLs exact
            "exp": _to_millis(expires_at) / 1000,
        }
        token = jwt.encode(payload, self.signing_key, algorithm=self.algorithm)
        return token if isinstance(token, str) else token.decode("utf-8"), expires_at

    def decode(self, token: str) -> dict[str, Any]:
        """Signature and structure only; expiry is checked by verify_access against self.clock."""
        try:
            return jwt.decode(
                token,
                self.verification_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError as e:
            raise TokenMalformed() from e

    def verify_access(self, token: str) -> int:
        """Return the user id carried by a valid access token."""
        payload = self.decode(token)
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)):
            raise TokenMalformed()
        if _to_millis(self.clock()) > int(round(exp * 1000)):
            raise TokenExpired()
        if payload.get("type") != ACCESS_TOKEN_TYPE:
            raise WrongTokenType()
        try:
            return int(payload["sub"])
        except (KeyError, TypeError, ValueError) as e:
            raise TokenMalformed() from e
