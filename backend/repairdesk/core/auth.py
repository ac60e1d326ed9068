"""Password hashing (bcrypt) with thread-pool wrappers for use on the event loop."""

from functools import lru_cache

import bcrypt
from starlette.concurrency import run_in_threadpool

from repairdesk.config import settings


def utf8_bytes(value: str) -> bytes:
    """Encode client-supplied text. Lone surrogates from JSON escapes pass through instead of raising."""
    return value.encode("utf-8", "surrogatepass")


def is_storable_text(value: str) -> bool:
    """True when the string can be bound as a database parameter (strict UTF-8)."""
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def hash_password(password: str, rounds: int | None = None) -> str:
    """Hash password with bcrypt. Bytes truncated to 72 (bcrypt limit); no passlib re-encoding."""
    pwd_bytes = utf8_bytes(password)[:72]
    hashed = bcrypt.hashpw(pwd_bytes, bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds))
    return hashed.decode("utf-8")


def verify_password(plain_password: str, password_hash: str | None) -> bool:
    """Verify password with bcrypt. False on mismatch, missing or malformed hash."""
    if not password_hash:
        return False
    plain_bytes = utf8_bytes(plain_password)[:72]
    try:
        return bcrypt.checkpw(plain_bytes, password_hash.encode("utf-8"))
    except ValueError:
        # "Invalid salt" and friends: stored hash is not a bcrypt hash
        return False


@lru_cache(maxsize=1)
def dummy_password_hash() -> str:
    """Hash checked when no user matches, so unknown and known identifiers cost the same bcrypt work."""
    return hash_password("repairdesk-no-such-user")


async def hash_password_async(password: str, rounds: int | None = None) -> str:
    return await run_in_threadpool(hash_password, password, rounds)


async def verify_password_async(plain_password: str, password_hash: str | None) -> bool:
    return await run_in_threadpool(verify_password, plain_password, password_hash)


def _verify_against_dummy(plain_password: str) -> bool:
    verify_password(plain_password, dummy_password_hash())
    return False


async def verify_unknown_user_async(plain_password: str) -> bool:
    """Always False, after doing the same bcrypt work as a real check."""
    return await run_in_threadpool(_verify_against_dummy, plain_password)
