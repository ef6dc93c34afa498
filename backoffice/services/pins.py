from __future__ import annotations

import re
import secrets

import bcrypt

from backoffice.core.config import ADMIN_PIN_BCRYPT_ROUNDS, STAFF_PIN_BCRYPT_ROUNDS

PIN_MIN_LENGTH = 4
PIN_MAX_LENGTH = 8
_PIN_PATTERN = re.compile(r"[0-9]{4,8}")

# =========================
# PIN hashing
# Each tier hashes "<label>:<pin>", so a hash from one tier never
# verifies under the other even for the same digits.
# =========================
_STAFF_TIER = "staff-pin"
_ADMIN_TIER = "admin-pin"


def _pin_secret(tier: str, pin: str) -> bytes:
    secret = f"{tier}:{pin or ''}".encode("utf-8")
    # bcrypt only considers the first 72 bytes
    return secret[:72]


def _hash(tier: str, pin: str, rounds: int) -> str:
    hashed = bcrypt.hashpw(_pin_secret(tier, pin), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def _verify(tier: str, pin: str, pin_hash: str | None) -> bool:
    if not pin or not pin_hash:
        return False
    try:
        return bcrypt.checkpw(_pin_secret(tier, pin), pin_hash.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def hash_pin(pin: str) -> str:
    return _hash(_STAFF_TIER, pin, STAFF_PIN_BCRYPT_ROUNDS)


def verify_pin(pin: str, pin_hash: str | None) -> bool:
    """Staff tier check. Malformed or missing hashes verify as False."""
    return _verify(_STAFF_TIER, pin, pin_hash)


def hash_admin_pin(pin: str) -> str:
    return _hash(_ADMIN_TIER, pin, ADMIN_PIN_BCRYPT_ROUNDS)


def verify_admin_pin(pin: str, pin_hash: str | None) -> bool:
    return _verify(_ADMIN_TIER, pin, pin_hash)


def is_valid_pin_format(pin: str | None) -> bool:
    return bool(pin) and bool(_PIN_PATTERN.fullmatch(pin))


def generate_secure_pin(length: int = 4) -> str:
    if length < 1:
        raise ValueError("PIN length must be positive")
    return "".join(secrets.choice("0123456789") for _ in range(length))


def generate_session_token() -> str:
    return secrets.token_hex(32)


def pin_prefix(pin: str | None) -> str:
    """First two digits followed by a mask; the only part of a PIN that is ever recorded."""
    return f"{(pin or '')[:2]}**"
