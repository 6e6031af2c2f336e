"""
License key generation primitives.

Pure functions: option clamping, random key material, formatting and the
document shape written to the external collection.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

# No 0/O, 1/I: keys are read aloud and typed by hand.
ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
GROUP_SIZE = 4

QUANTITY_RANGE = (1, 50)
EXPIRATION_DAYS_RANGE = (0, 3650)
LENGTH_RANGE = (8, 64)

DEFAULT_QUANTITY = 1
DEFAULT_EXPIRATION_DAYS = 7
DEFAULT_LENGTH = 16


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return int(number)


def clamp(value: Any, bounds: tuple[int, int], default: int) -> int:
    number = _as_int(value)
    if number is None:
        number = default
    low, high = bounds
    return max(low, min(high, number))


@dataclass(frozen=True)
class KeyOptions:
    quantity: int = DEFAULT_QUANTITY
    expiration_days: int = DEFAULT_EXPIRATION_DAYS
    length: int = DEFAULT_LENGTH
    prefix: str = ""
    dashed: bool = True

    @classmethod
    def from_raw(cls, quantity=None, expiration_days=None, length=None, prefix=None, dashed=None) -> "KeyOptions":
        return cls(
            quantity=clamp(quantity, QUANTITY_RANGE, DEFAULT_QUANTITY),
            expiration_days=clamp(expiration_days, EXPIRATION_DAYS_RANGE, DEFAULT_EXPIRATION_DAYS),
            length=clamp(length, LENGTH_RANGE, DEFAULT_LENGTH),
            prefix=str(prefix).strip() if prefix is not None else "",
            dashed=dashed is not False,
        )

    def expire_at(self, now: datetime) -> Optional[datetime]:
        if self.expiration_days <= 0:
            return None
        return now + timedelta(days=self.expiration_days)


def random_key(length: int) -> str:
    # len(ALPHABET) == 32 divides 256, so byte % 32 is unbiased
    return "".join(ALPHABET[b % len(ALPHABET)] for b in secrets.token_bytes(length))


def format_key(raw: str, group: int = GROUP_SIZE) -> str:
    return "-".join(raw[i:i + group] for i in range(0, len(raw), group))


def build_key(options: KeyOptions) -> str:
    raw = random_key(options.length)
    body = format_key(raw) if options.dashed else raw
    return f"{options.prefix}-{body}" if options.prefix else body


def generate_batch(options: KeyOptions) -> list[str]:
    """`quantity` keys, de-duplicated within the batch, in generation order."""
    return list(dict.fromkeys(build_key(options) for _ in range(options.quantity)))


def key_document(key: str, options: KeyOptions, now: datetime) -> dict:
    return {
        "key": key,
        "hwid": "",
        "status": "active",
        "createdAt": now,
        "updatedAt": now,
        "expirationDays": options.expiration_days,
        "expireAt": options.expire_at(now),
    }


def key_status(expire_at: Optional[datetime], now: datetime) -> str:
    if expire_at is None:
        return "active"
    if expire_at.tzinfo is None and now.tzinfo is not None:
        expire_at = expire_at.replace(tzinfo=now.tzinfo)
    return "expired" if expire_at < now else "active"
