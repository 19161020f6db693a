# 📂 backend/cuca/utils.py — shared helpers (Decimal, ids, time, passwords)
# -----------------------------------------------------------------------------
# Here:
# - safe Decimal handling for money (2 places, HALF_UP),
# - UUID generation for row ids,
# - naive-UTC clock used by every timestamp we write,
# - bcrypt hashing/checking of transaction passwords,
# - package name normalisation for the short-term → long-term prerequisite.

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, getcontext
from typing import Any, Iterable

import bcrypt

getcontext().prec = 28

CENT = Decimal("0.01")


# =========================
# 🔢 Decimal
# =========================
def dec(x: Any) -> Decimal:
    """Converts to Decimal without going through float."""
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def q2(x: Any) -> Decimal:
    """Rounds to currency precision (2 places, HALF_UP)."""
    return dec(x).quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(x: Any) -> str:
    return f"{q2(x):.2f}"


# =========================
# 🆔 ids / ⏱ time
# =========================
def gen_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC now. All stored timestamps are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# =========================
# 🔑 Transaction passwords
# =========================
def hash_password(plain: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("ascii")


def verify_password(plain: str, hashed: str) -> bool:
    if not plain or not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("ascii"))
    except ValueError:
        # malformed stored hash
        return False


# =========================
# 📦 Package names
# =========================
def base_package_name(name: str, suffixes: Iterable[str]) -> str:
    """
    Strips trailing suffix markers and separators, case-insensitively:
        "Ouro VIP"   → "ouro"
        "Ouro - VIP" → "ouro"
        "Ouro"       → "ouro"
    The result is casefolded and whitespace-collapsed, ready for comparison.
    """
    base = " ".join((name or "").split())
    markers = [m.strip() for m in suffixes if m and m.strip()]
    changed = True
    while changed and markers:
        changed = False
        for marker in markers:
            stripped = re.sub(rf"[\s\-_()\[\]]*\b{re.escape(marker)}\b[\s\-_()\[\]]*$", "", base, flags=re.IGNORECASE)
            if stripped != base and stripped:
                base = stripped
                changed = True
    return base.strip(" -_").casefold()
