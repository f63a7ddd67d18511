import time
import re
from datetime import date, datetime, timezone
import hmac
from typing import Optional

LEADING_INT = re.compile(r"[+-]?\d+")


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def today_utc() -> date:
    return datetime.now(tz=timezone.utc).date()


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    # simple but effective email check
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def positive_int(value) -> Optional[int]:
    """Parse the leading integer of metadata-style numbers ("2", 2, "2.0",
    "2 tickets"); None unless > 0."""
    if value is None or isinstance(value, bool):
        return None
    m = LEADING_INT.match(str(value).strip())
    if m is None:
        return None
    n = int(m.group(0))
    return n if n > 0 else None
