import re
import secrets
import time

PREFIX = "CICADA"
RANDOM_LEN = 7

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
_TICKET_RE = re.compile(r"CICADA-[A-Z0-9]+-[A-Z0-9]+")


def to_base36(n: int) -> str:
    if n < 0:
        raise ValueError("base36 of a negative number")
    if n == 0:
        return "0"
    out = []
    while n:
        n, rem = divmod(n, 36)
        out.append(_ALPHABET[rem])
    return "".join(reversed(out))


def generate(now_ms: int | None = None) -> str:
    """CICADA-<ms timestamp>-<random>, both base36, uppercased."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(RANDOM_LEN))
    return f"{PREFIX}-{to_base36(now_ms)}-{suffix}".upper()


def is_valid(code) -> bool:
    if not isinstance(code, str):
        return False
    return _TICKET_RE.fullmatch(code.strip()) is not None
