from __future__ import annotations

import html
import os
import random
import re
from datetime import datetime, timezone
from typing import Any

_WS_RE = re.compile(r"\s+")
_TRUE_WORDS = frozenset({"1", "true", "yes", "on", "y", "t"})


def esc(s: str | None) -> str:
    """HTML-escape text (quotes included) for cells and href attributes."""
    return "" if s is None else html.escape(str(s), quote=True)


def truthy(v: Any) -> bool:
    """Booleans from kwargs or env strings ('1', 'yes', 'on', ...)."""
    if isinstance(v, (bool, int, float)):
        return bool(v)
    return v is not None and str(v).strip().lower() in _TRUE_WORDS


def now_iso() -> str:
    """UTC timestamp, 'Z' suffixed."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def getenv_str(name: str, default: str | None = None) -> str | None:
    return os.environ.get(name, default)


def collapse_ws(s: str | None) -> str:
    return _WS_RE.sub(" ", str(s or "")).strip()


def uniform(rng: random.Random, bounds: tuple[float, float]) -> float:
    """Uniform draw inside (lo, hi); tolerates reversed or equal bounds."""
    lo, hi = min(bounds), max(bounds)
    if hi <= lo:
        return float(lo)
    return rng.uniform(lo, hi)
