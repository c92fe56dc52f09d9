"""
Simple in-memory sliding-window rate limit (per identifier + route).

Typical use: the login endpoint allows ``LOGIN_RATE_LIMIT`` attempts per
client IP within ``LOGIN_RATE_WINDOW_SECONDS``. Keys whose attempts have all
left the window are swept at most once per window.
"""
from time import monotonic
from typing import Dict, Tuple

BUCKET: Dict[Tuple[str, str], list[float]] = {}
_last_sweep = 0.0


def _sweep(now: float, window_seconds: int) -> None:
    global _last_sweep
    if now - _last_sweep < window_seconds:
        return
    _last_sweep = now
    for key in [k for k, q in BUCKET.items() if not q or now - q[-1] >= window_seconds]:
        del BUCKET[key]


def allow(key: Tuple[str, str], limit: int = 5, window_seconds: int = 60) -> bool:
    """Return True if the attempt is allowed, recording it.

    key: (identifier, route)
    limit: attempts allowed inside the window
    window_seconds: window length in seconds
    """
    now = monotonic()
    _sweep(now, window_seconds)
    q = BUCKET.setdefault(key, [])
    # drop timestamps outside the window
    q[:] = [t for t in q if now - t < window_seconds]
    if len(q) >= limit:
        return False
    q.append(now)
    return True


def reset() -> None:
    """Clear the bucket (tests, restarts)."""
    global _last_sweep
    BUCKET.clear()
    _last_sweep = 0.0
