"""
In-memory sliding-window rate limiting.

Timestamps are tracked per (user, function) pair inside this process only;
a restart or a second worker starts from an empty window.
"""
import logging
import threading
import time
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_SECONDS = 300

# {(user_id, function_name): [timestamp1, timestamp2, ...]}
_request_timestamps: Dict[Tuple[str, str], List[float]] = {}
_windows: Dict[Tuple[str, str], float] = {}
_last_sweep = 0.0
_lock = threading.Lock()


def _cleanup(key: Tuple[str, str], window_seconds: float, now: float) -> None:
    cutoff = now - window_seconds
    live = [t for t in _request_timestamps.get(key, ()) if t > cutoff]
    if live:
        _request_timestamps[key] = live
    else:
        _request_timestamps.pop(key, None)
        _windows.pop(key, None)


def _sweep(now: float) -> None:
    """Drop every key whose window has fully expired."""
    global _last_sweep
    if now - _last_sweep < SWEEP_INTERVAL_SECONDS:
        return
    _last_sweep = now
    for key in list(_request_timestamps):
        _cleanup(key, _windows.get(key, 0.0), now)


def check_rate_limit(
    user_id: str,
    function_name: str,
    max_requests: int,
    window_seconds: float,
    now: Optional[float] = None,
) -> Dict[str, object]:
    """Record a request and report whether it is within the limit.

    Returns ``{"allowed": bool, "remaining": int, "retry_after": float}``.
    Rejected requests are not recorded.
    """
    current = time.time() if now is None else now
    key = (str(user_id), function_name)
    with _lock:
        _sweep(current)
        _cleanup(key, window_seconds, current)
        timestamps = _request_timestamps.get(key, [])
        if len(timestamps) >= max_requests:
            retry_after = max(0.0, timestamps[0] + window_seconds - current)
            logger.warning("Rate limit hit for user %s on %s", user_id, function_name)
            return {"allowed": False, "remaining": 0, "retry_after": round(retry_after, 3)}
        timestamps.append(current)
        _request_timestamps[key] = timestamps
        _windows[key] = window_seconds
        return {"allowed": True, "remaining": max_requests - len(timestamps), "retry_after": 0.0}


def tracked_keys() -> int:
    with _lock:
        return len(_request_timestamps)


def reset_rate_limits() -> None:
    global _last_sweep
    with _lock:
        _request_timestamps.clear()
        _windows.clear()
        _last_sweep = 0.0
