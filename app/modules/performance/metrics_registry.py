"""Thread-safe in-process registry of request latency per route ("METHOD /path/template")."""
import threading
import math
import time
import logging
from collections import deque

logger = logging.getLogger(__name__)

WINDOW_SIZE = 1000

_lock = threading.Lock()
_routes: dict[str, dict] = {}
_started_at = time.monotonic()


def _new_route_stats() -> dict:
    return {"count": 0, "errors": 0, "max_ms": 0.0, "samples": deque(maxlen=WINDOW_SIZE)}


def record(route: str, duration_ms: float, status_code: int) -> None:
    with _lock:
        stats = _routes.get(route)
        if stats is None:
            stats = _routes[route] = _new_route_stats()
        stats["count"] += 1
        if status_code >= 500:
            stats["errors"] += 1
        stats["samples"].append(duration_ms)
        stats["max_ms"] = max(stats["max_ms"], duration_ms)


def _percentile(sorted_samples: list[float], pct: float) -> float:
    if not sorted_samples:
        return 0.0
    index = max(0, min(len(sorted_samples) - 1, math.ceil(pct / 100 * len(sorted_samples)) - 1))
    return sorted_samples[index]


def snapshot() -> dict:
    """Copy of current metrics: per-route stats over the sample window plus totals and uptime."""
    with _lock:
        copied = {
            route: (stats["count"], stats["errors"], stats["max_ms"], list(stats["samples"]))
            for route, stats in _routes.items()
        }
        uptime = time.monotonic() - _started_at

    routes = {}
    total_requests = total_errors = 0
    for route, (count, errors, max_ms, samples) in sorted(copied.items()):
        ordered = sorted(samples)
        routes[route] = {
            "count": count,
            "errors": errors,
            "avg_ms": round(sum(ordered) / len(ordered), 2) if ordered else 0.0,
            "p95_ms": round(_percentile(ordered, 95), 2),
            "max_ms": round(max_ms, 2),
        }
        total_requests += count
        total_errors += errors
    return {
        "uptime_seconds": round(uptime, 2),
        "total_requests": total_requests,
        "total_errors": total_errors,
        "routes": routes,
    }


def reset() -> None:
    global _started_at
    with _lock:
        _routes.clear()
        _started_at = time.monotonic()
        logger.debug("Request metrics reset")
