from __future__ import annotations

import threading
from collections import defaultdict, deque
from datetime import datetime
from typing import Any

from flask import current_app, jsonify, render_template, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

TOO_MANY_REQUESTS_MESSAGE = "Too many requests. Please try again later."

# bucket -> limit string; every route in a bucket shares one counter per client ip
LIMITS: dict[str, str] = {
    "login": "5 per minute",
    "register": "5 per minute",
    "password_reset": "3 per hour",
    "webhook": "10 per minute",
}

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    strategy="moving-window",
)


class BlockStats:
    """Counts of requests turned away by the limiter, for the admin health page."""

    def __init__(self, recent_blocks: int = 100):
        self._lock = threading.Lock()
        self._recent_size = recent_blocks
        self.reset()

    def record(self, bucket: str, ip: str, now: datetime | None = None) -> None:
        with self._lock:
            self.total_blocked += 1
            self.blocked_by_bucket[bucket] += 1
            self.recent_blocks.appendleft({"bucket": bucket, "ip": ip, "at": now or datetime.utcnow()})

    def reset(self) -> None:
        with self._lock:
            self.total_blocked = 0
            self.blocked_by_bucket: dict[str, int] = defaultdict(int)
            self.recent_blocks: deque[dict[str, Any]] = deque(maxlen=self._recent_size)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "total_blocked": self.total_blocked,
                "blocked_by_bucket": dict(self.blocked_by_bucket),
                "recent_blocks": list(self.recent_blocks),
                "limits": dict(LIMITS),
            }


def get_block_stats() -> BlockStats:
    return current_app.extensions["rate_limit_stats"]


def _on_breach(bucket: str):
    def record(request_limit) -> None:
        ip = get_remote_address()
        current_app.logger.warning("Rate limit exceeded: bucket=%s ip=%s limit=%s", bucket, ip, LIMITS[bucket])
        get_block_stats().record(bucket, ip)

    return record


def rate_limited(bucket: str):
    """Apply the bucket's limit to a view. Place it below the route decorator."""
    return limiter.shared_limit(LIMITS[bucket], scope=bucket, on_breach=_on_breach(bucket))


def reset_limits() -> None:
    """Forget all request counters and block statistics."""
    if limiter.enabled:
        limiter.reset()
    get_block_stats().reset()


def init_rate_limiting(app) -> None:
    app.config["RATELIMIT_ENABLED"] = bool(app.config.get("RATE_LIMIT_ENABLED"))
    app.extensions["rate_limit_stats"] = BlockStats()
    limiter.init_app(app)

    @app.errorhandler(429)
    def _err_429(e):  # type: ignore[no-redef]
        if request.path == "/webhook":
            return jsonify({"error": TOO_MANY_REQUESTS_MESSAGE}), 429
        return render_template("errors/429.html", message=TOO_MANY_REQUESTS_MESSAGE), 429
