from datetime import datetime, timedelta
from typing import Optional

from app.config import settings
from app.core.timeutils import utcnow


def backoff_seconds(retry_count: int, base: Optional[float] = None, maximum: Optional[float] = None) -> float:
    """Exponential backoff: base * 2^(retry_count - 1), capped at maximum."""
    base = settings.webhook_retry_base_delay if base is None else base
    maximum = settings.webhook_retry_max_delay if maximum is None else maximum
    exponent = max(retry_count - 1, 0)
    return min(base * (2 ** exponent), maximum)


def next_retry_at(retry_count: int, max_retries: Optional[int] = None, now: Optional[datetime] = None) -> Optional[datetime]:
    """When a failed event should be retried, or None once it has used all attempts."""
    max_retries = settings.webhook_max_retries if max_retries is None else max_retries
    if retry_count >= max_retries:
        return None
    return (now or utcnow()) + timedelta(seconds=backoff_seconds(retry_count))
