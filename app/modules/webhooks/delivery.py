"""
Outbound webhook delivery over HTTP.

Retries server errors (5xx), timeouts and connection errors with exponential
backoff, honours Retry-After on 429 up to MAX_RETRY_AFTER_SEC, and gives up
immediately on any other 4xx.
"""
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

from app.config import settings
from app.modules.webhooks.signature import sign_payload, SIGNATURE_PREFIX

logger = logging.getLogger(__name__)

MAX_RETRY_AFTER_SEC = 60.0


@dataclass
class DeliveryResult:
    success: bool
    url: str
    method: str
    status_code: Optional[int] = None
    response_body: Optional[Any] = None
    error: Optional[str] = None
    attempts: int = 0
    duration_ms: float = 0.0


class WebhookDeliveryClient:
    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout = timeout or settings.webhook_delivery_timeout
        self._transport = transport
        self._sleep = sleep

    def send(
        self,
        url: str,
        payload: Dict[str, Any],
        method: str = "POST",
        headers: Optional[Dict[str, str]] = None,
        secret: Optional[str] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ) -> DeliveryResult:
        """Send payload as JSON. max_retries counts retries after the first attempt."""
        body = json.dumps(payload, default=str)
        request_headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if headers:
            request_headers.update(headers)
        if secret:
            request_headers[settings.webhook_signature_header] = f"{SIGNATURE_PREFIX}{sign_payload(body, secret)}"

        start = time.monotonic()
        total_attempts = max_retries + 1
        result = DeliveryResult(success=False, url=url, method=method)

        with httpx.Client(timeout=self.timeout, transport=self._transport, follow_redirects=True) as client:
            for attempt in range(1, total_attempts + 1):
                result.attempts = attempt
                delay = retry_delay * (2 ** (attempt - 1))
                try:
                    if method == "GET":
                        response = client.request(method, url, params=payload, headers=request_headers)
                    else:
                        response = client.request(method, url, content=body, headers=request_headers)
                except httpx.TimeoutException:
                    logger.warning(f"Webhook to {url[:100]} timed out (attempt {attempt}/{total_attempts})")
                    result.error = f"Timeout after {self.timeout}s"
                except httpx.RequestError as e:
                    logger.warning(f"Webhook to {url[:100]} failed to connect (attempt {attempt}/{total_attempts}): {e}")
                    result.error = f"Connection error: {e}"
                else:
                    result.status_code = response.status_code
                    try:
                        result.response_body = response.json()
                    except ValueError:
                        result.response_body = response.text[:500] or None

                    if response.status_code < 400:
                        result.success = True
                        result.error = None
                        break

                    if response.status_code == 429:
                        result.error = "Rate limit exceeded"
                        retry_after = _parse_retry_after(response.headers.get("Retry-After"))
                        if retry_after is None or retry_after > MAX_RETRY_AFTER_SEC:
                            break
                        delay = retry_after
                    elif response.status_code >= 500:
                        result.error = f"Server error ({response.status_code})"
                    else:
                        result.error = f"Client error ({response.status_code})"
                        logger.warning(f"Webhook to {url[:100]} rejected with {response.status_code}, not retrying")
                        break

                if attempt < total_attempts:
                    logger.info(f"Retrying webhook to {url[:100]} in {delay}s")
                    self._sleep(delay)

        result.duration_ms = round((time.monotonic() - start) * 1000, 2)
        if result.success:
            logger.debug(f"Webhook delivered to {url[:100]} in {result.duration_ms}ms after {result.attempts} attempt(s)")
        else:
            logger.error(f"Webhook delivery to {url[:100]} failed after {result.attempts} attempt(s): {result.error}")
        return result


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None
