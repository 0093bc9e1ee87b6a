"""
Outbound webhook action.
"""

from typing import Any, Mapping, Optional
from urllib.parse import urlsplit

import httpx

from shared.circuit_breaker import CircuitBreakerManager, CircuitBreakerOpenException
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception

from .registry import ActionHandler, HandlerResult

ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")


class CallWebhookHandler(ActionHandler):
    """POST (or another method) the payload to an external URL.

    Transport errors and 5xx responses are retried with backoff; 4xx responses
    fail immediately. Each target host has its own circuit breaker.
    """

    action_type = "call_webhook"
    description = "Call an external webhook with the payload"
    required_config = ("url",)

    def __init__(self, timeout: float = 5.0, retry_config: Optional[RetryConfig] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 breakers: Optional[CircuitBreakerManager] = None,
                 failure_threshold: int = 5, recovery_timeout: float = 60.0):
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig(max_attempts=3, base_delay=0.5, max_delay=5.0)
        self.transport = transport
        self.breakers = breakers or CircuitBreakerManager()
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.logger = get_logger("automation.actions.webhook")

    async def _send(self, method: str, url: str, headers: Mapping[str, str], body: Any) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            if method == "GET":
                response = await client.request(method, url, headers=dict(headers))
            else:
                response = await client.request(method, url, headers=dict(headers), json=body)

        if response.status_code >= 500:
            response.raise_for_status()
        return response

    async def execute(self, config: Mapping[str, Any], payload: Mapping[str, Any]) -> HandlerResult:
        url = config.get("url")
        if not url:
            return HandlerResult.fail("No webhook URL provided")

        host = urlsplit(str(url)).netloc
        if not host:
            return HandlerResult.fail(f"Invalid webhook URL: {url}")

        method = str(config.get("method") or "POST").upper()
        if method not in ALLOWED_METHODS:
            return HandlerResult.fail(f"Unsupported webhook method: {method}")

        headers = {"Content-Type": "application/json"}
        headers.update(config.get("headers") or {})
        body = config.get("body", payload)

        send = retry_on_exception(
            (httpx.TransportError, httpx.HTTPStatusError), self.retry_config
        )(self._send)
        breaker = self.breakers.get_circuit_breaker(
            f"webhook:{host}",
            failure_threshold=self.failure_threshold,
            recovery_timeout=self.recovery_timeout,
        )

        try:
            response = await breaker.call(send, method, str(url), headers, body)
        except CircuitBreakerOpenException as e:
            return HandlerResult.fail(str(e))
        except RetryError as e:
            self.logger.warning(
                "Webhook call failed",
                url=url,
                attempts=e.attempts,
                circuit_state=breaker.state.value,
                error=str(e.last_exception)
            )
            return HandlerResult.fail(
                f"Webhook call failed after {e.attempts} attempts: {e.last_exception}"
            )

        output = {"url": str(url), "method": method, "statusCode": response.status_code}
        if response.status_code >= 400:
            return HandlerResult.fail(f"Webhook returned HTTP {response.status_code}", output=output)

        self.logger.info("Webhook called", url=url, method=method, status_code=response.status_code)
        return HandlerResult.ok(output)
