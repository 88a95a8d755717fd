"""
Completion client used by the ``/v1/ai/complete`` route.
"""

import asyncio
from typing import Dict, Optional

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError as PydanticValidationError

from shared.errors import (
    AdapterError,
    AdapterStatusError,
    BackendUnavailableError,
    InvalidBackendResponseError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, retry_async


class AdapterCompletion(BaseModel):
    """The only part of an adapter response the gateway relies on."""

    completion: Optional[str] = None


# A JSON `null` body decodes to no completion rather than an error
_completion_body = TypeAdapter(Optional[AdapterCompletion])


class CompletionClient:
    """POST ``{prompt, model}`` to ``{base_url}/complete`` with bounded retries.

    Every failure mode (transport error, non-2xx status, undecodable 2xx body)
    counts as transient. Attempts are sequential with linear backoff and the
    last error is raised unchanged once the budget is spent.
    """

    def __init__(self,
                 timeout: float = 2.0,
                 max_attempts: int = 3,
                 backoff_seconds: float = 0.1,
                 service_token: str = "internal-service",
                 client: Optional[httpx.AsyncClient] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.timeout = timeout
        self.service_token = service_token
        self.metrics = metrics
        self.logger = get_logger("gateway.completion_client")
        self.retry_config = RetryConfig(
            max_attempts=max_attempts,
            base_delay=backoff_seconds,
            max_delay=backoff_seconds * max_attempts
        )
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def build_headers(self, authorization: Optional[str] = None,
                      test_fail: Optional[str] = None) -> Dict[str, str]:
        """Headers for one attempt; the backend always sees an Authorization header."""
        headers = {"content-type": "application/json"}
        if authorization and authorization.strip():
            headers["Authorization"] = authorization
        else:
            headers["Authorization"] = f"Bearer {self.service_token}"
        if test_fail:
            headers["x-test-fail"] = test_fail
        return headers

    async def complete(self, base_url: str, prompt: str, model: str,
                       authorization: Optional[str] = None,
                       test_fail: Optional[str] = None) -> str:
        """Return the ``completion`` text from the adapter or raise ``AdapterError``."""
        url = base_url.rstrip("/") + "/complete"
        payload = {"prompt": prompt, "model": model}
        headers = self.build_headers(authorization, test_fail)

        return await retry_async(
            self._attempt,
            url,
            payload,
            headers,
            model,
            config=self.retry_config,
            exceptions=(AdapterError,),
            name="adapter_complete"
        )

    async def _attempt(self, url: str, payload: Dict[str, str], headers: Dict[str, str],
                       model: str) -> str:
        try:
            response = await asyncio.wait_for(
                self._client.post(url, json=payload, headers=headers, timeout=self.timeout),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            self._record(model, "timeout")
            raise BackendUnavailableError(
                f"adapter request timed out after {self.timeout:g}s",
                details={"model": model}
            )
        except httpx.HTTPError as e:
            self._record(model, "unavailable")
            raise BackendUnavailableError(str(e) or repr(e), details={"model": model})

        if not 200 <= response.status_code < 300:
            self._record(model, "bad_status")
            raise AdapterStatusError(response.status_code, response.reason_phrase)

        try:
            parsed = _completion_body.validate_json(response.content)
        except PydanticValidationError as e:
            self._record(model, "invalid_response")
            raise InvalidBackendResponseError(
                f"invalid adapter response: {e.errors(include_url=False)[0]['msg']}",
                details={"model": model}
            )

        self._record(model, "success")
        if parsed is None:
            return ""
        return parsed.completion or ""

    def _record(self, model: str, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_completion_attempt(model, outcome)
