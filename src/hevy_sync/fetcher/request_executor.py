"""Guarded request execution: circuit breaker, retry with backoff, rate-limit tracking."""

import asyncio
from typing import Any, Dict, Optional

import httpx

from hevy_sync.fetcher.circuit_breaker import CircuitBreaker
from hevy_sync.fetcher.http_client import AsyncHTTPClient
from hevy_sync.fetcher.rate_limiter import RateLimitTracker
from hevy_sync.fetcher.retry_handler import RetryPolicy
from hevy_sync.models.data_models import RequestDescriptor, ResponseOutcome
from hevy_sync.models.errors import (
    ApiError,
    InvalidCredentialError,
    SyncError,
    TransportError,
)


API_KEY_HEADER = "api-key"
VALIDATION_ENDPOINT = "/workouts/count"
NOT_FOUND = 404
UNAUTHORIZED = 401


class RequestExecutor:
    """
    The only component that performs network I/O.

    Responsibilities:
    - Refuse requests while the circuit breaker is open (no network call)
    - Retry transport failures and retryable statuses with exponential backoff
    - Report the final outcome of each call to the circuit breaker once
    - Forward every response's headers to the rate-limit tracker
    """

    def __init__(
        self,
        http_client: AsyncHTTPClient,
        circuit_breaker: CircuitBreaker,
        retry_policy: RetryPolicy,
        rate_limit_tracker: RateLimitTracker,
        base_url: str,
        api_key: str,
        logger: Optional['StructuredLogger'] = None
    ):
        """
        Initialize executor with resilience components.

        Args:
            http_client: Makes HTTP requests with timeouts
            circuit_breaker: Rejects requests while the API is failing
            retry_policy: Decides what is retried and how long to back off
            rate_limit_tracker: Receives the headers of every response
            base_url: API base URL, e.g. https://api.hevyapp.com/v1
            api_key: Credential sent in the api-key header
            logger: Optional structured logger for telemetry
        """
        self.http_client = http_client
        self.circuit_breaker = circuit_breaker
        self.retry_policy = retry_policy
        self.rate_limit_tracker = rate_limit_tracker
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.logger = logger

    def build(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        method: str = "GET",
        body: Optional[Any] = None,
        timeout: Optional[float] = None
    ) -> RequestDescriptor:
        """Describe an authenticated request against the API."""
        clean_params = {k: v for k, v in (params or {}).items() if v is not None}
        return RequestDescriptor(
            method=method,
            url=f"{self.base_url}{path}",
            headers={API_KEY_HEADER: self.api_key, "Accept": "application/json"},
            params=clean_params or None,
            body=body,
            timeout=timeout,
        )

    async def execute(
        self,
        descriptor: RequestDescriptor,
        cancel_token: Optional['CancelToken'] = None,
        max_retries: Optional[int] = None
    ) -> ResponseOutcome:
        """
        Execute a request with retries.

        Args:
            descriptor: Request to perform
            cancel_token: Polled before every attempt
            max_retries: Override the policy's retry count for this call

        Returns:
            ResponseOutcome for a 2xx response

        Raises:
            CircuitOpenError: Breaker is open, no request was made
            InvalidCredentialError: 401, never retried
            ApiError: Non-retryable status, 404, or retries exhausted
            TransportError: Transport failure on the last attempt
            ImportTimeoutError: cancel_token fired between attempts
        """
        endpoint = descriptor.url
        holds_probe = self.circuit_breaker.check(endpoint)

        try:
            return await self._attempt_until_done(descriptor, cancel_token, max_retries)
        except BaseException:
            # Cancellation and unexpected errors never reach the breaker; free the probe slot
            if holds_probe:
                self.circuit_breaker.release_probe()
            raise

    async def _attempt_until_done(
        self,
        descriptor: RequestDescriptor,
        cancel_token: Optional['CancelToken'],
        max_retries: Optional[int]
    ) -> ResponseOutcome:
        endpoint = descriptor.url
        retries_allowed = self.retry_policy.max_retries if max_retries is None else max_retries
        attempt = 0

        while True:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled(
                    f"Timeout approaching before request to {endpoint}",
                    endpoint=endpoint,
                    attempt=attempt,
                )

            if self.logger:
                self.logger.fetch_start(source=endpoint, page=(descriptor.params or {}).get("page"))

            start = asyncio.get_running_loop().time()
            try:
                response = await self.http_client.send(descriptor)
            except httpx.HTTPError as e:
                error: SyncError = TransportError(
                    f"{type(e).__name__}: {e}" if str(e) else type(e).__name__,
                    context={"endpoint": endpoint},
                )
            else:
                elapsed_ms = (asyncio.get_running_loop().time() - start) * 1000
                self.rate_limit_tracker.observe(response.headers)
                outcome = ResponseOutcome(
                    status_code=response.status_code,
                    headers=response.headers,
                    body=response.text,
                )

                if outcome.ok:
                    self.circuit_breaker.record_success()
                    if self.logger:
                        self.logger.fetch_success(endpoint, outcome.status_code, elapsed_ms, attempt)
                    return outcome

                if outcome.status_code == NOT_FOUND:
                    # End of collection: the server answered coherently
                    self.circuit_breaker.record_success()
                    raise ApiError(
                        f"Not found: {endpoint}",
                        NOT_FOUND,
                        outcome.body,
                        context={"endpoint": endpoint, "attempt": attempt},
                    )

                error = self._error_for(outcome, endpoint)

            if self.logger:
                self.logger.fetch_error(
                    source=endpoint,
                    status=getattr(error, "status_code", None),
                    error=str(error),
                    attempt=attempt,
                )

            if attempt < retries_allowed and self.retry_policy.is_retryable(error):
                await self.retry_policy.backoff(attempt)
                attempt += 1
                continue

            self.circuit_breaker.record_failure(error)
            raise error.with_context(endpoint=endpoint, attempt=attempt)

    @staticmethod
    def _error_for(outcome: ResponseOutcome, endpoint: str) -> ApiError:
        if outcome.status_code == UNAUTHORIZED:
            return InvalidCredentialError(
                "Invalid API key. Please check your Hevy API key and try again.",
                body=outcome.body,
                context={"endpoint": endpoint},
            )
        return ApiError(
            f"Request to {endpoint} failed with status {outcome.status_code}",
            outcome.status_code,
            outcome.body,
            context={"endpoint": endpoint},
        )

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        cancel_token: Optional['CancelToken'] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None
    ) -> Any:
        """
        GET path and decode the JSON body.

        Raises:
            ApiError: When a 2xx body is not valid JSON (not retried)
        """
        outcome = await self.execute(
            self.build(path, params, timeout=timeout), cancel_token, max_retries
        )
        try:
            return outcome.json()
        except ValueError as e:
            raise ApiError(
                f"Invalid JSON from {path}: {e}",
                outcome.status_code,
                outcome.body,
                context={"endpoint": path},
            )

    async def validate_api_key(self, timeout: float = 15.0) -> bool:
        """
        Check the credential with one lightweight request and no retries.

        Raises:
            InvalidCredentialError: The API rejected the key
            TransportError: The API could not be reached
        """
        descriptor = self.build(VALIDATION_ENDPOINT, timeout=timeout)
        await self.execute(descriptor, max_retries=0)
        return True
