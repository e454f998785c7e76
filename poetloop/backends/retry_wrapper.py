"""
Retry wrapper for backends with exponential backoff.

Wraps any backend to add retry logic for transient errors:
- 404: Model loading, not found
- 429: Rate limited
- 5xx: Server errors (504 is also what a client-side timeout reports)

Non-retried errors (permanent):
- 401, 403: Auth/permission errors
- 400: Bad request
- 0: connection refused / transport error
"""

from __future__ import annotations

import asyncio
import logging

from poetloop.backends.base import BaseBackend, BackendResponse

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (404, 429, 500, 502, 503, 504)


class RetryableBackendWrapper(BaseBackend):
    """
    Wraps any backend with exponential backoff retry logic.
    Looks like a backend to everything that holds it.
    """

    def __init__(
        self,
        backend: BaseBackend,
        max_retries: int = 2,
        backoff_base: float = 1.5,
        backoff_max: float = 10.0,
    ):
        super().__init__(backend.name, backend.url, backend.timeout)
        self.backend = backend
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max

    def _is_retryable(self, status_code: int) -> bool:
        """Determine if a failure is retryable (transient)."""
        return status_code in RETRYABLE_STATUS

    def _backoff_seconds(self, attempt: int) -> float:
        """Calculate backoff time for attempt N (exponential)."""
        delay = self.backoff_base ** attempt
        return min(delay, self.backoff_max)

    async def forward(self, body: dict) -> BackendResponse:
        """Forward with retry on transient errors."""
        model = body.get("model", "")

        response = await self.backend.forward(body)
        for attempt in range(1, self.max_retries + 1):
            if response.ok or not self._is_retryable(response.status_code):
                return response

            backoff = self._backoff_seconds(attempt)
            logger.warning(
                "Backend '%s' transient %d for '%s', retry in %.1fs (%d/%d)",
                self.name,
                response.status_code,
                model,
                backoff,
                attempt,
                self.max_retries,
            )
            await asyncio.sleep(backoff)
            response = await self.backend.forward(body)

        if not response.ok and self._is_retryable(response.status_code):
            logger.error(
                "Backend '%s' exhausted retries for '%s' (last: %s)",
                self.name,
                model,
                response.error,
            )
        return response

    async def health_check(self) -> bool:
        """Delegate to wrapped backend."""
        return await self.backend.health_check()

    async def list_models(self) -> list[str]:
        """Delegate to wrapped backend."""
        return await self.backend.list_models()
