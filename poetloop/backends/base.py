"""
Base backend abstraction.
A backend is the generation capability: OpenAI-format chat request in,
BackendResponse out. Transport problems are reported through
BackendResponse.ok / .error rather than raised.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class BackendResponse:
    """Standardized response from any backend."""
    ok: bool
    status_code: int = 200
    data: dict = field(default_factory=dict)
    backend_name: str = ""
    latency_ms: float = 0.0
    error: str = ""

    @property
    def message(self) -> dict:
        """The first choice's assistant message, or {}."""
        choices = self.data.get("choices", [])
        if choices:
            return choices[0].get("message", {}) or {}
        return {}

    @property
    def content(self) -> str:
        """Extract assistant content from response data."""
        return self.message.get("content") or ""


class BaseBackend(abc.ABC):
    """
    Abstract base for LLM backends.
    Each backend knows how to forward requests and report health.
    """

    def __init__(self, name: str, url: str, timeout: int = 120):
        self.name = name
        self.url = url.rstrip("/")
        self.timeout = timeout

    @abc.abstractmethod
    async def forward(self, body: dict) -> BackendResponse:
        """
        Forward a chat completion request.
        Body is OpenAI-compatible format.
        Returns BackendResponse with data or error.
        """
        ...

    async def health_check(self) -> bool:
        """Check if this backend is reachable and responsive."""
        return True

    async def list_models(self) -> list[str]:
        """Return list of available model names on this backend."""
        return []

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} url={self.url!r}>"
