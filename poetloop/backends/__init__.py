"""
Generation backends for poetloop.
Any OpenAI-compatible endpoint, optionally wrapped with retry/backoff.
"""
from poetloop.backends.base import BaseBackend, BackendResponse
from poetloop.backends.openai_compat import OpenAICompatibleBackend
from poetloop.backends.retry_wrapper import RetryableBackendWrapper


def make_backend(backend_cfg: dict) -> BaseBackend:
    """Build the configured backend, wrapped with retries unless max_retries is 0."""
    backend = OpenAICompatibleBackend(
        name=backend_cfg.get("name", "default"),
        url=backend_cfg.get("url", "http://localhost:11434"),
        timeout=backend_cfg.get("timeout", 120),
        api_key=backend_cfg.get("api_key", ""),
    )
    max_retries = backend_cfg.get("max_retries", 2)
    if max_retries <= 0:
        return backend
    return RetryableBackendWrapper(
        backend,
        max_retries=max_retries,
        backoff_base=backend_cfg.get("backoff_base", 1.5),
        backoff_max=backend_cfg.get("backoff_max", 10.0),
    )


__all__ = [
    "BaseBackend",
    "BackendResponse",
    "OpenAICompatibleBackend",
    "RetryableBackendWrapper",
    "make_backend",
]
