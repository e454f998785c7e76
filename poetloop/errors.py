"""
Error types shared by the store, the chat orchestrator and the poet engine.

Every error carries a human-readable message; the service facade hands
str(error) back to callers unchanged.
"""

from __future__ import annotations


class PoetLoopError(Exception):
    """Base class for all poetloop failures."""


class NotFound(PoetLoopError):
    """A conversation or poem cycle id does not exist."""


class InvalidRequest(PoetLoopError):
    """Malformed identifier or request payload."""


class EmptyResponse(PoetLoopError):
    """The generation backend answered with neither content nor tool calls."""


class ToolLoopExceeded(PoetLoopError):
    """The model kept requesting tools past the configured round limit."""

    def __init__(self, max_rounds: int):
        super().__init__(f"Tool calling did not finish within {max_rounds} rounds")
        self.max_rounds = max_rounds


class MalformedGeneration(PoetLoopError):
    """A poet reply could not be split into title, poem and next prompt."""


class UnknownTool(PoetLoopError):
    """A tool call named a function that is not registered."""

    def __init__(self, name: str, available: list[str] | None = None):
        available_str = ", ".join(available or []) or "none"
        super().__init__(f"Error: unknown tool '{name}'. Available: {available_str}")
        self.name = name


class ExternalCapabilityFailure(PoetLoopError):
    """The generation or tool backend errored or timed out."""


class StoreIntegrityError(PoetLoopError):
    """A write would break a uniqueness constraint in the store."""


class ConcurrentUpdate(PoetLoopError):
    """The poet state changed between reading it and committing a new cycle."""
