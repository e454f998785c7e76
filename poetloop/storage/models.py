"""
Data models for conversation and poem storage.
These define the shape of every record the store hands out.

All timestamps are integer nanoseconds since the Unix epoch.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field


@dataclass
class StoredMessage:
    """A single persisted message. Immutable once written."""
    role: str = ""           # "user", "assistant", "system", "tool"
    content: str = ""
    timestamp: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Conversation:
    """Conversation metadata. Messages live in their own table."""
    id: int
    title: str
    created_at: int
    updated_at: int
    message_count: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ConversationWithMessages:
    """Read-only join of a conversation and its full transcript."""
    conversation: Conversation
    messages: list[StoredMessage] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "conversation": self.conversation.to_dict(),
            "messages": [m.to_dict() for m in self.messages],
        }


@dataclass
class PoemCycle:
    """One generation step of the evolving poem."""
    id: int
    cycle_number: int
    title: str
    poem: str
    next_prompt: str
    created_at: int
    bukowski_style_score: float | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PoetState:
    """The poet's singleton progress record."""
    genesis_prompt: str
    current_cycle: int = 0
    total_poems: int = 0
    last_updated: int = 0

    def to_dict(self) -> dict:
        return asdict(self)
