"""
Service facade — the operations poetloop exposes, in one place.

Validates identifiers, turns JSON messages into ChatMessage values, reads
the clock, and hands work to the store, the chat orchestrator and the poet
engine. Nothing below this layer reads the clock or builds backends.

evolve_poet is the only operation with an explicit Ok/Err result; the
others return plain values or raise a PoetLoopError subclass.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

from poetloop.chat.messages import (
    AssistantMessage,
    ChatMessage,
    SystemMessage,
    UserMessage,
    content_of,
    drop_orphan_tool_replies,
    from_wire,
)
from poetloop.chat.orchestrator import ChatOrchestrator
from poetloop.errors import InvalidRequest, NotFound, PoetLoopError
from poetloop.poet.engine import PoetEngine
from poetloop.storage.models import (
    Conversation,
    ConversationWithMessages,
    PoemCycle,
    PoetState,
    StoredMessage,
)
from poetloop.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

# SQLite integers are signed 64-bit.
MAX_ID = 2**63 - 1
TITLE_MAX_CHARS = 50
DEFAULT_TITLE = "New conversation"


@dataclass
class EvolveResult:
    """Ok(PoemCycle) or Err(description)."""
    ok: PoemCycle | None = None
    err: str | None = None

    def to_dict(self) -> dict:
        if self.ok is not None:
            return {"Ok": self.ok.to_dict()}
        return {"Err": self.err}


def validate_id(value, what: str = "id") -> int:
    """Accept a non-negative integer (or a string of digits)."""
    if isinstance(value, bool):
        raise InvalidRequest(f"Invalid {what}: {value!r}")
    if isinstance(value, str) and value.strip().isdecimal():
        value = int(value.strip())
    if not isinstance(value, int) or value < 0 or value > MAX_ID:
        raise InvalidRequest(f"Invalid {what}: {value!r}")
    return value


def coerce_messages(messages) -> list[ChatMessage]:
    if not isinstance(messages, (list, tuple)):
        raise InvalidRequest("messages must be a list")
    return [m if not isinstance(m, dict) else from_wire(m) for m in messages]


def _title_from(messages: list[ChatMessage]) -> str:
    for msg in messages:
        if isinstance(msg, UserMessage) and msg.content.strip():
            text = " ".join(msg.content.split())
            return text[:TITLE_MAX_CHARS]
    return DEFAULT_TITLE


def _replayable(stored: list[StoredMessage]) -> list[ChatMessage]:
    """Stored transcript as chat messages. Tool replies and empty turns are skipped."""
    history: list[ChatMessage] = []
    for m in stored:
        if m.role == "system":
            history.append(SystemMessage(m.content))
        elif m.role == "user":
            history.append(UserMessage(m.content))
        elif m.role == "assistant" and m.content:
            history.append(AssistantMessage(content=m.content))
    return history


class PoetLoopService:
    def __init__(
        self,
        store: SQLiteStore,
        orchestrator: ChatOrchestrator,
        engine: PoetEngine,
        clock: Callable[[], int] = time.time_ns,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.engine = engine
        self.clock = clock
        self._evolve_lock = asyncio.Lock()
        self._conversation_lock = asyncio.Lock()

    # ─ Chat ───────────────────────────────────────────────────────────────

    async def chat(self, messages) -> str:
        return await self.orchestrator.run(coerce_messages(messages))

    async def chat_with_storage(self, conversation_id, messages) -> tuple[int, str]:
        """
        Chat and persist the exchange. Without an id a conversation is
        created; with one, its stored transcript is replayed first.
        Nothing is written unless generation succeeds.
        """
        # Replayed history carries no tool calls, so filtering the request
        # alone matches what the orchestrator will send.
        incoming = drop_orphan_tool_replies(coerce_messages(messages))
        if not incoming:
            raise InvalidRequest("messages must not be empty")

        if conversation_id is not None:
            conversation_id = validate_id(conversation_id, "conversation id")
            if self.store.get_conversation(conversation_id) is None:
                raise NotFound(f"Conversation {conversation_id} not found")
            history = _replayable(self.store.get_messages(conversation_id))
        else:
            history = []

        received_at = self.clock()
        reply = await self.orchestrator.run(history + incoming)
        replied_at = self.clock()

        to_store = [StoredMessage(m.role, content_of(m), received_at) for m in incoming]
        to_store.append(StoredMessage("assistant", reply, replied_at))

        async with self._conversation_lock:
            if conversation_id is None:
                conversation_id = self.store.create_conversation_with_messages(
                    _title_from(incoming), to_store, received_at, replied_at
                ).id
            else:
                self.store.append_messages(conversation_id, to_store, replied_at)

        logger.debug("Stored %d messages in conversation %d", len(to_store), conversation_id)
        return conversation_id, reply

    async def backend_status(self) -> dict:
        """Reachability and advertised models of the generation backend."""
        backend = self.orchestrator.backend
        healthy = await backend.health_check()
        return {
            "name": backend.name,
            "url": backend.url,
            "model": self.orchestrator.model,
            "healthy": healthy,
            "models": await backend.list_models() if healthy else [],
        }

    async def prompt(self, text: str) -> str:
        """Single free-form completion, nothing stored."""
        if not isinstance(text, str) or not text.strip():
            raise InvalidRequest("prompt must be a non-empty string")
        return await self.orchestrator.run([UserMessage(text)])

    # ─ Conversations ──────────────────────────────────────────────────────

    def get_conversations(self) -> list[Conversation]:
        return self.store.list_conversations()

    def get_conversation_messages(self, conversation_id) -> list[StoredMessage]:
        return self.store.get_messages(validate_id(conversation_id, "conversation id"))

    def get_conversation_with_messages(self, conversation_id) -> ConversationWithMessages | None:
        return self.store.get_conversation_with_messages(
            validate_id(conversation_id, "conversation id")
        )

    def update_conversation_title(self, conversation_id, title: str) -> bool:
        if not isinstance(title, str):
            raise InvalidRequest("title must be a string")
        return self.store.rename_conversation(
            validate_id(conversation_id, "conversation id"), title
        )

    def delete_conversation(self, conversation_id) -> bool:
        return self.store.delete_conversation(validate_id(conversation_id, "conversation id"))

    # ─ Poet ───────────────────────────────────────────────────────────────

    async def evolve_poet(self) -> EvolveResult:
        async with self._evolve_lock:
            try:
                cycle = await self.engine.evolve(self.clock())
            except PoetLoopError as e:
                logger.warning("Evolution failed: %s", e)
                return EvolveResult(err=str(e))
        return EvolveResult(ok=cycle)

    def get_current_poem(self) -> PoemCycle | None:
        return self.store.get_current_poem()

    def get_poem_by_cycle(self, cycle_number) -> PoemCycle | None:
        return self.store.get_poem_by_cycle(validate_id(cycle_number, "cycle number"))

    def get_all_poems(self) -> list[PoemCycle]:
        return self.store.list_all_poems()

    def get_poet_state(self) -> PoetState | None:
        return self.store.get_poet_state()

    async def reset_poet(self) -> bool:
        """Waits for any in-flight evolution in this process before clearing."""
        async with self._evolve_lock:
            return self.engine.reset()

    def is_poet_initialized(self) -> bool:
        return self.store.get_poet_state() is not None

    def get_poem_count(self) -> int:
        state = self.store.get_poet_state()
        return state.total_poems if state else 0

    def get_generation_stats(self) -> dict:
        return self.store.get_generation_stats()

    def set_next_prompt(self, next_prompt: str) -> bool:
        if not isinstance(next_prompt, str) or not next_prompt.strip():
            raise InvalidRequest("next_prompt must be a non-empty string")
        return self.store.set_next_prompt(next_prompt.strip())

    def get_raw_response(self, cycle_number) -> str | None:
        return self.store.get_raw_response(validate_id(cycle_number, "cycle number"))


def build_service(cfg: dict) -> PoetLoopService:
    """Wire store, backend, tools, orchestrator and engine from config."""
    from poetloop.backends import make_backend
    from poetloop.poet.scorer import StyleScorer
    from poetloop.tools.registry import ToolRegistry

    backend_cfg = cfg.get("backend", {})
    poet_cfg = cfg.get("poet", {})

    store = SQLiteStore(cfg.get("storage", {}).get("sqlite_path", "./data/poetloop.db"))
    orchestrator = ChatOrchestrator(
        backend=make_backend(backend_cfg),
        tool_registry=ToolRegistry(cfg.get("tools", {})),
        model=backend_cfg.get("model", ""),
        max_tool_rounds=cfg.get("chat", {}).get("max_tool_rounds", 8),
        temperature=backend_cfg.get("temperature"),
    )
    scorer = StyleScorer() if poet_cfg.get("scoring", {}).get("enabled", True) else None
    engine = PoetEngine.from_config(store, orchestrator, poet_cfg, scorer=scorer)
    return PoetLoopService(store, orchestrator, engine)
