"""
SQLite storage for conversations, messages and the poet's history.
This is the source of truth - every message, every poem, every cycle.
Single portable file. Query with SQL.

The store never reads the clock: callers pass timestamps in. Reads of
missing records return empty lists or None. Writes are serialised by one
lock and each runs in a single transaction, so a failed write leaves
nothing behind.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path

from poetloop.errors import ConcurrentUpdate, NotFound, StoreIntegrityError
from poetloop.storage.models import (
    Conversation,
    ConversationWithMessages,
    PoemCycle,
    PoetState,
    StoredMessage,
)

logger = logging.getLogger(__name__)

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS conversations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    message_count INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS messages (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id INTEGER NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    FOREIGN KEY (conversation_id) REFERENCES conversations(id)
);

CREATE TABLE IF NOT EXISTS poem_cycles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    cycle_number INTEGER NOT NULL UNIQUE,
    title TEXT NOT NULL,
    poem TEXT NOT NULL,
    next_prompt TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    bukowski_style_score REAL DEFAULT NULL,
    generation_method TEXT NOT NULL DEFAULT 'primary',
    raw_response TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS poet_state (
    singleton INTEGER PRIMARY KEY CHECK (singleton = 0),
    genesis_prompt TEXT NOT NULL,
    current_cycle INTEGER NOT NULL,
    total_poems INTEGER NOT NULL,
    last_updated INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages(conversation_id, seq);
CREATE INDEX IF NOT EXISTS idx_conversations_updated
    ON conversations(updated_at);
"""

# Raw replies are kept for debugging only; cap what we hold on to.
RAW_RESPONSE_MAX_CHARS = 5000


class SQLiteStore:
    """Thread-safe SQLite store for conversations and poem cycles."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript(CREATE_TABLES)
        logger.info("SQLite store initialized at %s", self.db_path)

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _write(self):
        """One write transaction, serialised against every other writer."""
        with self._write_lock:
            try:
                with self._connect() as conn:
                    yield conn
            except sqlite3.IntegrityError as e:
                raise StoreIntegrityError(str(e)) from e

    # ─ Row conversion ─────────────────────────────────────────────────────

    @staticmethod
    def _row_to_conversation(row) -> Conversation:
        return Conversation(
            id=row["id"],
            title=row["title"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            message_count=row["message_count"],
        )

    @staticmethod
    def _row_to_cycle(row) -> PoemCycle:
        return PoemCycle(
            id=row["id"],
            cycle_number=row["cycle_number"],
            title=row["title"],
            poem=row["poem"],
            next_prompt=row["next_prompt"],
            created_at=row["created_at"],
            bukowski_style_score=row["bukowski_style_score"],
        )

    # ─ Conversations ──────────────────────────────────────────────────────

    def create_conversation(self, title: str, now: int) -> Conversation:
        """Allocate the next conversation id. Both timestamps are set to now."""
        with self._write() as conn:
            cur = conn.execute(
                """INSERT INTO conversations (title, created_at, updated_at, message_count)
                   VALUES (?, ?, ?, 0)""",
                (title, now, now),
            )
            conv_id = cur.lastrowid
        logger.debug("Created conversation %d (%r)", conv_id, title)
        return Conversation(id=conv_id, title=title, created_at=now, updated_at=now)

    @staticmethod
    def _insert_messages(conn, conversation_id: int, messages: list[StoredMessage], now: int):
        conn.executemany(
            """INSERT INTO messages (conversation_id, role, content, timestamp)
               VALUES (?, ?, ?, ?)""",
            [(conversation_id, m.role, m.content, m.timestamp) for m in messages],
        )
        conn.execute(
            """UPDATE conversations
               SET message_count = message_count + ?, updated_at = ?
               WHERE id = ?""",
            (len(messages), now, conversation_id),
        )
        return conn.execute(
            "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
        ).fetchone()

    def create_conversation_with_messages(
        self,
        title: str,
        messages: list[StoredMessage],
        created_at: int,
        updated_at: int,
    ) -> Conversation:
        """Create a conversation and its first messages in one transaction."""
        with self._write() as conn:
            cur = conn.execute(
                """INSERT INTO conversations (title, created_at, updated_at, message_count)
                   VALUES (?, ?, ?, 0)""",
                (title, created_at, created_at),
            )
            row = self._insert_messages(conn, cur.lastrowid, messages, updated_at)
        logger.debug("Created conversation %d with %d messages", row["id"], len(messages))
        return self._row_to_conversation(row)

    def get_conversation(self, conversation_id: int) -> Conversation | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
        return self._row_to_conversation(row) if row else None

    def append_messages(
        self,
        conversation_id: int,
        messages: list[StoredMessage],
        now: int,
    ) -> Conversation:
        """
        Append messages in order and bump message_count / updated_at.
        All or nothing: raises NotFound (and writes nothing) for an unknown id.
        """
        with self._write() as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
            if row is None:
                raise NotFound(f"Conversation {conversation_id} not found")
            updated = self._insert_messages(conn, conversation_id, messages, now)
        logger.debug("Appended %d messages to conversation %d", len(messages), conversation_id)
        return self._row_to_conversation(updated)

    def list_conversations(self) -> list[Conversation]:
        """All conversations, most recently updated first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM conversations ORDER BY updated_at DESC, id DESC"
            ).fetchall()
        return [self._row_to_conversation(r) for r in rows]

    def get_messages(self, conversation_id: int) -> list[StoredMessage]:
        """Messages in append order. Empty list for an unknown conversation."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT role, content, timestamp FROM messages
                   WHERE conversation_id = ? ORDER BY seq""",
                (conversation_id,),
            ).fetchall()
        return [
            StoredMessage(role=r["role"], content=r["content"], timestamp=r["timestamp"])
            for r in rows
        ]

    def get_conversation_with_messages(
        self, conversation_id: int
    ) -> ConversationWithMessages | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
            if row is None:
                return None
            msg_rows = conn.execute(
                """SELECT role, content, timestamp FROM messages
                   WHERE conversation_id = ? ORDER BY seq""",
                (conversation_id,),
            ).fetchall()
        return ConversationWithMessages(
            conversation=self._row_to_conversation(row),
            messages=[
                StoredMessage(role=r["role"], content=r["content"], timestamp=r["timestamp"])
                for r in msg_rows
            ],
        )

    def delete_conversation(self, conversation_id: int) -> bool:
        """Remove a conversation and its messages together."""
        with self._write() as conn:
            conn.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
            cur = conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
            deleted = cur.rowcount > 0
        if deleted:
            logger.info("Deleted conversation %d", conversation_id)
        return deleted

    def rename_conversation(self, conversation_id: int, title: str) -> bool:
        """Metadata-only edit: updated_at is left alone."""
        with self._write() as conn:
            cur = conn.execute(
                "UPDATE conversations SET title = ? WHERE id = ?",
                (title, conversation_id),
            )
            return cur.rowcount > 0

    # ─ Poem cycles ────────────────────────────────────────────────────────

    @staticmethod
    def _insert_cycle(conn, cycle: PoemCycle, raw_response: str, generation_method: str) -> int:
        params = (
            cycle.cycle_number,
            cycle.title,
            cycle.poem,
            cycle.next_prompt,
            cycle.created_at,
            cycle.bukowski_style_score,
            generation_method,
            raw_response[:RAW_RESPONSE_MAX_CHARS],
        )
        if cycle.id:
            conn.execute(
                """INSERT INTO poem_cycles
                   (id, cycle_number, title, poem, next_prompt, created_at,
                    bukowski_style_score, generation_method, raw_response)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (cycle.id, *params),
            )
            return cycle.id
        cur = conn.execute(
            """INSERT INTO poem_cycles
               (cycle_number, title, poem, next_prompt, created_at,
                bukowski_style_score, generation_method, raw_response)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            params,
        )
        return cur.lastrowid

    @staticmethod
    def _upsert_state(conn, state: PoetState):
        conn.execute(
            """INSERT OR REPLACE INTO poet_state
               (singleton, genesis_prompt, current_cycle, total_poems, last_updated)
               VALUES (0, ?, ?, ?, ?)""",
            (state.genesis_prompt, state.current_cycle, state.total_poems, state.last_updated),
        )

    def put_poem_cycle(
        self,
        cycle: PoemCycle,
        raw_response: str = "",
        generation_method: str = "primary",
    ) -> PoemCycle:
        """
        Insert a cycle. An id of 0 asks the store to allocate one.
        Returns the cycle as stored (with its id).
        """
        with self._write() as conn:
            new_id = self._insert_cycle(conn, cycle, raw_response, generation_method)
        cycle.id = new_id
        return cycle

    def commit_evolution(
        self,
        cycle: PoemCycle,
        state: PoetState,
        raw_response: str = "",
        generation_method: str = "primary",
        expected_cycle: int | None = None,
    ) -> PoemCycle:
        """
        Write a new cycle and the advanced poet state in one transaction.

        With expected_cycle set, the commit only goes through if the stored
        current_cycle (0 when uninitialized) still equals it; otherwise
        ConcurrentUpdate is raised and nothing is written.
        """
        with self._write() as conn:
            if expected_cycle is not None:
                row = conn.execute(
                    "SELECT current_cycle FROM poet_state WHERE singleton = 0"
                ).fetchone()
                found = row["current_cycle"] if row else 0
                if found != expected_cycle:
                    raise ConcurrentUpdate(
                        f"Poet state moved from cycle {expected_cycle} to {found} "
                        f"while cycle {cycle.cycle_number} was being written"
                    )
            new_id = self._insert_cycle(conn, cycle, raw_response, generation_method)
            self._upsert_state(conn, state)
        cycle.id = new_id
        logger.info(
            "Committed poem cycle %d (id=%d, method=%s)",
            cycle.cycle_number, new_id, generation_method,
        )
        return cycle

    def get_current_poem(self) -> PoemCycle | None:
        """The cycle with the highest cycle_number."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM poem_cycles ORDER BY cycle_number DESC LIMIT 1"
            ).fetchone()
        return self._row_to_cycle(row) if row else None

    def get_poem_by_cycle(self, cycle_number: int) -> PoemCycle | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM poem_cycles WHERE cycle_number = ?", (cycle_number,)
            ).fetchone()
        return self._row_to_cycle(row) if row else None

    def list_all_poems(self) -> list[PoemCycle]:
        """Every cycle, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM poem_cycles ORDER BY cycle_number"
            ).fetchall()
        return [self._row_to_cycle(r) for r in rows]

    def get_raw_response(self, cycle_number: int) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT raw_response FROM poem_cycles WHERE cycle_number = ?",
                (cycle_number,),
            ).fetchone()
        return row["raw_response"] if row else None

    def set_next_prompt(self, next_prompt: str) -> bool:
        """Override the next prompt of the current cycle. False if there is none."""
        with self._write() as conn:
            cur = conn.execute(
                """UPDATE poem_cycles SET next_prompt = ?
                   WHERE cycle_number = (SELECT MAX(cycle_number) FROM poem_cycles)""",
                (next_prompt,),
            )
            return cur.rowcount > 0

    def get_generation_stats(self) -> dict:
        """Count cycles by how their reply was parsed."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT generation_method, COUNT(*) AS n
                   FROM poem_cycles GROUP BY generation_method"""
            ).fetchall()
        by_method = {r["generation_method"]: r["n"] for r in rows}
        return {
            "total_poems": sum(by_method.values()),
            "primary_success": by_method.get("primary", 0),
            "fallback_used": by_method.get("fallback", 0),
            "correction_used": by_method.get("corrected", 0),
        }

    # ─ Poet state ─────────────────────────────────────────────────────────

    def get_poet_state(self) -> PoetState | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM poet_state WHERE singleton = 0").fetchone()
        if row is None:
            return None
        return PoetState(
            genesis_prompt=row["genesis_prompt"],
            current_cycle=row["current_cycle"],
            total_poems=row["total_poems"],
            last_updated=row["last_updated"],
        )

    def put_poet_state(self, state: PoetState) -> None:
        with self._write() as conn:
            self._upsert_state(conn, state)

    def reset(self) -> bool:
        """
        Clear every poem cycle and the poet state.
        Returns whether there was anything to clear.
        """
        with self._write() as conn:
            cycles = conn.execute("DELETE FROM poem_cycles").rowcount
            states = conn.execute("DELETE FROM poet_state").rowcount
        had_state = (cycles + states) > 0
        if had_state:
            logger.info("Poet reset (%d cycles cleared)", cycles)
        return had_state
