"""
Poet evolution engine — advances the poem sequence by one cycle per call.

States:
  uninitialized  no PoetState in the store
  cycle N        PoetState.current_cycle == N, cycles 1..N stored

evolve():
  1. Read the poet state (or seed an in-memory one from the genesis prompt)
     and the latest cycle.
  2. Theme = latest cycle's next_prompt, or the genesis prompt.
  3. Ask the orchestrator with [system meta form, user theme].
  4. Parse the reply; on failure, send one correction prompt and parse again.
  5. Score the poem (optional).
  6. Commit the new cycle and the advanced state in one store transaction.

Nothing is written before step 6, so a failure anywhere leaves the store
exactly as it was. Errors are raised, never retried here.
"""

from __future__ import annotations

import logging

from poetloop.chat.messages import SystemMessage, UserMessage
from poetloop.chat.orchestrator import ChatOrchestrator
from poetloop.errors import MalformedGeneration
from poetloop.poet.parser import ParsedPoem, has_bracket_markers, parse_reply
from poetloop.poet.prompts import (
    GENESIS_PROMPT,
    build_correction_prompt,
    build_meta_form,
    build_theme_message,
)
from poetloop.storage.models import PoemCycle, PoetState
from poetloop.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


class PoetEngine:
    def __init__(
        self,
        store: SQLiteStore,
        orchestrator: ChatOrchestrator,
        scorer=None,
        genesis_prompt: str = GENESIS_PROMPT,
        title_max_words: int = 6,
        next_prompt_max_chars: int = 300,
        max_line_chars: int = 60,
        correction_attempts: int = 1,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.scorer = scorer
        self.genesis_prompt = genesis_prompt
        self.title_max_words = title_max_words
        self.next_prompt_max_chars = next_prompt_max_chars
        self.max_line_chars = max_line_chars
        self.correction_attempts = correction_attempts

    @classmethod
    def from_config(cls, store, orchestrator, poet_cfg: dict, scorer=None) -> "PoetEngine":
        return cls(
            store,
            orchestrator,
            scorer=scorer,
            genesis_prompt=poet_cfg.get("genesis_prompt") or GENESIS_PROMPT,
            title_max_words=poet_cfg.get("title_max_words", 6),
            next_prompt_max_chars=poet_cfg.get("next_prompt_max_chars", 300),
            max_line_chars=poet_cfg.get("max_line_chars", 60),
            correction_attempts=poet_cfg.get("correction_attempts", 1),
        )

    def _parse(self, text: str) -> tuple[ParsedPoem, str]:
        return parse_reply(
            text,
            title_max_words=self.title_max_words,
            next_max_chars=self.next_prompt_max_chars,
            max_line_chars=self.max_line_chars,
        )

    async def _extract(self, raw: str) -> tuple[ParsedPoem, str]:
        """Parse the reply, asking the model to fix its format if needed."""
        try:
            return self._parse(raw)
        except MalformedGeneration as e:
            logger.warning("Poet reply did not parse (%s), requesting correction", e)
            last_error = e

        previous = raw
        for attempt in range(1, self.correction_attempts + 1):
            prompt = build_correction_prompt(
                previous, has_bracket_markers(previous), self.title_max_words
            )
            corrected = await self.orchestrator.run([UserMessage(prompt)], use_tools=False)
            try:
                parsed, _ = self._parse(corrected)
                return parsed, "corrected"
            except MalformedGeneration as e:
                logger.warning("Correction %d/%d did not parse: %s", attempt, self.correction_attempts, e)
                last_error = e
                previous = corrected

        raise MalformedGeneration(
            f"Could not extract a poem after {self.correction_attempts} correction attempt(s): {last_error}"
        )

    def _score(self, poem: str) -> float | None:
        if self.scorer is None:
            return None
        try:
            return self.scorer.score(poem)
        except Exception as e:
            logger.warning("Style scorer failed, storing no score: %s", e, exc_info=True)
            return None

    async def evolve(self, now: int) -> PoemCycle:
        """Generate and commit the next cycle. `now` stamps the new records."""
        state = self.store.get_poet_state()
        if state is None:
            logger.info("Poet uninitialized, seeding from genesis prompt")
            state = PoetState(genesis_prompt=self.genesis_prompt)

        latest = self.store.get_current_poem()
        theme = latest.next_prompt if latest else state.genesis_prompt
        cycle_number = state.current_cycle + 1

        exchange = [
            SystemMessage(build_meta_form(
                cycle_number,
                previous_poem=latest.poem if latest else None,
                title_max_words=self.title_max_words,
                next_max_chars=self.next_prompt_max_chars,
            )),
            UserMessage(build_theme_message(theme)),
        ]
        raw = await self.orchestrator.run(exchange, use_tools=False)
        parsed, method = await self._extract(raw)

        cycle = PoemCycle(
            id=0,
            cycle_number=cycle_number,
            title=parsed.title,
            poem=parsed.poem,
            next_prompt=parsed.next_prompt,
            created_at=now,
            bukowski_style_score=self._score(parsed.poem),
        )
        new_state = PoetState(
            genesis_prompt=state.genesis_prompt,
            current_cycle=cycle_number,
            total_poems=state.total_poems + 1,
            last_updated=now,
        )
        committed = self.store.commit_evolution(
            cycle, new_state, raw_response=raw, generation_method=method,
            expected_cycle=state.current_cycle,
        )
        logger.info("Poet evolved to cycle %d: %r", cycle_number, committed.title)
        return committed

    def reset(self) -> bool:
        """Back to uninitialized. True if there was anything to clear."""
        return self.store.reset()
