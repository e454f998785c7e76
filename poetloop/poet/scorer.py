"""
Style scorer — how close a poem sits to plain-spoken, gritty,
first-person street poetry, on [0.0, 1.0].

Weighted regex patterns, additive, clamped. Greeting-card vocabulary
subtracts. Short lines earn a small bonus. Deterministic and cheap; no
model call.

Usage:
    from poetloop.poet.scorer import score_style
    result = score_style(poem)
    result.score       # 0.0 .. 1.0
    result.matched     # labels that fired
"""

import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Each entry: (compiled_pattern, weight, label)
_PATTERNS: list[tuple[re.Pattern, float, str]] = [
    # --- Drink, smoke, the racetrack ---
    (re.compile(r"\b(beer|whiskey|wine|bottle|drunk|bar|hangover|booze)\b", re.I), 0.20, "drink"),
    (re.compile(r"\b(cigarette|cigar|ashtray|smoke|smoking)\b", re.I),              0.15, "smoke"),
    (re.compile(r"\b(horses?|racetrack|track|bet|odds)\b", re.I),                    0.10, "track"),
    # --- Work, rent, small rooms ---
    (re.compile(r"\b(rent|landlord|job|boss|factory|post office|paycheck)\b", re.I), 0.15, "work"),
    (re.compile(r"\b(room|bed|sheets|kitchen|sink|typewriter|radio)\b", re.I),       0.10, "room"),
    # --- Voice ---
    (re.compile(r"(^|\n)\s*i\b|\bi'm\b|\bmy\b", re.I),                               0.15, "first_person"),
    (re.compile(r"\b(damn|hell|shit|fuck\w*|bastard|ass)\b", re.I),                  0.15, "profanity"),
    (re.compile(r"\b(death|dying|dead|grave|loneliness|alone)\b", re.I),             0.10, "mortality"),
    (re.compile(r"\b(woman|women|whore|lover)\b", re.I),                             0.05, "women"),
]

# Greeting-card words drag the score down.
_PENALTIES: list[tuple[re.Pattern, float, str]] = [
    (re.compile(r"\b(blessed|cherish|journey|embrace|sunshine|rainbow|angel)\b", re.I), 0.20, "greeting_card"),
    (re.compile(r"\b(forevermore|thee|thou|thy|o'er)\b", re.I),                          0.15, "archaic"),
]

SHORT_LINE_CHARS = 40
SHORT_LINE_BONUS = 0.15


@dataclass
class StyleScore:
    """Result of a style scoring pass."""
    score: float
    matched: list[str] = field(default_factory=list)


def score_style(poem: str) -> StyleScore:
    raw_score = 0.0
    matched: list[str] = []

    for pattern, weight, label in _PATTERNS:
        if pattern.search(poem):
            raw_score += weight
            matched.append(label)

    for pattern, weight, label in _PENALTIES:
        if pattern.search(poem):
            raw_score -= weight
            matched.append(label)

    lines = [line for line in poem.splitlines() if line.strip()]
    if lines and sum(len(line) for line in lines) / len(lines) <= SHORT_LINE_CHARS:
        raw_score += SHORT_LINE_BONUS
        matched.append("short_lines")

    score = round(min(max(raw_score, 0.0), 1.0), 3)
    if matched:
        logger.debug("style_scorer: score=%.2f matched=%s", score, matched)
    return StyleScore(score=score, matched=matched)


class StyleScorer:
    """Scoring capability handed to the poet engine."""

    def score(self, poem: str) -> float | None:
        if not poem.strip():
            return None
        return score_style(poem).score
