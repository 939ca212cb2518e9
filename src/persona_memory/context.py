"""
Context classification and text normalization.

Every query is reduced to a ``ContextKey`` (intent, topic, tone) before it
touches the semantic tier.  The key is a hard filter: two phrasings only
ever match each other when all three fields agree.

Classification is rule based and ordered:
  - intent is a question when the text has a ``?`` or an interrogative word
  - topic is the FIRST keyword group that matches, in ``TOPIC_RULES`` order
  - tone is the FIRST keyword group that matches, in ``TONE_RULES`` order

There is no scoring; the order of the rule tables is the behaviour.

Interrogatives must be whole words, so "this" is not "is".  Topic and tone
keywords only need to start a word: "songs" matches "song" and "warm"
matches "war", but "happy" never matches "app".
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Mapping


class Intent(str, enum.Enum):
    QUESTION = "question"
    STATEMENT = "statement"


class Topic(str, enum.Enum):
    CRYPTO = "crypto"
    STARWARS = "starwars"
    ANIME = "anime"
    MUSIC = "music"
    MOVIE = "movie"
    CELEBRITY = "celebrity"
    TECH = "tech"
    ALIEN = "alien"
    POPCULTURE = "popculture"
    OTHER = "other"


class Tone(str, enum.Enum):
    EMPATHETIC = "empathetic"
    PLAYFUL = "playful"
    SERIOUS = "serious"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class ContextKey:
    """The (intent, topic, tone) triple used to filter semantic matches."""

    intent: Intent
    topic: Topic
    tone: Tone

    def to_metadata(self) -> dict[str, str]:
        """Flatten to the string-valued fields stored beside a vector."""
        return {
            "intent": self.intent.value,
            "topic": self.topic.value,
            "tone": self.tone.value,
        }

    @classmethod
    def from_metadata(cls, metadata: Mapping[str, object]) -> "ContextKey":
        """
        Rebuild a key from stored metadata.

        Raises ``ValueError`` if a field is missing or holds an unknown value.
        """
        try:
            return cls(
                intent=Intent(metadata["intent"]),
                topic=Topic(metadata["topic"]),
                tone=Tone(metadata["tone"]),
            )
        except KeyError as exc:
            raise ValueError(f"context field missing from metadata: {exc}") from exc


# ---------------------------------------------------------------------------
# Rule tables
# ---------------------------------------------------------------------------

_INTERROGATIVE = re.compile(r"\?|\b(?:what|why|how|who|when|is|are|do|does|should)\b")


def _keywords(*words: str) -> re.Pattern[str]:
    # Anchored at a word start only, so "songs" and "memes" still match.
    return re.compile(r"\b(?:" + "|".join(words) + r")")


#: Topic groups in priority order.  ``Topic.OTHER`` is the catch-all.
TOPIC_RULES: tuple[tuple[Topic, re.Pattern[str]], ...] = (
    (Topic.CRYPTO, _keywords("solana", "eth", "btc", r"pump\.fun", "crypto")),
    (Topic.STARWARS, _keywords(r"star\s?wars", "mandalorian", "jedi", "sith", "grogu", "beskar")),
    (Topic.ANIME, _keywords("anime", "manga", "ghibli", "otaku")),
    (Topic.MUSIC, _keywords("music", "song", "album", "track", "playlist")),
    (Topic.MOVIE, _keywords("movie", "film", "director", "cinema")),
    (Topic.CELEBRITY, _keywords("actor", "actress", "celebrity", "famous", "idol")),
    (Topic.TECH, _keywords("tech", "software", "engineer", "developer", "app")),
    (Topic.ALIEN, _keywords("alien", "conspiracy", "galaxy", "ufo")),
    (Topic.POPCULTURE, _keywords("pop", "trend", "meme", "viral", "culture")),
)

#: Tone groups in priority order.  ``Tone.NEUTRAL`` is the catch-all.
TONE_RULES: tuple[tuple[Tone, re.Pattern[str]], ...] = (
    (
        Tone.EMPATHETIC,
        _keywords("hug", "love", "care", "whisper", "sweet", "friend", "heart",
                  "smile", "lol", "haha", "funny"),
    ),
    (Tone.PLAYFUL, _keywords("joke", "play", "tease", "fun", "wink", "lmao", "rofl")),
    (
        Tone.SERIOUS,
        _keywords("war", "battle", "honor", "duty", "survive", "fight", "serious", "code"),
    ),
)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def normalize_query(text: str) -> str:
    """Trimmed, lower-cased form of *text*; the exact-tier key."""
    return text.strip().lower()


_CONTENT_EDGES = " \t\r\n\"'"


def normalize_content(text: str) -> str:
    """
    Normalize content that is about to be published.

    Generated posts often come back wrapped in quotes, so leading and
    trailing quote characters are stripped together with whitespace.
    Applying this twice gives the same result as applying it once.
    """
    return text.lower().strip(_CONTENT_EDGES)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _first_match(text: str, rules, default):
    for label, pattern in rules:
        if pattern.search(text):
            return label
    return default


def classify(text: str) -> ContextKey:
    """Derive the ``ContextKey`` for *text*.  Total and side-effect free."""
    q = normalize_query(text)
    intent = Intent.QUESTION if _INTERROGATIVE.search(q) else Intent.STATEMENT
    topic = _first_match(q, TOPIC_RULES, Topic.OTHER)
    tone = _first_match(q, TONE_RULES, Tone.NEUTRAL)
    return ContextKey(intent=intent, topic=topic, tone=tone)
