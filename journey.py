# journey.py - Navigation history of explored topics

from __future__ import annotations
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import quote, unquote, urlsplit, urlunsplit

logger = logging.getLogger("Journey")

DEFAULT_SEED_TOPIC = "Metacognition"
JOURNEY_PARAM = "journey"

@dataclass
class CloudWord:
    word: str
    visits: int
    scale: float
    opacity: float
    bold: bool

class Journey:
    """
    Ordered history of visited topics plus a cursor.

    Behaves like browser history: going to a new topic from anywhere but the
    end discards everything after the cursor. Never empty.
    """

    def __init__(self, topics: Optional[List[str]] = None, index: Optional[int] = None,
                 seed_topic: str = DEFAULT_SEED_TOPIC):
        self.topics: List[str] = list(topics) if topics else [seed_topic]
        self.index = len(self.topics) - 1 if index is None else index
        if not 0 <= self.index < len(self.topics):
            raise IndexError(f"Journey index {self.index} outside 0..{len(self.topics) - 1}")

    def __len__(self) -> int:
        return len(self.topics)

    def __repr__(self) -> str:
        return f"Journey({self.topics!r}, index={self.index})"

    @property
    def current(self) -> str:
        return self.topics[self.index]

    @property
    def depth(self) -> int:
        """1-based position shown to the user."""
        return self.index + 1

    def go_to(self, topic: str) -> bool:
        """
        Branch to a new topic.

        Returns False (and changes nothing) when the trimmed topic is empty or
        matches the current topic case-insensitively.
        """
        topic = topic.strip()
        if not topic or topic.lower() == self.current.lower():
            return False
        del self.topics[self.index + 1:]
        self.topics.append(topic)
        self.index = len(self.topics) - 1
        return True

    def jump_to(self, index: int) -> bool:
        """Move the cursor to an existing entry. Returns True if the cursor moved."""
        if not 0 <= index < len(self.topics):
            raise IndexError(f"Journey index {index} outside 0..{len(self.topics) - 1}")
        if index == self.index:
            return False
        self.index = index
        return True

    # — SHARING —

    def to_query(self) -> str:
        return ",".join(quote(topic, safe="") for topic in self.topics)

    @classmethod
    def from_query(cls, value: Optional[str], seed_topic: str = DEFAULT_SEED_TOPIC) -> "Journey":
        """Rebuild a journey from its shared form, cursor on the last topic."""
        if not value:
            return cls(seed_topic=seed_topic)
        try:
            topics = [unquote(part, errors="strict") for part in value.split(",")]
        except UnicodeDecodeError as e:
            logger.error(f"Failed to parse journey from query: {e}")
            return cls(seed_topic=seed_topic)
        return cls([topic for topic in topics if topic], seed_topic=seed_topic)

    @classmethod
    def from_url(cls, url: str, seed_topic: str = DEFAULT_SEED_TOPIC) -> "Journey":
        # parse_qs would turn '+' into spaces and undo the percent encoding early
        for pair in urlsplit(url).query.split("&"):
            name, _, value = pair.partition("=")
            if name == JOURNEY_PARAM:
                return cls.from_query(value, seed_topic=seed_topic)
        return cls(seed_topic=seed_topic)

    def share_url(self, base_url: str) -> str:
        parts = urlsplit(base_url)
        return urlunsplit(parts._replace(query=f"{JOURNEY_PARAM}={self.to_query()}"))

    # — WORD CLOUD —

    def word_frequencies(self) -> Dict[str, int]:
        counts: Counter = Counter()
        for topic in self.topics:
            word = topic.strip().lower()
            if word:
                counts[word] += 1
        return dict(counts)

    def word_cloud(self) -> List[CloudWord]:
        frequencies = self.word_frequencies()
        top = max(frequencies.values(), default=1)
        return [
            CloudWord(
                word=word,
                visits=visits,
                scale=0.8 + (visits / top) * 1.5,
                opacity=0.6 + (visits / top) * 0.4,
                bold=visits > 1,
            )
            for word, visits in frequencies.items()
        ]
