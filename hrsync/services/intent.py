"""Intent classification for user messages."""

import re
from abc import ABC, abstractmethod
from typing import Tuple


CLOCK_IN = "clock_in"
CLOCK_OUT = "clock_out"
STATUS = "status"
GREETING = "greeting"
UNKNOWN = "unknown"


class IntentClassifier(ABC):
    """Maps a user message to an intent and a confidence in [0, 1]."""

    @abstractmethod
    async def classify(self, text: str) -> Tuple[str, float]:
        ...


class KeywordIntentClassifier(IntentClassifier):
    """Regex based classifier for the clock-in/clock-out vocabulary."""

    _patterns = [
        (CLOCK_OUT, re.compile(r"\b(clock(ing)?(\s+me)?[\s-]?out|sign(ing)?[\s-]?out|punch(ing)?[\s-]?out|"
                               r"check(ing)?[\s-]?out|(end|finish)(ing)?\s+(my\s+)?(shift|day|work))\b")),
        (CLOCK_IN, re.compile(r"\b(clock(ing)?(\s+me)?[\s-]?in|sign(ing)?[\s-]?in|punch(ing)?[\s-]?in|"
                              r"check(ing)?[\s-]?in|(start|begin)(ing)?\s+(my\s+)?(shift|day|work))\b")),
        (STATUS, re.compile(r"\b(status|am i (clocked|working)|my hours|timesheet)\b")),
        (GREETING, re.compile(r"^\s*(hi|hello|hey|good (morning|afternoon|evening))\b")),
    ]

    async def classify(self, text: str) -> Tuple[str, float]:
        lowered = text.lower()
        for intent, pattern in self._patterns:
            if pattern.search(lowered):
                return intent, 0.9
        return UNKNOWN, 0.3
