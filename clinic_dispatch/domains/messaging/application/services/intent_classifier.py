# ============================================================================
# SCOPE: APPLICATION LAYER (Messaging)
# Description: Inbound intent classification.
#              Ordered matcher strategies: payload id, keyword, title.
# ============================================================================
"""
Intent Classifier - tagged Confirm | Cancel | None result fed by an ordered
list of matchers.

Matchers are tried by priority (lower first); the first one that returns a
match wins:
- PayloadIdMatcher (0): quick-reply payload / interactive id, may carry the
  appointment id ("confirm_42").
- KeywordMatcher (10): free-text keywords, case-insensitive.
- TitleMatcher (20): button and list titles.

Usage:
    classifier = IntentClassifier.default(confirm_keywords, cancel_keywords)
    match = classifier.classify(message)
"""

from __future__ import annotations

import logging
import re
import unicodedata
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from ...domain import Intent

if TYPE_CHECKING:
    from ..dto import InboundMessage

logger = logging.getLogger(__name__)

DEFAULT_CONFIRM_KEYWORDS = ("sim", "s", "confirmo", "ok", "confirmar", "confirmado")
DEFAULT_CANCEL_KEYWORDS = ("nao", "não", "n", "cancelar", "desmarcar")

# Keywords at least this long also match inside longer words ("desmarcarei")
SUBSTRING_MIN_LENGTH = 4

_APPOINTMENT_ID = re.compile(r"(\d+)")
_WORDS = re.compile(r"\w+", re.UNICODE)


@dataclass(frozen=True)
class IntentMatch:
    """Classifier output."""

    intent: Intent
    source: str | None = None
    appointment_id: int | None = None

    @classmethod
    def none(cls) -> IntentMatch:
        return cls(intent=Intent.NONE)


class IntentMatcher(Protocol):
    """Strategy: inspect one inbound message, return a match or None."""

    priority: int

    def match(self, message: InboundMessage) -> IntentMatch | None:
        ...


def _fold(text: str) -> str:
    """Lowercase and strip accents so "NÃO" and "nao" compare equal."""
    decomposed = unicodedata.normalize("NFKD", text.strip().lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


class KeywordSet:
    """Case and accent insensitive keyword lookup.

    Short keywords ("s", "n", "ok") must be whole words; longer ones may
    also appear inside a word.
    """

    def __init__(self, keywords: Iterable[str]) -> None:
        self.keywords = tuple(sorted({_fold(k) for k in keywords if k and k.strip()}))

    def found_in(self, text: str | None) -> bool:
        if not text:
            return False
        folded = _fold(text)
        words = set(_WORDS.findall(folded))
        for keyword in self.keywords:
            if keyword in words:
                return True
            if (len(keyword) >= SUBSTRING_MIN_LENGTH or " " in keyword) and keyword in folded:
                return True
        return False


class PayloadIdMatcher:
    """Matches quick-reply payloads and interactive ids."""

    priority = 0

    def match(self, message: InboundMessage) -> IntentMatch | None:
        for value in (message.button_payload, message.interactive_id):
            if not value:
                continue
            folded = _fold(value)
            if "cancel" in folded:
                intent = Intent.CANCEL
            elif "confirm" in folded:
                intent = Intent.CONFIRM
            else:
                continue
            id_match = _APPOINTMENT_ID.search(folded)
            appointment_id = int(id_match.group(1)) if id_match else None
            return IntentMatch(intent=intent, source="payload", appointment_id=appointment_id)
        return None


class KeywordMatcher:
    """Matches free-text bodies. Cancel wins over confirm ("não confirmo")."""

    priority = 10

    def __init__(self, confirm: KeywordSet, cancel: KeywordSet) -> None:
        self._confirm = confirm
        self._cancel = cancel

    def match(self, message: InboundMessage) -> IntentMatch | None:
        if not message.text:
            return None
        if self._cancel.found_in(message.text):
            return IntentMatch(intent=Intent.CANCEL, source="keyword")
        if self._confirm.found_in(message.text):
            return IntentMatch(intent=Intent.CONFIRM, source="keyword")
        return None


class TitleMatcher:
    """Matches the visible title of a tapped button or list row."""

    priority = 20

    def __init__(self, confirm: KeywordSet, cancel: KeywordSet) -> None:
        self._confirm = confirm
        self._cancel = cancel

    def match(self, message: InboundMessage) -> IntentMatch | None:
        for title in (message.button_text, message.interactive_title):
            if not title:
                continue
            if self._cancel.found_in(title):
                return IntentMatch(intent=Intent.CANCEL, source="title")
            if self._confirm.found_in(title):
                return IntentMatch(intent=Intent.CONFIRM, source="title")
        return None


class IntentClassifier:
    """Runs matchers in priority order."""

    def __init__(self, matchers: Iterable[IntentMatcher]) -> None:
        self._matchers = sorted(matchers, key=lambda m: m.priority)

    @classmethod
    def default(
        cls,
        confirm_keywords: Iterable[str] = DEFAULT_CONFIRM_KEYWORDS,
        cancel_keywords: Iterable[str] = DEFAULT_CANCEL_KEYWORDS,
    ) -> IntentClassifier:
        confirm = KeywordSet(confirm_keywords)
        cancel = KeywordSet(cancel_keywords)
        title_confirm = KeywordSet([*confirm_keywords, "confirmar", "confirmado"])
        title_cancel = KeywordSet([*cancel_keywords, "desmarcar", "cancelar"])
        return cls(
            [
                PayloadIdMatcher(),
                KeywordMatcher(confirm, cancel),
                TitleMatcher(title_confirm, title_cancel),
            ]
        )

    @property
    def matchers(self) -> list[IntentMatcher]:
        return list(self._matchers)

    def classify(self, message: InboundMessage) -> IntentMatch:
        for matcher in self._matchers:
            result = matcher.match(message)
            if result is not None:
                logger.debug(
                    f"[INTENT] {message.provider_message_id}: {result.intent.value} "
                    f"via {result.source} (appointment={result.appointment_id})"
                )
                return result
        return IntentMatch.none()
