"""Keyword-rule classification of call transcripts and WhatsApp replies.

Both classifiers are ordered ``(predicate, outcome)`` rule lists evaluated
first-match-wins. Rule order is significant: decline intent is tested
before interest, so "not interested, but tell me more" is a decline.

Anything implementing ``ResponseClassifier.classify`` can replace the
keyword rules without touching callers.
"""

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from src.shared.types import PatientStatus, ReplyIntent

Predicate = Callable[[str], bool]


@dataclass(frozen=True)
class Classification:
    """Result of classifying free text.

    Attributes:
        status: Patient status the text maps to.
        reason: Human-readable status reason (empty when no rule matched).
        intent: Reply intent, set only by the reply classifier.
    """

    status: PatientStatus
    reason: str = ""
    intent: ReplyIntent | None = None


@dataclass(frozen=True)
class Rule:
    """One ordered classification rule.

    Attributes:
        predicate: Test applied to the normalized text.
        outcome: Classification returned when the predicate matches.
    """

    predicate: Predicate
    outcome: Classification


class ResponseClassifier(Protocol):
    """Strategy mapping free text to a patient status."""

    def classify(self, text: str) -> Classification: ...


def contains_any(*phrases: str) -> Predicate:
    """Match when any phrase occurs as a substring."""
    return lambda text: any(phrase in text for phrase in phrases)


def matches(pattern: str) -> Predicate:
    """Match when the regular expression is found anywhere."""
    compiled = re.compile(pattern)
    return lambda text: compiled.search(text) is not None


def equals(*values: str) -> Predicate:
    """Match when the whole text equals one of the values."""
    return lambda text: text in values


def any_of(*predicates: Predicate) -> Predicate:
    """Match when any of the predicates matches."""
    return lambda text: any(p(text) for p in predicates)


def _normalize_transcript(text: str) -> str:
    return text.lower().replace("’", "'")


def _normalize_reply(text: str) -> str:
    return text.strip().lower()


class RuleClassifier:
    """Ordered keyword-rule classifier.

    Attributes:
        rules: Rules evaluated in order; the first match wins.
        default: Classification returned when no rule matches.
    """

    def __init__(
        self,
        rules: Sequence[Rule],
        default: Classification,
        normalize: Callable[[str], str] = _normalize_transcript,
    ) -> None:
        """Initialize RuleClassifier.

        Args:
            rules: Ordered rules.
            default: Fallback classification.
            normalize: Text normalization applied before matching.
        """
        self.rules = tuple(rules)
        self.default = default
        self._normalize = normalize

    def classify(self, text: str) -> Classification:
        """Classify text with the first matching rule.

        Args:
            text: Raw transcript or reply text.

        Returns:
            Matching rule outcome, or the default.
        """
        normalized = self._normalize(text or "")
        for rule in self.rules:
            if rule.predicate(normalized):
                return rule.outcome
        return self.default


TRANSCRIPT_RULES: tuple[Rule, ...] = (
    Rule(
        contains_any("not interested", "don't want"),
        Classification(PatientStatus.NOT_INTERESTED, "Patient explicitly declined"),
    ),
    Rule(
        contains_any("interested", "tell me more"),
        Classification(PatientStatus.INTERESTED, "Patient expressed interest"),
    ),
    Rule(
        contains_any("book", "schedule", "confirm"),
        Classification(PatientStatus.BOOKED, "Patient confirmed appointment"),
    ),
    Rule(
        contains_any("wrong number", "wrong person"),
        Classification(PatientStatus.WRONG_NUMBER, "Wrong number"),
    ),
    Rule(
        contains_any("busy", "call later"),
        Classification(PatientStatus.CALL_BACK, "Patient requested callback"),
    ),
)

REPLY_RULES: tuple[Rule, ...] = (
    Rule(
        any_of(matches(r"\byes\b"), matches(r"\bconfirm"), equals("1")),
        Classification(
            PatientStatus.BOOKED,
            "Patient confirmed via WhatsApp reply",
            ReplyIntent.YES,
        ),
    ),
    Rule(
        any_of(matches(r"\bno\b"), matches(r"\bcancel"), equals("2")),
        Classification(
            PatientStatus.NOT_INTERESTED,
            "Patient declined via WhatsApp reply",
            ReplyIntent.NO,
        ),
    ),
)

transcript_classifier = RuleClassifier(
    TRANSCRIPT_RULES,
    default=Classification(PatientStatus.FOLLOW_UP, ""),
)

reply_classifier = RuleClassifier(
    REPLY_RULES,
    default=Classification(PatientStatus.FOLLOW_UP, "Unclear WhatsApp reply", ReplyIntent.OTHER),
    normalize=_normalize_reply,
)

