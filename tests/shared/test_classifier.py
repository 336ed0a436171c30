"""Tests for transcript and WhatsApp reply classification."""

import pytest

from src.shared.classifier import (
    Classification,
    Rule,
    RuleClassifier,
    contains_any,
    reply_classifier,
    transcript_classifier,
)
from src.shared.types import PatientStatus, ReplyIntent


class TestTranscriptClassifier:
    """Ordered keyword rules over call transcripts."""

    @pytest.mark.parametrize(
        ("transcript", "status", "reason"),
        [
            ("I'm not interested", PatientStatus.NOT_INTERESTED, "Patient explicitly declined"),
            ("I don't want calls", PatientStatus.NOT_INTERESTED, "Patient explicitly declined"),
            ("Yes I'm interested", PatientStatus.INTERESTED, "Patient expressed interest"),
            ("Please tell me more", PatientStatus.INTERESTED, "Patient expressed interest"),
            ("Let's book it for Friday", PatientStatus.BOOKED, "Patient confirmed appointment"),
            ("You have the wrong number", PatientStatus.WRONG_NUMBER, "Wrong number"),
            ("I'm busy right now", PatientStatus.CALL_BACK, "Patient requested callback"),
            ("Can you call later?", PatientStatus.CALL_BACK, "Patient requested callback"),
        ],
    )
    def test_keyword_rules(self, transcript: str, status: PatientStatus, reason: str) -> None:
        """Each keyword family maps to its status and reason."""
        result = transcript_classifier.classify(transcript)
        assert result.status == status
        assert result.reason == reason

    def test_decline_wins_over_interest(self) -> None:
        """'not interested, but tell me more' is a decline."""
        result = transcript_classifier.classify("not interested, but tell me more")
        assert result.status == PatientStatus.NOT_INTERESTED

    def test_interest_wins_over_booking(self) -> None:
        """Interest is tested before booking keywords."""
        result = transcript_classifier.classify("I'm interested and want to book")
        assert result.status == PatientStatus.INTERESTED

    def test_case_insensitive(self) -> None:
        """Matching ignores case."""
        result = transcript_classifier.classify("WRONG NUMBER")
        assert result.status == PatientStatus.WRONG_NUMBER

    def test_curly_apostrophe_normalized(self) -> None:
        """Typographic apostrophes still match 'don't want'."""
        result = transcript_classifier.classify("I don’t want this")
        assert result.status == PatientStatus.NOT_INTERESTED

    def test_no_match_defaults_to_follow_up(self) -> None:
        """Unrecognized transcript falls back to follow_up with empty reason."""
        result = transcript_classifier.classify("hello? who is this")
        assert result.status == PatientStatus.FOLLOW_UP
        assert result.reason == ""

    def test_empty_transcript(self) -> None:
        """Empty text falls back to follow_up."""
        assert transcript_classifier.classify("").status == PatientStatus.FOLLOW_UP


class TestReplyClassifier:
    """Short WhatsApp reply classification."""

    @pytest.mark.parametrize("body", ["yes", " YES ", "Yes please", "confirm", "Confirmed!", "1"])
    def test_affirmative(self, body: str) -> None:
        """Affirmative replies book the patient."""
        result = reply_classifier.classify(body)
        assert result.intent == ReplyIntent.YES
        assert result.status == PatientStatus.BOOKED
        assert result.reason == "Patient confirmed via WhatsApp reply"

    @pytest.mark.parametrize("body", ["no", "No thanks", "cancel", "please cancel it", "2"])
    def test_negative(self, body: str) -> None:
        """Negative replies mark the patient not interested."""
        result = reply_classifier.classify(body)
        assert result.intent == ReplyIntent.NO
        assert result.status == PatientStatus.NOT_INTERESTED

    @pytest.mark.parametrize("body", ["maybe", "what time?", "12", "nothing"])
    def test_other(self, body: str) -> None:
        """Anything else is an unclear reply needing follow-up."""
        result = reply_classifier.classify(body)
        assert result.intent == ReplyIntent.OTHER
        assert result.status == PatientStatus.FOLLOW_UP
        assert result.reason == "Unclear WhatsApp reply"

    def test_words_containing_keywords_do_not_match(self) -> None:
        """'yesterday' and 'nobody' are not yes/no."""
        assert reply_classifier.classify("yesterday").intent == ReplyIntent.OTHER
        assert reply_classifier.classify("nobody home").intent == ReplyIntent.OTHER


class TestRuleClassifier:
    """Custom rule sets plug into the same strategy."""

    def test_custom_rules_first_match_wins(self) -> None:
        """The first matching rule decides."""
        classifier = RuleClassifier(
            [
                Rule(contains_any("stop"), Classification(PatientStatus.NOT_INTERESTED, "stop")),
                Rule(contains_any("stop", "go"), Classification(PatientStatus.INTERESTED, "go")),
            ],
            default=Classification(PatientStatus.FOLLOW_UP),
        )
        assert classifier.classify("please stop").reason == "stop"
        assert classifier.classify("go ahead").reason == "go"
        assert classifier.classify("hmm").status == PatientStatus.FOLLOW_UP
