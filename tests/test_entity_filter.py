"""Tests for manuscript_intel.services.entity_filter."""

from __future__ import annotations

import pytest

from manuscript_intel.schemas.entities import EntityType
from manuscript_intel.services.entity_filter import (
    entity_key,
    calendar_use,
    filter_candidates,
    normalize_name,
    reject_reason,
)
from manuscript_intel.services.extraction.rules import Candidate


def _candidate(surface: str) -> Candidate:
    return Candidate(surface=surface, name=surface, kind=EntityType.CHARACTER, offset=0, rule="test")


class TestNormalizeName:

    def test_lowercases_and_strips_punctuation(self):
        assert normalize_name("  Marcus!  ") == "marcus"

    def test_collapses_whitespace(self):
        assert normalize_name("Marcus   Vale") == "marcus vale"

    def test_drops_leading_article(self):
        assert normalize_name("The Iron Keep") == "iron keep"


class TestEntityKey:

    def test_title_is_not_part_of_identity(self, lexicon):
        assert entity_key("Mr. Marcus", lexicon) == entity_key("Marcus", lexicon) == "marcus"

    def test_multiple_titles(self, lexicon):
        assert entity_key("Sir Captain Elena", lexicon) == "elena"


class TestRejectReason:

    @pytest.mark.parametrize(
        ("name", "reason"),
        [
            ("Monday", "stopword"),
            ("She", "stopword"),
            ("Chapter", "stopword"),
            ("Mr.", "title_only"),
            ("Captain", "title_only"),
            ("42", "numeric"),
            ("X", "too_short"),
            ("", "empty"),
            ("Abcdefghijklmnopqrstuvwxyzabcdef", "too_long"),
        ],
    )
    def test_rejected(self, lexicon, name, reason):
        assert reject_reason(name, lexicon) == reason

    @pytest.mark.parametrize("name", ["Marcus", "Mr. Marcus", "Elena Vale", "Iron Keep", "May", "June Ellis"])
    def test_accepted(self, lexicon, name):
        assert reject_reason(name, lexicon) is None


class TestFilterCandidates:

    def test_keeps_only_valid_names(self, lexicon):
        kept = filter_candidates([_candidate(n) for n in ("Marcus", "Monday", "Mr.", "Elena")], lexicon)
        assert [c.surface for c in kept] == ["Marcus", "Elena"]

    def test_month_name_rejected_only_as_a_date(self, lexicon):
        text = "In May the river rose. May laughed."
        dated = Candidate(surface="May", name="May", kind=EntityType.LOCATION, offset=3, rule="test")
        named = Candidate(surface="May", name="May", kind=EntityType.CHARACTER, offset=23, rule="test")
        kept = filter_candidates([dated, named], lexicon, text)
        assert [c.offset for c in kept] == [23]


class TestCalendarUse:

    @pytest.mark.parametrize(
        ("text", "word"),
        [
            ("We sailed in May.", "May"),
            ("It happened on May 3.", "May"),
            ("By early June the roads had dried.", "June"),
            ("Last April was wet.", "April"),
            ("May I come in?", "May"),
        ],
    )
    def test_date_and_modal_uses(self, lexicon, text, word):
        start = text.index(word)
        assert calendar_use(text, start, start + len(word), lexicon)

    @pytest.mark.parametrize(
        ("text", "word"),
        [
            ("May smiled at Elena.", "May"),
            ("Elena met June at the gate.", "June"),
            ('"Come here," said August.', "August"),
            ("Marcus watched in silence.", "Marcus"),
        ],
    )
    def test_name_uses(self, lexicon, text, word):
        start = text.index(word)
        assert not calendar_use(text, start, start + len(word), lexicon)
