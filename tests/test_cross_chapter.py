"""Tests for manuscript_intel.services.cross_chapter."""

from __future__ import annotations

import pytest

from manuscript_intel.schemas.manuscript import (
    ArcPosition,
    ChapterSnapshot,
    ContinuityType,
    CrossChapterContext,
    EndingMood,
    Severity,
)
from manuscript_intel.services.cross_chapter import (
    build_chapter_context,
    build_manuscript_view,
    ending_mood,
    merge_promise_ledgers,
)
from manuscript_intel.services.pipeline import analyze_chapter

VOW = "Elena vowed to recover the silver chalice from the drowned temple."
JOURNEY = "Elena led the caravan east for many days across the dry hills. Elena counted the wells."
PAYOFF = "The wind died at dusk over the dunes.\n\nAt last Elena lifted the silver chalice out of the drowned temple and wept."


@pytest.fixture
def snapshot(config, fixed_clock):
    def make(chapter_id: str, text: str, title: str = "") -> ChapterSnapshot:
        intelligence = analyze_chapter(text, chapter_id, config=config, clock=fixed_clock)
        return ChapterSnapshot(chapter_id=chapter_id, title=title, text=text, intelligence=intelligence)

    return make


class TestPromiseLedger:

    def test_resolved_by_later_chapter(self, snapshot):
        first, second = snapshot("ch1", VOW), snapshot("ch2", JOURNEY)
        ledger = merge_promise_ledgers([first, second])
        assert len(ledger) == 1
        assert not ledger[0].resolved

        third = snapshot("ch3", PAYOFF)
        ledger = merge_promise_ledgers([first, second, third])
        promise = ledger[0]
        assert promise.resolved
        assert promise.chapter_id == "ch1"
        assert promise.resolution_chapter_id == "ch3"
        assert promise.resolution_offset == PAYOFF.index("At last")

    def test_snapshots_not_mutated(self, snapshot):
        chapters = [snapshot("ch1", VOW), snapshot("ch3", PAYOFF)]
        merge_promise_ledgers(chapters)
        assert not chapters[0].intelligence.timeline.promises[0].resolved

    def test_earlier_chapters_do_not_resolve(self, snapshot):
        ledger = merge_promise_ledgers([snapshot("ch3", PAYOFF), snapshot("ch1", VOW)])
        assert [p.resolved for p in ledger] == [False]

    def test_chapters_without_intelligence_are_skipped(self, snapshot):
        bare = ChapterSnapshot(chapter_id="ch2", text=PAYOFF)
        assert not merge_promise_ledgers([snapshot("ch1", VOW), bare])[0].resolved


class TestManuscriptView:

    def test_view(self, snapshot):
        view = build_manuscript_view([snapshot("ch1", VOW + " Elena slept."), snapshot("ch2", JOURNEY)])
        assert view.chapter_ids == ["ch1", "ch2"]
        elena = view.graph.node_by_name("Elena")
        assert elena is not None
        assert {m.chapter_id for m in elena.mentions} == {"ch1", "ch2"}
        assert len(view.open_promises()) == 1


class TestChapterContext:

    CLIFF = "Elena waited at the gate. Elena listened for hooves.\n\nWho had opened the gate?"
    NEXT = "Marcus rode north in the rain for many days."
    LAST = "The long war ended and the valley finally knew peace."

    def test_neighbours_arc_and_cliffhanger(self, snapshot):
        chapters = [
            snapshot("ch1", self.CLIFF, "The Gate"),
            snapshot("ch2", self.NEXT),
            snapshot("ch3", self.LAST),
        ]
        context = build_chapter_context(chapters, "ch2")

        assert context.previous_chapter.chapter_id == "ch1"
        assert context.previous_chapter.title == "The Gate"
        assert context.previous_chapter.ending_mood == EndingMood.CLIFFHANGER
        assert context.previous_chapter.last_paragraph == "Who had opened the gate?"
        assert context.next_chapter.chapter_id == "ch3"
        assert context.next_chapter.first_paragraph == self.LAST

        assert context.narrative_arc.percent_complete == 67
        assert context.narrative_arc.position == ArcPosition.FALLING_ACTION

        gaps = [i for i in context.continuity_issues if i.type == ContinuityType.TIMELINE_GAP]
        assert len(gaps) == 1
        assert gaps[0].severity == Severity.HIGH

    def test_picking_up_the_action_is_not_a_gap(self, snapshot):
        chapters = [snapshot("ch1", self.CLIFF), snapshot("ch2", "The next morning Marcus found the gate open.")]
        context = build_chapter_context(chapters, "ch2")
        assert not any(i.type == ContinuityType.TIMELINE_GAP for i in context.continuity_issues)

    def test_first_chapter(self, snapshot):
        context = build_chapter_context([snapshot("ch1", self.CLIFF), snapshot("ch2", self.NEXT)], "ch1")
        assert context.previous_chapter is None
        assert context.continuity_issues == []
        assert context.narrative_arc.position == ArcPosition.CLIMAX

    def test_unknown_chapter(self, snapshot):
        assert build_chapter_context([snapshot("ch1", self.CLIFF)], "missing") == CrossChapterContext()


class TestEndingMood:

    @pytest.mark.parametrize(
        ("paragraph", "mood"),
        [
            ("Who had opened the gate?", EndingMood.CLIFFHANGER),
            ("Suddenly the door burst open.", EndingMood.CLIFFHANGER),
            ("She finally slept.", EndingMood.RESOLUTION),
            ("Later they rode on.", EndingMood.TRANSITION),
            ("He sat by the fire.", EndingMood.NEUTRAL),
        ],
    )
    def test_ending_mood(self, paragraph, mood):
        assert ending_mood(paragraph) == mood
