"""Tiered recomputation scheduler.

Each edit bumps the chapter's generation, runs the instant tier inline and
(re)schedules the debounced and background tiers after their delays. A
newer edit cancels the in-flight task of each tier for that chapter, and a
result whose generation is no longer current is discarded, never merged.
A worker thread cannot be interrupted, so a new pass of a tier waits for
the superseded thread of that tier to finish: at most one pass per tier and
chapter is ever in flight.

The background tier diffs against the text of its own last commit, so the
settled snapshot keeps the changed ranges of every edit since then.

The accepted snapshot per chapter is the only mutable state; it is written
on the event loop thread only. Heavy tiers run in worker threads.

Usage:
    scheduler = TieredScheduler()
    instant = scheduler.notify_edit("ch1", text, EditEvent(start=10, end=10))
    await scheduler.wait_idle()
    hud = scheduler.hud("ch1")
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from manuscript_intel.config import Settings, settings
from manuscript_intel.core.exceptions import SchedulerError, StaleResultError
from manuscript_intel.core.lexicon import Lexicon
from manuscript_intel.core.logging import get_logger
from manuscript_intel.schemas.delta import EditEvent
from manuscript_intel.schemas.entities import EntityGraph
from manuscript_intel.schemas.hud import ManuscriptHUD, ManuscriptIntelligence, ProcessingTier
from manuscript_intel.schemas.lore import LoreContext
from manuscript_intel.schemas.manuscript import ChapterSnapshot, ManuscriptView
from manuscript_intel.services import pipeline
from manuscript_intel.services.cross_chapter import build_manuscript_view
from manuscript_intel.services.extraction import merge_entity_graphs

logger = get_logger(__name__)

CommitListener = Callable[[str, ProcessingTier, ManuscriptIntelligence], None]

_TIER_RANK = {
    ProcessingTier.INSTANT: 0,
    ProcessingTier.DEBOUNCED: 1,
    ProcessingTier.BACKGROUND: 2,
}


def _consume_result(run: asyncio.Future[ManuscriptIntelligence]) -> None:
    # Runs of cancelled tier tasks have no awaiter left to see their failure
    if not run.cancelled() and (exc := run.exception()) is not None:
        logger.error("tier_pass_failed", error_type=type(exc).__name__, error=str(exc))


@dataclass
class PipelineAnalyzer:
    """Default analyzer: the pipeline tiers with fixed lore and config."""

    config: Settings = field(default_factory=lambda: settings)
    lexicon: Lexicon | None = None
    lore: LoreContext | None = None
    setting_scores: dict[str, float] | None = None
    clock: Callable[[], float] = time.time

    def instant(
        self, text: str, offset: int, chapter_id: str, previous: ManuscriptIntelligence | None
    ) -> ManuscriptIntelligence:
        return pipeline.run_instant(
            text, offset, chapter_id, previous, config=self.config, lexicon=self.lexicon, clock=self.clock
        )

    def debounced(
        self,
        text: str,
        chapter_id: str,
        previous: ManuscriptIntelligence | None,
        previous_text: str | None,
        edits: list[EditEvent],
        cursor: int | None,
    ) -> ManuscriptIntelligence:
        return pipeline.run_debounced(
            text,
            chapter_id,
            previous=previous,
            previous_text=previous_text,
            edits=edits,
            cursor=cursor,
            config=self.config,
            lexicon=self.lexicon,
            clock=self.clock,
        )

    def background(
        self,
        text: str,
        chapter_id: str,
        previous: ManuscriptIntelligence | None,
        previous_text: str | None,
        edits: list[EditEvent],
        cursor: int | None,
    ) -> ManuscriptIntelligence:
        return pipeline.run_background(
            text,
            chapter_id,
            previous=previous,
            previous_text=previous_text,
            lore=self.lore,
            setting_scores=self.setting_scores,
            edits=edits,
            cursor=cursor,
            config=self.config,
            lexicon=self.lexicon,
            clock=self.clock,
        )


@dataclass
class _ChapterState:
    text: str = ""
    generation: int = 0
    cursor: int | None = None
    pending_edits: list[EditEvent] = field(default_factory=list)
    accepted: ManuscriptIntelligence | None = None
    accepted_text: str | None = None
    accepted_generation: int = -1
    accepted_tier: ProcessingTier = ProcessingTier.STALE
    # Diff base of the background tier: its own last commit, not the debounced one
    settled: ManuscriptIntelligence | None = None
    settled_text: str | None = None
    background_edits: list[EditEvent] = field(default_factory=list)
    tasks: dict[ProcessingTier, asyncio.Task[None]] = field(default_factory=dict)
    # Worker-thread passes; they outlive a cancelled tier task
    runs: dict[ProcessingTier, asyncio.Future[ManuscriptIntelligence]] = field(default_factory=dict)


class TieredScheduler:
    """Single-writer scheduler of the instant, debounced and background tiers.

    Args:
        analyzer: Object with ``instant``, ``debounced`` and ``background``
            methods (see ``PipelineAnalyzer``).
        config: Tier delays and the background time cap.
        clock: Time source, used for commit bookkeeping.
        sleep: Awaitable delay, injectable for tests.
        on_commit: Called on the loop thread after each accepted result.
    """

    def __init__(
        self,
        analyzer: PipelineAnalyzer | None = None,
        config: Settings | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_commit: CommitListener | None = None,
    ) -> None:
        self._config = config or settings
        self._analyzer = analyzer or PipelineAnalyzer(config=self._config, clock=clock)
        self._clock = clock
        self._sleep = sleep
        self._on_commit = on_commit
        self._chapters: dict[str, _ChapterState] = {}
        self._order: list[str] = []
        self._closed = False

    # -- Edits --------------------------------------------------------------

    def notify_edit(
        self,
        chapter_id: str,
        text: str,
        event: EditEvent | None = None,
        cursor: int | None = None,
    ) -> ManuscriptIntelligence:
        """Accept a new chapter snapshot and return the instant-tier result.

        Must be called from a running event loop.

        Raises:
            SchedulerError: If the scheduler is closed or no loop is running.
        """
        if self._closed:
            raise SchedulerError("Scheduler is closed", context={"chapter_id": chapter_id})
        try:
            asyncio.get_running_loop()
        except RuntimeError as e:
            raise SchedulerError("notify_edit requires a running event loop") from e

        state = self._chapters.get(chapter_id)
        if state is None:
            state = self._chapters[chapter_id] = _ChapterState()
            self._order.append(chapter_id)

        state.generation += 1
        state.text = text
        if event is not None:
            state.pending_edits.append(event)
            state.background_edits.append(event)
            state.cursor = min(event.end, len(text))
        if cursor is not None:
            state.cursor = cursor
        generation = state.generation

        offset = state.cursor if state.cursor is not None else len(text)
        instant = self._analyzer.instant(text, offset, chapter_id, state.accepted)
        self._commit(chapter_id, ProcessingTier.INSTANT, generation, instant, text=None)

        self._schedule(chapter_id, ProcessingTier.DEBOUNCED, generation, self._config.debounced_delay_ms)
        self._schedule(chapter_id, ProcessingTier.BACKGROUND, generation, self._config.background_delay_ms)
        logger.debug("edit_notified", chapter_id=chapter_id, generation=generation)
        return instant

    def _schedule(self, chapter_id: str, tier: ProcessingTier, generation: int, delay_ms: int) -> None:
        state = self._chapters[chapter_id]
        running = state.tasks.get(tier)
        if running is not None and not running.done():
            running.cancel()
            logger.debug("tier_cancelled", chapter_id=chapter_id, tier=tier)
        state.tasks[tier] = asyncio.create_task(
            self._run_tier(chapter_id, tier, generation, delay_ms / 1000),
            name=f"{tier}:{chapter_id}:{generation}",
        )

    async def _run_tier(self, chapter_id: str, tier: ProcessingTier, generation: int, delay_s: float) -> None:
        await self._sleep(delay_s)
        state = self._chapters[chapter_id]

        # A superseded pass cannot be interrupted; let its thread finish first
        previous_run = state.runs.get(tier)
        if previous_run is not None and not previous_run.done():
            logger.debug("tier_waiting_for_previous_pass", chapter_id=chapter_id, tier=tier)
            await asyncio.wait({previous_run})

        text = state.text
        if tier == ProcessingTier.BACKGROUND:
            work = self._analyzer.background
            inputs = (text, chapter_id, state.settled, state.settled_text, list(state.background_edits), state.cursor)
        else:
            work = self._analyzer.debounced
            inputs = (text, chapter_id, state.accepted, state.accepted_text, list(state.pending_edits), state.cursor)
        run = state.runs[tier] = asyncio.ensure_future(asyncio.to_thread(work, *inputs))
        run.add_done_callback(_consume_result)

        try:
            if tier == ProcessingTier.BACKGROUND:
                async with asyncio.timeout(self._config.max_background_ms / 1000):
                    result = await asyncio.shield(run)
            else:
                result = await asyncio.shield(run)
        except TimeoutError:
            logger.warning(
                "background_pass_timeout",
                chapter_id=chapter_id,
                generation=generation,
                limit_ms=self._config.max_background_ms,
            )
            return

        try:
            self._commit(chapter_id, tier, generation, result, text=text)
        except StaleResultError as e:
            logger.info("tier_result_discarded", chapter_id=chapter_id, tier=tier, **e.context)

    def _commit(
        self,
        chapter_id: str,
        tier: ProcessingTier,
        generation: int,
        result: ManuscriptIntelligence,
        text: str | None,
    ) -> None:
        state = self._chapters[chapter_id]
        if generation != state.generation:
            raise StaleResultError(
                context={"generation": generation, "current_generation": state.generation}
            )
        if generation == state.accepted_generation and _TIER_RANK[tier] < _TIER_RANK.get(state.accepted_tier, -1):
            logger.debug("tier_result_superseded", chapter_id=chapter_id, tier=tier, accepted=state.accepted_tier)
            return

        state.accepted = result
        state.accepted_generation = generation
        state.accepted_tier = tier
        if text is not None:
            # Layers now describe this text; consumed edits are done
            state.accepted_text = text
            state.pending_edits.clear()
            if tier == ProcessingTier.BACKGROUND:
                state.settled = result
                state.settled_text = text
                state.background_edits.clear()
        logger.debug("tier_result_committed", chapter_id=chapter_id, tier=tier, generation=generation)
        if self._on_commit is not None:
            self._on_commit(chapter_id, tier, result)

    # -- Reads --------------------------------------------------------------

    def latest(self, chapter_id: str) -> ManuscriptIntelligence | None:
        state = self._chapters.get(chapter_id)
        if state is None or state.accepted is None:
            return None
        return state.accepted.model_copy(deep=True)

    def hud(self, chapter_id: str) -> ManuscriptHUD | None:
        latest = self.latest(chapter_id)
        return latest.hud if latest else None

    def generation(self, chapter_id: str) -> int:
        state = self._chapters.get(chapter_id)
        return state.generation if state else 0

    def merged_graph(self) -> EntityGraph:
        """Manuscript-wide graph over value copies of the accepted snapshots."""
        graphs = [
            state.accepted.entities.model_copy(deep=True)
            for chapter_id in self._order
            if (state := self._chapters[chapter_id]).accepted is not None
        ]
        return merge_entity_graphs(graphs, self._config)

    def manuscript_view(self, order: list[str] | None = None) -> ManuscriptView:
        """Merged graph and promise ledger, chapters in ``order`` (insertion order by default)."""
        snapshots = []
        for chapter_id in order or self._order:
            state = self._chapters.get(chapter_id)
            if state is None or state.accepted is None:
                continue
            snapshots.append(
                ChapterSnapshot(
                    chapter_id=chapter_id,
                    text=state.accepted_text or "",
                    intelligence=state.accepted.model_copy(deep=True),
                )
            )
        return build_manuscript_view(snapshots, self._config)

    # -- Lifecycle ------------------------------------------------------------

    def _tasks(self, chapter_id: str | None = None) -> list[asyncio.Task[None]]:
        ids = [chapter_id] if chapter_id is not None else list(self._chapters)
        return [t for cid in ids if cid in self._chapters for t in self._chapters[cid].tasks.values()]

    def _runs(self, chapter_id: str | None = None) -> list[asyncio.Future[ManuscriptIntelligence]]:
        ids = [chapter_id] if chapter_id is not None else list(self._chapters)
        return [r for cid in ids if cid in self._chapters for r in self._chapters[cid].runs.values()]

    async def wait_idle(self, chapter_id: str | None = None) -> None:
        """Wait until no tier task or worker-thread pass is pending."""
        while pending := [t for t in [*self._tasks(chapter_id), *self._runs(chapter_id)] if not t.done()]:
            await asyncio.wait(pending)

    async def close(self) -> None:
        """Cancel every pending tier, let running passes finish, refuse further edits."""
        self._closed = True
        tasks = self._tasks()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if runs := [r for r in self._runs() if not r.done()]:
            await asyncio.wait(runs)
        logger.info("scheduler_closed", chapters=len(self._chapters))
