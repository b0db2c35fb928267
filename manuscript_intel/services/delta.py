"""Delta tracking between two snapshots of a chapter.

The tracker only does invalidation bookkeeping: it diffs the texts, then
marks which sections, entities and promises of the previous snapshot are
touched by the changed ranges. Recomputation is left to the caller.

Ranges are half-open ``[start, end)`` in old-text coordinates; an insert is
the empty range ``[p, p)`` and touches whatever contains or borders ``p``.
"""

from __future__ import annotations

import difflib
import time
from collections.abc import Callable

from manuscript_intel.config import Settings, settings
from manuscript_intel.core.ids import content_hash
from manuscript_intel.core.logging import get_logger
from manuscript_intel.core.text import clamp
from manuscript_intel.schemas.delta import ChangeType, EditEvent, ManuscriptDelta, TextChange
from manuscript_intel.schemas.hud import ManuscriptIntelligence
from manuscript_intel.schemas.timeline import Timeline

logger = get_logger(__name__)

_OPCODE_TYPES = {"replace": ChangeType.MODIFY, "insert": ChangeType.INSERT, "delete": ChangeType.DELETE}


def compute_delta(
    previous_text: str | None,
    current_text: str,
    previous: ManuscriptIntelligence | None = None,
    current_timeline: Timeline | None = None,
    edits: list[EditEvent] | None = None,
    clock: Callable[[], float] = time.time,
    config: Settings | None = None,
) -> ManuscriptDelta:
    """Diff two snapshots and derive what the change invalidates.

    Args:
        previous_text: Text of the last analysed snapshot, None on first run.
        current_text: Text being analysed now.
        previous: Artifacts of the last snapshot; without them every section
            is unknown and the delta asks for a full recompute.
        current_timeline: Timeline of the new snapshot, for new/resolved promise ids.
        edits: Editor edit events in old coordinates; their ranges are
            invalidated along with the diffed ranges.
        clock: Time source for ``processed_at`` and change timestamps.
    """
    config = config or settings
    now = clock()
    new_hash = content_hash(current_text)

    if previous_text is None or previous is None:
        logger.debug("delta_full_recompute", reason="no_previous_snapshot")
        return ManuscriptDelta(
            content_hash=new_hash,
            previous_hash=content_hash(previous_text) if previous_text is not None else None,
            new_promises=_promise_ids(current_timeline),
            resolved_promises=_resolved_ids(current_timeline),
            full_recompute=True,
            processed_at=now,
        )

    old_hash = content_hash(previous_text)
    if old_hash == new_hash:
        return ManuscriptDelta(
            valid_sections=[s.id for s in previous.structural.sections],
            content_hash=new_hash,
            previous_hash=old_hash,
            processed_at=now,
        )

    changes = diff_texts(previous_text, current_text, config, timestamp=now)
    ranges = [(c.start, c.end) for c in changes]
    for edit in edits or []:
        start = clamp(min(edit.start, edit.end), len(previous_text))
        end = clamp(max(edit.start, edit.end), len(previous_text))
        ranges.append((start, end))

    invalidated: list[str] = []
    valid: list[str] = []
    for section in previous.structural.sections:
        if any(_touches(section.start_offset, section.end_offset, r) for r in ranges):
            invalidated.append(section.id)
        else:
            valid.append(section.id)

    affected: list[str] = []
    shifted: list[str] = []
    resizing = [c for c in changes if c.length_delta != 0]
    for node in previous.entities.nodes:
        spans = [
            (m.offset, m.offset + (m.length or len(node.name)))
            for m in node.mentions
            if m.chapter_id == previous.chapter_id
        ]
        if any(_touches(start, end, r) for start, end in spans for r in ranges):
            affected.append(node.id)
        elif any(start >= c.end for start, _ in spans for c in resizing):
            shifted.append(node.id)

    affected_promises: list[str] = []
    for promise in previous.timeline.promises:
        origin = (promise.offset, promise.offset + max(len(promise.quote), 1))
        hit = any(_touches(*origin, r) for r in ranges)
        if not hit and promise.resolution_offset is not None:
            hit = any(r[0] <= promise.resolution_offset < r[1] for r in ranges)
        if hit:
            affected_promises.append(promise.id)

    previous_ids = set(_promise_ids(previous.timeline))
    previously_resolved = set(_resolved_ids(previous.timeline))
    delta = ManuscriptDelta(
        changed_ranges=changes,
        invalidated_sections=invalidated,
        valid_sections=valid,
        affected_entities=affected,
        shifted_entities=shifted,
        affected_promises=affected_promises,
        new_promises=[p for p in _promise_ids(current_timeline) if p not in previous_ids],
        resolved_promises=[p for p in _resolved_ids(current_timeline) if p not in previously_resolved],
        content_hash=new_hash,
        previous_hash=old_hash,
        processed_at=now,
    )
    logger.info(
        "delta_computed",
        changes=len(changes),
        invalidated_sections=len(invalidated),
        affected_entities=len(affected),
        shifted_entities=len(shifted),
    )
    return delta


def diff_texts(old: str, new: str, config: Settings | None = None, timestamp: float = 0.0) -> list[TextChange]:
    """Changed ranges of ``old`` that turn it into ``new``, sorted and disjoint."""
    config = config or settings
    if old == new:
        return []

    prefix = 0
    limit = min(len(old), len(new))
    while prefix < limit and old[prefix] == new[prefix]:
        prefix += 1
    suffix = 0
    while suffix < limit - prefix and old[-1 - suffix] == new[-1 - suffix]:
        suffix += 1

    old_mid = old[prefix : len(old) - suffix]
    new_mid = new[prefix : len(new) - suffix]

    if len(old_mid) + len(new_mid) > config.diff_window_limit:
        return [_window_change(prefix, old_mid, new_mid, timestamp)]

    matcher = difflib.SequenceMatcher(None, old_mid, new_mid, autojunk=False)
    changes = [
        TextChange(
            start=prefix + i1,
            end=prefix + i2,
            change_type=_OPCODE_TYPES[tag],
            old_text=old_mid[i1:i2] or None,
            new_text=new_mid[j1:j2] or None,
            timestamp=timestamp,
        )
        for tag, i1, i2, j1, j2 in matcher.get_opcodes()
        if tag != "equal"
    ]
    if len(changes) > config.max_changed_ranges:
        logger.warning("delta_ranges_collapsed", ranges=len(changes), limit=config.max_changed_ranges)
        return [_window_change(prefix, old_mid, new_mid, timestamp)]
    return changes


def map_offset(offset: int, changes: list[TextChange]) -> int:
    """Translate an old-text offset into new-text coordinates.

    Offsets at or after a change move by its length delta; an insert exactly
    at ``offset`` pushes it right. An offset inside a replaced or deleted
    range lands at the same distance into the replacement, clamped to it.
    """
    shift = 0
    for change in sorted(changes, key=lambda c: (c.start, c.end)):
        if change.end <= offset:
            shift += change.length_delta
        elif change.start <= offset:
            inside = min(offset - change.start, len(change.new_text or ""))
            return change.start + shift + inside
        else:
            break
    return max(offset + shift, 0)


def _window_change(prefix: int, old_mid: str, new_mid: str, timestamp: float) -> TextChange:
    if not old_mid:
        kind = ChangeType.INSERT
    elif not new_mid:
        kind = ChangeType.DELETE
    else:
        kind = ChangeType.MODIFY
    return TextChange(
        start=prefix,
        end=prefix + len(old_mid),
        change_type=kind,
        old_text=old_mid or None,
        new_text=new_mid or None,
        timestamp=timestamp,
    )


def _touches(start: int, end: int, change: tuple[int, int]) -> bool:
    c_start, c_end = change
    if c_start == c_end:
        return start <= c_start <= end
    return c_start < end and c_end > start


def _promise_ids(timeline: Timeline | None) -> list[str]:
    return [p.id for p in timeline.promises] if timeline else []


def _resolved_ids(timeline: Timeline | None) -> list[str]:
    return [p.id for p in timeline.promises if p.resolved] if timeline else []
