"""Shared test fixtures for the manuscript intelligence engine.

Provides settings, the built-in lexicon, sample chapters and a helper that
strips wall-clock fields before comparing artifacts.
"""

from __future__ import annotations

from typing import Any

import pytest

from manuscript_intel.config import Settings
from manuscript_intel.core.lexicon import Lexicon

# -- Settings / lexicon ---------------------------------------------------


@pytest.fixture
def config():
    """Default settings, isolated from any MANUSCRIPT_* environment."""
    return Settings(_env_file=None)


@pytest.fixture
def small_sections():
    """Settings where every paragraph of the sample chapters is its own section."""
    return Settings(_env_file=None, section_max_words=10)


@pytest.fixture
def lexicon():
    return Lexicon()


@pytest.fixture
def fixed_clock():
    return lambda: 1_700_000_000.0


# -- Sample chapters ------------------------------------------------------


@pytest.fixture
def dialogue_chapter():
    """Two speakers, one scene, attributed dialogue."""
    return (
        'Marcus stood by the window of the tavern. "The road is closed," Marcus said.\n\n'
        '"Then we wait," Elena replied. Elena poured the wine and smiled.\n\n'
        "Marcus trusted Elena. They talked until the candles burned low."
    )


@pytest.fixture
def scene_break_chapter():
    return (
        "Elena crossed the courtyard in the rain. The guards ignored her.\n\n"
        "***\n\n"
        "Marcus\n\n"
        "Marcus sharpened his sword in the armory. He thought about the war.\n\n"
        "Three days later the army marched north."
    )


@pytest.fixture
def promise_chapter():
    """A goal raised in the first paragraph and paid off in the last."""
    return (
        "Elena vowed to recover the silver chalice from the drowned temple.\n\n"
        "The caravan moved east for many days across the dry hills.\n\n"
        "At last Elena lifted the silver chalice out of the drowned temple and wept."
    )


# -- Helpers --------------------------------------------------------------

_CLOCK_FIELDS = frozenset({"processed_at", "last_full_process", "timestamp"})


def without_clock(value: Any) -> Any:
    """Recursively drop wall-clock fields from a model dump."""
    if isinstance(value, dict):
        return {k: without_clock(v) for k, v in value.items() if k not in _CLOCK_FIELDS}
    if isinstance(value, list):
        return [without_clock(v) for v in value]
    return value


@pytest.fixture
def strip_clock():
    return without_clock
