"""Tests for manuscript_intel.services.style."""

from __future__ import annotations

import pytest

from manuscript_intel.services.structural import analyze_structure
from manuscript_intel.services.style import analyze_style, is_adverb


def _style(text: str, config, lexicon):
    return analyze_style(text, analyze_structure(text, "ch1", config, lexicon), config, lexicon)


class TestFlags:

    TEXT = "The door was opened by the guard. She walked quickly to the gate. In the nick of time, he arrived."

    def test_passive_voice(self, config, lexicon):
        flags = _style(self.TEXT, config, lexicon).flags
        assert [(p.quote, p.offset) for p in flags.passive_voice_instances] == [
            ("was opened", self.TEXT.index("was opened"))
        ]
        assert flags.passive_voice_ratio == pytest.approx(1 / 3, abs=1e-4)

    def test_adverbs(self, config, lexicon):
        flags = _style(self.TEXT, config, lexicon).flags
        assert [a.word for a in flags.adverb_instances] == ["quickly"]
        assert flags.adverb_instances[0].offset == self.TEXT.index("quickly")
        assert flags.adverb_density > 0

    def test_cliche_keeps_original_casing(self, config, lexicon):
        flags = _style(self.TEXT, config, lexicon).flags
        assert flags.cliche_count == 1
        assert flags.cliche_instances[0].quote == "In the nick of time"
        assert flags.cliche_instances[0].offset == self.TEXT.index("In the nick")

    def test_filter_words(self, config, lexicon):
        flags = _style("She felt cold and noticed the fire.", config, lexicon).flags
        assert [w.word for w in flags.filter_word_instances] == ["felt", "noticed"]

    def test_repeated_trigrams(self, config, lexicon):
        text = "The old man nodded. The old man sighed. The old man slept."
        repeated = _style(text, config, lexicon).flags.repeated_phrases
        assert repeated[0].phrase == "the old man"
        assert repeated[0].count == 3
        assert repeated[0].offsets == [0, 20, 40]

    def test_function_word_trigrams_ignored(self, config, lexicon):
        text = "It was in the. It was in the. It was in the."
        assert _style(text, config, lexicon).flags.repeated_phrases == []


class TestMetrics:

    def test_empty_text(self, config, lexicon):
        style = _style("", config, lexicon)
        assert style.vocabulary.total_words == 0
        assert style.flags.passive_voice_instances == []

    def test_sentence_endings(self, config, lexicon):
        syntax = _style("Where is he? He left. Run!", config, lexicon).syntax
        assert syntax.question_ratio == pytest.approx(0.3333, abs=1e-4)
        assert syntax.exclamation_ratio == pytest.approx(0.3333, abs=1e-4)
        assert syntax.min_sentence_length == 1
        assert syntax.max_sentence_length == 3

    def test_dialogue_ratio_is_fraction_of_words(self, config, lexicon, dialogue_chapter):
        spoken = _style(dialogue_chapter, config, lexicon).syntax.dialogue_to_narrative_ratio
        assert 0.0 < spoken < 1.0
        narrative = _style("Elena crossed the courtyard in the rain.", config, lexicon)
        assert narrative.syntax.dialogue_to_narrative_ratio == 0.0

    def test_vocabulary(self, config, lexicon):
        vocabulary = _style("Elena laughed. Elena laughed. Elena laughed again.", config, lexicon).vocabulary
        assert vocabulary.total_words == 7
        assert vocabulary.unique_words == 3
        assert vocabulary.top_words[0].word in {"elena", "laughed"}
        assert "elena" in vocabulary.overused_words

    def test_rhythm(self, config, lexicon, dialogue_chapter):
        rhythm = _style(dialogue_chapter, config, lexicon).rhythm
        assert rhythm.syllable_pattern
        assert all(v >= 1.0 for v in rhythm.syllable_pattern)
        assert rhythm.punctuation_density > 0
        assert rhythm.avg_clause_count >= 1.0


class TestIsAdverb:

    @pytest.mark.parametrize(("word", "expected"), [("quickly", True), ("family", False), ("fly", False)])
    def test_is_adverb(self, lexicon, word, expected):
        assert is_adverb(word, lexicon) is expected
