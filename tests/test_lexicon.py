"""Tests for the built-in lexicons and their YAML extensions."""

from __future__ import annotations

import pytest

from manuscript_intel.core.exceptions import LexiconError
from manuscript_intel.core.lexicon import Lexicon, load_lexicon


class TestBuiltinLexicon:

    @pytest.mark.parametrize("word", ["Monday", "she", "Chapter", "hello", "will", "three"])
    def test_stopwords(self, lexicon, word):
        assert lexicon.is_stopword(word)

    @pytest.mark.parametrize("word", ["April", "may", "June", "August"])
    def test_name_months_are_not_stopwords(self, lexicon, word):
        assert lexicon.is_name_month(word)
        assert not lexicon.is_stopword(word)

    def test_titles_ignore_trailing_dot(self, lexicon):
        assert lexicon.is_title("Mr.")
        assert lexicon.is_title("captain")
        assert not lexicon.is_title("Marcus")

    def test_alternation_longest_first(self, lexicon):
        terms = lexicon.alternation("cliches").split("|")
        lengths = [len(t) for t in terms]
        assert lengths == sorted(lengths, reverse=True)

    def test_lexicons_are_hashable(self, lexicon):
        assert hash(lexicon) == hash(Lexicon())


class TestYamlExtension:

    def test_extends_without_replacing(self, tmp_path):
        path = tmp_path / "lexicon.yaml"
        path.write_text("stopwords: [Thursday Club]\nplace_nouns: [Citadel, spire]\n", encoding="utf-8")

        extended = Lexicon.from_yaml(path)
        assert extended.is_stopword("thursday club")
        assert extended.is_stopword("monday")
        assert {"citadel", "spire", "castle"} <= extended.place_nouns
        assert extended.sources == ("builtin", str(path))

    def test_empty_file_is_builtin(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert Lexicon.from_yaml(path) == Lexicon()

    def test_missing_file(self, tmp_path):
        with pytest.raises(LexiconError) as exc_info:
            Lexicon.from_yaml(tmp_path / "nope.yaml")
        assert "error" in exc_info.value.context

    def test_unknown_lexicon(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("spells: [fireball]\n", encoding="utf-8")
        with pytest.raises(LexiconError, match="spells"):
            Lexicon.from_yaml(path)

    def test_non_list_value(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("stopwords: thursday\n", encoding="utf-8")
        with pytest.raises(LexiconError, match="must be a list"):
            Lexicon.from_yaml(path)

    def test_non_mapping_document(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(LexiconError, match="mapping"):
            Lexicon.from_yaml(path)

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("stopwords: [unclosed\n", encoding="utf-8")
        with pytest.raises(LexiconError):
            Lexicon.from_yaml(path)


class TestLoadLexicon:

    def test_empty_path_is_builtin_and_cached(self):
        assert load_lexicon("") is load_lexicon("")
        assert load_lexicon("") == Lexicon()

    def test_path_is_loaded(self, tmp_path):
        path = tmp_path / "extra.yaml"
        path.write_text("cliches: [by the skin of his teeth]\n", encoding="utf-8")
        assert "by the skin of his teeth" in load_lexicon(str(path)).cliches
