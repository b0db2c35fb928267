"""Tests for manuscript_intel.services.extraction.rules."""

from __future__ import annotations

from manuscript_intel.schemas.entities import EntityType
from manuscript_intel.services.extraction.rules import (
    RULES,
    AliasLink,
    AttributeObservation,
    Candidate,
    RuleContext,
    run_rules,
)
from manuscript_intel.services.structural import analyze_structure


def _candidates(results: list[object]) -> list[Candidate]:
    return [r for r in results if isinstance(r, Candidate)]


class TestRegistry:

    def test_every_kind_registered(self):
        assert set(RULES) == {"character", "location", "object", "faction", "concept", "alias", "attribute"}

    def test_rule_names_are_unique(self):
        names = [r.name for rules in RULES.values() for r in rules]
        assert len(names) == len(set(names))

    def test_kind_selection(self, lexicon):
        text = "Elena had green eyes. They rode into the Iron Keep."
        results = run_rules(text, RuleContext(lexicon=lexicon), kinds=["attribute"])
        assert results
        assert all(isinstance(r, AttributeObservation) for r in results)


class TestCharacterRules:

    def test_titled_name_offset_skips_title(self, lexicon):
        text = "Captain Elena Vale arrived."
        found = _candidates(run_rules(text, RuleContext(lexicon=lexicon), kinds=["character"]))
        titled = [c for c in found if c.rule == "titled_name"]
        assert len(titled) == 1
        assert titled[0].name == "Elena Vale"
        assert titled[0].surface == "Captain Elena Vale"
        assert titled[0].offset == text.index("Elena")

    def test_base_shifts_offsets(self, lexicon):
        text = "Captain Elena Vale arrived."
        found = _candidates(run_rules(text, RuleContext(lexicon=lexicon, base=100), kinds=["character"]))
        titled = next(c for c in found if c.rule == "titled_name")
        assert titled.offset == 100 + text.index("Elena")

    def test_leading_stopword_dropped(self, lexicon):
        text = "Then Marcus left. The Monday meeting started early."
        found = _candidates(run_rules(text, RuleContext(lexicon=lexicon), kinds=["character"]))
        names = {c.name for c in found}
        assert "Marcus" in names
        assert not any("Monday" in n for n in names)
        marcus = next(c for c in found if c.name == "Marcus")
        assert marcus.offset == text.index("Marcus")
        assert marcus.weight < 1.0

    def test_dialogue_attribution_is_strong(self, lexicon):
        text = '"Run," said Marcus.'
        found = _candidates(run_rules(text, RuleContext(lexicon=lexicon), kinds=["character"]))
        attributed = [c for c in found if c.rule == "dialogue_attribution"]
        assert [c.name for c in attributed] == ["Marcus"]
        assert attributed[0].weight == 1.0

    def test_resolved_speaker_from_structure(self, lexicon, dialogue_chapter):
        structure = analyze_structure(dialogue_chapter, lexicon=lexicon)
        found = _candidates(
            run_rules(dialogue_chapter, RuleContext(lexicon=lexicon, structure=structure), kinds=["character"])
        )
        resolved = {c.name for c in found if c.rule == "resolved_speaker"}
        assert resolved == {"Marcus", "Elena"}


class TestOtherKinds:

    def test_named_place(self, lexicon):
        text = "They rode into the Iron Keep at dusk."
        found = _candidates(run_rules(text, RuleContext(lexicon=lexicon), kinds=["location"]))
        assert any(c.name == "Iron Keep" and c.kind == EntityType.LOCATION for c in found)

    def test_object_of(self, lexicon):
        text = "She raised the Crown of Ashes high."
        found = _candidates(run_rules(text, RuleContext(lexicon=lexicon), kinds=["object"]))
        assert any(c.name == "Crown of Ashes" for c in found)

    def test_named_faction(self, lexicon):
        text = "The Silver Order gathered at noon."
        found = _candidates(run_rules(text, RuleContext(lexicon=lexicon), kinds=["faction"]))
        assert any(c.name == "Silver Order" and c.kind == EntityType.FACTION for c in found)


class TestLinkRules:

    def test_known_as(self, lexicon):
        text = "Marcus, known as the Hawk, drew his sword."
        links = [r for r in run_rules(text, RuleContext(lexicon=lexicon), kinds=["alias"]) if isinstance(r, AliasLink)]
        assert len(links) == 1
        assert links[0].name == "Marcus"
        assert links[0].alias == "the Hawk"

    def test_real_name(self, lexicon):
        text = "The Hawk, whose real name was Marcus Vale, waited."
        links = run_rules(text, RuleContext(lexicon=lexicon), kinds=["alias"])
        assert any(isinstance(r, AliasLink) and r.name == "Marcus Vale" and r.alias == "The Hawk" for r in links)

    def test_physical_traits_and_age(self, lexicon):
        text = "Elena had green eyes. Marcus was 42 years old."
        found = {
            (r.name, r.attribute, r.value)
            for r in run_rules(text, RuleContext(lexicon=lexicon), kinds=["attribute"])
        }
        assert ("Elena", "eye_color", "green") in found
        assert ("Marcus", "age", "42") in found

    def test_appositive_role(self, lexicon):
        text = "Marcus, the blacksmith, laughed."
        found = run_rules(text, RuleContext(lexicon=lexicon), kinds=["attribute"])
        assert any(r.attribute == "role" and r.value == "blacksmith" for r in found)
