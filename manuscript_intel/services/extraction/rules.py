"""Declarative registry of raw extraction rules.

Each rule is a pure, named function ``(text, context) -> list[...]`` filed
under a kind (character, location, object, faction, concept, alias,
attribute). Rules only propose candidates; filtering, grouping and typing
happen in ``entities.py``.

Offsets returned by rules are absolute: ``context.base`` is the position of
``text`` inside the chapter, so the same rules run over a whole chapter or
over a single dirty paragraph.

Candidate weights are the rule's confidence and act as type votes:
resolved speakers, titles and attributions are strong (1.0), a lone
capitalised word at a sentence start is weak (0.4).
"""

from __future__ import annotations

import functools
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from manuscript_intel.core.lexicon import Lexicon
from manuscript_intel.core.logging import get_logger
from manuscript_intel.core.resilience import capped
from manuscript_intel.schemas.entities import EntityType
from manuscript_intel.schemas.structure import StructuralFingerprint

logger = get_logger(__name__)

_NAME = r"[A-Z][a-z]+(?:\s+[A-Z][a-z]+)?"
_RUN = r"[A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+){0,2}"
_ARTICLES = frozenset({"the", "a", "an"})

_COLOURS = (
    "amber|auburn|black|blond|blonde|blue|brown|chestnut|copper|dark|gold|golden|gray|green"
    "|grey|hazel|pale|raven|red|silver|violet|white"
)


@dataclass(frozen=True)
class Candidate:
    """A proposed entity surface form at an absolute offset.

    ``offset`` points at the bare name, after any leading article or title,
    so every rule agrees on where a mention starts.
    """

    surface: str
    name: str
    kind: EntityType
    offset: int
    rule: str
    weight: float = 1.0


@dataclass(frozen=True)
class AliasLink:
    name: str
    alias: str
    offset: int
    rule: str


@dataclass(frozen=True)
class AttributeObservation:
    name: str
    attribute: str
    value: str
    offset: int
    rule: str


@dataclass(frozen=True)
class RuleContext:
    lexicon: Lexicon
    structure: StructuralFingerprint = field(default_factory=StructuralFingerprint)
    base: int = 0
    limit: int = 500

    @property
    def patterns(self) -> _Patterns:
        return _compile(self.lexicon)


@dataclass(frozen=True)
class Rule:
    name: str
    kind: str
    func: Callable[[str, RuleContext], list[Any]]


RULES: dict[str, list[Rule]] = {}


def rule(kind: str) -> Callable[[Callable[[str, RuleContext], list[Any]]], Callable[[str, RuleContext], list[Any]]]:
    """Register a rule function under ``kind``, named after the function."""

    def decorator(func: Callable[[str, RuleContext], list[Any]]) -> Callable[[str, RuleContext], list[Any]]:
        RULES.setdefault(kind, []).append(Rule(name=func.__name__.lstrip("_"), kind=kind, func=func))
        return func

    return decorator


def run_rules(text: str, context: RuleContext, kinds: Iterable[str] | None = None) -> list[Any]:
    """Apply every registered rule of the requested kinds, in registry order."""
    selected = list(kinds) if kinds is not None else list(RULES)
    results: list[Any] = []
    for kind in selected:
        for r in RULES.get(kind, []):
            results.extend(r.func(text, context))
    return results


# -- Compiled patterns -----------------------------------------------------


@dataclass(frozen=True)
class _Patterns:
    sentence_start: re.Pattern[str]
    titled: re.Pattern[str]
    said_after_quote: re.Pattern[str]
    said_before_quote: re.Pattern[str]
    preposition_place: re.Pattern[str]
    named_place: re.Pattern[str]
    named_object: re.Pattern[str]
    object_of: re.Pattern[str]
    possessive_object: re.Pattern[str]
    named_faction: re.Pattern[str]
    faction_of: re.Pattern[str]
    named_concept: re.Pattern[str]
    concept_of: re.Pattern[str]
    known_as: re.Pattern[str]
    real_name: re.Pattern[str]
    eyes: re.Pattern[str]
    hair: re.Pattern[str]
    age: re.Pattern[str]
    role: re.Pattern[str]


@functools.lru_cache(maxsize=8)
def _compile(lexicon: Lexicon) -> _Patterns:
    titles = lexicon.alternation("titles")
    verbs = lexicon.alternation("speech_verbs")
    preps = lexicon.alternation("location_prepositions")

    def noun(name: str) -> str:
        return rf"(?i:{lexicon.alternation(name)})"

    return _Patterns(
        sentence_start=re.compile(
            rf"(?:^|[.!?][ \t]+|[.!?,][\"”][ \t]+|\n)({_NAME})\b", re.MULTILINE
        ),
        titled=re.compile(rf"\b((?i:{titles})\.?[ \t]+{_NAME})\b"),
        said_after_quote=re.compile(rf"[\"”][ \t]*,?[ \t]*(?:{verbs})[ \t]+((?:(?i:{titles})\.?[ \t]+)?{_NAME})\b"),
        said_before_quote=re.compile(rf"\b((?:(?i:{titles})\.?[ \t]+)?{_NAME})[ \t]+(?:{verbs})[ \t]*,?[ \t]*[\"“]"),
        preposition_place=re.compile(rf"\b(?:{preps})[ \t]+(?:the[ \t]+)?({_RUN})\b"),
        named_place=re.compile(rf"\b[Tt]he[ \t]+({_RUN})[ \t]+({noun('place_nouns')})\b"),
        named_object=re.compile(rf"\b[Tt]he[ \t]+({_RUN})[ \t]+({noun('object_nouns')})\b"),
        object_of=re.compile(rf"\b[Tt]he[ \t]+({noun('object_nouns')})[ \t]+of[ \t]+({_NAME})\b"),
        possessive_object=re.compile(rf"\b({_NAME})['’]s[ \t]+({noun('object_nouns')})\b"),
        named_faction=re.compile(rf"\b[Tt]he[ \t]+({_RUN})[ \t]+({noun('faction_nouns')})\b"),
        faction_of=re.compile(rf"\b[Tt]he[ \t]+({noun('faction_nouns')})[ \t]+of[ \t]+(?:the[ \t]+)?({_NAME})\b"),
        named_concept=re.compile(rf"\b[Tt]he[ \t]+({_RUN})[ \t]+({noun('concept_nouns')})\b"),
        concept_of=re.compile(rf"\b[Tt]he[ \t]+({noun('concept_nouns')})[ \t]+of[ \t]+(?:the[ \t]+)?({_NAME})\b"),
        known_as=re.compile(
            rf"\b({_NAME})(?:,[ \t]+(?:also[ \t]+)?(?:known[ \t]+as|called|nicknamed)|[ \t]+(?:also[ \t]+)?known[ \t]+as)"
            rf"[ \t]+[\"“']?((?:the[ \t]+)?{_NAME})\b"
        ),
        real_name=re.compile(rf"\b({_NAME}),?[ \t]+whose[ \t]+(?:real|true)[ \t]+name[ \t]+(?:was|is)[ \t]+({_NAME})\b"),
        eyes=re.compile(
            rf"\b({_NAME})(?:['’]s[ \t]+|[ \t]+had[ \t]+)({_COLOURS})(?:[ \t]+|-)eyes?\b"
        ),
        hair=re.compile(
            rf"\b({_NAME})(?:['’]s[ \t]+|[ \t]+had[ \t]+)(?:(?:long|short|curly|straight|thick|thin)[ \t]+)?"
            rf"({_COLOURS})[ \t]+hair\b"
        ),
        age=re.compile(
            rf"\b({_NAME})(?:,[ \t]+(?:aged[ \t]+)?(\d{{1,3}}),|[ \t]+was[ \t]+(\d{{1,3}})[ \t]+years?[ \t]+old)"
        ),
        role=re.compile(rf"\b({_NAME}),[ \t]+the[ \t]+([a-z]+(?:[ \t]+[a-z]+)?),"),
    )


def _make(
    surface: str,
    start: int,
    kind: EntityType,
    rule_name: str,
    context: RuleContext,
    weight: float = 1.0,
) -> Candidate | None:
    """Build a candidate, pointing its offset past leading articles and titles.

    Leading function words ("Then Marcus") are dropped from the surface form.
    """
    tokens = list(re.finditer(r"\S+", surface))
    while len(tokens) > 1 and context.lexicon.is_stopword(tokens[0].group()) and not (
        context.lexicon.is_title(tokens[0].group())
    ):
        tokens.pop(0)
    if not tokens:
        return None
    lead = tokens[0].start()
    surface, start = surface[lead:], start + lead
    tokens = list(re.finditer(r"\S+", surface))
    while tokens and (
        tokens[0].group().lower() in _ARTICLES or context.lexicon.is_title(tokens[0].group())
    ):
        tokens.pop(0)
    if not tokens:
        return None
    shift = tokens[0].start()
    return Candidate(
        surface=" ".join(surface.split()),
        name=" ".join(surface[shift:].split()),
        kind=kind,
        offset=context.base + start + shift,
        rule=rule_name,
        weight=weight,
    )


def _collect(
    matches: Iterable[re.Match[str]],
    build: Callable[[re.Match[str]], Candidate | None],
    context: RuleContext,
    category: str,
) -> list[Candidate]:
    out: list[Candidate] = []
    for match in capped(matches, context.limit, category):
        if (candidate := build(match)) is not None:
            out.append(candidate)
    return out


# -- Character rules -------------------------------------------------------


@rule("character")
def _sentence_start(text: str, context: RuleContext) -> list[Candidate]:
    """Capitalised runs opening a sentence or following a closing quote.

    Runs that open with an article are skipped ("The Monday meeting"); other
    leading function words are dropped ("Then Marcus" -> "Marcus").
    """
    lexicon = context.lexicon

    def build(m: re.Match[str]) -> Candidate | None:
        tokens = list(re.finditer(r"\S+", m.group(1)))
        if tokens[0].group().lower() in _ARTICLES:
            return None
        while tokens and lexicon.is_stopword(tokens[0].group()):
            tokens.pop(0)
        if not tokens:
            return None
        start = m.start(1) + tokens[0].start()
        surface = m.group(1)[tokens[0].start() :]
        return _make(surface, start, EntityType.CHARACTER, "sentence_start", context, weight=0.4)

    return _collect(context.patterns.sentence_start.finditer(text), build, context, "sentence_start")


@rule("character")
def _titled_name(text: str, context: RuleContext) -> list[Candidate]:
    """Names after a title; the title stays on the surface form."""
    return _collect(
        context.patterns.titled.finditer(text),
        lambda m: _make(m.group(1), m.start(1), EntityType.CHARACTER, "titled_name", context),
        context,
        "titled_name",
    )


@rule("character")
def _dialogue_attribution(text: str, context: RuleContext) -> list[Candidate]:
    """``"..." said X`` and ``X said, "..."``."""
    p = context.patterns
    matches = [*p.said_after_quote.finditer(text), *p.said_before_quote.finditer(text)]
    return _collect(
        matches,
        lambda m: _make(m.group(1), m.start(1), EntityType.CHARACTER, "dialogue_attribution", context),
        context,
        "dialogue_attribution",
    )


@rule("character")
def _resolved_speaker(text: str, context: RuleContext) -> list[Candidate]:
    """Speakers already attributed by the structural pass."""
    end = context.base + len(text)
    out: list[Candidate] = []
    for line in context.structure.dialogue_map:
        if not line.speaker or line.speaker_offset is None:
            continue
        if not context.base <= line.speaker_offset < end:
            continue
        candidate = _make(
            line.speaker, line.speaker_offset - context.base, EntityType.CHARACTER, "resolved_speaker", context
        )
        if candidate is not None:
            out.append(candidate)
    return out


# -- Location / object / faction / concept rules ---------------------------


def _titled_noun(run: str, noun: str) -> str:
    return f"{' '.join(run.split())} {noun.capitalize()}"


@rule("location")
def _preposition_place(text: str, context: RuleContext) -> list[Candidate]:
    return _collect(
        context.patterns.preposition_place.finditer(text),
        lambda m: _make(m.group(1), m.start(1), EntityType.LOCATION, "preposition_place", context, weight=0.5),
        context,
        "preposition_place",
    )


@rule("location")
def _named_place(text: str, context: RuleContext) -> list[Candidate]:
    return _collect(
        context.patterns.named_place.finditer(text),
        lambda m: _make(
            _titled_noun(m.group(1), m.group(2)), m.start(1), EntityType.LOCATION, "named_place", context
        ),
        context,
        "named_place",
    )


@rule("object")
def _named_object(text: str, context: RuleContext) -> list[Candidate]:
    p = context.patterns
    out = _collect(
        p.named_object.finditer(text),
        lambda m: _make(
            _titled_noun(m.group(1), m.group(2)), m.start(1), EntityType.OBJECT, "named_object", context
        ),
        context,
        "named_object",
    )
    out += _collect(
        p.object_of.finditer(text),
        lambda m: _make(
            f"{m.group(1).capitalize()} of {m.group(2)}", m.start(1), EntityType.OBJECT, "object_of", context
        ),
        context,
        "object_of",
    )
    return out


@rule("object")
def _possessive_object(text: str, context: RuleContext) -> list[Candidate]:
    """``Marcus's sword``: the object candidate; ownership is a relationship rule."""
    return _collect(
        context.patterns.possessive_object.finditer(text),
        lambda m: _make(
            f"{m.group(1)}'s {m.group(2).capitalize()}",
            m.start(1),
            EntityType.OBJECT,
            "possessive_object",
            context,
            weight=0.6,
        ),
        context,
        "possessive_object",
    )


@rule("faction")
def _named_faction(text: str, context: RuleContext) -> list[Candidate]:
    p = context.patterns
    out = _collect(
        p.named_faction.finditer(text),
        lambda m: _make(
            _titled_noun(m.group(1), m.group(2)), m.start(1), EntityType.FACTION, "named_faction", context
        ),
        context,
        "named_faction",
    )
    out += _collect(
        p.faction_of.finditer(text),
        lambda m: _make(
            f"{m.group(1).capitalize()} of {m.group(2)}", m.start(1), EntityType.FACTION, "faction_of", context
        ),
        context,
        "faction_of",
    )
    return out


@rule("concept")
def _named_concept(text: str, context: RuleContext) -> list[Candidate]:
    p = context.patterns
    out = _collect(
        p.named_concept.finditer(text),
        lambda m: _make(
            _titled_noun(m.group(1), m.group(2)), m.start(1), EntityType.CONCEPT, "named_concept", context
        ),
        context,
        "named_concept",
    )
    out += _collect(
        p.concept_of.finditer(text),
        lambda m: _make(
            f"{m.group(1).capitalize()} of {m.group(2)}", m.start(1), EntityType.CONCEPT, "concept_of", context
        ),
        context,
        "concept_of",
    )
    return out


# -- Alias and attribute rules ---------------------------------------------


@rule("alias")
def _known_as(text: str, context: RuleContext) -> list[AliasLink]:
    """``X, known as Y`` / ``X, called Y`` / ``X, nicknamed Y``."""
    return [
        AliasLink(name=m.group(1), alias=" ".join(m.group(2).split()), offset=context.base + m.start(1), rule="known_as")
        for m in capped(context.patterns.known_as.finditer(text), context.limit, "known_as")
    ]


@rule("alias")
def _real_name(text: str, context: RuleContext) -> list[AliasLink]:
    """``Y, whose real name was X``: X is the name, Y the alias."""
    return [
        AliasLink(name=m.group(2), alias=m.group(1), offset=context.base + m.start(2), rule="real_name")
        for m in capped(context.patterns.real_name.finditer(text), context.limit, "real_name")
    ]


@rule("attribute")
def _physical_traits(text: str, context: RuleContext) -> list[AttributeObservation]:
    p = context.patterns
    out: list[AttributeObservation] = []
    for attribute, pattern in (("eye_color", p.eyes), ("hair_color", p.hair)):
        for m in capped(pattern.finditer(text), context.limit, attribute):
            out.append(
                AttributeObservation(
                    name=m.group(1),
                    attribute=attribute,
                    value=m.group(2).lower(),
                    offset=context.base + m.start(1),
                    rule="physical_traits",
                )
            )
    return out


@rule("attribute")
def _age(text: str, context: RuleContext) -> list[AttributeObservation]:
    return [
        AttributeObservation(
            name=m.group(1),
            attribute="age",
            value=m.group(2) or m.group(3),
            offset=context.base + m.start(1),
            rule="age",
        )
        for m in capped(context.patterns.age.finditer(text), context.limit, "age")
    ]


@rule("attribute")
def _appositive_role(text: str, context: RuleContext) -> list[AttributeObservation]:
    """``Marcus, the blacksmith, ...``."""
    out: list[AttributeObservation] = []
    for m in capped(context.patterns.role.finditer(text), context.limit, "role"):
        value = " ".join(m.group(2).split())
        if context.lexicon.is_stopword(value.split()[0]):
            continue
        out.append(
            AttributeObservation(
                name=m.group(1), attribute="role", value=value, offset=context.base + m.start(1), rule="appositive_role"
            )
        )
    return out
