"""Closed lexicons driving the heuristic passes, with optional YAML extensions.

The built-in lexicons cover English prose. A project can extend (never
replace) any of them with a YAML file whose top-level keys are lexicon names
and whose values are lists of words or phrases:

    stopwords: [Thursday Club]
    place_nouns: [citadel, spire]
    cliches: [dark and stormy night]

Usage:
    lexicon = load_lexicon(settings.lexicon_path)
    lexicon.is_stopword("monday")  # -> True
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path

import yaml

from manuscript_intel.core.exceptions import LexiconError
from manuscript_intel.core.logging import get_logger

logger = get_logger(__name__)


def _words(block: str) -> frozenset[str]:
    return frozenset(w.strip().lower() for w in block.split(",") if w.strip())


_STOPWORDS = _words(
    """
    the, a, an, this, that, these, those, it, they, we, i, he, she, him, her, his, hers, their,
    our, my, your, its, them, us, you, me,
    monday, tuesday, wednesday, thursday, friday, saturday, sunday,
    january, february, march, july, september, october, november, december,
    morning, afternoon, evening, night, day, week, month, year, today, tomorrow, yesterday,
    north, south, east, west,
    chapter, part, book, section, act, scene, prologue, epilogue, interlude,
    said, asked, replied, answered, thought, knew, felt, saw,
    but, and, or, if, when, then, now, here, there, where, what, why, how, who, while, after,
    before, once, still, even, just, so, as, at, in, on, of, for, with, from, to, by,
    yes, no, maybe, perhaps, certainly, definitely, okay, ok, oh, ah, hey, hi, hello, goodbye,
    well, please, thanks, sorry, god, damn, wait, look, come, stop, run, go,
    one, two, three, four, five, first, second, third, last, next, every, each, all, some, nothing,
    everything, someone, something, anyone, nobody,
    suddenly, finally, slowly, quickly, later, soon, again, never, always, together, somewhere,
    however, meanwhile, instead, somehow, everyone, everybody, although, though, because, since,
    until, unless, yet, nor, not, let, could, would, should, will, can, did, had, was, were, is
    """
)

# Months that are also given names; rejected only where they read as dates
_NAME_MONTHS = _words("april, may, june, august")

_DATE_PREPOSITIONS = _words("in, on, of, since, until, till, during, early, late, mid, last, next, this, every")

_TITLES = _words(
    """
    mr, mrs, ms, miss, dr, doctor, professor, prof, sir, lady, lord, king, queen, prince, princess,
    captain, general, colonel, major, sergeant, officer, detective, agent,
    father, mother, brother, sister, uncle, aunt, grandpa, grandma
    """
)

_LOCATION_PREPOSITIONS = _words(
    """
    in, inside, outside, within, near, into, across, through, throughout, beneath, toward, towards
    """
)

_PLACE_NOUNS = _words(
    """
    castle, palace, tower, house, hall, chamber, room, forest, mountain, river, lake, sea, ocean,
    city, town, village, kingdom, realm, land, world, tavern, inn, temple, church, cathedral,
    dungeon, cave, prison, throne, keep, fortress, harbor, market, street, bridge, valley
    """
)

_OBJECT_NOUNS = _words(
    """
    sword, crown, ring, staff, wand, book, scroll, key, gem, stone, amulet, pendant, necklace,
    bracelet, shield, armor, cloak, robe, dagger, bow, arrow, spear, axe, hammer, chalice, goblet,
    mirror, orb, crystal, map, letter
    """
)

_FACTION_NOUNS = _words(
    """
    guild, order, council, brotherhood, sisterhood, clan, empire, army, legion, alliance,
    circle, syndicate, cult, tribe, company, republic, court
    """
)

_CONCEPT_NOUNS = _words("prophecy, curse, covenant, oath, pact, ritual, blessing, law, code")

_SPEECH_VERBS = _words(
    """
    said, asked, replied, whispered, shouted, muttered, exclaimed, answered, called, cried,
    yelled, murmured, snapped, added, continued, insisted, demanded, repeated, admitted, hissed
    """
)

_ACTION_VERBS = _words(
    """
    ran, jumped, grabbed, struck, hit, kicked, punched, slammed, threw, dodged, fired, shot,
    charged, leapt, lunged, swung, rushed, dashed, sprinted, crashed, fought, attacked, fled,
    climbed, pulled, pushed, seized, stabbed, slashed, spun, ducked, raced, tackled, smashed
    """
)

_INTERNAL_MARKERS = _words(
    """
    thought, wondered, remembered, realized, realised, knew, believed, felt, hoped, feared,
    wished, imagined, considered, doubted, regretted, decided, understood, supposed, mind, heart
    """
)

_DESCRIPTIVE_MARKERS = _words(
    """
    stood, lay, hung, stretched, gleamed, glowed, smelled, tasted, looked, seemed,
    colour, color, light, shadow, dark, bright, old, ancient, tall, wide, cold, warm, silent,
    quiet, golden, grey, gray, red, blue, green, black, white
    """
)

_POSITIVE_WORDS = _words(
    """
    love, loved, joy, happy, smiled, smile, laughed, laugh, warm, kind, gentle, hope, hoped,
    safe, peace, glad, delighted, beautiful, friend, trust, grateful, relief, calm, bright
    """
)

_NEGATIVE_WORDS = _words(
    """
    hate, hated, fear, feared, angry, anger, rage, cried, tears, pain, hurt, dead, death, died,
    blood, scream, screamed, dark, cold, lost, alone, afraid, terror, grief, cruel, betrayed
    """
)

_TENSION_WORDS = _words(
    """
    suddenly, scream, screamed, blood, danger, dead, death, kill, killed, gun, knife, blade,
    run, ran, fled, panic, terror, fear, threat, trapped, explosion, shot, crash, attack,
    heart pounded, too late, no time
    """
)

_FILTER_WORDS = _words(
    """
    seemed, seem, seems, felt, feel, feels, appeared, appear, appears, noticed, notice,
    realized, realised, wondered, watched, saw, heard, thought, knew, decided, looked
    """
)

_ADVERB_EXCEPTIONS = _words(
    """
    only, family, early, friendly, holy, ugly, reply, supply, apply, belly, lonely, lovely,
    silly, likely, daily, weekly, monthly, yearly, july, italy, lily, ally, rely, fly, sly,
    jelly, bully, curly, hilly, chilly, costly, deadly, elderly, orderly, kindly, lively, ely
    """
)

_CLICHES = _words(
    """
    dark and stormy night, heart of gold, cold as ice, quiet as a mouse, at the end of the day,
    in the nick of time, time stood still, all hell broke loose, blood ran cold, avoid like the plague,
    calm before the storm, crystal clear, dead as a doornail, easier said than done, fit as a fiddle,
    head over heels, in the blink of an eye, last but not least, only time will tell,
    scared to death, sent shivers down, tip of the iceberg, white as a sheet, without a doubt,
    let out a breath, breath she didn't know, heart skipped a beat, piercing blue eyes,
    little did they know, once upon a time
    """
)


@dataclass(frozen=True)
class Lexicon:
    """Immutable bundle of every closed word list used by the passes."""

    stopwords: frozenset[str] = _STOPWORDS
    titles: frozenset[str] = _TITLES
    name_months: frozenset[str] = _NAME_MONTHS
    date_prepositions: frozenset[str] = _DATE_PREPOSITIONS
    location_prepositions: frozenset[str] = _LOCATION_PREPOSITIONS
    place_nouns: frozenset[str] = _PLACE_NOUNS
    object_nouns: frozenset[str] = _OBJECT_NOUNS
    faction_nouns: frozenset[str] = _FACTION_NOUNS
    concept_nouns: frozenset[str] = _CONCEPT_NOUNS
    speech_verbs: frozenset[str] = _SPEECH_VERBS
    action_verbs: frozenset[str] = _ACTION_VERBS
    internal_markers: frozenset[str] = _INTERNAL_MARKERS
    descriptive_markers: frozenset[str] = _DESCRIPTIVE_MARKERS
    positive_words: frozenset[str] = _POSITIVE_WORDS
    negative_words: frozenset[str] = _NEGATIVE_WORDS
    tension_words: frozenset[str] = _TENSION_WORDS
    filter_words: frozenset[str] = _FILTER_WORDS
    adverb_exceptions: frozenset[str] = _ADVERB_EXCEPTIONS
    cliches: frozenset[str] = _CLICHES
    sources: tuple[str, ...] = field(default=("builtin",), compare=False)

    def is_stopword(self, word: str) -> bool:
        return word.lower().strip() in self.stopwords

    def is_title(self, word: str) -> bool:
        return word.lower().strip().rstrip(".") in self.titles

    def is_name_month(self, word: str) -> bool:
        return word.lower().strip() in self.name_months

    def alternation(self, name: str) -> str:
        """Regex alternation of one lexicon, longest terms first."""
        terms = sorted(getattr(self, name), key=lambda t: (-len(t), t))
        return "|".join(re.escape(t) for t in terms)

    @classmethod
    def from_yaml(cls, path: Path | str) -> Lexicon:
        """Load the built-in lexicon extended by a YAML file.

        Raises:
            LexiconError: If the file is missing, unparsable, or names an
                unknown lexicon.
        """
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise LexiconError(f"Cannot read lexicon file {path}", context={"error": str(e)}) from e

        if not isinstance(data, dict):
            raise LexiconError(f"Lexicon file {path} must contain a mapping")

        base = cls()
        known = {f.name for f in fields(cls) if f.name != "sources"}
        updates: dict[str, frozenset[str]] = {}
        for name, values in data.items():
            if name not in known:
                raise LexiconError(f"Unknown lexicon {name!r}", context={"path": str(path)})
            if not isinstance(values, list):
                raise LexiconError(f"Lexicon {name!r} must be a list", context={"path": str(path)})
            extra = frozenset(str(v).strip().lower() for v in values if str(v).strip())
            updates[name] = getattr(base, name) | extra

        logger.info(
            "lexicon_loaded",
            source=str(path),
            extended=sorted(updates),
            added=sum(len(v) for v in updates.values()),
        )
        return replace(base, sources=(*base.sources, str(path)), **updates)


@functools.lru_cache(maxsize=8)
def load_lexicon(path: str = "") -> Lexicon:
    """Return the lexicon for a (possibly empty) extension path, cached."""
    if not path:
        return Lexicon()
    return Lexicon.from_yaml(path)
