"""
Keyword lexicon for Brazilian expense descriptions.

Maps normalized text to candidate scenario tags and split-method tags.
The lexicon is a small table of tagged entries keyed by word stems rather
than literal phrase lists: a stem ending in ``*`` matches any word that
starts with it, any other stem must match whole words. Matching ignores
accents, but the keyword reported back is the literal text that fired.

Declaration order matters downstream: the resolution step picks the first
matching tag, so specific tags must be declared before generic ones.
"""

import re
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Pattern, Tuple


class Scenario(Enum):
    """Social scenario in which the expense happened."""
    RODIZIO = "rodizio"
    HAPPY_HOUR = "happy_hour"
    CHURRASCO = "churrasco"
    ANIVERSARIO = "aniversario"
    VAQUINHA = "vaquinha"
    VIAGEM = "viagem"
    RESTAURANTE = "restaurante"
    TRANSPORTE = "transporte"
    UNKNOWN = "unknown"


class SplitMethod(Enum):
    """Policy used to divide the total between participants."""
    EQUAL = "equal"
    BY_CONSUMPTION = "by_consumption"
    HOST_PAYS = "host_pays"
    VAQUINHA = "vaquinha"
    BY_FAMILY = "by_family"
    UNKNOWN = "unknown"


def normalize_text(text: str) -> str:
    """Lower-case and collapse whitespace, keeping accents intact."""
    if not text:
        return ""
    composed = unicodedata.normalize("NFC", text)
    return re.sub(r"\s+", " ", composed).strip().lower()


def fold_accents(text: str) -> str:
    """Strip diacritics one character at a time.

    The result has exactly the same length as the input, so match offsets
    in the folded text index the original text too.
    """
    return "".join(unicodedata.normalize("NFD", ch)[0] for ch in text)


@dataclass(frozen=True)
class LexiconEntry:
    """One tag and the stems that trigger it."""
    tag: Enum
    stems: Tuple[str, ...]

    def __post_init__(self):
        """Validate stems are already folded to the matching alphabet."""
        if not self.stems:
            raise ValueError(f"Lexicon entry {self.tag} has no stems")
        for stem in self.stems:
            if stem != fold_accents(stem.lower()):
                raise ValueError(f"Stem must be lower-case and unaccented: {stem!r}")

    @property
    def pattern(self) -> Pattern:
        return _compile_stems(self.stems)


@dataclass(frozen=True)
class TagMatch:
    """A tag that fired, with the literal keywords that fired it."""
    tag: Enum
    keywords: Tuple[str, ...]


@dataclass(frozen=True)
class LexiconMatch:
    """All candidate tags found in a text, in declaration order."""
    scenarios: Tuple[TagMatch, ...] = ()
    methods: Tuple[TagMatch, ...] = ()

    @property
    def scenario_tags(self) -> Tuple[Scenario, ...]:
        return tuple(m.tag for m in self.scenarios)

    @property
    def method_tags(self) -> Tuple[SplitMethod, ...]:
        return tuple(m.tag for m in self.methods)

    @property
    def keywords(self) -> FrozenSet[str]:
        found = set()
        for match in self.scenarios + self.methods:
            found.update(match.keywords)
        return frozenset(found)


SCENARIO_LEXICON: Tuple[LexiconEntry, ...] = (
    LexiconEntry(Scenario.RODIZIO, ("rodizio*", "rodada*")),
    LexiconEntry(Scenario.HAPPY_HOUR, (
        "happy hour", "happyhour", "bar", "barzinho", "boteco",
        "chop*", "cervej*", "drink*", "caipirinha*",
    )),
    LexiconEntry(Scenario.CHURRASCO, ("churras*", "picanha", "espetinho*", "carvao")),
    LexiconEntry(Scenario.ANIVERSARIO, ("aniversari*", "parabens", "bolo", "festa*")),
    LexiconEntry(Scenario.VAQUINHA, ("vaquinha*", "coleta", "juntar dinheiro", "presente*")),
    LexiconEntry(Scenario.VIAGEM, (
        "viage*", "hotel", "hospedage*", "pousada", "passage*", "airbnb",
    )),
    LexiconEntry(Scenario.RESTAURANTE, (
        "restaurante*", "jantar", "almoco", "pizza*", "lanche*", "sushi", "japones",
    )),
    LexiconEntry(Scenario.TRANSPORTE, (
        "uber", "taxi*", "corrida*", "gasolina", "combustivel", "pedagio*",
    )),
)

# Most specific first; EQUAL is the generic fallback and must stay last.
METHOD_LEXICON: Tuple[LexiconEntry, ...] = (
    LexiconEntry(SplitMethod.VAQUINHA, (
        "vaquinha*", "contribui*", "coleta", "juntar dinheiro",
    )),
    LexiconEntry(SplitMethod.HOST_PAYS, (
        "eu pago", "pago agora", "pago tudo", "eu banco", "eu convido",
        "por minha conta", "anfitri* paga",
    )),
    LexiconEntry(SplitMethod.BY_CONSUMPTION, (
        "consum*", "cada um paga o seu", "o que pediu", "o que comeu",
        "o que bebeu", "conta* separada*",
    )),
    LexiconEntry(SplitMethod.BY_FAMILY, ("famil*", "por casal", "cada casal")),
    LexiconEntry(SplitMethod.EQUAL, (
        "igual*", "rach*", "dividir", "divide", "meio a meio", "mesmo valor",
    )),
)


def match_lexicon(text: str) -> LexiconMatch:
    """Find every scenario and method tag triggered by ``text``.

    Args:
        text: Normalized text (see ``normalize_text``)

    Returns:
        LexiconMatch with candidate tags in declaration order; empty when
        nothing matches
    """
    if not text:
        return LexiconMatch()

    folded = fold_accents(text)
    return LexiconMatch(
        scenarios=_match_entries(SCENARIO_LEXICON, text, folded),
        methods=_match_entries(METHOD_LEXICON, text, folded),
    )


def _match_entries(
    entries: Tuple[LexiconEntry, ...],
    text: str,
    folded: str
) -> Tuple[TagMatch, ...]:
    matches = []
    for entry in entries:
        keywords = []
        for found in entry.pattern.finditer(folded):
            literal = text[found.start():found.end()]
            if literal not in keywords:
                keywords.append(literal)
        if keywords:
            matches.append(TagMatch(tag=entry.tag, keywords=tuple(keywords)))
    return tuple(matches)


_PATTERN_CACHE = {}


def _compile_stems(stems: Tuple[str, ...]) -> Pattern:
    if stems in _PATTERN_CACHE:
        return _PATTERN_CACHE[stems]

    alternatives = []
    for stem in stems:
        words = stem.split()
        body = r"\s+".join(_word_pattern(word) for word in words)
        if stem.endswith("*"):
            alternatives.append(body)
        else:
            alternatives.append(body + r"(?!\w)")
    pattern = re.compile(r"(?<!\w)(?:" + "|".join(alternatives) + ")")
    _PATTERN_CACHE[stems] = pattern
    return pattern


def _word_pattern(word: str) -> str:
    if word.endswith("*"):
        return re.escape(word[:-1]) + r"\w*"
    return re.escape(word)
