"""
Resolution of lexicon and amount signals into one interpretation.

Confidence rules:
- No amount means confidence 0, whatever else is known
- Missing method or fewer than two participants caps confidence at 0.5
- Amount + method + two or more participants reaches at least 0.9

Participants are never guessed from free text. Only names supplied by the
caller count, so an utterance without them always stays at or below 0.5
and is routed to a model tier.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, FrozenSet, Optional, Sequence, Tuple

from .amounts import extract_amount
from .lexicon import Scenario, SplitMethod, match_lexicon, normalize_text

AMOUNT_WEIGHT = 0.30
SCENARIO_WEIGHT = 0.10
METHOD_WEIGHT = 0.25
PARTICIPANTS_WEIGHT = 0.35
PARTIAL_CAP = 0.5
MIN_PARTICIPANTS = 2

# Customary method per scenario, reported when no method keyword fired.
SCENARIO_DEFAULT_METHODS: Dict[Scenario, SplitMethod] = {
    Scenario.RODIZIO: SplitMethod.EQUAL,
    Scenario.HAPPY_HOUR: SplitMethod.BY_CONSUMPTION,
    Scenario.ANIVERSARIO: SplitMethod.HOST_PAYS,
    Scenario.VAQUINHA: SplitMethod.VAQUINHA,
    Scenario.CHURRASCO: SplitMethod.BY_FAMILY,
}


@dataclass(frozen=True)
class CulturalContext:
    """Optional hints supplied alongside the utterance."""
    region: Optional[str] = None
    scenario_hint: Optional[str] = None
    group_type: Optional[str] = None
    time_of_day: Optional[str] = None

    def hinted_scenario(self) -> Scenario:
        if not self.scenario_hint:
            return Scenario.UNKNOWN
        try:
            return Scenario(self.scenario_hint.strip().lower())
        except ValueError:
            return Scenario.UNKNOWN


@dataclass(frozen=True)
class UserPreferences:
    """Presentation preferences forwarded to model prompts."""
    formality: Optional[str] = None
    payment_preference: Optional[str] = None


@dataclass(frozen=True)
class Interpretation:
    """Structured reading of one expense utterance. Never mutated."""
    scenario: Scenario = Scenario.UNKNOWN
    method: SplitMethod = SplitMethod.UNKNOWN
    amount: Optional[Decimal] = None
    participants: Tuple[str, ...] = ()
    confidence: float = 0.0
    matched_keywords: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        """Validate confidence range and participant uniqueness."""
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("confidence must be within [0, 1]")
        if len(set(self.participants)) != len(self.participants):
            raise ValueError("participants must be unique")


def resolve(
    text: str,
    participants: Optional[Sequence[str]] = None,
    context: Optional[CulturalContext] = None
) -> Interpretation:
    """Interpret ``text`` deterministically.

    Args:
        text: Raw user utterance in pt-BR
        participants: Names supplied by the caller, in mention order
        context: Optional cultural hints

    Returns:
        A fresh Interpretation; zero confidence for blank text
    """
    known = unique_participants(participants)
    normalized = normalize_text(text)
    if not normalized:
        return Interpretation(participants=known)

    lexicon = match_lexicon(normalized)
    amount = extract_amount(normalized)

    scenario = lexicon.scenario_tags[0] if lexicon.scenarios else Scenario.UNKNOWN
    if scenario is Scenario.UNKNOWN and context is not None:
        scenario = context.hinted_scenario()

    method_matched = bool(lexicon.methods)
    if method_matched:
        method = lexicon.method_tags[0]
    else:
        method = SCENARIO_DEFAULT_METHODS.get(scenario, SplitMethod.UNKNOWN)

    return Interpretation(
        scenario=scenario,
        method=method,
        amount=amount,
        participants=known,
        confidence=score_confidence(
            has_amount=amount is not None,
            has_scenario=scenario is not Scenario.UNKNOWN,
            has_method=method_matched,
            participant_count=len(known),
        ),
        matched_keywords=lexicon.keywords,
    )


def score_confidence(
    has_amount: bool,
    has_scenario: bool,
    has_method: bool,
    participant_count: int
) -> float:
    """Weighted confidence, monotone in every known field."""
    if not has_amount:
        return 0.0

    has_participants = participant_count >= MIN_PARTICIPANTS
    score = AMOUNT_WEIGHT
    if has_scenario:
        score += SCENARIO_WEIGHT
    if has_method:
        score += METHOD_WEIGHT
    if has_participants:
        score += PARTICIPANTS_WEIGHT

    if not (has_method and has_participants):
        score = min(score, PARTIAL_CAP)
    return round(min(score, 1.0), 4)


def unique_participants(participants: Optional[Sequence[str]]) -> Tuple[str, ...]:
    """Strip blanks and duplicates, keeping first-mention order."""
    if not participants:
        return ()
    seen = []
    for name in participants:
        cleaned = (name or "").strip()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return tuple(seen)
