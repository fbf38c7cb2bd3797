"""
Data models for storage layer.

Defines the persisted records and their JSON encoding. Interpretations and
split results are stored as JSON text so a cached entry can be restored
exactly as it was written.
"""

import json
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from ..core.lexicon import Scenario, SplitMethod
from ..core.pricing import ModelTier
from ..core.resolution import Interpretation
from ..core.split import SplitResult


@dataclass(frozen=True)
class CacheEntry:
    """Immutable cached answer for one request fingerprint.

    Entries are superseded by a newer write for the same fingerprint,
    never modified in place.
    """
    fingerprint: str
    interpretation: Interpretation
    split_result: Optional[SplitResult]
    created_at: datetime
    tier: Optional[ModelTier] = None


@dataclass(frozen=True)
class ModelCallEvent:
    """Append-only record of one paid model call."""
    timestamp: datetime
    tier: ModelTier
    model: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cost_brl: Decimal
    retry_count: int = 0
    request_id: Optional[str] = None


@dataclass(frozen=True)
class LedgerSnapshot:
    """Spend recorded for one local calendar day."""
    day: date
    spent_brl: Decimal
    cap_brl: Decimal


def interpretation_to_dict(interpretation: Interpretation) -> Dict[str, Any]:
    return {
        "scenario": interpretation.scenario.value,
        "method": interpretation.method.value,
        "amount": None if interpretation.amount is None else str(interpretation.amount),
        "participants": list(interpretation.participants),
        "confidence": interpretation.confidence,
        "matched_keywords": sorted(interpretation.matched_keywords),
    }


def interpretation_from_dict(data: Dict[str, Any]) -> Interpretation:
    amount = data.get("amount")
    return Interpretation(
        scenario=Scenario(data["scenario"]),
        method=SplitMethod(data["method"]),
        amount=None if amount is None else Decimal(amount),
        participants=tuple(data.get("participants", ())),
        confidence=float(data["confidence"]),
        matched_keywords=frozenset(data.get("matched_keywords", ())),
    )


def split_result_from_dict(data: Dict[str, Any]) -> SplitResult:
    per_participant = OrderedDict(
        (name, Decimal(value)) for name, value in data["per_participant"].items()
    )
    return SplitResult(
        total=Decimal(data["total"]),
        per_participant=per_participant,
        method=SplitMethod(data["method"]),
        rounding_remainder=Decimal(data["rounding_remainder"]),
        label=data.get("label", ""),
    )


def encode_interpretation(interpretation: Interpretation) -> str:
    return json.dumps(interpretation_to_dict(interpretation), ensure_ascii=False)


def decode_interpretation(payload: str) -> Interpretation:
    return interpretation_from_dict(json.loads(payload))


def encode_split_result(result: Optional[SplitResult]) -> Optional[str]:
    if result is None:
        return None
    # json keeps dict insertion order, so participant order survives.
    return json.dumps(result.as_dict(), ensure_ascii=False)


def decode_split_result(payload: Optional[str]) -> Optional[SplitResult]:
    if payload is None:
        return None
    return split_result_from_dict(json.loads(payload))
