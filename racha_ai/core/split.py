"""
Split policies.

Every policy works in centavos: shares are floored to two decimals and the
leftover centavos are absorbed by the first participant (or first family
unit, then its first member), so the per-participant amounts always add
up to the total exactly. ``rounding_remainder`` holds whatever was not
allocated to anyone and is zero for every built-in policy.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_DOWN
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from .errors import InputError, InsufficientDataError
from .lexicon import SplitMethod

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")
HALF_PORTION_WEIGHT = Decimal("0.5")
FULL_WEIGHT = Decimal("1")


@dataclass(frozen=True)
class SplitConstraints:
    """Side constraints for EQUAL and VAQUINHA splits.

    half_portion: participants who only had half a portion (weight 0.5)
    excluded_items: participant -> value of items they did not share; the
        value is split among everyone else before the weighted division
    """
    half_portion: FrozenSet[str] = field(default_factory=frozenset)
    excluded_items: Mapping[str, Decimal] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.half_portion and not self.excluded_items


@dataclass(frozen=True)
class SplitResult:
    """Amount owed by each participant."""
    total: Decimal
    per_participant: Mapping[str, Decimal]
    method: SplitMethod
    rounding_remainder: Decimal = ZERO
    label: str = ""

    def is_balanced(self) -> bool:
        """Check sum(per_participant) + rounding_remainder == total."""
        allocated = sum(self.per_participant.values(), ZERO)
        return allocated + self.rounding_remainder == self.total

    def as_dict(self) -> Dict[str, object]:
        return {
            "total": str(self.total),
            "per_participant": {name: str(v) for name, v in self.per_participant.items()},
            "method": self.method.value,
            "rounding_remainder": str(self.rounding_remainder),
            "label": self.label,
        }


def calculate_split(
    method: SplitMethod,
    total: Decimal,
    participants: Sequence[str],
    consumption: Optional[Mapping[str, Decimal]] = None,
    families: Optional[Mapping[str, Sequence[str]]] = None,
    host: Optional[str] = None,
    constraints: Optional[SplitConstraints] = None
) -> SplitResult:
    """Compute what each participant owes.

    Args:
        method: Split policy to apply
        total: Amount to split, must be > 0
        participants: Unique participant names in mention order
        consumption: participant -> consumed value, for BY_CONSUMPTION
        families: unit name -> members, for BY_FAMILY
        host: participant exempted under HOST_PAYS (defaults to the first)
        constraints: half portions and excluded items for EQUAL/VAQUINHA

    Returns:
        SplitResult whose amounts add up to ``total``

    Raises:
        InputError: If total, participants or grouping are invalid
        InsufficientDataError: If the method needs data that is missing
    """
    total = _validate_total(total)

    if method is SplitMethod.BY_FAMILY:
        result = _split_by_family(total, participants, families)
    else:
        people = _validate_participants(participants)
        if method in (SplitMethod.EQUAL, SplitMethod.VAQUINHA):
            shares = _split_equal_constrained(total, people, constraints)
            label = "vaquinha" if method is SplitMethod.VAQUINHA else "equal"
            result = SplitResult(total, shares, method, label=label)
        elif method is SplitMethod.BY_CONSUMPTION:
            result = _split_by_consumption(total, people, consumption)
        elif method is SplitMethod.HOST_PAYS:
            result = _split_host_pays(total, people, host)
        else:
            raise InsufficientDataError(
                "Split method is unknown; ask how the bill should be divided",
                missing="method",
            )

    if not result.is_balanced():
        raise AssertionError(f"Split of {total} does not add up: {dict(result.per_participant)}")
    return result


def allocate(total: Decimal, weights: Sequence[Tuple[str, Decimal]]) -> "OrderedDict[str, Decimal]":
    """Divide ``total`` proportionally to ``weights``.

    Each share is floored to centavos; the leftover centavos go to the
    first entry. Equal weights give the plain EQUAL rule.
    """
    weight_sum = sum((w for _, w in weights), Decimal("0"))
    if weight_sum <= 0:
        raise InputError("Cannot allocate with zero total weight")

    shares: "OrderedDict[str, Decimal]" = OrderedDict()
    for name, weight in weights:
        shares[name] = (total * weight / weight_sum).quantize(CENTS, rounding=ROUND_DOWN)

    leftover = total - sum(shares.values(), ZERO)
    first = weights[0][0]
    shares[first] = shares[first] + leftover
    return shares


def _validate_total(total) -> Decimal:
    if total is None:
        raise InputError("Total amount is unknown")
    amount = Decimal(str(total)).quantize(CENTS)
    if amount <= 0:
        raise InputError(f"Total must be > 0, got {amount}")
    return amount


def _validate_participants(participants: Sequence[str]) -> List[str]:
    people = list(participants or ())
    if not people:
        raise InputError("At least one participant is required")
    if len(set(people)) != len(people):
        raise InputError("Participants must be unique")
    if any(not (p or "").strip() for p in people):
        raise InputError("Participant names cannot be blank")
    return people


def _split_equal_constrained(
    total: Decimal,
    people: List[str],
    constraints: Optional[SplitConstraints]
) -> "OrderedDict[str, Decimal]":
    if constraints is None or constraints.is_empty:
        return allocate(total, [(p, FULL_WEIGHT) for p in people])

    unknown = (set(constraints.half_portion) | set(constraints.excluded_items)) - set(people)
    if unknown:
        raise InputError(f"Constraints name unknown participants: {sorted(unknown)}")

    shares: "OrderedDict[str, Decimal]" = OrderedDict((p, ZERO) for p in people)
    remaining = total
    for excluded_person, raw_value in constraints.excluded_items.items():
        value = Decimal(str(raw_value)).quantize(CENTS)
        others = [p for p in people if p != excluded_person]
        if value <= 0 or not others:
            raise InputError(f"Invalid excluded item for {excluded_person}")
        if value > remaining:
            raise InputError("Excluded items exceed the total")
        for name, share in allocate(value, [(p, FULL_WEIGHT) for p in others]).items():
            shares[name] += share
        remaining -= value

    if remaining > 0:
        weights = [
            (p, HALF_PORTION_WEIGHT if p in constraints.half_portion else FULL_WEIGHT)
            for p in people
        ]
        for name, share in allocate(remaining, weights).items():
            shares[name] += share
    return shares


def _split_by_consumption(
    total: Decimal,
    people: List[str],
    consumption: Optional[Mapping[str, Decimal]]
) -> SplitResult:
    if not consumption:
        raise InsufficientDataError(
            "Splitting by consumption needs what each participant consumed",
            missing="consumption",
        )
    missing = [p for p in people if p not in consumption]
    if missing:
        raise InsufficientDataError(
            f"Consumption missing for: {', '.join(missing)}",
            missing="consumption",
        )

    weights = []
    for person in people:
        value = Decimal(str(consumption[person]))
        if value < 0:
            raise InputError(f"Consumption for {person} cannot be negative")
        weights.append((person, value))
    if sum((w for _, w in weights), Decimal("0")) <= 0:
        raise InputError("Total consumption must be > 0")

    return SplitResult(total, allocate(total, weights), SplitMethod.BY_CONSUMPTION,
                       label="by_consumption")


def _split_host_pays(total: Decimal, people: List[str], host: Optional[str]) -> SplitResult:
    if len(people) < 2:
        raise InputError("Host pays needs the host and at least one other participant")
    host = host if host is not None else people[0]
    if host not in people:
        raise InputError(f"Host {host!r} is not a participant")

    payers = [p for p in people if p != host]
    payer_shares = allocate(total, [(p, FULL_WEIGHT) for p in payers])
    shares: "OrderedDict[str, Decimal]" = OrderedDict()
    for person in people:
        shares[person] = ZERO if person == host else payer_shares[person]
    return SplitResult(total, shares, SplitMethod.HOST_PAYS, label="host_pays")


def _split_by_family(
    total: Decimal,
    participants: Sequence[str],
    families: Optional[Mapping[str, Sequence[str]]]
) -> SplitResult:
    if not families:
        raise InsufficientDataError(
            "Splitting by family needs the family grouping",
            missing="families",
        )

    seen: Dict[str, str] = {}
    for unit, members in families.items():
        if not members:
            raise InputError(f"Family unit {unit!r} has no members")
        for member in members:
            if not (member or "").strip():
                raise InputError("Participant names cannot be blank")
            if member in seen:
                raise InputError(f"{member!r} belongs to both {seen[member]!r} and {unit!r}")
            seen[member] = unit

    if participants:
        people = _validate_participants(participants)
        orphans = [p for p in people if p not in seen]
        if orphans:
            raise InputError(f"Participants without a family unit: {orphans}")
        strangers = [m for m in seen if m not in people]
        if strangers:
            raise InputError(f"Family members who are not participants: {strangers}")

    unit_shares = allocate(total, [(unit, FULL_WEIGHT) for unit in families])
    shares: "OrderedDict[str, Decimal]" = OrderedDict()
    for unit, members in families.items():
        members = list(members)
        shares.update(allocate(unit_shares[unit], [(m, FULL_WEIGHT) for m in members]))
    return SplitResult(total, shares, SplitMethod.BY_FAMILY, label="by_family")
