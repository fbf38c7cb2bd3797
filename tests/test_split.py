"""
Unit tests for split policies.

Tests conservation of the total, rounding behavior, each method's rules
and input validation.
"""

import random
from collections import OrderedDict
from decimal import Decimal, ROUND_DOWN

import pytest

from racha_ai.core.errors import InputError, InsufficientDataError
from racha_ai.core.lexicon import SplitMethod
from racha_ai.core.split import SplitConstraints, allocate, calculate_split

CENTS = Decimal("0.01")


def _names(n):
    return [f"P{i}" for i in range(n)]


def _random_total(rng):
    return (Decimal(rng.randint(1, 1_000_000_00)) / 100).quantize(CENTS)


class TestConservation:
    """Test that shares always add up to the total."""

    def test_every_method_conserves_total(self):
        """Verify sum(shares) + remainder == total over random inputs."""
        rng = random.Random(1234)
        for _ in range(300):
            total = _random_total(rng)
            n = rng.randint(2, 12)
            people = _names(n)
            method = rng.choice([
                SplitMethod.EQUAL,
                SplitMethod.VAQUINHA,
                SplitMethod.HOST_PAYS,
                SplitMethod.BY_CONSUMPTION,
                SplitMethod.BY_FAMILY,
            ])
            kwargs = {}
            if method is SplitMethod.BY_CONSUMPTION:
                kwargs["consumption"] = {p: Decimal(rng.randint(1, 5000)) / 10 for p in people}
            if method is SplitMethod.BY_FAMILY:
                units = OrderedDict()
                for i, person in enumerate(people):
                    units.setdefault(f"F{i % rng.randint(1, n)}", []).append(person)
                kwargs["families"] = units

            result = calculate_split(method, total, people, **kwargs)

            assert sum(result.per_participant.values()) + result.rounding_remainder == total
            assert set(result.per_participant) == set(people)
            assert all(v >= 0 for v in result.per_participant.values())
            assert result.is_balanced()

    def test_single_participant_pays_everything(self):
        """Verify one participant owes the whole total."""
        result = calculate_split(SplitMethod.EQUAL, Decimal("99.99"), ["Ana"])
        assert result.per_participant == {"Ana": Decimal("99.99")}


class TestEqualSplit:
    """Test EQUAL and VAQUINHA splits."""

    def test_floor_shares_with_first_absorbing_remainder(self):
        """Verify every share is floor(T/N) except the first participant's."""
        rng = random.Random(99)
        for _ in range(200):
            total = _random_total(rng)
            n = rng.randint(1, 15)
            people = _names(n)
            floor = (total / n).quantize(CENTS, rounding=ROUND_DOWN)

            result = calculate_split(SplitMethod.EQUAL, total, people)

            shares = list(result.per_participant.values())
            assert all(share == floor for share in shares[1:])
            assert shares[0] == total - floor * (n - 1)
            assert result.rounding_remainder == Decimal("0.00")

    def test_rodizio_literal(self):
        """Verify R$ 120,00 for 4 gives R$ 30,00 each."""
        result = calculate_split(SplitMethod.EQUAL, Decimal("120.00"), ["Ana", "Bia", "Caio", "Duda"])
        assert list(result.per_participant.values()) == [Decimal("30.00")] * 4
        assert result.label == "equal"

    def test_remainder_goes_to_first(self):
        """Verify R$ 100,00 for 3 gives the extra centavo to the first."""
        result = calculate_split(SplitMethod.EQUAL, Decimal("100.00"), ["Ana", "Bia", "Caio"])
        assert result.per_participant == {
            "Ana": Decimal("33.34"),
            "Bia": Decimal("33.33"),
            "Caio": Decimal("33.33"),
        }

    def test_vaquinha_label(self):
        """Verify vaquinha uses equal arithmetic with its own label."""
        equal = calculate_split(SplitMethod.EQUAL, Decimal("50"), ["Ana", "Bia"])
        vaquinha = calculate_split(SplitMethod.VAQUINHA, Decimal("50"), ["Ana", "Bia"])
        assert vaquinha.per_participant == equal.per_participant
        assert vaquinha.label == "vaquinha"
        assert vaquinha.method == SplitMethod.VAQUINHA

    def test_half_portion(self):
        """Verify a half-portion participant pays half a share."""
        constraints = SplitConstraints(half_portion=frozenset({"Ana"}))
        result = calculate_split(
            SplitMethod.EQUAL, Decimal("100.00"), ["Ana", "Bia", "Caio"], constraints=constraints
        )
        assert result.per_participant == {
            "Ana": Decimal("20.00"),
            "Bia": Decimal("40.00"),
            "Caio": Decimal("40.00"),
        }

    def test_excluded_item(self):
        """Verify an item one participant skipped is split among the others."""
        constraints = SplitConstraints(excluded_items={"Ana": Decimal("30.00")})
        result = calculate_split(
            SplitMethod.EQUAL, Decimal("100.00"), ["Ana", "Bia", "Caio"], constraints=constraints
        )
        assert result.per_participant == {
            "Ana": Decimal("23.34"),
            "Bia": Decimal("38.33"),
            "Caio": Decimal("38.33"),
        }
        assert result.is_balanced()

    def test_constraint_on_stranger_rejected(self):
        """Verify constraints must name participants."""
        constraints = SplitConstraints(half_portion=frozenset({"Zé"}))
        with pytest.raises(InputError, match="unknown participants"):
            calculate_split(SplitMethod.EQUAL, Decimal("10"), ["Ana", "Bia"], constraints=constraints)

    def test_excluded_items_above_total_rejected(self):
        """Verify excluded items cannot exceed the bill."""
        constraints = SplitConstraints(excluded_items={"Ana": Decimal("30.00")})
        with pytest.raises(InputError, match="exceed"):
            calculate_split(SplitMethod.EQUAL, Decimal("20.00"), ["Ana", "Bia"], constraints=constraints)


class TestHostPays:
    """Test HOST_PAYS splits."""

    def test_host_literal(self):
        """Verify R$ 250,00 with 5 people leaves 62,50 for each guest."""
        people = ["Ana", "Bia", "Caio", "Duda", "Enzo"]
        result = calculate_split(SplitMethod.HOST_PAYS, Decimal("250.00"), people)
        assert result.per_participant["Ana"] == Decimal("0.00")
        assert [result.per_participant[p] for p in people[1:]] == [Decimal("62.50")] * 4

    def test_host_always_zero(self):
        """Verify the host owes nothing for any total or group size."""
        rng = random.Random(7)
        for _ in range(200):
            people = _names(rng.randint(2, 10))
            host = rng.choice(people)
            result = calculate_split(SplitMethod.HOST_PAYS, _random_total(rng), people, host=host)
            assert result.per_participant[host] == Decimal("0.00")
            assert result.is_balanced()

    def test_host_must_be_participant(self):
        """Verify an unknown host is rejected."""
        with pytest.raises(InputError, match="not a participant"):
            calculate_split(SplitMethod.HOST_PAYS, Decimal("10"), ["Ana", "Bia"], host="Zé")

    def test_host_needs_guests(self):
        """Verify host-pays needs at least two participants."""
        with pytest.raises(InputError, match="at least one other"):
            calculate_split(SplitMethod.HOST_PAYS, Decimal("10"), ["Ana"])


class TestByConsumption:
    """Test BY_CONSUMPTION splits."""

    def test_happy_hour_without_consumption(self):
        """Verify a missing consumption map raises InsufficientDataError."""
        with pytest.raises(InsufficientDataError) as exc_info:
            calculate_split(SplitMethod.BY_CONSUMPTION, Decimal("200.00"), ["Ana", "Bia"])
        assert exc_info.value.missing == "consumption"

    def test_incomplete_consumption(self):
        """Verify every participant needs a consumption value."""
        with pytest.raises(InsufficientDataError, match="Bia"):
            calculate_split(
                SplitMethod.BY_CONSUMPTION, Decimal("200.00"), ["Ana", "Bia"],
                consumption={"Ana": Decimal("50")}
            )

    def test_service_charge_shared_pro_rata(self):
        """Verify the total including service is split proportionally."""
        result = calculate_split(
            SplitMethod.BY_CONSUMPTION, Decimal("110.00"), ["Ana", "Bia"],
            consumption={"Ana": Decimal("60"), "Bia": Decimal("40")}
        )
        assert result.per_participant == {"Ana": Decimal("66.00"), "Bia": Decimal("44.00")}

    def test_negative_consumption_rejected(self):
        """Verify negative consumption is invalid."""
        with pytest.raises(InputError, match="negative"):
            calculate_split(
                SplitMethod.BY_CONSUMPTION, Decimal("10"), ["Ana", "Bia"],
                consumption={"Ana": Decimal("-1"), "Bia": Decimal("5")}
            )


class TestByFamily:
    """Test BY_FAMILY splits."""

    def test_split_by_unit_then_member(self):
        """Verify units split equally and then members within each unit."""
        families = OrderedDict([("Silva", ["Ana", "Bruno"]), ("Souza", ["Carla"])])
        result = calculate_split(SplitMethod.BY_FAMILY, Decimal("100.00"), ["Ana", "Bruno", "Carla"],
                                 families=families)
        assert result.per_participant == {
            "Ana": Decimal("25.00"),
            "Bruno": Decimal("25.00"),
            "Carla": Decimal("50.00"),
        }

    def test_remainder_to_first_unit_first_member(self):
        """Verify the leftover centavo lands on the first member of the first unit."""
        families = OrderedDict([("Silva", ["Ana", "Bruno"]), ("Souza", ["Carla"])])
        result = calculate_split(SplitMethod.BY_FAMILY, Decimal("100.01"), [], families=families)
        assert result.per_participant == {
            "Ana": Decimal("25.01"),
            "Bruno": Decimal("25.00"),
            "Carla": Decimal("50.00"),
        }

    def test_missing_families(self):
        """Verify a missing grouping raises InsufficientDataError."""
        with pytest.raises(InsufficientDataError) as exc_info:
            calculate_split(SplitMethod.BY_FAMILY, Decimal("100"), ["Ana", "Bia"])
        assert exc_info.value.missing == "families"

    def test_empty_unit(self):
        """Verify a unit without members is rejected."""
        with pytest.raises(InputError, match="no members"):
            calculate_split(SplitMethod.BY_FAMILY, Decimal("100"), [],
                            families={"Silva": ["Ana"], "Souza": []})

    def test_member_in_two_units(self):
        """Verify a person cannot belong to two units."""
        with pytest.raises(InputError, match="belongs to both"):
            calculate_split(SplitMethod.BY_FAMILY, Decimal("100"), [],
                            families={"Silva": ["Ana"], "Souza": ["Ana"]})

    def test_blank_member_without_participants(self):
        """Verify blank member names are rejected when no participant list is given."""
        with pytest.raises(InputError, match="cannot be blank"):
            calculate_split(SplitMethod.BY_FAMILY, Decimal("100"), [],
                            families={"Silva": ["Ana", " "], "Souza": ["Bia"]})

    def test_participant_without_unit(self):
        """Verify every participant needs a unit."""
        with pytest.raises(InputError, match="without a family"):
            calculate_split(SplitMethod.BY_FAMILY, Decimal("100"), ["Ana", "Bia"],
                            families={"Silva": ["Ana"]})


class TestValidation:
    """Test input validation shared by every method."""

    @pytest.mark.parametrize("total", [None, Decimal("0"), Decimal("-5")])
    def test_invalid_total(self, total):
        """Verify the total must be positive."""
        with pytest.raises(InputError):
            calculate_split(SplitMethod.EQUAL, total, ["Ana", "Bia"])

    def test_empty_participants(self):
        """Verify at least one participant is required."""
        with pytest.raises(InputError, match="At least one"):
            calculate_split(SplitMethod.EQUAL, Decimal("10"), [])

    def test_duplicate_participants(self):
        """Verify participants must be unique."""
        with pytest.raises(InputError, match="unique"):
            calculate_split(SplitMethod.EQUAL, Decimal("10"), ["Ana", "Ana"])

    def test_unknown_method(self):
        """Verify an unknown method asks for more information."""
        with pytest.raises(InsufficientDataError) as exc_info:
            calculate_split(SplitMethod.UNKNOWN, Decimal("10"), ["Ana", "Bia"])
        assert exc_info.value.missing == "method"

    def test_allocate_zero_weights(self):
        """Verify allocation with no weight is rejected."""
        with pytest.raises(InputError):
            allocate(Decimal("10"), [("Ana", Decimal("0"))])

    def test_as_dict(self):
        """Verify results serialize amounts as strings in order."""
        result = calculate_split(SplitMethod.EQUAL, Decimal("10"), ["Ana", "Bia", "Caio"])
        data = result.as_dict()
        assert data["total"] == "10.00"
        assert list(data["per_participant"].items()) == [("Ana", "3.34"), ("Bia", "3.33"), ("Caio", "3.33")]
        assert data["method"] == "equal"
