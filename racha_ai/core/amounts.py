"""
Brazilian currency amount extraction.

Pattern families are tried in a fixed priority order and the first family
that matches anything wins, even if a lower-priority family matched text
that appears earlier in the string. "Pizza 50 reais, total R$ 120" yields
120, not 50. This ordering is intentional and observable; do not change
it to "leftmost match wins".
"""

import re
from decimal import Decimal
from typing import Optional, Pattern, Tuple

MAX_AMOUNT = Decimal("10000000")
CENTS = Decimal("0.01")

# Integer part with dotted thousands ("1.234.567") or plain digits.
_INT = r"\d{1,3}(?:\.\d{3})+|\d+"
# Same, followed by a two-digit decimal part ("1.234,56", "120,00", "120.50").
_DEC = r"\d{1,3}(?:\.\d{3})+,\d{2}|\d+[.,]\d{2}"

# Whole values parse_brl accepts: Brazilian grouping with an optional
# comma decimal part, or a plain dot decimal.
_BRL_NUMBER = re.compile(r"(?:\d{1,3}(?:\.\d{3})+|\d+)(?:,\d{1,2})?")
_DOT_DECIMAL = re.compile(r"\d+\.\d{1,2}")

AMOUNT_PATTERN_FAMILIES: Tuple[Tuple[str, Pattern], ...] = (
    ("symbol_decimal", re.compile(r"r\$\s*(" + _DEC + r")(?![\d])", re.IGNORECASE)),
    ("symbol_integer", re.compile(r"r\$\s*(" + _INT + r")(?![.,]?\d)", re.IGNORECASE)),
    ("word_decimal", re.compile(r"(?<![\d.,])(" + _DEC + r")\s*rea(?:l|is)\b", re.IGNORECASE)),
    ("word_integer", re.compile(r"(?<![\d.,])(" + _INT + r")\s*rea(?:l|is)\b", re.IGNORECASE)),
    ("slang", re.compile(r"(?<![\d.,])(" + _INT + r")\s*(?:pilas?|contos?)\b", re.IGNORECASE)),
)


def extract_amount(text: str) -> Optional[Decimal]:
    """Return the first plausible BRL amount in ``text``.

    Args:
        text: Normalized expense description

    Returns:
        Amount quantized to centavos, or None if no family matches or the
        value is non-positive or above MAX_AMOUNT
    """
    if not text:
        return None

    for _, pattern in AMOUNT_PATTERN_FAMILIES:
        found = pattern.search(text)
        if found is None:
            continue
        # First matching family short-circuits, valid or not.
        return _plausible(parse_brl(found.group(1)))
    return None


def parse_brl(raw: str) -> Optional[Decimal]:
    """Parse a Brazilian-formatted number ("1.234,56", "120,00", "35").

    A dot followed by one or two trailing digits and no comma is read as
    a decimal point ("120.50"); any other dot must group thousands. Mixed
    or ambiguous forms such as "1,234.50" or "1,234" yield None rather
    than a truncated value.
    """
    value = raw.strip()
    if _DOT_DECIMAL.fullmatch(value):
        return Decimal(value).quantize(CENTS)
    if not _BRL_NUMBER.fullmatch(value):
        return None
    return Decimal(value.replace(".", "").replace(",", ".")).quantize(CENTS)


def _plausible(amount: Optional[Decimal]) -> Optional[Decimal]:
    if amount is None or amount <= 0 or amount > MAX_AMOUNT:
        return None
    return amount
