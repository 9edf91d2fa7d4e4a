"""Field comparisons shared by order reconciliation and receipt verification."""

import math
import re
from datetime import date, datetime

from pcardflow.models import PurchaseRequest

# Vendor order totals above this are taken to be micro-units.
MICRO_UNIT_THRESHOLD = 10_000
MICRO_UNITS_PER_UNIT = 1_000_000

RECEIPT_AMOUNT_PERCENT_TOLERANCE = 2.0
RECEIPT_AMOUNT_ABSOLUTE_TOLERANCE = 2.0
RECEIPT_DATE_TOLERANCE_DAYS = 1

VENDOR_FAMILY_ALIASES = {
    "godaddy": ["godaddy", "go daddy"],
}

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def to_standard_units(amount: float) -> float:
    """Convert a vendor base-unit amount to standard currency units.

    The vendor API does not state its unit, so magnitude decides: anything
    above 10,000 is assumed to be micro-units. A genuine standard-unit amount
    above $10,000 is misread by this rule.
    """
    if amount > MICRO_UNIT_THRESHOLD:
        return amount / MICRO_UNITS_PER_UNIT
    return amount


def normalize_vendor(name: str | None) -> str:
    if not name:
        return ""
    return _NON_ALNUM.sub("", name.lower())


def vendor_matches(extracted: str | None, expected: str | None) -> bool:
    """Normalized vendor names match when one contains the other."""
    e = normalize_vendor(extracted)
    x = normalize_vendor(expected)
    if not e or not x:
        return False
    return e == x or x in e or e in x


def vendor_family_variants(family: str) -> list[str]:
    """Spellings of a vendor family accepted in free-text vendor names.

    >>> vendor_family_variants("GoDaddy")
    ['godaddy', 'go daddy']
    """
    key = family.lower().replace(" ", "")
    return VENDOR_FAMILY_ALIASES.get(key, [family.lower()])


def is_vendor_family(request: PurchaseRequest, family: str) -> bool:
    """True when the request's vendor belongs to the given vendor family."""
    family_key = family.lower().replace(" ", "")
    if request.vendor_type and request.vendor_type.lower() == family_key:
        return True
    name = request.vendor_name.lower()
    return any(variant in name for variant in vendor_family_variants(family))


def amount_difference(a: float, b: float) -> float:
    """Absolute difference rounded to cents."""
    return round(abs(a - b), 2)


def percent_difference(actual: float, expected: float) -> float:
    """Difference as a percentage of ``expected``.

    A zero ``expected`` yields 0 for an equal amount and infinity otherwise.
    """
    diff = amount_difference(actual, expected)
    if expected == 0:
        return 0.0 if diff == 0 else math.inf
    return diff / abs(expected) * 100


def amount_within_tolerance(
    extracted: float | None,
    expected: float,
    percent: float = RECEIPT_AMOUNT_PERCENT_TOLERANCE,
    absolute: float = RECEIPT_AMOUNT_ABSOLUTE_TOLERANCE,
) -> bool:
    if extracted is None:
        return False
    if amount_difference(extracted, expected) <= absolute:
        return True
    return percent_difference(extracted, expected) <= percent


def parse_date(value: date | datetime | str | None) -> date | None:
    """Coerce a date-like value to a ``date``; None if it can't be read."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = value.strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def days_between(
    later: date | datetime | str | None, earlier: date | datetime | str | None
) -> int | None:
    """Signed whole-day difference ``later - earlier``, or None if unparseable."""
    a = parse_date(later)
    b = parse_date(earlier)
    if a is None or b is None:
        return None
    return (a - b).days


def dates_within(
    a: date | datetime | str | None,
    b: date | datetime | str | None,
    days: int = RECEIPT_DATE_TOLERANCE_DAYS,
) -> bool:
    diff = days_between(a, b)
    return diff is not None and abs(diff) <= days
