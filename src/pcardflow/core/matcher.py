"""Scored matching of vendor orders to approved purchase requests."""

from collections.abc import Iterable

from pcardflow.core.fields import (
    amount_difference,
    days_between,
    is_vendor_family,
    percent_difference,
    to_standard_units,
)
from pcardflow.models import MatchResult, PurchaseRequest, VendorOrder

DEFAULT_VENDOR_FAMILY = "GoDaddy"

MIN_MATCH_SCORE = 50
AUTO_LINK_SCORE = 70
MAX_SCORE = 100

VENDOR_SCORE = 30

# (max percent difference, points, label)
AMOUNT_PERCENT_TIERS = [(5, 35, "5%"), (10, 25, "10%")]
AMOUNT_EXACT_SCORE = 40
AMOUNT_ABSOLUTE_LIMIT = 5.0
AMOUNT_ABSOLUTE_SCORE = 20

# (max whole days apart, points)
DATE_TIERS = [(1, 30), (3, 25), (7, 15), (14, 5)]


def order_total(order: VendorOrder) -> float:
    """The order's total in standard currency units."""
    return to_standard_units(order.pricing.total)


def score_amount(order_amount: float, request_amount: float) -> tuple[int, str | None]:
    diff = amount_difference(order_amount, request_amount)
    if diff == 0:
        return AMOUNT_EXACT_SCORE, "Exact amount match"

    percent = percent_difference(order_amount, request_amount)
    for limit, points, label in AMOUNT_PERCENT_TIERS:
        if percent <= limit:
            return points, f"Amount within {label} (${diff:.2f} difference)"

    if diff <= AMOUNT_ABSOLUTE_LIMIT:
        return (
            AMOUNT_ABSOLUTE_SCORE,
            f"Amount within ${AMOUNT_ABSOLUTE_LIMIT:.0f} (${diff:.2f} difference)",
        )
    return 0, None


def score_date(order: VendorOrder, request: PurchaseRequest) -> tuple[int, str | None]:
    days = days_between(order.created_at, request.expense_date)
    if days is None:
        return 0, None
    days = abs(days)
    for limit, points in DATE_TIERS:
        if days <= limit:
            if limit == 1:
                return points, "Date matches within 1 day"
            return points, f"Date within {limit} days ({days} days difference)"
    return 0, None


def score_request(
    order: VendorOrder,
    request: PurchaseRequest,
    vendor_family: str = DEFAULT_VENDOR_FAMILY,
) -> tuple[int, list[str]]:
    """Score one candidate request against an order.

    Returns ``(0, [])`` when the request's vendor is outside the vendor family;
    such requests are never match candidates, whatever their amount or date.
    """
    if not is_vendor_family(request, vendor_family):
        return 0, []

    score = VENDOR_SCORE
    reasons = [f"Vendor identified as {vendor_family}"]

    points, reason = score_amount(order_total(order), request.total_amount)
    score += points
    if reason:
        reasons.append(reason)

    points, reason = score_date(order, request)
    score += points
    if reason:
        reasons.append(reason)

    return min(MAX_SCORE, score), reasons


def find_best_match(
    order: VendorOrder,
    candidates: Iterable[PurchaseRequest],
    vendor_family: str = DEFAULT_VENDOR_FAMILY,
) -> MatchResult | None:
    """Pick the best-scoring candidate request for a vendor order.

    Candidates are scanned in the given order and the first maximal score
    wins. Nothing is returned below ``MIN_MATCH_SCORE``.
    """
    best: MatchResult | None = None
    best_score = 0

    for request in candidates:
        score, reasons = score_request(order, request, vendor_family)
        if score == 0:
            continue
        if score > best_score:
            best_score = score
            best = MatchResult(request_id=request.id, confidence=score, reasons=reasons)

    if best is None or best_score < MIN_MATCH_SCORE:
        return None
    return best


def should_auto_link(result: MatchResult | None) -> bool:
    return result is not None and result.confidence >= AUTO_LINK_SCORE
