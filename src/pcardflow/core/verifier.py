"""Corroboration of extracted receipt fields against the expected purchase request."""

from pcardflow.core.fields import (
    RECEIPT_DATE_TOLERANCE_DAYS,
    amount_difference,
    amount_within_tolerance,
    days_between,
    vendor_matches,
)
from pcardflow.models import (
    ExtractedReceipt,
    PurchaseRequest,
    ReceiptAnalysis,
    Recommendation,
)

ALL_PASS_CONFIDENCE = 95
ONE_PASS_CONFIDENCE = 30
NONE_PASS_CONFIDENCE = 15
FALLBACK_CONFIDENCE = 0

# Which two checks passed -> confidence when the third failed.
TWO_PASS_CONFIDENCE = {
    ("vendor", "amount"): 75,
    ("vendor", "date"): 60,
    ("amount", "date"): 50,
}

EXTRACTION_FAILED_NOTE = (
    "Could not extract vendor, amount or date from the receipt. Please review manually."
)


def _vendor_reason(extracted: ExtractedReceipt, request: PurchaseRequest, match: bool) -> str:
    if extracted.vendor is None:
        return f'Could not extract vendor from receipt. Expected: "{request.vendor_name}".'
    if match:
        return "Vendor matches expected value."
    return f'Vendor "{extracted.vendor}" differs from expected "{request.vendor_name}".'


def _amount_reason(extracted: ExtractedReceipt, request: PurchaseRequest, match: bool) -> str:
    if extracted.amount is None:
        return f"Could not extract amount from receipt. Expected: ${request.total_amount:.2f}."
    if match:
        return "Amount matches expected value."
    return (
        f"Amount ${extracted.amount:.2f} differs from expected ${request.total_amount:.2f} "
        f"(${amount_difference(extracted.amount, request.total_amount):.2f} difference)."
    )


def _date_reason(
    extracted: ExtractedReceipt, request: PurchaseRequest, day_offset: int | None
) -> str:
    expected = request.expense_date.isoformat()
    if extracted.date is None:
        return f"Could not extract date from receipt. Expected: {expected}."
    if day_offset is None:
        return f'Date "{extracted.date}" could not be read. Expected: {expected}.'
    if day_offset == 0:
        return "Date matches expected value."
    if abs(day_offset) <= RECEIPT_DATE_TOLERANCE_DAYS:
        return f"Date is {abs(day_offset)} day from expected {expected} (within tolerance)."
    return f'Date "{extracted.date}" differs from expected {expected} by {abs(day_offset)} days.'


def _mismatch_concern(field: str, reason: str) -> str:
    return f"{field.capitalize()} mismatch: {reason}"


def fallback_analysis(
    request: PurchaseRequest,
    note: str,
    receipt_id: str | None = None,
    extracted: ExtractedReceipt | None = None,
) -> ReceiptAnalysis:
    """The safe default when a receipt could not be verified automatically.

    Never approves: confidence 0, every check false, recommendation review.
    """
    extracted = extracted or ExtractedReceipt()
    return ReceiptAnalysis(
        receipt_id=receipt_id,
        request_id=request.id,
        extracted_vendor=extracted.vendor,
        extracted_amount=extracted.amount,
        extracted_date=extracted.date,
        extracted_items=extracted.items,
        vendor_match=False,
        amount_match=False,
        date_match=False,
        vendor_reason=f'Unable to verify vendor. Expected: "{request.vendor_name}".',
        amount_reason=f"Unable to verify amount. Expected: ${request.total_amount:.2f}.",
        date_reason=f"Unable to verify date. Expected: {request.expense_date.isoformat()}.",
        expected_vendor=request.vendor_name,
        expected_amount=request.total_amount,
        expected_date=request.expense_date,
        confidence_score=FALLBACK_CONFIDENCE,
        recommendation=Recommendation.REVIEW,
        concerns=[note],
        analysis_notes=note,
    )


def verify(
    extracted: ExtractedReceipt,
    request: PurchaseRequest,
    receipt_id: str | None = None,
) -> ReceiptAnalysis:
    """Score extracted receipt fields against the request they should corroborate."""
    if extracted.is_empty:
        return fallback_analysis(
            request, EXTRACTION_FAILED_NOTE, receipt_id=receipt_id, extracted=extracted
        )

    vendor_ok = vendor_matches(extracted.vendor, request.vendor_name)
    amount_ok = amount_within_tolerance(extracted.amount, request.total_amount)
    day_offset = days_between(extracted.date, request.expense_date)
    date_ok = day_offset is not None and abs(day_offset) <= RECEIPT_DATE_TOLERANCE_DAYS

    reasons = {
        "vendor": _vendor_reason(extracted, request, vendor_ok),
        "amount": _amount_reason(extracted, request, amount_ok),
        "date": _date_reason(extracted, request, day_offset),
    }
    checks = {"vendor": vendor_ok, "amount": amount_ok, "date": date_ok}
    passed = tuple(name for name, ok in checks.items() if ok)
    failed = [name for name, ok in checks.items() if not ok]

    concerns: list[str] = []
    if len(passed) == 3:
        confidence = ALL_PASS_CONFIDENCE
        recommendation = Recommendation.APPROVE
        if day_offset != 0:
            concerns.append(reasons["date"])
    elif len(passed) == 2:
        confidence = TWO_PASS_CONFIDENCE[passed]
        recommendation = Recommendation.REVIEW
        concerns.append(_mismatch_concern(failed[0], reasons[failed[0]]))
    elif len(passed) == 1:
        confidence = ONE_PASS_CONFIDENCE
        recommendation = Recommendation.REVIEW
        concerns.extend(_mismatch_concern(name, reasons[name]) for name in failed)
    else:
        confidence = NONE_PASS_CONFIDENCE
        recommendation = Recommendation.REJECT
        concerns.append("No verification checks passed.")

    # The two most distinguishing fields both wrong is never approvable.
    if not vendor_ok and not amount_ok:
        recommendation = Recommendation.REJECT

    return ReceiptAnalysis(
        receipt_id=receipt_id,
        request_id=request.id,
        extracted_vendor=extracted.vendor,
        extracted_amount=extracted.amount,
        extracted_date=extracted.date,
        extracted_items=extracted.items,
        vendor_match=vendor_ok,
        amount_match=amount_ok,
        date_match=date_ok,
        vendor_reason=reasons["vendor"],
        amount_reason=reasons["amount"],
        date_reason=reasons["date"],
        expected_vendor=request.vendor_name,
        expected_amount=request.total_amount,
        expected_date=request.expense_date,
        confidence_score=confidence,
        recommendation=recommendation,
        concerns=concerns,
        analysis_notes=f"{len(passed)} of 3 checks passed.",
    )
