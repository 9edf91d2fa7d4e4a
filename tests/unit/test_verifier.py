"""Unit tests for receipt verification scoring."""

from datetime import date

import pytest

from pcardflow.core.verifier import EXTRACTION_FAILED_NOTE, fallback_analysis, verify
from pcardflow.models import ExtractedReceipt, Recommendation
from tests.utils import make_request

pytestmark = pytest.mark.unit


@pytest.fixture
def request_():
    """Acme Corporation purchase of $100.00 on 2025-03-10."""
    return make_request(
        vendor_name="ACME CORPORATION", total=100.0, expense_date=date(2025, 3, 10)
    )


def extracted(vendor="Acme Corp.", amount=100.0, day="2025-03-10") -> ExtractedReceipt:
    return ExtractedReceipt(vendor=vendor, amount=amount, date=day)


class TestAllChecksPass:
    def test_exact_receipt_approved(self, request_):
        analysis = verify(extracted(), request_, receipt_id="rcpt-1")
        assert analysis.recommendation == Recommendation.APPROVE
        assert analysis.confidence_score == 95
        assert analysis.checks_passed == 3
        assert analysis.concerns == []
        assert analysis.receipt_id == "rcpt-1"
        assert analysis.expected_vendor == "ACME CORPORATION"

    def test_one_day_off_noted(self, request_):
        """A date one day off still passes but is called out."""
        analysis = verify(extracted(day="2025-03-11"), request_)
        assert analysis.recommendation == Recommendation.APPROVE
        assert analysis.confidence_score == 95
        assert len(analysis.concerns) == 1
        assert "within tolerance" in analysis.concerns[0]


class TestTwoChecksPass:
    def test_vendor_and_amount(self, request_):
        """Acme Corp. for $100.50 two days late: review at 75."""
        analysis = verify(extracted(amount=100.5, day="2025-03-12"), request_)
        assert analysis.vendor_match
        assert analysis.amount_match
        assert not analysis.date_match
        assert analysis.confidence_score == 75
        assert analysis.recommendation == Recommendation.REVIEW
        assert len(analysis.concerns) == 1
        assert analysis.concerns[0].startswith("Date mismatch:")

    def test_vendor_and_date(self, request_):
        analysis = verify(extracted(amount=150.0), request_)
        assert analysis.confidence_score == 60
        assert analysis.recommendation == Recommendation.REVIEW
        assert analysis.concerns[0].startswith("Amount mismatch:")
        assert "$50.00 difference" in analysis.concerns[0]

    def test_amount_and_date(self, request_):
        analysis = verify(extracted(vendor="Globex"), request_)
        assert analysis.confidence_score == 50
        assert analysis.recommendation == Recommendation.REVIEW
        assert analysis.concerns[0].startswith("Vendor mismatch:")


class TestFewChecksPass:
    def test_only_vendor(self, request_):
        analysis = verify(extracted(amount=150.0, day="2025-04-01"), request_)
        assert analysis.confidence_score == 30
        assert analysis.recommendation == Recommendation.REVIEW
        assert len(analysis.concerns) == 2

    def test_only_date_is_rejected(self, request_):
        """Vendor and amount both wrong forces reject even with a matching date."""
        analysis = verify(extracted(vendor="Globex", amount=150.0), request_)
        assert analysis.confidence_score == 30
        assert analysis.recommendation == Recommendation.REJECT
        assert len(analysis.concerns) == 2

    def test_nothing_matches(self, request_):
        analysis = verify(extracted(vendor="Globex", amount=9.99, day="2024-01-01"), request_)
        assert analysis.confidence_score == 15
        assert analysis.recommendation == Recommendation.REJECT
        assert analysis.concerns == ["No verification checks passed."]

    def test_missing_field_counts_as_failed(self, request_):
        analysis = verify(extracted(day=None), request_)
        assert not analysis.date_match
        assert analysis.confidence_score == 75
        assert "Could not extract date" in analysis.date_reason

    def test_unreadable_date(self, request_):
        analysis = verify(extracted(day="10th March"), request_)
        assert not analysis.date_match
        assert "could not be read" in analysis.date_reason


class TestNeverApprovesWithoutAllChecks:
    @pytest.mark.parametrize(
        "fields",
        [
            {"vendor": "Globex"},
            {"amount": 103.0},
            {"day": "2025-03-12"},
            {"vendor": None},
            {"amount": None, "day": None},
        ],
    )
    def test_not_approved(self, request_, fields):
        analysis = verify(extracted(**fields), request_)
        assert analysis.recommendation != Recommendation.APPROVE


class TestFallback:
    def test_empty_extraction(self, request_):
        """All fields null gives the fallback result."""
        analysis = verify(ExtractedReceipt(), request_, receipt_id="rcpt-1")
        assert analysis.confidence_score == 0
        assert analysis.recommendation == Recommendation.REVIEW
        assert not (analysis.vendor_match or analysis.amount_match or analysis.date_match)
        assert analysis.concerns == [EXTRACTION_FAILED_NOTE]
        assert analysis.receipt_id == "rcpt-1"

    def test_fallback_carries_note_and_expectations(self, request_):
        analysis = fallback_analysis(request_, "Image too large")
        assert analysis.analysis_notes == "Image too large"
        assert analysis.expected_amount == 100.0
        assert analysis.expected_date == date(2025, 3, 10)
        assert "ACME CORPORATION" in analysis.vendor_reason
