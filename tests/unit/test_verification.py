"""Unit tests for the receipt verification service."""

import base64
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from pcardflow.integrations.vision_extractor import (
    ExtractionRefusedError,
    ReceiptImage,
    VisionResult,
)
from pcardflow.models import AIVerificationStatus, ExtractedReceipt, Recommendation
from pcardflow.services.verification import (
    MAX_IMAGE_BYTES,
    NOT_CONFIGURED_NOTE,
    PDF_NOTE,
    build_receipt_image,
    image_from_path,
    is_analyzable,
    verify_receipt,
)
from pcardflow.store import SqliteStore
from tests.utils import make_receipt, make_request

pytestmark = pytest.mark.unit


@pytest.fixture
def store(tmp_path):
    return SqliteStore(str(tmp_path / "verify.db"))


@pytest.fixture
def purchase_request():
    return make_request(vendor_name="Staples", total=42.5, expense_date=date(2025, 3, 10))


@pytest.fixture
def receipt(store):
    receipt = make_receipt()
    store.add_receipt(receipt)
    return receipt


@pytest.fixture
def image():
    return ReceiptImage(media_type="image/jpeg", data="aGVsbG8=")


def extractor_returning(extracted: ExtractedReceipt) -> MagicMock:
    extractor = MagicMock()
    extractor.extract = AsyncMock(
        return_value=VisionResult(
            extracted=extracted, input_tokens=1000, output_tokens=50, processing_time=0.4
        )
    )
    return extractor


@pytest.fixture
def matching_extractor():
    return extractor_returning(
        ExtractedReceipt(vendor="STAPLES #123", amount=42.5, date="2025-03-10")
    )


class TestInputHelpers:
    def test_is_analyzable(self):
        assert is_analyzable("image/png")
        assert is_analyzable("IMAGE/JPEG")
        assert not is_analyzable("application/pdf")
        assert not is_analyzable(None)

    def test_build_from_data_url(self):
        image = build_receipt_image("data:image/png;base64,aGVsbG8=")
        assert image.media_type == "image/png"
        assert image.data == "aGVsbG8="

    def test_build_from_http_url(self):
        image = build_receipt_image("https://files/r.jpg")
        assert image.url == "https://files/r.jpg"
        assert image.data is None

    def test_build_from_raw_base64(self):
        image = build_receipt_image("aGVs\nbG8=", "image/webp")
        assert image.media_type == "image/webp"
        assert image.data == "aGVsbG8="

    def test_image_from_path(self, tmp_path):
        path = tmp_path / "receipt.png"
        path.write_bytes(b"hello")
        image = image_from_path(path)
        assert image.media_type == "image/png"
        assert base64.b64decode(image.data) == b"hello"


class TestVerifyReceipt:
    @pytest.mark.asyncio
    async def test_verified_and_stored(
        self, store, receipt, purchase_request, image, matching_extractor
    ):
        seen = []
        outcome = await verify_receipt(
            receipt,
            purchase_request,
            matching_extractor,
            store,
            image=image,
            on_result=lambda r, a: seen.append((r.id, a.recommendation)),
        )

        assert not outcome.cached
        assert not outcome.fallback
        assert outcome.analysis.recommendation == Recommendation.APPROVE
        assert outcome.analysis.confidence_score == 95
        assert store.get_analysis("rcpt-1") == outcome.analysis

        stored_receipt = store.get_receipt("rcpt-1")
        assert stored_receipt.ai_verification_status == AIVerificationStatus.VERIFIED
        assert stored_receipt.ai_confidence_score == 95
        assert seen == [("rcpt-1", Recommendation.APPROVE)]

    @pytest.mark.asyncio
    async def test_failing_result_hook_keeps_analysis(
        self, store, receipt, purchase_request, image, matching_extractor
    ):
        def on_result(receipt, analysis):
            raise RuntimeError("webhook unreachable")

        outcome = await verify_receipt(
            receipt, purchase_request, matching_extractor, store, image=image, on_result=on_result
        )

        assert not outcome.fallback
        assert outcome.analysis.recommendation == Recommendation.APPROVE
        assert "webhook unreachable" in outcome.error
        assert store.get_analysis("rcpt-1") == outcome.analysis

    @pytest.mark.asyncio
    async def test_cached_result_returned(
        self, store, receipt, purchase_request, image, matching_extractor
    ):
        first = await verify_receipt(
            receipt, purchase_request, matching_extractor, store, image=image
        )
        second = await verify_receipt(
            receipt, purchase_request, matching_extractor, store, image=image
        )

        assert second.cached
        assert second.analysis == first.analysis
        assert matching_extractor.extract.await_count == 1

    @pytest.mark.asyncio
    async def test_cached_result_needs_no_extractor(
        self, store, receipt, purchase_request, image, matching_extractor
    ):
        await verify_receipt(receipt, purchase_request, matching_extractor, store, image=image)
        outcome = await verify_receipt(receipt, purchase_request, None, store)
        assert outcome.cached
        assert outcome.analysis.confidence_score == 95

    @pytest.mark.asyncio
    async def test_force_reanalyzes(self, store, receipt, purchase_request, image):
        await verify_receipt(
            receipt,
            purchase_request,
            extractor_returning(ExtractedReceipt(vendor="Staples", amount=42.5)),
            store,
            image=image,
        )
        extractor = extractor_returning(
            ExtractedReceipt(vendor="Staples", amount=42.5, date="2025-03-10")
        )

        outcome = await verify_receipt(
            receipt, purchase_request, extractor, store, image=image, force=True
        )

        assert not outcome.cached
        assert extractor.extract.await_count == 1
        assert store.get_analysis("rcpt-1").confidence_score == 95

    @pytest.mark.asyncio
    async def test_mismatch_marks_receipt(self, store, receipt, purchase_request, image):
        extractor = extractor_returning(
            ExtractedReceipt(vendor="Best Buy", amount=899.99, date="2025-03-10")
        )
        outcome = await verify_receipt(receipt, purchase_request, extractor, store, image=image)

        assert outcome.analysis.recommendation == Recommendation.REJECT
        assert (
            store.get_receipt("rcpt-1").ai_verification_status == AIVerificationStatus.MISMATCH
        )


class TestFallbacks:
    @pytest.mark.asyncio
    async def test_not_configured(self, store, receipt, purchase_request, image):
        outcome = await verify_receipt(receipt, purchase_request, None, store, image=image)

        assert outcome.fallback
        assert not outcome.api_configured
        assert outcome.analysis.confidence_score == 0
        assert outcome.analysis.recommendation == Recommendation.REVIEW
        assert outcome.analysis.analysis_notes == NOT_CONFIGURED_NOTE
        assert store.get_analysis("rcpt-1") is None

    @pytest.mark.asyncio
    async def test_pdf_rejected_before_call(
        self, store, purchase_request, image, matching_extractor
    ):
        receipt = make_receipt(file_type="application/pdf")
        outcome = await verify_receipt(
            receipt, purchase_request, matching_extractor, store, image=image
        )

        assert outcome.fallback
        assert outcome.analysis.analysis_notes == PDF_NOTE
        matching_extractor.extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_other_document_types(self, store, purchase_request, image, matching_extractor):
        receipt = make_receipt(file_type="text/plain")
        outcome = await verify_receipt(
            receipt, purchase_request, matching_extractor, store, image=image
        )
        assert outcome.fallback
        assert "text/plain" in outcome.analysis.analysis_notes
        matching_extractor.extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_image(self, store, receipt, purchase_request, matching_extractor):
        outcome = await verify_receipt(receipt, purchase_request, matching_extractor, store)
        assert outcome.fallback
        matching_extractor.extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_oversized_image(self, store, receipt, purchase_request, matching_extractor):
        image = ReceiptImage(data="A" * (MAX_IMAGE_BYTES + 1))
        outcome = await verify_receipt(
            receipt, purchase_request, matching_extractor, store, image=image
        )
        assert outcome.fallback
        assert outcome.error == "Image too large"
        matching_extractor.extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_extraction_error(self, store, receipt, purchase_request, image):
        extractor = MagicMock()
        extractor.extract = AsyncMock(side_effect=ExtractionRefusedError("refused"))

        outcome = await verify_receipt(receipt, purchase_request, extractor, store, image=image)

        assert outcome.fallback
        assert outcome.analysis.confidence_score == 0
        assert "refused" in outcome.error
        assert store.get_analysis("rcpt-1") is None

    @pytest.mark.asyncio
    async def test_service_error(self, store, receipt, purchase_request, image):
        extractor = MagicMock()
        extractor.extract = AsyncMock(side_effect=RuntimeError("503 overloaded"))

        outcome = await verify_receipt(receipt, purchase_request, extractor, store, image=image)

        assert outcome.fallback
        assert outcome.analysis.recommendation == Recommendation.REVIEW
        assert "503 overloaded" in outcome.analysis.analysis_notes

    @pytest.mark.asyncio
    async def test_empty_extraction_not_cached(self, store, receipt, purchase_request, image):
        extractor = extractor_returning(ExtractedReceipt())

        outcome = await verify_receipt(receipt, purchase_request, extractor, store, image=image)

        assert outcome.fallback
        assert outcome.analysis.confidence_score == 0
        assert store.get_analysis("rcpt-1") is None
        assert store.get_receipt("rcpt-1").ai_verification_status == AIVerificationStatus.PENDING
