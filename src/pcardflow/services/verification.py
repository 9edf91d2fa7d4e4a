"""Receipt verification: guard the input, call the vision service, score, cache."""

import base64
import logging
from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel

from pcardflow.core.verifier import fallback_analysis, verify
from pcardflow.integrations.vision_extractor import (
    ExtractionError,
    ReceiptImage,
    VisionExtractor,
)
from pcardflow.models import (
    AIVerificationStatus,
    PurchaseRequest,
    Receipt,
    ReceiptAnalysis,
)
from pcardflow.store import SqliteStore

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 20 * 1024 * 1024

NOT_CONFIGURED_NOTE = (
    "AI analysis requires an Anthropic API key. Please contact your administrator."
)
PDF_NOTE = (
    "PDF receipts cannot be analyzed by AI. "
    "Please upload a JPG or PNG image of your receipt."
)
UNSUPPORTED_NOTE = "Receipts of type {file_type} cannot be analyzed by AI. Please review manually."
NO_IMAGE_NOTE = "No receipt image was provided for analysis."
TOO_LARGE_NOTE = (
    "Image file is too large for AI analysis. Please upload a smaller image (under 20MB)."
)


class VerificationOutcome(BaseModel):
    """Analysis plus how it was obtained."""

    analysis: ReceiptAnalysis
    cached: bool = False
    api_configured: bool = True
    fallback: bool = False
    error: str | None = None


def is_analyzable(file_type: str | None) -> bool:
    return bool(file_type) and file_type.lower().startswith("image/")


def build_receipt_image(file_ref: str, file_type: str | None = None) -> ReceiptImage:
    """Turn a stored file reference into vision service input.

    Accepts a ``data:image/...`` URL, an http(s) URL or raw base64 data
    (whitespace is stripped and ``file_type`` or image/jpeg assumed).
    """
    if file_ref.startswith("data:image/"):
        header, _, data = file_ref.partition(",")
        media_type = header[len("data:") :].split(";")[0]
        return ReceiptImage(media_type=media_type, data=data)
    if file_ref.startswith("http"):
        return ReceiptImage(url=file_ref)
    return ReceiptImage(
        media_type=file_type or "image/jpeg", data="".join(file_ref.split())
    )


def image_from_path(path: Path, file_type: str | None = None) -> ReceiptImage:
    media_type = file_type or {
        ".png": "image/png",
        ".gif": "image/gif",
        ".webp": "image/webp",
    }.get(path.suffix.lower(), "image/jpeg")
    data = base64.b64encode(path.read_bytes()).decode("ascii")
    return ReceiptImage(media_type=media_type, data=data)


async def verify_receipt(
    receipt: Receipt,
    request: PurchaseRequest,
    extractor: VisionExtractor | None,
    store: SqliteStore,
    image: ReceiptImage | None = None,
    force: bool = False,
    on_result: Callable[[Receipt, ReceiptAnalysis], None] | None = None,
) -> VerificationOutcome:
    """Verify a receipt against its purchase request.

    A stored analysis is returned unchanged unless ``force`` is set, so the
    vision service is called at most once per receipt. Any input the service
    can't take, and any failure of the service, produces the fallback
    analysis (review, confidence 0) instead of an exception. Fallbacks are
    not cached.

    Args:
        receipt: The receipt to verify
        request: The purchase request it belongs to
        extractor: Vision extractor, or None when the service isn't configured
        store: Persistence for analyses and receipt verification status
        image: Receipt image; required unless a cached analysis exists
        force: Re-run the analysis even if one is stored
        on_result: Called with each freshly computed (non-fallback) analysis

    Returns:
        VerificationOutcome wrapping the analysis
    """
    if not force:
        cached = store.get_analysis(receipt.id)
        if cached is not None:
            logger.info("Returning cached analysis for receipt %s", receipt.id)
            return VerificationOutcome(analysis=cached, cached=True)

    def fallback(note: str, error: str | None = None, configured: bool = True):
        return VerificationOutcome(
            analysis=fallback_analysis(request, note, receipt_id=receipt.id),
            api_configured=configured,
            fallback=True,
            error=error,
        )

    if extractor is None:
        logger.warning("Vision service not configured, receipt %s left for review", receipt.id)
        return fallback(NOT_CONFIGURED_NOTE, "Vision service not configured", configured=False)

    if receipt.file_type == "application/pdf":
        return fallback(PDF_NOTE, "PDF files cannot be analyzed directly")
    if not is_analyzable(receipt.file_type):
        return fallback(
            UNSUPPORTED_NOTE.format(file_type=receipt.file_type),
            f"Unsupported file type: {receipt.file_type}",
        )
    if image is None:
        return fallback(NO_IMAGE_NOTE, "No image provided")
    if image.size > MAX_IMAGE_BYTES:
        return fallback(TOO_LARGE_NOTE, "Image too large")

    try:
        vision_result = await extractor.extract(image, request)
    except ExtractionError as e:
        logger.error("Extraction failed for receipt %s: %s", receipt.id, e)
        return fallback(f"Analysis failed: {e}", str(e))
    except Exception as e:
        logger.exception("Vision service call failed for receipt %s", receipt.id)
        return fallback(f"AI service error: {e}", str(e))

    extracted = vision_result.extracted
    analysis = verify(extracted, request, receipt_id=receipt.id)
    if extracted.is_empty:
        return VerificationOutcome(analysis=analysis, fallback=True, error="Empty extraction")

    store.save_analysis(analysis)
    store.update_receipt_verification(
        receipt.id,
        AIVerificationStatus.from_recommendation(analysis.recommendation),
        analysis.confidence_score,
    )
    logger.info(
        "Receipt %s verified: %s (%d%% confidence)",
        receipt.id,
        analysis.recommendation.value,
        analysis.confidence_score,
    )
    outcome = VerificationOutcome(analysis=analysis)
    if on_result:
        try:
            on_result(receipt, analysis)
        except Exception as e:
            name = getattr(on_result, "__name__", repr(on_result))
            logger.exception("Hook %s failed for receipt %s", name, receipt.id)
            outcome.error = f"Hook failed: {e}"
    return outcome
