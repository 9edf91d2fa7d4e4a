"""Data models for purchase requests, vendor orders, receipts and their analyses."""

from datetime import UTC, date, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RequestStatus(StrEnum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SignatureAction(StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"


class ReceiptStatus(StrEnum):
    PENDING = "pending"
    NEEDS_INFO = "needs_info"
    APPROVED = "approved"


class SyncStatus(StrEnum):
    UNMATCHED = "unmatched"
    MATCHED = "matched"
    PENDING = "pending"
    FAILED = "failed"


class Recommendation(StrEnum):
    APPROVE = "approve"
    REVIEW = "review"
    REJECT = "reject"


class OrderOutcome(StrEnum):
    """What one sync pass did with one vendor order."""

    MATCHED = "matched"
    LOW_CONFIDENCE_MATCH = "low_confidence_match"
    UNMATCHED = "unmatched"
    SKIPPED_EXISTING = "skipped_existing"
    FAILED = "failed"


class StepStatus(StrEnum):
    COMPLETED = "completed"
    CURRENT = "current"
    FAILED = "failed"
    PENDING = "pending"


class ExternalReceiptStatus(StrEnum):
    PENDING = "pending"
    FETCHED = "fetched"


class VendorSyncState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class AIVerificationStatus(StrEnum):
    PENDING = "pending"
    VERIFIED = "verified"
    MISMATCH = "mismatch"
    INCONCLUSIVE = "inconclusive"

    @classmethod
    def from_recommendation(cls, recommendation: Recommendation) -> "AIVerificationStatus":
        if recommendation == Recommendation.APPROVE:
            return cls.VERIFIED
        if recommendation == Recommendation.REJECT:
            return cls.MISMATCH
        return cls.INCONCLUSIVE


class PurchaseRequest(BaseModel):
    """An employee's spend request awaiting or holding approval."""

    id: str
    requester_id: str
    vendor_name: str
    vendor_type: str | None = None
    purchase_amount: float
    tax_amount: float = 0.0
    shipping_amount: float = 0.0
    total_amount: float
    currency: str = "USD"
    expense_date: date
    status: RequestStatus = RequestStatus.PENDING
    business_purpose: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    employee_signed_at: datetime | None = None
    employee_signature_url: str | None = None
    external_order_id: str | None = None
    external_receipt_status: ExternalReceiptStatus | None = None
    rejection_reason: str | None = None

    @model_validator(mode="after")
    def _check_amounts_and_rejection(self) -> "PurchaseRequest":
        expected_total = self.purchase_amount + self.tax_amount + self.shipping_amount
        if abs(expected_total - self.total_amount) > 0.005:
            raise ValueError(
                f"total_amount {self.total_amount:.2f} does not equal purchase + tax "
                f"+ shipping ({expected_total:.2f})"
            )
        if self.status == RequestStatus.REJECTED and not self.rejection_reason:
            raise ValueError("rejected requests must carry a rejection_reason")
        if self.status != RequestStatus.REJECTED and self.rejection_reason:
            raise ValueError("rejection_reason is only allowed on rejected requests")
        return self


class ApprovalSignature(BaseModel):
    """An approver's sign-off (or rejection) on a purchase request."""

    id: str
    request_id: str
    approver_id: str | None = None
    approver_name: str
    approver_title: str
    action: SignatureAction
    signed_at: datetime
    comments: str | None = None
    signature_url: str | None = None


class Receipt(BaseModel):
    """A receipt file attached to a purchase request."""

    id: str
    request_id: str
    file_name: str
    file_type: str = "image/jpeg"
    file_size: int | None = None
    file_url: str | None = None  # data: URL or http(s) link
    uploaded_at: datetime
    status: ReceiptStatus = ReceiptStatus.PENDING
    notes: str | None = None
    source: str = "manual"
    ai_verification_status: AIVerificationStatus = AIVerificationStatus.PENDING
    ai_confidence_score: int | None = None


class OrderItemPricing(BaseModel):
    subtotal: float = 0
    total: float = 0


class OrderItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    label: str = "Product"
    product_type_id: int | None = Field(None, alias="productTypeId")
    quantity: int = 1
    pricing: OrderItemPricing = Field(default_factory=OrderItemPricing)


class OrderPricing(BaseModel):
    subtotal: float = 0
    taxes: float = 0
    total: float = 0


class VendorOrder(BaseModel):
    """An order record as returned by the vendor's order history API.

    Pricing values are in the vendor's base unit; see
    ``pcardflow.core.fields.to_standard_units``.
    """

    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="orderId")
    created_at: datetime = Field(..., alias="createdAt")
    currency: str = "USD"
    items: list[OrderItem] = Field(default_factory=list)
    pricing: OrderPricing = Field(default_factory=OrderPricing)


class ExternalOrder(BaseModel):
    """A vendor order as persisted after a reconciliation pass."""

    order_id: str
    domain_or_product: str = ""
    product_type: str = "other"
    order_date: date
    order_total: float
    currency: str = "USD"
    sync_status: SyncStatus = SyncStatus.UNMATCHED
    matched_request_id: str | None = None
    match_confidence: int | None = Field(None, ge=0, le=100)
    match_reasons: list[str] = Field(default_factory=list)
    synced_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    raw_api_response: dict = Field(default_factory=dict)


class MatchResult(BaseModel):
    """Best-scoring purchase request for a vendor order."""

    model_config = ConfigDict(frozen=True)

    request_id: str
    confidence: int = Field(ge=0, le=100)
    reasons: list[str] = Field(default_factory=list)


class ExtractedItem(BaseModel):
    description: str
    amount: float | None = None


class ExtractedReceipt(BaseModel):
    """Fields read off a receipt image by the vision service.

    Every field is nullable: extraction may fail for any of them.
    """

    vendor: str | None = None
    amount: float | None = None
    date: str | None = None  # YYYY-MM-DD
    items: list[ExtractedItem] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.vendor is None and self.amount is None and self.date is None


class ReceiptAnalysis(BaseModel):
    """Outcome of verifying a receipt against its purchase request."""

    receipt_id: str | None = None
    request_id: str
    extracted_vendor: str | None = None
    extracted_amount: float | None = None
    extracted_date: str | None = None
    extracted_items: list[ExtractedItem] = Field(default_factory=list)
    vendor_match: bool = False
    amount_match: bool = False
    date_match: bool = False
    vendor_reason: str = ""
    amount_reason: str = ""
    date_reason: str = ""
    expected_vendor: str
    expected_amount: float
    expected_date: date
    confidence_score: int = Field(ge=0, le=100)
    recommendation: Recommendation
    concerns: list[str] = Field(default_factory=list)
    analysis_notes: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def checks_passed(self) -> int:
        return sum([self.vendor_match, self.amount_match, self.date_match])


class StepDetail(BaseModel):
    label: str
    value: str = ""
    image_url: str | None = None


class JourneyStep(BaseModel):
    """One node of a request's derived lifecycle timeline."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    status: StepStatus
    timestamp: datetime | None = None
    details: list[StepDetail] | None = None


class VendorSyncRecord(BaseModel):
    """Bookkeeping for the most recent order sync pass of one vendor."""

    vendor_type: str
    status: VendorSyncState = VendorSyncState.IDLE
    last_sync_at: datetime | None = None
    next_sync_at: datetime | None = None
    orders_synced: int = 0
    orders_matched: int = 0
    error_message: str | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class OrderSyncOutcome(BaseModel):
    order_id: str
    status: OrderOutcome
    matched_to: str | None = None
    confidence: int | None = None
    error: str | None = None


class SyncReport(BaseModel):
    """Result of one reconciliation pass over the vendor's orders."""

    success: bool
    configured: bool = True
    orders_fetched: int = 0
    orders_synced: int = 0
    orders_matched: int = 0
    results: list[OrderSyncOutcome] = Field(default_factory=list)
    error: str | None = None
    details: str | None = None
