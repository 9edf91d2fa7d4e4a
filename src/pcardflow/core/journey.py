"""Derivation of a purchase request's lifecycle timeline.

The journey is a pure projection of the request, its approval signatures and
its receipts. It holds no state of its own and can be recomputed at any time;
step ids stay fixed so consumers can diff successive journeys.
"""

from collections.abc import Iterable, Sequence

from pcardflow.models import (
    ApprovalSignature,
    JourneyStep,
    PurchaseRequest,
    Receipt,
    ReceiptStatus,
    RequestStatus,
    SignatureAction,
    StepDetail,
    StepStatus,
)

STEP_SUBMITTED = "submitted"
STEP_APPROVED = "approved"
STEP_PENDING = "pending"
STEP_ORDER_LINKED = "godaddy"
STEP_RECEIPT = "receipt"
STEP_VERIFIED = "verified"
STEP_COMPLETE = "complete"


def first_signature(
    signatures: Iterable[ApprovalSignature], action: SignatureAction
) -> ApprovalSignature | None:
    """The earliest signature with the given action, which is authoritative."""
    matching = [s for s in signatures if s.action == action]
    if not matching:
        return None
    return min(matching, key=lambda s: s.signed_at)


def latest_receipt(receipts: Iterable[Receipt]) -> Receipt | None:
    """The most recently uploaded receipt."""
    return max(receipts, key=lambda r: r.uploaded_at, default=None)


def _signature_details(
    signature: ApprovalSignature | None, by_label: str, include_reason: bool
) -> list[StepDetail] | None:
    if signature is None:
        return None
    details = [
        StepDetail(label=by_label, value=signature.approver_name),
        StepDetail(label="Title", value=signature.approver_title),
    ]
    if include_reason and signature.comments:
        details.append(StepDetail(label="Reason", value=signature.comments))
    if signature.signature_url:
        details.append(StepDetail(label="Signature", image_url=signature.signature_url))
    return details


def _submitted_step(request: PurchaseRequest) -> JourneyStep:
    details = None
    if request.employee_signature_url:
        details = [
            StepDetail(
                label="Employee Signature",
                value="Signed",
                image_url=request.employee_signature_url,
            )
        ]
    return JourneyStep(
        id=STEP_SUBMITTED,
        label="Submitted",
        status=StepStatus.COMPLETED,
        timestamp=request.employee_signed_at or request.created_at,
        details=details,
    )


def _pending(step_id: str, label: str) -> JourneyStep:
    return JourneyStep(id=step_id, label=label, status=StepStatus.PENDING)


def _current(step_id: str, label: str) -> JourneyStep:
    return JourneyStep(id=step_id, label=label, status=StepStatus.CURRENT)


def _approved_branch(
    request: PurchaseRequest,
    signatures: Sequence[ApprovalSignature],
    receipts: Sequence[Receipt],
    external_order_id: str | None,
) -> list[JourneyStep]:
    approval = first_signature(signatures, SignatureAction.APPROVED)
    steps = [
        JourneyStep(
            id=STEP_APPROVED,
            label="Approved",
            status=StepStatus.COMPLETED,
            timestamp=approval.signed_at if approval else None,
            details=_signature_details(approval, "Approved By", include_reason=False),
        )
    ]

    if external_order_id:
        steps.append(
            JourneyStep(
                id=STEP_ORDER_LINKED,
                label="Order Linked",
                status=StepStatus.COMPLETED,
                details=[StepDetail(label="Vendor Order", value=external_order_id)],
            )
        )

    receipt = latest_receipt(receipts)
    if receipt is None:
        steps.append(_current(STEP_RECEIPT, "Upload Receipt"))
        steps.append(_pending(STEP_COMPLETE, "Complete"))
        return steps

    steps.append(
        JourneyStep(
            id=STEP_RECEIPT,
            label="Receipt Uploaded",
            status=StepStatus.COMPLETED,
            timestamp=receipt.uploaded_at,
            details=[
                StepDetail(label="File", value=receipt.file_name),
                StepDetail(
                    label="Status", value=receipt.status.value.replace("_", " ").capitalize()
                ),
            ],
        )
    )

    if receipt.status == ReceiptStatus.APPROVED:
        # No separate completion time is tracked; the upload time stands in.
        steps.append(
            JourneyStep(
                id=STEP_COMPLETE,
                label="Complete",
                status=StepStatus.COMPLETED,
                timestamp=receipt.uploaded_at,
            )
        )
    else:
        steps.append(_current(STEP_VERIFIED, "Under Review"))
        steps.append(_pending(STEP_COMPLETE, "Complete"))
    return steps


def build_journey(
    request: PurchaseRequest,
    signatures: Sequence[ApprovalSignature] = (),
    receipts: Sequence[Receipt] = (),
    external_order_id: str | None = None,
) -> list[JourneyStep]:
    """Compute the ordered lifecycle steps for a purchase request.

    Args:
        request: The purchase request
        signatures: Approval signatures recorded against the request
        receipts: Receipts attached to the request, in any order
        external_order_id: Linked vendor order number, if any

    Returns:
        Steps in display order; the first is always a completed "Submitted".
    """
    steps = [_submitted_step(request)]

    if request.status == RequestStatus.REJECTED:
        rejection = first_signature(signatures, SignatureAction.REJECTED)
        steps.append(
            JourneyStep(
                id=STEP_APPROVED,
                label="Rejected",
                status=StepStatus.FAILED,
                timestamp=rejection.signed_at if rejection else None,
                details=_signature_details(rejection, "Reviewed By", include_reason=True),
            )
        )
        steps.append(_pending(STEP_RECEIPT, "Receipt"))
        steps.append(_pending(STEP_COMPLETE, "Complete"))
        return steps

    if request.status == RequestStatus.APPROVED:
        steps.extend(_approved_branch(request, signatures, receipts, external_order_id))
        return steps

    steps.append(_current(STEP_PENDING, "Pending Approval"))
    steps.append(_pending(STEP_RECEIPT, "Receipt"))
    steps.append(_pending(STEP_COMPLETE, "Complete"))
    return steps
