import re
from datetime import UTC, date, datetime

from pcardflow.models import (
    ApprovalSignature,
    PurchaseRequest,
    Receipt,
    ReceiptStatus,
    RequestStatus,
    SignatureAction,
)


def clean_cli_output(output: str) -> str:
    """
    Remove ANSI escape codes, Rich formatting characters, whitespace, and newlines
    from CLI output to make assertions robust against terminal wrapping.
    """
    ansi_escape = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")
    output = ansi_escape.sub("", output)
    return re.sub(r"[\s│╭╮╰╯─]", "", output)


def make_request(
    request_id: str = "req-1",
    vendor_name: str = "GoDaddy",
    total: float = 75.0,
    expense_date: date = date(2025, 3, 10),
    status: RequestStatus = RequestStatus.APPROVED,
    **overrides,
) -> PurchaseRequest:
    """Build a purchase request whose total is all purchase amount."""
    fields = {
        "id": request_id,
        "requester_id": "emp-1",
        "vendor_name": vendor_name,
        "purchase_amount": total,
        "total_amount": total,
        "expense_date": expense_date,
        "status": status,
        "created_at": datetime(2025, 3, 1, 9, 0, tzinfo=UTC),
    }
    if status == RequestStatus.REJECTED:
        fields["rejection_reason"] = "Not a business expense"
    fields.update(overrides)
    return PurchaseRequest(**fields)


def make_order(
    order_id: str = "1001",
    total: float = 75_000_000,
    created_at: str = "2025-03-10T15:30:00Z",
    label: str = "example.com",
    product_type_id: int = 2,
) -> dict:
    """Build a raw order record shaped like the vendor API response."""
    return {
        "orderId": order_id,
        "createdAt": created_at,
        "currency": "USD",
        "items": [
            {
                "label": label,
                "productTypeId": product_type_id,
                "quantity": 1,
                "pricing": {"subtotal": total, "total": total},
            }
        ],
        "pricing": {"subtotal": total, "taxes": 0, "total": total},
    }


def make_signature(
    signature_id: str = "sig-1",
    request_id: str = "req-1",
    action: SignatureAction = SignatureAction.APPROVED,
    signed_at: datetime = datetime(2025, 3, 2, 10, 0, tzinfo=UTC),
    **overrides,
) -> ApprovalSignature:
    fields = {
        "id": signature_id,
        "request_id": request_id,
        "approver_name": "Dana Reyes",
        "approver_title": "Finance Manager",
        "action": action,
        "signed_at": signed_at,
    }
    fields.update(overrides)
    return ApprovalSignature(**fields)


def make_receipt(
    receipt_id: str = "rcpt-1",
    request_id: str = "req-1",
    uploaded_at: datetime = datetime(2025, 3, 11, 8, 0, tzinfo=UTC),
    status: ReceiptStatus = ReceiptStatus.PENDING,
    **overrides,
) -> Receipt:
    fields = {
        "id": receipt_id,
        "request_id": request_id,
        "file_name": f"{receipt_id}.jpg",
        "uploaded_at": uploaded_at,
        "status": status,
    }
    fields.update(overrides)
    return Receipt(**fields)
