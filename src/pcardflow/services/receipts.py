"""Import of vendor-issued receipts for linked orders."""

import base64
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

import requests
from jinja2 import Environment, FileSystemLoader
from pydantic import BaseModel, ValidationError

from pcardflow.core.fields import to_standard_units
from pcardflow.integrations.godaddy import OrderSourceError
from pcardflow.models import (
    ExternalOrder,
    ExternalReceiptStatus,
    Receipt,
    SyncStatus,
    VendorOrder,
)
from pcardflow.store import SqliteStore

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent.parent / "templates"
RECEIPT_SOURCE = "godaddy_auto"


class OrderDetailSource(Protocol):
    @property
    def is_configured(self) -> bool: ...

    def get_order(self, order_id: str) -> dict: ...


class ReceiptImportResult(BaseModel):
    success: bool
    order_id: str
    request_id: str | None = None
    receipt_id: str | None = None
    error: str | None = None
    details: str | None = None


def render_order_receipt(order: VendorOrder, known_total: float | None = None) -> str:
    """Render a plain-text receipt for a vendor order."""
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        trim_blocks=True,
        lstrip_blocks=True,
    )
    template = env.get_template("order_receipt.txt.jinja2")
    return template.render(
        order_id=order.order_id,
        order_date=order.created_at.strftime("%B %d, %Y"),
        items=[
            {
                "label": item.label,
                "quantity": item.quantity,
                "total": to_standard_units(item.pricing.total),
            }
            for item in order.items
        ],
        subtotal=to_standard_units(order.pricing.subtotal),
        taxes=to_standard_units(order.pricing.taxes),
        total=known_total or to_standard_units(order.pricing.total),
    )


def import_order_receipt(
    source: OrderDetailSource,
    store: SqliteStore,
    order_id: str,
    request_id: str | None = None,
) -> ReceiptImportResult:
    """Fetch a vendor order and attach it as a receipt to its purchase request.

    The request is the one the order was matched to during reconciliation,
    or ``request_id`` when the order has no match on record. The imported
    receipt becomes the request's latest receipt and the request's external
    receipt status moves to fetched.

    Args:
        source: Order source able to fetch one order's details
        store: Persistence for orders, requests and receipts
        order_id: Vendor order number
        request_id: Request to attach to when the order is not matched

    Returns:
        ReceiptImportResult; failures are reported, not raised
    """
    if not source.is_configured:
        return ReceiptImportResult(
            success=False,
            order_id=order_id,
            error="GoDaddy API credentials not configured",
        )

    external: ExternalOrder | None = store.get_external_order(order_id)
    if external is not None and external.matched_request_id:
        request_id = external.matched_request_id

    request = store.get_request(request_id) if request_id else None
    if request is None:
        return ReceiptImportResult(
            success=False,
            order_id=order_id,
            request_id=request_id,
            error="Could not determine purchase request for this order",
        )

    logger.info("Fetching receipt for GoDaddy order %s", order_id)
    try:
        details = source.get_order(order_id)
    except OrderSourceError as e:
        return ReceiptImportResult(
            success=False,
            order_id=order_id,
            request_id=request.id,
            error=f"Failed to fetch invoice from GoDaddy: {e.status_code or e}",
            details=e.details,
        )
    except requests.RequestException as e:
        return ReceiptImportResult(
            success=False, order_id=order_id, request_id=request.id, error=str(e)
        )

    try:
        order = VendorOrder.model_validate(details)
    except ValidationError as e:
        logger.warning("Order %s details are malformed: %s", order_id, e)
        return ReceiptImportResult(
            success=False,
            order_id=order_id,
            request_id=request.id,
            error="GoDaddy returned malformed order details",
            details=str(e),
        )

    text = render_order_receipt(order, external.order_total if external else None)
    encoded = base64.b64encode(text.encode("utf-8")).decode("ascii")
    receipt = Receipt(
        id=f"godaddy-{order_id}",
        request_id=request.id,
        file_name=f"godaddy_receipt_{order_id}.txt",
        file_type="text/plain",
        file_size=len(text),
        file_url=f"data:text/plain;base64,{encoded}",
        uploaded_at=datetime.now(UTC),
        notes=f"Auto-imported from GoDaddy Order #{order_id}",
        source=RECEIPT_SOURCE,
    )
    store.add_receipt(receipt)

    if external is not None and external.sync_status != SyncStatus.MATCHED:
        # A pending candidate becomes matched only if the request can take the link.
        if store.link_order_to_request(request.id, order_id):
            store.save_external_order(
                external.model_copy(
                    update={"sync_status": SyncStatus.MATCHED, "matched_request_id": request.id}
                )
            )
        else:
            logger.warning(
                "Order %s left %s: request %s could not be linked",
                order_id,
                external.sync_status.value,
                request.id,
            )

    store.set_external_receipt_status(request.id, ExternalReceiptStatus.FETCHED)

    logger.info("Receipt %s imported for request %s", receipt.id, request.id)
    return ReceiptImportResult(
        success=True, order_id=order_id, request_id=request.id, receipt_id=receipt.id
    )
