"""Reconciliation pass: pull vendor orders, score them, persist and auto-link."""

import logging
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from typing import Protocol

import requests
from pydantic import BaseModel, ValidationError

from pcardflow.core.matcher import (
    DEFAULT_VENDOR_FAMILY,
    find_best_match,
    order_total,
    score_request,
    should_auto_link,
)
from pcardflow.integrations.godaddy import OrderSourceError
from pcardflow.models import (
    ExternalOrder,
    MatchResult,
    OrderOutcome,
    OrderSyncOutcome,
    PurchaseRequest,
    SyncReport,
    SyncStatus,
    VendorOrder,
    VendorSyncRecord,
    VendorSyncState,
)
from pcardflow.store import SqliteStore

logger = logging.getLogger(__name__)

LOOKBACK_DAYS = 90
SYNC_INTERVAL = timedelta(hours=4)
DOMAIN_PRODUCT_TYPE_ID = 2

NOT_CONFIGURED_ERROR = "GoDaddy integration not configured"
NOT_CONFIGURED_DETAILS = "Contact your system administrator to enable this feature"
LINK_CONFLICT_REASON = "Auto-link skipped: request or order is already linked"


class OrderSource(Protocol):
    @property
    def is_configured(self) -> bool: ...

    def list_orders(self, period_start: date) -> list[dict]: ...


class IntegrationStatus(BaseModel):
    configured: bool
    sync_status: VendorSyncRecord | None = None
    total_orders: int = 0
    unmatched_orders: int = 0


def vendor_key(vendor_family: str) -> str:
    return vendor_family.lower().replace(" ", "")


def to_external_order(order: VendorOrder, raw: dict) -> ExternalOrder:
    """Build the persisted form of a vendor order, before matching."""
    first_type = order.items[0].product_type_id if order.items else None
    return ExternalOrder(
        order_id=order.order_id,
        domain_or_product=", ".join(item.label for item in order.items),
        product_type="domain" if first_type == DOMAIN_PRODUCT_TYPE_ID else "other",
        order_date=order.created_at.date(),
        order_total=order_total(order),
        currency=order.currency,
        raw_api_response=raw,
    )


def check_status(
    source: OrderSource,
    store: SqliteStore,
    vendor_family: str = DEFAULT_VENDOR_FAMILY,
) -> IntegrationStatus:
    """Report whether the integration is configured and how many orders it holds."""
    return IntegrationStatus(
        configured=source.is_configured,
        sync_status=store.get_sync_record(vendor_key(vendor_family)),
        total_orders=store.count_orders(),
        unmatched_orders=store.count_orders(SyncStatus.UNMATCHED),
    )


def _record_failure(store: SqliteStore, record: VendorSyncRecord, message: str) -> None:
    store.save_sync_record(
        record.model_copy(
            update={
                "status": VendorSyncState.FAILED,
                "error_message": message,
                "updated_at": datetime.now(UTC),
            }
        )
    )


def _keep_link(
    order: VendorOrder, linked_request: PurchaseRequest, vendor_family: str
) -> MatchResult:
    score, reasons = score_request(order, linked_request, vendor_family)
    return MatchResult(request_id=linked_request.id, confidence=score, reasons=reasons)


def _move_link(
    store: SqliteStore, order_id: str, old_request_id: str, new_request_id: str
) -> str | None:
    """Re-point an order's link from one request to another.

    The old link is restored when the new request can't be linked.

    Returns:
        The request holding the link afterwards, or None when neither does
    """
    if not store.release_order_link(old_request_id, order_id):
        return None
    if store.link_order_to_request(new_request_id, order_id):
        logger.info(
            "Order %s moved from request %s to %s", order_id, old_request_id, new_request_id
        )
        return new_request_id
    if store.link_order_to_request(old_request_id, order_id):
        return old_request_id
    return None


def sync_order(
    raw: dict,
    store: SqliteStore,
    candidates: list[PurchaseRequest],
    force_sync: bool = False,
    vendor_family: str = DEFAULT_VENDOR_FAMILY,
) -> tuple[OrderSyncOutcome, ExternalOrder | None, MatchResult | None]:
    """Reconcile a single raw vendor order.

    Orders already on record are left untouched unless ``force_sync``. A
    forced rescore keeps the order's current link unless another request
    now clears the auto-link threshold, in which case the link moves to it.
    Without ``force_sync`` a record another pass has already marked matched
    is never overwritten.

    Returns:
        The outcome, the persisted order (None when skipped) and the match
        result (None when nothing scored high enough)
    """
    order = VendorOrder.model_validate(raw)
    skipped = OrderSyncOutcome(order_id=order.order_id, status=OrderOutcome.SKIPPED_EXISTING)

    existing = store.get_external_order(order.order_id)
    if existing is not None and not force_sync:
        return skipped, None, None

    # A forced rescore keeps the request this order is already linked to in play.
    pool = candidates
    linked_request = None
    if existing is not None and existing.matched_request_id:
        linked_request = store.get_request(existing.matched_request_id)
        if linked_request is not None and linked_request.external_order_id == order.order_id:
            pool = [linked_request, *candidates]
        else:
            linked_request = None

    external = to_external_order(order, raw)
    result = find_best_match(order, pool, vendor_family)

    moving = (
        linked_request is not None
        and should_auto_link(result)
        and result.request_id != linked_request.id
    )
    if linked_request is not None and not moving:
        result = _keep_link(order, linked_request, vendor_family)

    if result is None:
        external = external.model_copy(update={"sync_status": SyncStatus.UNMATCHED})
        if not store.save_external_order(external, keep_matched=not force_sync):
            return skipped, None, None
        outcome = OrderSyncOutcome(order_id=order.order_id, status=OrderOutcome.UNMATCHED)
        return outcome, external, None

    reasons = list(result.reasons)
    status = SyncStatus.PENDING
    outcome_status = OrderOutcome.LOW_CONFIDENCE_MATCH
    if linked_request is not None and not moving:
        status = SyncStatus.MATCHED
        outcome_status = OrderOutcome.MATCHED
    elif should_auto_link(result):
        if moving:
            holder = _move_link(store, order.order_id, linked_request.id, result.request_id)
        elif store.link_order_to_request(result.request_id, order.order_id):
            holder = result.request_id
        else:
            holder = None

        if holder == result.request_id:
            status = SyncStatus.MATCHED
            outcome_status = OrderOutcome.MATCHED
        elif holder is not None:
            # The move failed and the order stays with the request it had.
            result = _keep_link(order, linked_request, vendor_family)
            reasons = [*result.reasons, LINK_CONFLICT_REASON]
            status = SyncStatus.MATCHED
            outcome_status = OrderOutcome.MATCHED
        else:
            reasons.append(LINK_CONFLICT_REASON)

    external = external.model_copy(
        update={
            "sync_status": status,
            "matched_request_id": result.request_id,
            "match_confidence": result.confidence,
            "match_reasons": reasons,
        }
    )
    if not store.save_external_order(external, keep_matched=not force_sync):
        logger.info("Order %s was matched by another pass, leaving it as is", order.order_id)
        return skipped, None, None
    outcome = OrderSyncOutcome(
        order_id=order.order_id,
        status=outcome_status,
        matched_to=result.request_id,
        confidence=result.confidence,
    )
    return outcome, external, result


def _run_hook(hook: Callable, outcome: OrderSyncOutcome, *args) -> None:
    """Call a caller-supplied hook; a failing hook is noted on the outcome only."""
    try:
        hook(*args)
    except Exception as e:
        name = getattr(hook, "__name__", repr(hook))
        logger.exception("Hook %s failed for order %s", name, outcome.order_id)
        outcome.error = f"Hook failed: {e}"


def sync_orders(
    source: OrderSource,
    store: SqliteStore,
    force_sync: bool = False,
    vendor_family: str = DEFAULT_VENDOR_FAMILY,
    lookback_days: int = LOOKBACK_DAYS,
    on_progress: Callable[[str, str], None] | None = None,
    on_match: Callable[[ExternalOrder, MatchResult], None] | None = None,
    on_link: Callable[[str, str], None] | None = None,
) -> SyncReport:
    """Run one reconciliation pass over recent vendor orders.

    Orders are handled one at a time against a snapshot of eligible requests
    taken once per pass; a request linked earlier in the pass is dropped from
    the snapshot. A failure on one order is recorded and the pass moves on.

    Args:
        source: Order source (e.g. ``GoDaddyClient``)
        store: Persistence for requests, orders and the sync record
        force_sync: Rescore orders that are already on record
        vendor_family: Vendor whose orders are being reconciled
        lookback_days: How far back to list orders
        on_progress: Optional callback for progress updates (event_type, message)
        on_match: Called for every order that found a candidate request
        on_link: Called with (order_id, request_id) after an auto-link, e.g. to
            fetch the vendor's receipt

    Returns:
        SyncReport with per-order outcomes
    """

    def progress(event_type: str, message: str) -> None:
        if on_progress:
            on_progress(event_type, message)

    if not source.is_configured:
        progress("sync_error", NOT_CONFIGURED_ERROR)
        return SyncReport(
            success=False,
            configured=False,
            error=NOT_CONFIGURED_ERROR,
            details=NOT_CONFIGURED_DETAILS,
        )

    key = vendor_key(vendor_family)
    record = store.get_sync_record(key) or VendorSyncRecord(vendor_type=key)
    record = record.model_copy(
        update={"status": VendorSyncState.RUNNING, "updated_at": datetime.now(UTC)}
    )
    store.save_sync_record(record)

    logger.info("Starting %s order sync...", vendor_family)
    period_start = datetime.now(UTC).date() - timedelta(days=lookback_days)

    try:
        raw_orders = source.list_orders(period_start)
    except OrderSourceError as e:
        status = f"API Error {e.status_code}: " if e.status_code else ""
        message = f"{status}{e.details or e}"
        _record_failure(store, record, message)
        progress("sync_error", f"Failed to fetch orders: {e}")
        return SyncReport(success=False, error=str(e), details=e.details)
    except requests.RequestException as e:
        _record_failure(store, record, str(e))
        progress("sync_error", f"Failed to fetch orders: {e}")
        return SyncReport(success=False, error=str(e))

    candidates = store.eligible_requests(vendor_family)
    report = SyncReport(success=True, orders_fetched=len(raw_orders))

    for raw in raw_orders:
        order_id = str(raw.get("orderId", "unknown")) if isinstance(raw, dict) else "unknown"
        try:
            outcome, external, result = sync_order(
                raw, store, candidates, force_sync=force_sync, vendor_family=vendor_family
            )
        except ValidationError as e:
            logger.warning("Order %s is malformed: %s", order_id, e)
            outcome, external, result = (
                OrderSyncOutcome(order_id=order_id, status=OrderOutcome.FAILED, error=str(e)),
                None,
                None,
            )
        except Exception as e:
            logger.exception("Failed to reconcile order %s", order_id)
            outcome, external, result = (
                OrderSyncOutcome(order_id=order_id, status=OrderOutcome.FAILED, error=str(e)),
                None,
                None,
            )

        report.results.append(outcome)

        if outcome.status == OrderOutcome.FAILED:
            progress("order_error", f"Order {order_id} failed: {outcome.error}")
            continue
        if outcome.status == OrderOutcome.SKIPPED_EXISTING:
            progress("order_skipped", f"Order {order_id} already synced")
            continue

        report.orders_synced += 1
        if outcome.status == OrderOutcome.MATCHED:
            report.orders_matched += 1
            candidates = [c for c in candidates if c.id != outcome.matched_to]
            progress(
                "order_matched",
                f"Order {order_id} linked to request {outcome.matched_to} "
                f"({outcome.confidence}% confidence)",
            )
            if on_link:
                _run_hook(on_link, outcome, order_id, outcome.matched_to)
        elif outcome.status == OrderOutcome.LOW_CONFIDENCE_MATCH:
            progress(
                "order_low_confidence",
                f"Order {order_id} may match request {outcome.matched_to} "
                f"({outcome.confidence}% confidence), needs review",
            )
        else:
            progress("order_unmatched", f"Order {order_id} has no matching request")

        if on_match and external is not None and result is not None:
            _run_hook(on_match, outcome, external, result)

    now = datetime.now(UTC)
    store.save_sync_record(
        record.model_copy(
            update={
                "status": VendorSyncState.SUCCESS,
                "last_sync_at": now,
                "next_sync_at": now + SYNC_INTERVAL,
                "orders_synced": report.orders_synced,
                "orders_matched": report.orders_matched,
                "error_message": None,
                "updated_at": now,
            }
        )
    )
    logger.info(
        "Sync complete: %d synced, %d matched", report.orders_synced, report.orders_matched
    )
    return report
