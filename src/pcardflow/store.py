"""SQLite persistence for requests, receipts, vendor orders and analyses.

Each record is kept as a JSON document next to the few columns that queries
and constraints need. The request's ``external_order_id`` column is the
authority for links: it carries a unique index and is only ever written
through a conditional update, so two concurrent sync passes cannot link the
same request or the same order twice.
"""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager

from pcardflow.core.fields import is_vendor_family
from pcardflow.models import (
    AIVerificationStatus,
    ApprovalSignature,
    ExternalOrder,
    ExternalReceiptStatus,
    PurchaseRequest,
    Receipt,
    ReceiptAnalysis,
    RequestStatus,
    SyncStatus,
    VendorSyncRecord,
)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS purchase_requests (
      id TEXT PRIMARY KEY,
      status TEXT NOT NULL,
      vendor_name TEXT NOT NULL,
      vendor_type TEXT,
      external_order_id TEXT,
      external_receipt_status TEXT,
      data TEXT NOT NULL
    );
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS ux_requests_external_order
      ON purchase_requests (external_order_id)
      WHERE external_order_id IS NOT NULL;
    """,
    """
    CREATE TABLE IF NOT EXISTS approval_signatures (
      id TEXT PRIMARY KEY,
      request_id TEXT NOT NULL,
      signed_at TEXT NOT NULL,
      data TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS receipts (
      id TEXT PRIMARY KEY,
      request_id TEXT NOT NULL,
      uploaded_at TEXT NOT NULL,
      data TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS external_orders (
      order_id TEXT PRIMARY KEY,
      sync_status TEXT NOT NULL,
      matched_request_id TEXT,
      data TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS receipt_analyses (
      receipt_id TEXT PRIMARY KEY,
      request_id TEXT NOT NULL,
      data TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS vendor_sync (
      vendor_type TEXT PRIMARY KEY,
      data TEXT NOT NULL
    );
    """,
]


class SqliteStore:
    """Read/write access to the persisted state keyed by record ids."""

    def __init__(self, path: str = "pcardflow.db"):
        self.path = path
        self.init_db()

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        con = sqlite3.connect(self.path)
        con.execute("PRAGMA journal_mode=WAL;")
        try:
            yield con
            con.commit()
        finally:
            con.close()

    def init_db(self) -> None:
        with self._conn() as con:
            for statement in SCHEMA:
                con.execute(statement)

    # Purchase requests

    def _load_request(self, row: tuple) -> PurchaseRequest:
        data, external_order_id, external_receipt_status = row
        request = PurchaseRequest.model_validate_json(data)
        return request.model_copy(
            update={
                "external_order_id": external_order_id,
                "external_receipt_status": (
                    ExternalReceiptStatus(external_receipt_status)
                    if external_receipt_status
                    else None
                ),
            }
        )

    def upsert_request(self, request: PurchaseRequest) -> None:
        with self._conn() as con:
            con.execute(
                """
                INSERT INTO purchase_requests
                  (id, status, vendor_name, vendor_type, external_order_id,
                   external_receipt_status, data)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  status=excluded.status,
                  vendor_name=excluded.vendor_name,
                  vendor_type=excluded.vendor_type,
                  external_order_id=excluded.external_order_id,
                  external_receipt_status=excluded.external_receipt_status,
                  data=excluded.data
                """,
                (
                    request.id,
                    request.status.value,
                    request.vendor_name,
                    request.vendor_type,
                    request.external_order_id,
                    request.external_receipt_status.value
                    if request.external_receipt_status
                    else None,
                    request.model_dump_json(),
                ),
            )

    def get_request(self, request_id: str) -> PurchaseRequest | None:
        with self._conn() as con:
            row = con.execute(
                "SELECT data, external_order_id, external_receipt_status "
                "FROM purchase_requests WHERE id=?",
                (request_id,),
            ).fetchone()
        return self._load_request(row) if row else None

    def eligible_requests(self, vendor_family: str) -> list[PurchaseRequest]:
        """Approved, unlinked requests whose vendor is in the vendor family."""
        with self._conn() as con:
            rows = con.execute(
                "SELECT data, external_order_id, external_receipt_status "
                "FROM purchase_requests "
                "WHERE status=? AND external_order_id IS NULL ORDER BY rowid",
                (RequestStatus.APPROVED.value,),
            ).fetchall()
        requests = [self._load_request(row) for row in rows]
        return [r for r in requests if is_vendor_family(r, vendor_family)]

    def link_order_to_request(self, request_id: str, order_id: str) -> bool:
        """Attach a vendor order to an approved request.

        Returns False when the request is missing, not approved, already
        linked, or the order is already linked to another request.
        """
        try:
            with self._conn() as con:
                cur = con.execute(
                    """
                    UPDATE purchase_requests
                    SET external_order_id=?, external_receipt_status=?
                    WHERE id=? AND status=? AND external_order_id IS NULL
                    """,
                    (
                        order_id,
                        ExternalReceiptStatus.PENDING.value,
                        request_id,
                        RequestStatus.APPROVED.value,
                    ),
                )
                return cur.rowcount == 1
        except sqlite3.IntegrityError:
            return False

    def release_order_link(self, request_id: str, order_id: str) -> bool:
        """Detach ``order_id`` from a request, only if it is still the linked order."""
        with self._conn() as con:
            cur = con.execute(
                """
                UPDATE purchase_requests
                SET external_order_id=NULL, external_receipt_status=NULL
                WHERE id=? AND external_order_id=?
                """,
                (request_id, order_id),
            )
            return cur.rowcount == 1

    def set_external_receipt_status(
        self, request_id: str, status: ExternalReceiptStatus
    ) -> None:
        with self._conn() as con:
            con.execute(
                "UPDATE purchase_requests SET external_receipt_status=? WHERE id=?",
                (status.value, request_id),
            )

    # Signatures and receipts

    def add_signature(self, signature: ApprovalSignature) -> None:
        with self._conn() as con:
            con.execute(
                "INSERT OR REPLACE INTO approval_signatures "
                "(id, request_id, signed_at, data) VALUES (?, ?, ?, ?)",
                (
                    signature.id,
                    signature.request_id,
                    signature.signed_at.isoformat(),
                    signature.model_dump_json(),
                ),
            )

    def list_signatures(self, request_id: str) -> list[ApprovalSignature]:
        with self._conn() as con:
            rows = con.execute(
                "SELECT data FROM approval_signatures WHERE request_id=? ORDER BY rowid",
                (request_id,),
            ).fetchall()
        signatures = [ApprovalSignature.model_validate_json(row[0]) for row in rows]
        return sorted(signatures, key=lambda s: s.signed_at)

    def add_receipt(self, receipt: Receipt) -> None:
        with self._conn() as con:
            con.execute(
                "INSERT OR REPLACE INTO receipts (id, request_id, uploaded_at, data) "
                "VALUES (?, ?, ?, ?)",
                (
                    receipt.id,
                    receipt.request_id,
                    receipt.uploaded_at.isoformat(),
                    receipt.model_dump_json(),
                ),
            )

    def get_receipt(self, receipt_id: str) -> Receipt | None:
        with self._conn() as con:
            row = con.execute("SELECT data FROM receipts WHERE id=?", (receipt_id,)).fetchone()
        return Receipt.model_validate_json(row[0]) if row else None

    def list_receipts(self, request_id: str) -> list[Receipt]:
        """Receipts for a request, most recently uploaded first."""
        with self._conn() as con:
            rows = con.execute(
                "SELECT data FROM receipts WHERE request_id=?", (request_id,)
            ).fetchall()
        receipts = [Receipt.model_validate_json(row[0]) for row in rows]
        return sorted(receipts, key=lambda r: r.uploaded_at, reverse=True)

    def update_receipt_verification(
        self, receipt_id: str, status: AIVerificationStatus, confidence: int
    ) -> None:
        receipt = self.get_receipt(receipt_id)
        if receipt is None:
            return
        self.add_receipt(
            receipt.model_copy(
                update={"ai_verification_status": status, "ai_confidence_score": confidence}
            )
        )

    # Vendor orders

    def get_external_order(self, order_id: str) -> ExternalOrder | None:
        with self._conn() as con:
            row = con.execute(
                "SELECT data FROM external_orders WHERE order_id=?", (order_id,)
            ).fetchone()
        return ExternalOrder.model_validate_json(row[0]) if row else None

    def save_external_order(self, order: ExternalOrder, keep_matched: bool = False) -> bool:
        """Insert or replace an order record.

        With ``keep_matched`` a record already marked matched is left as is
        and False is returned.
        """
        guard = "WHERE external_orders.sync_status != ?" if keep_matched else ""
        params = [
            order.order_id,
            order.sync_status.value,
            order.matched_request_id,
            order.model_dump_json(),
        ]
        if keep_matched:
            params.append(SyncStatus.MATCHED.value)
        with self._conn() as con:
            cur = con.execute(
                f"""
                INSERT INTO external_orders (order_id, sync_status, matched_request_id, data)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(order_id) DO UPDATE SET
                  sync_status=excluded.sync_status,
                  matched_request_id=excluded.matched_request_id,
                  data=excluded.data
                {guard}
                """,
                params,
            )
            return cur.rowcount == 1

    def count_orders(self, sync_status: SyncStatus | None = None) -> int:
        with self._conn() as con:
            if sync_status is None:
                row = con.execute("SELECT COUNT(*) FROM external_orders").fetchone()
            else:
                row = con.execute(
                    "SELECT COUNT(*) FROM external_orders WHERE sync_status=?",
                    (sync_status.value,),
                ).fetchone()
        return row[0]

    # Analyses

    def get_analysis(self, receipt_id: str) -> ReceiptAnalysis | None:
        with self._conn() as con:
            row = con.execute(
                "SELECT data FROM receipt_analyses WHERE receipt_id=?", (receipt_id,)
            ).fetchone()
        return ReceiptAnalysis.model_validate_json(row[0]) if row else None

    def save_analysis(self, analysis: ReceiptAnalysis) -> None:
        if analysis.receipt_id is None:
            raise ValueError("analysis must reference a receipt to be saved")
        with self._conn() as con:
            con.execute(
                "INSERT OR REPLACE INTO receipt_analyses (receipt_id, request_id, data) "
                "VALUES (?, ?, ?)",
                (analysis.receipt_id, analysis.request_id, analysis.model_dump_json()),
            )

    # Sync bookkeeping

    def get_sync_record(self, vendor_type: str) -> VendorSyncRecord | None:
        with self._conn() as con:
            row = con.execute(
                "SELECT data FROM vendor_sync WHERE vendor_type=?", (vendor_type,)
            ).fetchone()
        return VendorSyncRecord.model_validate_json(row[0]) if row else None

    def save_sync_record(self, record: VendorSyncRecord) -> None:
        with self._conn() as con:
            con.execute(
                "INSERT OR REPLACE INTO vendor_sync (vendor_type, data) VALUES (?, ?)",
                (record.vendor_type, record.model_dump_json()),
            )
