import asyncio
import logging
from pathlib import Path

import typer

from pcardflow.config import Settings
from pcardflow.core.journey import build_journey
from pcardflow.integrations.godaddy import GoDaddyClient
from pcardflow.integrations.vision_extractor import VisionExtractor
from pcardflow.models import StepStatus
from pcardflow.services.receipts import import_order_receipt
from pcardflow.services.reconciliation import check_status, sync_orders
from pcardflow.services.verification import (
    build_receipt_image,
    image_from_path,
    verify_receipt,
)
from pcardflow.store import SqliteStore

app = typer.Typer(no_args_is_help=True)

STEP_MARKERS = {
    StepStatus.COMPLETED: "[x]",
    StepStatus.CURRENT: "[>]",
    StepStatus.FAILED: "[!]",
    StepStatus.PENDING: "[ ]",
}


@app.callback(invoke_without_command=True)
def callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """pcardflow: purchase pre-approval reconciliation."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


def cli_progress(event_type: str, message: str):
    """Callback to handle progress events and output to CLI."""
    if "error" in event_type:
        typer.echo(message, err=True)
    else:
        typer.echo(message)


def _open_store(db: str | None, settings: Settings) -> SqliteStore:
    return SqliteStore(db or settings.db_path)


def _godaddy_client(settings: Settings) -> GoDaddyClient:
    return GoDaddyClient(
        api_key=settings.godaddy_api_key,
        api_secret=settings.godaddy_api_secret,
        shopper_id=settings.godaddy_shopper_id,
        base_url=settings.godaddy_api_url,
        timeout=settings.http_timeout,
    )


@app.command()
def status(
    db: str | None = typer.Option(None, "--db", help="Path to the SQLite database"),
):
    """Show whether the vendor integration is configured and its order counts."""
    settings = Settings.from_env()
    store = _open_store(db, settings)
    summary = check_status(_godaddy_client(settings), store)

    typer.echo(f"GoDaddy configured: {'yes' if summary.configured else 'no'}")
    typer.echo(f"Vision configured: {'yes' if settings.vision_configured else 'no'}")
    typer.echo(f"Orders: {summary.total_orders} ({summary.unmatched_orders} unmatched)")
    if summary.sync_status:
        record = summary.sync_status
        typer.echo(f"Last sync: {record.status.value} at {record.last_sync_at or 'never'}")
        if record.error_message:
            typer.echo(f"Last error: {record.error_message}", err=True)


@app.command()
def sync(
    force: bool = typer.Option(False, "--force", help="Rescore orders already on record"),
    import_receipts: bool = typer.Option(
        False, "--import-receipts", help="Import the vendor receipt of each linked order"
    ),
    db: str | None = typer.Option(None, "--db", help="Path to the SQLite database"),
):
    """Pull recent vendor orders and match them to approved requests."""
    settings = Settings.from_env()
    store = _open_store(db, settings)
    client = _godaddy_client(settings)

    def fetch_receipt(order_id: str, request_id: str):
        result = import_order_receipt(client, store, order_id, request_id)
        if result.success:
            typer.echo(f"Imported receipt {result.receipt_id} for request {request_id}")
        else:
            typer.echo(f"Receipt import failed for order {order_id}: {result.error}", err=True)

    report = sync_orders(
        client,
        store,
        force_sync=force,
        on_progress=cli_progress,
        on_link=fetch_receipt if import_receipts else None,
    )

    if not report.success:
        typer.echo(f"Error: {report.error}", err=True)
        if report.details:
            typer.echo(report.details, err=True)
        raise typer.Exit(code=1)

    typer.echo(
        f"Fetched {report.orders_fetched} orders: "
        f"{report.orders_synced} synced, {report.orders_matched} matched"
    )


@app.command("import-receipt")
def import_receipt(
    order_id: str = typer.Argument(..., help="Vendor order number"),
    request_id: str | None = typer.Option(
        None, "--request", "-r", help="Request to attach to if the order is unmatched"
    ),
    db: str | None = typer.Option(None, "--db", help="Path to the SQLite database"),
):
    """Fetch a vendor order's receipt and attach it to its purchase request."""
    settings = Settings.from_env()
    store = _open_store(db, settings)

    result = import_order_receipt(_godaddy_client(settings), store, order_id, request_id)
    if not result.success:
        typer.echo(f"Error: {result.error}", err=True)
        if result.details:
            typer.echo(result.details, err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Imported receipt {result.receipt_id} for request {result.request_id}")


@app.command()
def verify(
    receipt_id: str = typer.Argument(..., help="Receipt to verify"),
    image: Path | None = typer.Option(
        None, "--image", "-i", help="Receipt image file to analyze"
    ),
    force: bool = typer.Option(False, "--force", help="Re-run a stored analysis"),
    db: str | None = typer.Option(None, "--db", help="Path to the SQLite database"),
):
    """Check a stored receipt against its purchase request."""
    settings = Settings.from_env()
    store = _open_store(db, settings)

    receipt = store.get_receipt(receipt_id)
    if receipt is None:
        typer.echo(f"Error: receipt {receipt_id} not found", err=True)
        raise typer.Exit(code=1)
    request = store.get_request(receipt.request_id)
    if request is None:
        typer.echo(f"Error: request {receipt.request_id} not found", err=True)
        raise typer.Exit(code=1)

    extractor = None
    if settings.anthropic_api_key:
        extractor = VisionExtractor(api_key=settings.anthropic_api_key, model=settings.model)
    else:
        typer.echo("Warning: ANTHROPIC_API_KEY not found. Skipping AI analysis.", err=True)

    receipt_image = None
    if image is not None:
        if not image.is_file():
            typer.echo(f"Error: image file not found: {image}", err=True)
            raise typer.Exit(code=1)
        receipt_image = image_from_path(image, receipt.file_type)
    elif receipt.file_url:
        receipt_image = build_receipt_image(receipt.file_url, receipt.file_type)

    outcome = asyncio.run(
        verify_receipt(receipt, request, extractor, store, image=receipt_image, force=force)
    )
    analysis = outcome.analysis

    source = "cached" if outcome.cached else "fallback" if outcome.fallback else "analyzed"
    typer.echo(
        f"Receipt {receipt_id}: {analysis.recommendation.value} "
        f"({analysis.confidence_score}% confidence, {source})"
    )
    typer.echo(f"  Vendor: {'match' if analysis.vendor_match else 'no match'}")
    typer.echo(f"  Amount: {'match' if analysis.amount_match else 'no match'}")
    typer.echo(f"  Date:   {'match' if analysis.date_match else 'no match'}")
    for concern in analysis.concerns:
        typer.echo(f"  - {concern}")


@app.command()
def journey(
    request_id: str = typer.Argument(..., help="Purchase request to show"),
    db: str | None = typer.Option(None, "--db", help="Path to the SQLite database"),
):
    """Print the lifecycle steps of a purchase request."""
    settings = Settings.from_env()
    store = _open_store(db, settings)

    request = store.get_request(request_id)
    if request is None:
        typer.echo(f"Error: request {request_id} not found", err=True)
        raise typer.Exit(code=1)

    steps = build_journey(
        request,
        store.list_signatures(request_id),
        store.list_receipts(request_id),
        request.external_order_id,
    )
    for step in steps:
        when = f"  {step.timestamp:%b %d %H:%M}" if step.timestamp else ""
        typer.echo(f"{STEP_MARKERS[step.status]} {step.label}{when}")
        for detail in step.details or []:
            typer.echo(f"      {detail.label}: {detail.value or detail.image_url}")


def main():
    app()


if __name__ == "__main__":
    main()
