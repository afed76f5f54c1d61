"""CLI for the ``statement_pipeline`` package.

A Typer app. Environment variables (``DATABASE_URL``, ``OPENAI_API_KEY``)
are loaded from a local ``.env`` with ``python-dotenv`` before any command
runs. Business logic lives in ``statement_pipeline.api`` and the workflows;
commands only translate outcomes into terminal output and exit codes.
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable
from datetime import date
from pathlib import Path
from typing import Annotated, TypeVar

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from typer.models import OptionInfo

from db.client import create_schema, dispose_engine

from .amounts import format_minor_units
from .categories import BillingCycle
from .errors import EnrichmentError, StatementParseError, SubscriptionCommitError
from .logging_setup import configure_logging
from .models import DetectionOutcome, ImportOutcome, ProgressStatus

_console = Console()

_PROGRESS_TEXT: dict[ProgressStatus, str] = {
    ProgressStatus.ENRICHING: "Enriching new transactions…",
    ProgressStatus.FETCHING: "Loading transactions…",
    ProgressStatus.ANALYZING: "Analyzing payment patterns…",
    ProgressStatus.DONE: "Done.",
}


def _progress(status: ProgressStatus) -> None:
    typer.echo(_PROGRESS_TEXT.get(status, str(status)))


def _fail(message: str) -> typer.Exit:
    print(f"Error: {message}", file=sys.stderr)
    return typer.Exit(1)


T = TypeVar("T")


def _run(main: Callable[[], Awaitable[T]]) -> T:
    """Run one command coroutine and dispose the engine on the same loop."""

    async def _wrapped() -> T:
        try:
            return await main()
        finally:
            await dispose_engine()

    return asyncio.run(_wrapped())


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import bank XML statements, enrich them with OpenAI (Responses API) and "
        "link recurring payments to subscriptions. Loads .env before running."
    ),
)

DATABASE_URL_OPTION: OptionInfo = typer.Option(
    "--database-url", help="Override DATABASE_URL (falls back to env var)."
)


@app.command("init-db")
def init_db_cmd(database_url: Annotated[str | None, DATABASE_URL_OPTION] = None) -> None:
    """Create the subscriptions and transactions tables when missing."""

    try:
        _run(lambda: create_schema(database_url=database_url))
    except RuntimeError as e:
        raise _fail(str(e)) from e
    typer.echo("Database schema is ready.")


@app.command("import-statement")
def import_statement_cmd(
    file: Annotated[
        Path | None,
        typer.Option("--file", help="Path to the bank XML statement export.", dir_okay=False),
    ] = None,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Import a statement file, skip known transactions and enrich the new ones."""

    from .enrichment import EnrichmentClient
    from .persistence import TransactionStore
    from .workflows.import_flow import import_statement_file

    store = TransactionStore(database_url=database_url)
    try:
        result = _run(
            lambda: import_statement_file(
                file, store=store, enrichment_client=EnrichmentClient(), on_progress=_progress
            )
        )
    except FileNotFoundError as e:
        raise _fail(f"File not found: {file}") from e
    except StatementParseError as e:
        raise _fail(f"Failed to parse statement ({e.reason}): {e}") from e

    if result.outcome is ImportOutcome.NO_FILE_SELECTED:
        typer.echo("No file selected.")
    elif result.outcome is ImportOutcome.NO_TRANSACTIONS_FOUND:
        typer.echo("No transactions found in the file.")
    elif result.outcome is ImportOutcome.NO_NEW_TRANSACTIONS:
        typer.echo(f"All {result.parsed_count} transactions were already imported.")
    else:
        typer.echo(
            f"Imported {result.inserted_count} new of {result.parsed_count} transactions "
            f"({result.enriched_count} enriched)."
        )
        if result.enrichment_error is not None:
            typer.echo(
                f"Warning: enrichment skipped: {result.enrichment_error}", err=True
            )
    if result.skipped:
        typer.echo(f"Skipped {len(result.skipped)} entries.")


@app.command("detect-subscriptions")
def detect_subscriptions_cmd(
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Accept every detected candidate.")
    ] = False,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Detect recurring payments among unlinked transactions and review them."""

    from .enrichment import EnrichmentClient
    from .persistence import TransactionStore
    from .review import CandidateReview, ReviewState
    from .term_ui import prompt_candidate_selection
    from .workflows.detect_flow import detect_subscriptions

    store = TransactionStore(database_url=database_url)
    try:
        result = _run(
            lambda: detect_subscriptions(
                store=store, enrichment_client=EnrichmentClient(), on_progress=_progress
            )
        )
    except EnrichmentError as e:
        raise _fail(f"Subscription detection failed: {e}") from e

    if result.outcome is DetectionOutcome.NOTHING_TO_ANALYZE:
        typer.echo("No unlinked transactions to analyze.")
        return
    if result.outcome is DetectionOutcome.NO_SUBSCRIPTIONS_FOUND:
        typer.echo(f"No subscriptions found in {result.analyzed_count} transactions.")
        return

    # The interactive review runs outside the event loop; prompt_toolkit owns its own.
    review = CandidateReview(result.candidates)
    if yes:
        review.confirm()
    elif prompt_candidate_selection(review) is ReviewState.CANCELLED:
        typer.echo("Review cancelled; nothing was saved.")
        return

    try:
        created = _run(lambda: review.commit(store))
    except SubscriptionCommitError as e:
        raise _fail(str(e)) from e
    typer.echo(f"Added {len(created)} subscription(s).")


@app.command("add-subscription")
def add_subscription_cmd(
    name: Annotated[str, typer.Option("--name", help="Subscription name.")],
    billing_cycle: Annotated[
        BillingCycle, typer.Option("--billing-cycle", help="weekly, monthly or yearly.")
    ] = BillingCycle.MONTHLY,
    price: Annotated[
        str | None, typer.Option("--price", help="Price such as 9.90 or 9,90 (prompted if omitted).")
    ] = None,
    subscribed_at: Annotated[
        str | None, typer.Option("--subscribed-at", help="First payment date (YYYY-MM-DD).")
    ] = None,
    domain: Annotated[str | None, typer.Option("--domain", help="Service domain.")] = None,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Add a subscription by hand."""

    from .api import add_subscription
    from .persistence import TransactionStore
    from .term_ui import prompt_price_cents

    try:
        start = date.fromisoformat(subscribed_at) if subscribed_at else date.today()
    except ValueError as e:
        raise _fail(f"Invalid --subscribed-at date: {subscribed_at}") from e

    price_value: int | str | None = price
    if price_value is None:
        price_value = prompt_price_cents()
        if price_value is None:
            typer.echo("Cancelled.")
            raise typer.Exit(0)

    store = TransactionStore(database_url=database_url)
    try:
        sub_id = _run(
            lambda: add_subscription(
                store,
                name=name,
                price=price_value,
                billing_cycle=billing_cycle,
                subscribed_at=start,
                domain=domain,
            )
        )
    except ValueError as e:
        raise _fail(str(e)) from e
    typer.echo(f"Added subscription {sub_id}.")


@app.command("delete-subscription")
def delete_subscription_cmd(
    subscription_id: Annotated[int, typer.Argument(help="Id of the subscription to delete.")],
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Delete a subscription and unlink its transactions."""

    from .api import delete_subscription
    from .persistence import TransactionStore

    store = TransactionStore(database_url=database_url)
    if not _run(lambda: delete_subscription(store, subscription_id)):
        raise _fail(f"No subscription with id {subscription_id}")
    typer.echo(f"Deleted subscription {subscription_id}.")


@app.command("list-subscriptions")
def list_subscriptions_cmd(
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Show all subscriptions as a table."""

    from .persistence import TransactionStore

    subs = _run(TransactionStore(database_url=database_url).list_subscriptions)
    if not subs:
        typer.echo("No subscriptions yet.")
        return

    table = Table(title="Subscriptions")
    table.add_column("Id", justify="right")
    table.add_column("Name")
    table.add_column("Price", justify="right")
    table.add_column("Cycle")
    table.add_column("Since")
    table.add_column("Domain")
    for s in subs:
        table.add_row(
            str(s.id),
            s.name,
            format_minor_units(s.price),
            s.billing_cycle,
            s.subscribed_at.isoformat(),
            s.domain or "",
        )
    _console.print(table)


@app.callback()
def _root() -> None:
    """Load ``.env`` (without overriding the environment) and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    app()
