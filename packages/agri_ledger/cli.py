"""CLI for the ``agri_ledger`` package.

Thin Typer front end over the fetch/cache/statement layers. Environment
variables (``AGRI_LEDGER_API_URL``, ``AGRI_LEDGER_API_TOKEN``, ...) are loaded
from a local ``.env`` with ``python-dotenv`` before any command runs. Every
command opens one :class:`~agri_ledger.transport.HttpxTransport` for its
duration and drives the async layers with ``asyncio.run``.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .cache import CategoryCache
from .ctv import Category
from .errors import LedgerError
from .fetching import CategoryFetcher, RecordFetcher, fetch_all_pages
from .logging_setup import configure_logging
from .models import Payroll, TransactionFilters
from .money import format_naira
from .normalizers import to_canonical
from .statements import (
    ORGANIZATION_WALLET_LABELS,
    Statement,
    assemble_farmer_statement,
    assemble_transaction_statement,
    resolve_sections,
)
from .transport import HttpxTransport

console = Console()

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Browse normalized ledger transactions and export farmer and wallet "
        "statements. Loads AGRI_LEDGER_* settings from a local .env."
    ),
)


def _make_transport() -> HttpxTransport:
    return HttpxTransport.from_env()


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]Error:[/red] {message}")
    return typer.Exit(1)


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except (LedgerError, RuntimeError) as e:
        raise _fail(str(e)) from e


def _build_filters(**kwargs: Any) -> TransactionFilters:
    try:
        return TransactionFilters(**kwargs)
    except ValidationError as e:
        raise _fail(f"invalid filters: {e.errors()[0]['msg']}") from e


def _print_statement(statement: Statement) -> None:
    console.print(f"[bold]{statement.title}[/bold]")
    for k, v in statement.header.items():
        console.print(f"[cyan]{k}:[/cyan] {v}")
    for block in statement.sections:
        table = Table(title=block.title, show_lines=False)
        for col in block.columns:
            table.add_column(col)
        for row in block.rows:
            table.add_row(*(row.get(col, "") for col in block.columns))
        console.print(table)
        if not block.rows and block.empty_message:
            console.print(f"[yellow]{block.empty_message}[/yellow]")


def _emit_statement(statement: Statement, out: Path | None) -> None:
    if out is None:
        _print_statement(statement)
        return
    out.write_text(json.dumps(statement.to_dict(), indent=2), encoding="utf-8")
    console.print(f"[green]Statement written:[/green] {out}")


@app.callback()
def main(
    log_level: str | None = typer.Option(
        None, "--log-level", help="Log level (falls back to AGRI_LEDGER_LOG_LEVEL, then INFO)."
    ),
) -> None:
    """Root command: load ``.env`` and configure logging once."""

    # override=False keeps already-exported variables authoritative
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(log_level)


@app.command("transactions")
def transactions_cmd(
    category: Category = typer.Option(Category.ALL, help="Transaction category tab."),
    page: int = typer.Option(1, min=1, help="Page number (1-based)."),
    page_size: int | None = typer.Option(
        None, min=1, help="Rows per page (falls back to AGRI_LEDGER_PAGE_SIZE)."
    ),
    search: str | None = typer.Option(None, help="Free-text search."),
    status: str | None = typer.Option(None, help="Status filter, e.g. completed."),
    start_date: str | None = typer.Option(None, help="Start date (YYYY-MM-DD)."),
    end_date: str | None = typer.Option(None, help="End date (YYYY-MM-DD)."),
    wallet_type: str | None = typer.Option(None, help="Wallet type filter."),
    sort_by: str = typer.Option("createdAt", help="Backend sort field."),
    sort_order: str = typer.Option("desc", help="asc or desc."),
    as_json: bool = typer.Option(False, "--json", help="Print rows as JSON."),
) -> None:
    """Show one page of one category, normalized."""

    filters = _build_filters(
        search=search,
        status=status,
        date_start=start_date,
        date_end=end_date,
        wallet_type=wallet_type,
        sort_by=sort_by,
        sort_order=sort_order,
    )

    async def _load() -> Any:
        async with _make_transport() as transport:
            cache = CategoryCache(
                CategoryFetcher(transport),
                category=category,
                filters=filters,
                page_size=page_size,
            )
            return await cache.set_page(page)

    view = _run(_load())
    if view.error is not None:
        raise _fail(str(view.error))

    rows = [to_canonical(r) for r in view.rows]
    if as_json:
        payload = {
            "category": view.category.value,
            "page": view.page,
            "total": view.total,
            "total_pages": view.total_pages,
            "skipped_count": view.skipped_count,
            "rows": [r.to_dict() for r in rows],
        }
        typer.echo(json.dumps(payload, indent=2))
        return

    if view.is_empty:
        console.print("[yellow]No transactions match these filters.[/yellow]")
        return
    table = Table(title=f"{view.category.value} · page {view.page}/{view.total_pages}")
    for col in ("Date", "Reference", "Counterparty", "Type", "Status", "Amount"):
        table.add_column(col)
    for r in rows:
        table.add_row(
            r.created_at.strftime("%Y-%m-%d %H:%M") if r.created_at else "N/A",
            r.reference or "N/A",
            r.counterparty_name,
            r.transaction_type.replace("_", " "),
            r.status.value,
            format_naira(r.amount_major),
        )
    console.print(table)
    console.print(f"{view.total} total, {view.skipped_count} skipped")


@app.command("payrolls")
def payrolls_cmd(
    page: int = typer.Option(1, min=1),
    page_size: int | None = typer.Option(None, min=1),
    status: str | None = typer.Option(None, help="Payroll status filter."),
    as_json: bool = typer.Option(False, "--json"),
) -> None:
    """List payroll periods."""

    async def _load() -> Any:
        async with _make_transport() as transport:
            return await RecordFetcher(transport).list_payrolls(
                page=page, page_size=page_size, status=status
            )

    result = _run(_load())
    payrolls: tuple[Payroll, ...] = result.rows
    if as_json:
        payload = [
            {
                "id": p.id,
                "period_label": p.period_label,
                "status": p.status.value,
                "total_staff_count": p.total_staff_count,
                "total_net_amount": f"{p.total_net_amount:.2f}",
                "total_pension_amount": f"{p.total_pension_amount:.2f}",
            }
            for p in payrolls
        ]
        typer.echo(json.dumps(payload, indent=2))
        return

    table = Table(title=f"Payrolls · page {result.page}/{result.total_pages}")
    for col in ("Period", "Status", "Staff", "Gross", "Net", "Pension", "Tax"):
        table.add_column(col)
    for p in payrolls:
        table.add_row(
            p.period_label,
            p.status.value,
            str(p.total_staff_count),
            format_naira(p.total_gross_amount),
            format_naira(p.total_net_amount),
            format_naira(p.total_pension_amount),
            format_naira(p.total_tax_amount),
        )
    console.print(table)


@app.command("farmer-statement")
def farmer_statement_cmd(
    farmer_id: str = typer.Argument(..., help="Farmer id."),
    section: list[str] = typer.Option(
        [],
        "--section",
        "-s",
        help="Section to include (repeatable): personal, wallet, loans, transactions, "
        "purchases, sessions, activity.",
    ),
    out: Path | None = typer.Option(None, help="Write the statement as JSON to this path."),
) -> None:
    """Assemble a farmer statement from the farmer profile and financial status."""

    # Reject an empty or unknown selection before touching the network.
    try:
        selected = resolve_sections(section)
    except (ValueError, LedgerError) as e:
        raise _fail(str(e)) from e

    async def _load() -> Statement:
        async with _make_transport() as transport:
            records = RecordFetcher(transport)
            farmer, details = await asyncio.gather(
                records.get_farmer(farmer_id),
                records.get_financial_details(farmer_id),
            )
        return assemble_farmer_statement(farmer, details, selected)

    _emit_statement(_run(_load()), out)


@app.command("wallet-statement")
def wallet_statement_cmd(
    wallet_type: list[str] = typer.Option(
        [],
        "--wallet-type",
        "-w",
        help="Organization wallet (repeatable): payroll, bonus, withdrawer, purchase. "
        "Defaults to all.",
    ),
    limit: int = typer.Option(500, min=1, help="Max records per wallet section."),
    status: str | None = typer.Option(None),
    search: str | None = typer.Option(None),
    start_date: str | None = typer.Option(None),
    end_date: str | None = typer.Option(None),
    out: Path | None = typer.Option(None, help="Write the statement as JSON to this path."),
) -> None:
    """Organization wallet statement across every page of each wallet."""

    scopes = wallet_type or list(ORGANIZATION_WALLET_LABELS)
    unknown = [w for w in scopes if w not in ORGANIZATION_WALLET_LABELS]
    if unknown:
        raise _fail(f"unknown wallet type(s): {', '.join(unknown)}")
    base = _build_filters(
        status=status, search=search, date_start=start_date, date_end=end_date
    )

    async def _load() -> Statement:
        async with _make_transport() as transport:
            fetcher = CategoryFetcher(transport)
            pages = await asyncio.gather(
                *(
                    fetch_all_pages(
                        fetcher,
                        Category.ORGANIZATION,
                        base.model_copy(update={"wallet_type": w}),
                        limit=limit,
                    )
                    for w in scopes
                )
            )
        sections = {
            ORGANIZATION_WALLET_LABELS[w]: [to_canonical(r) for r in p.rows]
            for w, p in zip(scopes, pages, strict=True)
        }
        title = (
            "Wallet Statement - " + ORGANIZATION_WALLET_LABELS[scopes[0]]
            if len(scopes) == 1
            else "Wallet Statements - All Wallets"
        )
        return assemble_transaction_statement(title, sections, base, limit=limit)

    _emit_statement(_run(_load()), out)


if __name__ == "__main__":  # pragma: no cover
    app()
