"""expense-ledger command-line interface.

Usage:
    expense-ledger init-db
    expense-ledger seed --reset
    expense-ledger add-bill --amount -35.5 --payment-method 花呗 --category 食 --owner 男主
    expense-ledger stats --start 2026-01-01 --end 2026-01-31
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from uuid import UUID

import structlog
import typer
from prometheus_client import REGISTRY, write_to_textfile
from rich.console import Console
from rich.table import Table

from expense_ledger.application import (
    CatalogService,
    CsvTransferService,
    DateRange,
    LedgerService,
    StatisticsService,
    unit_of_work_factory,
)
from expense_ledger.application.bootstrap import reset_and_seed, seed_defaults
from expense_ledger.application.csv_transfer import read_csv_file
from expense_ledger.application.locks import KeyedLocks
from expense_ledger.config import settings
from expense_ledger.domain import (
    CreditMethod,
    DomainError,
    PaymentMethod,
    SavingsMethod,
    TransactionType,
)
from expense_ledger.infrastructure.database import Database
from expense_ledger.logging import configure_logging


logger = structlog.get_logger()

app = typer.Typer(
    name="expense-ledger",
    help="Personal expense ledger: bills, payment method balances and statistics.",
    no_args_is_help=True,
)
console = Console()


@dataclass
class Services:
    database: Database
    ledger: LedgerService
    catalog: CatalogService
    statistics: StatisticsService
    csv: CsvTransferService


@asynccontextmanager
async def open_services() -> AsyncIterator[Services]:
    database = Database(settings.database_url, busy_timeout=settings.database_busy_timeout_seconds)
    uow_factory = unit_of_work_factory(database)
    locks = KeyedLocks()
    ledger = LedgerService(uow_factory, locks)
    try:
        yield Services(
            database=database,
            ledger=ledger,
            catalog=CatalogService(uow_factory, locks),
            statistics=StatisticsService(uow_factory),
            csv=CsvTransferService(
                uow_factory,
                ledger,
                default_savings_balance=settings.import_default_savings_balance,
                amount_tolerance=settings.import_amount_tolerance,
                time_tolerance_seconds=settings.import_time_tolerance_seconds,
            ),
        )
    finally:
        await database.close()


def _execute(command: Callable[[Services], Awaitable[None]]) -> None:
    async def run() -> None:
        async with open_services() as services:
            await command(services)

    try:
        asyncio.run(run())
    except DomainError as e:
        logger.warning("command_failed", error=str(e), error_type=type(e).__name__)
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e
    finally:
        if settings.metrics_textfile:
            write_to_textfile(settings.metrics_textfile, REGISTRY)


def _parse_amount(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise typer.BadParameter(f"not a decimal amount: {value}") from e


def _parse_day(value: str | None, end_of_day: bool = False) -> datetime | None:
    if value is None:
        return None
    try:
        day = datetime.strptime(value, "%Y-%m-%d")
    except ValueError as e:
        raise typer.BadParameter(f"expected YYYY-MM-DD, got {value}") from e
    if end_of_day:
        day = day.replace(hour=23, minute=59, second=59, microsecond=999999)
    return day.replace(tzinfo=UTC)


def _running_total(method: PaymentMethod) -> str:
    match method:
        case CreditMethod():
            return f"owed {method.outstanding_balance} / {method.credit_limit}"
        case SavingsMethod():
            return f"balance {method.balance}"


@app.callback()
def main() -> None:
    configure_logging(
        level=settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
    )


@app.command("init-db")
def init_db() -> None:
    """Create the tables if they do not exist."""

    async def command(services: Services) -> None:
        await services.database.create_schema()
        console.print("[green]Database ready[/green]")

    _execute(command)


@app.command()
def seed(
    reset: bool = typer.Option(False, "--reset", help="Delete all data, bills included, before seeding"),
) -> None:
    """Add the default categories, owners and payment methods."""

    async def command(services: Services) -> None:
        await services.database.create_schema()
        if reset:
            await reset_and_seed(unit_of_work_factory(services.database))
        else:
            async with unit_of_work_factory(services.database)() as uow:
                await seed_defaults(uow)
                await uow.commit()
        console.print("[green]Default catalog created[/green]")

    _execute(command)


@app.command("add-bill")
def add_bill(
    amount: str = typer.Option(..., "--amount", "-a", help="Signed amount, negative for spending"),
    payment_method: str = typer.Option(..., "--payment-method", "-p", help="Payment method name"),
    category: list[str] = typer.Option(..., "--category", "-c", help="Category name, repeatable"),
    owner: str = typer.Option(..., "--owner", "-o", help="Owner name"),
    note: str | None = typer.Option(None, "--note", "-n"),
    excluded: bool = typer.Option(False, "--excluded", help="Move the balance even on an excluded method"),
) -> None:
    """Record a bill and update its payment method balance."""
    value = _parse_amount(amount)

    async def command(services: Services) -> None:
        owners = {o.name: o for o in await services.catalog.list_owners()}
        categories = {c.name: c for c in await services.catalog.list_categories()}
        methods = {m.name: m for m in await services.catalog.list_payment_methods()}

        if owner not in owners:
            raise typer.BadParameter(f"unknown owner {owner}")
        if payment_method not in methods:
            raise typer.BadParameter(f"unknown payment method {payment_method}")
        missing = [name for name in category if name not in categories]
        if missing:
            raise typer.BadParameter(f"unknown categories {', '.join(missing)}")

        create = services.ledger.create_excluded_bill if excluded else services.ledger.create_bill
        bill = await create(
            value,
            methods[payment_method].id,
            [categories[name].id for name in category],
            owners[owner].id,
            note=note,
        )
        method = await services.catalog.get_payment_method(bill.payment_method_id)
        console.print(f"[green]Bill {bill.id} recorded[/green]")
        if method is not None:
            console.print(f"{method.name}: {_running_total(method)}")

    _execute(command)


@app.command("delete-bill")
def delete_bill(bill_id: str = typer.Argument(..., help="Bill id")) -> None:
    """Delete a bill and reverse its balance effect."""
    try:
        identifier = UUID(bill_id)
    except ValueError as e:
        raise typer.BadParameter(f"not a bill id: {bill_id}") from e

    async def command(services: Services) -> None:
        bill = await services.ledger.get_bill(identifier)
        if bill is None:
            console.print(f"[yellow]No bill {bill_id}[/yellow]")
            raise typer.Exit(code=1)
        await services.ledger.delete_bill(bill)
        console.print(f"[green]Bill {bill_id} deleted[/green]")

    _execute(command)


@app.command("list-bills")
def list_bills(
    limit: int = typer.Option(20, "--limit", "-l", help="Newest bills to show"),
) -> None:
    """Show the newest bills."""

    async def command(services: Services) -> None:
        bills = (await services.ledger.list_bills())[:limit]
        categories = {c.id: c.name for c in await services.catalog.list_categories()}
        owners = {o.id: o.name for o in await services.catalog.list_owners()}
        methods = {m.id: m.name for m in await services.catalog.list_payment_methods()}

        table = Table(title="Bills")
        table.add_column("Date")
        table.add_column("Amount", justify="right")
        table.add_column("Categories")
        table.add_column("Owner")
        table.add_column("Payment method")
        table.add_column("Note")
        table.add_column("Id", style="dim")
        for bill in bills:
            table.add_row(
                bill.created_at.strftime("%Y-%m-%d %H:%M"),
                str(bill.amount),
                ", ".join(categories.get(cid, "?") for cid in bill.category_ids),
                owners.get(bill.owner_id, "?"),
                methods.get(bill.payment_method_id, "?"),
                bill.note or "",
                str(bill.id),
            )
        console.print(table)

    _execute(command)


@app.command()
def stats(
    start: str | None = typer.Option(None, "--start", help="First day, YYYY-MM-DD"),
    end: str | None = typer.Option(None, "--end", help="Last day, YYYY-MM-DD"),
) -> None:
    """Show income and expense totals with per-category, owner and payment method breakdowns."""
    date_range = DateRange(_parse_day(start), _parse_day(end, end_of_day=True))

    async def command(services: Services) -> None:
        result, _ = await services.statistics.calculate(date_range)

        console.print(f"Income:  [green]{result.total_income}[/green]")
        console.print(f"Expense: [red]{result.total_expense}[/red]")

        for title, grouping in (
            ("By category", result.by_category),
            ("By owner", result.by_owner),
            ("By payment method", result.by_payment_method),
        ):
            table = Table(title=title)
            table.add_column("Name")
            for kind in TransactionType:
                table.add_column(kind.value, justify="right")
            for name, buckets in sorted(grouping.items()):
                table.add_row(name, *(str(buckets.get(kind, Decimal("0"))) for kind in TransactionType))
            console.print(table)

    _execute(command)


@app.command("export-csv")
def export_csv(
    output: Path = typer.Option(Path("bills_export.csv"), "--output", "-o", help="Output file"),
) -> None:
    """Export every bill to CSV."""

    async def command(services: Services) -> None:
        content = await services.csv.export_csv()
        output.write_text(content, encoding="utf-8")
        console.print(f"[green]Exported to {output}[/green]")

    _execute(command)


@app.command("import-csv")
def import_csv(path: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV file")) -> None:
    """Import bills from CSV, creating unknown categories, owners and payment methods."""

    async def command(services: Services) -> None:
        result = await services.csv.import_csv(read_csv_file(path))

        table = Table(title="Import result")
        table.add_column("Rows", justify="right")
        table.add_column("Imported", justify="right")
        table.add_column("Duplicates", justify="right")
        table.add_column("Errors", justify="right")
        table.add_column("New categories", justify="right")
        table.add_column("New owners", justify="right")
        table.add_column("New payment methods", justify="right")
        table.add_row(
            str(result.total_rows),
            str(result.imported),
            str(result.duplicates),
            str(result.errors),
            str(result.created_categories),
            str(result.created_owners),
            str(result.created_payment_methods),
        )
        console.print(table)

    _execute(command)


if __name__ == "__main__":
    app()
