"""
CLI interface for Bill Guard.

Provides command-line access to cycles, bills, payments and the keeper.
Amounts are entered and shown in units; dates are UTC.
"""

import os
import sys
import time
from datetime import datetime, timezone
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from bill_guard.config.loader import (
    CONFIG_ENV_VAR,
    AppConfig,
    KeeperConfig,
    default_config,
    load_config,
)
from bill_guard.core.clock import Clock, DeterministicClock
from bill_guard.core.errors import BillGuardError
from bill_guard.core.money import format_amount, to_subunits
from bill_guard.core.recurrence import first_occurrence, to_datetime
from bill_guard.core.bills import MIN_LEAD_TIME_SECONDS
from bill_guard.engine import BillingEngine, build_engine
from bill_guard.keeper.runner import KeeperRunner, KeeperService
from bill_guard.logging_config import configure_logging
from bill_guard.storage.funds import LedgerFunds
from bill_guard.storage.models import BillCategory, BillDraft, EventKind
from bill_guard.storage.repository import initialize_schema

app = typer.Typer()
cycle_app = typer.Typer(help="Create, close and inspect cycles.")
bill_app = typer.Typer(help="Add, cancel, skip, pay and list bills.")
keeper_app = typer.Typer(help="Run the due-bill keeper.")
app.add_typer(cycle_app, name="cycle")
app.add_typer(bill_app, name="bill")
app.add_typer(keeper_app, name="keeper")

console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DEFAULT_ADMIN = "admin"
# Dates given on the command line are due at noon UTC
DUE_TIME_OF_DAY = 12 * 3600

_config_path: Optional[str] = None


def _load_app_config() -> AppConfig:
    path = _config_path or os.environ.get(CONFIG_ENV_VAR)
    if path:
        return load_config(path)
    return default_config(DEFAULT_ADMIN)


def get_engine(clock: Optional[Clock] = None) -> BillingEngine:
    """Build the engine from the active configuration."""
    config = _load_app_config()
    configure_logging(level=config.logging.level_number)
    return build_engine(config, clock=clock)


def get_keeper_config() -> KeeperConfig:
    return _load_app_config().keeper


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


def _report_error(e: Exception) -> None:
    if isinstance(e, BillGuardError):
        _fail(f"{e} ({e.code})")
    _fail(str(e))


def _format_date(timestamp: int) -> str:
    return to_datetime(timestamp).strftime("%Y-%m-%d %H:%M UTC")


def _parse_date(value: str) -> int:
    try:
        day = datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        raise ValueError(f"Not a valid date (expected YYYY-MM-DD): {value}")
    return int(day.timestamp()) + DUE_TIME_OF_DAY


def _parse_moment(value: str) -> datetime:
    try:
        moment = datetime.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Not a valid ISO timestamp: {value}")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _parse_months(value: Optional[str]) -> tuple:
    if not value:
        return ()
    try:
        return tuple(int(part) for part in value.split(",") if part.strip())
    except ValueError:
        raise ValueError(f"Months must be a comma-separated list of numbers: {value}")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to YAML config (defaults to ${CONFIG_ENV_VAR})"
    )
):
    """Bill Guard CLI."""
    global _config_path
    _config_path = config
    if ctx.invoked_subcommand is None:
        console.print("Bill Guard - Use --help to see available commands")


@app.command()
def init():
    """Initialize the Bill Guard database."""
    try:
        config = _load_app_config()
        initialize_schema(config.storage.db_path)
        console.print(f"[green]✓[/] Database initialized at {config.storage.db_path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status():
    """Show engine settings and custody balance."""
    try:
        engine = get_engine()
        settings = engine.settings
        cycle_ids = engine.get_all_cycles(settings.admin)
        active = [cid for cid in cycle_ids if engine.get_cycle(cid).is_active]

        console.print("[green]✓[/] Bill Guard is initialized")
        console.print(f"Admin: {settings.admin}")
        console.print(f"Fee recipient: {settings.fee_recipient}")
        console.print(f"Fee: {settings.fee_percentage / 100:.2f}%")
        console.print(f"Cycles: {len(cycle_ids)} ({len(active)} active)")
        console.print(
            f"Custody balance: {format_amount(engine.context.funds.balance_of(settings.custody_account))}"
        )
    except Exception as e:
        _report_error(e)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def credit(
    account: str = typer.Argument(..., help="Account to fund"),
    amount: str = typer.Argument(..., help="Amount in units")
):
    """Add funds to an external account."""
    try:
        engine = get_engine()
        funds = engine.context.funds
        if not isinstance(funds, LedgerFunds):
            _fail("Crediting is only supported for ledger-backed balances")
        balance = funds.credit(account, to_subunits(amount))
        console.print(f"[green]✓[/] {account} balance: {format_amount(balance)}")
    except Exception as e:
        _report_error(e)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def balance(account: str = typer.Argument(..., help="Account to inspect")):
    """Show an account balance."""
    try:
        engine = get_engine()
        console.print(f"{account}: {format_amount(engine.context.funds.balance_of(account))}")
    except Exception as e:
        _report_error(e)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def events(
    cycle_id: Optional[int] = typer.Option(None, "--cycle", help="Only events of this cycle"),
    kind: Optional[str] = typer.Option(None, "--kind", help="Only events of this kind"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum events to show")
):
    """Show the most recent ledger events."""
    try:
        event_kind = EventKind(kind) if kind else None
        engine = get_engine()
        records = engine.events(cycle_id=cycle_id, kind=event_kind, limit=limit)
    except Exception as e:
        _report_error(e)

    if not records:
        console.print("[dim]No events recorded.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Ledger Events")
    table.add_column("Time")
    table.add_column("Event")
    table.add_column("Cycle", justify="right")
    table.add_column("Bill", justify="right")
    table.add_column("Account")
    table.add_column("Amount", justify="right")
    for event in records:
        table.add_row(
            _format_date(event.timestamp),
            event.kind.value,
            str(event.cycle_id),
            str(event.bill_id) if event.bill_id is not None else "-",
            event.account or "-",
            format_amount(event.amount)
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


# Cycles

@cycle_app.command("create")
def cycle_create(
    owner: str = typer.Option(..., "--owner", "-o", help="Depositing account"),
    months: int = typer.Option(..., "--months", "-m", help="Duration in 30-day months (1-12)"),
    amount: str = typer.Option(..., "--amount", "-a", help="Deposit in units")
):
    """Lock a deposit in a new cycle."""
    try:
        engine = get_engine()
        cycle_id = engine.create_cycle(owner, months, to_subunits(amount))
        cycle = engine.get_cycle(cycle_id)
    except Exception as e:
        _report_error(e)

    console.print(f"[green]✓[/] Cycle {cycle_id} created")
    console.print(f"Deposit: {format_amount(cycle.total_deposited)}")
    console.print(f"Operating fee: {format_amount(cycle.operating_fee)}")
    console.print(f"Available for bills: {format_amount(cycle.available)}")
    console.print(f"Ends: {_format_date(cycle.end_date)}")
    sys.exit(EXIT_CODE_PASS)


@cycle_app.command("end")
def cycle_end(
    cycle_id: int = typer.Argument(..., help="Cycle to close"),
    caller: str = typer.Option(..., "--caller", help="Account closing the cycle"),
    force: bool = typer.Option(False, "--force", help="Admin close before the end date")
):
    """Close a cycle and return its surplus to the owner."""
    try:
        engine = get_engine()
        if force:
            surplus = engine.admin_end_cycle(cycle_id, caller)
        else:
            surplus = engine.end_cycle(cycle_id, caller)
    except Exception as e:
        _report_error(e)

    console.print(f"[green]✓[/] Cycle {cycle_id} ended")
    console.print(f"Surplus returned: {format_amount(surplus)}")
    sys.exit(EXIT_CODE_PASS)


@cycle_app.command("show")
def cycle_show(cycle_id: int = typer.Argument(..., help="Cycle to inspect")):
    """Show a cycle, its allocation and its bills."""
    try:
        engine = get_engine()
        cycle = engine.get_cycle(cycle_id)
        summary = engine.allocation(cycle_id)
        bills = engine.list_cycle_bills(cycle_id)
    except Exception as e:
        _report_error(e)

    console.print(f"\n[bold]Cycle {cycle.id}[/bold] ({'active' if cycle.is_active else 'ended'})")
    console.print("-" * 40)
    console.print(f"Owner: {cycle.owner}")
    console.print(f"Period: {_format_date(cycle.start_date)} -> {_format_date(cycle.end_date)}")
    console.print(f"Deposited: {format_amount(cycle.total_deposited)}")
    console.print(f"Operating fee: {format_amount(cycle.operating_fee)}")
    console.print(f"Allocated: {format_amount(summary.allocated)}")
    console.print(f"Remaining: {format_amount(summary.remaining)}")
    console.print(f"Paid out: {format_amount(cycle.total_paid)}")
    if bills:
        _print_bills(bills)
    sys.exit(EXIT_CODE_PASS)


@cycle_app.command("list")
def cycle_list(
    owner: Optional[str] = typer.Option(None, "--owner", "-o", help="Only cycles of this owner")
):
    """List cycles."""
    try:
        engine = get_engine()
        if owner:
            cycle_ids = engine.get_user_cycles(owner)
        else:
            cycle_ids = engine.get_all_cycles(engine.settings.admin)
        cycles = [engine.get_cycle(cycle_id) for cycle_id in cycle_ids]
    except Exception as e:
        _report_error(e)

    if not cycles:
        console.print("[dim]No cycles found.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Cycles")
    table.add_column("ID", justify="right")
    table.add_column("Owner")
    table.add_column("Ends")
    table.add_column("Deposited", justify="right")
    table.add_column("Paid out", justify="right")
    table.add_column("Status")
    for cycle in cycles:
        table.add_row(
            str(cycle.id),
            cycle.owner,
            _format_date(cycle.end_date),
            format_amount(cycle.total_deposited),
            format_amount(cycle.total_paid),
            "active" if cycle.is_active else "ended"
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


# Bills

def _print_bills(bills) -> None:
    table = Table(title="Bills")
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Amount", justify="right")
    table.add_column("Due")
    table.add_column("Months")
    table.add_column("Status")
    for bill in bills:
        table.add_row(
            str(bill.id),
            bill.name,
            bill.category.value,
            format_amount(bill.amount),
            _format_date(bill.due_date),
            ",".join(str(month) for month in bill.recurrence_calendar) or "-",
            "paid" if bill.is_paid else "due"
        )
    console.print(table)


@bill_app.command("add")
def bill_add(
    cycle_id: int = typer.Argument(..., help="Cycle to add the bill to"),
    caller: str = typer.Option(..., "--caller", help="Cycle owner"),
    name: str = typer.Option(..., "--name", help="Bill name"),
    amount: str = typer.Option(..., "--amount", "-a", help="Amount per occurrence in units"),
    due: Optional[str] = typer.Option(None, "--due", help="Due date, YYYY-MM-DD"),
    day: Optional[int] = typer.Option(
        None, "--day", help="Day of month (1-28); first due date is picked automatically"
    ),
    recurring: bool = typer.Option(False, "--recurring", "-r", help="Repeat monthly until the cycle ends"),
    months: Optional[str] = typer.Option(None, "--months", help="Recurrence months, e.g. 10,11,12"),
    category: BillCategory = typer.Option(BillCategory.OTHER, "--category", help="Bill category"),
    skip_allocation_check: bool = typer.Option(
        False, "--skip-allocation-check", help="Add even if the cycle's funds are over-allocated"
    )
):
    """Add a bill to a cycle."""
    try:
        if (due is None) == (day is None):
            _fail("Give exactly one of --due or --day")

        engine = get_engine()
        if due is not None:
            due_date = _parse_date(due)
        else:
            cycle = engine.get_cycle(cycle_id)
            due_date = first_occurrence(
                cycle.start_date,
                cycle.end_date,
                day,
                not_before=engine.context.now() + MIN_LEAD_TIME_SECONDS,
                time_of_day=DUE_TIME_OF_DAY
            )
            if due_date is None:
                _fail(f"No day {day} falls within the cycle at least 7 days from now")

        draft = BillDraft(
            name=name,
            amount=to_subunits(amount),
            due_date=due_date,
            is_recurring=recurring,
            recurrence_calendar=_parse_months(months),
            category=category
        )
        if not skip_allocation_check:
            summary = engine.check_allocation(cycle_id, [draft])
        bill_id = engine.add_bill(cycle_id, draft, caller)
        bill = engine.get_bill(bill_id)
    except Exception as e:
        _report_error(e)

    console.print(f"[green]✓[/] Bill {bill_id} added")
    console.print(f"First due: {_format_date(bill.due_date)}")
    if bill.is_recurring:
        console.print(f"Months: {','.join(str(month) for month in bill.recurrence_calendar)}")
    if not skip_allocation_check:
        console.print(f"Remaining after allocation: {format_amount(summary.remaining)}")
    sys.exit(EXIT_CODE_PASS)


@bill_app.command("cancel")
def bill_cancel(
    bill_ids: List[int] = typer.Argument(..., help="Bills to cancel (same cycle)"),
    caller: str = typer.Option(..., "--caller", help="Cycle owner")
):
    """Cancel unpaid bills. Counts as the cycle's adjustment for the month."""
    try:
        engine = get_engine()
        engine.cancel_bills(bill_ids, caller)
    except Exception as e:
        _report_error(e)

    console.print(f"[green]✓[/] Cancelled {len(bill_ids)} bill(s)")
    sys.exit(EXIT_CODE_PASS)


@bill_app.command("skip")
def bill_skip(
    bill_ids: List[int] = typer.Argument(..., help="Bills to skip (same cycle)"),
    caller: str = typer.Option(..., "--caller", help="Cycle owner")
):
    """Skip the current occurrence of bills without paying it.

    Recurring bills move on to their next occurrence; one-time bills are
    removed. Counts as the cycle's adjustment for the month.
    """
    try:
        engine = get_engine()
        cycle_id = engine.get_bill(bill_ids[0]).cycle_id
        engine.skip_bills(bill_ids, caller)
        skipped = [bill for bill in engine.list_cycle_bills(cycle_id) if bill.id in bill_ids]
    except Exception as e:
        _report_error(e)

    console.print(f"[green]✓[/] Skipped {len(bill_ids)} bill(s)")
    for bill in skipped:
        if bill.is_paid:
            console.print(f"Bill {bill.id}: no occurrences left")
        else:
            console.print(f"Bill {bill.id}: next due {_format_date(bill.due_date)}")
    removed = len(bill_ids) - len(skipped)
    if removed:
        console.print(f"Removed {removed} one-time bill(s)")
    sys.exit(EXIT_CODE_PASS)


@bill_app.command("pay")
def bill_pay(
    bill_id: int = typer.Argument(..., help="Bill to pay"),
    caller: str = typer.Option(..., "--caller", help="Cycle owner, or the admin with --admin"),
    admin: bool = typer.Option(False, "--admin", help="Pay through the admin path (any day)")
):
    """Release a due bill's amount to the cycle owner."""
    try:
        engine = get_engine()
        if admin:
            result = engine.admin_pay_bill(bill_id, caller)
        else:
            result = engine.pay_bill(bill_id, caller)
    except Exception as e:
        _report_error(e)

    console.print(f"[green]✓[/] Paid {format_amount(result.amount)} for bill {bill_id}")
    if result.is_terminal:
        console.print("Bill is fully paid")
    else:
        console.print(f"Next due: {_format_date(result.next_due_date)}")
    sys.exit(EXIT_CODE_PASS)


@bill_app.command("list")
def bill_list(cycle_id: int = typer.Argument(..., help="Cycle whose bills to list")):
    """List the bills of a cycle."""
    try:
        engine = get_engine()
        bills = engine.list_cycle_bills(cycle_id)
    except Exception as e:
        _report_error(e)

    if not bills:
        console.print("[dim]No bills in this cycle.[/]")
        sys.exit(EXIT_CODE_PASS)
    _print_bills(bills)
    sys.exit(EXIT_CODE_PASS)


# Keeper

@keeper_app.command("run")
def keeper_run(
    now: Optional[str] = typer.Option(
        None, "--now", help="Sweep as if it were this ISO time (UTC)"
    )
):
    """Run one keeper sweep over all cycles."""
    try:
        clock = DeterministicClock(_parse_moment(now)) if now else None
        engine = get_engine(clock=clock)
        report = KeeperRunner(engine, get_keeper_config()).run_once()
    except Exception as e:
        _report_error(e)

    console.print(f"\n[bold]Keeper run {report.run_id}[/bold]")
    console.print("-" * 40)
    console.print(f"Processed: {report.processed}")
    console.print(f"Paid: {report.paid}")
    console.print(f"Skipped: {report.skipped}")
    console.print(f"Failed: {report.failed}")
    sys.exit(EXIT_CODE_FAIL if report.failed else EXIT_CODE_PASS)


@keeper_app.command("serve")
def keeper_serve(
    schedule: Optional[str] = typer.Option(None, "--schedule", help="Cron expression, overrides config")
):
    """Run keeper sweeps on a schedule until interrupted."""
    try:
        runner = KeeperRunner(get_engine(), get_keeper_config())
        service = KeeperService(runner, schedule=schedule)
    except Exception as e:
        _report_error(e)

    console.print(f"Keeper running; next sweep at {service.next_run_at.isoformat()} (Ctrl+C to stop)")
    service.start()
    try:
        while service.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()
    sys.exit(EXIT_CODE_PASS)


@keeper_app.command("due-soon")
def keeper_due_soon(
    hours: Optional[int] = typer.Option(None, "--hours", help="Notice window in hours (default from config)")
):
    """List unpaid bills due within the notice window."""
    try:
        runner = KeeperRunner(get_engine(), get_keeper_config())
        bills = runner.bills_due_soon(hours)
    except Exception as e:
        _report_error(e)

    if not bills:
        console.print("[dim]No bills due soon.[/]")
        sys.exit(EXIT_CODE_PASS)
    _print_bills(bills)
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
