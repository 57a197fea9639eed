"""Command-line entry points for the pooja store billing backend.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the billing and
closing engines, and printing their results. Keeping the CLI thin ensures the
same parser configuration can be reused by tests, scripts, or a counter
front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import closing, core_logic, data_manager, log
from .constants import DEFAULT_BILLS_PAGE_SIZE, DEFAULT_CLOSED_DAYS_PAGE_SIZE, BillStatus, ItemCategory


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pooja-cli",
        description="Billing and daily closing tools for the pooja store workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the current directory by default).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as billing and closing."""
    specs = {
        "add-item": register_add_item_command(subparsers),
        "channels": register_channels_command(subparsers),
        "bill": register_bill_command(subparsers),
        "bill-status": register_bill_status_command(subparsers),
        "close-day": register_close_day_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as bill lookups and previews."""
    specs = {
        "show-bill": register_show_bill_command(subparsers),
        "bills": register_bills_command(subparsers),
        "closing-preview": register_closing_preview_command(subparsers),
        "closed-days": register_closed_days_command(subparsers),
        "closing-details": register_closing_details_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-item``."""
    name = "add-item"
    help_text = "Register a new item in the Items sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--item-code", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--price", required=True, type=parse_money)
        parser.add_argument("--stock", required=True, type=int)
        parser.add_argument("--cost-price", type=parse_money, default=None)
        parser.add_argument("--min-stock", type=int, default=10)
        parser.add_argument(
            "--category",
            choices=[member.value for member in ItemCategory],
            default=ItemCategory.OTHERS.value,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_item, mutates=True)


def register_channels_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``channels``."""
    name = "channels"
    help_text = "Provision missing payment channels and show their counters."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_channels, mutates=True)


def register_bill_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``bill``."""
    name = "bill"
    help_text = "Create a bill from one or more cart lines."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--line",
            dest="lines",
            action="append",
            required=True,
            type=parse_cart_line,
            metavar="ITEM_ID:QTY[:PRICE]",
            help="Cart line; repeat for each item.",
        )
        parser.add_argument("--payment", required=True, help="Cash or a configured UPI channel name.")
        parser.add_argument(
            "--status",
            choices=[BillStatus.PAID.value, BillStatus.PENDING.value],
            default=BillStatus.PAID.value,
        )
        parser.add_argument("--total", type=parse_money, default=None, help="Override the computed total.")
        parser.add_argument("--item-count", type=int, default=None, help="Override the computed item count.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_bill, mutates=True)


def register_bill_status_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``bill-status``."""
    name = "bill-status"
    help_text = "Settle or cancel a pending bill."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--bill-number", required=True)
        parser.add_argument(
            "--status",
            required=True,
            choices=[BillStatus.PAID.value, BillStatus.CANCELLED.value],
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_bill_status, mutates=True)


def register_close_day_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``close-day``."""
    name = "close-day"
    help_text = "Freeze a day's totals and reset the channel counters."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", default=None, help="Day to close (YYYY-MM-DD); defaults to today.")
        parser.add_argument("--cash-verified", action="store_true")
        parser.add_argument("--notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_close_day, mutates=True)


def register_show_bill_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``show-bill``."""
    name = "show-bill"
    help_text = "Display a bill by its number."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--bill-number", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_show_bill)


def register_bills_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``bills``."""
    name = "bills"
    help_text = "List bills filtered by date range, status or payment method."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--from", dest="start_date", default=None)
        parser.add_argument("--to", dest="end_date", default=None)
        parser.add_argument("--status", choices=[member.value for member in BillStatus], default=None)
        parser.add_argument("--payment", default=None)
        parser.add_argument("--page", type=int, default=1)
        parser.add_argument("--page-size", type=int, default=DEFAULT_BILLS_PAGE_SIZE)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_bills)


def register_closing_preview_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``closing-preview``."""
    name = "closing-preview"
    help_text = "Show what closing a day would record."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_closing_preview)


def register_closed_days_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``closed-days``."""
    name = "closed-days"
    help_text = "List closed days, newest first."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--page", type=int, default=1)
        parser.add_argument("--page-size", type=int, default=DEFAULT_CLOSED_DAYS_PAGE_SIZE)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_closed_days)


def register_closing_details_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``closing-details``."""
    name = "closing-details"
    help_text = "Show a stored closing and the paid bills behind it."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_closing_details)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(config_path)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_money(raw: str) -> Decimal:
    """argparse type for monetary amounts."""
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Invalid amount: {raw!r}") from exc


def parse_cart_line(raw: str) -> core_logic.CartLine:
    """argparse type for ``ITEM_ID:QTY`` or ``ITEM_ID:QTY:PRICE``."""
    parts = raw.split(":")
    if len(parts) not in (2, 3) or not parts[0]:
        raise argparse.ArgumentTypeError(f"Expected ITEM_ID:QTY[:PRICE], got {raw!r}")
    try:
        quantity = int(parts[1])
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid quantity in {raw!r}") from exc
    price = parse_money(parts[2]) if len(parts) == 3 else None
    return core_logic.CartLine(item_id=parts[0], quantity=quantity, unit_price=price)


def translate_bill(args: argparse.Namespace) -> core_logic.BillCommand:
    """Translate CLI args into a bill command object."""
    return core_logic.BillCommand(
        lines=tuple(args.lines),
        payment_method=args.payment,
        status=BillStatus(args.status),
        total_amount=args.total,
        total_item_count=args.item_count,
    )


def translate_close_day(args: argparse.Namespace) -> closing.CloseDayCommand:
    """Translate CLI args into a close-day command object."""
    return closing.CloseDayCommand(
        date=args.date,
        cash_verified=args.cash_verified,
        notes=args.notes,
    )


def format_bill(bill: data_manager.BillRow) -> str:
    """Render a bill as a short printable receipt."""
    lines = [
        f"{bill.bill_number}  {bill.date} {bill.time}  [{bill.status}]",
    ]
    for line in bill.lines:
        lines.append(f"  {line.item_code:<10} {line.name:<24} {line.quantity:>4} x {line.price:>9} = {line.total:>10}")
    channel = f" via {bill.qr_used}" if bill.qr_used else ""
    lines.append(f"  Items: {bill.total_items}  Total: {bill.total_amount}  Paid by: {bill.payment_method}{channel}")
    return "\n".join(lines)


def format_payment_summary(summary: Mapping[str, data_manager.MethodTotal]) -> str:
    return "\n".join(f"  {method:<14} {total.count:>4} bills  {total.amount:>10}" for method, total in summary.items())


def run_add_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-item workflow."""
    item = core_logic.add_item(
        context,
        item_code=args.item_code,
        name=args.name,
        unit_price=args.price,
        current_stock=args.stock,
        cost_price=args.cost_price,
        min_stock_alert=args.min_stock,
        category=args.category,
    )
    print(f"Added {item.item_code} ({item.name}) as {item.item_id}")
    return 0


def run_channels(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Provision missing channels and print every channel's counters."""
    core_logic.provision_channels(context)
    for channel in core_logic.list_channels(context):
        print(
            f"{channel.name:<14} today {channel.daily_count:>3}/{context.settings.daily_limit}"
            f"  lifetime {channel.transaction_count:>5} bills  {channel.total_amount:>10}"
        )
    return 0


def run_bill(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the billing workflow."""
    bill = core_logic.create_bill(context, translate_bill(args))
    print(format_bill(bill))
    return 0


def run_bill_status(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a bill status change."""
    bill = core_logic.get_bill_by_number(context, args.bill_number)
    updated = core_logic.update_bill_status(context, bill.bill_id, args.status)
    print(f"{updated.bill_number} is now {updated.status}")
    return 0


def run_close_day(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the daily closing workflow."""
    result = closing.close_day(context, translate_close_day(args))
    print(f"Closed {result.date}: {result.total_bills} bills, total {result.total_sales}")
    print(format_payment_summary(result.payment_summary))
    for item in result.top_items:
        print(f"  {item.name:<24} {item.quantity:>4}  {item.revenue:>10}")
    return 0


def run_show_bill(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print a single bill."""
    print(format_bill(core_logic.get_bill_by_number(context, args.bill_number)))
    return 0


def run_bills(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print one page of the bills matching the given filters, newest first."""
    result = core_logic.page_bills(
        context,
        page=args.page,
        page_size=args.page_size,
        start_date=args.start_date,
        end_date=args.end_date,
        status=args.status,
        payment_method=args.payment,
    )
    for bill in result.bills:
        print(f"{bill.bill_number}  {bill.date}  {bill.status:<9} {bill.payment_method:<14} {bill.total_amount:>10}")
    print(f"Page {result.page} of {result.total_pages} ({result.total} bills)")
    return 0


def run_closing_preview(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the closing preview for a day."""
    preview = closing.get_closing_preview(context, args.date)
    state = "closed" if preview.is_day_closed else "open"
    print(f"{preview.date} ({state}): {preview.total_bills} paid bills, total {preview.total_sales}")
    print(f"  Average bill: {preview.average_bill_value}")
    print(format_payment_summary(preview.payment_summary))
    for usage in preview.channels:
        print(f"  {usage.name:<14} {usage.daily_count:>3}/{usage.daily_limit} used, {usage.remaining} left")
    for bill in preview.bills:
        print(
            f"  {bill.bill_number}  {bill.time}  {bill.payment_method:<14}"
            f" {bill.total_items:>3} items  {bill.total_amount:>10}"
        )
    return 0


def run_closed_days(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print one page of closing history."""
    page = closing.list_closed_days(context, page=args.page, page_size=args.page_size)
    for record in page.closings:
        verified = "verified" if record.cash_verified else "unverified"
        print(f"{record.date}  {record.total_bills:>4} bills  {record.total_sales:>10}  cash {verified}")
    print(f"Page {page.page} of {page.total_pages} ({page.total} closed days)")
    return 0


def run_closing_details(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print a stored closing with its bills."""
    detail = closing.get_closing_details(context, args.date)
    record = detail.closing
    print(f"{record.date} closed by {record.closed_by} at {record.closing_time}")
    print(f"  {record.total_bills} bills, total {record.total_sales}")
    if record.notes:
        print(f"  Notes: {record.notes}")
    for bill in detail.bills:
        print(format_bill(bill))
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, core_logic.ConcurrencyConflict):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    core_logic.persist_context(context)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        spec = command_table[args.command]
        if exit_code == 0 and spec.mutates and not context.settings.auto_save:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":
    raise SystemExit(main())
