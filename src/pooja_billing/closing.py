"""End-of-day closing for the pooja store.

A day's figures are recomputed from its paid bills, frozen into a single
``DailyClosings`` row and the per-channel daily counters are reset, all in one
unit of work. The closing row is written once; its presence is what marks a
day as closed for both this module and the billing engine.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from . import core_logic, data_manager, log
from .constants import (
    CLOSING_TOP_ITEMS_LIMIT,
    DEFAULT_CLOSED_DAYS_PAGE_SIZE,
    PREVIEW_TOP_ITEMS_LIMIT,
    BillStatus,
)
from .core_logic import ClosingNotFound, DayAlreadyClosed, RuntimeContext, ValidationError


CENT = Decimal("0.01")


@dataclass(frozen=True)
class DaySummary:
    """Totals recomputed from one day's paid bills."""

    date: str
    total_sales: Decimal
    total_bills: int
    payment_summary: Dict[str, data_manager.MethodTotal]
    top_items: Tuple[data_manager.TopItem, ...]


@dataclass(frozen=True)
class ChannelUsage:
    """Daily and lifetime usage of one UPI channel."""

    name: str
    daily_count: int
    transaction_count: int
    total_amount: Decimal
    daily_limit: int
    remaining: int


@dataclass(frozen=True)
class ClosingPreview:
    """Read-only view of a day shown before it is closed."""

    date: str
    total_sales: Decimal
    total_bills: int
    average_bill_value: Decimal
    payment_summary: Dict[str, data_manager.MethodTotal]
    top_items: Tuple[data_manager.TopItem, ...]
    channels: Tuple[ChannelUsage, ...]
    is_day_closed: bool
    closing: Optional[data_manager.ClosingRow] = None
    bills: Tuple[data_manager.BillRow, ...] = ()


@dataclass(frozen=True)
class CloseDayCommand:
    """Request to close ``date`` (today when omitted)."""

    date: Union[str, date, None] = None
    cash_verified: bool = False
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ClosingResult:
    """Summary handed back after a successful close."""

    date: str
    total_sales: Decimal
    total_bills: int
    payment_summary: Dict[str, data_manager.MethodTotal]
    top_items: Tuple[data_manager.TopItem, ...]
    cash_verified: bool
    notes: str
    closed_by: str
    closing_time: str
    channels_reset: Tuple[str, ...]


@dataclass(frozen=True)
class ClosedDaysPage:
    """One page of closing history, newest day first."""

    closings: Tuple[data_manager.ClosingRow, ...]
    page: int
    page_size: int
    total: int
    total_pages: int

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


@dataclass(frozen=True)
class ClosingDetail:
    """A stored closing together with the paid bills it summarizes."""

    closing: data_manager.ClosingRow
    bills: Tuple[data_manager.BillRow, ...]


def summarize_bills(
    bills: Iterable[data_manager.BillRow],
    *,
    day: str,
    methods: Sequence[str],
    top_limit: int,
) -> DaySummary:
    """Aggregate paid bills into totals, a per-method map and top items.

    Every method in ``methods`` appears in the payment map, zero-filled when
    nothing was paid through it. Bills that are not paid are ignored.
    """

    payment_summary: Dict[str, data_manager.MethodTotal] = {
        method: data_manager.MethodTotal() for method in methods
    }
    items: Dict[str, data_manager.TopItem] = {}
    total_sales = Decimal("0")
    total_bills = 0

    for bill in bills:
        if bill.status != BillStatus.PAID.value:
            continue
        total_sales += bill.total_amount
        total_bills += 1
        current = payment_summary.get(bill.payment_method, data_manager.MethodTotal())
        payment_summary[bill.payment_method] = data_manager.MethodTotal(
            amount=current.amount + bill.total_amount,
            count=current.count + 1,
        )
        for line in bill.lines:
            seen = items.get(line.item_id)
            items[line.item_id] = data_manager.TopItem(
                item_id=line.item_id,
                name=line.name,
                quantity=line.quantity + (seen.quantity if seen else 0),
                revenue=line.total + (seen.revenue if seen else Decimal("0")),
            )

    ranked = sorted(items.values(), key=lambda item: item.revenue, reverse=True)
    return DaySummary(
        date=day,
        total_sales=total_sales,
        total_bills=total_bills,
        payment_summary=payment_summary,
        top_items=tuple(ranked[:top_limit]),
    )


def _channel_usage(context: RuntimeContext) -> Tuple[ChannelUsage, ...]:
    limit = context.settings.daily_limit
    return tuple(
        ChannelUsage(
            name=channel.name,
            daily_count=channel.daily_count,
            transaction_count=channel.transaction_count,
            total_amount=channel.total_amount,
            daily_limit=limit,
            remaining=max(0, limit - channel.daily_count),
        )
        for channel in core_logic.list_channels(context)
    )


def _resolve_day(value: Union[str, date, None]) -> str:
    return core_logic.normalize_day(value) if value is not None else core_logic.today()


def get_closing_preview(context: RuntimeContext, day: Union[str, date, None] = None) -> ClosingPreview:
    """Compute what closing ``day`` would record without writing anything.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        day (str | date | None): Day to preview; today (UTC) when omitted.

    Returns:
        ClosingPreview: Totals from paid bills, zero-filled per-method
            figures, the top five items, channel usage, the paid bills
            newest first and the closing record when the day is already
            closed. A day with no bills yields zeroed figures.
    """
    target = _resolve_day(day)
    with core_logic.workbook_lock(context):
        paid = core_logic.find_bills(context, day=target, status=BillStatus.PAID)
        summary = summarize_bills(
            paid,
            day=target,
            methods=core_logic.payment_methods(context),
            top_limit=PREVIEW_TOP_ITEMS_LIMIT,
        )
        closing = data_manager.find_closing(context.workbook, target)
        channels = _channel_usage(context)

    average = Decimal("0")
    if summary.total_bills:
        average = (summary.total_sales / summary.total_bills).quantize(CENT, rounding=ROUND_HALF_UP)

    return ClosingPreview(
        date=target,
        total_sales=summary.total_sales,
        total_bills=summary.total_bills,
        average_bill_value=average,
        payment_summary=summary.payment_summary,
        top_items=summary.top_items,
        channels=channels,
        is_day_closed=closing is not None,
        closing=closing,
        bills=tuple(reversed(paid)),
    )


def close_day(context: RuntimeContext, command: CloseDayCommand) -> ClosingResult:
    """Freeze a day's totals and reset every channel's daily counter.

    The closing is recomputed from the day's paid bills (top ten items
    stored), inserted once, and each channel's ``daily_count`` goes back to
    zero while lifetime counters stay untouched. The returned summary lists
    the top five items.

    Raises:
        DayAlreadyClosed: If a closing already exists for the day.
        ConcurrencyConflict: If the workbook is busy or changed on disk.
        PersistenceFailure: If the commit-time save fails.
    """
    target = _resolve_day(command.date)
    moment = core_logic.resolve_timestamp(command.timestamp)
    reset: List[str] = []

    with core_logic.unit_of_work(context, f"close {target}"):
        paid = core_logic.find_bills(context, day=target, status=BillStatus.PAID)
        summary = summarize_bills(
            paid,
            day=target,
            methods=core_logic.payment_methods(context),
            top_limit=CLOSING_TOP_ITEMS_LIMIT,
        )
        record = data_manager.ClosingRow(
            date=target,
            total_sales=summary.total_sales,
            total_bills=summary.total_bills,
            payment_summary=summary.payment_summary,
            top_items=summary.top_items,
            cash_verified=bool(command.cash_verified),
            notes=command.notes or "",
            closed_by=context.settings.operator,
            closing_time=moment.isoformat(),
        )
        if not data_manager.insert_closing_if_absent(context.workbook, record):
            log.warning("Rejected second close for %s", target)
            raise DayAlreadyClosed(target)

        for channel in core_logic.list_channels(context):
            data_manager.update_channel(
                context.workbook,
                channel.name,
                field_values={"DailyCount": 0, "LastResetDate": target},
            )
            reset.append(channel.name)

    log.info(
        "Closed %s: %d paid bills, total=%s, %d channels reset",
        target,
        record.total_bills,
        record.total_sales,
        len(reset),
    )
    return ClosingResult(
        date=record.date,
        total_sales=record.total_sales,
        total_bills=record.total_bills,
        payment_summary=record.payment_summary,
        top_items=record.top_items[:PREVIEW_TOP_ITEMS_LIMIT],
        cash_verified=record.cash_verified,
        notes=record.notes,
        closed_by=record.closed_by,
        closing_time=record.closing_time,
        channels_reset=tuple(reset),
    )


def list_closed_days(
    context: RuntimeContext,
    page: int = 1,
    page_size: int = DEFAULT_CLOSED_DAYS_PAGE_SIZE,
) -> ClosedDaysPage:
    """Return closing history newest first, one page at a time.

    Raises:
        ValidationError: If ``page`` or ``page_size`` is below one.
    """
    if page < 1 or page_size < 1:
        raise ValidationError("Page and page size must be at least 1")

    with core_logic.workbook_lock(context):
        closings = sorted(
            data_manager.iter_closings(context.workbook),
            key=lambda closing: closing.date,
            reverse=True,
        )
    start = (page - 1) * page_size
    return ClosedDaysPage(
        closings=tuple(closings[start : start + page_size]),
        page=page,
        page_size=page_size,
        total=len(closings),
        total_pages=math.ceil(len(closings) / page_size),
    )


def get_closing_details(context: RuntimeContext, day: Union[str, date]) -> ClosingDetail:
    """Return the stored closing for ``day`` with that day's paid bills.

    Raises:
        ClosingNotFound: If the day has never been closed.
    """
    target = core_logic.normalize_day(day)
    with core_logic.workbook_lock(context):
        closing = data_manager.find_closing(context.workbook, target)
        if closing is None:
            log.warning("Closing lookup failed for %s", target)
            raise ClosingNotFound(target)
        bills = core_logic.find_bills(context, day=target, status=BillStatus.PAID)
    return ClosingDetail(closing=closing, bills=tuple(bills))
