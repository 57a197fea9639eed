"""Business logic layer for the pooja store billing engine.

This module turns a cart into an immutable bill. Every mutation runs inside a
unit of work that holds the context lock, snapshots the workbook sheets and
either commits as a whole (optionally saving to disk) or restores the
snapshot, so a failed bill never leaves a stock decrement, a channel counter
bump or a half-written summary behind. The Data Access Layer (DAL) in
:mod:`pooja_billing.data_manager` performs all I/O.
"""

from __future__ import annotations

import math
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import (
    ALLOWED_STATUS_TRANSITIONS,
    BILL_NUMBER_PREFIX,
    BILL_SERIAL_WIDTH,
    CASH,
    DEFAULT_BILLS_PAGE_SIZE,
    EXPECTED_SCHEMA_VERSION,
    LIVE_TOP_ITEMS_LIMIT,
    BillStatus,
    ItemCategory,
)


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a store rule."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced item, bill or closing is unknown."""


class ItemNotFound(MissingReferenceError):
    """Raised when a cart line names an item absent from the catalog."""

    def __init__(self, item_id: str) -> None:
        self.item_id = item_id
        super().__init__(f"Item not found: {item_id}")


class BillNotFound(MissingReferenceError):
    """Raised when a bill id or bill number is unknown."""

    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__(f"Bill not found: {reference}")


class ClosingNotFound(MissingReferenceError):
    """Raised when closing details are requested for a day never closed."""

    def __init__(self, day: str) -> None:
        self.date = day
        super().__init__(f"Closing details not found for {day}")


class InsufficientStock(BusinessRuleViolation):
    """Raised when a cart line asks for more units than are on the shelf."""

    def __init__(self, item_id: str, item_name: str, available: int, requested: int) -> None:
        self.item_id = item_id
        self.item_name = item_name
        self.available = available
        self.requested = requested
        super().__init__(f"Insufficient stock for {item_name}. Available: {available}")


class DayAlreadyClosed(BusinessRuleViolation):
    """Raised when a closed day is closed again, billed or has a bill re-settled."""

    def __init__(self, day: str) -> None:
        self.date = day
        super().__init__(f"Day is already closed: {day}")


class ValidationError(BusinessRuleViolation, ValueError):
    """Raised for malformed input such as an empty cart or a zero quantity."""


class InvalidStatusTransition(ValidationError):
    """Raised when a bill status change is not pending -> paid/cancelled."""

    def __init__(self, bill_number: str, current: str, requested: str) -> None:
        self.bill_number = bill_number
        self.current = current
        self.requested = requested
        super().__init__(f"Bill {bill_number} cannot move from '{current}' to '{requested}'")


class ConcurrencyConflict(Exception):
    """Transient failure: the lock timed out or the workbook changed on disk."""


class PersistenceFailure(Exception):
    """Raised when the workbook cannot be written to disk."""


CACHE_BUCKETS: Tuple[str, ...] = ("items", "channels", "bills")


@dataclass(frozen=True)
class RuntimeContext:
    """Configuration, workbook and the lock that serializes access to both."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)
    _lock: Any = field(default_factory=threading.RLock, repr=False, compare=False)
    _state: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class CartLine:
    """One requested line: which item, how many, and an optional price snapshot."""

    item_id: str
    quantity: int
    unit_price: Optional[Decimal] = None


@dataclass(frozen=True)
class BillCommand:
    """User intent for turning a cart into a bill.

    ``total_amount`` and ``total_item_count`` are explicit overrides: when
    given they replace the computed values on the bill.
    """

    lines: Sequence[CartLine]
    payment_method: str
    status: Union[BillStatus, str] = BillStatus.PAID
    total_amount: Optional[Decimal] = None
    total_item_count: Optional[int] = None
    timestamp: Optional[datetime] = None


Bill = data_manager.BillRow


@dataclass(frozen=True)
class BillsPage:
    """One page of matching bills, newest first."""

    bills: Tuple[Bill, ...]
    page: int
    page_size: int
    total: int
    total_pages: int

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


def resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def normalize_day(value: Union[str, date, datetime]) -> str:
    """Normalize a day given as ``date``, ``datetime`` or ISO string."""

    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value)).isoformat()
    except ValueError as exc:
        raise ValidationError(f"Invalid date: {value!r}") from exc


def today() -> str:
    """Return the current UTC calendar day as ``YYYY-MM-DD``."""

    return resolve_timestamp(None).date().isoformat()


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict cache buckets after the workbook changed or was restored."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_items_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "items")
    if "all" not in bucket:
        all_items = list(data_manager.iter_items(context.workbook))
        bucket["all"] = all_items
        bucket["by_id"] = {item.item_id: item for item in all_items}
        bucket["by_code"] = {item.item_code: item for item in all_items}
        log.debug("Populated items cache with %d entries", len(all_items))
    return bucket


def _ensure_channels_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "channels")
    if "all" not in bucket:
        all_channels = list(data_manager.iter_channels(context.workbook))
        bucket["all"] = all_channels
        bucket["by_name"] = {channel.name: channel for channel in all_channels}
        log.debug("Populated channels cache with %d entries", len(all_channels))
    return bucket


def _ensure_bills_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the bill ledger bucket.

    Bills are append-only apart from their status, so one scan serves the
    id lookup, the number lookup and the per-day serial search.
    """

    bucket = _get_cache_bucket(context, "bills")
    if "all" not in bucket:
        all_bills = list(data_manager.iter_bills(context.workbook))
        bucket["all"] = all_bills
        bucket["by_id"] = {bill.bill_id: bill for bill in all_bills}
        bucket["by_number"] = {bill.bill_number: bill for bill in all_bills}
        log.debug("Populated bills cache with %d entries", len(all_bills))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook.

    Args:
        config_path (Path | None): Optional override path for the
            configuration file. When omitted the data layer searches upward
            from the current working directory.

    Returns:
        RuntimeContext: Context ready for billing and closing calls. The
            workbook's on-disk stamp is recorded so a later save can detect a
            concurrent writer.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
        RuntimeError: If the workbook was laid out for another schema
            version.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    context = RuntimeContext(settings=settings, workbook=workbook)
    context._state["disk_stamp"] = data_manager.file_stamp(settings.data_file)
    ensure_schema_version(context)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return context


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to work on a workbook laid out for another schema version.

    Raises:
        RuntimeError: If the configured schema version differs from
            ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


@contextmanager
def workbook_lock(context: RuntimeContext) -> Iterator[None]:
    """Hold the context lock, giving up after ``settings.lock_timeout``."""

    if not context._lock.acquire(timeout=context.settings.lock_timeout):
        log.error("Timed out after %ss waiting for the workbook lock", context.settings.lock_timeout)
        raise ConcurrencyConflict("Workbook is busy; retry the operation")
    try:
        yield
    finally:
        context._lock.release()


@contextmanager
def unit_of_work(context: RuntimeContext, label: str) -> Iterator[None]:
    """Run a block of workbook mutations as one all-or-nothing operation.

    The context lock is held for the whole block. Managed sheets are
    snapshotted on entry; if the block raises, or the commit-time save
    fails, the snapshot is written back and the error propagates unchanged.
    With ``settings.auto_save`` enabled a successful block is saved to disk
    before the lock is released.

    Args:
        context (RuntimeContext): Context whose workbook is mutated.
        label (str): Short operation description used in log lines.

    Raises:
        ConcurrencyConflict: If the lock cannot be acquired in time or the
            workbook changed on disk since it was loaded.
        PersistenceFailure: If the commit-time save fails.
    """

    with workbook_lock(context):
        snapshot = data_manager.snapshot_sheets(context.workbook)
        try:
            yield
            if context.settings.auto_save:
                _save_locked(context)
        except Exception as exc:
            data_manager.restore_sheets(context.workbook, snapshot)
            if isinstance(exc, BusinessRuleViolation):
                log.info("Rolled back %s: %s", label, exc)
            else:
                log.error("Rolled back %s after %s: %s", label, type(exc).__name__, exc)
            raise
        finally:
            _invalidate_cache(context, *CACHE_BUCKETS)


def _save_locked(context: RuntimeContext) -> None:
    data_file = context.settings.data_file
    expected = context._state.get("disk_stamp")
    if expected is not None and data_manager.file_stamp(data_file) != expected:
        log.error("Workbook '%s' changed on disk since it was loaded", data_file)
        raise ConcurrencyConflict(
            f"Workbook '{data_file}' was modified by another writer; refresh and retry"
        )
    try:
        data_manager.save_workbook(context.workbook, destination=data_file)
    except OSError as exc:
        raise PersistenceFailure(f"Unable to save workbook '{data_file}': {exc}") from exc
    context._state["disk_stamp"] = data_manager.file_stamp(data_file)


def persist_context(context: RuntimeContext) -> None:
    """Save the in-memory workbook to the configured data file.

    Raises:
        ConcurrencyConflict: If another writer changed the file meanwhile.
        PersistenceFailure: If the file cannot be written.
    """
    with workbook_lock(context):
        _save_locked(context)
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook from disk, dropping unsaved edits and caches.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    refreshed = RuntimeContext(settings=context.settings, workbook=workbook)
    refreshed._state["disk_stamp"] = data_manager.file_stamp(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return refreshed


def payment_methods(context: RuntimeContext) -> Tuple[str, ...]:
    """Return the closed set of accepted payment methods, cash first."""

    return (CASH, *context.settings.channel_names)


# ---------------------------------------------------------------------------
# Catalog store
# ---------------------------------------------------------------------------


def list_items(context: RuntimeContext) -> List[data_manager.ItemRow]:
    """Return every catalog item in sheet order."""
    with workbook_lock(context):
        return list(_ensure_items_cache(context)["all"])


def get_item(context: RuntimeContext, item_id: str) -> data_manager.ItemRow:
    """Resolve an item by id.

    Raises:
        ItemNotFound: If ``item_id`` is absent from the catalog.
    """
    with workbook_lock(context):
        cache = _ensure_items_cache(context)
        try:
            return cache["by_id"][item_id]
        except KeyError:
            log.warning("Item lookup failed for id '%s'", item_id)
            raise ItemNotFound(item_id) from None


def add_item(
    context: RuntimeContext,
    *,
    item_code: str,
    name: str,
    unit_price: Decimal,
    current_stock: int,
    cost_price: Optional[Decimal] = None,
    min_stock_alert: int = 10,
    category: Union[ItemCategory, str] = ItemCategory.OTHERS,
    item_id: Optional[str] = None,
) -> data_manager.ItemRow:
    """Register a catalog item so it can be billed.

    Raises:
        ValidationError: If the code or id is already taken, a price is
            negative, the stock is negative or the category is unknown.
    """
    try:
        category_value = ItemCategory(category).value
    except ValueError as exc:
        raise ValidationError(f"Unknown category: {category}") from exc
    require_nonnegative_money(unit_price)
    if cost_price is not None:
        require_nonnegative_money(cost_price)
    if current_stock < 0:
        raise ValidationError("Stock must be zero or positive")

    record = data_manager.ItemRow(
        item_id=item_id or uuid.uuid4().hex,
        item_code=item_code.strip(),
        name=name.strip(),
        unit_price=unit_price,
        cost_price=cost_price,
        current_stock=current_stock,
        min_stock_alert=min_stock_alert,
        category=category_value,
    )
    with unit_of_work(context, f"add item {record.item_code}"):
        cache = _ensure_items_cache(context)
        if record.item_code in cache["by_code"]:
            raise ValidationError(f"Item code already exists: {record.item_code}")
        if record.item_id in cache["by_id"]:
            raise ValidationError(f"Item id already exists: {record.item_id}")
        data_manager.append_item(context.workbook, record)
    log.info("Added item '%s' (%s) with stock %d", record.item_code, record.name, record.current_stock)
    return record


# ---------------------------------------------------------------------------
# Payment-channel registry
# ---------------------------------------------------------------------------


def list_channels(context: RuntimeContext) -> List[data_manager.ChannelRow]:
    """Return the provisioned payment channels in sheet order."""
    with workbook_lock(context):
        return list(_ensure_channels_cache(context)["all"])


def find_channel(context: RuntimeContext, name: str) -> Optional[data_manager.ChannelRow]:
    """Return the channel record called ``name`` or ``None``."""
    with workbook_lock(context):
        return _ensure_channels_cache(context)["by_name"].get(name)


def provision_channels(context: RuntimeContext) -> List[data_manager.ChannelRow]:
    """Create zeroed records for configured channels that have none yet.

    Returns:
        list[data_manager.ChannelRow]: Records created by this call.
    """
    created: List[data_manager.ChannelRow] = []
    with unit_of_work(context, "provision channels"):
        existing = _ensure_channels_cache(context)["by_name"]
        for name in context.settings.channel_names:
            if name in existing:
                continue
            record = data_manager.ChannelRow(
                name=name,
                daily_count=0,
                transaction_count=0,
                total_amount=Decimal("0"),
            )
            data_manager.append_channel(context.workbook, record)
            created.append(record)
    for record in created:
        log.info("Provisioned payment channel '%s'", record.name)
    return created


# ---------------------------------------------------------------------------
# Bill ledger reads
# ---------------------------------------------------------------------------


def list_bills(context: RuntimeContext) -> List[Bill]:
    """Return the whole bill ledger in creation order."""
    with workbook_lock(context):
        return list(_ensure_bills_cache(context)["all"])


def get_bill(context: RuntimeContext, bill_id: str) -> Bill:
    """Resolve a bill by its internal id.

    Raises:
        BillNotFound: If no bill carries ``bill_id``.
    """
    with workbook_lock(context):
        bill = _ensure_bills_cache(context)["by_id"].get(bill_id)
    if bill is None:
        log.warning("Bill lookup failed for id '%s'", bill_id)
        raise BillNotFound(bill_id)
    return bill


def get_bill_by_number(context: RuntimeContext, bill_number: str) -> Bill:
    """Resolve a bill by its printed number, e.g. ``B20240523-007``.

    Raises:
        BillNotFound: If no bill carries ``bill_number``.
    """
    with workbook_lock(context):
        bill = _ensure_bills_cache(context)["by_number"].get(bill_number)
    if bill is None:
        log.warning("Bill lookup failed for number '%s'", bill_number)
        raise BillNotFound(bill_number)
    return bill


def find_bills(
    context: RuntimeContext,
    *,
    day: Union[str, date, None] = None,
    start_date: Union[str, date, None] = None,
    end_date: Union[str, date, None] = None,
    status: Union[BillStatus, str, None] = None,
    payment_method: Optional[str] = None,
) -> List[Bill]:
    """Filter the ledger for reporting screens.

    All filters are optional and combine with AND. ``day`` matches one
    calendar date; ``start_date``/``end_date`` bound an inclusive range.

    Returns:
        list[Bill]: Matching bills in creation order.
    """
    wanted_day = normalize_day(day) if day is not None else None
    start = normalize_day(start_date) if start_date is not None else None
    end = normalize_day(end_date) if end_date is not None else None
    wanted_status = _coerce_status(status).value if status is not None else None

    result: List[Bill] = []
    for bill in list_bills(context):
        if wanted_day is not None and bill.date != wanted_day:
            continue
        if start is not None and bill.date < start:
            continue
        if end is not None and bill.date > end:
            continue
        if wanted_status is not None and bill.status != wanted_status:
            continue
        if payment_method is not None and bill.payment_method != payment_method:
            continue
        result.append(bill)
    return result


def page_bills(
    context: RuntimeContext,
    page: int = 1,
    page_size: int = DEFAULT_BILLS_PAGE_SIZE,
    **filters: Any,
) -> BillsPage:
    """Return bills matching ``filters`` newest first, one page at a time.

    ``filters`` are the keyword filters accepted by :func:`find_bills`.

    Raises:
        ValidationError: If ``page`` or ``page_size`` is below one.
    """
    if page < 1 or page_size < 1:
        raise ValidationError("Page and page size must be at least 1")

    matches = sorted(find_bills(context, **filters), key=lambda bill: bill.created_at, reverse=True)
    start = (page - 1) * page_size
    return BillsPage(
        bills=tuple(matches[start : start + page_size]),
        page=page,
        page_size=page_size,
        total=len(matches),
        total_pages=math.ceil(len(matches) / page_size),
    )


def is_day_closed(context: RuntimeContext, day: Union[str, date]) -> bool:
    """Return ``True`` once a closing record exists for ``day``."""
    with workbook_lock(context):
        return data_manager.find_closing(context.workbook, normalize_day(day)) is not None


# ---------------------------------------------------------------------------
# Bill numbers
# ---------------------------------------------------------------------------


def format_bill_number(day: date, serial: int) -> str:
    """Format ``B<YYYYMMDD>-<serial>`` with the serial padded to three digits."""

    return f"{BILL_NUMBER_PREFIX}{day.strftime('%Y%m%d')}-{serial:0{BILL_SERIAL_WIDTH}d}"


def parse_bill_serial(bill_number: str) -> int:
    """Extract the serial from a bill number, returning 0 when malformed."""

    _, _, tail = bill_number.rpartition("-")
    return int(tail) if tail.isdigit() else 0


def _created_day(bill: Bill) -> Optional[date]:
    try:
        return datetime.fromisoformat(bill.created_at).date()
    except ValueError:
        return None


def find_highest_serial(context: RuntimeContext, day: Union[str, date]) -> int:
    """Return the highest serial used by bills created on ``day``, or 0.

    Bills are matched on their creation timestamp rather than on their
    ``date`` column.
    """
    target = date.fromisoformat(normalize_day(day))
    highest = 0
    for bill in list_bills(context):
        if _created_day(bill) == target:
            highest = max(highest, parse_bill_serial(bill.bill_number))
    return highest


def allocate_bill_number(context: RuntimeContext, moment: datetime) -> str:
    """Return the next bill number for the day of ``moment``.

    Callers must hold the unit of work so no other bill can claim the same
    serial between the scan and the append.
    """
    day = moment.date()
    serial = find_highest_serial(context, day) + 1
    return format_bill_number(day, serial)


# ---------------------------------------------------------------------------
# Billing engine
# ---------------------------------------------------------------------------


def require_positive_quantity(quantity: int) -> None:
    """Validate that a cart quantity is a whole number of at least one.

    Raises:
        ValidationError: If ``quantity`` is not an int or is below one.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        log.error("Quantity validation failed: %r is not a whole number", quantity)
        raise ValidationError("Quantity must be a whole number")
    if quantity < 1:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be at least 1")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is zero or positive.

    Raises:
        ValidationError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValidationError("Amount must be zero or positive")


def _coerce_status(value: Union[BillStatus, str]) -> BillStatus:
    try:
        return BillStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown bill status: {value}") from exc


def validate_bill_command(context: RuntimeContext, command: BillCommand) -> BillStatus:
    """Reject malformed carts before any record is read or written.

    Returns:
        BillStatus: The initial status the bill will be stored with.

    Raises:
        ValidationError: If the cart is empty, a quantity or price is out of
            range, the payment method is not one of the configured methods,
            the initial status is not pending/paid, or an override is
            negative.
    """
    if not command.lines:
        log.error("Rejected bill with an empty cart")
        raise ValidationError("Cart must contain at least one line")
    for line in command.lines:
        require_positive_quantity(line.quantity)
        if line.unit_price is not None:
            require_nonnegative_money(line.unit_price)

    methods = payment_methods(context)
    if command.payment_method not in methods:
        log.error("Unsupported payment method provided: %s", command.payment_method)
        raise ValidationError(
            f"Unsupported payment method: {command.payment_method}. Expected one of: {', '.join(methods)}"
        )

    status = _coerce_status(command.status)
    if status is BillStatus.CANCELLED:
        raise ValidationError("A bill cannot be created as cancelled")

    if command.total_amount is not None:
        require_nonnegative_money(command.total_amount)
    if command.total_item_count is not None and command.total_item_count < 0:
        raise ValidationError("Total item count must be zero or positive")
    return status


def _price_cart(
    context: RuntimeContext,
    command: BillCommand,
    bill_id: str,
) -> Tuple[List[data_manager.BillLineRow], Decimal, int]:
    """Check and decrement stock line by line, failing on the first bad line.

    Repeated items in one cart are checked against the stock left after the
    earlier lines, not against the catalog value.
    """
    remaining: Dict[str, int] = {}
    lines: List[data_manager.BillLineRow] = []
    subtotal = Decimal("0")
    item_count = 0

    for line_number, cart_line in enumerate(command.lines, start=1):
        item = get_item(context, cart_line.item_id)
        available = remaining.get(item.item_id, item.current_stock)
        if available < cart_line.quantity:
            log.warning(
                "Insufficient stock for '%s': requested %d, available %d",
                item.name,
                cart_line.quantity,
                available,
            )
            raise InsufficientStock(item.item_id, item.name, available, cart_line.quantity)

        remaining[item.item_id] = available - cart_line.quantity
        data_manager.update_item(
            context.workbook,
            item.item_id,
            field_values={"CurrentStock": remaining[item.item_id]},
        )
        if remaining[item.item_id] <= item.min_stock_alert:
            log.warning("Item '%s' is low on stock: %d left", item.name, remaining[item.item_id])

        price = cart_line.unit_price if cart_line.unit_price is not None else item.unit_price
        line_total = price * cart_line.quantity
        lines.append(
            data_manager.BillLineRow(
                bill_id=bill_id,
                line_number=line_number,
                item_id=item.item_id,
                item_code=item.item_code,
                name=item.name,
                quantity=cart_line.quantity,
                price=price,
                total=line_total,
            )
        )
        subtotal += line_total
        item_count += cart_line.quantity

    return lines, subtotal, item_count


def _record_channel_usage(context: RuntimeContext, payment_method: str, amount: Decimal) -> Optional[str]:
    """Bump the counters of the channel behind a UPI payment.

    Cash touches no channel. A configured method with no provisioned record
    is tolerated and simply not tracked.

    Returns:
        str | None: The channel name recorded on the bill.
    """
    if payment_method == CASH:
        return None
    channel = find_channel(context, payment_method)
    if channel is None:
        log.warning("No channel record for '%s'; bill proceeds without channel tracking", payment_method)
        return None

    daily_count = channel.daily_count + 1
    data_manager.update_channel(
        context.workbook,
        channel.name,
        field_values={
            "DailyCount": daily_count,
            "TransactionCount": channel.transaction_count + 1,
            "TotalAmount": channel.total_amount + amount,
        },
    )
    if daily_count > context.settings.daily_limit:
        log.warning(
            "Channel '%s' passed its daily limit: %d of %d",
            channel.name,
            daily_count,
            context.settings.daily_limit,
        )
    return channel.name


def merge_top_items(
    current: Sequence[data_manager.TopItem],
    lines: Sequence[data_manager.BillLineRow],
    *,
    limit: int = LIVE_TOP_ITEMS_LIMIT,
) -> Tuple[data_manager.TopItem, ...]:
    """Fold bill lines into a ranked item list.

    Entries are matched by item id, re-sorted by revenue (highest first,
    ties keep their previous order) and cut to ``limit``.
    """
    merged: Dict[str, data_manager.TopItem] = {item.item_id: item for item in current}
    for line in lines:
        existing = merged.get(line.item_id)
        if existing is None:
            merged[line.item_id] = data_manager.TopItem(
                item_id=line.item_id,
                name=line.name,
                quantity=line.quantity,
                revenue=line.total,
            )
        else:
            merged[line.item_id] = replace(
                existing,
                quantity=existing.quantity + line.quantity,
                revenue=existing.revenue + line.total,
            )
    ranked = sorted(merged.values(), key=lambda item: item.revenue, reverse=True)
    return tuple(ranked[:limit])


def apply_bill_to_summary(
    summary: Optional[data_manager.LiveSummaryRow],
    bill: Bill,
    *,
    updated_at: str,
) -> data_manager.LiveSummaryRow:
    """Return the running summary for ``bill.date`` with ``bill`` added."""

    if summary is None:
        summary = data_manager.LiveSummaryRow(
            date=bill.date,
            total_sales=Decimal("0"),
            total_bills=0,
            payment_summary={},
            top_items=(),
        )
    payment_summary = dict(summary.payment_summary)
    method_total = payment_summary.get(bill.payment_method, data_manager.MethodTotal())
    payment_summary[bill.payment_method] = data_manager.MethodTotal(
        amount=method_total.amount + bill.total_amount,
        count=method_total.count + 1,
    )
    return replace(
        summary,
        total_sales=summary.total_sales + bill.total_amount,
        total_bills=summary.total_bills + 1,
        payment_summary=payment_summary,
        top_items=merge_top_items(summary.top_items, bill.lines),
        updated_at=updated_at,
    )


def get_live_summary(context: RuntimeContext, day: Union[str, date]) -> Optional[data_manager.LiveSummaryRow]:
    """Return the incrementally maintained summary for ``day``, if any."""
    with workbook_lock(context):
        return data_manager.find_live_summary(context.workbook, normalize_day(day))


def create_bill(context: RuntimeContext, command: BillCommand) -> Bill:
    """Turn a cart into a persisted bill in a single unit of work.

    The workflow validates the cart, refuses closed days, checks and
    decrements stock line by line, prices each line from the cart price or
    the catalog price, bumps the UPI channel counters, allocates the next
    bill number for the day, appends the bill and folds it into the day's
    running summary. Any failure restores every touched sheet.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        command (BillCommand): Cart, payment method and optional overrides.

    Returns:
        Bill: The persisted bill with its lines.

    Raises:
        ValidationError: For malformed carts or unknown payment methods.
        DayAlreadyClosed: If the bill's date has been closed.
        ItemNotFound: If a cart line names an unknown item.
        InsufficientStock: If a line asks for more than is left.
        ConcurrencyConflict: If the workbook is busy or changed on disk.
        PersistenceFailure: If the commit-time save fails.
    """
    status = validate_bill_command(context, command)
    moment = resolve_timestamp(command.timestamp)
    bill_date = moment.date().isoformat()
    bill_id = uuid.uuid4().hex

    with unit_of_work(context, f"bill for {bill_date}"):
        if data_manager.find_closing(context.workbook, bill_date) is not None:
            log.warning("Rejected bill for closed day %s", bill_date)
            raise DayAlreadyClosed(bill_date)

        lines, subtotal, item_count = _price_cart(context, command, bill_id)

        total_amount = command.total_amount if command.total_amount is not None else subtotal
        total_items = command.total_item_count if command.total_item_count is not None else item_count
        if total_amount != subtotal or total_items != item_count:
            log.warning(
                "Caller totals override computed totals: amount %s vs %s, items %s vs %s",
                total_amount,
                subtotal,
                total_items,
                item_count,
            )

        qr_used = _record_channel_usage(context, command.payment_method, total_amount)

        bill = data_manager.BillRow(
            bill_id=bill_id,
            bill_number=allocate_bill_number(context, moment),
            date=bill_date,
            time=moment.strftime("%H:%M:%S"),
            subtotal=subtotal,
            total_amount=total_amount,
            total_items=total_items,
            payment_method=command.payment_method,
            qr_used=qr_used,
            status=status.value,
            created_by=context.settings.operator,
            created_at=moment.isoformat(),
            lines=tuple(lines),
        )
        data_manager.append_bill(context.workbook, bill)

        summary = data_manager.find_live_summary(context.workbook, bill_date)
        data_manager.upsert_live_summary(
            context.workbook,
            apply_bill_to_summary(summary, bill, updated_at=moment.isoformat()),
        )

    log.info(
        "Created bill '%s' (%d items, total=%s, method=%s)",
        bill.bill_number,
        bill.total_items,
        bill.total_amount,
        bill.payment_method,
    )
    return bill


def update_bill_status(context: RuntimeContext, bill_id: str, new_status: Union[BillStatus, str]) -> Bill:
    """Move a pending bill to paid or cancelled.

    Stock, channel counters and summaries are left as they are.

    Raises:
        BillNotFound: If ``bill_id`` is unknown.
        InvalidStatusTransition: If the bill is not pending, or the target
            is not paid/cancelled.
        DayAlreadyClosed: If the bill's day has been closed.
        ValidationError: If ``new_status`` is not a known status.
    """
    target = _coerce_status(new_status)
    with unit_of_work(context, f"status change for {bill_id}"):
        bill = get_bill(context, bill_id)
        if data_manager.find_closing(context.workbook, bill.date) is not None:
            log.warning("Rejected status change for '%s' on closed day %s", bill.bill_number, bill.date)
            raise DayAlreadyClosed(bill.date)
        current = _coerce_status(bill.status)
        if target not in ALLOWED_STATUS_TRANSITIONS[current]:
            log.warning(
                "Rejected status change for '%s': %s -> %s",
                bill.bill_number,
                current.value,
                target.value,
            )
            raise InvalidStatusTransition(bill.bill_number, current.value, target.value)
        data_manager.update_bill(context.workbook, bill_id, field_values={"Status": target.value})

    log.info("Bill '%s' moved from %s to %s", bill.bill_number, current.value, target.value)
    return replace(bill, status=target.value)
