"""Data access layer for the pooja store billing workbook.

This module reads from and writes to the master ``.xlsx`` workbook. It knows
about sheets, columns and cell encodings; billing and closing rules belong in
:mod:`pooja_billing.core_logic` and :mod:`pooja_billing.closing`.

The public API covers four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, saving, reloading and stamping the file.
3. Sheet operations: typed iteration, appends, keyed updates and upserts for
   items, payment channels, bills, bill lines and daily summaries.
4. Unit-of-work support: snapshotting and restoring every managed sheet so
   the engines can roll back a half-applied operation.
"""


from __future__ import annotations

import configparser
import json
from dataclasses import dataclass, field, replace
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import openpyxl
from openpyxl.workbook import Workbook

from . import log
from .constants import DEFAULT_DAILY_LIMIT, DEFAULT_OPERATOR, SheetName


CONFIG_FILE_NAME = "config.ini"
ITEMS_SHEET = SheetName.ITEMS.value
CHANNELS_SHEET = SheetName.PAYMENT_CHANNELS.value
BILLS_SHEET = SheetName.BILLS.value
BILL_LINES_SHEET = SheetName.BILL_LINES.value
LIVE_SUMMARIES_SHEET = SheetName.LIVE_SUMMARIES.value
DAILY_CLOSINGS_SHEET = SheetName.DAILY_CLOSINGS.value

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    ITEMS_SHEET: [
        "ItemID",
        "ItemCode",
        "Name",
        "UnitPrice",
        "CostPrice",
        "CurrentStock",
        "MinStockAlert",
        "Category",
    ],
    CHANNELS_SHEET: [
        "Name",
        "DailyCount",
        "TransactionCount",
        "TotalAmount",
        "LastResetDate",
    ],
    BILLS_SHEET: [
        "BillID",
        "BillNumber",
        "Date",
        "Time",
        "Subtotal",
        "TotalAmount",
        "TotalItems",
        "PaymentMethod",
        "QRUsed",
        "Status",
        "CreatedBy",
        "CreatedAt",
    ],
    BILL_LINES_SHEET: [
        "BillID",
        "LineNumber",
        "ItemID",
        "ItemCode",
        "Name",
        "Quantity",
        "Price",
        "Total",
    ],
    LIVE_SUMMARIES_SHEET: [
        "Date",
        "TotalSales",
        "TotalBills",
        "PaymentSummary",
        "TopItems",
        "UpdatedAt",
    ],
    DAILY_CLOSINGS_SHEET: [
        "Date",
        "TotalSales",
        "TotalBills",
        "PaymentSummary",
        "TopItems",
        "CashVerified",
        "Notes",
        "ClosedBy",
        "ClosingTime",
    ],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    channel_names: Tuple[str, ...]
    daily_limit: int = DEFAULT_DAILY_LIMIT
    operator: str = DEFAULT_OPERATOR
    auto_save: bool = True
    lock_timeout: float = 10.0


@dataclass(frozen=True)
class ItemRow:
    """In-memory view of a row from the ``Items`` sheet."""

    item_id: str
    item_code: str
    name: str
    unit_price: Decimal
    cost_price: Optional[Decimal]
    current_stock: int
    min_stock_alert: int
    category: str


@dataclass(frozen=True)
class ChannelRow:
    """In-memory view of a row from the ``PaymentChannels`` sheet."""

    name: str
    daily_count: int
    transaction_count: int
    total_amount: Decimal
    last_reset_date: Optional[str] = None


@dataclass(frozen=True)
class BillLineRow:
    """One priced line of a bill, snapshotted at sale time."""

    bill_id: str
    line_number: int
    item_id: str
    item_code: str
    name: str
    quantity: int
    price: Decimal
    total: Decimal


@dataclass(frozen=True)
class BillRow:
    """A bill header joined with its lines.

    ``lines`` is stored on the ``BillLines`` sheet and attached by
    :func:`iter_bills`; it is never written to the ``Bills`` sheet itself.
    """

    bill_id: str
    bill_number: str
    date: str
    time: str
    subtotal: Decimal
    total_amount: Decimal
    total_items: int
    payment_method: str
    qr_used: Optional[str]
    status: str
    created_by: str
    created_at: str
    lines: Tuple[BillLineRow, ...] = field(default=(), compare=False)


@dataclass(frozen=True)
class MethodTotal:
    """Amount and bill count attributed to one payment method."""

    amount: Decimal = Decimal("0")
    count: int = 0


@dataclass(frozen=True)
class TopItem:
    """Revenue and quantity sold for one item within a day."""

    item_id: str
    name: str
    quantity: int
    revenue: Decimal


@dataclass(frozen=True)
class LiveSummaryRow:
    """Running totals for a day, rebuilt incrementally as bills arrive."""

    date: str
    total_sales: Decimal
    total_bills: int
    payment_summary: Dict[str, MethodTotal]
    top_items: Tuple[TopItem, ...]
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class ClosingRow:
    """The frozen summary written once when a day is closed."""

    date: str
    total_sales: Decimal
    total_bills: int
    payment_summary: Dict[str, MethodTotal]
    top_items: Tuple[TopItem, ...]
    cash_verified: bool
    notes: str
    closed_by: str
    closing_time: str


SheetSnapshot = Dict[str, List[Tuple[Any, ...]]]


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    An explicit path wins without verification. Otherwise the search walks up
    from the current working directory and returns the first
    ``CONFIG_FILE_NAME`` found.

    Args:
        explicit_path (Path | None): Optional path to use instead of
            performing the upward search.

    Returns:
        Path: The supplied path or the discovered configuration file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of individual entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion
            and resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_channel_names(raw: str) -> Tuple[str, ...]:
    """Split the comma separated ``[Channels] Names`` entry.

    Blank entries are dropped and duplicates collapse onto their first
    occurrence so the channel set stays a closed, ordered list.
    """

    names: List[str] = []
    for part in raw.split(","):
        name = part.strip()
        if name and name not in names:
            names.append(name)
    return tuple(names)


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``DataFile``, ``SchemaVersion`` and the channel list are required.
    Everything else falls back to the package defaults. Relative data file
    paths are anchored to ``base_path`` (or the working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve a relative
            ``DataFile``.

    Returns:
        ConfigSettings: Immutable settings with a resolved data file path.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If a numeric or boolean option cannot be parsed, or the
            channel list is empty.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        schema_version = parser.get("System", "SchemaVersion")
        channels_raw = parser.get("Channels", "Names")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    channel_names = parse_channel_names(channels_raw)
    if not channel_names:
        raise ValueError("[Channels] Names must list at least one channel")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        store_name=parser.get("System", "StoreName", fallback="Pooja Store"),
        schema_version=schema_version,
        channel_names=channel_names,
        daily_limit=parser.getint("Channels", "DailyLimit", fallback=DEFAULT_DAILY_LIMIT),
        operator=parser.get("Defaults", "Operator", fallback=DEFAULT_OPERATOR),
        auto_save=parser.getboolean("System", "AutoSave", fallback=True),
        lock_timeout=parser.getfloat("System", "LockTimeout", fallback=10.0),
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def file_stamp(data_file: Path) -> Optional[int]:
    """Return the workbook's modification stamp in nanoseconds, if it exists."""

    try:
        return Path(data_file).expanduser().resolve().stat().st_mtime_ns
    except FileNotFoundError:
        return None


def _iter_sheet(workbook: Workbook, sheet_name: str) -> Iterable[Tuple[Any, ...]]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_items(workbook: Workbook) -> Iterable[ItemRow]:
    """Yield every catalog item in sheet order."""

    for raw in _iter_sheet(workbook, ITEMS_SHEET):
        yield deserialize_item(raw)


def iter_channels(workbook: Workbook) -> Iterable[ChannelRow]:
    """Yield every provisioned payment channel in sheet order."""

    for raw in _iter_sheet(workbook, CHANNELS_SHEET):
        yield deserialize_channel(raw)


def iter_bill_lines(workbook: Workbook) -> Iterable[BillLineRow]:
    """Yield every bill line in sheet order."""

    for raw in _iter_sheet(workbook, BILL_LINES_SHEET):
        yield deserialize_bill_line(raw)


def iter_bills(workbook: Workbook) -> Iterable[BillRow]:
    """Yield bill headers in ledger order with their lines attached.

    Lines are grouped by ``BillID`` in a single pass over ``BillLines`` and
    sorted by line number before being attached to the matching header.
    """

    lines_by_bill: Dict[str, List[BillLineRow]] = {}
    for line in iter_bill_lines(workbook):
        lines_by_bill.setdefault(line.bill_id, []).append(line)

    for raw in _iter_sheet(workbook, BILLS_SHEET):
        header = deserialize_bill(raw)
        lines = sorted(lines_by_bill.get(header.bill_id, ()), key=lambda line: line.line_number)
        yield replace(header, lines=tuple(lines))


def iter_live_summaries(workbook: Workbook) -> Iterable[LiveSummaryRow]:
    """Yield the running per-day summaries."""

    for raw in _iter_sheet(workbook, LIVE_SUMMARIES_SHEET):
        yield deserialize_live_summary(raw)


def iter_closings(workbook: Workbook) -> Iterable[ClosingRow]:
    """Yield the frozen closing records."""

    for raw in _iter_sheet(workbook, DAILY_CLOSINGS_SHEET):
        yield deserialize_closing(raw)


def find_closing(workbook: Workbook, date: str) -> Optional[ClosingRow]:
    """Return the closing stored for ``date`` or ``None`` when still open."""

    for closing in iter_closings(workbook):
        if closing.date == date:
            return closing
    return None


def find_live_summary(workbook: Workbook, date: str) -> Optional[LiveSummaryRow]:
    """Return the running summary for ``date`` if any bill touched it."""

    for summary in iter_live_summaries(workbook):
        if summary.date == date:
            return summary
    return None


def append_item(workbook: Workbook, record: ItemRow) -> None:
    """Append a catalog item to the ``Items`` worksheet."""

    workbook[ITEMS_SHEET].append(serialize_item(record))


def append_channel(workbook: Workbook, record: ChannelRow) -> None:
    """Append a payment channel to the ``PaymentChannels`` worksheet."""

    workbook[CHANNELS_SHEET].append(serialize_channel(record))


def append_bill(workbook: Workbook, record: BillRow) -> None:
    """Append a bill header and each of its lines.

    The header goes to ``Bills`` and one row per line goes to ``BillLines``;
    both appends happen inside whatever unit of work the caller holds.
    """

    workbook[BILLS_SHEET].append(serialize_bill(record))
    lines_sheet = workbook[BILL_LINES_SHEET]
    for line in record.lines:
        lines_sheet.append(serialize_bill_line(line))


def upsert_live_summary(workbook: Workbook, record: LiveSummaryRow) -> None:
    """Replace the running summary row for ``record.date`` or append it."""

    row_index = locate_row(workbook, LIVE_SUMMARIES_SHEET, "Date", record.date)
    values = serialize_live_summary(record)
    if row_index is None:
        workbook[LIVE_SUMMARIES_SHEET].append(values)
        return
    _write_row(workbook[LIVE_SUMMARIES_SHEET], row_index, values)


def insert_closing_if_absent(workbook: Workbook, record: ClosingRow) -> bool:
    """Append a closing record unless one already exists for its date.

    Returns:
        bool: ``True`` when the record was written, ``False`` when the date
            was already closed and nothing changed.
    """

    if locate_row(workbook, DAILY_CLOSINGS_SHEET, "Date", record.date) is not None:
        return False
    workbook[DAILY_CLOSINGS_SHEET].append(serialize_closing(record))
    return True


def update_item(workbook: Workbook, item_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns of the item whose ``ItemID`` matches.

    Raises:
        KeyError: If the item or any referenced column cannot be found.
    """

    _update_fields(workbook, ITEMS_SHEET, "ItemID", item_id, field_values, label="Item")


def update_channel(workbook: Workbook, name: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns of the payment channel called ``name``.

    Raises:
        KeyError: If the channel or any referenced column cannot be found.
    """

    _update_fields(workbook, CHANNELS_SHEET, "Name", name, field_values, label="Channel")


def update_bill(workbook: Workbook, bill_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected header columns of the bill whose ``BillID`` matches.

    Raises:
        KeyError: If the bill or any referenced column cannot be found.
    """

    _update_fields(workbook, BILLS_SHEET, "BillID", bill_id, field_values, label="Bill")


def _update_fields(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: str,
    field_values: Mapping[str, Any],
    *,
    label: str,
) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{label} not found: {key_value}")

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)

    for column in field_values:
        if column not in header_map:
            raise KeyError(f"Unknown {label.lower()} field: {column}")
    for column, value in field_values.items():
        sheet.cell(row=row_index, column=header_map[column], value=value)


def _header_map(sheet) -> Dict[Any, int]:
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def _write_row(sheet, row_index: int, values: Sequence[object]) -> None:
    for column_index, value in enumerate(values, start=1):
        sheet.cell(row=row_index, column=column_index, value=value)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find the first row whose ``key_column`` equals ``key_value``.

    Returns:
        int | None: 1-based Excel row index when a match is found.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row and row[key_col_index - 1] == key_value:
            return row_idx

    return None


def snapshot_sheets(workbook: Workbook, sheet_names: Iterable[str] = SHEET_COLUMNS) -> SheetSnapshot:
    """Capture the data rows of every managed sheet.

    The snapshot is a plain copy of cell values (header excluded) that
    :func:`restore_sheets` can write back after a failed unit of work.
    """

    return {
        name: [tuple(row) for row in workbook[name].iter_rows(min_row=2, values_only=True)]
        for name in sheet_names
    }


def restore_sheets(workbook: Workbook, snapshot: SheetSnapshot) -> None:
    """Write a snapshot back so each sheet matches its captured state.

    Captured rows are rewritten in place and rows appended since the
    snapshot are removed.
    """

    for name, rows in snapshot.items():
        sheet = workbook[name]
        width = max(len(SHEET_COLUMNS.get(name, ())), sheet.max_column)
        for offset, values in enumerate(rows):
            padded = list(values) + [None] * (width - len(values))
            _write_row(sheet, offset + 2, padded)
        first_extra = len(rows) + 2
        if sheet.max_row >= first_extra:
            sheet.delete_rows(first_extra, sheet.max_row - first_extra + 1)
        log.debug("Restored sheet %s to %d rows", name, len(rows))


def _to_decimal(raw: object, default: str = "0") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _to_int(raw: object) -> int:
    return int(raw) if raw is not None else 0


def _optional_str(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def _bill_fields(record: BillRow) -> Dict[str, Any]:
    return {
        "bill_id": record.bill_id,
        "bill_number": record.bill_number,
        "date": record.date,
        "time": record.time,
        "subtotal": record.subtotal,
        "total_amount": record.total_amount,
        "total_items": record.total_items,
        "payment_method": record.payment_method,
        "qr_used": record.qr_used,
        "status": record.status,
        "created_by": record.created_by,
        "created_at": record.created_at,
    }


def encode_payment_summary(summary: Mapping[str, MethodTotal]) -> str:
    """Encode the per-method totals as JSON with string amounts."""

    return json.dumps(
        {method: {"amount": str(total.amount), "count": total.count} for method, total in summary.items()}
    )


def decode_payment_summary(raw: object) -> Dict[str, MethodTotal]:
    """Decode :func:`encode_payment_summary` output; blank cells yield ``{}``."""

    if not raw:
        return {}
    payload = json.loads(str(raw))
    return {
        method: MethodTotal(amount=Decimal(str(values.get("amount", "0"))), count=int(values.get("count", 0)))
        for method, values in payload.items()
    }


def encode_top_items(items: Sequence[TopItem]) -> str:
    """Encode the ranked item list as JSON with string revenues."""

    return json.dumps(
        [
            {"itemId": item.item_id, "name": item.name, "quantity": item.quantity, "revenue": str(item.revenue)}
            for item in items
        ]
    )


def decode_top_items(raw: object) -> Tuple[TopItem, ...]:
    """Decode :func:`encode_top_items` output; blank cells yield ``()``."""

    if not raw:
        return ()
    return tuple(
        TopItem(
            item_id=str(entry["itemId"]),
            name=str(entry.get("name", "")),
            quantity=int(entry.get("quantity", 0)),
            revenue=Decimal(str(entry.get("revenue", "0"))),
        )
        for entry in json.loads(str(raw))
    )


def serialize_item(record: ItemRow) -> list[object]:
    """Arrange an item in ``Items`` column order."""

    return [
        record.item_id,
        record.item_code,
        record.name,
        record.unit_price,
        record.cost_price,
        record.current_stock,
        record.min_stock_alert,
        record.category,
    ]


def serialize_channel(record: ChannelRow) -> list[object]:
    """Arrange a channel in ``PaymentChannels`` column order."""

    return [
        record.name,
        record.daily_count,
        record.transaction_count,
        record.total_amount,
        record.last_reset_date,
    ]


def serialize_bill(record: BillRow) -> list[object]:
    """Arrange a bill header in ``Bills`` column order; lines are excluded."""

    return list(_bill_fields(record).values())


def serialize_bill_line(record: BillLineRow) -> list[object]:
    """Arrange a bill line in ``BillLines`` column order."""

    return [
        record.bill_id,
        record.line_number,
        record.item_id,
        record.item_code,
        record.name,
        record.quantity,
        record.price,
        record.total,
    ]


def serialize_live_summary(record: LiveSummaryRow) -> list[object]:
    """Arrange a running summary in ``LiveSummaries`` column order."""

    return [
        record.date,
        record.total_sales,
        record.total_bills,
        encode_payment_summary(record.payment_summary),
        encode_top_items(record.top_items),
        record.updated_at,
    ]


def serialize_closing(record: ClosingRow) -> list[object]:
    """Arrange a closing record in ``DailyClosings`` column order."""

    return [
        record.date,
        record.total_sales,
        record.total_bills,
        encode_payment_summary(record.payment_summary),
        encode_top_items(record.top_items),
        record.cash_verified,
        record.notes,
        record.closed_by,
        record.closing_time,
    ]


def deserialize_item(raw_row: Sequence[object]) -> ItemRow:
    """Convert a raw ``Items`` row into an :class:`ItemRow`.

    Prices become :class:`~decimal.Decimal`, stock counts become ``int`` and
    identifiers are coerced to ``str`` so numeric-looking codes typed into
    Excel do not change type.
    """

    item_id, item_code, name, unit_price, cost_price, stock, min_alert, category = raw_row[:8]
    return ItemRow(
        item_id=str(item_id),
        item_code=str(item_code) if item_code is not None else "",
        name=str(name) if name is not None else "",
        unit_price=_to_decimal(unit_price, "0.00"),
        cost_price=_to_decimal(cost_price) if cost_price is not None else None,
        current_stock=_to_int(stock),
        min_stock_alert=_to_int(min_alert),
        category=str(category) if category is not None else "",
    )


def deserialize_channel(raw_row: Sequence[object]) -> ChannelRow:
    """Convert a raw ``PaymentChannels`` row into a :class:`ChannelRow`."""

    name, daily_count, transaction_count, total_amount, last_reset = raw_row[:5]
    return ChannelRow(
        name=str(name),
        daily_count=_to_int(daily_count),
        transaction_count=_to_int(transaction_count),
        total_amount=_to_decimal(total_amount, "0.00"),
        last_reset_date=_optional_str(last_reset),
    )


def deserialize_bill(raw_row: Sequence[object]) -> BillRow:
    """Convert a raw ``Bills`` row into a header-only :class:`BillRow`."""

    (
        bill_id,
        bill_number,
        date,
        time,
        subtotal,
        total_amount,
        total_items,
        payment_method,
        qr_used,
        status,
        created_by,
        created_at,
    ) = raw_row[:12]

    return BillRow(
        bill_id=str(bill_id),
        bill_number=str(bill_number) if bill_number is not None else "",
        date=str(date) if date is not None else "",
        time=str(time) if time is not None else "",
        subtotal=_to_decimal(subtotal, "0.00"),
        total_amount=_to_decimal(total_amount, "0.00"),
        total_items=_to_int(total_items),
        payment_method=str(payment_method) if payment_method is not None else "",
        qr_used=_optional_str(qr_used),
        status=str(status) if status is not None else "",
        created_by=str(created_by) if created_by is not None else "",
        created_at=str(created_at) if created_at is not None else "",
    )


def deserialize_bill_line(raw_row: Sequence[object]) -> BillLineRow:
    """Convert a raw ``BillLines`` row into a :class:`BillLineRow`."""

    bill_id, line_number, item_id, item_code, name, quantity, price, total = raw_row[:8]
    return BillLineRow(
        bill_id=str(bill_id),
        line_number=_to_int(line_number),
        item_id=str(item_id),
        item_code=str(item_code) if item_code is not None else "",
        name=str(name) if name is not None else "",
        quantity=_to_int(quantity),
        price=_to_decimal(price, "0.00"),
        total=_to_decimal(total, "0.00"),
    )


def deserialize_live_summary(raw_row: Sequence[object]) -> LiveSummaryRow:
    """Convert a raw ``LiveSummaries`` row into a :class:`LiveSummaryRow`."""

    date, total_sales, total_bills, payment_summary, top_items, updated_at = raw_row[:6]
    return LiveSummaryRow(
        date=str(date),
        total_sales=_to_decimal(total_sales, "0.00"),
        total_bills=_to_int(total_bills),
        payment_summary=decode_payment_summary(payment_summary),
        top_items=decode_top_items(top_items),
        updated_at=_optional_str(updated_at),
    )


def deserialize_closing(raw_row: Sequence[object]) -> ClosingRow:
    """Convert a raw ``DailyClosings`` row into a :class:`ClosingRow`."""

    (
        date,
        total_sales,
        total_bills,
        payment_summary,
        top_items,
        cash_verified,
        notes,
        closed_by,
        closing_time,
    ) = raw_row[:9]
    return ClosingRow(
        date=str(date),
        total_sales=_to_decimal(total_sales, "0.00"),
        total_bills=_to_int(total_bills),
        payment_summary=decode_payment_summary(payment_summary),
        top_items=decode_top_items(top_items),
        cash_verified=bool(cash_verified),
        notes=str(notes) if notes is not None else "",
        closed_by=str(closed_by) if closed_by is not None else "",
        closing_time=str(closing_time) if closing_time is not None else "",
    )
