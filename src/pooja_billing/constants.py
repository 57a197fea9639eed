"""Enumerations and fixed values shared across the billing modules.

The data access layer, the billing/closing engines and the CLI all read the
sheet names, statuses and limits from here so the workbook layout has a single
source of truth.
"""

from __future__ import annotations

from enum import Enum


# Bumped whenever a sheet gains, loses or reorders a column.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Cash is a payment method without a channel record, QR code or daily cap.
CASH = "Cash"

# Channel identities provisioned when config.ini does not list its own.
DEFAULT_CHANNEL_NAMES: tuple[str, ...] = ("Mohan Kumar", "Nalini", "Lalitha", "Hemath")
DEFAULT_DAILY_LIMIT = 20
DEFAULT_OPERATOR = "owner"

BILL_NUMBER_PREFIX = "B"
BILL_SERIAL_WIDTH = 3

LIVE_TOP_ITEMS_LIMIT = 10
CLOSING_TOP_ITEMS_LIMIT = 10
PREVIEW_TOP_ITEMS_LIMIT = 5
DEFAULT_CLOSED_DAYS_PAGE_SIZE = 30
DEFAULT_BILLS_PAGE_SIZE = 50


class BillStatus(str, Enum):
    """Lifecycle states of a bill."""

    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


# Only a pending bill may still change state.
ALLOWED_STATUS_TRANSITIONS: dict[BillStatus, frozenset[BillStatus]] = {
    BillStatus.PENDING: frozenset({BillStatus.PAID, BillStatus.CANCELLED}),
    BillStatus.PAID: frozenset(),
    BillStatus.CANCELLED: frozenset(),
}


class ItemCategory(str, Enum):
    """Catalog categories stocked by the store."""

    INCENSE = "Incense"
    IDOLS = "Idols"
    BOOKS = "Books"
    POOJA_ITEMS = "Pooja Items"
    OTHERS = "Others"


class SheetName(str, Enum):
    """Worksheets managed by the data access layer."""

    ITEMS = "Items"
    PAYMENT_CHANNELS = "PaymentChannels"
    BILLS = "Bills"
    BILL_LINES = "BillLines"
    LIVE_SUMMARIES = "LiveSummaries"
    DAILY_CLOSINGS = "DailyClosings"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "CASH",
    "DEFAULT_CHANNEL_NAMES",
    "DEFAULT_DAILY_LIMIT",
    "DEFAULT_OPERATOR",
    "BILL_NUMBER_PREFIX",
    "BILL_SERIAL_WIDTH",
    "LIVE_TOP_ITEMS_LIMIT",
    "CLOSING_TOP_ITEMS_LIMIT",
    "PREVIEW_TOP_ITEMS_LIMIT",
    "DEFAULT_CLOSED_DAYS_PAGE_SIZE",
    "DEFAULT_BILLS_PAGE_SIZE",
    "BillStatus",
    "ALLOWED_STATUS_TRANSITIONS",
    "ItemCategory",
    "SheetName",
]
