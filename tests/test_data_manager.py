"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from decimal import Decimal
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from pooja_billing import constants, data_manager  # noqa: E402


def _bill(bill_id: str, number: str, *, lines=()) -> data_manager.BillRow:
    return data_manager.BillRow(
        bill_id=bill_id,
        bill_number=number,
        date="2024-05-23",
        time="09:30:00",
        subtotal=Decimal("20.00"),
        total_amount=Decimal("20.00"),
        total_items=2,
        payment_method=constants.CASH,
        qr_used=None,
        status=constants.BillStatus.PAID.value,
        created_by="owner",
        created_at="2024-05-23T09:30:00+00:00",
        lines=tuple(lines),
    )


def _line(bill_id: str, line_number: int, item_id: str = "CAMPHOR") -> data_manager.BillLineRow:
    return data_manager.BillLineRow(
        bill_id=bill_id,
        line_number=line_number,
        item_id=item_id,
        item_code=f"CODE-{item_id}",
        name=item_id.title(),
        quantity=1,
        price=Decimal("10.00"),
        total=Decimal("10.00"),
    )


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    result = data_manager.find_config_file(config_file)
    assert result == config_file


def test_find_config_file_discovers_in_parent_directory(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=pooja_master.xlsx")
    nested = tmp_path / "counter" / "till"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file() == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "StoreName") == "Test Pooja Store"
    assert parser.get("Defaults", "Operator") == "owner"


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True)
    parser = configparser.ConfigParser()
    parser.read(bundle.config_path)

    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.channel_names == constants.DEFAULT_CHANNEL_NAMES
    assert settings.daily_limit == 20
    assert settings.operator == "owner"


def test_parse_settings_applies_defaults_for_optional_entries(tmp_path):
    """Only DataFile, SchemaVersion and the channel names are mandatory."""

    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile = data.xlsx\nSchemaVersion = 1.0.0\n\n[Channels]\nNames = Nalini\n"
    )

    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.channel_names == ("Nalini",)
    assert settings.auto_save is True
    assert settings.lock_timeout == 10.0
    assert settings.daily_limit == constants.DEFAULT_DAILY_LIMIT


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_rejects_empty_channel_list(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string("[System]\nDataFile = d.xlsx\nSchemaVersion = 1.0.0\n\n[Channels]\nNames = , ,\n")

    with pytest.raises(ValueError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_channel_names_strips_and_deduplicates():
    assert data_manager.parse_channel_names(" Nalini, Hemath ,Nalini,, ") == ("Nalini", "Hemath")


def test_open_workbook_returns_openpyxl_instance(master_workbook_path):
    """open_workbook should hand back a loaded Workbook object."""

    workbook = data_manager.open_workbook(master_workbook_path)
    assert isinstance(workbook, OpenpyxlWorkbook)


def test_open_workbook_missing_file_raises(tmp_path):
    """Missing workbook files should yield FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_master_workbook_has_every_sheet_and_channel(master_workbook_path):
    """The bootstrap lays out all managed sheets and one row per channel."""

    workbook = data_manager.open_workbook(master_workbook_path)

    assert set(workbook.sheetnames) == set(data_manager.SHEET_COLUMNS)
    for name, columns in data_manager.SHEET_COLUMNS.items():
        header = [cell.value for cell in workbook[name][1]]
        assert header == list(columns)
    channels = list(data_manager.iter_channels(workbook))
    assert [channel.name for channel in channels] == list(constants.DEFAULT_CHANNEL_NAMES)
    assert all(channel.daily_count == 0 for channel in channels)


def test_save_workbook_with_destination_creates_copy(master_workbook_path, tmp_path):
    """Providing a destination should create a new file independent of the source."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_item(
        workbook,
        data_manager.ItemRow("KUMKUM", "K-01", "Kumkum", Decimal("15"), None, 30, 5, "Pooja Items"),
    )
    copy_path = tmp_path / "copies" / "copy.xlsx"
    data_manager.save_workbook(workbook, destination=copy_path)

    copy = openpyxl.load_workbook(copy_path)
    rows = list(copy[data_manager.ITEMS_SHEET].iter_rows(min_row=2, values_only=True))
    assert rows[0][:3] == ("KUMKUM", "K-01", "Kumkum")


def test_file_stamp_is_int_for_existing_file_and_none_when_missing(master_workbook_path, tmp_path):
    assert data_manager.file_stamp(tmp_path / "nothing.xlsx") is None
    assert isinstance(data_manager.file_stamp(master_workbook_path), int)


def test_item_round_trips_through_disk(master_workbook_path):
    """Prices reload as Decimal and ids stay strings after a save."""

    workbook = data_manager.open_workbook(master_workbook_path)
    item = data_manager.ItemRow("1001", "1001", "Sandal Paste", Decimal("12.50"), Decimal("8"), 4, 2, "Pooja Items")
    data_manager.append_item(workbook, item)
    data_manager.save_workbook(workbook, master_workbook_path)

    [reloaded] = list(data_manager.iter_items(data_manager.refresh_workbook(master_workbook_path)))

    assert reloaded == item


def test_iter_bills_attaches_lines_in_line_order(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_bill(workbook, _bill("b1", "B20240523-001", lines=[_line("b1", 1), _line("b1", 2, "DIYA")]))
    data_manager.append_bill(workbook, _bill("b2", "B20240523-002", lines=[_line("b2", 1, "DIYA")]))

    bills = list(data_manager.iter_bills(workbook))

    assert [bill.bill_number for bill in bills] == ["B20240523-001", "B20240523-002"]
    assert [line.item_id for line in bills[0].lines] == ["CAMPHOR", "DIYA"]
    assert [line.line_number for line in bills[0].lines] == [1, 2]
    assert len(bills[1].lines) == 1


def test_update_bill_changes_only_requested_fields(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_bill(workbook, _bill("b1", "B20240523-001"))

    data_manager.update_bill(workbook, "b1", field_values={"Status": "cancelled"})

    [bill] = list(data_manager.iter_bills(workbook))
    assert bill.status == "cancelled"
    assert bill.total_amount == Decimal("20.00")


def test_update_fields_reject_unknown_rows_and_columns(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)

    with pytest.raises(KeyError):
        data_manager.update_item(workbook, "missing", field_values={"CurrentStock": 1})
    with pytest.raises(KeyError):
        data_manager.update_channel(workbook, "Nalini", field_values={"Colour": "red"})


def test_upsert_live_summary_replaces_existing_row(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    first = data_manager.LiveSummaryRow(
        date="2024-05-23",
        total_sales=Decimal("10"),
        total_bills=1,
        payment_summary={"Cash": data_manager.MethodTotal(Decimal("10"), 1)},
        top_items=(data_manager.TopItem("CAMPHOR", "Camphor", 1, Decimal("10")),),
    )
    data_manager.upsert_live_summary(workbook, first)
    data_manager.upsert_live_summary(workbook, data_manager.LiveSummaryRow(
        date="2024-05-23",
        total_sales=Decimal("35"),
        total_bills=2,
        payment_summary={"Cash": data_manager.MethodTotal(Decimal("35"), 2)},
        top_items=(),
    ))

    summaries = list(data_manager.iter_live_summaries(workbook))

    assert len(summaries) == 1
    assert summaries[0].total_sales == Decimal("35")
    assert summaries[0].payment_summary["Cash"].count == 2


def test_insert_closing_if_absent_writes_once(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    record = data_manager.ClosingRow(
        date="2024-05-23",
        total_sales=Decimal("0"),
        total_bills=0,
        payment_summary={},
        top_items=(),
        cash_verified=True,
        notes="",
        closed_by="owner",
        closing_time="2024-05-23T21:00:00+00:00",
    )

    assert data_manager.insert_closing_if_absent(workbook, record) is True
    assert data_manager.insert_closing_if_absent(workbook, record) is False
    assert data_manager.find_closing(workbook, "2024-05-23") == record
    assert data_manager.find_closing(workbook, "2024-05-24") is None


def test_payment_summary_and_top_items_codecs_keep_decimal_precision():
    summary = {"Nalini": data_manager.MethodTotal(Decimal("0.10"), 1)}
    items = (data_manager.TopItem("DIYA", "Brass Diya", 2, Decimal("80.05")),)

    assert data_manager.decode_payment_summary(data_manager.encode_payment_summary(summary)) == summary
    assert data_manager.decode_top_items(data_manager.encode_top_items(items)) == items
    assert data_manager.decode_payment_summary(None) == {}
    assert data_manager.decode_top_items("") == ()


def test_restore_sheets_discards_rows_added_after_snapshot(master_workbook_path):
    """Appends and in-place edits made after a snapshot are both undone."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_item(
        workbook,
        data_manager.ItemRow("CAMPHOR", "C-01", "Camphor", Decimal("10"), None, 5, 1, "Pooja Items"),
    )
    snapshot = data_manager.snapshot_sheets(workbook)

    data_manager.update_item(workbook, "CAMPHOR", field_values={"CurrentStock": 0})
    data_manager.append_bill(workbook, _bill("b1", "B20240523-001", lines=[_line("b1", 1)]))
    data_manager.update_channel(workbook, "Nalini", field_values={"DailyCount": 3})
    data_manager.restore_sheets(workbook, snapshot)

    assert [item.current_stock for item in data_manager.iter_items(workbook)] == [5]
    assert list(data_manager.iter_bills(workbook)) == []
    assert list(data_manager.iter_bill_lines(workbook)) == []
    channels = {channel.name: channel for channel in data_manager.iter_channels(workbook)}
    assert channels["Nalini"].daily_count == 0
    assert data_manager.snapshot_sheets(workbook) == snapshot


def test_locate_row_unknown_column_raises(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    with pytest.raises(KeyError):
        data_manager.locate_row(workbook, data_manager.BILLS_SHEET, "Nope", "x")
