import io

import pytest
from openpyxl import Workbook

from app.core.exceptions import FileParseError, UnsupportedFormat
from app.helpers import file_parser


def _xlsx_bytes(sheets):
    workbook = Workbook()
    workbook.remove(workbook.active)
    for title, rows in sheets:
        sheet = workbook.create_sheet(title)
        for row in rows:
            sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def test_parse_csv_keeps_file_order_and_strips_values():
    content = b"internalCode,name, description \nL-1, Plant ,Main\nL-2,Line A,\n"

    rows = file_parser.parse_rows(content, "csv")

    assert rows == [
        {"internalCode": "L-1", "name": "Plant", "description": "Main"},
        {"internalCode": "L-2", "name": "Line A"},
    ]


def test_parse_csv_reads_numbers_as_text():
    content = b"internalCode,year\n0001,2020\n"

    rows = file_parser.parse_rows(content, ".CSV")

    assert rows == [{"internalCode": "0001", "year": "2020"}]


def test_parse_csv_drops_blank_rows():
    content = b"name,description\nA,first\n,\n\nB,second\n"

    rows = file_parser.parse_rows(content, "csv")

    assert [row["name"] for row in rows] == ["A", "B"]


def test_parse_csv_keeps_row_with_extra_fields():
    content = (
        b"internalCode,name,description,type\n"
        b"OP-1,Check oil,Daily check,boolean\n"
        b"OP-2,Temperature,Motor temperature,number,stray\n"
        b"OP-3,Notes,Free text,text\n"
    )

    rows = file_parser.parse_rows(content, "csv")

    assert [row["internalCode"] for row in rows] == ["OP-1", "OP-2", "OP-3"]
    assert rows[1] == {
        "internalCode": "OP-2",
        "name": "Temperature",
        "description": "Motor temperature",
        "type": "number",
    }


def test_parse_csv_wide_first_row_is_not_an_index():
    content = b"name,type\nCheck oil,boolean,stray\nNotes,text\n"

    rows = file_parser.parse_rows(content, "csv")

    assert rows == [
        {"name": "Check oil", "type": "boolean"},
        {"name": "Notes", "type": "text"},
    ]


def test_parse_csv_pads_short_rows():
    content = b"name,description,type\nCheck oil\n"

    assert file_parser.parse_rows(content, "csv") == [{"name": "Check oil"}]


@pytest.mark.parametrize("content", [b"", b"   \n", b"name,description\n"])
def test_parse_empty_file_returns_no_rows(content):
    assert file_parser.parse_rows(content, "csv") == []


def test_parse_csv_latin1_fallback():
    content = "name,description\nCompresor,Válvula\n".encode("latin-1")

    rows = file_parser.parse_rows(content, "csv")

    assert rows == [{"name": "Compresor", "description": "Válvula"}]


def test_parse_xlsx_reads_first_sheet_only():
    content = _xlsx_bytes(
        [
            ("Operations", [["name", "type"], ["Check oil", "boolean"], ["Temperature", "number"]]),
            ("Ignored", [["name", "type"], ["Never read", "text"]]),
        ]
    )

    rows = file_parser.parse_rows(content, "xlsx")

    assert rows == [
        {"name": "Check oil", "type": "boolean"},
        {"name": "Temperature", "type": "number"},
    ]


def test_parse_unsupported_extension_raises():
    with pytest.raises(UnsupportedFormat):
        file_parser.parse_rows(b"name\nA\n", "txt")


def test_parse_corrupt_workbook_raises_parse_error():
    with pytest.raises(FileParseError):
        file_parser.parse_rows(b"this is not a workbook", "xlsx")


@pytest.mark.parametrize(
    "name, expected",
    [
        ("locations.CSV", "csv"),
        ("report.final.xlsx", "xlsx"),
        ("https://files.example.com/a/b/data.xls?sig=abc", "xls"),
        ("file:///tmp/uploads/acme/machines_1a2b3c4d.csv", "csv"),
        ("no_extension", ""),
    ],
)
def test_extension_from_name(name, expected):
    assert file_parser.extension_from_name(name) == expected
