"""
Tests for the tabular parser (CSV text and Excel workbooks).
"""
import io

import pandas as pd
import pytest

from app.domain.ingestion.parser import ParseError, parse, parse_file, parse_workbook


def test_parse_basic_csv():
    table = parse("name,email,unit\nJohn,j@x.com,4A\nJane,jane@x.com,4B")

    assert table.headers == ["name", "email", "unit"]
    assert table.rows == [
        {"name": "John", "email": "j@x.com", "unit": "4A"},
        {"name": "Jane", "email": "jane@x.com", "unit": "4B"},
    ]
    assert table.row_count == 2


def test_parse_trims_whitespace_strips_quotes_and_skips_blank_lines():
    raw = '\n  "name" , "unit"  \n\n  "John" ,  4A \n\n'

    table = parse(raw)

    assert table.headers == ["name", "unit"]
    assert table.rows == [{"name": "John", "unit": "4A"}]


def test_parse_keeps_quoted_commas_inside_a_field():
    table = parse('name,unit\n"Smith, J.",4A')

    assert table.rows == [{"name": "Smith, J.", "unit": "4A"}]


def test_parse_unclosed_quote_does_not_swallow_later_fields():
    table = parse('name,unit\n"John,4A\nJane,"4B')

    assert table.rows == [{"name": "John", "unit": "4A"}, {"name": "Jane", "unit": "4B"}]


def test_parse_pads_missing_fields_and_drops_extra_fields():
    table = parse("name,email,unit\nJohn\nJane,jane@x.com,4B,surplus,more")

    assert table.rows == [
        {"name": "John", "email": "", "unit": ""},
        {"name": "Jane", "email": "jane@x.com", "unit": "4B"},
    ]


def test_parse_discards_rows_whose_fields_are_all_empty():
    table = parse("name,unit\n , \nJohn,4A\n,,")

    assert table.rows == [{"name": "John", "unit": "4A"}]


@pytest.mark.parametrize("raw", ["", "\n\n", "name,email", "name,email\n\n   \n"])
def test_parse_without_data_rows_raises(raw):
    with pytest.raises(ParseError, match="No data rows"):
        parse(raw)


def test_parse_with_only_empty_data_rows_raises():
    with pytest.raises(ParseError):
        parse("name,unit\n,\n , ")


def test_parse_reproduces_serialized_rows():
    headers = ["name", "email", "monthly_rent", "move_in_date"]
    rows = [
        {"name": "Ada", "email": "ada@example.com", "monthly_rent": "1200", "move_in_date": "2024-01-01"},
        {"name": "Grace", "email": "", "monthly_rent": "950.50", "move_in_date": "2024-02-15"},
        {"name": "", "email": "noname@example.com", "monthly_rent": "0", "move_in_date": ""},
    ]
    raw = "\n".join([",".join(headers)] + [",".join(row[h] for h in headers) for row in rows])

    table = parse(raw)

    assert table.headers == headers
    assert table.rows == rows


def test_parse_file_decodes_utf8_with_bom():
    table = parse_file("\ufeffname,unit\nZoë,4A".encode("utf-8"), "tenants.csv")

    assert table.headers == ["name", "unit"]
    assert table.rows[0]["name"] == "Zoë"


def test_parse_file_falls_back_to_latin1():
    table = parse_file("name,unit\nJosé,4A".encode("latin-1"), "tenants.csv")

    assert table.rows[0]["name"] == "José"


def _workbook_bytes(frame: pd.DataFrame) -> bytes:
    buffer = io.BytesIO()
    frame.to_excel(buffer, index=False)
    return buffer.getvalue()


def test_parse_workbook_reads_first_sheet_as_strings():
    frame = pd.DataFrame(
        [["Maple Court", "12 Elm St", "Springfield"], ["Oak House", "3 Pine Rd", "Shelbyville"]],
        columns=["Building Name", "Address", "City"],
    )

    table = parse_file(_workbook_bytes(frame), "buildings.xlsx")

    assert table.headers == ["Building Name", "Address", "City"]
    assert table.rows[1] == {"Building Name": "Oak House", "Address": "3 Pine Rd", "City": "Shelbyville"}


def test_parse_workbook_with_header_only_raises():
    frame = pd.DataFrame(columns=["name", "unit"])

    with pytest.raises(ParseError):
        parse_workbook(_workbook_bytes(frame))


def test_parse_workbook_rejects_corrupt_bytes():
    with pytest.raises(ParseError, match="Unable to read spreadsheet"):
        parse_file(b"definitely not a workbook", "broken.xlsx")
