import pytest

from labelforge.errors import TableParseError
from labelforge.models import Table
from labelforge.table import parse_table, serialize_table


def test_parse_table_keeps_header_order_and_skips_blank_lines() -> None:
    data = "\ufeffname,unit,date\r\nAcme,Unit 12,2099-01-01\r\n\r\n\"Beta, Inc.\",,2099-02-02\r\n".encode("utf-8")

    table = parse_table(data)

    assert table.columns == ["name", "unit", "date"]
    assert table.rows == [
        {"name": "Acme", "unit": "Unit 12", "date": "2099-01-01"},
        {"name": "Beta, Inc.", "unit": "", "date": "2099-02-02"},
    ]


def test_parse_table_reports_ragged_rows() -> None:
    data = b"a,b\n1,2\n1,2,3\n4\n"

    with pytest.raises(TableParseError) as exc_info:
        parse_table(data)

    codes = [problem["code"] for problem in exc_info.value.details]
    assert codes == ["TooManyFields", "TooFewFields"]


def test_parse_table_rejects_non_utf8() -> None:
    with pytest.raises(TableParseError):
        parse_table("name\nCaf\xe9\n".encode("latin-1"))


def test_parse_table_drops_blank_header_names() -> None:
    table = parse_table(b"name,,unit\nAcme,x,12\n")

    assert table.columns == ["name", "unit"]
    assert table.rows == [{"name": "Acme", "unit": "12"}]


def test_header_only_table_has_no_rows() -> None:
    assert parse_table(b"name,unit\n").rows == []


def test_serialize_table_writes_crlf_and_quotes() -> None:
    table = Table(columns=["name", "note"], rows=[{"name": "Acme", "note": 'say "hi", ok'}])

    assert serialize_table(table) == b'name,note\r\nAcme,"say ""hi"", ok"\r\n'
