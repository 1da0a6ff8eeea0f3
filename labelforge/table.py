from __future__ import annotations

import csv
import io

from labelforge.errors import TableParseError
from labelforge.models import Row, Table

_RESTKEY = "__extra__"


def parse_table(data: bytes) -> Table:
    """Parse UTF-8 CSV with a header row.

    Blank lines are skipped. A data row whose field count differs from the
    header is a parse error; all such rows are reported together.
    """
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise TableParseError("CSV parse failed.", details=f"not valid UTF-8: {exc}") from exc

    reader = csv.DictReader(io.StringIO(text, newline=""), restkey=_RESTKEY)
    try:
        fieldnames = reader.fieldnames or []
        problems: list[dict[str, object]] = []
        rows: list[Row] = []
        for record in reader:
            line = reader.line_num
            if _RESTKEY in record:
                problems.append({"row": line, "code": "TooManyFields", "message": "Too many fields"})
                continue
            if any(value is None for value in record.values()):
                problems.append({"row": line, "code": "TooFewFields", "message": "Too few fields"})
                continue
            rows.append({name: record[name] for name in fieldnames if name})
    except csv.Error as exc:
        raise TableParseError("CSV parse failed.", details=str(exc)) from exc

    if problems:
        first = problems[0]
        raise TableParseError(f"{first['message']} on line {first['row']}.", details=problems)

    columns = [name for name in fieldnames if name]
    return Table(columns=columns, rows=rows)


def serialize_table(table: Table) -> bytes:
    buffer = io.StringIO(newline="")
    writer = csv.DictWriter(buffer, fieldnames=table.columns, extrasaction="ignore", lineterminator="\r\n")
    writer.writeheader()
    for row in table.rows:
        writer.writerow({name: row.get(name, "") for name in table.columns})
    return buffer.getvalue().encode("utf-8")
