"""Tabular export of entity rows to CSV or legacy Excel workbooks."""
from __future__ import annotations

import csv
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from io import BytesIO, StringIO
from typing import Any

import xlwt
from fastapi import Response

Column = tuple[str, str]

MATERIAL_COLUMNS: Sequence[Column] = (
    ("material_code", "Material Code"),
    ("description", "Description"),
    ("category", "Category"),
    ("unit", "Unit"),
    ("quantity", "Quantity"),
    ("sap_quantity", "SAP Quantity"),
    ("reorder_threshold", "Reorder Threshold"),
    ("location", "Location"),
    ("last_updated", "Last Updated"),
)

TRANSACTION_COLUMNS: Sequence[Column] = (
    ("date", "Date"),
    ("material_code", "Material Code"),
    ("material_description", "Description"),
    ("transaction_type", "Type"),
    ("quantity", "Quantity"),
    ("unit", "Unit"),
    ("user", "User"),
    ("reference", "Reference"),
    ("notes", "Notes"),
)

DEFECT_COLUMNS: Sequence[Column] = (
    ("reported_date", "Reported"),
    ("material_code", "Material Code"),
    ("material_description", "Description"),
    ("defect_type", "Defect Type"),
    ("quantity", "Quantity"),
    ("unit", "Unit"),
    ("severity", "Severity"),
    ("status", "Status"),
    ("reported_by", "Reported By"),
    ("resolution_notes", "Resolution Notes"),
)

ALERT_COLUMNS: Sequence[Column] = (
    ("created_at", "Created"),
    ("type", "Type"),
    ("severity", "Severity"),
    ("material_code", "Material Code"),
    ("material_description", "Description"),
    ("local_quantity", "Local Quantity"),
    ("sap_quantity", "SAP Quantity"),
    ("variance", "Variance"),
    ("message", "Message"),
    ("acknowledged", "Acknowledged"),
)


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return "yes" if value else "no"
    return value


def rows_to_csv(columns: Sequence[Column], rows: Iterable[Mapping[str, Any]]) -> bytes:
    buffer = StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([label for _, label in columns])
    for row in rows:
        writer.writerow([_cell(row.get(key)) for key, _ in columns])
    # BOM so spreadsheet tools detect UTF-8
    return ("\ufeff" + buffer.getvalue()).encode("utf-8")


def rows_to_xls(
    columns: Sequence[Column],
    rows: Iterable[Mapping[str, Any]],
    *,
    sheet_name: str = "Sheet1",
) -> bytes:
    workbook = xlwt.Workbook()
    sheet = workbook.add_sheet(sheet_name)
    for col_index, (_, label) in enumerate(columns):
        sheet.write(0, col_index, label)
    for row_index, row in enumerate(rows, start=1):
        for col_index, (key, _) in enumerate(columns):
            sheet.write(row_index, col_index, _cell(row.get(key)))
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def timestamped_filename(prefix: str) -> str:
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    return f"{prefix}_{timestamp}"


def export_response(
    columns: Sequence[Column],
    rows: Iterable[Mapping[str, Any]],
    *,
    prefix: str,
    fmt: str = "csv",
) -> Response:
    filename = timestamped_filename(prefix)
    if fmt == "xls":
        content = rows_to_xls(columns, rows, sheet_name=prefix[:31])
        media_type = "application/vnd.ms-excel"
    else:
        content = rows_to_csv(columns, rows)
        media_type = "text/csv; charset=utf-8"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}.{fmt}"},
    )


__all__ = [
    "ALERT_COLUMNS",
    "DEFECT_COLUMNS",
    "MATERIAL_COLUMNS",
    "TRANSACTION_COLUMNS",
    "export_response",
    "rows_to_csv",
    "rows_to_xls",
    "timestamped_filename",
]
