# ============================================================================
# HSSE - Tabular Exports
# ============================================================================
# CSV and XLSX renderings of list endpoints. Each domain supplies its rows and
# an ordered column list of (key, header) pairs.
# ============================================================================

import csv
import io
import logging
from datetime import datetime
from typing import Dict, List, Sequence, Tuple

from fastapi.responses import Response
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill

from hsse.errors import DomainError

logger = logging.getLogger(__name__)

Columns = Sequence[Tuple[str, str]]

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _cell(value):
    if value is None:
        return ""
    if isinstance(value, (list, dict)):
        return str(value)
    return value


def render_csv(rows: List[Dict], columns: Columns) -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow([header for _, header in columns])
    for row in rows:
        writer.writerow([_cell(row.get(key)) for key, _ in columns])
    return buf.getvalue().encode("utf-8")


def render_xlsx(rows: List[Dict], columns: Columns, sheet_title: str = "Export") -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title[:31]
    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="2C3E50", end_color="2C3E50", fill_type="solid")

    ws.append([header for _, header in columns])
    for cell in ws[1]:
        cell.font = header_font
        cell.fill = header_fill
    for row in rows:
        ws.append([_cell(row.get(key)) for key, _ in columns])

    for idx, (_, header) in enumerate(columns, start=1):
        letter = ws.cell(row=1, column=idx).column_letter
        ws.column_dimensions[letter].width = max(12, min(50, len(header) + 4))

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def export_response(rows: List[Dict], columns: Columns, name: str, fmt: str = "csv") -> Response:
    """Build a download response for the given rows in csv or xlsx."""
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    fmt = (fmt or "csv").lower()
    if fmt == "csv":
        body, media_type = render_csv(rows, columns), "text/csv"
    elif fmt == "xlsx":
        body, media_type = render_xlsx(rows, columns, name.title()), XLSX_MEDIA_TYPE
    else:
        raise DomainError(f"Unsupported export format: {fmt}")
    logger.info("[Export] %s: %d rows as %s", name, len(rows), fmt)
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{name}_{stamp}.{fmt}"'},
    )
