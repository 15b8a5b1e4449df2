"""
Excel workbook rendering of a license audit report.

Tabs:
1. Summary - counters and target SKU resolution
2. Identities - every rendered row, filterable
3. Flagged - identities with an unexpected employee type
"""
from typing import Any, Dict, List, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from .constants import (
    LABEL_DISABLED,
    LABEL_LICENSED,
    LABEL_SERVICE_PRINCIPAL,
    REPORT_COLUMNS,
)

# =============================================================================
# STYLING
# =============================================================================

HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
HEADER_FONT = Font(bold=True, color="FFFFFF")
SECTION_FONT = Font(bold=True, size=12)
TITLE_FONT = Font(bold=True, size=14)
THIN_BORDER = Border(
    left=Side(style='thin'),
    right=Side(style='thin'),
    top=Side(style='thin'),
    bottom=Side(style='thin')
)

STATUS_FILLS = {
    'licensed': PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid"),
    'disabled': PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid"),
    'service': PatternFill(start_color="BDD7EE", end_color="BDD7EE", fill_type="solid"),
}

SUMMARY_LABELS = [
    ('total_users', 'Users'),
    ('total_service_principals', 'Service principals'),
    ('total_target_licensed', 'E5 licensed'),
    ('licensed_disabled', 'E5 licensed, account disabled'),
    ('licensed_shared_mailbox', 'E5 licensed, shared mailbox'),
    ('licensed_inactive', 'E5 licensed, inactive (cloud sign-in)'),
]


# =============================================================================
# HELPERS
# =============================================================================

def set_cell(ws, row: int, col: int, value: Any,
             font: Optional[Font] = None, fill: Optional[PatternFill] = None,
             border: Optional[Border] = None, alignment: Optional[Alignment] = None) -> None:
    """Set cell value with optional styling."""
    cell = ws.cell(row=row, column=col, value=value)
    if font:
        cell.font = font
    if fill:
        cell.fill = fill
    if border:
        cell.border = border
    if alignment:
        cell.alignment = alignment


def write_header_row(ws, row: int, headers: List[str], start_col: int = 1) -> None:
    """Write a styled header row."""
    for col_idx, header in enumerate(headers, start=start_col):
        set_cell(ws, row, col_idx, header, font=HEADER_FONT, fill=HEADER_FILL, border=THIN_BORDER)


def write_data_row(ws, row: int, data: List[Any], start_col: int = 1,
                   fill: Optional[PatternFill] = None) -> None:
    """Write a data row with optional styling."""
    for col_idx, value in enumerate(data, start=start_col):
        set_cell(ws, row, col_idx, value, fill=fill, border=THIN_BORDER)


def row_fill(rendered: Dict[str, str]) -> Optional[PatternFill]:
    """Pick a status fill for a rendered report row."""
    if rendered.get("Identity Type") == LABEL_SERVICE_PRINCIPAL:
        return STATUS_FILLS['service']
    if rendered.get("License Status") == LABEL_LICENSED:
        if rendered.get("Account Status") == LABEL_DISABLED:
            return STATUS_FILLS['disabled']
        return STATUS_FILLS['licensed']
    return None


def autosize_columns(ws, max_width: int = 50) -> None:
    """Set column widths from the longest value in each column."""
    for col_idx, column in enumerate(ws.iter_cols(), start=1):
        longest = max((len(str(c.value)) for c in column if c.value is not None), default=8)
        ws.column_dimensions[get_column_letter(col_idx)].width = min(longest + 2, max_width)


# =============================================================================
# TAB GENERATORS
# =============================================================================

def generate_summary_sheet(wb: Workbook, summary: Dict[str, Any]) -> None:
    """Generate the Summary tab."""
    ws = wb.active
    assert ws is not None, "Workbook must have an active sheet"
    ws.title = "Summary"

    set_cell(ws, 1, 1, "E5 License Audit", font=TITLE_FONT)
    set_cell(ws, 2, 1, f"Generated: {summary.get('generated_at', '')}")

    row = 4
    set_cell(ws, row, 1, "Counters", font=SECTION_FONT)
    row += 1
    write_header_row(ws, row, ["Metric", "Count"])
    for key, label in SUMMARY_LABELS:
        row += 1
        write_data_row(ws, row, [label, summary.get(key, 0)])

    row += 2
    set_cell(ws, row, 1, "Target Licenses", font=SECTION_FONT)
    row += 1
    write_header_row(ws, row, ["Product", "SKU ID"])
    for name, sku_id in sorted((summary.get('target_skus') or {}).items()):
        row += 1
        write_data_row(ws, row, [name, sku_id or "not in tenant"])

    autosize_columns(ws)


def generate_identities_sheet(wb: Workbook, rows: List[Dict[str, str]]) -> None:
    """Generate the Identities tab with one line per report row."""
    ws = wb.create_sheet("Identities")
    write_header_row(ws, 1, REPORT_COLUMNS)
    for row_idx, rendered in enumerate(rows, start=2):
        write_data_row(ws, row_idx, [rendered.get(col, "") for col in REPORT_COLUMNS],
                       fill=row_fill(rendered))

    ws.freeze_panes = "A2"
    ws.auto_filter.ref = f"A1:{get_column_letter(len(REPORT_COLUMNS))}{max(len(rows) + 1, 1)}"
    autosize_columns(ws)


def generate_flagged_sheet(wb: Workbook, flagged: List[str]) -> None:
    """Generate the Flagged tab."""
    ws = wb.create_sheet("Flagged")
    write_header_row(ws, 1, ["User Principal Name"])
    for row_idx, upn in enumerate(flagged, start=2):
        write_data_row(ws, row_idx, [upn])
    autosize_columns(ws)


def generate_workbook(rows: List[Dict[str, str]], summary: Dict[str, Any], output_path: str) -> None:
    """Write the full workbook to output_path."""
    wb = Workbook()
    generate_summary_sheet(wb, summary)
    generate_identities_sheet(wb, rows)
    generate_flagged_sheet(wb, summary.get('flagged_identities') or [])
    wb.save(output_path)
    print(f"Wrote {output_path}")
