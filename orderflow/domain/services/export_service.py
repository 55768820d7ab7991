"""
Settlement export - formatted XLSX workbooks (openpyxl)

One sheet per export: title, column headers, one row per settlement and a
totals row. Amounts are written in currency units from integer cents.
"""
import io
from datetime import datetime
from typing import Any, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from orderflow.db.models.settlement import RestaurantSettlement, RiderSettlement
from orderflow.domain.money import format_cents


# ==================== Styles ====================

_HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
_HEADER_FONT = Font(name="Arial", bold=True, color="FFFFFF", size=11)
_TITLE_FONT = Font(name="Arial", bold=True, size=14)
_SUBTITLE_FONT = Font(name="Arial", bold=False, size=10, color="666666")
_TOTAL_FONT = Font(name="Arial", bold=True, size=11)
_TOTAL_FILL = PatternFill(start_color="D9E2F3", end_color="D9E2F3", fill_type="solid")
_CURRENCY_FORMAT = '"S/" #,##0.00'

_THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

_TEXT_ALIGN = Alignment(horizontal="left", vertical="center", wrap_text=True)
_NUMBER_ALIGN = Alignment(horizontal="right", vertical="center")


def _auto_fit_columns(ws: Any) -> None:
    for col_cells in ws.columns:
        max_length = 0
        col_letter = get_column_letter(col_cells[0].column)
        for cell in col_cells:
            if cell.value is not None:
                max_length = max(max_length, len(str(cell.value)))
        ws.column_dimensions[col_letter].width = min(max(max_length + 4, 10), 40)


def _style_row(ws: Any, row: int, col_count: int, font: Any = None, fill: Any = None) -> None:
    for col in range(1, col_count + 1):
        cell = ws.cell(row=row, column=col)
        if font is not None:
            cell.font = font
        if fill is not None:
            cell.fill = fill
        if cell.number_format != _CURRENCY_FORMAT:
            cell.alignment = _TEXT_ALIGN
        cell.border = _THIN_BORDER


def _subtitle(month: str, settlements: Sequence[Any]) -> str:
    net = sum(s.net_payout_cents or 0 for s in settlements)
    generated = datetime.now().strftime("%Y-%m-%d %H:%M")
    return f"Month: {month} | Net payout: {format_cents(net)} | Generated: {generated}"


def _write_title(ws: Any, title: str, subtitle: str, start_row: int = 1) -> int:
    """Write title and subtitle, return the header row"""
    ws.cell(row=start_row, column=1, value=title).font = _TITLE_FONT
    ws.cell(row=start_row + 1, column=1, value=subtitle).font = _SUBTITLE_FONT
    return start_row + 3


def _money_cell(ws: Any, row: int, column: int, cents: int) -> None:
    cell = ws.cell(row=row, column=column, value=(cents or 0) / 100)
    cell.number_format = _CURRENCY_FORMAT
    cell.alignment = _NUMBER_ALIGN


# Leading characters Excel evaluates as a formula
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _sanitize_text(value: Any) -> Any:
    """Prefix formula-looking text with a quote so Excel shows it literally"""
    if isinstance(value, str) and value and value[0] in _FORMULA_PREFIXES:
        return f"'{value}"
    return value


def _save(wb: Workbook) -> bytes:
    output = io.BytesIO()
    wb.save(output)
    output.seek(0)
    return output.getvalue()


# ==================== Rider settlements ====================

_RIDER_COLUMNS = (
    ("Rider", None),
    ("Period", None),
    ("Pay type", None),
    ("Deliveries", None),
    ("Cash collected", "total_cash_collected_cents"),
    ("POS collected", "total_pos_collected_cents"),
    ("Digital collected", "total_digital_collected_cents"),
    ("Delivery fees", "total_delivery_fees_cents"),
    ("Commission", "rider_commission_cents"),
    ("Bonuses", "total_bonuses_cents"),
    ("Fuel", "fuel_reimbursement_cents"),
    ("Net payout", "net_payout_cents"),
    ("Status", None),
)


def generate_rider_settlements_excel(
    settlements: Sequence[RiderSettlement],
    month: str,
    rider_names: dict[int, str] | None = None,
) -> bytes:
    """Rider settlements of one month as XLSX bytes"""
    rider_names = rider_names or {}
    wb = Workbook()
    ws = wb.active
    ws.title = "Rider settlements"

    header_row = _write_title(ws, "Rider settlements", _subtitle(month, settlements))
    col_count = len(_RIDER_COLUMNS)
    for col, (header, _) in enumerate(_RIDER_COLUMNS, 1):
        ws.cell(row=header_row, column=col, value=header)
    _style_row(ws, header_row, col_count, font=_HEADER_FONT, fill=_HEADER_FILL)

    row = header_row
    for settlement in settlements:
        row += 1
        name = rider_names.get(settlement.rider_id, f"#{settlement.rider_id}")
        ws.cell(row=row, column=1, value=_sanitize_text(name))
        ws.cell(row=row, column=2, value=f"{settlement.period_start} - {settlement.period_end}")
        ws.cell(row=row, column=3, value=settlement.pay_type.value)
        ws.cell(row=row, column=4, value=settlement.total_deliveries)
        for col, (_, attr) in enumerate(_RIDER_COLUMNS, 1):
            if attr:
                _money_cell(ws, row, col, getattr(settlement, attr))
        ws.cell(row=row, column=col_count, value=settlement.status.value)
        _style_row(ws, row, col_count)

    total_row = row + 1
    ws.cell(row=total_row, column=1, value="Total")
    ws.cell(row=total_row, column=4, value=sum(s.total_deliveries for s in settlements))
    for col, (_, attr) in enumerate(_RIDER_COLUMNS, 1):
        if attr:
            _money_cell(ws, total_row, col, sum(getattr(s, attr) or 0 for s in settlements))
    _style_row(ws, total_row, col_count, font=_TOTAL_FONT, fill=_TOTAL_FILL)

    _auto_fit_columns(ws)
    return _save(wb)


# ==================== Restaurant settlements ====================

_RESTAURANT_COLUMNS = (
    ("Restaurant", None),
    ("Period", None),
    ("Orders", None),
    ("Gross sales", "gross_sales_cents"),
    ("Commission", "commission_cents"),
    ("Net payout", "net_payout_cents"),
    ("Status", None),
)


def generate_restaurant_settlements_excel(
    settlements: Sequence[RestaurantSettlement],
    month: str,
    restaurant_names: dict[int, str] | None = None,
) -> bytes:
    """Restaurant settlements of one month as XLSX bytes"""
    restaurant_names = restaurant_names or {}
    wb = Workbook()
    ws = wb.active
    ws.title = "Restaurant settlements"

    header_row = _write_title(ws, "Restaurant settlements", _subtitle(month, settlements))
    col_count = len(_RESTAURANT_COLUMNS)
    for col, (header, _) in enumerate(_RESTAURANT_COLUMNS, 1):
        ws.cell(row=header_row, column=col, value=header)
    _style_row(ws, header_row, col_count, font=_HEADER_FONT, fill=_HEADER_FILL)

    row = header_row
    for settlement in settlements:
        row += 1
        name = restaurant_names.get(settlement.restaurant_id, f"#{settlement.restaurant_id}")
        ws.cell(row=row, column=1, value=_sanitize_text(name))
        ws.cell(row=row, column=2, value=f"{settlement.period_start} - {settlement.period_end}")
        ws.cell(row=row, column=3, value=settlement.total_orders)
        for col, (_, attr) in enumerate(_RESTAURANT_COLUMNS, 1):
            if attr:
                _money_cell(ws, row, col, getattr(settlement, attr))
        ws.cell(row=row, column=col_count, value=settlement.status.value)
        _style_row(ws, row, col_count)

    total_row = row + 1
    ws.cell(row=total_row, column=1, value="Total")
    ws.cell(row=total_row, column=3, value=sum(s.total_orders for s in settlements))
    for col, (_, attr) in enumerate(_RESTAURANT_COLUMNS, 1):
        if attr:
            _money_cell(ws, total_row, col, sum(getattr(s, attr) or 0 for s in settlements))
    _style_row(ws, total_row, col_count, font=_TOTAL_FONT, fill=_TOTAL_FILL)

    _auto_fit_columns(ws)
    return _save(wb)
