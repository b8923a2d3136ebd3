"""
Payout statement export.

Creates a 3-tab .xlsx file for one period:
  Tab 1: "Summary"   key/value totals (tokens, USD, gross, discounts, net, goal gap)
  Tab 2: "Platforms" one row per week of weekly platforms + one total row per platform
  Tab 3: "Discounts" every counted discount (manual, traffic, ledger)

File naming: "Payout Statement {talent} {period}.xlsx"

Formatting:
  - Bold, centered header rows on all tabs
  - Auto-fit column widths (with min/max constraints)
  - Freeze top row (header) on all tabs
  - USD format ($#,##0.00), local currency and unit counts as #,##0
"""

import os
import logging
import re
from typing import Optional

from openpyxl import Workbook
from openpyxl.styles import Font, Alignment
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

import config
from models.schemas import NOT_AVAILABLE, PeriodPayout, PlatformBreakdown

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
MIN_COL_WIDTH = 10      # characters
MAX_COL_WIDTH = 50      # long discount names get cut off here
HEADER_FONT = Font(bold=True)
TOTAL_FONT = Font(bold=True)
USD_FORMAT = '$#,##0.00'
LOCAL_FORMAT = '#,##0'
NUMBER_FORMAT = '#,##0'
RATE_FORMAT = '#,##0.00'

MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# Characters not allowed in file names on common filesystems
_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|]+')


# ===========================================================================
# Public API
# ===========================================================================

def statement_filename(talent_name: str, period_name: str) -> str:
    talent = _UNSAFE_FILENAME_CHARS.sub("-", talent_name).strip() or "Talent"
    period = _UNSAFE_FILENAME_CHARS.sub("-", period_name).strip() or "Period"
    return f"Payout Statement {talent} {period}.xlsx"


def generate_statement(payout: PeriodPayout, output_dir: Optional[str] = None) -> str:
    """
    Write the .xlsx payout statement of one period.

    Args:
        payout:     Computed period payout (period, talent name, breakdown)
        output_dir: Directory to save the file (defaults to config.OUTPUT_DIR)

    Returns:
        Absolute file path of the generated .xlsx statement.
    """
    if output_dir is None:
        output_dir = config.OUTPUT_DIR
    os.makedirs(output_dir, exist_ok=True)

    filename = statement_filename(payout.talent_name, payout.period.name)
    filepath = os.path.join(output_dir, filename)
    logger.info(f"Generating statement: {filepath}")

    wb = Workbook()

    ws1 = wb.active
    ws1.title = "Summary"
    _build_summary_tab(ws1, payout)

    ws2 = wb.create_sheet("Platforms")
    _build_platforms_tab(ws2, payout.breakdown.platforms)

    ws3 = wb.create_sheet("Discounts")
    _build_discounts_tab(ws3, payout)

    wb.save(filepath)
    logger.info(
        f"Statement saved: {filepath} "
        f"({len(payout.breakdown.platforms)} platforms, "
        f"{len(payout.breakdown.discounts)} discounts)"
    )
    return os.path.abspath(filepath)


# ===========================================================================
# Tab 1: Summary
# ===========================================================================

def _build_summary_tab(ws: Worksheet, payout: PeriodPayout) -> None:
    """
    Tab 1: Item | Value rows.

    The number format of each value row is picked per item (USD, local
    currency, tokens or a plain rate).
    """
    period = payout.period
    b = payout.breakdown
    currency = payout.currency

    ws.append(["Item", "Value"])

    avg = b.avg_tokens_per_hour
    rows = [
        ("Talent", payout.talent_name, None),
        ("Period", period.name, None),
        ("Start date", period.start_date.isoformat() if period.start_date else None, None),
        ("End date", period.end_date.isoformat() if period.end_date else None, None),
        ("Revenue share (%)", period.percent, RATE_FORMAT),
        (f"USD → {currency} rate", period.usd_to_local_rate, RATE_FORMAT),
        ("EUR → USD rate", period.eur_to_usd_rate, RATE_FORMAT),
        ("Total tokens", b.grand_tokens, NUMBER_FORMAT),
        ("Total USD", b.grand_usd, USD_FORMAT),
        (f"Gross ({currency})", b.gross_local, LOCAL_FORMAT),
        (f"Discounts ({currency})", b.total_discounts, LOCAL_FORMAT),
        (f"Net payout ({currency})", b.net_payout, LOCAL_FORMAT),
        (f"Goal ({currency})", period.goal, LOCAL_FORMAT),
        (f"Shortfall ({currency})", b.shortfall_local, LOCAL_FORMAT),
        ("Shortfall (tokens)", b.shortfall_tokens, NUMBER_FORMAT),
        ("Hours worked", period.hours_worked if period.hours_worked else NOT_AVAILABLE, RATE_FORMAT),
        ("Tokens per hour", avg, RATE_FORMAT if avg != NOT_AVAILABLE else None),
    ]

    for label, value, fmt in rows:
        ws.append([label, value])
        if fmt and isinstance(value, (int, float)):
            ws.cell(row=ws.max_row, column=2).number_format = fmt

    _format_header_row(ws)
    _freeze_top_row(ws)
    _auto_fit_columns(ws)


# ===========================================================================
# Tab 2: Platforms
# ===========================================================================

def _build_platforms_tab(ws: Worksheet, platforms: list[PlatformBreakdown]) -> None:
    """
    Tab 2: one row per configured week of weekly platforms, then a bold
    "Total" row per platform (the row whose figures feed the summary).

    Columns:
      Platform | Week | Currency | Gross Units | Premium % |
      Premium Deduction | Net Units | USD | Tokens
    """
    headers = [
        "Platform",
        "Week",
        "Currency",
        "Gross Units",
        "Premium %",
        "Premium Deduction",
        "Net Units",
        "USD",
        "Tokens",
    ]
    ws.append(headers)

    total_rows: list[int] = []
    for line in sorted(platforms, key=lambda p: p.platform_name.lower()):
        for week in line.weeks:
            ws.append([
                line.platform_name,
                f"W{week.week}",
                line.currency.value,
                week.gross_units,
                line.premium_pct,
                week.premium_deduction,
                week.net_units,
                week.usd,
                week.tokens,
            ])
        ws.append([
            line.platform_name,
            "Total",
            line.currency.value,
            line.gross_units,
            line.premium_pct,
            line.premium_deduction,
            line.net_units,
            line.usd,
            line.tokens,
        ])
        total_rows.append(ws.max_row)

    _format_header_row(ws)
    _freeze_top_row(ws)

    for col_idx in [4, 6, 7, 9]:
        _apply_column_format(ws, col_idx=col_idx, fmt=NUMBER_FORMAT, start_row=2)
    _apply_column_format(ws, col_idx=8, fmt=USD_FORMAT, start_row=2)

    for row in total_rows:
        for cell in ws[row]:
            cell.font = TOTAL_FONT

    _auto_fit_columns(ws)


# ===========================================================================
# Tab 3: Discounts
# ===========================================================================

def _build_discounts_tab(ws: Worksheet, payout: PeriodPayout) -> None:
    """
    Tab 3: every counted discount, followed by a bold total row.

    Columns:
      Name | Source | Currency | Amount
    """
    ws.append(["Name", "Source", "Currency", "Amount"])

    for d in payout.breakdown.discounts:
        ws.append([d.name, d.source.value, d.currency, d.amount])

    ws.append(["Total", None, payout.currency, payout.breakdown.total_discounts])
    for cell in ws[ws.max_row]:
        cell.font = TOTAL_FONT

    _format_header_row(ws)
    _freeze_top_row(ws)
    _apply_column_format(ws, col_idx=4, fmt=LOCAL_FORMAT, start_row=2)
    _auto_fit_columns(ws)


# ===========================================================================
# Formatting helpers
# ===========================================================================

def _format_header_row(ws: Worksheet) -> None:
    """Bold + center the header row (row 1)."""
    for cell in ws[1]:
        cell.font = HEADER_FONT
        cell.alignment = Alignment(horizontal="center", vertical="center")


def _freeze_top_row(ws: Worksheet) -> None:
    ws.freeze_panes = "A2"


def _apply_column_format(
    ws: Worksheet,
    col_idx: int,
    fmt: str,
    start_row: int = 2,
) -> None:
    """
    Set the number format of every non-empty data cell in one column.

    Args:
        ws:        Worksheet
        col_idx:   Column number, starting at 1
        fmt:       openpyxl number format (USD_FORMAT, LOCAL_FORMAT, ...)
        start_row: Row the data starts on (header is row 1)
    """
    for row in range(start_row, ws.max_row + 1):
        cell = ws.cell(row=row, column=col_idx)
        if cell.value is not None:
            cell.number_format = fmt


def _auto_fit_columns(ws: Worksheet) -> None:
    """Set each column's width from its widest value, within MIN/MAX bounds."""
    for col_idx in range(1, ws.max_column + 1):
        max_length = 0
        col_letter = get_column_letter(col_idx)

        for row in range(1, ws.max_row + 1):
            cell = ws.cell(row=row, column=col_idx)
            if cell.value is not None:
                max_length = max(max_length, len(str(cell.value)))

        # 2 chars of padding
        adjusted_width = max(max_length + 2, MIN_COL_WIDTH)
        ws.column_dimensions[col_letter].width = min(adjusted_width, MAX_COL_WIDTH)
