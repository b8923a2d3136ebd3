"""
Tests for services/excel_export.py.

Tests verify:
  1. FILE GENERATION: file created, name built from talent + period, unsafe chars replaced
  2. TAB STRUCTURE: Summary, Platforms, Discounts
  3. TAB CONTENT: summary values, week + total rows, discount rows + total
  4. FORMATTING: bold header, frozen top row, number formats
"""

import sys
import os
from datetime import date

import pytest
from openpyxl import load_workbook

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from models.schemas import (
    DiscountEntry,
    DiscountSource,
    Period,
    PeriodPayout,
    Platform,
    PlatformLink,
    ProductionEntry,
)
from services.excel_export import (
    LOCAL_FORMAT,
    NUMBER_FORMAT,
    USD_FORMAT,
    generate_statement,
    statement_filename,
)
from services.payout import compute_payout


# ===========================================================================
# Fixtures
# ===========================================================================

def make_payout(talent_name="Sofia", period_name="March 1-15", hours=40) -> PeriodPayout:
    period = Period(
        id="p1", talent_id="t1", name=period_name, percent=60,
        usd_to_local_rate=4000, eur_to_usd_rate=1.1, goal=2_000_000,
        weeks_count=2, hours_worked=hours,
        start_date=date(2026, 3, 1), end_date=date(2026, 3, 15),
    )
    cb = Platform(id="cb", name="Chaturbate", currency="tokens", unit_to_usd=0.05, weekly=True)
    sm = Platform(id="sm", name="Streamate", currency="usd", unit_to_usd=1.0)
    links = [
        PlatformLink(period_id="p1", platform=cb, premium="premium_15"),
        PlatformLink(period_id="p1", platform=sm),
    ]
    production = [
        ProductionEntry(period_id="p1", platform_id="cb", w1=6_000, w2=4_000),
        ProductionEntry(period_id="p1", platform_id="sm", total=250),
    ]
    discounts = [
        DiscountEntry(key="manual:1", name="Advance", amount=100_000, id="1"),
        DiscountEntry(key="ledger:p1", name="Groceries", amount=25_000, source=DiscountSource.LEDGER),
    ]
    return PeriodPayout(
        period=period,
        talent_name=talent_name,
        currency="COP",
        breakdown=compute_payout(period, links, production, discounts),
    )


# ===========================================================================
# 1. File generation
# ===========================================================================

class TestFileGeneration:

    def test_file_created_with_expected_name(self, tmp_path):
        path = generate_statement(make_payout(), output_dir=str(tmp_path))
        assert os.path.exists(path)
        assert os.path.basename(path) == "Payout Statement Sofia March 1-15.xlsx"

    def test_unsafe_characters_replaced(self):
        assert statement_filename("Ana/Bea", "1:15 March?") == "Payout Statement Ana-Bea 1-15 March-.xlsx"

    def test_blank_names(self):
        assert statement_filename("", " ") == "Payout Statement Talent Period.xlsx"

    def test_output_dir_created(self, tmp_path):
        target = tmp_path / "nested" / "dir"
        path = generate_statement(make_payout(), output_dir=str(target))
        assert os.path.dirname(path) == str(target)

    def test_default_output_dir(self, output_dir):
        path = generate_statement(make_payout())
        assert os.path.dirname(path) == output_dir


# ===========================================================================
# 2-3. Tabs and content
# ===========================================================================

@pytest.fixture
def workbook(tmp_path):
    return load_workbook(generate_statement(make_payout(), output_dir=str(tmp_path)))


class TestTabs:

    def test_tab_names(self, workbook):
        assert workbook.sheetnames == ["Summary", "Platforms", "Discounts"]

    def test_summary_values(self, workbook):
        ws = workbook["Summary"]
        values = {ws.cell(row=r, column=1).value: ws.cell(row=r, column=2).value for r in range(2, ws.max_row + 1)}

        # Chaturbate: 10_000 gross, 15% → 1_500, net 8_500 → 425 USD; Streamate 250 USD
        assert values["Talent"] == "Sofia"
        assert values["Total tokens"] == 13_500
        assert values["Total USD"] == pytest.approx(675.0)
        assert values["Gross (COP)"] == pytest.approx(1_620_000)
        assert values["Discounts (COP)"] == pytest.approx(125_000)
        assert values["Net payout (COP)"] == pytest.approx(1_495_000)
        assert values["Shortfall (COP)"] == pytest.approx(505_000)
        assert values["Tokens per hour"] == pytest.approx(337.5)

    def test_summary_without_hours(self, tmp_path):
        wb = load_workbook(generate_statement(make_payout(hours=None), output_dir=str(tmp_path)))
        ws = wb["Summary"]
        values = {ws.cell(row=r, column=1).value: ws.cell(row=r, column=2).value for r in range(2, ws.max_row + 1)}
        assert values["Tokens per hour"] == "not available"
        assert values["Hours worked"] == "not available"

    def test_platform_rows(self, workbook):
        ws = workbook["Platforms"]
        rows = [[c.value for c in row] for row in ws.iter_rows(min_row=2)]

        assert [(r[0], r[1]) for r in rows] == [
            ("Chaturbate", "W1"),
            ("Chaturbate", "W2"),
            ("Chaturbate", "Total"),
            ("Streamate", "Total"),
        ]
        total = rows[2]
        assert total[3] == 10_000     # gross
        assert total[5] == 1_500      # premium
        assert total[6] == 8_500      # net
        assert total[8] == 8_500      # tokens
        assert rows[0][5] == 1_000    # W1 premium (900 → floor)

    def test_discount_rows(self, workbook):
        ws = workbook["Discounts"]
        rows = [[c.value for c in row] for row in ws.iter_rows(min_row=2)]
        assert rows[0] == ["Advance", "manual", "COP", 100_000]
        assert rows[1] == ["Groceries", "ledger", "COP", 25_000]
        assert rows[-1] == ["Total", None, "COP", 125_000]


# ===========================================================================
# 4. Formatting
# ===========================================================================

class TestFormatting:

    def test_header_bold_and_frozen(self, workbook):
        for ws in workbook.worksheets:
            assert all(cell.font.bold for cell in ws[1])
            assert ws.freeze_panes == "A2"

    def test_number_formats(self, workbook):
        platforms = workbook["Platforms"]
        assert platforms.cell(row=2, column=8).number_format == USD_FORMAT
        assert platforms.cell(row=2, column=4).number_format == NUMBER_FORMAT
        assert workbook["Discounts"].cell(row=2, column=4).number_format == LOCAL_FORMAT

    def test_total_rows_bold(self, workbook):
        ws = workbook["Platforms"]
        assert ws.cell(row=4, column=1).font.bold
        assert not ws.cell(row=2, column=1).font.bold
