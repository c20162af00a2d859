"""
Batch report renderings.

Everything here formats figures that were computed and stored when each
analysis was saved; nothing is recalculated.
"""

import html
from collections.abc import Mapping, Sequence
from datetime import datetime
from io import BytesIO
from typing import Any

import pandas as pd
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas as rl_canvas

from jewel_analysis.pricing import price_difference_pct, profit_loss_label, round_money, safe_number, summarize_batch

REPORT_COLUMNS = [
    ("Product Code", "product_code"),
    ("Type", "product_type"),
    ("Grams", "total_grams"),
    ("Purity", "gold_purity"),
    ("Raw Material", "raw_material_cost"),
    ("Labour", "labor_cost"),
    ("Stones", "total_stone_cost"),
    ("Setting", "total_setting_cost"),
    ("Total Cost", "total_cost"),
    ("Manufacturer Price", "manufacturer_price_base"),
    ("Profit/Loss", "profit_loss"),
]

TOTAL_COLUMNS = {
    "Raw Material": "raw_material_cost",
    "Labour": "labor_cost",
    "Stones": "stone_cost",
    "Setting": "setting_cost",
    "Total Cost": "total_cost",
    "Manufacturer Price": "manufacturer_price",
    "Profit/Loss": "profit_loss",
}


def batch_title(batch: Mapping[str, Any]) -> str:
    return f"{batch['manufacturer_name']} - Batch #{batch['batch_number']}"


def batch_currency(records: Sequence[Mapping[str, Any]], default: str = "") -> str:
    """Base currency shared by `records`. Raises ValueError when they disagree."""
    codes = {str(record.get("base_currency") or "").upper() for record in records} - {""}
    if len(codes) > 1:
        raise ValueError(f"Analyses in this batch are priced in different currencies: {', '.join(sorted(codes))}.")
    return codes.pop() if codes else default


def batch_report_frame(records: Sequence[Mapping[str, Any]]) -> pd.DataFrame:
    rows = []
    for record in records:
        row: dict[str, Any] = {}
        for label, column in REPORT_COLUMNS:
            value = record[column]
            row[label] = round_money(safe_number(value)) if column.endswith(("cost", "base", "loss")) else value
        row["Diff %"] = round(price_difference_pct(record["total_cost"], record["manufacturer_price_base"]), 2)
        row["Result"] = profit_loss_label(record["profit_loss"])
        rows.append(row)

    summary = summarize_batch(records)
    total_row: dict[str, Any] = {label: "" for label, _ in REPORT_COLUMNS}
    total_row["Product Code"] = "TOTAL"
    total_row["Grams"] = round(sum(safe_number(record["total_grams"]) for record in records), 2)
    for label, key in TOTAL_COLUMNS.items():
        total_row[label] = round_money(summary[key])
    total_row["Diff %"] = round(summary["difference_pct"], 2)
    total_row["Result"] = profit_loss_label(summary["profit_loss"])
    rows.append(total_row)

    return pd.DataFrame(rows, columns=[label for label, _ in REPORT_COLUMNS] + ["Diff %", "Result"])


def batch_report_csv(records: Sequence[Mapping[str, Any]]) -> bytes:
    # BOM so spreadsheet apps pick up UTF-8 for Turkish product names.
    return batch_report_frame(records).to_csv(index=False).encode("utf-8-sig")


def batch_report_html(batch: Mapping[str, Any], records: Sequence[Mapping[str, Any]], currency: str = "") -> str:
    frame = batch_report_frame(records)
    summary = summarize_batch(records)
    title = html.escape(batch_title(batch))
    table = frame.to_html(index=False, border=0, classes="report", float_format=lambda value: f"{value:,.2f}")
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
body {{ font-family: Helvetica, Arial, sans-serif; font-size: 12px; color: #222; }}
table.report {{ border-collapse: collapse; width: 100%; }}
table.report th, table.report td {{ border: 1px solid #ccc; padding: 4px 6px; text-align: right; }}
table.report th:first-child, table.report td:first-child {{ text-align: left; }}
table.report tr:last-child td {{ font-weight: bold; background: #f3f3f3; }}
</style>
</head>
<body>
<h2>{title}</h2>
<p>Created {html.escape(str(batch['created_at'])[:10])} &middot; {summary['record_count']} products &middot; figures in {html.escape(currency)}</p>
<p>Analysis total {summary['total_cost']:,.2f} &middot; Manufacturer total {summary['manufacturer_price']:,.2f}
&middot; Difference {summary['difference_pct']:+.2f}%</p>
{table}
</body>
</html>
"""


def batch_report_pdf(batch: Mapping[str, Any], records: Sequence[Mapping[str, Any]], currency: str = "") -> bytes:
    frame = batch_report_frame(records)
    buf = BytesIO()
    page_size = landscape(A4)
    c = rl_canvas.Canvas(buf, pagesize=page_size)
    W, H = page_size
    margin = 12 * mm
    row_height = 6 * mm
    col_width = (W - 2 * margin) / len(frame.columns)

    def header(y: float) -> float:
        c.setFont("Helvetica-Bold", 9)
        for index, label in enumerate(frame.columns):
            c.drawString(margin + index * col_width, y, str(label)[:18])
        c.line(margin, y - 2, W - margin, y - 2)
        return y - row_height

    def cell_text(value: Any) -> str:
        if isinstance(value, float):
            return f"{value:,.2f}"
        return "" if value is None else str(value)[:20]

    c.setTitle(batch_title(batch))
    y = H - margin
    c.setFont("Helvetica-Bold", 14)
    c.drawString(margin, y, batch_title(batch))
    y -= 16
    c.setFont("Helvetica", 9)
    c.drawString(
        margin,
        y,
        f"Created {str(batch['created_at'])[:10]} | Generated {datetime.now().strftime('%Y-%m-%d %H:%M')} | Currency {currency}",
    )
    y -= 18
    y = header(y)

    last_index = len(frame) - 1
    for index, row in enumerate(frame.itertuples(index=False)):
        if y < margin + row_height:
            c.showPage()
            y = header(H - margin)
        c.setFont("Helvetica-Bold" if index == last_index else "Helvetica", 8)
        for col_index, value in enumerate(row):
            c.drawString(margin + col_index * col_width, y, cell_text(value))
        y -= row_height

    c.showPage()
    c.save()
    return buf.getvalue()
