import pytest

from jewel_analysis.reports import batch_currency, batch_report_csv, batch_report_frame, batch_report_html, batch_report_pdf

BATCH = {"batch_number": 3, "manufacturer_name": "Atelier Demir", "created_at": "2026-03-01T10:00:00+00:00"}


def _record(product_code, total_cost, manufacturer_price, **extra):
    record = {
        "product_code": product_code,
        "product_type": "ring",
        "total_grams": 5.0,
        "gold_purity": "18",
        "raw_material_cost": total_cost - 100.0,
        "labor_cost": 60.0,
        "total_stone_cost": 30.0,
        "total_setting_cost": 10.0,
        "polish_cost": 0.0,
        "certificate_cost": 0.0,
        "total_cost": total_cost,
        "manufacturer_price_base": manufacturer_price,
        "profit_loss": manufacturer_price - total_cost,
    }
    record.update(extra)
    return record


RECORDS = [_record("R-1", 1000.0, 1100.0), _record("R-2", 2000.0, 1900.0)]


def test_frame_has_one_row_per_record_and_total():
    frame = batch_report_frame(RECORDS)

    assert list(frame["Product Code"]) == ["R-1", "R-2", "TOTAL"]
    total = frame.iloc[-1]
    assert total["Total Cost"] == 3000.0
    assert total["Manufacturer Price"] == 3000.0
    assert total["Grams"] == 10.0
    assert total["Result"] == "Break-even"
    assert frame.iloc[0]["Diff %"] == pytest.approx(10.0)
    assert frame.iloc[1]["Result"] == "Below cost"


def test_csv_is_utf8_with_bom():
    data = batch_report_csv([_record("Yüzük-1", 1000.0, 1100.0)])

    assert data.startswith(b"\xef\xbb\xbf")
    text = data.decode("utf-8-sig")
    assert text.splitlines()[0].startswith("Product Code,Type,Grams")
    assert "Yüzük-1" in text
    assert "TOTAL" in text


def test_html_contains_title_and_totals():
    page = batch_report_html(BATCH, RECORDS, "TRY")

    assert "Atelier Demir - Batch #3" in page
    assert "TOTAL" in page
    assert "figures in TRY" in page


def test_pdf_renders_many_rows():
    records = [_record(f"R-{index}", 1000.0, 1050.0) for index in range(80)]

    pdf = batch_report_pdf(BATCH, records, "TRY")

    assert pdf.startswith(b"%PDF")


def test_batch_currency_rejects_mixed_records():
    lira = _record("R-1", 1000.0, 1100.0, base_currency="TRY")
    euro = _record("R-2", 30.0, 33.0, base_currency="eur")

    assert batch_currency([lira, lira], default="USD") == "TRY"
    assert batch_currency([], default="USD") == "USD"
    with pytest.raises(ValueError, match="EUR, TRY"):
        batch_currency([lira, euro])
