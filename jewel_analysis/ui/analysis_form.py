import sqlite3
from typing import Any

import pandas as pd
import streamlit as st

from jewel_analysis.analyses import (
    create_analysis,
    delete_analysis,
    get_analysis,
    list_analyses,
    list_batches,
    list_manufacturers,
    recompute_analysis,
    update_analysis,
)
from jewel_analysis.db import get_all_settings, list_reference_rows
from jewel_analysis.errors import NotFoundError, RateUnavailableError
from jewel_analysis.models import LaborUnit, StoneCategory
from jewel_analysis.pricing import (
    PURITY_FACTORS,
    profit_loss_label,
    round_money,
    suggest_labor_amount,
    suggest_polish_amount,
)
from jewel_analysis.ui.reference_tables import DIAMOND_CLARITIES, DIAMOND_COLORS, DIAMOND_SHAPES, PRODUCT_TYPES
from jewel_analysis.validation import ValidationError

STONE_COLUMNS = [
    "stone_type",
    "category",
    "carat_size",
    "quantity",
    "shape",
    "color",
    "clarity",
    "quality",
    "discount_percent",
]


def _empty_stones() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "stone_type": pd.Series(dtype="object"),
            "category": pd.Series(dtype="object"),
            "carat_size": pd.Series(dtype="float"),
            "quantity": pd.Series(dtype="Int64"),
            "shape": pd.Series(dtype="object"),
            "color": pd.Series(dtype="object"),
            "clarity": pd.Series(dtype="object"),
            "quality": pd.Series(dtype="object"),
            "discount_percent": pd.Series(dtype="float"),
        }
    )


def _stone_payloads(df: pd.DataFrame) -> list[dict[str, Any]]:
    payloads = []
    for row in df.to_dict(orient="records"):
        cleaned = {key: (None if pd.isna(value) else value) for key, value in row.items()}
        if not cleaned.get("stone_type") and cleaned.get("carat_size") is None:
            continue
        payloads.append(cleaned)
    return payloads


def _show_validation_errors(exc: ValidationError) -> None:
    for error in exc.errors:
        st.error(f"{error.field}: {error.message}")


def _analysis_form(
    conn: sqlite3.Connection,
    owner: str,
    key: str,
    defaults: dict[str, Any],
    stones_df: pd.DataFrame,
) -> dict[str, Any] | None:
    settings = get_all_settings(conn)
    manufacturers = list_manufacturers(conn, owner)
    manufacturer_options = [None, *[int(row["id"]) for row in manufacturers]]
    manufacturer_names = {int(row["id"]): row["name"] for row in manufacturers}
    batches = list_batches(conn, owner)
    batch_options = [None, *[int(row["id"]) for row in batches]]
    batch_names = {int(row["id"]): f"{row['manufacturer_name']} #{row['batch_number']}" for row in batches}

    product_type = st.selectbox(
        "Product type",
        PRODUCT_TYPES,
        index=PRODUCT_TYPES.index(defaults["product_type"]) if defaults.get("product_type") in PRODUCT_TYPES else 0,
        key=f"{key}_product_type",
    )
    grams_hint = float(defaults.get("total_grams") or 0.0)
    labor_hint = suggest_labor_amount(product_type, grams_hint, list_reference_rows(conn, "labor_prices", owner))
    polish_hint = suggest_polish_amount(product_type, list_reference_rows(conn, "polish_prices", owner))
    if labor_hint or polish_hint:
        st.caption(f"Table prices for {product_type}: labour {labor_hint:,.2f}, polish {polish_hint:,.2f}")

    with st.form(key):
        col1, col2, col3 = st.columns(3)
        with col1:
            manufacturer_id = st.selectbox(
                "Manufacturer",
                manufacturer_options,
                key=f"{key}_manufacturer",
                index=manufacturer_options.index(defaults.get("manufacturer_id"))
                if defaults.get("manufacturer_id") in manufacturer_options
                else 0,
                format_func=lambda mid: "None" if mid is None else manufacturer_names[mid],
            )
            batch_id = st.selectbox(
                "Batch",
                batch_options,
                key=f"{key}_batch",
                index=batch_options.index(defaults.get("batch_id")) if defaults.get("batch_id") in batch_options else 0,
                format_func=lambda bid: "None" if bid is None else batch_names[bid],
            )
            product_code = st.text_input("Product code", value=defaults.get("product_code") or "", key=f"{key}_code")
            total_grams = st.number_input("Total grams", min_value=0.0, value=grams_hint, step=0.01, key=f"{key}_grams")
        with col2:
            purity_labels = list(PURITY_FACTORS)
            gold_purity = st.selectbox(
                "Gold purity (K)",
                purity_labels,
                key=f"{key}_purity",
                index=purity_labels.index(defaults.get("gold_purity", "24")),
            )
            fire_percent = st.number_input(
                "Fire / loss (%)",
                key=f"{key}_fire",
                min_value=0.0,
                max_value=100.0,
                value=float(defaults.get("fire_percent", settings["default_fire_pct"])),
                step=0.5,
            )
            labor_amount = st.number_input(
                "Labour",
                key=f"{key}_labor",
                min_value=0.0,
                value=float(defaults.get("labor_amount", labor_hint)),
                step=0.5,
            )
            labor_unit = st.radio(
                "Labour unit",
                [unit.value for unit in LaborUnit],
                key=f"{key}_labor_unit",
                index=[unit.value for unit in LaborUnit].index(defaults.get("labor_unit", LaborUnit.CURRENCY.value)),
                format_func=lambda unit: "Currency" if unit == LaborUnit.CURRENCY.value else "Gold grams",
                horizontal=True,
            )
        with col3:
            input_currency = st.selectbox(
                "Entry currency",
                ["USD", settings["base_currency"]],
                key=f"{key}_currency",
                index=0 if defaults.get("input_currency", settings["input_currency"]) == "USD" else 1,
            )
            polish_enabled = st.checkbox("Polish", value=True, key=f"{key}_polish_enabled")
            polish_amount = st.number_input(
                "Polish amount",
                key=f"{key}_polish",
                min_value=0.0,
                value=float(defaults.get("polish_amount", polish_hint)),
                step=0.5,
            )
            certificate_amount = st.number_input(
                "Certificate",
                key=f"{key}_certificate",
                min_value=0.0,
                value=float(defaults.get("certificate_amount", 0.0)),
                step=0.5,
            )
            manufacturer_price = st.number_input(
                "Manufacturer price",
                key=f"{key}_manufacturer_price",
                min_value=0.0,
                value=float(defaults.get("manufacturer_price", 0.0)),
                step=1.0,
            )

        st.markdown("**Stones**")
        edited_stones = st.data_editor(
            stones_df,
            num_rows="dynamic",
            width="stretch",
            hide_index=True,
            key=f"{key}_stones",
            column_config={
                "stone_type": st.column_config.TextColumn("Stone type"),
                "category": st.column_config.SelectboxColumn(
                    "Category",
                    options=[category.value for category in StoneCategory],
                    help="Leave blank to detect diamonds from the stone type.",
                ),
                "carat_size": st.column_config.NumberColumn("Carat", min_value=0.0, format="%.3f"),
                "quantity": st.column_config.NumberColumn("Qty", min_value=1, step=1),
                "shape": st.column_config.SelectboxColumn("Shape", options=DIAMOND_SHAPES),
                "color": st.column_config.SelectboxColumn("Color", options=DIAMOND_COLORS),
                "clarity": st.column_config.SelectboxColumn("Clarity", options=DIAMOND_CLARITIES),
                "quality": st.column_config.TextColumn("Quality"),
                "discount_percent": st.column_config.NumberColumn("Discount %", min_value=0.0, max_value=100.0),
            },
        )

        submitted = st.form_submit_button("Calculate & save", type="primary")

    if not submitted:
        return None

    return {
        "manufacturer_id": manufacturer_id,
        "batch_id": batch_id,
        "product_code": product_code,
        "product_type": product_type,
        "total_grams": total_grams,
        "gold_purity": gold_purity,
        "fire_percent": fire_percent,
        "labor_amount": labor_amount,
        "labor_unit": labor_unit,
        "polish_enabled": polish_enabled,
        "polish_amount": polish_amount,
        "certificate_amount": certificate_amount,
        "manufacturer_price": manufacturer_price,
        "input_currency": input_currency,
        "stones": _stone_payloads(pd.DataFrame(edited_stones)),
    }


def _render_breakdown(record: dict[str, Any]) -> None:
    currency = record["base_currency"]
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Total cost", f"{record['total_cost']:,.2f} {currency}")
    col2.metric("Manufacturer price", f"{record['manufacturer_price_base']:,.2f} {currency}")
    col3.metric(profit_loss_label(record["profit_loss"]), f"{record['profit_loss']:,.2f} {currency}")
    col4.metric("Gold / gram used", f"{record['gold_price_used']:,.2f} {currency}")

    breakdown_df = pd.DataFrame(
        [
            {"Component": "Raw material", "Amount": record["raw_material_cost"]},
            {"Component": "Labour (incl. polish & certificate)", "Amount": record["labor_cost"]},
            {"Component": "  of which polish", "Amount": record["polish_cost"]},
            {"Component": "  of which certificate", "Amount": record["certificate_cost"]},
            {"Component": "Stone setting", "Amount": record["total_setting_cost"]},
            {"Component": "Stones", "Amount": record["total_stone_cost"]},
            {"Component": "Total", "Amount": record["total_cost"]},
        ]
    )
    st.dataframe(breakdown_df, hide_index=True, width="stretch")

    if record["stones"]:
        stone_df = pd.DataFrame(record["stones"])
        st.dataframe(
            stone_df[
                [
                    "stone_type",
                    "category",
                    "carat_size",
                    "quantity",
                    "shape",
                    "color",
                    "clarity",
                    "rapaport_price",
                    "discount_percent",
                    "price_per_carat",
                    "setting_cost",
                    "total_stone_cost",
                ]
            ],
            hide_index=True,
            width="stretch",
        )
    st.caption(f"USD rate used: {record['usd_rate_used']:,.4f}")


def _save(conn: sqlite3.Connection, owner: str, payload: dict[str, Any], analysis_id: int | None = None) -> bool:
    try:
        if analysis_id is None:
            new_id = create_analysis(conn, owner, payload)
            st.session_state["selected_analysis_id"] = new_id
        else:
            update_analysis(conn, owner, analysis_id, payload)
        return True
    except ValidationError as exc:
        _show_validation_errors(exc)
    except (RateUnavailableError, NotFoundError) as exc:
        st.error(str(exc))
    return False


def render(conn: sqlite3.Connection, owner: str) -> None:
    st.subheader("Cost Analyses")

    new_tab, records_tab = st.tabs(["New analysis", "Records"])

    with new_tab:
        payload = _analysis_form(conn, owner, "new_analysis_form", {}, _empty_stones())
        if payload is not None and _save(conn, owner, payload):
            st.success("Analysis saved.")
            record = get_analysis(conn, owner, st.session_state["selected_analysis_id"])
            if record:
                _render_breakdown(record)

    with records_tab:
        search = st.text_input("Search product code or type")
        rows = list_analyses(conn, owner, search=search)
        if not rows:
            st.info("No analyses yet.")
            return

        table_df = pd.DataFrame([dict(row) for row in rows])
        table_df["result"] = table_df["profit_loss"].apply(profit_loss_label)
        st.dataframe(
            table_df[
                [
                    "id",
                    "product_code",
                    "product_type",
                    "manufacturer_name",
                    "batch_number",
                    "total_grams",
                    "gold_purity",
                    "total_cost",
                    "manufacturer_price_base",
                    "profit_loss",
                    "result",
                    "created_at",
                ]
            ],
            hide_index=True,
            width="stretch",
        )

        record_ids = [int(row["id"]) for row in rows]
        selected_id = st.selectbox(
            "Open analysis",
            record_ids,
            format_func=lambda rid: f"#{rid} - {next(r['product_code'] for r in rows if r['id'] == rid)}",
        )
        record = get_analysis(conn, owner, selected_id)
        if record is None:
            st.warning("Analysis no longer exists.")
            return

        _render_breakdown(record)

        recomputed = recompute_analysis(conn, owner, selected_id)
        if round_money(recomputed.total_cost) != round_money(record["total_cost"]):
            st.info(
                "Reference tables changed since this analysis was saved. "
                f"With today's tables the total would be {recomputed.total_cost:,.2f}."
            )

        with st.expander("Edit analysis"):
            stones_df = pd.DataFrame(record["stones"], columns=STONE_COLUMNS) if record["stones"] else _empty_stones()
            payload = _analysis_form(conn, owner, f"edit_analysis_{selected_id}", record, stones_df)
            if payload is not None and _save(conn, owner, payload, selected_id):
                st.success("Analysis recalculated with the latest rate.")
                st.rerun()

        if st.button("Delete analysis", type="secondary"):
            delete_analysis(conn, owner, selected_id)
            st.success("Analysis deleted.")
            st.rerun()
