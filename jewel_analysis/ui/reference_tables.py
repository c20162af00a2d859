import sqlite3
from typing import Any

import pandas as pd
import streamlit as st

from jewel_analysis.db import (
    REFERENCE_COLUMNS,
    add_reference_row,
    clear_reference_rows,
    delete_reference_row,
    import_diamond_prices_from_df,
    list_reference_rows,
    update_reference_row,
)
from jewel_analysis.models import PricingMode, StoneCategory

PRODUCT_TYPES = [
    "ring",
    "necklace",
    "bracelet",
    "earring",
    "brooch",
    "bangle",
    "chain",
    "solitaire",
    "fivestone",
    "set",
    "other",
]
DIAMOND_SHAPES = ["Round", "Princess", "Oval", "Marquise", "Pear", "Heart", "Emerald", "Cushion", "Asscher", "Radiant"]
DIAMOND_COLORS = ["D", "E", "F", "G", "H", "I", "J", "K", "L", "M"]
DIAMOND_CLARITIES = ["FL", "IF", "VVS1", "VVS2", "VS1", "VS2", "SI1", "SI2", "I1", "I2", "I3"]

TABLE_LABELS = {
    "setting_rates": "Setting rates",
    "gemstone_prices": "Gemstone prices",
    "diamond_prices": "Diamond grid",
    "discount_rates": "Diamond discounts",
    "labor_prices": "Labour prices",
    "polish_prices": "Polish prices",
}


def _index_of(options: list[Any], value: Any) -> int:
    return options.index(value) if value in options else 0


def _input_for(table: str, column: str, prefix: str, current: Any = None) -> Any:
    key = f"{prefix}_{table}_{column}"
    if column == "category":
        options = ["any", *[c.value for c in StoneCategory]]
        choice = st.selectbox("Stone category", options, index=_index_of(options, current or "any"), key=key)
        return None if choice == "any" else choice
    if column == "pricing_mode":
        options = [m.value for m in PricingMode]
        return st.selectbox("Pricing mode", options, index=_index_of(options, current), key=key)
    if column == "product_type":
        return st.selectbox("Product type", PRODUCT_TYPES, index=_index_of(PRODUCT_TYPES, current), key=key)
    if column == "shape":
        return st.selectbox("Shape", DIAMOND_SHAPES, index=_index_of(DIAMOND_SHAPES, current), key=key)
    if column == "color":
        return st.selectbox("Color", DIAMOND_COLORS, index=_index_of(DIAMOND_COLORS, current), key=key)
    if column == "clarity":
        return st.selectbox("Clarity", DIAMOND_CLARITIES, index=_index_of(DIAMOND_CLARITIES, current), key=key)
    if column in {"stone_type", "quality"}:
        label = column.replace("_", " ").capitalize()
        return st.text_input(label, value=current or "", key=key).strip() or None
    value = float(current or 0.0)
    if column in {"min_carat", "max_carat", "low_carat", "high_carat"}:
        label = column.replace("_", " ").capitalize()
        return st.number_input(label, min_value=0.0, value=value, step=0.01, format="%.3f", key=key)
    if column == "discount_percent":
        return st.number_input("Discount (%)", min_value=0.0, max_value=100.0, value=value, step=0.5, key=key)
    label = f"{column.replace('_', ' ').capitalize()} (USD)"
    return st.number_input(label, min_value=0.0, value=value, step=1.0, key=key)


def _row_problem(table: str, values: dict[str, Any]) -> str | None:
    if table == "gemstone_prices" and not values.get("stone_type"):
        return "Stone type is required."
    for low, high in (("min_carat", "max_carat"), ("low_carat", "high_carat")):
        if {low, high} <= values.keys() and values[low] > values[high]:
            return "Minimum carat must not exceed maximum carat."
    return None


def _row_form(table: str, prefix: str, current: dict[str, Any] | None = None) -> dict[str, Any]:
    columns = st.columns(3)
    values = {}
    for index, column in enumerate(REFERENCE_COLUMNS[table]):
        with columns[index % 3]:
            values[column] = _input_for(table, column, prefix, (current or {}).get(column))
    return values


def _render_table(conn: sqlite3.Connection, table: str, owner: str, edit_owner: str | None) -> None:
    rows = list_reference_rows(conn, table, owner)
    if rows:
        df = pd.DataFrame([dict(row) for row in rows])
        df["scope"] = df["owner"].apply(lambda value: "shared" if value is None else "private")
        st.dataframe(
            df[["id", "scope", *REFERENCE_COLUMNS[table]]],
            width="stretch",
            hide_index=True,
        )
    else:
        st.info(f"No {TABLE_LABELS[table].lower()} yet.")

    with st.form(f"add_{table}_form"):
        values = _row_form(table, "add")
        submitted = st.form_submit_button("Add row", type="primary")

    if submitted:
        problem = _row_problem(table, values)
        if problem:
            st.error(problem)
        else:
            add_reference_row(conn, table, values, owner=edit_owner)
            st.success("Row added.")
            st.rerun()

    editable = [row for row in rows if row["owner"] == edit_owner]
    if not editable:
        return

    st.markdown("##### Edit rows")
    selected_id = st.selectbox(
        "Row to edit or delete",
        options=[int(row["id"]) for row in editable],
        format_func=lambda rid: f"#{rid}",
        key=f"edit_{table}_select",
    )
    selected = dict(next(row for row in editable if row["id"] == selected_id))

    with st.form(f"edit_{table}_form"):
        values = _row_form(table, f"edit_{selected_id}", selected)
        save_edit = st.form_submit_button("Save changes", type="primary")

    col_a, col_b = st.columns(2)
    with col_a:
        delete_click = st.button("Delete row", key=f"delete_{table}_button")
    with col_b:
        confirm_clear = st.checkbox(f"Confirm removing all {len(editable)} rows", key=f"clear_{table}_confirm")
        clear_click = st.button("Clear table", key=f"clear_{table}_button", disabled=not confirm_clear)

    if save_edit:
        problem = _row_problem(table, values)
        if problem:
            st.error(problem)
        elif update_reference_row(conn, table, selected_id, values, owner=edit_owner):
            st.success("Row updated.")
            st.rerun()
        else:
            st.error("Row no longer exists.")

    if delete_click:
        delete_reference_row(conn, table, selected_id, owner=edit_owner)
        st.success("Row deleted.")
        st.rerun()

    if clear_click:
        removed = clear_reference_rows(conn, table, owner=edit_owner)
        st.success(f"Removed {removed} rows.")
        st.rerun()


def _render_diamond_import(conn: sqlite3.Connection, edit_owner: str | None) -> None:
    template_df = pd.DataFrame(
        [
            {
                "shape": "Round",
                "low_carat": 0.30,
                "high_carat": 0.39,
                "color": "G",
                "clarity": "VS1",
                "price_per_carat": 3200,
            }
        ],
        columns=REFERENCE_COLUMNS["diamond_prices"],
    )
    st.download_button(
        "Download grid CSV template",
        data=template_df.to_csv(index=False).encode("utf-8"),
        file_name="diamond_grid_template.csv",
        mime="text/csv",
    )

    clear_existing = st.checkbox("Replace existing grid rows on import", value=True)
    uploaded = st.file_uploader("Import diamond grid CSV", type=["csv"])
    if uploaded is not None and st.button("Import grid", type="primary"):
        try:
            import_df = pd.read_csv(uploaded)
            count = import_diamond_prices_from_df(conn, import_df, clear_existing=clear_existing, owner=edit_owner)
            st.success(f"Imported {count} grid rows.")
        except ValueError as exc:
            st.error(f"Failed to import CSV: {exc}")


def render(conn: sqlite3.Connection, owner: str, is_admin: bool = False) -> None:
    st.subheader("Reference Tables")
    st.caption("Prices are in USD and converted with the current rate when an analysis is saved.")

    # Admins maintain the shared rows; everyone else adds private overrides.
    edit_owner = None if is_admin else owner
    if not is_admin:
        st.info(
            "Rows you add here are private to your account and take precedence over shared rows. "
            "Shared rows are maintained by the administrator."
        )

    tabs = st.tabs(list(TABLE_LABELS.values()))
    for tab, table in zip(tabs, TABLE_LABELS):
        with tab:
            _render_table(conn, table, owner, edit_owner)
            if table == "diamond_prices":
                _render_diamond_import(conn, edit_owner)
