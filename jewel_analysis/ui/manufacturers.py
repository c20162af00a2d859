import sqlite3

import pandas as pd
import streamlit as st

from jewel_analysis.analyses import add_manufacturer, delete_manufacturer, list_manufacturers, update_manufacturer
from jewel_analysis.validation import ValidationError


def _manufacturer_form(key: str, current: dict[str, str]) -> tuple[bool, dict[str, str]]:
    with st.form(key):
        col1, col2 = st.columns(2)
        with col1:
            name = st.text_input("Name", value=current.get("name") or "")
            contact_person = st.text_input("Contact person", value=current.get("contact_person") or "")
            email = st.text_input("E-mail", value=current.get("email") or "")
        with col2:
            phone = st.text_input("Phone", value=current.get("phone") or "")
            address = st.text_area("Address", value=current.get("address") or "")
            notes = st.text_area("Notes", value=current.get("notes") or "")
        submitted = st.form_submit_button("Save", type="primary")

    return submitted, {
        "name": name,
        "contact_person": contact_person,
        "email": email,
        "phone": phone,
        "address": address,
        "notes": notes,
    }


def render(conn: sqlite3.Connection, owner: str) -> None:
    st.subheader("Manufacturers")

    list_tab, add_tab = st.tabs(["Manufacturers", "Add manufacturer"])

    with list_tab:
        rows = list_manufacturers(conn, owner)
        if not rows:
            st.info("No manufacturers yet. Add one in the next tab.")
        else:
            df = pd.DataFrame([dict(row) for row in rows])
            st.dataframe(
                df[["id", "name", "contact_person", "email", "phone"]],
                width="stretch",
                hide_index=True,
            )

            selected_id = st.selectbox(
                "Select manufacturer to edit/delete",
                options=[int(row["id"]) for row in rows],
                format_func=lambda mid: next(r["name"] for r in rows if r["id"] == mid),
            )
            selected = dict(next(row for row in rows if row["id"] == selected_id))

            submitted, values = _manufacturer_form(f"edit_manufacturer_{selected_id}", selected)
            if submitted:
                try:
                    update_manufacturer(conn, owner, selected_id, values)
                    st.success("Manufacturer updated.")
                    st.rerun()
                except ValidationError as exc:
                    st.error(str(exc))

            st.caption("Deleting a manufacturer removes its batches; analyses are kept without a manufacturer.")
            if st.button("Delete manufacturer", type="secondary"):
                delete_manufacturer(conn, owner, selected_id)
                st.success("Manufacturer deleted.")
                st.rerun()

    with add_tab:
        submitted, values = _manufacturer_form("add_manufacturer_form", {})
        if submitted:
            try:
                add_manufacturer(conn, owner, values)
                st.success("Manufacturer added.")
                st.rerun()
            except ValidationError as exc:
                st.error(str(exc))
