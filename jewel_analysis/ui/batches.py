import sqlite3

import pandas as pd
import streamlit as st

from jewel_analysis.analyses import (
    assign_analyses_to_batch,
    create_batch,
    delete_batch,
    get_batch,
    get_batch_records,
    list_analyses,
    list_batches,
    list_manufacturers,
)
from jewel_analysis.db import get_all_settings, report_recipients
from jewel_analysis.errors import EmailDispatchError, NotFoundError
from jewel_analysis.mailer import send_batch_report
from jewel_analysis.pricing import profit_loss_label, summarize_batch
from jewel_analysis.reports import batch_currency, batch_report_csv, batch_report_frame, batch_report_pdf


def render(conn: sqlite3.Connection, owner: str) -> None:
    st.subheader("Batches")
    currency = get_all_settings(conn)["base_currency"]

    manufacturers = list_manufacturers(conn, owner)
    if not manufacturers:
        st.info("Add a manufacturer before creating batches.")
        return

    with st.form("create_batch_form"):
        manufacturer_id = st.selectbox(
            "Manufacturer",
            [int(row["id"]) for row in manufacturers],
            format_func=lambda mid: next(r["name"] for r in manufacturers if r["id"] == mid),
        )
        create_click = st.form_submit_button("Create next batch", type="primary")

    if create_click:
        try:
            batch = create_batch(conn, owner, manufacturer_id)
            st.success(f"Created {batch['manufacturer_name']} batch #{batch['batch_number']}.")
        except NotFoundError as exc:
            st.error(str(exc))

    batches = list_batches(conn, owner)
    if not batches:
        st.info("No batches yet.")
        return

    batches_df = pd.DataFrame([dict(row) for row in batches])
    st.dataframe(
        batches_df[["id", "manufacturer_name", "batch_number", "record_count", "total_cost", "manufacturer_total", "created_at"]],
        hide_index=True,
        width="stretch",
    )

    selected_id = st.selectbox(
        "Open batch",
        [int(row["id"]) for row in batches],
        format_func=lambda bid: next(
            f"{r['manufacturer_name']} #{r['batch_number']}" for r in batches if r["id"] == bid
        ),
    )
    batch = get_batch(conn, owner, selected_id)
    if batch is None:
        st.warning("Batch no longer exists.")
        return

    records = get_batch_records(conn, owner, selected_id)
    try:
        currency = batch_currency(records, default=currency)
    except ValueError as exc:
        st.error(f"{exc} Recalculate or move them out before reporting on this batch.")
        records_ok = False
    else:
        records_ok = True

    if records and records_ok:
        summary = summarize_batch(records)
        col1, col2, col3, col4 = st.columns(4)
        col1.metric("Products", summary["record_count"])
        col2.metric("Analysis total", f"{summary['total_cost']:,.2f} {currency}")
        col3.metric("Manufacturer total", f"{summary['manufacturer_price']:,.2f} {currency}")
        col4.metric(profit_loss_label(summary["profit_loss"]), f"{summary['difference_pct']:+.2f}%")

        st.dataframe(batch_report_frame(records), hide_index=True, width="stretch")

        slug = f"{batch['manufacturer_name']}-batch-{batch['batch_number']}".replace(" ", "_")
        dl1, dl2, dl3 = st.columns(3)
        with dl1:
            st.download_button(
                "Download CSV",
                data=batch_report_csv(records),
                file_name=f"{slug}.csv",
                mime="text/csv",
            )
        with dl2:
            st.download_button(
                "Download PDF",
                data=batch_report_pdf(batch, records, currency),
                file_name=f"{slug}.pdf",
                mime="application/pdf",
            )
        with dl3:
            if st.button("E-mail report"):
                try:
                    send_batch_report(batch, records, report_recipients(conn), currency=currency)
                    st.success("Report sent.")
                except EmailDispatchError as exc:
                    st.error(str(exc))
    elif not records:
        st.info("This batch has no analyses yet.")

    with st.expander("Add or remove analyses"):
        candidates = list_analyses(conn, owner, manufacturer_id=batch["manufacturer_id"])
        unbatched = [row for row in candidates if row["batch_id"] != selected_id]
        to_add = st.multiselect(
            "Add analyses",
            [int(row["id"]) for row in unbatched],
            format_func=lambda rid: next(r["product_code"] for r in unbatched if r["id"] == rid),
        )
        to_remove = st.multiselect(
            "Remove analyses",
            [int(record["id"]) for record in records],
            format_func=lambda rid: next(r["product_code"] for r in records if r["id"] == rid),
        )
        if st.button("Apply changes"):
            added = assign_analyses_to_batch(conn, owner, selected_id, to_add)
            removed = assign_analyses_to_batch(conn, owner, None, to_remove)
            st.success(f"Added {added}, removed {removed}.")
            st.rerun()

    if st.button("Delete batch", type="secondary"):
        delete_batch(conn, owner, selected_id)
        st.success("Batch deleted; its analyses were kept.")
        st.rerun()
