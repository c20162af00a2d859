import sqlite3
from datetime import UTC, datetime

import pandas as pd
import streamlit as st

from jewel_analysis.db import get_all_settings, list_market_rates, save_market_rate
from jewel_analysis.providers.goldapi import get_market_rate_with_cache


def _format_gmt_timestamp(timestamp_iso: str) -> str:
    try:
        parsed = datetime.fromisoformat(timestamp_iso)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S GMT")
    except ValueError:
        return timestamp_iso


def render(conn: sqlite3.Connection, owner: str) -> None:
    st.subheader("Market Rates")
    settings = get_all_settings(conn)
    base_currency = settings["base_currency"]
    st.caption(f"Gold price per gram and USD rate used for every new analysis ({base_currency} base)")

    refresh_now = st.button("Refresh rates now", type="primary")
    rate, warning = get_market_rate_with_cache(conn, force_refresh=refresh_now, owner=owner)

    if warning:
        st.warning(warning)

    if rate is None:
        st.info("No market rate yet. Set GOLDAPI_KEY in .env or enter a rate manually below.")
    else:
        col1, col2, col3 = st.columns(3)
        col1.metric(f"USD/{base_currency}", f"{rate.usd_rate:,.4f}")
        col2.metric(f"Gold 24K per gram ({rate.gold_price_currency})", f"{rate.gold_price_per_gram:,.2f}")
        col3.metric("Source", "Manual" if rate.is_manual else "GoldAPI")
        st.caption(f"Fetched at {_format_gmt_timestamp(rate.fetched_at or '')}")

    with st.expander("Enter rate manually"):
        with st.form("manual_rate_form"):
            col1, col2, col3 = st.columns(3)
            with col1:
                usd_rate = st.number_input(
                    f"{base_currency} per 1 USD",
                    min_value=0.0,
                    value=float(rate.usd_rate) if rate else 0.0,
                    step=0.01,
                    format="%.4f",
                )
            with col2:
                gold_price = st.number_input(
                    "Gold 24K price per gram",
                    min_value=0.0,
                    value=float(rate.gold_price_per_gram) if rate else 0.0,
                    step=1.0,
                )
            with col3:
                gold_currency = st.selectbox("Gold price currency", [base_currency, "USD"])
            submitted = st.form_submit_button("Save rate", type="primary")

        if submitted:
            try:
                save_market_rate(
                    conn,
                    usd_rate=usd_rate,
                    gold_price_per_gram=gold_price,
                    gold_price_currency=gold_currency,
                    is_manual=True,
                    owner=owner,
                    local_currency=base_currency,
                )
                st.success("Manual rate saved.")
                st.rerun()
            except ValueError as exc:
                st.error(str(exc))

    history = list_market_rates(conn, owner)
    if history:
        df = pd.DataFrame(
            [
                {
                    "Fetched at (GMT)": _format_gmt_timestamp(row["fetched_at"]),
                    "Per USD": float(row["usd_rate"]),
                    "Quoted in": row["local_currency"],
                    "Gold per gram": float(row["gold_price_per_gram"]),
                    "Currency": row["gold_price_currency"],
                    "Source": "Manual" if row["is_manual"] else row["provider"],
                }
                for row in history
            ]
        )
        st.dataframe(df, width="stretch", hide_index=True)

    st.info(
        "Rates are never edited in place; each refresh or manual entry adds a new snapshot. "
        "Set cache age in Settings."
    )
