import sqlite3

import streamlit as st

from jewel_analysis.db import get_admin_settings, get_all_settings, save_admin_settings, save_settings


def render(conn: sqlite3.Connection, is_admin: bool = False) -> None:
    st.subheader("Settings")

    current = get_all_settings(conn)
    if not is_admin:
        st.caption("Settings apply to every account and can only be changed by the administrator.")

    with st.form("settings_form"):
        col1, col2 = st.columns(2)
        with col1:
            base_currency = st.text_input(
                "Base currency",
                value=current["base_currency"],
                max_chars=3,
                help="Local currency every analysis is computed in. Changing it needs a market rate quoted in the new currency.",
                disabled=not is_admin,
            )
            input_currency = st.selectbox(
                "Default entry currency",
                ["USD", current["base_currency"]],
                index=0 if current["input_currency"] == "USD" else 1,
                help="Currency for labour, polish, certificate and manufacturer prices.",
            )
            default_fire_pct = st.number_input(
                "Default fire / loss (%)",
                min_value=0.0,
                max_value=100.0,
                value=float(current["default_fire_pct"]),
                step=0.5,
            )

        with col2:
            troy_oz_to_grams = st.number_input(
                "Troy oz to grams conversion",
                min_value=0.0001,
                value=float(current["troy_oz_to_grams"]),
                step=0.0001,
                format="%.7f",
            )
            cache_ttl = st.number_input(
                "Rate cache refresh age (minutes)",
                min_value=1,
                max_value=1440,
                value=int(current["rate_cache_ttl_minutes"]),
                step=1,
            )

        submitted = st.form_submit_button("Save settings", type="primary", disabled=not is_admin)

    if submitted:
        save_settings(
            conn,
            {
                "base_currency": base_currency.strip().upper() or current["base_currency"],
                "input_currency": input_currency,
                "default_fire_pct": default_fire_pct,
                "troy_oz_to_grams": troy_oz_to_grams,
                "rate_cache_ttl_minutes": cache_ttl,
            },
        )
        st.success("Settings saved.")
        if (base_currency.strip().upper() or current["base_currency"]) != current["base_currency"]:
            st.info("Base currency changed. Refresh or enter a market rate before saving new analyses.")

    if not is_admin:
        return

    st.markdown("#### Report e-mail")
    admin = get_admin_settings(conn)
    with st.form("admin_email_form"):
        owner_email = st.text_input("Owner e-mail", value=admin["owner_email"])
        cc_raw = st.text_area(
            "CC addresses (one per line)",
            value="\n".join(admin["cc_emails"]),
        )
        email_submitted = st.form_submit_button("Save recipients")

    if email_submitted:
        cc_emails = [line for line in cc_raw.splitlines() if line.strip()]
        invalid = [email for email in [owner_email, *cc_emails] if email.strip() and "@" not in email]
        if invalid:
            st.error(f"Invalid e-mail address: {', '.join(invalid)}")
        else:
            save_admin_settings(conn, owner_email, cc_emails)
            st.success("Recipients saved.")
