import sqlite3
from contextlib import closing
from pathlib import Path

import streamlit as st
from dotenv import load_dotenv

# Load environment variables from local .env file before the package reads them.
load_dotenv(dotenv_path=Path(__file__).parent / ".env")

from jewel_analysis.db import (  # noqa: E402
    authenticate_user,
    create_user,
    delete_tenant_data,
    delete_user_account,
    get_auth_connection,
    get_connection,
    init_db,
    is_admin_user,
    update_user_password,
)
from jewel_analysis.logging_setup import configure_logging  # noqa: E402
from jewel_analysis.ui import analysis_form, batches, dashboard, manufacturers, reference_tables, settings  # noqa: E402

configure_logging()

st.set_page_config(page_title="Jewellery Cost Analysis", page_icon="💍", layout="wide")


def _render_auth_gate(auth_conn: sqlite3.Connection) -> bool:
    if "auth_username" not in st.session_state:
        st.session_state["auth_username"] = None

    if st.session_state["auth_username"]:
        return True

    st.subheader("Sign in")
    st.caption("Create an account or log in to record cost analyses for your manufacturers.")

    login_tab, signup_tab = st.tabs(["Login", "Sign up"])

    with login_tab:
        with st.form("login_form"):
            login_username = st.text_input("Username", key="login_username")
            login_password = st.text_input("Password", type="password", key="login_password")
            login_submit = st.form_submit_button("Log in", type="primary")
        if login_submit:
            authenticated_username = authenticate_user(auth_conn, login_username, login_password)
            if authenticated_username:
                st.session_state["auth_username"] = authenticated_username
                st.rerun()
            else:
                st.error("Invalid username or password.")

    with signup_tab:
        with st.form("signup_form"):
            signup_username = st.text_input("Username", key="signup_username")
            signup_company = st.text_input("Company name", key="signup_company")
            signup_email = st.text_input("E-mail", key="signup_email")
            signup_password = st.text_input("Password", type="password", key="signup_password")
            signup_submit = st.form_submit_button("Create account", type="primary")
        if signup_submit:
            created, message = create_user(
                auth_conn,
                signup_username,
                signup_password,
                company_name=signup_company,
                email=signup_email,
            )
            if created:
                st.session_state["auth_username"] = message
                st.rerun()
            else:
                st.error(message)

    return False


def _render_account_sidebar(conn: sqlite3.Connection, auth_conn: sqlite3.Connection, username: str) -> None:
    with st.sidebar.expander("Security"):
        with st.form("change_password_form"):
            current_password = st.text_input("Current password", type="password")
            new_password = st.text_input("New password", type="password")
            confirm_password = st.text_input("Confirm new password", type="password")
            change_password_submit = st.form_submit_button("Change password")

        if change_password_submit:
            if new_password != confirm_password:
                st.sidebar.error("New passwords do not match.")
            else:
                updated, message = update_user_password(
                    auth_conn,
                    username,
                    current_password,
                    new_password,
                )
                if updated:
                    st.sidebar.success(message)
                else:
                    st.sidebar.error(message)

        st.caption("Danger zone")
        with st.form("delete_account_form"):
            delete_password = st.text_input("Password to confirm", type="password")
            delete_confirmation = st.text_input("Type DELETE to confirm")
            delete_submit = st.form_submit_button("Delete account")

        if delete_submit:
            if delete_confirmation.strip().upper() != "DELETE":
                st.sidebar.error("Type DELETE to confirm account removal.")
            else:
                deleted, message = delete_user_account(auth_conn, username, delete_password)
                if deleted:
                    delete_tenant_data(conn, username)
                    st.session_state["auth_username"] = None
                    st.rerun()
                else:
                    st.sidebar.error(message)

    if st.sidebar.button("Log out"):
        st.session_state["auth_username"] = None
        st.rerun()


def main() -> None:
    st.title("💍 Jewellery Cost Analysis")
    st.caption("Compare manufacturer prices with gold, labour and stone costs")

    # Each rerun opens its own connections and closes them when the script ends.
    with closing(get_auth_connection()) as auth_conn, closing(get_connection()) as conn:
        if not _render_auth_gate(auth_conn):
            return

        username = str(st.session_state["auth_username"])
        is_admin = is_admin_user(auth_conn, username)
        st.sidebar.caption(f"Signed in: {username}{' (admin)' if is_admin else ''}")
        init_db(conn)
        _render_account_sidebar(conn, auth_conn, username)
        _render_page(conn, username, is_admin)


def _render_page(conn: sqlite3.Connection, username: str, is_admin: bool) -> None:
    page = st.sidebar.radio(
        "Navigate",
        [
            "Market Rates",
            "Cost Analyses",
            "Batches",
            "Manufacturers",
            "Reference Tables",
            "Settings",
        ],
    )

    if page == "Market Rates":
        dashboard.render(conn, username)
    elif page == "Cost Analyses":
        analysis_form.render(conn, username)
    elif page == "Batches":
        batches.render(conn, username)
    elif page == "Manufacturers":
        manufacturers.render(conn, username)
    elif page == "Reference Tables":
        reference_tables.render(conn, username, is_admin=is_admin)
    elif page == "Settings":
        settings.render(conn, is_admin=is_admin)


if __name__ == "__main__":
    main()
