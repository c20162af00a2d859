import hashlib
import hmac
import json
import logging
import os
import re
import secrets
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from jewel_analysis.models import (
    DiamondPrice,
    DiscountRate,
    GemstonePrice,
    MarketRate,
    Ownership,
    PricingMode,
    ReferenceTables,
    SettingRate,
    StoneCategory,
)

logger = logging.getLogger(__name__)

DATA_DIR = Path(os.getenv("JEWEL_ANALYSIS_DATA_DIR") or Path(__file__).resolve().parents[1] / "data")
DB_PATH = DATA_DIR / "analysis.db"
AUTH_DB_PATH = DATA_DIR / "auth.db"
PASSWORD_ITERATIONS = 200_000

DEFAULT_SETTINGS: dict[str, str] = {
    "base_currency": "TRY",
    "input_currency": "USD",
    "default_fire_pct": "0",
    "rate_cache_ttl_minutes": "60",
    "troy_oz_to_grams": "31.1034768",
}

# Shared tables expose NULL-owner rows to every tenant plus the tenant's own rows.
TABLE_OWNERSHIP: dict[str, Ownership] = {
    "market_rates": Ownership.TENANT_SHARED,
    "setting_rates": Ownership.TENANT_SHARED,
    "gemstone_prices": Ownership.TENANT_SHARED,
    "diamond_prices": Ownership.TENANT_SHARED,
    "discount_rates": Ownership.TENANT_SHARED,
    "labor_prices": Ownership.TENANT_SHARED,
    "polish_prices": Ownership.TENANT_SHARED,
    "manufacturers": Ownership.TENANT_OWNED,
    "batches": Ownership.TENANT_OWNED,
    "analysis_records": Ownership.TENANT_OWNED,
}

REFERENCE_COLUMNS: dict[str, list[str]] = {
    "setting_rates": ["category", "min_carat", "max_carat", "price", "pricing_mode"],
    "gemstone_prices": ["stone_type", "quality", "min_carat", "max_carat", "price_per_carat"],
    "diamond_prices": ["shape", "low_carat", "high_carat", "color", "clarity", "price_per_carat"],
    "discount_rates": ["min_carat", "max_carat", "discount_percent"],
    "labor_prices": ["product_type", "price_per_gram"],
    "polish_prices": ["product_type", "price"],
}

REFERENCE_ORDER: dict[str, str] = {
    "setting_rates": "category, min_carat",
    "gemstone_prices": "stone_type, quality, min_carat",
    "diamond_prices": "shape, low_carat, color, clarity",
    "discount_rates": "min_carat",
    "labor_prices": "product_type",
    "polish_prices": "product_type",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_connection(db_path: Path | None = None) -> sqlite3.Connection:
    target = db_path or DB_PATH
    target.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(target)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


# Authentication ---------------------------------------------------------

def normalize_username(username: str) -> str:
    return username.strip().lower()


def init_auth_db(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL UNIQUE,
            company_name TEXT,
            email TEXT,
            is_admin INTEGER NOT NULL DEFAULT 0,
            password_salt TEXT NOT NULL,
            password_hash TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.commit()


def get_auth_connection(db_path: Path | None = None) -> sqlite3.Connection:
    conn = get_connection(db_path or AUTH_DB_PATH)
    init_auth_db(conn)
    return conn


def _hash_password(password: str, salt_hex: str) -> str:
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        bytes.fromhex(salt_hex),
        PASSWORD_ITERATIONS,
    )
    return digest.hex()


def _password_matches(row: sqlite3.Row, password: str) -> bool:
    attempted = _hash_password(password, row["password_salt"])
    return hmac.compare_digest(attempted, row["password_hash"])


def _get_user_row(auth_conn: sqlite3.Connection, username: str) -> sqlite3.Row | None:
    return auth_conn.execute(
        "SELECT * FROM users WHERE username = ?",
        (normalize_username(username),),
    ).fetchone()


def create_user(
    auth_conn: sqlite3.Connection,
    username: str,
    password: str,
    company_name: str = "",
    email: str = "",
) -> tuple[bool, str]:
    normalized = normalize_username(username)
    if not re.fullmatch(r"[a-z0-9_.-]{3,32}", normalized):
        return False, "Username must be 3-32 chars and use letters, numbers, ., _, or -."
    if len(password) < 8:
        return False, "Password must be at least 8 characters."

    # The first account administers shared reference data and e-mail settings.
    is_admin = auth_conn.execute("SELECT COUNT(*) AS count FROM users").fetchone()["count"] == 0
    salt_hex = secrets.token_hex(16)
    try:
        auth_conn.execute(
            """
            INSERT INTO users (username, company_name, email, is_admin, password_salt, password_hash, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                normalized,
                company_name.strip(),
                email.strip(),
                int(is_admin),
                salt_hex,
                _hash_password(password, salt_hex),
                utc_now_iso(),
            ),
        )
        auth_conn.commit()
    except sqlite3.IntegrityError:
        return False, "That username already exists."

    logger.info("Created user %s (admin=%s)", normalized, is_admin)
    return True, normalized


def authenticate_user(auth_conn: sqlite3.Connection, username: str, password: str) -> str | None:
    row = _get_user_row(auth_conn, username)
    if row is None or not _password_matches(row, password):
        return None
    return str(row["username"])


def is_admin_user(auth_conn: sqlite3.Connection, username: str) -> bool:
    row = _get_user_row(auth_conn, username)
    return bool(row and row["is_admin"])


def update_user_password(
    auth_conn: sqlite3.Connection,
    username: str,
    current_password: str,
    new_password: str,
) -> tuple[bool, str]:
    row = _get_user_row(auth_conn, username)
    if row is None:
        return False, "User not found."
    if not _password_matches(row, current_password):
        return False, "Current password is incorrect."
    if len(new_password) < 8:
        return False, "New password must be at least 8 characters."

    new_salt = secrets.token_hex(16)
    auth_conn.execute(
        "UPDATE users SET password_salt = ?, password_hash = ? WHERE id = ?",
        (new_salt, _hash_password(new_password, new_salt), row["id"]),
    )
    auth_conn.commit()
    return True, "Password updated."


def delete_user_account(auth_conn: sqlite3.Connection, username: str, password: str) -> tuple[bool, str]:
    row = _get_user_row(auth_conn, username)
    if row is None:
        return False, "User not found."
    if not _password_matches(row, password):
        return False, "Password is incorrect."

    auth_conn.execute("DELETE FROM users WHERE id = ?", (row["id"],))
    auth_conn.commit()
    return True, "Account deleted."


def owner_filter(table: str, owner: Optional[str], alias: str = "") -> tuple[str, list[Any]]:
    """WHERE predicate and params selecting the rows of `table` visible to `owner`."""
    column = f"{alias}.owner" if alias else "owner"
    if TABLE_OWNERSHIP[table] is Ownership.TENANT_SHARED:
        return f"({column} IS NULL OR {column} = ?)", [owner]
    return f"{column} = ?", [owner]


def delete_tenant_data(conn: sqlite3.Connection, owner: str) -> None:
    """Remove every row a tenant owns, including its private reference rows."""
    if not owner:
        raise ValueError("Owner is required.")
    with conn:
        # Dependants first; shared rows have a NULL owner and never match.
        for table in reversed(TABLE_OWNERSHIP):
            conn.execute(f"DELETE FROM {table} WHERE owner = ?", (owner,))
    logger.info("Deleted all data owned by %s", owner)


# Schema -----------------------------------------------------------------

def init_db(conn: sqlite3.Connection) -> None:
    cursor = conn.cursor()

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS admin_settings (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            owner_email TEXT,
            cc_emails_json TEXT NOT NULL DEFAULT '[]',
            updated_at TEXT NOT NULL
        )
        """
    )

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS market_rates (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner TEXT,
            usd_rate REAL NOT NULL CHECK (usd_rate > 0),
            gold_price_per_gram REAL NOT NULL CHECK (gold_price_per_gram > 0),
            gold_price_currency TEXT NOT NULL,
            local_currency TEXT,
            is_manual INTEGER NOT NULL DEFAULT 0,
            provider TEXT,
            fetched_at TEXT NOT NULL
        )
        """
    )

    rate_columns = [row["name"] for row in conn.execute("PRAGMA table_info(market_rates)").fetchall()]
    if "local_currency" not in rate_columns:
        cursor.execute("ALTER TABLE market_rates ADD COLUMN local_currency TEXT")
        cursor.execute(
            """
            UPDATE market_rates
            SET local_currency = COALESCE((SELECT value FROM settings WHERE key = 'base_currency'), ?)
            WHERE local_currency IS NULL
            """,
            (DEFAULT_SETTINGS["base_currency"],),
        )

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS setting_rates (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner TEXT,
            category TEXT,
            min_carat REAL NOT NULL,
            max_carat REAL NOT NULL,
            price REAL NOT NULL,
            pricing_mode TEXT NOT NULL DEFAULT 'per_stone'
        )
        """
    )

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS gemstone_prices (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner TEXT,
            stone_type TEXT NOT NULL,
            quality TEXT,
            min_carat REAL,
            max_carat REAL,
            price_per_carat REAL NOT NULL
        )
        """
    )

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS diamond_prices (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner TEXT,
            shape TEXT NOT NULL,
            low_carat REAL NOT NULL,
            high_carat REAL NOT NULL,
            color TEXT NOT NULL,
            clarity TEXT NOT NULL,
            price_per_carat REAL NOT NULL,
            uploaded_at TEXT NOT NULL
        )
        """
    )

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS discount_rates (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner TEXT,
            min_carat REAL NOT NULL,
            max_carat REAL NOT NULL,
            discount_percent REAL NOT NULL
        )
        """
    )

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS labor_prices (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner TEXT,
            product_type TEXT NOT NULL,
            price_per_gram REAL NOT NULL
        )
        """
    )

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS polish_prices (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner TEXT,
            product_type TEXT NOT NULL,
            price REAL NOT NULL
        )
        """
    )

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS manufacturers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner TEXT NOT NULL,
            name TEXT NOT NULL,
            contact_person TEXT,
            email TEXT,
            phone TEXT,
            address TEXT,
            notes TEXT,
            created_at TEXT NOT NULL
        )
        """
    )

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS batches (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner TEXT NOT NULL,
            manufacturer_id INTEGER NOT NULL,
            batch_number INTEGER NOT NULL,
            created_at TEXT NOT NULL,
            UNIQUE (owner, manufacturer_id, batch_number),
            FOREIGN KEY (manufacturer_id) REFERENCES manufacturers(id) ON DELETE CASCADE
        )
        """
    )

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS analysis_records (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner TEXT NOT NULL,
            manufacturer_id INTEGER,
            batch_id INTEGER,
            market_rate_id INTEGER,
            product_code TEXT NOT NULL,
            product_type TEXT,
            total_grams REAL NOT NULL,
            gold_purity TEXT NOT NULL DEFAULT '24',
            labor_amount REAL NOT NULL DEFAULT 0,
            labor_unit TEXT NOT NULL DEFAULT 'currency',
            fire_percent REAL NOT NULL DEFAULT 0,
            polish_amount REAL NOT NULL DEFAULT 0,
            certificate_amount REAL NOT NULL DEFAULT 0,
            manufacturer_price REAL NOT NULL DEFAULT 0,
            input_currency TEXT NOT NULL DEFAULT 'USD',
            base_currency TEXT NOT NULL,
            raw_material_cost REAL NOT NULL,
            labor_cost REAL NOT NULL,
            polish_cost REAL NOT NULL,
            certificate_cost REAL NOT NULL,
            total_setting_cost REAL NOT NULL,
            total_stone_cost REAL NOT NULL,
            total_cost REAL NOT NULL,
            manufacturer_price_base REAL NOT NULL,
            profit_loss REAL NOT NULL,
            gold_price_used REAL NOT NULL,
            usd_rate_used REAL NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (manufacturer_id) REFERENCES manufacturers(id) ON DELETE SET NULL,
            FOREIGN KEY (batch_id) REFERENCES batches(id) ON DELETE SET NULL,
            FOREIGN KEY (market_rate_id) REFERENCES market_rates(id)
        )
        """
    )

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS analysis_stones (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            analysis_id INTEGER NOT NULL,
            stone_type TEXT NOT NULL,
            category TEXT NOT NULL,
            carat_size REAL NOT NULL,
            quantity INTEGER NOT NULL,
            shape TEXT,
            color TEXT,
            clarity TEXT,
            quality TEXT,
            discount_percent REAL,
            rapaport_price REAL,
            price_per_carat REAL NOT NULL,
            setting_cost REAL NOT NULL,
            total_stone_cost REAL NOT NULL,
            FOREIGN KEY (analysis_id) REFERENCES analysis_records(id) ON DELETE CASCADE
        )
        """
    )

    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_analysis_records_owner ON analysis_records(owner, batch_id)"
    )

    for key, value in DEFAULT_SETTINGS.items():
        cursor.execute(
            """
            INSERT OR IGNORE INTO settings (key, value, updated_at)
            VALUES (?, ?, ?)
            """,
            (key, value, utc_now_iso()),
        )

    conn.commit()


# Settings ---------------------------------------------------------------

def get_all_settings(conn: sqlite3.Connection) -> dict[str, Any]:
    rows = conn.execute("SELECT key, value FROM settings").fetchall()
    raw = {row["key"]: row["value"] for row in rows}

    def get_float(key: str) -> float:
        try:
            return float(raw.get(key, DEFAULT_SETTINGS[key]))
        except (TypeError, ValueError):
            return float(DEFAULT_SETTINGS[key])

    def get_code(key: str) -> str:
        return (raw.get(key) or DEFAULT_SETTINGS[key]).strip().upper()

    return {
        "base_currency": get_code("base_currency"),
        "input_currency": get_code("input_currency"),
        "default_fire_pct": get_float("default_fire_pct"),
        "rate_cache_ttl_minutes": int(get_float("rate_cache_ttl_minutes")),
        "troy_oz_to_grams": get_float("troy_oz_to_grams"),
    }


def save_settings(conn: sqlite3.Connection, settings: dict[str, Any]) -> None:
    now = utc_now_iso()
    for key in DEFAULT_SETTINGS:
        if key not in settings:
            continue
        conn.execute(
            """
            INSERT INTO settings (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, str(settings[key]), now),
        )
    conn.commit()


def get_admin_settings(conn: sqlite3.Connection) -> dict[str, Any]:
    row = conn.execute("SELECT owner_email, cc_emails_json FROM admin_settings WHERE id = 1").fetchone()
    if row is None:
        return {"owner_email": "", "cc_emails": []}
    try:
        cc_emails = json.loads(row["cc_emails_json"] or "[]")
    except json.JSONDecodeError:
        cc_emails = []
    return {"owner_email": row["owner_email"] or "", "cc_emails": list(cc_emails)}


def save_admin_settings(conn: sqlite3.Connection, owner_email: str, cc_emails: list[str]) -> None:
    unique_cc: list[str] = []
    for email in cc_emails:
        cleaned = email.strip()
        if cleaned and cleaned not in unique_cc:
            unique_cc.append(cleaned)
    conn.execute(
        """
        INSERT INTO admin_settings (id, owner_email, cc_emails_json, updated_at)
        VALUES (1, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            owner_email = excluded.owner_email,
            cc_emails_json = excluded.cc_emails_json,
            updated_at = excluded.updated_at
        """,
        (owner_email.strip(), json.dumps(unique_cc), utc_now_iso()),
    )
    conn.commit()


def report_recipients(conn: sqlite3.Connection) -> list[str]:
    admin = get_admin_settings(conn)
    recipients = [admin["owner_email"]] if admin["owner_email"] else []
    recipients.extend(email for email in admin["cc_emails"] if email not in recipients)
    return recipients


# Market rates -----------------------------------------------------------

def _market_rate_from_row(row: sqlite3.Row) -> MarketRate:
    return MarketRate(
        id=int(row["id"]),
        usd_rate=float(row["usd_rate"]),
        gold_price_per_gram=float(row["gold_price_per_gram"]),
        gold_price_currency=row["gold_price_currency"],
        is_manual=bool(row["is_manual"]),
        fetched_at=row["fetched_at"],
        local_currency=row["local_currency"],
    )


def save_market_rate(
    conn: sqlite3.Connection,
    usd_rate: float,
    gold_price_per_gram: float,
    gold_price_currency: str,
    is_manual: bool,
    provider: str = "manual",
    owner: Optional[str] = None,
    local_currency: Optional[str] = None,
) -> MarketRate:
    """Store an immutable snapshot.

    `usd_rate` is quoted in `local_currency` (the current base currency when
    omitted) and the gold price must be in USD or in that same currency.
    """
    currency = (gold_price_currency or "").strip().upper()
    local = (local_currency or get_all_settings(conn)["base_currency"]).strip().upper()
    if usd_rate is None or float(usd_rate) <= 0:
        raise ValueError("USD rate must be greater than zero.")
    if gold_price_per_gram is None or float(gold_price_per_gram) <= 0:
        raise ValueError("Gold price per gram must be greater than zero.")
    if not currency:
        raise ValueError("Gold price currency is required.")
    if currency not in ("USD", local):
        raise ValueError(f"Gold price currency must be USD or {local}.")

    cursor = conn.execute(
        """
        INSERT INTO market_rates
        (owner, usd_rate, gold_price_per_gram, gold_price_currency, local_currency, is_manual, provider, fetched_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (owner, float(usd_rate), float(gold_price_per_gram), currency, local, int(is_manual), provider, utc_now_iso()),
    )
    conn.commit()
    logger.info(
        "Saved market rate #%s: %s %s/USD, gold=%s %s/g (%s)",
        cursor.lastrowid,
        usd_rate,
        local,
        gold_price_per_gram,
        currency,
        provider,
    )
    return get_market_rate(conn, int(cursor.lastrowid))


def get_market_rate(conn: sqlite3.Connection, rate_id: int) -> Optional[MarketRate]:
    row = conn.execute("SELECT * FROM market_rates WHERE id = ?", (rate_id,)).fetchone()
    return _market_rate_from_row(row) if row else None


def get_latest_market_rate(
    conn: sqlite3.Connection,
    owner: Optional[str] = None,
    local_currency: Optional[str] = None,
) -> Optional[MarketRate]:
    """Newest snapshot visible to `owner`, optionally only those quoted in `local_currency`."""
    clause, params = owner_filter("market_rates", owner)
    if local_currency:
        clause += " AND local_currency = ?"
        params.append(local_currency.strip().upper())
    row = conn.execute(
        f"SELECT * FROM market_rates WHERE {clause} ORDER BY fetched_at DESC, id DESC LIMIT 1",
        params,
    ).fetchone()
    return _market_rate_from_row(row) if row else None


def list_market_rates(conn: sqlite3.Connection, owner: Optional[str] = None, limit: int = 50) -> list[sqlite3.Row]:
    clause, params = owner_filter("market_rates", owner)
    return conn.execute(
        f"SELECT * FROM market_rates WHERE {clause} ORDER BY fetched_at DESC, id DESC LIMIT ?",
        [*params, limit],
    ).fetchall()


def is_rate_fresh(fetched_at_iso: str, max_age_minutes: int) -> bool:
    try:
        fetched_at = datetime.fromisoformat(fetched_at_iso)
    except (TypeError, ValueError):
        return False
    if fetched_at.tzinfo is None:
        fetched_at = fetched_at.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc) - fetched_at <= timedelta(minutes=max_age_minutes)


# Reference tables -------------------------------------------------------

def _reference_columns(table: str) -> list[str]:
    if table not in REFERENCE_COLUMNS:
        raise ValueError(f"Unknown reference table: {table}")
    return REFERENCE_COLUMNS[table]


def list_reference_rows(conn: sqlite3.Connection, table: str, owner: Optional[str] = None) -> list[sqlite3.Row]:
    """Rows visible to `owner`, its private rows ahead of shared ones.

    Lookups take the first matching row, so a private row overrides a shared
    row covering the same band.
    """
    _reference_columns(table)
    clause, params = owner_filter(table, owner)
    return conn.execute(
        f"SELECT * FROM {table} WHERE {clause} ORDER BY owner IS NULL, {REFERENCE_ORDER[table]}, id",
        params,
    ).fetchall()


def add_reference_row(
    conn: sqlite3.Connection,
    table: str,
    values: dict[str, Any],
    owner: Optional[str] = None,
    commit: bool = True,
) -> int:
    columns = _reference_columns(table)
    extra = {"uploaded_at": utc_now_iso()} if table == "diamond_prices" else {}
    names = ["owner", *columns, *extra]
    params = [owner, *[values.get(column) for column in columns], *extra.values()]
    cursor = conn.execute(
        f"INSERT INTO {table} ({', '.join(names)}) VALUES ({', '.join('?' for _ in names)})",
        params,
    )
    if commit:
        conn.commit()
    return int(cursor.lastrowid)


def update_reference_row(
    conn: sqlite3.Connection,
    table: str,
    row_id: int,
    values: dict[str, Any],
    owner: Optional[str] = None,
) -> bool:
    columns = [column for column in _reference_columns(table) if column in values]
    if not columns:
        return False
    assignments = ", ".join(f"{column} = ?" for column in columns)
    cursor = conn.execute(
        f"UPDATE {table} SET {assignments} WHERE id = ? AND owner IS ?",
        [*[values[column] for column in columns], row_id, owner],
    )
    conn.commit()
    return cursor.rowcount > 0


def delete_reference_row(conn: sqlite3.Connection, table: str, row_id: int, owner: Optional[str] = None) -> bool:
    _reference_columns(table)
    cursor = conn.execute(f"DELETE FROM {table} WHERE id = ? AND owner IS ?", (row_id, owner))
    conn.commit()
    return cursor.rowcount > 0


def clear_reference_rows(conn: sqlite3.Connection, table: str, owner: Optional[str] = None) -> int:
    _reference_columns(table)
    cursor = conn.execute(f"DELETE FROM {table} WHERE owner IS ?", (owner,))
    conn.commit()
    return cursor.rowcount


def import_diamond_prices_from_df(
    conn: sqlite3.Connection,
    df: Any,
    clear_existing: bool = False,
    owner: Optional[str] = None,
) -> int:
    import pandas as pd

    required = REFERENCE_COLUMNS["diamond_prices"]
    missing = [column for column in required if column not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {', '.join(missing)}")

    rows = []
    for index, row in df.iterrows():
        if any(pd.isna(row[column]) for column in required):
            raise ValueError(f"Row {index + 2} has empty values.")
        rows.append(
            {
                "shape": str(row["shape"]).strip(),
                "low_carat": float(row["low_carat"]),
                "high_carat": float(row["high_carat"]),
                "color": str(row["color"]).strip().upper(),
                "clarity": str(row["clarity"]).strip().upper(),
                "price_per_carat": float(row["price_per_carat"]),
            }
        )

    with conn:
        if clear_existing:
            conn.execute("DELETE FROM diamond_prices WHERE owner IS ?", (owner,))
        for values in rows:
            add_reference_row(conn, "diamond_prices", values, owner=owner, commit=False)

    logger.info("Imported %d diamond grid rows (clear_existing=%s)", len(rows), clear_existing)
    return len(rows)


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _optional_category(value: Any) -> Optional[StoneCategory]:
    if not value:
        return None
    try:
        return StoneCategory(str(value).strip().lower())
    except ValueError:
        return None


def load_reference_tables(conn: sqlite3.Connection, owner: Optional[str] = None) -> ReferenceTables:
    return ReferenceTables(
        setting_rates=tuple(
            SettingRate(
                min_carat=float(row["min_carat"]),
                max_carat=float(row["max_carat"]),
                price=float(row["price"]),
                pricing_mode=PricingMode(row["pricing_mode"] or PricingMode.PER_STONE.value),
                category=_optional_category(row["category"]),
            )
            for row in list_reference_rows(conn, "setting_rates", owner)
        ),
        gemstone_prices=tuple(
            GemstonePrice(
                stone_type=row["stone_type"],
                price_per_carat=float(row["price_per_carat"]),
                quality=row["quality"],
                min_carat=_optional_float(row["min_carat"]),
                max_carat=_optional_float(row["max_carat"]),
            )
            for row in list_reference_rows(conn, "gemstone_prices", owner)
        ),
        diamond_prices=tuple(
            DiamondPrice(
                shape=row["shape"],
                low_carat=float(row["low_carat"]),
                high_carat=float(row["high_carat"]),
                color=row["color"],
                clarity=row["clarity"],
                price_per_carat=float(row["price_per_carat"]),
            )
            for row in list_reference_rows(conn, "diamond_prices", owner)
        ),
        discount_rates=tuple(
            DiscountRate(
                min_carat=float(row["min_carat"]),
                max_carat=float(row["max_carat"]),
                discount_percent=float(row["discount_percent"]),
            )
            for row in list_reference_rows(conn, "discount_rates", owner)
        ),
    )
