import logging
import sqlite3
from typing import Any, Mapping, Optional

from jewel_analysis.db import (
    get_all_settings,
    get_latest_market_rate,
    load_reference_tables,
    owner_filter,
    utc_now_iso,
)
from jewel_analysis.errors import NotFoundError, RateUnavailableError
from jewel_analysis.models import (
    AnalysisInput,
    CostBreakdown,
    LaborUnit,
    MarketRate,
    StoneCategory,
    StoneLineInput,
    StoneLineResult,
)
from jewel_analysis.pricing import calculate_from_input, purity_factor, round_money, summarize_batch
from jewel_analysis.validation import FieldError, ValidationError, validate_analysis_payload

logger = logging.getLogger(__name__)

MANUFACTURER_FIELDS = ["name", "contact_person", "email", "phone", "address", "notes"]

RECORD_COLUMNS = [
    "manufacturer_id",
    "batch_id",
    "market_rate_id",
    "product_code",
    "product_type",
    "total_grams",
    "gold_purity",
    "labor_amount",
    "labor_unit",
    "fire_percent",
    "polish_amount",
    "certificate_amount",
    "manufacturer_price",
    "input_currency",
    "base_currency",
    "raw_material_cost",
    "labor_cost",
    "polish_cost",
    "certificate_cost",
    "total_setting_cost",
    "total_stone_cost",
    "total_cost",
    "manufacturer_price_base",
    "profit_loss",
    "gold_price_used",
    "usd_rate_used",
]


# Manufacturers ----------------------------------------------------------

def list_manufacturers(conn: sqlite3.Connection, owner: str) -> list[sqlite3.Row]:
    clause, params = owner_filter("manufacturers", owner)
    return conn.execute(
        f"SELECT * FROM manufacturers WHERE {clause} ORDER BY name COLLATE NOCASE",
        params,
    ).fetchall()


def get_manufacturer(conn: sqlite3.Connection, owner: str, manufacturer_id: int) -> Optional[sqlite3.Row]:
    clause, params = owner_filter("manufacturers", owner)
    return conn.execute(
        f"SELECT * FROM manufacturers WHERE id = ? AND {clause}",
        [manufacturer_id, *params],
    ).fetchone()


def add_manufacturer(conn: sqlite3.Connection, owner: str, manufacturer: dict[str, Any]) -> int:
    name = str(manufacturer.get("name") or "").strip()
    if not name:
        raise ValidationError([FieldError("name", "This field is required.")])

    cursor = conn.execute(
        """
        INSERT INTO manufacturers (owner, name, contact_person, email, phone, address, notes, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            owner,
            name,
            manufacturer.get("contact_person"),
            manufacturer.get("email"),
            manufacturer.get("phone"),
            manufacturer.get("address"),
            manufacturer.get("notes"),
            utc_now_iso(),
        ),
    )
    conn.commit()
    return int(cursor.lastrowid)


def update_manufacturer(
    conn: sqlite3.Connection,
    owner: str,
    manufacturer_id: int,
    manufacturer: dict[str, Any],
) -> None:
    if get_manufacturer(conn, owner, manufacturer_id) is None:
        raise NotFoundError("Manufacturer", manufacturer_id)
    if "name" in manufacturer and not str(manufacturer["name"] or "").strip():
        raise ValidationError([FieldError("name", "This field is required.")])

    fields = [name for name in MANUFACTURER_FIELDS if name in manufacturer]
    if not fields:
        return
    conn.execute(
        f"UPDATE manufacturers SET {', '.join(f'{name} = ?' for name in fields)} WHERE id = ? AND owner = ?",
        [*[manufacturer[name] for name in fields], manufacturer_id, owner],
    )
    conn.commit()


def delete_manufacturer(conn: sqlite3.Connection, owner: str, manufacturer_id: int) -> bool:
    """Delete a manufacturer with its batches; its analyses stay, unlinked."""
    cursor = conn.execute(
        "DELETE FROM manufacturers WHERE id = ? AND owner = ?",
        (manufacturer_id, owner),
    )
    conn.commit()
    return cursor.rowcount > 0


# Batches ----------------------------------------------------------------

def create_batch(conn: sqlite3.Connection, owner: str, manufacturer_id: int) -> sqlite3.Row:
    if get_manufacturer(conn, owner, manufacturer_id) is None:
        raise NotFoundError("Manufacturer", manufacturer_id)

    with conn:
        next_number = conn.execute(
            """
            SELECT COALESCE(MAX(batch_number), 0) + 1 AS next_number
            FROM batches
            WHERE owner = ? AND manufacturer_id = ?
            """,
            (owner, manufacturer_id),
        ).fetchone()["next_number"]
        cursor = conn.execute(
            "INSERT INTO batches (owner, manufacturer_id, batch_number, created_at) VALUES (?, ?, ?, ?)",
            (owner, manufacturer_id, next_number, utc_now_iso()),
        )

    logger.info("Created batch #%s for manufacturer %s (%s)", next_number, manufacturer_id, owner)
    return get_batch(conn, owner, int(cursor.lastrowid))


def get_batch(conn: sqlite3.Connection, owner: str, batch_id: int) -> Optional[sqlite3.Row]:
    clause, params = owner_filter("batches", owner, alias="b")
    return conn.execute(
        f"""
        SELECT b.*, m.name AS manufacturer_name
        FROM batches b
        JOIN manufacturers m ON m.id = b.manufacturer_id
        WHERE b.id = ? AND {clause}
        """,
        [batch_id, *params],
    ).fetchone()


def list_batches(
    conn: sqlite3.Connection,
    owner: str,
    manufacturer_id: Optional[int] = None,
) -> list[sqlite3.Row]:
    clause, params = owner_filter("batches", owner, alias="b")
    sql = f"""
        SELECT
            b.*,
            m.name AS manufacturer_name,
            COUNT(a.id) AS record_count,
            COALESCE(SUM(a.total_cost), 0) AS total_cost,
            COALESCE(SUM(a.manufacturer_price_base), 0) AS manufacturer_total
        FROM batches b
        JOIN manufacturers m ON m.id = b.manufacturer_id
        LEFT JOIN analysis_records a ON a.batch_id = b.id AND a.owner = b.owner
        WHERE {clause}
    """
    if manufacturer_id is not None:
        sql += " AND b.manufacturer_id = ?"
        params.append(manufacturer_id)
    sql += " GROUP BY b.id ORDER BY m.name COLLATE NOCASE, b.batch_number DESC"
    return conn.execute(sql, params).fetchall()


def delete_batch(conn: sqlite3.Connection, owner: str, batch_id: int) -> bool:
    cursor = conn.execute("DELETE FROM batches WHERE id = ? AND owner = ?", (batch_id, owner))
    conn.commit()
    if cursor.rowcount:
        logger.info("Deleted batch %s (%s); its analyses were detached", batch_id, owner)
    return cursor.rowcount > 0


def assign_analyses_to_batch(
    conn: sqlite3.Connection,
    owner: str,
    batch_id: Optional[int],
    analysis_ids: list[int],
) -> int:
    """Move analyses into a batch, or out of any batch when `batch_id` is None."""
    manufacturer_id = None
    if batch_id is not None:
        batch = get_batch(conn, owner, batch_id)
        if batch is None:
            raise NotFoundError("Batch", batch_id)
        manufacturer_id = batch["manufacturer_id"]

    updated = 0
    with conn:
        for analysis_id in analysis_ids:
            if manufacturer_id is None:
                cursor = conn.execute(
                    "UPDATE analysis_records SET batch_id = NULL, updated_at = ? WHERE id = ? AND owner = ?",
                    (utc_now_iso(), analysis_id, owner),
                )
            else:
                cursor = conn.execute(
                    """
                    UPDATE analysis_records
                    SET batch_id = ?, manufacturer_id = ?, updated_at = ?
                    WHERE id = ? AND owner = ?
                    """,
                    (batch_id, manufacturer_id, utc_now_iso(), analysis_id, owner),
                )
            updated += cursor.rowcount
    return updated


def get_batch_records(conn: sqlite3.Connection, owner: str, batch_id: int) -> list[dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT * FROM analysis_records
        WHERE batch_id = ? AND owner = ?
        ORDER BY created_at, id
        """,
        (batch_id, owner),
    ).fetchall()
    return [_with_stones(conn, row) for row in rows]


def get_batch_summary(conn: sqlite3.Connection, owner: str, batch_id: int) -> dict[str, float]:
    return summarize_batch(get_batch_records(conn, owner, batch_id))


# Analysis records -------------------------------------------------------

def _require_market_rate(conn: sqlite3.Connection, owner: str, base_currency: str) -> MarketRate:
    market_rate = get_latest_market_rate(conn, owner, local_currency=base_currency)
    if market_rate is None:
        raise RateUnavailableError(
            f"No market rate quoted in {base_currency} has been recorded yet. Fetch or enter one first."
        )
    return market_rate


def _resolve_links(conn: sqlite3.Connection, owner: str, analysis: AnalysisInput) -> tuple[Optional[int], Optional[int]]:
    manufacturer_id = analysis.manufacturer_id
    if manufacturer_id is not None and get_manufacturer(conn, owner, manufacturer_id) is None:
        raise NotFoundError("Manufacturer", manufacturer_id)

    if analysis.batch_id is None:
        return manufacturer_id, None

    batch = get_batch(conn, owner, analysis.batch_id)
    if batch is None:
        raise NotFoundError("Batch", analysis.batch_id)
    if manufacturer_id is None:
        manufacturer_id = batch["manufacturer_id"]
    elif manufacturer_id != batch["manufacturer_id"]:
        raise ValidationError([FieldError("batch_id", "Batch belongs to a different manufacturer.")])
    return manufacturer_id, analysis.batch_id


def _record_values(
    analysis: AnalysisInput,
    breakdown: CostBreakdown,
    market_rate: MarketRate,
    manufacturer_id: Optional[int],
    batch_id: Optional[int],
) -> list[Any]:
    values = {
        "manufacturer_id": manufacturer_id,
        "batch_id": batch_id,
        "market_rate_id": market_rate.id,
        "product_code": analysis.product_code,
        "product_type": analysis.product_type,
        "total_grams": analysis.total_grams,
        "gold_purity": analysis.gold_purity,
        "labor_amount": analysis.labor_amount,
        "labor_unit": analysis.labor_unit.value,
        "fire_percent": analysis.fire_percent,
        "polish_amount": analysis.polish_amount,
        "certificate_amount": analysis.certificate_amount,
        "manufacturer_price": analysis.manufacturer_price,
        "input_currency": analysis.input_currency,
        "base_currency": breakdown.base_currency,
        "raw_material_cost": round_money(breakdown.raw_material_cost),
        "labor_cost": round_money(breakdown.labor_cost),
        "polish_cost": round_money(breakdown.polish_cost),
        "certificate_cost": round_money(breakdown.certificate_cost),
        "total_setting_cost": round_money(breakdown.total_setting_cost),
        "total_stone_cost": round_money(breakdown.total_stone_cost),
        "total_cost": round_money(breakdown.total_cost),
        "manufacturer_price_base": round_money(breakdown.manufacturer_price_base),
        "profit_loss": round_money(breakdown.profit_loss),
        "gold_price_used": breakdown.gold_price_used,
        "usd_rate_used": breakdown.usd_rate_used,
    }
    return [values[column] for column in RECORD_COLUMNS]


def _insert_stone_lines(conn: sqlite3.Connection, analysis_id: int, lines: list[StoneLineResult]) -> None:
    for line in lines:
        stone = line.stone
        conn.execute(
            """
            INSERT INTO analysis_stones
            (analysis_id, stone_type, category, carat_size, quantity, shape, color, clarity, quality,
             discount_percent, rapaport_price, price_per_carat, setting_cost, total_stone_cost)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                analysis_id,
                stone.stone_type,
                stone.category.value,
                stone.carat_size,
                stone.quantity,
                stone.shape,
                stone.color,
                stone.clarity,
                stone.quality,
                line.discount_percent if line.priced_from_grid else stone.discount_percent,
                None if line.rapaport_price is None else round_money(line.rapaport_price),
                round_money(line.price_per_carat),
                round_money(line.setting_cost),
                round_money(line.total_stone_cost),
            ),
        )


def _compute(
    conn: sqlite3.Connection,
    owner: str,
    payload: Mapping[str, Any],
) -> tuple[AnalysisInput, CostBreakdown, MarketRate, Optional[int], Optional[int]]:
    base_currency = get_all_settings(conn)["base_currency"]
    analysis = validate_analysis_payload(payload, base_currency=base_currency)
    manufacturer_id, batch_id = _resolve_links(conn, owner, analysis)
    market_rate = _require_market_rate(conn, owner, base_currency)
    tables = load_reference_tables(conn, owner)
    breakdown = calculate_from_input(analysis, market_rate, tables, base_currency=base_currency)
    return analysis, breakdown, market_rate, manufacturer_id, batch_id


def create_analysis(conn: sqlite3.Connection, owner: str, payload: Mapping[str, Any]) -> int:
    analysis, breakdown, market_rate, manufacturer_id, batch_id = _compute(conn, owner, payload)
    now = utc_now_iso()
    try:
        cursor = conn.execute(
            f"""
            INSERT INTO analysis_records (owner, {', '.join(RECORD_COLUMNS)}, created_at, updated_at)
            VALUES ({', '.join('?' for _ in range(len(RECORD_COLUMNS) + 3))})
            """,
            [owner, *_record_values(analysis, breakdown, market_rate, manufacturer_id, batch_id), now, now],
        )
        analysis_id = int(cursor.lastrowid)
        _insert_stone_lines(conn, analysis_id, breakdown.stone_lines)
        conn.commit()
    except Exception:
        conn.rollback()
        logger.exception("Failed to save analysis %s for %s", analysis.product_code, owner)
        raise

    logger.info(
        "Saved analysis #%s %s for %s: total_cost=%.2f %s",
        analysis_id,
        analysis.product_code,
        owner,
        breakdown.total_cost,
        breakdown.base_currency,
    )
    return analysis_id


def update_analysis(
    conn: sqlite3.Connection,
    owner: str,
    analysis_id: int,
    payload: Mapping[str, Any],
) -> None:
    """Recompute every derived field against the latest rate and replace the stone lines."""
    if _get_record_row(conn, owner, analysis_id) is None:
        raise NotFoundError("Analysis", analysis_id)

    analysis, breakdown, market_rate, manufacturer_id, batch_id = _compute(conn, owner, payload)
    assignments = ", ".join(f"{column} = ?" for column in RECORD_COLUMNS)
    try:
        conn.execute(
            f"UPDATE analysis_records SET {assignments}, updated_at = ? WHERE id = ? AND owner = ?",
            [
                *_record_values(analysis, breakdown, market_rate, manufacturer_id, batch_id),
                utc_now_iso(),
                analysis_id,
                owner,
            ],
        )
        conn.execute("DELETE FROM analysis_stones WHERE analysis_id = ?", (analysis_id,))
        _insert_stone_lines(conn, analysis_id, breakdown.stone_lines)
        conn.commit()
    except Exception:
        conn.rollback()
        logger.exception("Failed to update analysis #%s for %s", analysis_id, owner)
        raise

    logger.info("Updated analysis #%s for %s: total_cost=%.2f", analysis_id, owner, breakdown.total_cost)


def _get_record_row(conn: sqlite3.Connection, owner: str, analysis_id: int) -> Optional[sqlite3.Row]:
    clause, params = owner_filter("analysis_records", owner, alias="a")
    return conn.execute(
        f"""
        SELECT a.*, m.name AS manufacturer_name, b.batch_number
        FROM analysis_records a
        LEFT JOIN manufacturers m ON m.id = a.manufacturer_id
        LEFT JOIN batches b ON b.id = a.batch_id
        WHERE a.id = ? AND {clause}
        """,
        [analysis_id, *params],
    ).fetchone()


def _with_stones(conn: sqlite3.Connection, row: sqlite3.Row) -> dict[str, Any]:
    record = dict(row)
    record["stones"] = [
        dict(stone)
        for stone in conn.execute(
            "SELECT * FROM analysis_stones WHERE analysis_id = ? ORDER BY id",
            (row["id"],),
        ).fetchall()
    ]
    return record


def get_analysis(conn: sqlite3.Connection, owner: str, analysis_id: int) -> Optional[dict[str, Any]]:
    row = _get_record_row(conn, owner, analysis_id)
    return _with_stones(conn, row) if row else None


def list_analyses(
    conn: sqlite3.Connection,
    owner: str,
    manufacturer_id: Optional[int] = None,
    batch_id: Optional[int] = None,
    search: str = "",
    limit: int = 500,
) -> list[sqlite3.Row]:
    clause, params = owner_filter("analysis_records", owner, alias="a")
    sql = f"""
        SELECT a.*, m.name AS manufacturer_name, b.batch_number
        FROM analysis_records a
        LEFT JOIN manufacturers m ON m.id = a.manufacturer_id
        LEFT JOIN batches b ON b.id = a.batch_id
        WHERE {clause}
    """
    if manufacturer_id is not None:
        sql += " AND a.manufacturer_id = ?"
        params.append(manufacturer_id)
    if batch_id is not None:
        sql += " AND a.batch_id = ?"
        params.append(batch_id)
    if search.strip():
        sql += " AND (a.product_code LIKE ? OR a.product_type LIKE ?)"
        params.extend([f"%{search.strip()}%"] * 2)
    sql += " ORDER BY a.created_at DESC, a.id DESC LIMIT ?"
    params.append(limit)
    return conn.execute(sql, params).fetchall()


def delete_analysis(conn: sqlite3.Connection, owner: str, analysis_id: int) -> bool:
    cursor = conn.execute("DELETE FROM analysis_records WHERE id = ? AND owner = ?", (analysis_id, owner))
    conn.commit()
    if cursor.rowcount:
        logger.info("Deleted analysis #%s (%s)", analysis_id, owner)
    return cursor.rowcount > 0


def analysis_input_from_record(record: Mapping[str, Any]) -> AnalysisInput:
    stones = tuple(
        StoneLineInput(
            stone_type=stone["stone_type"],
            carat_size=stone["carat_size"],
            quantity=stone["quantity"],
            category=StoneCategory(stone["category"]),
            shape=stone["shape"],
            color=stone["color"],
            clarity=stone["clarity"],
            quality=stone["quality"],
            discount_percent=stone["discount_percent"],
        )
        for stone in record.get("stones", [])
    )
    return AnalysisInput(
        product_code=record["product_code"],
        total_grams=record["total_grams"],
        gold_purity_factor=purity_factor(record["gold_purity"]) or 0.0,
        gold_purity=record["gold_purity"],
        fire_percent=record["fire_percent"],
        labor_amount=record["labor_amount"],
        labor_unit=LaborUnit(record["labor_unit"]),
        polish_amount=record["polish_amount"],
        certificate_amount=record["certificate_amount"],
        manufacturer_price=record["manufacturer_price"],
        stones=stones,
        product_type=record["product_type"],
        manufacturer_id=record["manufacturer_id"],
        batch_id=record["batch_id"],
        input_currency=record["input_currency"],
    )


def recompute_analysis(conn: sqlite3.Connection, owner: str, analysis_id: int) -> CostBreakdown:
    """Re-run the calculator with the rates stored on the record.

    Reference tables are read as they are now, so the result matches the
    stored figures as long as those tables have not been edited since.
    Nothing is written.
    """
    record = get_analysis(conn, owner, analysis_id)
    if record is None:
        raise NotFoundError("Analysis", analysis_id)

    # Stored gold price is already in base currency.
    snapshot = MarketRate(
        id=record["market_rate_id"],
        usd_rate=record["usd_rate_used"],
        gold_price_per_gram=record["gold_price_used"],
        gold_price_currency=record["base_currency"],
        local_currency=record["base_currency"],
    )
    return calculate_from_input(
        analysis_input_from_record(record),
        snapshot,
        load_reference_tables(conn, owner),
        base_currency=record["base_currency"],
    )
