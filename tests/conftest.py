import pytest

from jewel_analysis.db import add_reference_row, get_connection, init_db, save_market_rate


@pytest.fixture
def conn(tmp_path):
    connection = get_connection(tmp_path / "analysis.db")
    init_db(connection)
    yield connection
    connection.close()


@pytest.fixture
def auth_conn(tmp_path):
    from jewel_analysis.db import get_auth_connection

    connection = get_auth_connection(tmp_path / "auth.db")
    yield connection
    connection.close()


@pytest.fixture
def priced_conn(conn):
    """Database with a TRY market rate and a small set of shared reference rows."""
    save_market_rate(conn, usd_rate=30.0, gold_price_per_gram=2000.0, gold_price_currency="TRY", is_manual=True)
    add_reference_row(
        conn,
        "setting_rates",
        {"category": "colored", "min_carat": 0.0, "max_carat": 1.0, "price": 2.0, "pricing_mode": "per_stone"},
    )
    add_reference_row(conn, "gemstone_prices", {"stone_type": "Ruby", "price_per_carat": 100.0})
    return conn


@pytest.fixture
def ruby_ring_payload():
    return {
        "product_code": "R-1",
        "product_type": "ring",
        "total_grams": "5",
        "gold_purity": "18",
        "labor_amount": "10",
        "manufacturer_price": "400",
        "stones": [{"stone_type": "Ruby", "carat_size": "0.5", "quantity": "2"}],
    }
