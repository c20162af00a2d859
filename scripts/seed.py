"""
Initialises the SQLite database and loads shared sample reference tables.
Run this once before first use; pass --force to reload the sample rows.
"""

import argparse

from jewel_analysis.db import add_reference_row, get_connection, init_db, list_reference_rows

SAMPLE_ROWS = {
    "setting_rates": [
        {"category": "diamond", "min_carat": 0.0, "max_carat": 0.10, "price": 2.0, "pricing_mode": "per_stone"},
        {"category": "diamond", "min_carat": 0.10, "max_carat": 0.50, "price": 5.0, "pricing_mode": "per_stone"},
        {"category": "diamond", "min_carat": 0.50, "max_carat": 5.0, "price": 12.0, "pricing_mode": "per_stone"},
        {"category": "colored", "min_carat": 0.0, "max_carat": 5.0, "price": 3.0, "pricing_mode": "per_stone"},
    ],
    "gemstone_prices": [
        {"stone_type": "Ruby", "quality": "A", "min_carat": 0.0, "max_carat": 1.0, "price_per_carat": 400.0},
        {"stone_type": "Ruby", "quality": "AA", "min_carat": 0.0, "max_carat": 1.0, "price_per_carat": 900.0},
        {"stone_type": "Sapphire", "quality": None, "min_carat": None, "max_carat": None, "price_per_carat": 350.0},
        {"stone_type": "Emerald", "quality": None, "min_carat": None, "max_carat": None, "price_per_carat": 500.0},
        {"stone_type": "Diamond", "quality": None, "min_carat": None, "max_carat": None, "price_per_carat": 1000.0},
    ],
    "diamond_prices": [
        {"shape": "Round", "low_carat": 0.01, "high_carat": 0.03, "color": "G", "clarity": "VS1", "price_per_carat": 900.0},
        {"shape": "Round", "low_carat": 0.04, "high_carat": 0.07, "color": "G", "clarity": "VS1", "price_per_carat": 1100.0},
        {"shape": "Round", "low_carat": 0.30, "high_carat": 0.39, "color": "G", "clarity": "VS1", "price_per_carat": 3200.0},
        {"shape": "Round", "low_carat": 0.50, "high_carat": 0.69, "color": "G", "clarity": "VS1", "price_per_carat": 4800.0},
    ],
    "discount_rates": [
        {"min_carat": 0.0, "max_carat": 0.30, "discount_percent": 40.0},
        {"min_carat": 0.30, "max_carat": 1.0, "discount_percent": 30.0},
    ],
    "labor_prices": [
        {"product_type": "ring", "price_per_gram": 4.0},
        {"product_type": "necklace", "price_per_gram": 3.0},
        {"product_type": "earring", "price_per_gram": 5.0},
    ],
    "polish_prices": [
        {"product_type": "ring", "price": 5.0},
        {"product_type": "necklace", "price": 8.0},
    ],
}


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--force", action="store_true", help="add sample rows even if tables already have rows")
    args = parser.parse_args()

    conn = get_connection()
    init_db(conn)

    for table, rows in SAMPLE_ROWS.items():
        if list_reference_rows(conn, table) and not args.force:
            print(f"{table}: already populated, skipped")
            continue
        for values in rows:
            add_reference_row(conn, table, values)
        print(f"{table}: added {len(rows)} rows")

    print("Database initialised successfully.")


if __name__ == "__main__":
    main()
