import math

import pytest

from jewel_analysis.models import (
    DiamondPrice,
    DiscountRate,
    GemstonePrice,
    LaborUnit,
    MarketRate,
    PricingMode,
    ReferenceTables,
    SettingRate,
    StoneCategory,
    StoneLineInput,
)
from jewel_analysis.pricing import (
    PURITY_FACTORS,
    calculate_analysis,
    calculate_setting_cost,
    conversion_factor,
    find_gemstone_price,
    price_difference_pct,
    profit_loss_label,
    purity_factor,
    safe_number,
    suggest_labor_amount,
    suggest_polish_amount,
    summarize_batch,
)

TRY_RATE = MarketRate(usd_rate=30.0, gold_price_per_gram=2450.0, gold_price_currency="TRY")


def _analysis(**overrides):
    values = {
        "total_grams": 10,
        "gold_purity_factor": 1.0,
        "fire_percent": 0,
        "labor_amount": 0,
        "labor_unit": LaborUnit.CURRENCY,
        "polish_amount": 0,
        "certificate_amount": 0,
        "manufacturer_price": 0,
        "stones": (),
        "market_rate": TRY_RATE,
        "tables": ReferenceTables(),
        "base_currency": "TRY",
        "input_currency": "TRY",
    }
    values.update(overrides)
    return calculate_analysis(**values)


def test_worked_example():
    result = _analysis(fire_percent=5, labor_amount=500, manufacturer_price=27000)

    assert result.raw_material_cost == pytest.approx(25725)
    assert result.total_cost == pytest.approx(26225)
    assert result.profit_loss == pytest.approx(775)
    assert profit_loss_label(result.profit_loss) == "Markup"


def test_same_inputs_give_identical_output():
    stones = (StoneLineInput("Ruby", 0.5, 2),)
    tables = ReferenceTables(gemstone_prices=(GemstonePrice("Ruby", 100.0),))

    first = _analysis(stones=stones, tables=tables, labor_amount=12.5)
    second = _analysis(stones=stones, tables=tables, labor_amount=12.5)

    assert first == second


def test_zero_stones_have_no_stone_costs():
    result = _analysis(labor_amount=100)

    assert result.total_stone_cost == 0
    assert result.total_setting_cost == 0
    assert result.stone_lines == []
    assert result.total_cost == pytest.approx(result.raw_material_cost + result.labor_cost)


def test_higher_purity_never_costs_less():
    costs = [_analysis(gold_purity_factor=purity_factor(label)).raw_material_cost for label in ["9", "14", "18", "22", "24"]]

    assert costs == sorted(costs)


def test_fire_percent_scales_raw_material_linearly():
    base = _analysis().raw_material_cost
    with_fire = _analysis(fire_percent=10).raw_material_cost

    assert with_fire == pytest.approx(base * 1.10)


def test_purity_labels_accept_karat_suffix():
    assert purity_factor("18k") == PURITY_FACTORS["18"]
    assert purity_factor(" 22K ") == PURITY_FACTORS["22"]
    assert purity_factor("19") is None


def test_gold_quoted_in_usd_is_converted_to_base():
    rate = MarketRate(usd_rate=30.0, gold_price_per_gram=80.0, gold_price_currency="USD")

    result = _analysis(market_rate=rate)

    assert result.gold_price_used == pytest.approx(2400.0)
    assert result.raw_material_cost == pytest.approx(24000.0)


def test_only_base_and_usd_are_convertible():
    assert conversion_factor("try", 30.0, "TRY") == 1.0
    assert conversion_factor("USD", 30.0, "TRY") == 30.0
    assert conversion_factor("EUR", 30.0, "TRY") == 0.0


def test_snapshot_quoted_in_another_currency_contributes_nothing():
    lira = MarketRate(usd_rate=30.0, gold_price_per_gram=2450.0, gold_price_currency="TRY", local_currency="TRY")
    lira_usd_gold = MarketRate(usd_rate=30.0, gold_price_per_gram=80.0, gold_price_currency="USD", local_currency="TRY")

    in_euro = _analysis(market_rate=lira, base_currency="EUR", input_currency="USD", labor_amount=10)
    usd_gold_in_euro = _analysis(market_rate=lira_usd_gold, base_currency="EUR")

    assert in_euro.gold_price_used == 0.0
    assert in_euro.raw_material_cost == 0.0
    assert in_euro.usd_rate_used == 0.0
    assert in_euro.labor_cost == 0.0
    assert usd_gold_in_euro.gold_price_used == 0.0
    assert _analysis(market_rate=lira).gold_price_used == pytest.approx(2450.0)


def test_usd_entered_amounts_are_converted_to_base():
    result = _analysis(
        total_grams=0,
        labor_amount=10,
        polish_amount=2,
        certificate_amount=3,
        manufacturer_price=100,
        input_currency="USD",
    )

    assert result.polish_cost == pytest.approx(60)
    assert result.certificate_cost == pytest.approx(90)
    assert result.labor_cost == pytest.approx(300 + 60 + 90)
    assert result.manufacturer_price_base == pytest.approx(3000)


def test_labor_in_gold_grams_uses_gold_price():
    result = _analysis(total_grams=0, labor_amount=1.5, labor_unit=LaborUnit.GOLD_GRAMS)

    assert result.labor_cost == pytest.approx(1.5 * 2450)


def test_diamond_discount_applied_to_grid_price():
    tables = ReferenceTables(diamond_prices=(DiamondPrice("Round", 0.3, 0.69, "G", "VS1", 1000.0),))
    stone = StoneLineInput(
        "Diamond",
        0.5,
        2,
        category=StoneCategory.DIAMOND,
        shape="round",
        color="g",
        clarity="vs1",
        discount_percent=20,
    )

    result = _analysis(total_grams=0, stones=(stone,), tables=tables)
    line = result.stone_lines[0]

    assert line.priced_from_grid
    assert line.rapaport_price == pytest.approx(30000)
    assert line.total_stone_cost == pytest.approx(1000 * 0.8 * 30 * 0.5 * 2)


def test_zero_discount_reproduces_grid_price():
    tables = ReferenceTables(diamond_prices=(DiamondPrice("Round", 0.3, 0.69, "G", "VS1", 1000.0),))
    stone = StoneLineInput(
        "Diamond", 0.5, 1, category=StoneCategory.DIAMOND, shape="Round", color="G", clarity="VS1", discount_percent=0
    )

    line = _analysis(stones=(stone,), tables=tables).stone_lines[0]

    assert line.total_stone_cost == pytest.approx(1000 * 30 * 0.5)


def test_discount_tier_used_when_line_has_no_discount():
    tables = ReferenceTables(
        diamond_prices=(DiamondPrice("Round", 0.3, 0.69, "G", "VS1", 1000.0),),
        discount_rates=(DiscountRate(0.0, 0.29, 40.0), DiscountRate(0.3, 0.99, 25.0)),
    )
    stone = StoneLineInput("Pırlanta", 0.5, 1, category=StoneCategory.DIAMOND, shape="Round", color="G", clarity="VS1")

    line = _analysis(stones=(stone,), tables=tables).stone_lines[0]

    assert line.discount_percent == 25.0
    assert line.price_per_carat == pytest.approx(1000 * 0.75 * 30)


def test_diamond_without_grid_attributes_uses_price_list():
    tables = ReferenceTables(
        diamond_prices=(DiamondPrice("Round", 0.0, 5.0, "G", "VS1", 5000.0),),
        gemstone_prices=(GemstonePrice("Diamond", 800.0),),
    )
    stone = StoneLineInput("Diamond", 0.5, 1, category=StoneCategory.DIAMOND, color="G", clarity="VS1")

    line = _analysis(stones=(stone,), tables=tables).stone_lines[0]

    assert not line.priced_from_grid
    assert line.price_per_carat == pytest.approx(800 * 30)


def test_stone_type_text_does_not_decide_category():
    tables = ReferenceTables(
        diamond_prices=(DiamondPrice("Round", 0.0, 5.0, "G", "VS1", 5000.0),),
        gemstone_prices=(GemstonePrice("Elmas", 700.0),),
    )
    stone = StoneLineInput("Elmas", 0.5, 1, category=StoneCategory.COLORED, shape="Round", color="G", clarity="VS1")

    line = _analysis(stones=(stone,), tables=tables).stone_lines[0]

    assert not line.priced_from_grid
    assert line.price_per_carat == pytest.approx(700 * 30)


def test_grid_miss_falls_back_to_price_list():
    tables = ReferenceTables(
        diamond_prices=(DiamondPrice("Round", 0.0, 0.2, "G", "VS1", 5000.0),),
        gemstone_prices=(GemstonePrice("Diamond", 800.0),),
    )
    stone = StoneLineInput("Diamond", 0.5, 1, category=StoneCategory.DIAMOND, shape="Round", color="G", clarity="VS1")

    line = _analysis(stones=(stone,), tables=tables).stone_lines[0]

    assert line.rapaport_price is None
    assert line.price_per_carat == pytest.approx(800 * 30)


def test_unknown_stone_type_costs_nothing():
    line = _analysis(stones=(StoneLineInput("Opal", 1.0, 3),)).stone_lines[0]

    assert line.total_stone_cost == 0
    assert line.setting_cost == 0


def test_malformed_numbers_never_leak_nan():
    result = _analysis(
        total_grams="abc",
        fire_percent="",
        labor_amount=float("nan"),
        manufacturer_price=float("inf"),
        stones=(StoneLineInput("Ruby", "x", "y"),),
        tables=ReferenceTables(gemstone_prices=(GemstonePrice("Ruby", 100.0),)),
    )

    for value in (result.raw_material_cost, result.labor_cost, result.total_cost, result.profit_loss):
        assert math.isfinite(value)
    assert result.total_cost == 0


def test_safe_number_handles_junk():
    assert safe_number(None) == 0
    assert safe_number("") == 0
    assert safe_number(" 2.5 ") == 2.5
    assert safe_number(True) == 0
    assert safe_number(float("-inf")) == 0


def test_setting_cost_per_stone_and_per_carat():
    per_stone = (SettingRate(0.0, 1.0, 4.0),)
    per_carat = (SettingRate(0.0, 1.0, 4.0, pricing_mode=PricingMode.PER_CARAT),)

    assert calculate_setting_cost(0.5, 3, StoneCategory.COLORED, per_stone) == pytest.approx(12.0)
    assert calculate_setting_cost(0.5, 3, StoneCategory.COLORED, per_carat) == pytest.approx(6.0)
    assert calculate_setting_cost(2.0, 3, StoneCategory.COLORED, per_stone) == 0


def test_setting_tiers_filtered_by_category():
    rates = (
        SettingRate(0.0, 1.0, 10.0, category=StoneCategory.DIAMOND),
        SettingRate(0.0, 1.0, 3.0, category=StoneCategory.COLORED),
    )

    assert calculate_setting_cost(0.5, 1, StoneCategory.DIAMOND, rates) == 10.0
    assert calculate_setting_cost(0.5, 1, StoneCategory.COLORED, rates) == 3.0


def test_setting_tier_bounds_are_inclusive():
    rates = (SettingRate(0.1, 0.5, 2.0),)

    assert calculate_setting_cost(0.1, 1, StoneCategory.COLORED, rates) == 2.0
    assert calculate_setting_cost(0.5, 1, StoneCategory.COLORED, rates) == 2.0


def test_gemstone_refinement_prefers_quality_then_carat():
    price_list = (
        GemstonePrice("Ruby", 100.0, quality="A", min_carat=0.0, max_carat=1.0),
        GemstonePrice("Ruby", 300.0, quality="AA", min_carat=0.0, max_carat=1.0),
        GemstonePrice("Ruby", 500.0, quality="A", min_carat=1.01, max_carat=3.0),
    )

    assert find_gemstone_price("ruby", 0.5, "AA", price_list) == 300.0
    assert find_gemstone_price("Ruby ", 2.0, None, price_list) == 500.0
    assert find_gemstone_price("Ruby", 9.0, None, price_list) == 100.0
    assert find_gemstone_price("Topaz", 1.0, None, price_list) == 0


def test_profit_loss_labels():
    assert profit_loss_label(10) == "Markup"
    assert profit_loss_label(-0.01) == "Below cost"
    assert profit_loss_label(0) == "Break-even"


def test_batch_total_equals_sum_of_records():
    records = [
        {
            "raw_material_cost": 100.0,
            "labor_cost": 10.0,
            "total_stone_cost": 5.0,
            "total_setting_cost": 1.0,
            "polish_cost": 0.0,
            "certificate_cost": 0.0,
            "total_cost": 116.0,
            "manufacturer_price_base": 120.0,
            "profit_loss": 4.0,
        },
        {
            "raw_material_cost": 200.0,
            "labor_cost": 20.0,
            "total_stone_cost": 0.0,
            "total_setting_cost": 0.0,
            "polish_cost": 2.0,
            "certificate_cost": 3.0,
            "total_cost": 220.0,
            "manufacturer_price_base": 200.0,
            "profit_loss": -20.0,
        },
    ]

    summary = summarize_batch(records)

    assert summary["total_cost"] == sum(record["total_cost"] for record in records)
    assert summary["record_count"] == 2
    assert summary["profit_loss"] == -16.0
    assert summary["difference_pct"] == pytest.approx(price_difference_pct(336.0, 320.0))


def test_empty_batch_summary():
    summary = summarize_batch([])

    assert summary["total_cost"] == 0
    assert summary["difference_pct"] == 0


def test_labor_and_polish_suggestions():
    labor_prices = [{"product_type": "ring", "price_per_gram": 4.0}]
    polish_prices = [{"product_type": "Ring", "price": 5.0}]

    assert suggest_labor_amount("ring", 3.5, labor_prices) == pytest.approx(14.0)
    assert suggest_labor_amount("chain", 3.5, labor_prices) == 0
    assert suggest_polish_amount("ring", polish_prices) == 5.0
