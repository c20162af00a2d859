import math
from collections.abc import Iterable, Mapping
from typing import Any, Optional

from jewel_analysis.models import (
    AnalysisInput,
    CostBreakdown,
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
    StoneLineResult,
)

REFERENCE_CURRENCY = "USD"

PURITY_FACTORS: dict[str, float] = {
    "24": 1.0,
    "22": 0.9167,
    "21": 0.875,
    "18": 0.750,
    "14": 0.5833,
    "10": 0.4167,
    "9": 0.375,
}

DIAMOND_SYNONYMS = ("elmas", "diamond", "pırlanta", "pirlanta")


def round_money(value: float) -> float:
    return round(value, 2)


def safe_number(value: Any) -> float:
    """Coerce user-supplied numbers; anything unparseable or non-finite is 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


def normalize_purity_label(label: Any) -> str:
    return str(label or "").strip().lower().removesuffix("k").strip()


def purity_factor(label: Any) -> Optional[float]:
    return PURITY_FACTORS.get(normalize_purity_label(label))


def looks_like_diamond(stone_type: str) -> bool:
    lowered = (stone_type or "").casefold()
    return any(synonym in lowered for synonym in DIAMOND_SYNONYMS)


def conversion_factor(currency: str, usd_rate: float, base_currency: str) -> float:
    """Multiplier taking an amount in `currency` to the base currency.

    Only the base currency itself and USD are convertible; any other code
    yields 0.
    """
    code = (currency or "").strip().upper()
    base = (base_currency or "").strip().upper()
    if code == base:
        return 1.0
    if code == REFERENCE_CURRENCY:
        return safe_number(usd_rate)
    return 0.0


def quoted_usd_rate(market_rate: MarketRate, base_currency: str) -> float:
    """`usd_rate` when the snapshot is quoted in the base currency, else 0."""
    local = (market_rate.local_currency or "").strip().upper()
    if local and local != (base_currency or "").strip().upper():
        return 0.0
    return safe_number(market_rate.usd_rate)


def gold_price_in_base(market_rate: MarketRate, base_currency: str) -> float:
    price = safe_number(market_rate.gold_price_per_gram)
    factor = conversion_factor(
        market_rate.gold_price_currency,
        quoted_usd_rate(market_rate, base_currency),
        base_currency,
    )
    return price * factor


def _carat_in_range(carat: float, low: Any, high: Any) -> bool:
    return safe_number(low) <= carat <= safe_number(high)


def _same_text(left: Optional[str], right: Optional[str]) -> bool:
    return (left or "").strip().casefold() == (right or "").strip().casefold()


def find_setting_rate(
    carat: float,
    category: StoneCategory,
    rates: Iterable[SettingRate],
) -> Optional[SettingRate]:
    rates = list(rates)
    if any(rate.category is not None for rate in rates):
        rates = [rate for rate in rates if rate.category in (category, None)]
    for rate in rates:
        if _carat_in_range(carat, rate.min_carat, rate.max_carat):
            return rate
    return None


def calculate_setting_cost(
    carat: float,
    quantity: float,
    category: StoneCategory,
    rates: Iterable[SettingRate],
) -> float:
    rate = find_setting_rate(carat, category, rates)
    if rate is None:
        return 0.0
    price = safe_number(rate.price)
    if rate.pricing_mode == PricingMode.PER_CARAT:
        return price * carat * quantity
    return price * quantity


def find_diamond_price(
    shape: str,
    carat: float,
    color: str,
    clarity: str,
    grid: Iterable[DiamondPrice],
) -> Optional[float]:
    for row in grid:
        if (
            _same_text(row.shape, shape)
            and _same_text(row.color, color)
            and _same_text(row.clarity, clarity)
            and _carat_in_range(carat, row.low_carat, row.high_carat)
        ):
            return safe_number(row.price_per_carat)
    return None


def find_discount_percent(carat: float, tiers: Iterable[DiscountRate]) -> float:
    for tier in tiers:
        if _carat_in_range(carat, tier.min_carat, tier.max_carat):
            return safe_number(tier.discount_percent)
    return 0.0


def find_gemstone_price(
    stone_type: str,
    carat: float,
    quality: Optional[str],
    price_list: Iterable[GemstonePrice],
) -> float:
    candidates = [row for row in price_list if _same_text(row.stone_type, stone_type)]
    if not candidates:
        return 0.0

    def carat_fits(row: GemstonePrice) -> bool:
        if row.min_carat is None or row.max_carat is None:
            return False
        return _carat_in_range(carat, row.min_carat, row.max_carat)

    if quality:
        for row in candidates:
            if _same_text(row.quality, quality) and (carat_fits(row) or row.min_carat is None):
                return safe_number(row.price_per_carat)
    for row in candidates:
        if carat_fits(row):
            return safe_number(row.price_per_carat)
    return safe_number(candidates[0].price_per_carat)


def evaluate_stone_line(
    stone: StoneLineInput,
    tables: ReferenceTables,
    usd_rate: float,
) -> StoneLineResult:
    """Price one stone line in base currency.

    Reference tables are quoted in USD, so every looked-up price is scaled by
    `usd_rate` before it reaches the result.
    """
    carat = safe_number(stone.carat_size)
    quantity = safe_number(stone.quantity)
    usd_rate = safe_number(usd_rate)

    setting_cost = calculate_setting_cost(carat, quantity, stone.category, tables.setting_rates) * usd_rate

    if stone.category == StoneCategory.DIAMOND and stone.shape and stone.color and stone.clarity:
        grid_price = find_diamond_price(stone.shape, carat, stone.color, stone.clarity, tables.diamond_prices)
        if grid_price is not None:
            if stone.discount_percent is None:
                discount = find_discount_percent(carat, tables.discount_rates)
            else:
                discount = safe_number(stone.discount_percent)
            discounted = grid_price * (1 - discount / 100) * usd_rate
            return StoneLineResult(
                stone=stone,
                price_per_carat=discounted,
                setting_cost=setting_cost,
                total_stone_cost=discounted * carat * quantity,
                rapaport_price=grid_price * usd_rate,
                discount_percent=discount,
            )

    list_price = find_gemstone_price(stone.stone_type, carat, stone.quality, tables.gemstone_prices) * usd_rate
    return StoneLineResult(
        stone=stone,
        price_per_carat=list_price,
        setting_cost=setting_cost,
        total_stone_cost=list_price * carat * quantity,
    )


def calculate_analysis(
    *,
    total_grams: Any,
    gold_purity_factor: Any,
    fire_percent: Any,
    labor_amount: Any,
    labor_unit: LaborUnit,
    polish_amount: Any,
    certificate_amount: Any,
    manufacturer_price: Any,
    stones: Iterable[StoneLineInput],
    market_rate: MarketRate,
    tables: ReferenceTables,
    base_currency: str = "TRY",
    input_currency: str = REFERENCE_CURRENCY,
) -> CostBreakdown:
    total_grams = safe_number(total_grams)
    gold_purity_factor = safe_number(gold_purity_factor)
    fire_percent = safe_number(fire_percent)
    labor_amount = safe_number(labor_amount)
    polish_amount = safe_number(polish_amount)
    certificate_amount = safe_number(certificate_amount)
    manufacturer_price = safe_number(manufacturer_price)

    usd_rate = quoted_usd_rate(market_rate, base_currency)
    gold_price = gold_price_in_base(market_rate, base_currency)
    input_factor = conversion_factor(input_currency, usd_rate, base_currency)
    reference_factor = conversion_factor(REFERENCE_CURRENCY, usd_rate, base_currency)

    raw_material_cost = total_grams * (1 + fire_percent / 100) * gold_price * gold_purity_factor

    if labor_unit == LaborUnit.GOLD_GRAMS:
        labor_cost = labor_amount * gold_price
    else:
        labor_cost = labor_amount * input_factor
    polish_cost = polish_amount * input_factor
    certificate_cost = certificate_amount * input_factor
    labor_cost += polish_cost + certificate_cost

    stone_lines = [evaluate_stone_line(stone, tables, reference_factor) for stone in stones]
    total_stone_cost = sum((line.total_stone_cost for line in stone_lines), 0.0)
    total_setting_cost = sum((line.setting_cost for line in stone_lines), 0.0)

    total_cost = raw_material_cost + labor_cost + total_setting_cost + total_stone_cost
    manufacturer_price_base = manufacturer_price * input_factor
    profit_loss = manufacturer_price_base - total_cost

    return CostBreakdown(
        raw_material_cost=safe_number(raw_material_cost),
        labor_cost=safe_number(labor_cost),
        total_setting_cost=safe_number(total_setting_cost),
        total_stone_cost=safe_number(total_stone_cost),
        total_cost=safe_number(total_cost),
        profit_loss=safe_number(profit_loss),
        manufacturer_price_base=safe_number(manufacturer_price_base),
        polish_cost=safe_number(polish_cost),
        certificate_cost=safe_number(certificate_cost),
        gold_price_used=gold_price,
        usd_rate_used=usd_rate,
        base_currency=base_currency,
        stone_lines=stone_lines,
    )


def calculate_from_input(
    analysis: AnalysisInput,
    market_rate: MarketRate,
    tables: ReferenceTables,
    base_currency: str = "TRY",
) -> CostBreakdown:
    return calculate_analysis(
        total_grams=analysis.total_grams,
        gold_purity_factor=analysis.gold_purity_factor,
        fire_percent=analysis.fire_percent,
        labor_amount=analysis.labor_amount,
        labor_unit=analysis.labor_unit,
        polish_amount=analysis.polish_amount,
        certificate_amount=analysis.certificate_amount,
        manufacturer_price=analysis.manufacturer_price,
        stones=analysis.stones,
        market_rate=market_rate,
        tables=tables,
        base_currency=base_currency,
        input_currency=analysis.input_currency,
    )


def profit_loss_label(value: float) -> str:
    if value > 0:
        return "Markup"
    if value < 0:
        return "Below cost"
    return "Break-even"


def suggest_labor_amount(product_type: Optional[str], total_grams: Any, labor_prices: Iterable[Mapping[str, Any]]) -> float:
    """Per-gram labour from the product-type table, in input currency."""
    for row in labor_prices:
        if _same_text(row["product_type"], product_type):
            return safe_number(row["price_per_gram"]) * safe_number(total_grams)
    return 0.0


def suggest_polish_amount(product_type: Optional[str], polish_prices: Iterable[Mapping[str, Any]]) -> float:
    for row in polish_prices:
        if _same_text(row["product_type"], product_type):
            return safe_number(row["price"])
    return 0.0


def price_difference_pct(analysis_total: float, manufacturer_total: float) -> float:
    if analysis_total == 0:
        return 0.0
    return (manufacturer_total - analysis_total) / analysis_total * 100


BATCH_TOTAL_FIELDS = {
    "raw_material_cost": "raw_material_cost",
    "labor_cost": "labor_cost",
    "stone_cost": "total_stone_cost",
    "setting_cost": "total_setting_cost",
    "polish_cost": "polish_cost",
    "certificate_cost": "certificate_cost",
    "total_cost": "total_cost",
    "manufacturer_price": "manufacturer_price_base",
    "profit_loss": "profit_loss",
}


def summarize_batch(records: Iterable[Mapping[str, Any]]) -> dict[str, float]:
    records = list(records)
    totals = {
        name: sum((safe_number(record[column]) for record in records), 0.0)
        for name, column in BATCH_TOTAL_FIELDS.items()
    }
    totals["record_count"] = len(records)
    totals["difference_pct"] = price_difference_pct(totals["total_cost"], totals["manufacturer_price"])
    return totals
