from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class StoneCategory(str, Enum):
    DIAMOND = "diamond"
    COLORED = "colored"


class LaborUnit(str, Enum):
    CURRENCY = "currency"
    GOLD_GRAMS = "gold_grams"


class PricingMode(str, Enum):
    PER_STONE = "per_stone"
    PER_CARAT = "per_carat"


class Ownership(str, Enum):
    TENANT_SHARED = "tenant-shared"
    TENANT_OWNED = "tenant-owned"


@dataclass(frozen=True)
class MarketRate:
    usd_rate: float
    gold_price_per_gram: float
    gold_price_currency: str
    is_manual: bool = False
    fetched_at: Optional[str] = None
    local_currency: Optional[str] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class SettingRate:
    min_carat: float
    max_carat: float
    price: float
    pricing_mode: PricingMode = PricingMode.PER_STONE
    category: Optional[StoneCategory] = None


@dataclass(frozen=True)
class GemstonePrice:
    stone_type: str
    price_per_carat: float
    quality: Optional[str] = None
    min_carat: Optional[float] = None
    max_carat: Optional[float] = None


@dataclass(frozen=True)
class DiamondPrice:
    shape: str
    low_carat: float
    high_carat: float
    color: str
    clarity: str
    price_per_carat: float


@dataclass(frozen=True)
class DiscountRate:
    min_carat: float
    max_carat: float
    discount_percent: float


@dataclass(frozen=True)
class ReferenceTables:
    """Read-only rows the calculator joins against. Prices are in USD."""

    setting_rates: tuple[SettingRate, ...] = ()
    gemstone_prices: tuple[GemstonePrice, ...] = ()
    diamond_prices: tuple[DiamondPrice, ...] = ()
    discount_rates: tuple[DiscountRate, ...] = ()


@dataclass(frozen=True)
class StoneLineInput:
    stone_type: str
    carat_size: float
    quantity: int
    category: StoneCategory = StoneCategory.COLORED
    shape: Optional[str] = None
    color: Optional[str] = None
    clarity: Optional[str] = None
    quality: Optional[str] = None
    discount_percent: Optional[float] = None


@dataclass(frozen=True)
class StoneLineResult:
    stone: StoneLineInput
    price_per_carat: float
    setting_cost: float
    total_stone_cost: float
    rapaport_price: Optional[float] = None
    discount_percent: Optional[float] = None

    @property
    def priced_from_grid(self) -> bool:
        return self.rapaport_price is not None


@dataclass(frozen=True)
class AnalysisInput:
    product_code: str
    total_grams: float
    gold_purity_factor: float
    fire_percent: float = 0.0
    labor_amount: float = 0.0
    labor_unit: LaborUnit = LaborUnit.CURRENCY
    polish_amount: float = 0.0
    certificate_amount: float = 0.0
    manufacturer_price: float = 0.0
    stones: tuple[StoneLineInput, ...] = ()
    gold_purity: str = "24"
    product_type: Optional[str] = None
    manufacturer_id: Optional[int] = None
    batch_id: Optional[int] = None
    input_currency: str = "USD"


@dataclass(frozen=True)
class CostBreakdown:
    raw_material_cost: float
    labor_cost: float
    total_setting_cost: float
    total_stone_cost: float
    total_cost: float
    profit_loss: float
    manufacturer_price_base: float
    polish_cost: float
    certificate_cost: float
    gold_price_used: float
    usd_rate_used: float
    base_currency: str
    stone_lines: list[StoneLineResult] = field(default_factory=list)
