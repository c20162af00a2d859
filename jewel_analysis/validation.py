"""
Boundary validation for analysis submissions.

Raw form or JSON payloads are checked here and turned into an
`AnalysisInput`. Problems are collected per field rather than stopping at the
first one, so the caller can show every message at once.
"""

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from jewel_analysis.models import AnalysisInput, LaborUnit, StoneCategory, StoneLineInput
from jewel_analysis.pricing import looks_like_diamond, normalize_purity_label, purity_factor

SUPPORTED_INPUT_CURRENCIES = ("USD",)

LABOR_UNIT_ALIASES = {
    "dollar": LaborUnit.CURRENCY,
    "gold": LaborUnit.GOLD_GRAMS,
}

FALSE_WORDS = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


class ValidationError(ValueError):
    def __init__(self, errors: list[FieldError]):
        self.errors = errors
        super().__init__("; ".join(f"{error.field}: {error.message}" for error in errors))

    def to_dict(self) -> dict[str, list[dict[str, str]]]:
        return {"errors": [{"field": error.field, "message": error.message} for error in self.errors]}


class _Collector:
    def __init__(self) -> None:
        self.errors: list[FieldError] = []

    def add(self, field: str, message: str) -> None:
        self.errors.append(FieldError(field, message))

    def number(
        self,
        payload: Mapping[str, Any],
        key: str,
        field: str,
        *,
        required: bool = False,
        positive: bool = False,
        maximum: Optional[float] = None,
        default: Optional[float] = 0.0,
    ) -> Optional[float]:
        raw = payload.get(key)
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            if required:
                self.add(field, "This field is required.")
            return default

        try:
            text = raw.strip().replace(",", ".") if isinstance(raw, str) else raw
            value = float(text)
        except (TypeError, ValueError):
            self.add(field, f"'{raw}' is not a valid number.")
            return default

        if not math.isfinite(value):
            self.add(field, "Must be a finite number.")
            return default
        if positive and value <= 0:
            self.add(field, "Must be greater than zero.")
        elif value < 0:
            self.add(field, "Must not be negative.")
        elif maximum is not None and value > maximum:
            self.add(field, f"Must not exceed {maximum:g}.")
        return value

    def text(self, payload: Mapping[str, Any], key: str) -> Optional[str]:
        raw = payload.get(key)
        if raw is None:
            return None
        cleaned = str(raw).strip()
        return cleaned or None


def _optional_id(collector: _Collector, payload: Mapping[str, Any], key: str) -> Optional[int]:
    raw = payload.get(key)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        collector.add(key, f"'{raw}' is not a valid id.")
        return None


def _flag(raw: Any, default: bool = True) -> bool:
    if raw is None or raw == "":
        return default
    if isinstance(raw, str):
        return raw.strip().lower() not in FALSE_WORDS
    return bool(raw)


def _parse_category(collector: _Collector, raw: Any, stone_type: str, field: str) -> StoneCategory:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return StoneCategory.DIAMOND if looks_like_diamond(stone_type) else StoneCategory.COLORED
    if isinstance(raw, StoneCategory):
        return raw
    try:
        return StoneCategory(str(raw).strip().lower())
    except ValueError:
        collector.add(field, f"Unknown stone category '{raw}'.")
        return StoneCategory.COLORED


def _parse_stone(collector: _Collector, index: int, payload: Mapping[str, Any]) -> Optional[StoneLineInput]:
    prefix = f"stones[{index}]"
    stone_type = collector.text(payload, "stone_type")
    if stone_type is None:
        collector.add(f"{prefix}.stone_type", "This field is required.")

    carat = collector.number(payload, "carat_size", f"{prefix}.carat_size", required=True, positive=True)

    quantity_raw = payload.get("quantity", 1)
    quantity = 1
    try:
        quantity_value = float(quantity_raw)
        if not quantity_value.is_integer():
            raise ValueError
        quantity = int(quantity_value)
        if quantity < 1:
            collector.add(f"{prefix}.quantity", "Must be at least 1.")
    except (TypeError, ValueError, OverflowError):
        collector.add(f"{prefix}.quantity", f"'{quantity_raw}' is not a whole number.")

    discount = collector.number(
        payload,
        "discount_percent",
        f"{prefix}.discount_percent",
        maximum=100.0,
        default=None,
    )
    category = _parse_category(collector, payload.get("category"), stone_type or "", f"{prefix}.category")

    if stone_type is None or carat is None:
        return None
    return StoneLineInput(
        stone_type=stone_type,
        carat_size=carat,
        quantity=quantity,
        category=category,
        shape=collector.text(payload, "shape"),
        color=collector.text(payload, "color"),
        clarity=collector.text(payload, "clarity"),
        quality=collector.text(payload, "quality"),
        discount_percent=discount,
    )


def validate_analysis_payload(payload: Mapping[str, Any], base_currency: str = "TRY") -> AnalysisInput:
    collector = _Collector()

    product_code = collector.text(payload, "product_code")
    if product_code is None:
        collector.add("product_code", "This field is required.")

    total_grams = collector.number(payload, "total_grams", "total_grams", required=True, positive=True)

    purity_label = normalize_purity_label(payload.get("gold_purity") or "24")
    factor = purity_factor(purity_label)
    if factor is None:
        collector.add("gold_purity", f"Unknown gold purity '{payload.get('gold_purity')}'.")

    labor_unit_raw = payload.get("labor_unit") or LaborUnit.CURRENCY.value
    try:
        labor_unit = LABOR_UNIT_ALIASES.get(labor_unit_raw) or LaborUnit(labor_unit_raw)
    except ValueError:
        collector.add("labor_unit", f"Unknown labour unit '{labor_unit_raw}'.")
        labor_unit = LaborUnit.CURRENCY

    fire_percent = collector.number(payload, "fire_percent", "fire_percent")
    labor_amount = collector.number(payload, "labor_amount", "labor_amount")
    polish_amount = collector.number(payload, "polish_amount", "polish_amount")
    if not _flag(payload.get("polish_enabled")):
        polish_amount = 0.0
    certificate_amount = collector.number(payload, "certificate_amount", "certificate_amount")
    manufacturer_price = collector.number(payload, "manufacturer_price", "manufacturer_price")

    input_currency = str(payload.get("input_currency") or "USD").strip().upper()
    if input_currency not in SUPPORTED_INPUT_CURRENCIES + (base_currency.upper(),):
        collector.add("input_currency", f"Unsupported currency '{input_currency}'.")

    stones_raw = payload.get("stones") or []
    stones = []
    for index, stone_payload in enumerate(stones_raw):
        stone = _parse_stone(collector, index, stone_payload)
        if stone is not None:
            stones.append(stone)

    manufacturer_id = _optional_id(collector, payload, "manufacturer_id")
    batch_id = _optional_id(collector, payload, "batch_id")

    if collector.errors:
        raise ValidationError(collector.errors)

    return AnalysisInput(
        product_code=product_code,
        total_grams=total_grams,
        gold_purity_factor=factor,
        gold_purity=purity_label,
        fire_percent=fire_percent or 0.0,
        labor_amount=labor_amount or 0.0,
        labor_unit=labor_unit,
        polish_amount=polish_amount or 0.0,
        certificate_amount=certificate_amount or 0.0,
        manufacturer_price=manufacturer_price or 0.0,
        stones=tuple(stones),
        product_type=collector.text(payload, "product_type"),
        manufacturer_id=manufacturer_id,
        batch_id=batch_id,
        input_currency=input_currency,
    )
