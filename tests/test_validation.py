import pytest

from jewel_analysis.models import LaborUnit, StoneCategory
from jewel_analysis.validation import ValidationError, validate_analysis_payload


def _fields(exc_info):
    return {error.field for error in exc_info.value.errors}


def test_valid_payload_becomes_analysis_input(ruby_ring_payload):
    analysis = validate_analysis_payload(ruby_ring_payload)

    assert analysis.product_code == "R-1"
    assert analysis.total_grams == 5.0
    assert analysis.gold_purity == "18"
    assert analysis.gold_purity_factor == 0.75
    assert analysis.labor_unit == LaborUnit.CURRENCY
    assert analysis.fire_percent == 0.0
    assert analysis.input_currency == "USD"
    assert analysis.stones[0].quantity == 2
    assert analysis.stones[0].category == StoneCategory.COLORED
    assert analysis.stones[0].discount_percent is None


def test_missing_required_fields_are_all_reported():
    with pytest.raises(ValidationError) as exc_info:
        validate_analysis_payload({"stones": [{"stone_type": "", "carat_size": "0"}]})

    assert _fields(exc_info) == {
        "product_code",
        "total_grams",
        "stones[0].stone_type",
        "stones[0].carat_size",
    }


def test_malformed_and_negative_numbers_are_rejected(ruby_ring_payload):
    payload = dict(ruby_ring_payload, fire_percent="five", labor_amount="-3", certificate_amount="nan")

    with pytest.raises(ValidationError) as exc_info:
        validate_analysis_payload(payload)

    assert _fields(exc_info) == {"fire_percent", "labor_amount", "certificate_amount"}


def test_comma_decimal_separator_is_accepted(ruby_ring_payload):
    analysis = validate_analysis_payload(dict(ruby_ring_payload, total_grams="4,25"))

    assert analysis.total_grams == 4.25


def test_blank_optional_amounts_default_to_zero(ruby_ring_payload):
    analysis = validate_analysis_payload(dict(ruby_ring_payload, polish_amount="", certificate_amount=None))

    assert analysis.polish_amount == 0.0
    assert analysis.certificate_amount == 0.0


def test_unknown_purity_and_labor_unit(ruby_ring_payload):
    with pytest.raises(ValidationError) as exc_info:
        validate_analysis_payload(dict(ruby_ring_payload, gold_purity="19k", labor_unit="hours"))

    assert _fields(exc_info) == {"gold_purity", "labor_unit"}


def test_karat_suffix_and_labor_alias(ruby_ring_payload):
    analysis = validate_analysis_payload(dict(ruby_ring_payload, gold_purity="14K", labor_unit="gold"))

    assert analysis.gold_purity == "14"
    assert analysis.labor_unit == LaborUnit.GOLD_GRAMS


@pytest.mark.parametrize("quantity", ["1.5", "0", "two"])
def test_quantity_must_be_positive_whole_number(ruby_ring_payload, quantity):
    payload = dict(ruby_ring_payload, stones=[{"stone_type": "Ruby", "carat_size": "0.5", "quantity": quantity}])

    with pytest.raises(ValidationError) as exc_info:
        validate_analysis_payload(payload)

    assert _fields(exc_info) == {"stones[0].quantity"}


def test_discount_must_be_a_percentage(ruby_ring_payload):
    payload = dict(
        ruby_ring_payload,
        stones=[{"stone_type": "Diamond", "carat_size": "0.5", "discount_percent": "150"}],
    )

    with pytest.raises(ValidationError) as exc_info:
        validate_analysis_payload(payload)

    assert _fields(exc_info) == {"stones[0].discount_percent"}


@pytest.mark.parametrize("stone_type", ["Elmas", "pırlanta", "Round DIAMOND"])
def test_blank_category_is_detected_from_stone_type(ruby_ring_payload, stone_type):
    payload = dict(ruby_ring_payload, stones=[{"stone_type": stone_type, "carat_size": "0.1"}])

    analysis = validate_analysis_payload(payload)

    assert analysis.stones[0].category == StoneCategory.DIAMOND


def test_explicit_category_wins_over_stone_type(ruby_ring_payload):
    payload = dict(ruby_ring_payload, stones=[{"stone_type": "Diamond", "carat_size": "0.1", "category": "colored"}])

    analysis = validate_analysis_payload(payload)

    assert analysis.stones[0].category == StoneCategory.COLORED


def test_unknown_category_is_rejected(ruby_ring_payload):
    payload = dict(ruby_ring_payload, stones=[{"stone_type": "Ruby", "carat_size": "0.1", "category": "pearl"}])

    with pytest.raises(ValidationError) as exc_info:
        validate_analysis_payload(payload)

    assert _fields(exc_info) == {"stones[0].category"}


def test_disabled_polish_is_zeroed(ruby_ring_payload):
    analysis = validate_analysis_payload(dict(ruby_ring_payload, polish_amount="12", polish_enabled=False))

    assert analysis.polish_amount == 0.0


@pytest.mark.parametrize(
    "flag,expected",
    [("false", 0.0), (" No ", 0.0), ("0", 0.0), ("off", 0.0), ("true", 12.0), ("", 12.0), (None, 12.0), (1, 12.0)],
)
def test_polish_flag_strings(ruby_ring_payload, flag, expected):
    analysis = validate_analysis_payload(dict(ruby_ring_payload, polish_amount="12", polish_enabled=flag))

    assert analysis.polish_amount == expected


def test_input_currency_must_be_usd_or_base(ruby_ring_payload):
    assert validate_analysis_payload(dict(ruby_ring_payload, input_currency="try")).input_currency == "TRY"

    with pytest.raises(ValidationError) as exc_info:
        validate_analysis_payload(dict(ruby_ring_payload, input_currency="EUR"))

    assert _fields(exc_info) == {"input_currency"}


def test_bad_ids_are_reported(ruby_ring_payload):
    with pytest.raises(ValidationError) as exc_info:
        validate_analysis_payload(dict(ruby_ring_payload, manufacturer_id="abc"))

    assert exc_info.value.to_dict()["errors"] == [
        {"field": "manufacturer_id", "message": "'abc' is not a valid id."}
    ]
