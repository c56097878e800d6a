# shop/utils/decimal_utils.py
from decimal import Decimal, ROUND_HALF_UP

TWO_PLACES = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """Coerce ints, floats, strings and Decimals to a 2-place money Decimal."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_minor_units(value) -> int:
    # gateways expect whole VND
    return int(to_decimal(value).to_integral_value(rounding=ROUND_HALF_UP))
