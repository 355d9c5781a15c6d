"""Money helpers: two-decimal rounding, clamping and gateway unit conversion."""
from decimal import ROUND_HALF_UP, Decimal

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")

# Currencies whose smallest unit is the whole currency
zero_decimal_currencies = [
    "JPY",  # Japanese Yen
    "KRW",  # South Korean Won
    "VND",  # Vietnamese Dong
    "CLP",  # Chilean Peso
    "ISK",  # Icelandic Krona
]


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    """
    Coerce a numeric value to Decimal without float artefacts.

    Floats go through ``str`` so 0.1 becomes Decimal("0.1") rather than its
    binary expansion.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round2(value: Decimal | int | float | str) -> Decimal:
    """
    Round to two decimal places, half away from zero.

    Examples:
        >>> round2(Decimal("51.6129"))
        Decimal('51.61')
        >>> round2(Decimal("0.125"))
        Decimal('0.13')
    """
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def clamp(value: Decimal, lower: Decimal, upper: Decimal) -> Decimal:
    """Clamp value into [lower, upper]."""
    return max(lower, min(value, upper))


def get_currency_decimal_places(currency: str) -> int:
    """
    Get the number of decimal places for a currency.

    Example:
        >>> get_currency_decimal_places("TRY")
        2
        >>> get_currency_decimal_places("JPY")
        0
    """
    if currency.upper() in zero_decimal_currencies:
        return 0
    return 2


def to_minor_units(amount: Decimal, currency: str) -> int:
    """
    Convert a major-unit amount to the gateway's smallest unit.

    Examples:
        >>> to_minor_units(Decimal("103.23"), "TRY")
        10323
        >>> to_minor_units(Decimal("1000"), "JPY")
        1000
    """
    places = get_currency_decimal_places(currency)
    scaled = to_decimal(amount) * (10 ** places)
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
