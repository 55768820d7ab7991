"""
Currency arithmetic in integer cents.

Rates are fractions (0.15 = 15%) and are applied with Decimal so that
floor/ceil never see binary float artefacts (1000 × 0.2 is exactly 200).
"""
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR
from typing import Union

Number = Union[int, float, Decimal, str]

ROUNDING_UNIT_CENTS = 10


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps 0.045 as 0.045 instead of its binary expansion
    return Decimal(str(value))


def round_up_cents(value: Number) -> int:
    """Smallest multiple of 10 cents that is >= value"""
    amount = to_decimal(value)
    units = (amount / ROUNDING_UNIT_CENTS).to_integral_value(rounding=ROUND_CEILING)
    return int(units) * ROUNDING_UNIT_CENTS


def floor_share(amount_cents: int, rate: Number) -> int:
    """floor(amount × rate)"""
    return int((Decimal(amount_cents) * to_decimal(rate)).to_integral_value(rounding=ROUND_FLOOR))


def ceil_share(amount_cents: int, rate: Number) -> int:
    """ceil(amount × rate)"""
    return int((Decimal(amount_cents) * to_decimal(rate)).to_integral_value(rounding=ROUND_CEILING))


def order_total(
    subtotal_cents: int,
    delivery_fee_cents: int,
    service_fee_cents: int = 0,
    discount_cents: int = 0,
) -> tuple[int, int]:
    """Return (total, rounding_surplus); total is rounded up to 10 cents and never negative"""
    raw = max(0, subtotal_cents + delivery_fee_cents + service_fee_cents - discount_cents)
    total = round_up_cents(raw)
    return total, total - raw


def pos_surcharge(
    subtotal_cents: int,
    delivery_fee_cents: int,
    commission_rate: Number,
    igv_rate: Number,
) -> int:
    """Card-terminal surcharge: round_up(round_up(subtotal + delivery) × rate × (1 + igv))"""
    base_total = round_up_cents(subtotal_cents + delivery_fee_cents)
    raw = Decimal(base_total) * to_decimal(commission_rate) * (1 + to_decimal(igv_rate))
    if raw <= 0:
        return 0
    return round_up_cents(raw)


def split_delivery_fee(delivery_fee_cents: int, rider_rate: Number) -> tuple[int, int]:
    """Return (rider_share, platform_share); the flooring residue stays with the platform"""
    rider_share = floor_share(delivery_fee_cents, rider_rate)
    return rider_share, delivery_fee_cents - rider_share


def format_cents(cents: int, currency: str = "S/") -> str:
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{currency} {whole:,}.{frac:02d}"
