from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from flask import current_app

from referral.errors import ValidationError


def minor_unit_quantum(minor_unit: int = None) -> Decimal:
    if minor_unit is None:
        minor_unit = current_app.config.get("CURRENCY_MINOR_UNIT", 2)
    return Decimal(1).scaleb(-minor_unit)


def round_half_up(value, minor_unit: int = None) -> Decimal:
    """Round to the currency minor unit, halves away from zero (0.005 -> 0.01)."""
    return Decimal(value).quantize(minor_unit_quantum(minor_unit), rounding=ROUND_HALF_UP)


def to_decimal(value, field: str = "amount") -> Decimal:
    """Parse user/API input into a Decimal. Floats go through str() first."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValidationError(f"Invalid {field}")
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Invalid {field}: {value!r}")
    if not result.is_finite():
        raise ValidationError(f"Invalid {field}: {value!r}")
    return result


def positive_amount(value, field: str = "amount") -> Decimal:
    raw = to_decimal(value, field)
    amount = round_half_up(raw)
    if amount != raw:
        raise ValidationError(f"{field} is finer than the currency minor unit", **{field: str(raw)})
    if amount <= 0:
        raise ValidationError(f"{field} must be greater than zero", **{field: str(amount)})
    return amount


def commission_amount(payment_amount, percentage) -> Decimal:
    """payment_amount * percentage / 100, rounded half-up to the minor unit."""
    raw = Decimal(payment_amount) * Decimal(percentage) / Decimal("100")
    return round_half_up(raw)
