"""Amount handling for PxPay AmountInput (always two fraction digits)."""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

TWO_PLACES = Decimal("0.01")

# Largest value a Numeric(10, 2) cost column holds
MAX_AMOUNT = Decimal("99999999.99")


def quantize_amount(amount: Union[Decimal, float, int, str]) -> Decimal:
    """
    Round an amount to two fraction digits, half up.

    Floats are converted through ``str`` so that ``49.999`` rounds to
    ``50.00`` rather than carrying binary noise.

    Raises:
        ValueError: If the amount is not a finite number or exceeds ``MAX_AMOUNT``
    """
    try:
        value = Decimal(str(amount)) if isinstance(amount, float) else Decimal(amount)
        if not value.is_finite():
            raise ValueError(f"Invalid amount: {amount!r}")
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e
    # Checked before quantize, which fails past the context precision
    if abs(value) > MAX_AMOUNT:
        raise ValueError(f"Amount {amount!r} exceeds the maximum of {MAX_AMOUNT}")
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_amount(amount: Union[Decimal, float, int, str]) -> str:
    """Format an amount as PxPay expects it, e.g. ``"50.00"``."""
    return f"{quantize_amount(amount):.2f}"
