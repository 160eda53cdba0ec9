from decimal import Decimal, InvalidOperation
from typing import Union


def parse_amount(
    value: Union[str, int, float, Decimal], *, allow_negative: bool = False
) -> int:
    """Turn a user-entered amount ("12,50", "1 200.00 $", 7) into cents."""
    if isinstance(value, Decimal):
        amount = value
    else:
        clean = str(value).strip().replace("€", "").replace("$", "").replace(" ", "")
        clean = clean.replace(",", ".")
        if clean.count(".") > 1:
            parts = clean.split(".")
            clean = "".join(parts[:-1]) + "." + parts[-1]
        try:
            amount = Decimal(clean)
        except InvalidOperation as exc:
            raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    scaled = amount * 100
    if scaled != scaled.to_integral_value():
        raise ValueError("Amount cannot have more than two decimal places")
    cents = int(scaled)
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


def format_amount(cents: int) -> str:
    return f"{cents_to_decimal(cents):.2f}"
