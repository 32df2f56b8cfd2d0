"""Tax calculation for checkout amounts."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Mapping, Optional

CENT = Decimal("0.01")


def calculate_tax(
    price: Decimal,
    customer_data: Optional[Mapping[str, Any]] = None,
    rates: Optional[Dict[str, Decimal]] = None,
) -> Decimal:
    """
    Tax owed on ``price`` for the customer's country.

    Args:
        price: Plan price
        customer_data: Billing identity; ``country`` is an ISO country code
        rates: Country code -> percentage (e.g. {"DE": Decimal("19")})

    Returns:
        Tax amount rounded to cents; 0 when the country has no configured rate
    """
    country = str((customer_data or {}).get("country") or "").upper()
    rate = (rates or {}).get(country)
    if not rate:
        return Decimal("0.00")
    return (Decimal(price) * Decimal(rate) / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)
