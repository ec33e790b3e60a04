"""
Pricing for castle hire bookings.

Totals are base price per day, an optional overnight surcharge and ad hoc
extras. Every input is coerced defensively: a non-numeric or non-finite
value counts as zero, so a NaN can never reach a persisted price.
"""

import math
import logging
from dataclasses import dataclass, asdict
from datetime import date
from typing import Any, Dict, Optional, Union

from core.booking_config import BookingRules, get_business_config
from core.utils_datetime import MalformedInputError, inclusive_day_count


logger = logging.getLogger(__name__)


def _as_number(value: Any, default: float = 0.0) -> float:
    """Coerce to a finite float, or return the default."""
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return number


def calculate_price(
    castle_base_price: Any,
    number_of_days: Any = 1,
    overnight: bool = False,
    additional_costs: Any = 0,
    overnight_surcharge: Optional[float] = None,
) -> float:
    """
    Total price of a booking.

    Args:
        castle_base_price: Daily hire price of the castle
        number_of_days: Inclusive day count (anything below 1 counts as 1)
        overnight: Whether the overnight surcharge applies
        additional_costs: Ad hoc extras added on top
        overnight_surcharge: Surcharge amount (defaults to configuration)

    Returns:
        A finite total, never below zero
    """
    if overnight_surcharge is None:
        overnight_surcharge = get_business_config().booking_rules.overnight_surcharge

    base = _as_number(castle_base_price)
    days = max(1, int(_as_number(number_of_days, default=1)))
    surcharge = _as_number(overnight_surcharge) if overnight else 0.0
    extras = _as_number(additional_costs)

    total = base * days + surcharge + extras
    if not math.isfinite(total) or total < 0:
        logger.debug(f"Price inputs produced {total}; clamping to 0")
        return 0.0
    return round(total, 2)


def calculate_deposit(total_price: Any, deposit_fraction: Optional[float] = None) -> int:
    """Deposit in whole pounds: floor of the configured fraction of the total."""
    if deposit_fraction is None:
        deposit_fraction = get_business_config().booking_rules.deposit_fraction

    total = _as_number(total_price)
    if total <= 0:
        return 0
    # Rounded first so float noise such as 35.99999999 does not lose a pound
    return int(math.floor(round(total * _as_number(deposit_fraction), 6)))


@dataclass
class PriceQuote:
    """Breakdown of a booking price."""
    number_of_days: int
    base_price: float
    overnight_surcharge: float
    additional_costs: float
    total_price: float
    deposit: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def quote_booking(
    castle_base_price: Any,
    start_date: Union[str, date],
    end_date: Union[str, date, None] = None,
    overnight: bool = False,
    additional_costs: Any = 0,
    rules: Optional[BookingRules] = None,
) -> PriceQuote:
    """
    Price a booking from its dates.

    Unparseable dates count as a single day; the validator reports them
    separately.
    """
    rules = rules or get_business_config().booking_rules

    try:
        days = inclusive_day_count(start_date, end_date)
    except MalformedInputError:
        days = 1

    total = calculate_price(
        castle_base_price,
        days,
        overnight,
        additional_costs,
        overnight_surcharge=rules.overnight_surcharge,
    )

    return PriceQuote(
        number_of_days=days,
        base_price=_as_number(castle_base_price),
        overnight_surcharge=rules.overnight_surcharge if overnight else 0.0,
        additional_costs=_as_number(additional_costs),
        total_price=total,
        deposit=calculate_deposit(total, rules.deposit_fraction),
    )
