"""Billing type + event duration -> effective quantity."""
from decimal import Decimal

from studio_quotes.engine.types import ONE, BillingType, d


def resolve_effective_quantity(billing_type, base_quantity, event_duration_hours) -> Decimal:
    """
    Effective quantity of a line.

    HOUR lines are included for the whole event: the quantity is the event
    duration when it is positive, otherwise 1, and the stored quantity is
    ignored. SERVICE and UNIT lines keep their base quantity.
    """
    if billing_type is not None and str(getattr(billing_type, 'value', billing_type)).upper() == BillingType.HOUR.value:
        duration = d(event_duration_hours)
        return duration if duration > 0 else ONE
    return d(base_quantity)
