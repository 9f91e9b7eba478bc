"""Closing price reconciliation between manual override and suggested price."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from studio_quotes.exceptions import InvalidInputError
from studio_quotes.engine.types import ZERO, d

DEFAULT_SIGNAL_SECONDS = 3


@dataclass(frozen=True)
class ResyncSignal:
    """Transient "price resynced" notice; the caller clears it once expired."""
    active: bool = False
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.active and self.expires_at is not None and now >= self.expires_at


INACTIVE_SIGNAL = ResyncSignal()


def resolve_closing_price(override, suggested_price) -> Decimal:
    override = d(override) if override is not None else None
    if override is not None and override > 0:
        return override
    return max(ZERO, d(suggested_price))


class ClosingPriceResolver:
    """
    Owns ``closing_price_override`` and the resync signal.

    Upstream recomputes overwrite the override with the new suggested price
    when the negotiation is dirty. A manual edit suppresses that until the
    suggested price actually changes.
    """

    def __init__(self, override=None, signal_seconds: int = DEFAULT_SIGNAL_SECONDS):
        self.override: Optional[Decimal] = d(override) if override is not None else None
        self.signal = INACTIVE_SIGNAL
        self.signal_seconds = signal_seconds
        self._last_suggested: Optional[Decimal] = None
        self._suppressed = False

    def closing_price(self, suggested_price) -> Decimal:
        return resolve_closing_price(self.override, suggested_price)

    def edit(self, value) -> None:
        """Direct edit of the closing-price field by the operator."""
        if value is not None:
            value = d(value, 'closing_price')
            if value < 0:
                raise InvalidInputError('El precio de cierre no puede ser negativo.')
        self.override = value
        self._suppressed = True

    def on_upstream_recompute(self, suggested_price, dirty: bool, now: datetime) -> bool:
        """
        React to a recompute of the suggested price caused upstream.

        Returns True when the override was resynced.
        """
        suggested = d(suggested_price)
        changed = self._last_suggested is None or suggested != self._last_suggested
        self._last_suggested = suggested
        if self._suppressed:
            if not changed:
                return False
            self._suppressed = False
        if not dirty:
            return False
        self.override = suggested
        self.signal = ResyncSignal(active=True, expires_at=now + timedelta(seconds=self.signal_seconds))
        return True

    def seed(self, suggested_price) -> None:
        """Record the suggested price seen at load time without resyncing."""
        self._last_suggested = d(suggested_price)

    def clear_signal(self, now: datetime) -> bool:
        if self.signal.is_expired(now):
            self.signal = INACTIVE_SIGNAL
            return True
        return False
