from __future__ import annotations

from enum import Enum
from typing import Iterable

from .config import RunConfig
from .types import Lot, Timestamp


class LotState(str, Enum):
    ACQUIRED_TODAY = "acquired_today"
    SETTLED = "settled"


class SettlementRule:
    """Decides which lots may be sold on the current bar.

    A lot is ``acquired_today`` on the bar that bought it and ``settled``
    from the next bar on. Unsettled lots are sellable only for T+0 symbols.
    """

    def __init__(self, config: RunConfig) -> None:
        self._t0 = config.t0_symbols

    def is_t0(self, symbol: str) -> bool:
        return symbol in self._t0

    def lot_state(self, lot: Lot, timestamp: Timestamp) -> LotState:
        # Timestamps strictly increase, so any earlier bar means settled.
        if lot.acquired_at < timestamp:
            return LotState.SETTLED
        return LotState.ACQUIRED_TODAY

    def can_sell(self, lot: Lot, timestamp: Timestamp) -> bool:
        return self.is_t0(lot.symbol) or self.lot_state(lot, timestamp) is LotState.SETTLED

    def sellable_quantity(self, symbol: str, lots: Iterable[Lot], timestamp: Timestamp) -> int:
        if self.is_t0(symbol):
            return sum(lot.quantity for lot in lots)
        return sum(lot.quantity for lot in lots if self.can_sell(lot, timestamp))

    def unsettled_quantity(self, symbol: str, lots: Iterable[Lot], timestamp: Timestamp) -> int:
        if self.is_t0(symbol):
            return 0
        return sum(lot.quantity for lot in lots if not self.can_sell(lot, timestamp))
