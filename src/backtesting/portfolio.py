from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from .errors import LedgerError
from .settlement import SettlementRule
from .types import Fill, Lot, PortfolioSnapshot, Position, PositionState, Side, Timestamp

logger = logging.getLogger(__name__)

# Absorbs float residue when a fill spends the last of the cash.
_CASH_EPSILON = 1e-6


class Portfolio:
    """Portfolio state management for backtesting operations.

    Single source of truth for cash and positions. Positions are tracked as
    lots so that settlement eligibility can be evaluated per acquisition bar.
    Only ``apply`` changes cash or quantities; ``update_prices`` only moves
    the marks used for valuation.
    """

    def __init__(self, *, initial_cash: float) -> None:
        if initial_cash <= 0:
            raise LedgerError(f"initial cash must be positive, got {initial_cash}")
        self._cash: float = float(initial_cash)
        self._positions: Dict[str, Position] = {}
        self._last_prices: Dict[str, float] = {}
        self._total_fees: float = 0.0

    def get_snapshot(self) -> PortfolioSnapshot:
        positions_copy: Dict[str, PositionState] = {
            s: {
                "quantity": p.quantity,
                "avg_cost": p.avg_cost if p.quantity > 0 else None,
                "realized_pnl": p.realized_pnl,
                "lots": list(p.lots),
            }
            for s, p in self._positions.items()
        }
        return {
            "cash": self._cash,
            "equity": self.get_equity(),
            "total_fees": self._total_fees,
            "positions": positions_copy,
            "last_prices": dict(self._last_prices),
        }

    def get_cash(self) -> float:
        return self._cash

    def get_total_fees(self) -> float:
        return self._total_fees

    def get_positions(self) -> Mapping[str, Position]:
        return MappingProxyType(self._positions)

    def get_quantity(self, symbol: str) -> int:
        position = self._positions.get(symbol)
        return position.quantity if position is not None else 0

    def get_avg_cost(self, symbol: str) -> Optional[float]:
        """Average cost of the open position; None when flat."""
        position = self._positions.get(symbol)
        if position is None or position.quantity == 0:
            return None
        return position.avg_cost

    def get_lots(self, symbol: str) -> List[Lot]:
        position = self._positions.get(symbol)
        return list(position.lots) if position is not None else []

    def get_realized_pnl(self, symbol: Optional[str] = None) -> float:
        if symbol is not None:
            position = self._positions.get(symbol)
            return position.realized_pnl if position is not None else 0.0
        return sum(p.realized_pnl for p in self._positions.values())

    def get_last_price(self, symbol: str) -> Optional[float]:
        return self._last_prices.get(symbol)

    def get_last_prices(self) -> Mapping[str, float]:
        return MappingProxyType(self._last_prices)

    def update_prices(self, prices: Mapping[str, float]) -> None:
        """Mark positions to the given prices. Symbols left out keep their last mark."""
        for symbol, price in prices.items():
            self._last_prices[symbol] = float(price)

    def get_market_value(self, symbol: str) -> float:
        quantity = self.get_quantity(symbol)
        if quantity == 0:
            return 0.0
        price = self._last_prices.get(symbol)
        if price is None:
            raise LedgerError(f"no price mark for held symbol {symbol}")
        return quantity * price

    def get_positions_value(self) -> float:
        return sum(self.get_market_value(s) for s, p in self._positions.items() if p.quantity > 0)

    def get_equity(self) -> float:
        return self._cash + self.get_positions_value()

    def get_weight(self, symbol: str) -> float:
        equity = self.get_equity()
        if equity <= 0:
            return 0.0
        return self.get_market_value(symbol) / equity

    def get_unrealized_pnl(self, symbol: str) -> float:
        position = self._positions.get(symbol)
        if position is None or position.quantity == 0:
            return 0.0
        return self.get_market_value(symbol) - position.quantity * position.avg_cost

    def get_sellable_quantity(self, symbol: str, timestamp: Timestamp, settlement: SettlementRule) -> int:
        position = self._positions.get(symbol)
        if position is None:
            return 0
        return settlement.sellable_quantity(symbol, position.lots, timestamp)

    def apply(self, fill: Fill) -> None:
        """Apply an executed fill to cash and positions. Rejections are ignored."""
        if fill.is_rejected or fill.quantity == 0:
            return
        if fill.quantity < 0:
            raise LedgerError(f"fill quantity must be positive: {fill}")
        if fill.side == Side.BUY:
            self._apply_buy(fill)
        else:
            self._apply_sell(fill)
        self._total_fees += fill.fee
        self._last_prices.setdefault(fill.symbol, fill.price)
        logger.debug(
            "applied %s %s x%d @ %.4f fee=%.4f cash=%.2f",
            fill.side.value, fill.symbol, fill.quantity, fill.price, fill.fee, self._cash,
        )

    def _settle_cash(self, delta: float, fill: Fill) -> None:
        cash = self._cash + delta
        if cash < 0:
            if cash < -_CASH_EPSILON:
                raise LedgerError(f"fill would overdraw cash by {-cash:.6f}: {fill}")
            cash = 0.0
        self._cash = cash

    def _apply_buy(self, fill: Fill) -> None:
        self._settle_cash(fill.cash_delta, fill)
        position = self._positions.setdefault(fill.symbol, Position(symbol=fill.symbol))
        old_quantity = position.quantity
        total = old_quantity + fill.quantity
        position.avg_cost = (old_quantity * position.avg_cost + fill.quantity * fill.price) / total
        position.quantity = total
        position.lots.append(
            Lot(symbol=fill.symbol, quantity=fill.quantity, acquired_at=fill.timestamp, cost=fill.price)
        )

    def _apply_sell(self, fill: Fill) -> None:
        position = self._positions.get(fill.symbol)
        held = position.quantity if position is not None else 0
        if fill.quantity > held:
            raise LedgerError(f"sell of {fill.quantity} exceeds held {held} for {fill.symbol}")
        self._settle_cash(fill.cash_delta, fill)
        position.realized_pnl += (fill.price - position.avg_cost) * fill.quantity
        position.quantity -= fill.quantity

        # Oldest lots go first, so settled lots are consumed before today's.
        remaining = fill.quantity
        lots: List[Lot] = []
        for lot in position.lots:
            if remaining >= lot.quantity:
                remaining -= lot.quantity
                continue
            if remaining > 0:
                lot = Lot(
                    symbol=lot.symbol,
                    quantity=lot.quantity - remaining,
                    acquired_at=lot.acquired_at,
                    cost=lot.cost,
                )
                remaining = 0
            lots.append(lot)
        position.lots = lots

        if position.quantity == 0:
            position.avg_cost = 0.0
            position.lots = []
