from __future__ import annotations

import itertools
import logging
import math
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import RunConfig
from .errors import OrderRejected
from .portfolio import Portfolio
from .settlement import SettlementRule
from .types import BarSnapshot, ExecutionMode, Fill, RejectReason, ResolvedOrder, Side, Timestamp

logger = logging.getLogger(__name__)


def _valid_price(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value) and value > 0


def _vwap(bar: BarSnapshot) -> Optional[float]:
    if _valid_price(bar.vwap):
        return bar.vwap
    if _valid_price(bar.amount) and _valid_price(bar.volume):
        return bar.amount / bar.volume
    if _valid_price(bar.high) and _valid_price(bar.low) and _valid_price(bar.close):
        return (bar.high + bar.low + bar.close) / 3.0
    return bar.close


def fill_reference_price(bar: Optional[BarSnapshot], mode: ExecutionMode) -> Optional[float]:
    """Price an order on this bar would execute against before slippage.

    Returns None when the bar is missing or carries no usable price, which
    makes the symbol untradable for the bar.
    """
    if bar is None:
        return None
    if mode == ExecutionMode.OPEN:
        price = bar.open
    elif mode == ExecutionMode.VWAP:
        price = _vwap(bar)
    else:
        price = bar.close
    return float(price) if _valid_price(price) else None


def slipped_price(price: float, side: Side, slippage: float) -> float:
    """Apply slippage against the trader: higher for buys, lower for sells."""
    if side == Side.BUY:
        return price * (1.0 + slippage)
    return price * (1.0 - slippage)


def commission_for(notional: float, config: RunConfig) -> float:
    if notional <= 0:
        return 0.0
    return max(notional * config.commission, config.min_commission)


class ExecutionEngine:
    """Executes one bar's resolved orders against the portfolio.

    Sells run before buys so that freed cash funds same-bar buys; each side
    is processed in symbol order, keeping submission order for ties. Every
    fill is applied to the portfolio at once, so later orders in the bar see
    the updated cash and positions.
    """

    def __init__(self, *, config: RunConfig, portfolio: Portfolio, settlement: SettlementRule) -> None:
        self._config = config
        self._portfolio = portfolio
        self._settlement = settlement
        self._order_ids = itertools.count(1)
        self._trade_log: List[Fill] = []

    def get_trade_log(self) -> Tuple[Fill, ...]:
        return tuple(self._trade_log)

    def sequence(self, orders: Iterable[ResolvedOrder]) -> List[ResolvedOrder]:
        ordered = sorted(orders, key=lambda o: o.sequence)
        sells = sorted((o for o in ordered if o.side == Side.SELL), key=lambda o: o.symbol)
        buys = sorted((o for o in ordered if o.side == Side.BUY), key=lambda o: o.symbol)
        return sells + buys

    def execute(
        self,
        orders: Sequence[ResolvedOrder],
        prices: Mapping[str, float],
        timestamp: Timestamp,
    ) -> List[Fill]:
        fills: List[Fill] = []
        for order in self.sequence(orders):
            try:
                fill = self._build_fill(order, prices, timestamp)
            except OrderRejected as e:
                fill = self.reject(
                    symbol=order.symbol,
                    side=order.side,
                    requested=order.quantity,
                    error=e,
                    timestamp=timestamp,
                    tag=order.tag,
                )
            else:
                self._portfolio.apply(fill)
                self._trade_log.append(fill)
                logger.debug(
                    "filled #%d %s %s x%d @ %.4f fee=%.4f",
                    fill.order_id, fill.side.value, fill.symbol, fill.quantity, fill.price, fill.fee,
                )
            fills.append(fill)
        return fills

    def reject(
        self,
        *,
        symbol: str,
        side: Optional[Side],
        requested: float,
        error: OrderRejected,
        timestamp: Timestamp,
        tag: str = "",
    ) -> Fill:
        """Record a rejection in the trade log and return it as a zero-quantity fill."""
        fill = Fill(
            order_id=next(self._order_ids),
            timestamp=timestamp,
            symbol=symbol,
            side=side,
            quantity=0,
            price=0.0,
            fee=0.0,
            requested_quantity=float(requested),
            reason=error.reason,
            message=error.message,
            tag=tag,
        )
        self._trade_log.append(fill)
        logger.warning("rejected #%d %s %s: %s", fill.order_id, side.value if side else "-", symbol, error)
        return fill

    def _build_fill(self, order: ResolvedOrder, prices: Mapping[str, float], timestamp: Timestamp) -> Fill:
        if order.quantity <= 0:
            raise OrderRejected(RejectReason.INVALID_INTENT, f"non-positive quantity {order.quantity}")
        reference = prices.get(order.symbol)
        if reference is None:
            raise OrderRejected(RejectReason.DATA_GAP, f"no tradable price for {order.symbol}")

        price = slipped_price(reference, order.side, self._config.slippage)
        notional = order.quantity * price
        fee = commission_for(notional, self._config)
        cash = self._portfolio.get_cash()
        realized = 0.0

        if order.side == Side.SELL:
            held = self._portfolio.get_quantity(order.symbol)
            if held == 0:
                raise OrderRejected(RejectReason.SHORT_NOT_ALLOWED, f"no position in {order.symbol}")
            sellable = self._portfolio.get_sellable_quantity(order.symbol, timestamp, self._settlement)
            if order.quantity > sellable:
                if order.quantity <= held:
                    raise OrderRejected(
                        RejectReason.SETTLEMENT_VIOLATION,
                        f"{order.quantity} requested, {sellable} settled of {held} held",
                    )
                raise OrderRejected(
                    RejectReason.INSUFFICIENT_POSITION,
                    f"{order.quantity} requested, {held} held",
                )
            if fee > cash + notional:
                raise OrderRejected(RejectReason.INSUFFICIENT_CASH, "fee exceeds cash plus proceeds")
            realized = (price - self._portfolio.get_avg_cost(order.symbol)) * order.quantity
        else:
            required = notional + fee
            if required > cash:
                raise OrderRejected(
                    RejectReason.INSUFFICIENT_CASH,
                    f"requires {required:.2f}, available {cash:.2f}",
                )

        return Fill(
            order_id=next(self._order_ids),
            timestamp=timestamp,
            symbol=order.symbol,
            side=order.side,
            quantity=order.quantity,
            price=price,
            fee=fee,
            requested_quantity=float(order.quantity),
            realized_pnl=realized,
            tag=order.tag,
        )
