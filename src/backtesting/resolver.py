"""Turns order intents into concrete unit quantities.

All intents of one order round are resolved against a single
``EquitySnapshot`` taken before any of them executes, so resolving A before
B gives the same result as B before A. Buys are clamped to what the round
can afford: snapshot cash plus the projected proceeds of the round's sells.
Settlement is not checked here; the execution engine rejects those orders.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Tuple

from .config import RunConfig
from .errors import OrderRejected
from .execution import commission_for, slipped_price
from .portfolio import Portfolio
from .types import OrderIntent, QuantityKind, RejectReason, ResolvedOrder, Side, Timestamp

logger = logging.getLogger(__name__)

# Tolerance for float residue in unit arithmetic, e.g. 1000 * 10.0 / 10.0.
_UNIT_EPSILON = 1e-9


@dataclass(frozen=True)
class EquitySnapshot:
    """Cash, equity, holdings and reference prices frozen at the start of a round.

    Equity is read from the portfolio's current marks; the engine sets those
    to the round's reference prices so weight targets and fills agree.
    """

    timestamp: Timestamp
    cash: float
    equity: float
    quantities: Mapping[str, int]
    prices: Mapping[str, float]

    @classmethod
    def capture(cls, portfolio: Portfolio, prices: Mapping[str, float], timestamp: Timestamp) -> "EquitySnapshot":
        quantities = {s: p.quantity for s, p in portfolio.get_positions().items() if p.quantity > 0}
        return cls(
            timestamp=timestamp,
            cash=portfolio.get_cash(),
            equity=portfolio.get_equity(),
            quantities=MappingProxyType(quantities),
            prices=MappingProxyType(dict(prices)),
        )

    def quantity(self, symbol: str) -> int:
        return self.quantities.get(symbol, 0)


RejectedIntent = Tuple[OrderIntent, OrderRejected]


class QuantityResolver:
    def __init__(self, config: RunConfig) -> None:
        self._config = config

    def floor_units(self, units: float) -> int:
        lot = self._config.lot_size
        if units <= 0:
            return 0
        return int(math.floor(units / lot + _UNIT_EPSILON)) * lot

    def validate(self, intent: OrderIntent, snapshot: EquitySnapshot) -> Tuple[QuantityKind, Optional[Side], float, float]:
        """Check an intent and return (kind, side, amount, reference price).

        Weight amounts are clamped to [0, 1] here; their side is optional.
        """
        try:
            kind = QuantityKind(intent.kind)
        except ValueError:
            raise OrderRejected(RejectReason.INVALID_INTENT, f"unknown quantity kind {intent.kind!r}") from None
        try:
            amount = float(intent.amount)
        except (TypeError, ValueError):
            raise OrderRejected(RejectReason.INVALID_INTENT, f"amount {intent.amount!r} is not a number") from None
        if not math.isfinite(amount):
            raise OrderRejected(RejectReason.INVALID_INTENT, f"amount {amount} is not finite")

        side: Optional[Side] = None
        if intent.side is not None:
            try:
                side = Side(intent.side)
            except ValueError:
                raise OrderRejected(RejectReason.INVALID_INTENT, f"unknown side {intent.side!r}") from None
        if kind == QuantityKind.WEIGHT:
            amount = min(max(amount, 0.0), 1.0)
        else:
            if side is None:
                raise OrderRejected(RejectReason.INVALID_INTENT, f"{kind.value} intent needs a side")
            if amount < 0:
                raise OrderRejected(RejectReason.INVALID_INTENT, f"negative {kind.value} amount {amount}")

        price = snapshot.prices.get(intent.symbol)
        if price is None:
            raise OrderRejected(RejectReason.DATA_GAP, f"{intent.symbol} has no valid price this bar")
        return kind, side, amount, price

    def resolve_batch(
        self,
        intents: Iterable[OrderIntent],
        snapshot: EquitySnapshot,
    ) -> Tuple[List[ResolvedOrder], List[RejectedIntent]]:
        """Resolve one round of intents. Zero-unit results are dropped as no-ops."""
        sells: List[Tuple[int, OrderIntent, QuantityKind, float, float]] = []
        buys: List[Tuple[int, OrderIntent, QuantityKind, float, float]] = []
        rejected: List[RejectedIntent] = []

        for sequence, intent in enumerate(intents):
            try:
                kind, side, amount, price = self.validate(intent, snapshot)
                side = self.side_of(intent.symbol, kind, side, amount, price, snapshot)
            except OrderRejected as e:
                rejected.append((intent, e))
                continue
            entry = (sequence, intent, kind, amount, price)
            if side == Side.SELL:
                sells.append(entry)
            else:
                buys.append(entry)

        resolved: List[ResolvedOrder] = []
        proceeds = 0.0
        for sequence, intent, kind, amount, price in sells:
            try:
                units = self.resolve_sell(intent, kind, amount, price, snapshot)
            except OrderRejected as e:
                rejected.append((intent, e))
                continue
            if units == 0:
                logger.debug("sell %s resolved to zero units", intent.symbol)
                continue
            fill_price = slipped_price(price, Side.SELL, self._config.slippage)
            proceeds += units * fill_price - commission_for(units * fill_price, self._config)
            resolved.append(self._order(intent, Side.SELL, units, kind, amount, sequence, snapshot))

        buying_power = max(snapshot.cash + proceeds, 0.0)
        for sequence, intent, kind, amount, price in buys:
            try:
                units = self.resolve_buy(intent, kind, amount, price, snapshot, buying_power)
            except OrderRejected as e:
                rejected.append((intent, e))
                continue
            if units == 0:
                logger.debug("buy %s resolved to zero units", intent.symbol)
                continue
            resolved.append(self._order(intent, Side.BUY, units, kind, amount, sequence, snapshot))

        return resolved, rejected

    def resolve(self, intent: OrderIntent, snapshot: EquitySnapshot) -> Optional[ResolvedOrder]:
        """Resolve a single intent; raises OrderRejected, returns None for a no-op."""
        resolved, rejected = self.resolve_batch([intent], snapshot)
        if rejected:
            raise rejected[0][1]
        return resolved[0] if resolved else None

    def side_of(
        self,
        symbol: str,
        kind: QuantityKind,
        side: Optional[Side],
        amount: float,
        price: float,
        snapshot: EquitySnapshot,
    ) -> Side:
        """Direction of an order.

        A weight is always a target: it sells when the holding is above the
        target and buys when below. An explicit side pointing the other way is
        rejected. Within one lot of the target the order resolves to nothing,
        so any side is accepted there.
        """
        if kind != QuantityKind.WEIGHT:
            return side
        delta_value = amount * snapshot.equity - snapshot.quantity(symbol) * price
        target = Side.SELL if delta_value < 0 else Side.BUY
        if side is None or side == target:
            return target
        if abs(delta_value) < self._config.lot_size * price:
            return side
        raise OrderRejected(
            RejectReason.INVALID_INTENT,
            f"{side.value} {symbol} to weight {amount:g} would {target.value}",
        )

    def resolve_sell(
        self,
        intent: OrderIntent,
        kind: QuantityKind,
        amount: float,
        price: float,
        snapshot: EquitySnapshot,
    ) -> int:
        held = snapshot.quantity(intent.symbol)
        if kind == QuantityKind.WEIGHT:
            delta_value = snapshot.equity * amount - held * price
            units = -delta_value / price
            if units + _UNIT_EPSILON >= held:
                return held
            return self._clamp_sell(self.floor_units(units), held)

        if amount > 0 and held == 0:
            raise OrderRejected(RejectReason.SHORT_NOT_ALLOWED, f"no position in {intent.symbol} to sell")
        if kind == QuantityKind.COUNT:
            units = amount
        else:
            units = amount / slipped_price(price, Side.SELL, self._config.slippage)
        if units + _UNIT_EPSILON >= held:
            return held
        return self._clamp_sell(self.floor_units(units), held)

    def resolve_buy(
        self,
        intent: OrderIntent,
        kind: QuantityKind,
        amount: float,
        price: float,
        snapshot: EquitySnapshot,
        buying_power: float,
    ) -> int:
        fill_price = slipped_price(price, Side.BUY, self._config.slippage)
        if kind == QuantityKind.WEIGHT:
            delta_value = snapshot.equity * amount - snapshot.quantity(intent.symbol) * price
            requested = self.floor_units(delta_value / price)
        elif kind == QuantityKind.CASH:
            requested = self.floor_units(min(amount, buying_power) / fill_price)
        else:
            requested = self.floor_units(amount)
        if requested == 0:
            return 0

        cap = self._position_cap(intent.symbol, price, snapshot)
        if cap == 0:
            # Already at the position limit; nothing to buy.
            logger.debug("buy %s skipped: position at max weight", intent.symbol)
            return 0
        affordable = self.affordable_units(fill_price, buying_power)
        if affordable == 0 and kind == QuantityKind.COUNT:
            raise OrderRejected(
                RejectReason.INSUFFICIENT_CASH,
                f"cannot afford one lot of {intent.symbol} with {buying_power:.2f}",
            )
        units = min(requested, affordable, cap)
        if units < requested:
            logger.debug("clamped buy %s from %d to %d units", intent.symbol, requested, units)
        return int(units)

    def affordable_units(self, fill_price: float, buying_power: float) -> int:
        """Largest lot-aligned quantity whose notional plus fee fits in buying_power."""
        c = self._config
        if buying_power <= 0:
            return 0
        units = self.floor_units(
            min(
                buying_power / (fill_price * (1.0 + c.commission)),
                (buying_power - c.min_commission) / fill_price,
            )
        )
        # Step down while float rounding leaves the cost a hair over budget.
        while units > 0 and units * fill_price + commission_for(units * fill_price, c) > buying_power:
            units -= c.lot_size
        return max(units, 0)

    def _position_cap(self, symbol: str, price: float, snapshot: EquitySnapshot) -> float:
        cap = self._config.max_position_weight
        if cap is None:
            return math.inf
        room = cap * snapshot.equity - snapshot.quantity(symbol) * price
        return self.floor_units(room / price)

    def _clamp_sell(self, units: int, held: int) -> int:
        return max(min(units, held), 0)

    def _order(
        self,
        intent: OrderIntent,
        side: Side,
        units: int,
        kind: QuantityKind,
        amount: float,
        sequence: int,
        snapshot: EquitySnapshot,
    ) -> ResolvedOrder:
        logger.debug("resolved %s %s %s=%s -> %d units", side.value, intent.symbol, kind.value, amount, units)
        return ResolvedOrder(
            symbol=intent.symbol,
            side=side,
            quantity=int(units),
            timestamp=snapshot.timestamp,
            kind=kind,
            requested_amount=amount,
            sequence=sequence,
            tag=intent.tag,
        )
