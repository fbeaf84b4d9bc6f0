from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Union

from .config import RunConfig
from .portfolio import Portfolio
from .settlement import SettlementRule
from .types import BarSnapshot, OrderBatch, OrderIntent, QuantityKind, Side, Timestamp

KindLike = Union[QuantityKind, str]


@dataclass(frozen=True)
class PositionView:
    """Read-only view of one symbol's position as of the current bar."""

    symbol: str
    quantity: int
    avg_cost: Optional[float]
    market_value: float
    weight: float
    unrealized_pnl: float
    sellable_quantity: int

    @property
    def is_flat(self) -> bool:
        return self.quantity == 0


class OrderHandle:
    """Collects a strategy's intents; the engine drains them once per round."""

    def __init__(self) -> None:
        self._pending: List[OrderIntent] = []

    def submit(self, intent: OrderIntent) -> OrderIntent:
        self._pending.append(intent)
        return intent

    def buy(self, symbol: str, quantity: float, quantity_type: KindLike = QuantityKind.COUNT, tag: str = "") -> OrderIntent:
        return self.submit(OrderIntent(symbol=symbol, amount=quantity, kind=quantity_type, side=Side.BUY, tag=tag))

    def sell(self, symbol: str, quantity: float, quantity_type: KindLike = QuantityKind.COUNT, tag: str = "") -> OrderIntent:
        """Sell units or cash worth of ``symbol``.

        With ``quantity_type="weight"`` the amount is a target weight; the
        order is rejected if reaching it would mean buying. ``buy`` mirrors this.
        """
        return self.submit(OrderIntent(symbol=symbol, amount=quantity, kind=quantity_type, side=Side.SELL, tag=tag))

    def order_target_weight(self, symbol: str, weight: float, tag: str = "") -> OrderIntent:
        return self.submit(OrderIntent(symbol=symbol, amount=weight, kind=QuantityKind.WEIGHT, tag=tag))

    def order_target_weights(self, weights: Mapping[str, float], tag: str = "") -> List[OrderIntent]:
        return self.batch(weights, quantity_type=QuantityKind.WEIGHT, tag=tag)

    def close_position(self, symbol: str, tag: str = "") -> OrderIntent:
        return self.order_target_weight(symbol, 0.0, tag=tag)

    def batch(
        self,
        amounts: Mapping[str, float],
        *,
        quantity_type: KindLike,
        side: Optional[Side] = None,
        tag: str = "",
    ) -> List[OrderIntent]:
        """Submit one amount per symbol, all sharing the same quantity kind."""
        batch = OrderBatch(entries=tuple(amounts.items()), kind=quantity_type, side=side, tag=tag)
        return [self.submit(intent) for intent in batch]

    def pending(self) -> List[OrderIntent]:
        return list(self._pending)

    def drain(self) -> List[OrderIntent]:
        intents, self._pending = self._pending, []
        return intents


class BarContext:
    """Everything a strategy may see on one bar.

    Rebuilt for every bar (and after each order round) from the portfolio,
    so no value can go stale across bars. ``state`` is the run-owned store
    that survives between bars; everything else is read-only.
    """

    def __init__(
        self,
        *,
        timestamp: Timestamp,
        bars: Mapping[str, BarSnapshot],
        prices: Mapping[str, float],
        cash: float,
        equity: float,
        positions: Mapping[str, PositionView],
        indicators: Mapping[str, Mapping[str, float]],
        state: MutableMapping[str, Any],
        order: OrderHandle,
        benchmark_price: Optional[float] = None,
        benchmark_return: Optional[float] = None,
    ) -> None:
        self.timestamp = timestamp
        self.bars = bars
        self.prices = prices
        self.cash = cash
        self.equity = equity
        self.positions = positions
        self.indicators = indicators
        self.state = state
        self.order = order
        self.benchmark_price = benchmark_price
        self.benchmark_return = benchmark_return

    def is_tradable(self, symbol: str) -> bool:
        return symbol in self.prices

    def price(self, symbol: str) -> Optional[float]:
        return self.prices.get(symbol)

    def position(self, symbol: str) -> PositionView:
        view = self.positions.get(symbol)
        if view is not None:
            return view
        return PositionView(
            symbol=symbol,
            quantity=0,
            avg_cost=None,
            market_value=0.0,
            weight=0.0,
            unrealized_pnl=0.0,
            sellable_quantity=0,
        )

    def indicator(self, name: str, symbol: str, default: Optional[float] = None) -> Optional[float]:
        return self.indicators.get(name, {}).get(symbol, default)

    def buy(self, symbol: str, quantity: float, quantity_type: KindLike = QuantityKind.COUNT) -> OrderIntent:
        return self.order.buy(symbol, quantity, quantity_type)

    def sell(self, symbol: str, quantity: float, quantity_type: KindLike = QuantityKind.COUNT) -> OrderIntent:
        return self.order.sell(symbol, quantity, quantity_type)

    def order_target_weight(self, symbol: str, weight: float) -> OrderIntent:
        return self.order.order_target_weight(symbol, weight)


def build_bar_context(
    *,
    timestamp: Timestamp,
    bars: Mapping[str, BarSnapshot],
    prices: Mapping[str, float],
    portfolio: Portfolio,
    settlement: SettlementRule,
    indicators: Mapping[str, Mapping[str, float]],
    state: MutableMapping[str, Any],
    order: OrderHandle,
    config: RunConfig,
    benchmark_price: Optional[float] = None,
    benchmark_return: Optional[float] = None,
) -> BarContext:
    """Assemble a BarContext. Reads the portfolio, never writes to it.

    ``prices`` holds execution reference prices for tradable symbols only;
    a held symbol without one this bar is visible but not tradable.
    """
    equity = portfolio.get_equity()
    views: Dict[str, PositionView] = {}
    for symbol, position in portfolio.get_positions().items():
        if position.quantity == 0:
            continue
        market_value = portfolio.get_market_value(symbol)
        views[symbol] = PositionView(
            symbol=symbol,
            quantity=position.quantity,
            avg_cost=portfolio.get_avg_cost(symbol),
            market_value=market_value,
            weight=market_value / equity if equity > 0 else 0.0,
            unrealized_pnl=portfolio.get_unrealized_pnl(symbol),
            sellable_quantity=settlement.sellable_quantity(symbol, position.lots, timestamp),
        )

    if config.benchmark is not None and benchmark_price is None:
        benchmark_bar = bars.get(config.benchmark)
        benchmark_price = benchmark_bar.close if benchmark_bar is not None else None

    return BarContext(
        timestamp=timestamp,
        bars=MappingProxyType(dict(bars)),
        prices=MappingProxyType(dict(prices)),
        cash=portfolio.get_cash(),
        equity=equity,
        positions=MappingProxyType(views),
        indicators=indicators,
        state=state,
        order=order,
        benchmark_price=benchmark_price,
        benchmark_return=benchmark_return,
    )
