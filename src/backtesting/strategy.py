"""Strategy lifecycle contract.

``on_bar`` is the only hook a strategy must implement. It may submit
intents through ``ctx.order`` and/or return them; the engine accepts a
list of OrderIntent, an OrderBatch, or a decisions mapping of the form
``{symbol: {"action": "buy", "quantity": 10, "quantity_type": "count"}}``.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, MutableMapping, Optional

from .config import RunConfig
from .context import BarContext
from .types import Fill, PerformanceMetrics


class Strategy:
    """Base unit with no-op hooks, invoked by the engine at fixed points."""

    name = "strategy"

    def on_start(self, state: MutableMapping[str, Any], config: RunConfig) -> None:
        return None

    def on_bar(self, ctx: BarContext) -> Optional[Any]:
        raise NotImplementedError

    def on_trade(self, ctx: BarContext, fill: Fill) -> None:
        return None

    def on_stop(self, state: MutableMapping[str, Any], metrics: PerformanceMetrics) -> None:
        return None


class TargetWeightStrategy(Strategy):
    """Rebalance to fixed target weights every ``rebalance_every`` bars."""

    name = "target_weight"

    def __init__(self, weights: Mapping[str, float], *, rebalance_every: int = 1) -> None:
        if rebalance_every < 1:
            raise ValueError("rebalance_every must be at least 1")
        self.weights: Dict[str, float] = dict(weights)
        self.rebalance_every = rebalance_every

    def on_start(self, state: MutableMapping[str, Any], config: RunConfig) -> None:
        state["bars_seen"] = 0

    def on_bar(self, ctx: BarContext) -> None:
        bars_seen = ctx.state.get("bars_seen", 0)
        ctx.state["bars_seen"] = bars_seen + 1
        if bars_seen % self.rebalance_every:
            return None
        # Symbols held but no longer targeted are liquidated.
        targets = {s: 0.0 for s in ctx.positions if s not in self.weights}
        targets.update(self.weights)
        tradable = {s: w for s, w in targets.items() if ctx.is_tradable(s)}
        ctx.order.order_target_weights(tradable, tag=self.name)
        return None
