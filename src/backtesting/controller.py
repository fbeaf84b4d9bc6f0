from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, MutableMapping

from .config import RunConfig
from .context import BarContext
from .strategy import Strategy
from .types import Fill, OrderBatch, OrderIntent, PerformanceMetrics, QuantityKind, Side

logger = logging.getLogger(__name__)

_HOLD = "hold"


class StrategyController:
    """Responsible for invoking strategy hooks and normalizing their outputs."""

    def start(self, strategy: Strategy, state: MutableMapping[str, Any], config: RunConfig) -> None:
        logger.info("starting strategy %s", strategy.name)
        strategy.on_start(state, config)

    def run_bar(self, strategy: Strategy, ctx: BarContext) -> List[OrderIntent]:
        """Call ``on_bar`` and return every intent it produced, handle first."""
        output = strategy.on_bar(ctx)
        intents = ctx.order.drain()
        intents.extend(self.normalize(output))
        return intents

    def notify_trade(self, strategy: Strategy, ctx: BarContext, fill: Fill) -> List[OrderIntent]:
        """Deliver a fill or rejection; returns intents submitted from the callback."""
        strategy.on_trade(ctx, fill)
        return ctx.order.drain()

    def stop(self, strategy: Strategy, state: MutableMapping[str, Any], metrics: PerformanceMetrics) -> None:
        strategy.on_stop(state, metrics)
        logger.info("stopped strategy %s", strategy.name)

    def normalize(self, output: Any) -> List[OrderIntent]:
        if output is None:
            return []
        if isinstance(output, OrderIntent):
            return [output]
        if isinstance(output, OrderBatch):
            return output.expand()
        if isinstance(output, dict):
            return self._from_decisions(output)
        if isinstance(output, Iterable) and not isinstance(output, (str, bytes)):
            intents: List[OrderIntent] = []
            for item in output:
                intents.extend(self.normalize(item))
            return intents
        raise TypeError(f"unsupported on_bar output: {type(output).__name__}")

    def _from_decisions(self, decisions: Dict[str, Any]) -> List[OrderIntent]:
        intents: List[OrderIntent] = []
        for symbol, d in decisions.items():
            action = str(d.get("action", _HOLD)).lower()
            if action == _HOLD:
                continue
            kind = d.get("quantity_type", QuantityKind.COUNT)
            # Unknown kinds and sides pass through so the resolver rejects them with a reason.
            try:
                kind = QuantityKind(kind)
            except ValueError:
                pass
            side: Any = action
            try:
                side = Side(action)
            except ValueError:
                pass
            if kind == QuantityKind.WEIGHT:
                side = None
            intents.append(
                OrderIntent(
                    symbol=symbol,
                    amount=d.get("quantity", 0),
                    kind=kind,
                    side=side,
                    tag=str(d.get("tag", "")),
                )
            )
        return intents
