from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .benchmarks import BenchmarkCalculator
from .config import RunConfig
from .context import BarContext, OrderHandle, build_bar_context
from .controller import StrategyController
from .data import BarFeed, IndicatorTable
from .errors import DataError, OrderRejected
from .execution import ExecutionEngine, fill_reference_price
from .metrics import MetricsRecorder, PerformanceMetricsCalculator
from .output import BacktestResult, OutputBuilder
from .portfolio import Portfolio
from .resolver import EquitySnapshot, QuantityResolver
from .settlement import SettlementRule
from .strategy import Strategy
from .types import (
    BarSnapshot,
    EquityPoint,
    ExecutionMode,
    Fill,
    OrderIntent,
    PerformanceMetrics,
    RejectReason,
    Side,
    Timestamp,
)

logger = logging.getLogger(__name__)


def _intent_side(intent: OrderIntent) -> Optional[Side]:
    try:
        return Side(intent.side) if intent.side is not None else None
    except ValueError:
        return None


def _intent_amount(intent: OrderIntent) -> float:
    try:
        return float(intent.amount)
    except (TypeError, ValueError):
        return 0.0


class BacktestEngine:
    """Coordinates the bar-by-bar backtest loop.

    Each bar is processed to completion before the next: value holdings at
    the execution reference prices, build the context, collect strategy
    intents, resolve and execute them (sells before buys), notify the
    strategy of fills, then mark at the close and record equity. Between
    bars the portfolio is always consistent, so a run may stop at any bar
    boundary and still be finalized.
    """

    def __init__(
        self,
        *,
        strategy: Strategy,
        feed: BarFeed,
        config: RunConfig,
        indicators: Optional[IndicatorTable] = None,
    ) -> None:
        self._strategy = strategy
        self._feed = feed
        self._config = config
        self._indicators = indicators or IndicatorTable.empty()

        self._portfolio = Portfolio(initial_cash=config.initial_cash)
        self._settlement = SettlementRule(config)
        self._resolver = QuantityResolver(config)
        self._executor = ExecutionEngine(config=config, portfolio=self._portfolio, settlement=self._settlement)
        self._controller = StrategyController()
        self._metrics = MetricsRecorder(
            initial_cash=config.initial_cash,
            calculator=PerformanceMetricsCalculator(
                annual_trading_days=config.annual_trading_days,
                annual_rf_rate=config.annual_rf_rate,
            ),
        )
        self._benchmark = BenchmarkCalculator(config.benchmark)
        self._results = OutputBuilder()

        self._state: Dict[str, Any] = {}
        self._order = OrderHandle()
        self._started = False
        self._last_timestamp: Optional[Timestamp] = None
        self._performance_metrics: Optional[PerformanceMetrics] = None

    @property
    def portfolio(self) -> Portfolio:
        return self._portfolio

    @property
    def state(self) -> Dict[str, Any]:
        return self._state

    def run_backtest(self) -> BacktestResult:
        self.start()
        for timestamp, bars in self._feed:
            self.step(timestamp, bars)
        return self.finish()

    def start(self) -> None:
        if self._started:
            return
        logger.info(
            "backtest start: %d bars, initial cash %.2f, mode %s",
            len(self._feed), self._config.initial_cash, self._config.execution_mode.value,
        )
        self._controller.start(self._strategy, self._state, self._config)
        self._started = True

    def step(self, timestamp: Timestamp, bars: Mapping[str, BarSnapshot]) -> List[Fill]:
        """Process one bar completely and return its fills and rejections."""
        if not self._started:
            self.start()
        if self._last_timestamp is not None and not timestamp > self._last_timestamp:
            raise DataError(f"bar {timestamp} does not follow {self._last_timestamp}")
        self._last_timestamp = timestamp

        mode = self._config.execution_mode
        prices: Dict[str, float] = {}
        marks: Dict[str, float] = {}
        for symbol, bar in bars.items():
            reference = fill_reference_price(bar, mode)
            if reference is None:
                logger.warning("data gap: %s untradable at %s", symbol, timestamp)
                continue
            prices[symbol] = reference
            close = fill_reference_price(bar, ExecutionMode.CLOSE)
            marks[symbol] = close if close is not None else reference
        # Until this bar's orders are done, value holdings at the prices they
        # trade at; a held symbol with no price keeps its previous mark.
        self._portfolio.update_prices(prices)
        self._benchmark.observe(bars)

        ctx = self._context(timestamp, bars, prices)
        intents = self._controller.run_bar(self._strategy, ctx)

        fills: List[Fill] = []
        rounds = 0
        while intents and rounds < self._config.max_order_rounds:
            rounds += 1
            round_fills = self._execute_round(intents, prices, timestamp)
            fills.extend(round_fills)
            ctx = self._context(timestamp, bars, prices)
            intents = []
            for fill in round_fills:
                intents.extend(self._controller.notify_trade(self._strategy, ctx, fill))

        if intents:
            fills.extend(self._reject_leftovers(intents, bars, prices, timestamp))

        self._portfolio.update_prices(marks)
        point = self._metrics.record(timestamp, self._portfolio)
        logger.debug("bar %s equity %.2f drawdown %.4f", timestamp, point["equity"], point["drawdown"])
        return fills

    def finish(self) -> BacktestResult:
        metrics = self._metrics.finalize(
            trades=self._executor.get_trade_log(),
            total_fees=self._portfolio.get_total_fees(),
            benchmark_return=self._benchmark.get_return(),
            portfolio=self._portfolio,
        )
        self._performance_metrics = metrics
        self._controller.stop(self._strategy, self._state, metrics)
        return self._results.build_result(
            curve=self._metrics.get_equity_curve(),
            trade_log=self._executor.get_trade_log(),
            metrics=metrics,
            state=self._state,
        )

    def get_portfolio_values(self) -> Sequence[EquityPoint]:
        return list(self._metrics.get_equity_curve())

    def get_trade_log(self) -> Tuple[Fill, ...]:
        return self._executor.get_trade_log()

    def get_performance_metrics(self) -> Optional[PerformanceMetrics]:
        return self._performance_metrics

    def _context(
        self,
        timestamp: Timestamp,
        bars: Mapping[str, BarSnapshot],
        prices: Mapping[str, float],
    ) -> BarContext:
        return build_bar_context(
            timestamp=timestamp,
            bars=bars,
            prices=prices,
            portfolio=self._portfolio,
            settlement=self._settlement,
            indicators=self._indicators.at(timestamp),
            state=self._state,
            order=self._order,
            config=self._config,
            benchmark_price=self._benchmark.last_price,
            benchmark_return=self._benchmark.get_return(),
        )

    def _execute_round(
        self,
        intents: Sequence[OrderIntent],
        prices: Mapping[str, float],
        timestamp: Timestamp,
    ) -> List[Fill]:
        snapshot = EquitySnapshot.capture(self._portfolio, prices, timestamp)
        resolved, rejected = self._resolver.resolve_batch(intents, snapshot)
        fills = [self._reject(intent, error, timestamp) for intent, error in rejected]
        fills.extend(self._executor.execute(resolved, prices, timestamp))
        return fills

    def _reject_leftovers(
        self,
        intents: Sequence[OrderIntent],
        bars: Mapping[str, BarSnapshot],
        prices: Mapping[str, float],
        timestamp: Timestamp,
    ) -> List[Fill]:
        """Reject intents past the round limit and tell the strategy about each.

        Anything submitted from these notifications is dropped so the bar ends.
        """
        rejected = [
            self._reject(
                intent,
                OrderRejected(RejectReason.INVALID_INTENT, "order round limit reached for this bar"),
                timestamp,
            )
            for intent in intents
        ]
        ctx = self._context(timestamp, bars, prices)
        for fill in rejected:
            dropped = self._controller.notify_trade(self._strategy, ctx, fill)
            if dropped:
                logger.warning(
                    "dropped %d intents submitted after the round limit at %s", len(dropped), timestamp
                )
        return rejected

    def _reject(self, intent: OrderIntent, error: OrderRejected, timestamp: Timestamp) -> Fill:
        return self._executor.reject(
            symbol=intent.symbol,
            side=_intent_side(intent),
            requested=_intent_amount(intent),
            error=error,
            timestamp=timestamp,
            tag=intent.tag,
        )
