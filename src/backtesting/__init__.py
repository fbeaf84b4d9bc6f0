"""Bar-synchronous backtesting engine.

Replays strategy decisions bar by bar, resolves buy/sell intents expressed
as unit counts, cash amounts or target weights into fills (sells before
buys, with slippage, commission and T+0/T+1 settlement), and keeps an
authoritative cash/position ledger plus performance metrics.
"""

from .types import (
    BarFrame,
    BarSnapshot,
    EquityPoint,
    ExecutionMode,
    Fill,
    Lot,
    OrderBatch,
    OrderIntent,
    PerformanceMetrics,
    PortfolioSnapshot,
    PositionState,
    QuantityKind,
    RejectReason,
    ResolvedOrder,
    Side,
)
from .errors import BacktestError, ConfigurationError, DataError, LedgerError, OrderRejected
from .config import RunConfig, load_run_config
from .settlement import LotState, SettlementRule
from .portfolio import Portfolio
from .resolver import EquitySnapshot, QuantityResolver
from .execution import ExecutionEngine, fill_reference_price
from .context import BarContext, OrderHandle, PositionView, build_bar_context
from .strategy import Strategy, TargetWeightStrategy
from .controller import StrategyController
from .metrics import MetricsRecorder, PerformanceMetricsCalculator
from .benchmarks import BenchmarkCalculator
from .data import BarFeed, IndicatorTable
from .valuation import calculate_portfolio_value, compute_exposures
from .output import BacktestResult, OutputBuilder
from .engine import BacktestEngine

__all__ = [
    # Types
    "BarFrame",
    "BarSnapshot",
    "EquityPoint",
    "ExecutionMode",
    "Fill",
    "Lot",
    "OrderBatch",
    "OrderIntent",
    "PerformanceMetrics",
    "PortfolioSnapshot",
    "PositionState",
    "QuantityKind",
    "RejectReason",
    "ResolvedOrder",
    "Side",
    # Errors
    "BacktestError",
    "ConfigurationError",
    "DataError",
    "LedgerError",
    "OrderRejected",
    # Components
    "RunConfig",
    "load_run_config",
    "LotState",
    "SettlementRule",
    "Portfolio",
    "EquitySnapshot",
    "QuantityResolver",
    "ExecutionEngine",
    "fill_reference_price",
    "BarContext",
    "OrderHandle",
    "PositionView",
    "build_bar_context",
    "Strategy",
    "TargetWeightStrategy",
    "StrategyController",
    "MetricsRecorder",
    "PerformanceMetricsCalculator",
    "BenchmarkCalculator",
    "BarFeed",
    "IndicatorTable",
    "calculate_portfolio_value",
    "compute_exposures",
    "BacktestResult",
    "OutputBuilder",
    "BacktestEngine",
]
