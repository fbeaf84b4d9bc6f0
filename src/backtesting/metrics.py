from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .portfolio import Portfolio
from .types import EquityPoint, Fill, PerformanceMetrics, Side, Timestamp
from .valuation import compute_exposures

logger = logging.getLogger(__name__)


class PerformanceMetricsCalculator:
    """Concrete metrics calculator like sharpe ratio, sortino ratio, max drawdown, etc."""

    def __init__(self, *, annual_trading_days: int = 252, annual_rf_rate: float = 0.0) -> None:
        self.annual_trading_days = annual_trading_days
        self.annual_rf_rate = annual_rf_rate

    def compute_metrics(
        self,
        values: Sequence[EquityPoint],
        *,
        initial_cash: float,
        trades: Sequence[Fill] = (),
        total_fees: float = 0.0,
        benchmark_return: Optional[float] = None,
    ) -> PerformanceMetrics:
        filled = [t for t in trades if not t.is_rejected]
        sells = [t for t in filled if t.side == Side.SELL]
        metrics: PerformanceMetrics = {
            "initial_cash": initial_cash,
            "final_equity": None,
            "total_return": None,
            "annualized_return": None,
            "volatility": None,
            "sharpe_ratio": None,
            "sortino_ratio": None,
            "max_drawdown": None,
            "max_drawdown_date": None,
            "trade_count": len(filled),
            "rejected_count": len(trades) - len(filled),
            "win_rate": (sum(1 for t in sells if t.realized_pnl > 0) / len(sells)) if sells else None,
            "total_fees": total_fees,
            "turnover": None,
            "bars": len(values),
            "benchmark_return": benchmark_return,
            "excess_return": None,
        }
        if not values:
            return metrics

        df = pd.DataFrame(values).set_index("timestamp")
        equity = df["equity"]
        final_equity = float(equity.iloc[-1])
        total_return = final_equity / initial_cash - 1.0
        periods = len(equity)
        metrics["final_equity"] = final_equity
        metrics["total_return"] = total_return
        if total_return > -1.0:
            metrics["annualized_return"] = float((1.0 + total_return) ** (self.annual_trading_days / periods) - 1.0)
        else:
            metrics["annualized_return"] = -1.0
        if benchmark_return is not None:
            metrics["excess_return"] = total_return - benchmark_return

        traded = sum(t.notional for t in filled)
        metrics["turnover"] = float(traded / equity.mean()) if equity.mean() > 0 else None

        drawdown = df["drawdown"]
        max_dd = float(drawdown.max())
        metrics["max_drawdown"] = max_dd
        if max_dd > 0:
            metrics["max_drawdown_date"] = pd.Timestamp(drawdown.idxmax()).strftime("%Y-%m-%d")

        # Returns include the move from initial cash to the first bar's equity.
        series = pd.concat([pd.Series([initial_cash]), equity.reset_index(drop=True)], ignore_index=True)
        clean_returns = series.pct_change().dropna()
        if len(clean_returns) < 2:
            return metrics

        daily_rf = self.annual_rf_rate / self.annual_trading_days
        excess = clean_returns - daily_rf
        mean_excess = excess.mean()
        std_excess = excess.std()
        metrics["volatility"] = float(clean_returns.std() * np.sqrt(self.annual_trading_days))

        if std_excess > 1e-12:
            sharpe = float(np.sqrt(self.annual_trading_days) * (mean_excess / std_excess))
        else:
            sharpe = 0.0

        negative_excess = excess[excess < 0]
        if len(negative_excess) > 1:
            downside_std = negative_excess.std()
            if downside_std > 1e-12:
                sortino = float(np.sqrt(self.annual_trading_days) * (mean_excess / downside_std))
            else:
                sortino = float("inf") if mean_excess > 0 else 0.0
        else:
            sortino = float("inf") if mean_excess > 0 else 0.0

        metrics["sharpe_ratio"] = sharpe
        metrics["sortino_ratio"] = sortino
        return metrics


class MetricsRecorder:
    """Append-only equity curve with running peak and drawdown.

    Reads the portfolio after each bar's fills; never writes to it.
    """

    def __init__(self, *, initial_cash: float, calculator: Optional[PerformanceMetricsCalculator] = None) -> None:
        self._initial_cash = float(initial_cash)
        self._calculator = calculator or PerformanceMetricsCalculator()
        self._curve: List[EquityPoint] = []
        self._peak = float(initial_cash)

    @property
    def peak_equity(self) -> float:
        return self._peak

    @property
    def current_drawdown(self) -> float:
        return self._curve[-1]["drawdown"] if self._curve else 0.0

    def get_equity_curve(self) -> Tuple[EquityPoint, ...]:
        return tuple(self._curve)

    def record(self, timestamp: Timestamp, portfolio: Portfolio) -> EquityPoint:
        cash = portfolio.get_cash()
        market_value = portfolio.get_positions_value()
        equity = cash + market_value
        self._peak = max(self._peak, equity)
        drawdown = 1.0 - equity / self._peak if self._peak > 0 else 0.0
        point: EquityPoint = {
            "timestamp": timestamp,
            "equity": equity,
            "cash": cash,
            "market_value": market_value,
            "peak": self._peak,
            "drawdown": drawdown,
            "gross_exposure": market_value / equity if equity > 0 else 0.0,
        }
        self._curve.append(point)
        return point

    def finalize(
        self,
        *,
        trades: Sequence[Fill],
        total_fees: float,
        benchmark_return: Optional[float] = None,
        portfolio: Optional[Portfolio] = None,
    ) -> PerformanceMetrics:
        """Compute run metrics; with a portfolio, add its closing exposures."""
        metrics = self._calculator.compute_metrics(
            self._curve,
            initial_cash=self._initial_cash,
            trades=trades,
            total_fees=total_fees,
            benchmark_return=benchmark_return,
        )
        if portfolio is not None:
            exposures = compute_exposures(portfolio, portfolio.get_last_prices())
            metrics["gross_exposure"] = exposures["gross_exposure"]
            metrics["cash_weight"] = exposures["cash_weight"]
            metrics["open_positions"] = int(exposures["open_positions"])
        logger.info(
            "run finished: %d bars, total return %s, max drawdown %s, %d trades",
            metrics["bars"], metrics["total_return"], metrics["max_drawdown"], metrics["trade_count"],
        )
        return metrics
