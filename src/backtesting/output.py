from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from colorama import Fore, Style

from .types import EquityPoint, Fill, PerformanceMetrics

_TRADE_COLUMNS = [
    "order_id", "timestamp", "symbol", "side", "quantity", "price", "fee", "notional",
    "requested_quantity", "status", "reason", "message", "realized_pnl", "tag",
]


@dataclass(frozen=True)
class BacktestResult:
    """What a finished run hands to its consumer."""

    equity_curve: pd.DataFrame
    trades: pd.DataFrame
    rejections: pd.DataFrame
    metrics: PerformanceMetrics
    state: Dict[str, Any] = field(default_factory=dict)

    @property
    def final_equity(self) -> Optional[float]:
        return self.metrics.get("final_equity")


class OutputBuilder:
    """Builds result frames and prints a run summary.

    Stateless: callers provide inputs and receive frames back.
    """

    def build_equity_frame(self, curve: Sequence[EquityPoint]) -> pd.DataFrame:
        if not curve:
            return pd.DataFrame(columns=["equity", "cash", "market_value", "peak", "drawdown", "gross_exposure"])
        return pd.DataFrame(list(curve)).set_index("timestamp")

    def build_trade_frame(self, fills: Sequence[Fill]) -> pd.DataFrame:
        rows: List[Dict[str, Any]] = [f.as_dict() for f in fills]
        return pd.DataFrame(rows, columns=_TRADE_COLUMNS)

    def build_result(
        self,
        *,
        curve: Sequence[EquityPoint],
        trade_log: Sequence[Fill],
        metrics: PerformanceMetrics,
        state: Optional[Dict[str, Any]] = None,
    ) -> BacktestResult:
        return BacktestResult(
            equity_curve=self.build_equity_frame(curve),
            trades=self.build_trade_frame([f for f in trade_log if not f.is_rejected]),
            rejections=self.build_trade_frame([f for f in trade_log if f.is_rejected]),
            metrics=metrics,
            state=dict(state or {}),
        )

    def format_summary(self, metrics: PerformanceMetrics) -> List[str]:
        lines = [f"{Fore.WHITE}{Style.BRIGHT}BACKTEST SUMMARY{Style.RESET_ALL}"]
        total_return = metrics.get("total_return")
        if total_return is not None:
            color = Fore.GREEN if total_return >= 0 else Fore.RED
            lines.append(f"Total Return: {color}{total_return * 100:.2f}%{Style.RESET_ALL}")
        annualized = metrics.get("annualized_return")
        if annualized is not None:
            lines.append(f"Annualized Return: {annualized * 100:.2f}%")
        if metrics.get("final_equity") is not None:
            lines.append(f"Final Equity: {Fore.CYAN}{metrics['final_equity']:,.2f}{Style.RESET_ALL}")
        if metrics.get("sharpe_ratio") is not None:
            lines.append(f"Sharpe: {metrics['sharpe_ratio']:.2f}")
        if metrics.get("sortino_ratio") is not None:
            lines.append(f"Sortino: {metrics['sortino_ratio']:.2f}")
        if metrics.get("max_drawdown") is not None:
            md = metrics["max_drawdown"] * 100.0
            if metrics.get("max_drawdown_date"):
                lines.append(f"Max DD: {Fore.RED}{md:.2f}%{Style.RESET_ALL} on {metrics['max_drawdown_date']}")
            else:
                lines.append(f"Max DD: {md:.2f}%")
        lines.append(f"Trades: {metrics.get('trade_count', 0)} (rejected {metrics.get('rejected_count', 0)})")
        if metrics.get("win_rate") is not None:
            lines.append(f"Win Rate: {metrics['win_rate'] * 100:.1f}%")
        lines.append(f"Fees: {metrics.get('total_fees', 0.0):,.2f}")
        if metrics.get("gross_exposure") is not None:
            lines.append(
                f"Exposure: {metrics['gross_exposure'] * 100:.1f}% invested, "
                f"{metrics.get('cash_weight', 0.0) * 100:.1f}% cash"
            )
        if metrics.get("benchmark_return") is not None:
            lines.append(f"Benchmark Return: {metrics['benchmark_return'] * 100:.2f}%")
        return lines

    def print_summary(self, metrics: PerformanceMetrics) -> None:
        print("\n".join(self.format_summary(metrics)))
