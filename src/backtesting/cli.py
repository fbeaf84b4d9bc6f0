from __future__ import annotations

import argparse
import logging
import signal
import sys
from typing import Dict, List, Optional

import pandas as pd
from colorama import Fore, Style, init
from dateutil.relativedelta import relativedelta

from .config import load_run_config
from .data import BarFeed, IndicatorTable
from .engine import BacktestEngine
from .errors import BacktestError
from .output import OutputBuilder
from .strategy import TargetWeightStrategy


class BarBoundaryInterrupt:
    """Defers Ctrl-C so the run stops only between bars."""

    def __init__(self) -> None:
        self.requested = False
        self._previous = None

    def __enter__(self) -> "BarBoundaryInterrupt":
        self._previous = signal.signal(signal.SIGINT, self._handle)
        return self

    def __exit__(self, *exc_info) -> None:
        if self._previous is not None:
            signal.signal(signal.SIGINT, self._previous)

    def _handle(self, signum, frame) -> None:
        self.requested = True


def parse_symbols(arg: str | None) -> List[str]:
    if not arg:
        return []
    return [s.strip() for s in arg.split(",") if s.strip()]


def parse_weights(arg: str | None) -> Dict[str, float]:
    """Parse ``A=0.5,B=0.3`` into a weight mapping."""
    weights: Dict[str, float] = {}
    for item in parse_symbols(arg):
        symbol, sep, value = item.partition("=")
        if not sep:
            raise argparse.ArgumentTypeError(f"weight entry {item!r} must look like SYMBOL=WEIGHT")
        weights[symbol.strip()] = float(value)
    return weights


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a bar-synchronous target-weight backtest")
    parser.add_argument("--bars", type=str, required=True, help="CSV with timestamp,symbol,open,high,low,close,volume")
    parser.add_argument("--indicators", type=str, required=False, help="Optional CSV of precomputed indicators")
    parser.add_argument("--weights", type=str, required=True, help="Target weights, e.g. A=0.5,B=0.3")
    parser.add_argument("--rebalance-every", type=int, default=1)
    parser.add_argument("--initial-cash", type=float, default=1_000_000)
    parser.add_argument("--slippage", type=float, default=0.0)
    parser.add_argument("--commission", type=float, default=0.0)
    parser.add_argument("--min-commission", type=float, default=0.0)
    parser.add_argument("--execution-mode", choices=["close", "open", "vwap"], default="close")
    parser.add_argument("--lot-size", type=int, default=1)
    parser.add_argument("--t0", type=str, required=False, help="Comma-separated symbols tradable same day")
    parser.add_argument("--max-position-weight", type=float, required=False)
    parser.add_argument("--benchmark", type=str, required=False)
    parser.add_argument("--start-date", type=str, required=False, help="Start date YYYY-MM-DD")
    parser.add_argument("--end-date", type=str, required=False, help="End date YYYY-MM-DD")
    parser.add_argument("--months-back", type=int, required=False, help="Window ending at --end-date (or last bar)")
    parser.add_argument("--log-level", type=str, default="WARNING")
    return parser


def load_bars(path: str, start_date: Optional[str], end_date: Optional[str], months_back: Optional[int]) -> pd.DataFrame:
    df = pd.read_csv(path)
    df["timestamp"] = pd.to_datetime(df["timestamp"])
    end = pd.Timestamp(end_date) if end_date else df["timestamp"].max()
    if start_date:
        start = pd.Timestamp(start_date)
    elif months_back:
        start = end - relativedelta(months=months_back)
    else:
        start = df["timestamp"].min()
    return df.loc[(df["timestamp"] >= start) & (df["timestamp"] <= end)]


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    init(autoreset=True)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_run_config(
            initial_cash=args.initial_cash,
            slippage=args.slippage,
            commission=args.commission,
            min_commission=args.min_commission,
            execution_mode=args.execution_mode,
            lot_size=args.lot_size,
            t0_symbols=frozenset(parse_symbols(args.t0)),
            max_position_weight=args.max_position_weight,
            benchmark=args.benchmark,
        )
        weights = parse_weights(args.weights)
        feed = BarFeed.from_frame(load_bars(args.bars, args.start_date, args.end_date, args.months_back))
        indicators = IndicatorTable.from_frame(pd.read_csv(args.indicators)) if args.indicators else None
    except (BacktestError, argparse.ArgumentTypeError, ValueError, OSError) as e:
        print(f"{Fore.RED}Cannot start backtest: {e}{Style.RESET_ALL}")
        return 1

    engine = BacktestEngine(
        strategy=TargetWeightStrategy(weights, rebalance_every=args.rebalance_every),
        feed=feed,
        config=config,
        indicators=indicators,
    )
    output = OutputBuilder()

    engine.start()
    with BarBoundaryInterrupt() as interrupt:
        for timestamp, bars in feed:
            engine.step(timestamp, bars)
            if interrupt.requested:
                break
    if interrupt.requested:
        # Every processed bar finished, so the ledger is consistent; report them.
        print(f"\n\n{Fore.YELLOW}Backtest interrupted by user.{Style.RESET_ALL}")
        if len(engine.get_portfolio_values()) > 0:
            print(f"{Fore.GREEN}Partial results available.{Style.RESET_ALL}")
            output.print_summary(engine.finish().metrics)
        return 0

    result = engine.finish()
    print(f"\n{Fore.GREEN}Backtest completed successfully!{Style.RESET_ALL}")
    output.print_summary(result.metrics)
    return 0


if __name__ == "__main__":
    sys.exit(main())
