import itertools

import pandas as pd
import pytest

from src.backtesting.config import RunConfig
from src.backtesting.portfolio import Portfolio
from src.backtesting.settlement import SettlementRule
from src.backtesting.types import Fill, Side


@pytest.fixture()
def day1() -> pd.Timestamp:
    return pd.Timestamp("2024-01-02")


@pytest.fixture()
def day2() -> pd.Timestamp:
    return pd.Timestamp("2024-01-03")


@pytest.fixture()
def config() -> RunConfig:
    return RunConfig(initial_cash=100_000.0)


@pytest.fixture()
def portfolio() -> Portfolio:
    return Portfolio(initial_cash=100_000.0)


@pytest.fixture()
def settlement(config: RunConfig) -> SettlementRule:
    return SettlementRule(config)


@pytest.fixture()
def prices() -> dict[str, float]:
    return {"AAPL": 100.0, "MSFT": 200.0}


@pytest.fixture()
def fill_factory(day1):
    order_ids = itertools.count(1)

    def _factory(symbol: str, side: str, quantity: int, price: float, fee: float = 0.0, timestamp=None) -> Fill:
        return Fill(
            order_id=next(order_ids),
            timestamp=timestamp if timestamp is not None else day1,
            symbol=symbol,
            side=Side(side),
            quantity=quantity,
            price=price,
            fee=fee,
            requested_quantity=float(quantity),
        )

    return _factory


@pytest.fixture()
def bar_frame_factory():
    def _factory(
        closes: dict[str, list[float]],
        start: str = "2024-03-01",
        opens: dict[str, list[float]] | None = None,
        vwaps: dict[str, list[float]] | None = None,
    ) -> pd.DataFrame:
        # Long frame: one row per (business day, symbol); NaN closes mark halted bars.
        # Opens default to the close; a vwap column is added only when given.
        n = max(len(v) for v in closes.values())
        dates = pd.bdate_range(start, periods=n)
        rows = []
        for symbol, series in closes.items():
            for i, (ts, close) in enumerate(zip(dates, series)):
                open_ = opens[symbol][i] if opens and symbol in opens else close
                row = {
                    "timestamp": ts,
                    "symbol": symbol,
                    "open": open_,
                    "high": max(open_, close),
                    "low": min(open_, close),
                    "close": close,
                    "volume": 1_000_000,
                }
                if vwaps and symbol in vwaps:
                    row["vwap"] = vwaps[symbol][i]
                rows.append(row)
        return pd.DataFrame(rows)

    return _factory
