import pytest

from src.backtesting.config import RunConfig
from src.backtesting.data import BarFeed
from src.backtesting.engine import BacktestEngine


@pytest.fixture()
def feed_factory(bar_frame_factory):
    def _factory(closes: dict[str, list[float]], start: str = "2024-03-01", **prices) -> BarFeed:
        return BarFeed.from_frame(bar_frame_factory(closes, start=start, **prices))

    return _factory


@pytest.fixture()
def run_backtest(feed_factory):
    """Run a strategy over close series and return (engine, result).

    ``opens`` and ``vwaps`` give per-symbol series for the other execution modes.
    """

    def _run(strategy, closes: dict[str, list[float]], *, opens=None, vwaps=None, **config):
        config.setdefault("initial_cash", 1_000_000.0)
        feed = feed_factory(closes, opens=opens, vwaps=vwaps)
        engine = BacktestEngine(strategy=strategy, feed=feed, config=RunConfig(**config))
        result = engine.run_backtest()
        return engine, result

    return _run
