import pytest

from src.backtesting.context import OrderHandle, build_bar_context
from src.backtesting.types import BarSnapshot, QuantityKind, Side


def _bars(ts, closes):
    return {s: BarSnapshot(symbol=s, timestamp=ts, close=c) for s, c in closes.items()}


def _ctx(portfolio, settlement, config, ts, closes, state=None, indicators=None):
    bars = _bars(ts, closes)
    portfolio.update_prices(closes)
    return build_bar_context(
        timestamp=ts,
        bars=bars,
        prices=closes,
        portfolio=portfolio,
        settlement=settlement,
        indicators=indicators or {},
        state=state if state is not None else {},
        order=OrderHandle(),
        config=config,
    )


def test_context_reports_weights_and_sellable(portfolio, settlement, config, fill_factory, day1, day2):
    portfolio.apply(fill_factory("AAPL", "buy", 100, 100.0, timestamp=day1))
    portfolio.apply(fill_factory("AAPL", "buy", 50, 100.0, timestamp=day2))
    ctx = _ctx(portfolio, settlement, config, day2, {"AAPL": 110.0})

    view = ctx.position("AAPL")
    assert view.quantity == 150
    assert view.market_value == pytest.approx(16_500.0)
    assert view.weight == pytest.approx(16_500.0 / ctx.equity)
    assert view.sellable_quantity == 100
    assert view.unrealized_pnl == pytest.approx(1_500.0)
    assert ctx.cash == pytest.approx(85_000.0)


def test_unknown_symbol_is_flat_and_untradable(portfolio, settlement, config, day1):
    ctx = _ctx(portfolio, settlement, config, day1, {"AAPL": 100.0})
    assert ctx.position("MSFT").is_flat
    assert ctx.position("MSFT").avg_cost is None
    assert ctx.is_tradable("AAPL")
    assert not ctx.is_tradable("MSFT")
    assert ctx.price("MSFT") is None


def test_held_symbol_without_price_is_visible_but_not_tradable(portfolio, settlement, config, fill_factory, day1, day2):
    portfolio.apply(fill_factory("MSFT", "buy", 10, 200.0, timestamp=day1))
    ctx = _ctx(portfolio, settlement, config, day2, {"AAPL": 100.0})
    assert ctx.position("MSFT").quantity == 10
    assert ctx.position("MSFT").market_value == pytest.approx(2_000.0)
    assert not ctx.is_tradable("MSFT")


def test_context_views_are_read_only(portfolio, settlement, config, day1):
    ctx = _ctx(portfolio, settlement, config, day1, {"AAPL": 100.0})
    with pytest.raises(TypeError):
        ctx.prices["AAPL"] = 1.0
    with pytest.raises(TypeError):
        ctx.positions["AAPL"] = None
    with pytest.raises(AttributeError):
        ctx.position("AAPL").quantity = 5


def test_state_is_shared_across_contexts(portfolio, settlement, config, day1, day2):
    state = {}
    first = _ctx(portfolio, settlement, config, day1, {"AAPL": 100.0}, state=state)
    first.state["count"] = 1
    second = _ctx(portfolio, settlement, config, day2, {"AAPL": 100.0}, state=state)
    assert second.state["count"] == 1


def test_indicator_lookup_with_default(portfolio, settlement, config, day1):
    ctx = _ctx(portfolio, settlement, config, day1, {"AAPL": 100.0}, indicators={"sma_20": {"AAPL": 98.5}})
    assert ctx.indicator("sma_20", "AAPL") == 98.5
    assert ctx.indicator("sma_20", "MSFT") is None
    assert ctx.indicator("rsi", "AAPL", default=50.0) == 50.0


def test_order_handle_records_and_drains():
    handle = OrderHandle()
    handle.buy("AAPL", 10)
    handle.sell("MSFT", 5_000, quantity_type=QuantityKind.CASH)
    handle.order_target_weights({"A": 0.3, "B": 0.2}, tag="rebalance")
    handle.close_position("C")

    pending = handle.pending()
    assert [(i.symbol, i.kind, i.side) for i in pending] == [
        ("AAPL", QuantityKind.COUNT, Side.BUY),
        ("MSFT", QuantityKind.CASH, Side.SELL),
        ("A", QuantityKind.WEIGHT, None),
        ("B", QuantityKind.WEIGHT, None),
        ("C", QuantityKind.WEIGHT, None),
    ]
    assert pending[2].tag == "rebalance"
    assert pending[4].amount == 0.0
    assert handle.drain() == pending
    assert handle.pending() == []
