import pytest

from src.backtesting.errors import LedgerError
from src.backtesting.portfolio import Portfolio
from src.backtesting.types import Fill, RejectReason, Side


def test_apply_buy_basic(portfolio: Portfolio, fill_factory) -> None:
    portfolio.apply(fill_factory("AAPL", "buy", 100, 50.0, fee=5.0))
    snap = portfolio.get_snapshot()
    assert snap["positions"]["AAPL"]["quantity"] == 100
    assert snap["positions"]["AAPL"]["avg_cost"] == pytest.approx(50.0)
    # cash reduced by 5,000 notional plus 5 fee
    assert snap["cash"] == pytest.approx(94_995.0)
    assert snap["total_fees"] == pytest.approx(5.0)


def test_apply_buy_volume_weighted_average_cost(portfolio: Portfolio, fill_factory) -> None:
    portfolio.apply(fill_factory("AAPL", "buy", 100, 50.0))
    portfolio.apply(fill_factory("AAPL", "buy", 300, 70.0))
    # (100*50 + 300*70) / 400 = 65
    assert portfolio.get_avg_cost("AAPL") == pytest.approx(65.0)
    assert portfolio.get_quantity("AAPL") == 400
    assert len(portfolio.get_lots("AAPL")) == 2


def test_apply_sell_realizes_pnl_without_changing_avg_cost(portfolio: Portfolio, fill_factory, day2) -> None:
    portfolio.apply(fill_factory("AAPL", "buy", 100, 50.0))
    portfolio.apply(fill_factory("AAPL", "sell", 40, 60.0, fee=2.0, timestamp=day2))
    assert portfolio.get_quantity("AAPL") == 60
    assert portfolio.get_avg_cost("AAPL") == pytest.approx(50.0)
    assert portfolio.get_realized_pnl("AAPL") == pytest.approx(400.0)
    # 100k - 5,000 + 2,400 - 2
    assert portfolio.get_cash() == pytest.approx(97_398.0)


def test_full_sell_leaves_avg_cost_undefined(portfolio: Portfolio, fill_factory, day2) -> None:
    portfolio.apply(fill_factory("AAPL", "buy", 100, 50.0))
    portfolio.apply(fill_factory("AAPL", "sell", 100, 60.0, timestamp=day2))
    snap = portfolio.get_snapshot()
    assert snap["positions"]["AAPL"]["quantity"] == 0
    assert snap["positions"]["AAPL"]["avg_cost"] is None
    assert portfolio.get_avg_cost("AAPL") is None
    assert portfolio.get_lots("AAPL") == []
    assert snap["cash"] == pytest.approx(101_000.0)


def test_sell_consumes_oldest_lots_first(portfolio: Portfolio, fill_factory, day1, day2) -> None:
    portfolio.apply(fill_factory("AAPL", "buy", 100, 50.0, timestamp=day1))
    portfolio.apply(fill_factory("AAPL", "buy", 50, 55.0, timestamp=day2))
    portfolio.apply(fill_factory("AAPL", "sell", 120, 60.0, timestamp=day2))
    lots = portfolio.get_lots("AAPL")
    assert len(lots) == 1
    assert lots[0].acquired_at == day2
    assert lots[0].quantity == 30


def test_overdraw_raises_ledger_error(fill_factory) -> None:
    p = Portfolio(initial_cash=1_000.0)
    with pytest.raises(LedgerError):
        p.apply(fill_factory("AAPL", "buy", 20, 100.0))
    assert p.get_cash() == 1_000.0
    assert p.get_quantity("AAPL") == 0


def test_sell_more_than_held_raises(portfolio: Portfolio, fill_factory) -> None:
    portfolio.apply(fill_factory("AAPL", "buy", 10, 100.0))
    with pytest.raises(LedgerError):
        portfolio.apply(fill_factory("AAPL", "sell", 11, 100.0))
    assert portfolio.get_quantity("AAPL") == 10


def test_rejection_fill_is_ignored(portfolio: Portfolio, day1) -> None:
    before = portfolio.get_snapshot()
    portfolio.apply(
        Fill(
            order_id=1,
            timestamp=day1,
            symbol="AAPL",
            side=Side.BUY,
            quantity=0,
            price=0.0,
            fee=0.0,
            reason=RejectReason.INSUFFICIENT_CASH,
        )
    )
    assert portfolio.get_snapshot() == before


def test_equity_and_weight_follow_marks(portfolio: Portfolio, fill_factory) -> None:
    portfolio.apply(fill_factory("AAPL", "buy", 100, 100.0))
    portfolio.update_prices({"AAPL": 110.0})
    assert portfolio.get_equity() == pytest.approx(90_000.0 + 11_000.0)
    assert portfolio.get_weight("AAPL") == pytest.approx(11_000.0 / 101_000.0)
    assert portfolio.get_unrealized_pnl("AAPL") == pytest.approx(1_000.0)


def test_spending_all_cash_does_not_go_negative(fill_factory) -> None:
    p = Portfolio(initial_cash=1_000.0)
    p.apply(fill_factory("AAPL", "buy", 3, 333.3333333333333, fee=0.0000000001))
    assert p.get_cash() >= 0.0


def test_invalid_initial_cash() -> None:
    with pytest.raises(LedgerError):
        Portfolio(initial_cash=0.0)
