import pandas as pd
from colorama import Fore

from src.backtesting.output import OutputBuilder
from src.backtesting.types import Fill, RejectReason, Side


def _curve():
    return [
        {"timestamp": pd.Timestamp("2024-01-02"), "equity": 100.0, "cash": 100.0, "market_value": 0.0,
         "peak": 100.0, "drawdown": 0.0, "gross_exposure": 0.0},
        {"timestamp": pd.Timestamp("2024-01-03"), "equity": 95.0, "cash": 45.0, "market_value": 50.0,
         "peak": 100.0, "drawdown": 0.05, "gross_exposure": 50.0 / 95.0},
    ]


def _log(day):
    return [
        Fill(order_id=1, timestamp=day, symbol="AAPL", side=Side.BUY, quantity=5, price=10.0, fee=0.5,
             requested_quantity=5.0),
        Fill(order_id=2, timestamp=day, symbol="MSFT", side=Side.BUY, quantity=0, price=0.0, fee=0.0,
             requested_quantity=100.0, reason=RejectReason.INSUFFICIENT_CASH, message="requires 1000.00"),
    ]


def test_build_result_splits_trades_and_rejections(day1):
    result = OutputBuilder().build_result(
        curve=_curve(), trade_log=_log(day1), metrics={"final_equity": 95.0}, state={"k": 1},
    )
    assert list(result.equity_curve.index) == [pd.Timestamp("2024-01-02"), pd.Timestamp("2024-01-03")]
    assert result.equity_curve["equity"].tolist() == [100.0, 95.0]

    assert result.trades["symbol"].tolist() == ["AAPL"]
    assert result.trades.loc[0, "notional"] == 50.0
    assert result.trades.loc[0, "status"] == "filled"

    assert result.rejections["symbol"].tolist() == ["MSFT"]
    assert result.rejections.loc[0, "reason"] == "insufficient_cash"
    assert result.final_equity == 95.0
    assert result.state == {"k": 1}


def test_empty_frames_keep_columns():
    builder = OutputBuilder()
    assert builder.build_equity_frame([]).empty
    trades = builder.build_trade_frame([])
    assert trades.empty
    assert {"order_id", "symbol", "side", "quantity", "price", "fee", "reason"} <= set(trades.columns)


def test_format_summary_colors_returns():
    builder = OutputBuilder()
    lines = builder.format_summary({
        "total_return": -0.05,
        "final_equity": 95.0,
        "max_drawdown": 0.05,
        "max_drawdown_date": "2024-01-03",
        "trade_count": 1,
        "rejected_count": 1,
        "total_fees": 0.5,
    })
    assert "BACKTEST SUMMARY" in lines[0]
    assert any(line.startswith("Total Return:") and Fore.RED in line and "-5.00%" in line for line in lines)
    assert any("Max DD:" in line and "2024-01-03" in line for line in lines)
    assert "Trades: 1 (rejected 1)" in lines


def test_print_summary(capsys):
    OutputBuilder().print_summary({"total_return": 0.1, "trade_count": 0, "total_fees": 0.0})
    out = capsys.readouterr().out
    assert "10.00%" in out
    assert "Trades: 0 (rejected 0)" in out


def test_format_summary_shows_exposure():
    lines = OutputBuilder().format_summary({"trade_count": 0, "gross_exposure": 0.6, "cash_weight": 0.4})
    assert "Exposure: 60.0% invested, 40.0% cash" in lines
    assert not any(line.startswith("Exposure:") for line in OutputBuilder().format_summary({"trade_count": 0}))
