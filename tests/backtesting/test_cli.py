import argparse
import signal

import pytest

from src.backtesting.cli import load_bars, main, parse_symbols, parse_weights
from src.backtesting.engine import BacktestEngine


@pytest.fixture()
def bars_csv(tmp_path, bar_frame_factory):
    path = tmp_path / "bars.csv"
    bar_frame_factory({"A": [10.0, 11.0, 12.0, 11.5], "B": [20.0, 19.0, 21.0, 22.0]}).to_csv(path, index=False)
    return str(path)


def test_parse_symbols_and_weights():
    assert parse_symbols(" A, B ,,C") == ["A", "B", "C"]
    assert parse_symbols(None) == []
    assert parse_weights("A=0.5,B=0.25") == {"A": 0.5, "B": 0.25}
    with pytest.raises(argparse.ArgumentTypeError):
        parse_weights("A")


def test_load_bars_date_window(bars_csv):
    df = load_bars(bars_csv, start_date="2024-03-04", end_date="2024-03-05", months_back=None)
    assert sorted(df["timestamp"].dt.strftime("%Y-%m-%d").unique()) == ["2024-03-04", "2024-03-05"]

    df = load_bars(bars_csv, start_date=None, end_date=None, months_back=1)
    assert len(df) == 8


def test_main_runs_and_prints_summary(bars_csv, capsys):
    code = main(["--bars", bars_csv, "--weights", "A=0.4,B=0.4", "--commission", "0.001", "--benchmark", "B"])
    out = capsys.readouterr().out
    assert code == 0
    assert "Backtest completed successfully!" in out
    assert "BACKTEST SUMMARY" in out
    assert "Benchmark Return" in out


@pytest.mark.parametrize("extra", [
    ["--weights", "A"],
    ["--weights", "A=0.5", "--slippage", "2"],
    ["--weights", "A=0.5", "--lot-size", "0"],
])
def test_main_reports_bad_input(bars_csv, capsys, extra):
    code = main(["--bars", bars_csv, *extra])
    assert code == 1
    assert "Cannot start backtest" in capsys.readouterr().out


def test_main_missing_file(tmp_path, capsys):
    assert main(["--bars", str(tmp_path / "nope.csv"), "--weights", "A=1"]) == 1


def test_interrupt_stops_only_between_bars(bars_csv, capsys, monkeypatch):
    original_step = BacktestEngine.step
    started, finished, recorded = [], [], []

    def step(self, timestamp, bars):
        started.append(timestamp)
        if len(started) == 2:
            signal.raise_signal(signal.SIGINT)
        fills = original_step(self, timestamp, bars)
        finished.append(timestamp)
        recorded.append(len(self.get_portfolio_values()))
        return fills

    monkeypatch.setattr(BacktestEngine, "step", step)
    handler = signal.getsignal(signal.SIGINT)

    code = main(["--bars", bars_csv, "--weights", "A=0.5"])
    out = capsys.readouterr().out

    assert code == 0
    assert "Backtest interrupted by user." in out
    assert "Partial results available." in out
    # The interrupted bar ran to completion and nothing after it started
    assert started == finished
    assert recorded == [1, 2]
    assert signal.getsignal(signal.SIGINT) is handler
