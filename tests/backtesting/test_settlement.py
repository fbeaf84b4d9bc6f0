from src.backtesting.config import RunConfig
from src.backtesting.settlement import LotState, SettlementRule
from src.backtesting.types import Lot


def _lot(symbol, quantity, ts):
    return Lot(symbol=symbol, quantity=quantity, acquired_at=ts, cost=10.0)


def test_lot_ages_by_one_bar(settlement, day1, day2):
    lot = _lot("AAPL", 100, day1)
    assert settlement.lot_state(lot, day1) is LotState.ACQUIRED_TODAY
    assert settlement.lot_state(lot, day2) is LotState.SETTLED


def test_t1_symbol_excludes_same_day_lots(settlement, day1, day2):
    lots = [_lot("AAPL", 100, day1), _lot("AAPL", 50, day2)]
    assert settlement.sellable_quantity("AAPL", lots, day2) == 100
    assert settlement.unsettled_quantity("AAPL", lots, day2) == 50
    assert settlement.can_sell(lots[1], day2) is False


def test_t0_symbol_sells_same_day(day1):
    rule = SettlementRule(RunConfig(initial_cash=1.0, t0_symbols={"ETF"}))
    lots = [_lot("ETF", 100, day1)]
    assert rule.is_t0("ETF")
    assert rule.sellable_quantity("ETF", lots, day1) == 100
    assert rule.unsettled_quantity("ETF", lots, day1) == 0
    assert not rule.is_t0("AAPL")
