from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple, TypedDict, Union

import pandas as pd


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class QuantityKind(str, Enum):
    """How an intent's amount is interpreted."""

    COUNT = "count"
    CASH = "cash"
    WEIGHT = "weight"


class ExecutionMode(str, Enum):
    CLOSE = "close"
    OPEN = "open"
    VWAP = "vwap"


class RejectReason(str, Enum):
    INVALID_INTENT = "invalid_intent"
    SETTLEMENT_VIOLATION = "settlement_violation"
    INSUFFICIENT_CASH = "insufficient_cash"
    INSUFFICIENT_POSITION = "insufficient_position"
    DATA_GAP = "data_gap"
    SHORT_NOT_ALLOWED = "short_not_allowed"


Timestamp = Union[datetime, pd.Timestamp]


@dataclass(frozen=True)
class BarSnapshot:
    """One symbol's market data for one bar. Only ``close`` is required."""

    symbol: str
    timestamp: Timestamp
    close: float
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    volume: Optional[float] = None
    vwap: Optional[float] = None
    amount: Optional[float] = None


@dataclass(frozen=True)
class Lot:
    """Quantity of a symbol acquired on one bar at one cost basis."""

    symbol: str
    quantity: int
    acquired_at: Timestamp
    cost: float


@dataclass(frozen=True)
class OrderIntent:
    """A strategy's request, before it is turned into units.

    ``side`` is ignored for weight intents, where the direction follows from
    the target. ``kind`` stays a plain string when the strategy supplied a
    value that is not a known quantity kind, so that it can be rejected
    with a reason instead of being dropped.
    """

    symbol: str
    amount: float
    kind: Union[QuantityKind, str] = QuantityKind.COUNT
    side: Optional[Side] = None
    tag: str = ""


@dataclass(frozen=True)
class OrderBatch:
    """Several (symbol, amount) pairs sharing one side and quantity kind."""

    entries: Tuple[Tuple[str, float], ...]
    kind: Union[QuantityKind, str] = QuantityKind.WEIGHT
    side: Optional[Side] = None
    tag: str = ""

    def expand(self) -> List[OrderIntent]:
        return [
            OrderIntent(symbol=symbol, amount=amount, kind=self.kind, side=self.side, tag=self.tag)
            for symbol, amount in self.entries
        ]

    def __iter__(self) -> Iterator[OrderIntent]:
        return iter(self.expand())


@dataclass(frozen=True)
class ResolvedOrder:
    symbol: str
    side: Side
    quantity: int
    timestamp: Timestamp
    kind: QuantityKind = QuantityKind.COUNT
    requested_amount: float = 0.0
    sequence: int = 0
    tag: str = ""


@dataclass(frozen=True)
class Fill:
    """An executed order, or a rejection when ``reason`` is set.

    Rejections carry ``quantity == 0`` and never touch the ledger. A weight
    intent rejected before its direction was known has ``side=None``.
    """

    order_id: int
    timestamp: Timestamp
    symbol: str
    side: Optional[Side]
    quantity: int
    price: float
    fee: float
    requested_quantity: float = 0.0
    reason: Optional[RejectReason] = None
    message: str = ""
    realized_pnl: float = 0.0
    tag: str = ""

    @property
    def is_rejected(self) -> bool:
        return self.reason is not None

    @property
    def status(self) -> str:
        return "rejected" if self.is_rejected else "filled"

    @property
    def notional(self) -> float:
        return self.quantity * self.price

    @property
    def cash_delta(self) -> float:
        if self.is_rejected:
            return 0.0
        if self.side == Side.BUY:
            return -(self.notional + self.fee)
        return self.notional - self.fee

    def as_dict(self) -> Dict[str, object]:
        return {
            "order_id": self.order_id,
            "timestamp": self.timestamp,
            "symbol": self.symbol,
            "side": self.side.value if self.side is not None else None,
            "quantity": self.quantity,
            "price": self.price,
            "fee": self.fee,
            "notional": self.notional,
            "requested_quantity": self.requested_quantity,
            "status": self.status,
            "reason": self.reason.value if self.reason is not None else None,
            "message": self.message,
            "realized_pnl": self.realized_pnl,
            "tag": self.tag,
        }


@dataclass
class Position:
    """Mutable per-symbol ledger entry owned by Portfolio."""

    symbol: str
    quantity: int = 0
    avg_cost: float = 0.0
    realized_pnl: float = 0.0
    lots: List[Lot] = field(default_factory=list)


class PositionState(TypedDict):
    """Represents per-symbol position state in a portfolio snapshot."""

    quantity: int
    avg_cost: Optional[float]
    realized_pnl: float
    lots: List[Lot]


class PortfolioSnapshot(TypedDict):
    cash: float
    equity: float
    total_fees: float
    positions: Dict[str, PositionState]
    last_prices: Dict[str, float]


class EquityPoint(TypedDict):
    timestamp: Timestamp
    equity: float
    cash: float
    market_value: float
    peak: float
    drawdown: float
    gross_exposure: float


class PerformanceMetrics(TypedDict, total=False):
    """Summary statistics over the equity curve and trade log.

    Values are optional because short runs cannot support every ratio.
    """

    initial_cash: float
    final_equity: Optional[float]
    total_return: Optional[float]
    annualized_return: Optional[float]
    volatility: Optional[float]
    sharpe_ratio: Optional[float]
    sortino_ratio: Optional[float]
    max_drawdown: Optional[float]
    max_drawdown_date: Optional[str]
    trade_count: int
    rejected_count: int
    win_rate: Optional[float]
    total_fees: float
    turnover: Optional[float]
    bars: int
    benchmark_return: Optional[float]
    excess_return: Optional[float]
    gross_exposure: float
    cash_weight: float
    open_positions: int


# DataFrame alias for clarity in interfaces
BarFrame = pd.DataFrame
