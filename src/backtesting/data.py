from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .errors import DataError
from .types import BarFrame, BarSnapshot, Timestamp

_PRICE_FIELDS = ("open", "high", "low", "close", "volume", "vwap", "amount")

BarSet = Mapping[str, BarSnapshot]

_EMPTY: Mapping[str, Mapping[str, float]] = MappingProxyType({})


def _optional(value) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def _check_order(timestamps: Sequence[Timestamp]) -> None:
    for previous, current in zip(timestamps, timestamps[1:]):
        if not current > previous:
            raise DataError(f"bar timestamps must strictly increase: {previous} then {current}")


class BarFeed:
    """Ordered bar timeline: one mapping of symbol -> BarSnapshot per timestamp.

    A symbol missing from a bar's mapping is halted or has no data for that
    bar; the feed never carries stale prices forward.
    """

    def __init__(self, bars: Sequence[Tuple[Timestamp, BarSet]]) -> None:
        _check_order([ts for ts, _ in bars])
        self._bars: List[Tuple[Timestamp, BarSet]] = [
            (ts, MappingProxyType(dict(snapshots))) for ts, snapshots in bars
        ]

    @classmethod
    def from_frame(cls, df: BarFrame) -> "BarFeed":
        """Build from a long frame with ``timestamp``, ``symbol`` and price columns.

        Rows whose close is NaN are dropped, so that symbol is absent for the bar.
        """
        missing = {"timestamp", "symbol", "close"} - set(df.columns)
        if missing:
            raise DataError(f"bar frame is missing columns: {sorted(missing)}")

        frame = df.copy()
        frame["timestamp"] = pd.to_datetime(frame["timestamp"])
        if frame.duplicated(subset=["timestamp", "symbol"]).any():
            raise DataError("bar frame has duplicate (timestamp, symbol) rows")
        frame = frame.dropna(subset=["close"]).sort_values(["timestamp", "symbol"], kind="stable")

        fields = [f for f in _PRICE_FIELDS if f in frame.columns]
        bars: List[Tuple[Timestamp, BarSet]] = []
        for ts, group in frame.groupby("timestamp", sort=True):
            snapshots: Dict[str, BarSnapshot] = {}
            for row in group.itertuples(index=False):
                values = {f: _optional(getattr(row, f)) for f in fields}
                symbol = str(row.symbol)
                snapshots[symbol] = BarSnapshot(symbol=symbol, timestamp=ts, **values)
            bars.append((ts, snapshots))
        return cls(bars)

    @property
    def symbols(self) -> List[str]:
        seen = set()
        for _, snapshots in self._bars:
            seen.update(snapshots)
        return sorted(seen)

    @property
    def timestamps(self) -> List[Timestamp]:
        return [ts for ts, _ in self._bars]

    def __iter__(self) -> Iterator[Tuple[Timestamp, BarSet]]:
        return iter(self._bars)

    def __len__(self) -> int:
        return len(self._bars)


class IndicatorTable:
    """Precomputed indicator values: timestamp -> name -> symbol -> value.

    Built in full before the run; lookups return read-only views.
    """

    def __init__(self, values: Mapping[Timestamp, Mapping[str, Mapping[str, float]]]) -> None:
        self._values: Dict[Timestamp, Mapping[str, Mapping[str, float]]] = {
            ts: MappingProxyType({name: MappingProxyType(dict(per_symbol)) for name, per_symbol in by_name.items()})
            for ts, by_name in values.items()
        }

    @classmethod
    def from_frame(cls, df: pd.DataFrame, columns: Optional[Sequence[str]] = None) -> "IndicatorTable":
        """Index indicator columns of a long frame keyed by ``timestamp`` and ``symbol``."""
        frame = df.copy()
        frame["timestamp"] = pd.to_datetime(frame["timestamp"])
        names = list(columns) if columns is not None else [
            c for c in frame.columns if c not in ("timestamp", "symbol") and c not in _PRICE_FIELDS
        ]
        values: Dict[Timestamp, Dict[str, Dict[str, float]]] = {}
        for ts, group in frame.groupby("timestamp", sort=True):
            by_name: Dict[str, Dict[str, float]] = {}
            for name in names:
                series = group.set_index("symbol")[name].dropna()
                by_name[name] = {str(s): float(v) for s, v in series.items()}
            values[ts] = by_name
        return cls(values)

    @classmethod
    def empty(cls) -> "IndicatorTable":
        return cls({})

    def at(self, timestamp: Timestamp) -> Mapping[str, Mapping[str, float]]:
        return self._values.get(timestamp, _EMPTY)
