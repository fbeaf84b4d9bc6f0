from __future__ import annotations

import math
from typing import Mapping, Optional

from .types import BarSnapshot


class BenchmarkCalculator:
    """Buy-and-hold return of one symbol over the bars observed so far."""

    def __init__(self, symbol: Optional[str]) -> None:
        self.symbol = symbol
        self._first_close: Optional[float] = None
        self._last_close: Optional[float] = None

    def observe(self, bars: Mapping[str, BarSnapshot]) -> None:
        if self.symbol is None:
            return
        bar = bars.get(self.symbol)
        if bar is None or bar.close is None or not math.isfinite(bar.close) or bar.close <= 0:
            return
        if self._first_close is None:
            self._first_close = float(bar.close)
        self._last_close = float(bar.close)

    @property
    def last_price(self) -> Optional[float]:
        return self._last_close

    def get_return(self) -> Optional[float]:
        """Return is last_close / first_close - 1, or None if nothing was observed."""
        if self._first_close is None or self._last_close is None:
            return None
        return self._last_close / self._first_close - 1.0

    def get_return_pct(self) -> Optional[float]:
        r = self.get_return()
        return r * 100.0 if r is not None else None
