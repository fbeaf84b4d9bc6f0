from __future__ import annotations

from typing import Any, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ConfigurationError
from .types import ExecutionMode


class RunConfig(BaseModel):
    """Immutable settings for one backtest run.

    Built once before the loop and passed explicitly to every component
    that needs it. Every symbol outside ``t0_symbols`` settles T+1.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    initial_cash: float = Field(gt=0, description="Starting cash balance")
    slippage: float = Field(default=0.0, ge=0, lt=1, description="Adverse fractional price adjustment")
    commission: float = Field(default=0.0, ge=0, lt=1, description="Fee as a fraction of notional")
    min_commission: float = Field(default=0.0, ge=0, description="Fee floor for any non-zero fill")
    execution_mode: ExecutionMode = ExecutionMode.CLOSE
    lot_size: int = Field(default=1, ge=1)
    t0_symbols: FrozenSet[str] = frozenset()
    t1_symbols: FrozenSet[str] = frozenset()
    max_position_weight: Optional[float] = Field(default=None, gt=0, le=1)
    benchmark: Optional[str] = None
    max_order_rounds: int = Field(default=3, ge=1, description="Order passes allowed within a single bar")
    annual_trading_days: int = Field(default=252, gt=0)
    annual_rf_rate: float = 0.0

    @model_validator(mode="after")
    def _check_settlement_sets(self) -> "RunConfig":
        overlap = self.t0_symbols & self.t1_symbols
        if overlap:
            raise ValueError(f"symbols declared both T+0 and T+1: {sorted(overlap)}")
        return self

    def is_t0(self, symbol: str) -> bool:
        return symbol in self.t0_symbols


def load_run_config(**kwargs: Any) -> RunConfig:
    """Validate keyword settings into a RunConfig, raising ConfigurationError."""
    try:
        return RunConfig(**kwargs)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e
