from __future__ import annotations

from typing import Dict, Mapping

from .portfolio import Portfolio


def calculate_portfolio_value(portfolio: Portfolio, current_prices: Mapping[str, float]) -> float:
    """Compute total portfolio value.

    total_value = cash + sum(quantity * price); a symbol missing from
    ``current_prices`` is valued at the portfolio's last mark.
    """
    total_value = portfolio.get_cash()
    for symbol, pos in portfolio.get_positions().items():
        if pos.quantity == 0:
            continue
        price = current_prices.get(symbol, portfolio.get_last_price(symbol))
        if price is None:
            raise KeyError(f"no price available for {symbol}")
        total_value += pos.quantity * float(price)
    return total_value


def compute_exposures(portfolio: Portfolio, current_prices: Mapping[str, float]) -> Dict[str, float]:
    """Gross exposure, cash weight and open position count as fractions of equity."""
    total_value = calculate_portfolio_value(portfolio, current_prices)
    position_value = total_value - portfolio.get_cash()
    open_positions = sum(1 for p in portfolio.get_positions().values() if p.quantity > 0)
    if total_value > 1e-9:
        gross = position_value / total_value
        cash_weight = portfolio.get_cash() / total_value
    else:
        gross = 0.0
        cash_weight = 0.0
    return {
        "gross_exposure": gross,
        "cash_weight": cash_weight,
        "position_value": position_value,
        "open_positions": float(open_positions),
    }

