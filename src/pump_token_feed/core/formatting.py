from __future__ import annotations


def format_usd_fixed(value: float, digits: int) -> str:
    return f"${value:.{digits}f}"


def format_usd_grouped(value: float) -> str:
    """Thousands-grouped dollar amount with at most three fraction digits (`$12,345.67`)."""
    text = f"{value:,.3f}".rstrip("0").rstrip(".")
    return f"${text}"


def format_price(value: float) -> str:
    if value == 0:
        return "$0.00"
    if value < 0.000001:
        return f"${value:.2e}"
    if value < 0.01:
        return f"${value:.6f}"
    if value < 1:
        return f"${value:.4f}"
    return f"${value:.2f}"


def format_market_cap(value: float) -> str:
    if value == 0:
        return "$0"
    if value >= 1_000_000:
        return f"${value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"${value / 1_000:.1f}K"
    return f"${value:.0f}"


def format_percent_change(value: float) -> str:
    sign = "+" if value > 0 else ""
    return f"{sign}{value:.2f}%"
