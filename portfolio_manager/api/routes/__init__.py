"""API routers."""

from . import capital, market, orders, portfolio

__all__ = ["capital", "market", "orders", "portfolio"]
