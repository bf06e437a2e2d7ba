"""Declarative base shared by the portfolio, ledger and watchlist tables."""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for the portfolio manager models."""
