"""HTTP layer for the portfolio manager."""
