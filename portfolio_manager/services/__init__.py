"""Domain services for the portfolio manager."""
