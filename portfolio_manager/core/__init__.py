"""Configuration, logging and telemetry for the portfolio manager."""
