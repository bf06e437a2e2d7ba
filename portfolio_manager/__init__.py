"""Crypto portfolio accounting service."""

__version__ = "0.1.0"
