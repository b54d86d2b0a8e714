"""Deposit protection registration core."""

__version__ = "0.1.0"
