"""Candle duplicate-merge and open-continuity repair job."""

__version__ = "0.1.0"
