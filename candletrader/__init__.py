"""Single-symbol candlestick trading pipeline."""

__version__ = "0.4.0"
