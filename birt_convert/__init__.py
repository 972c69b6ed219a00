"""Decimal-hour to clock-time conversion for time-tracking exports."""

__version__ = "0.3.0"
