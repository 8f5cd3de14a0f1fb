"""
Utility modules for the recurring events engine.

This package contains shared utilities used across the engine:
- calendar: UTC instant comparison, weekday and interval stepping, clocks
- logging_config: Structured logging (console in development, JSON in production)
"""

from recurring_events.src.utils.calendar import (
    Clock,
    Comparison,
    FixedClock,
    InvalidDate,
    SystemClock,
    add_interval,
    compare_instant,
    next_matching_weekday,
    to_utc,
)
from recurring_events.src.utils.logging_config import get_logger, init_logging

__all__ = [
    "Clock",
    "Comparison",
    "FixedClock",
    "InvalidDate",
    "SystemClock",
    "add_interval",
    "compare_instant",
    "next_matching_weekday",
    "to_utc",
    "get_logger",
    "init_logging",
]
