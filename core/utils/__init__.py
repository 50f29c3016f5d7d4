"""
Core Utilities Package

This package contains utility functions and helpers used throughout the application.

Modules:
    - time: Timestamp parsing/normalization and the millisecond clock
"""

from core.utils.time import to_utc_datetime, parse_timestamp, now_ms

__all__ = ["to_utc_datetime", "parse_timestamp", "now_ms"]
