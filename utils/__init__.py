"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, unix_time, seconds_since
