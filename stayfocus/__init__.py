"""StayFocus: simulation history, statistics and offline sync."""

__version__ = "1.0.0"
