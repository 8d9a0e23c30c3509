"""Wafer image alignment tooling: test data, structured logging, metrics and a results dashboard."""

__version__ = "0.1.0"