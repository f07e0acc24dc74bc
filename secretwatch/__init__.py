"""Detect credentials embedded in JavaScript delivered to browser tabs."""

__version__ = "0.3.0"
