"""Local data engine for a trading dashboard."""

__version__ = "0.1.0"
