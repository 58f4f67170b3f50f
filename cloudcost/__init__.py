"""Cloud cost opportunity scanner core."""

__version__ = "0.1.0"
