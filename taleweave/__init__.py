"""Taleweave narrative session engine."""

__version__ = "0.3.0"
