"""Rangekeeper - lifecycle manager for cyber-range resources."""

__version__ = "0.1.0"
