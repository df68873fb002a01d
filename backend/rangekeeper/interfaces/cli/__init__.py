"""Rangekeeper command line tools."""
