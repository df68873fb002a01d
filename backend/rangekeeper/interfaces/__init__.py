"""Interface layer."""
