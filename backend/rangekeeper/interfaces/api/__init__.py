"""HTTP API."""
