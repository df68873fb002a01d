"""Domain layer."""
