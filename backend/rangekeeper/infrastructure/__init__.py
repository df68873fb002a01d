"""Infrastructure layer: registry, persistence and orchestration."""
