"""Application wiring: container, lifecycle and app factory."""
