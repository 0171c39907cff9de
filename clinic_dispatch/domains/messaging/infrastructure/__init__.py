"""Messaging infrastructure: persistence, channels, schedulers and activity log."""
