"""Appointment confirmation dispatch and messaging reconciliation service."""

__version__ = "0.1.0"
