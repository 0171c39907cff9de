"""Messaging application layer: ports, services, DTOs and use cases."""
