"""Persistence layer: models, engine, sessions and tenant-scoped repositories."""
