"""Persistence: engine, ORM models, repository."""
