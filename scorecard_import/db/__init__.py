"""Persistence: store protocol, PostgreSQL adapter and in-memory store."""
