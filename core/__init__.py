"""Shared infrastructure: paths, settings, SQLite helpers and logging."""
