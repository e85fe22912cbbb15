"""Database configuration, dependencies and repositories."""
