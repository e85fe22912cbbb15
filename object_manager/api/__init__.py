"""Transport adapters for the HTTP layer."""
