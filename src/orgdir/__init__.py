"""Organization directory service with permission-gated full-text search."""

__version__ = "0.1.0"
