"""Shared building blocks: errors, ports (Protocols), SQLite helpers, app state."""
