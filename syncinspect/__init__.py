"""Rule selection, configuration, reports, file watching and TLS helpers for table consistency checks."""

__version__ = "0.1.0"
__all__ = ["config", "report", "security", "selector", "utils", "watcher"]