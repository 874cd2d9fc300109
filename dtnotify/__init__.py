"""Report CI build lifecycle events to a monitoring server's events API."""

__version__ = "0.1.0"
