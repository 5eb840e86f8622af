"""Self-hosted blog core: visitor access control, TTL cache, uploads, pagination."""

__version__ = "0.1.0"
