# hybrid_users/__init__.py
# Offline-first user directory: local SQLite store kept in sync with a remote user service.

__version__ = "0.1.0"
