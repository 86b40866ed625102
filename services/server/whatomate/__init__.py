"""Whatomate server: deployment-aware config and backend bootstrap."""

__version__ = "0.1.0"
