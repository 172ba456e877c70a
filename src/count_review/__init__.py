"""Offline-resilient client for the inventory count review server."""

__version__ = "0.1.0"
