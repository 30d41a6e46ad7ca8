"""Proxy BuildKit content-store, build-context and export traffic as packets over a supplied transport."""

__version__ = "0.1.0"