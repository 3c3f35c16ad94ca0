"""Milou SSL - TLS certificate lifecycle manager."""

__version__ = "0.1.0"
