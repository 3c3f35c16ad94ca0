"""Command line interface for Milou SSL."""
