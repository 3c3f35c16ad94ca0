"""
Integration tests package.

Contains tests that run the lifecycle policy, certificate store and CLI
together against a temporary SSL directory.
"""
