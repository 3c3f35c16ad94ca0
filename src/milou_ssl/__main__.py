"""Entry point for running milou_ssl as a module.

This allows the package to be executed as:
    python -m milou_ssl
"""

from milou_ssl.cli.main import cli

if __name__ == "__main__":
    cli()
