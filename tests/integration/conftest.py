"""Integration test fixtures and configuration.

This module provides fixtures for integration tests:
- A workspace with an SSL directory and matching config file
- A CLI runner wired to a fake ACME client and pooled keys
"""

import json
from pathlib import Path
from typing import Callable, Dict, Optional

import pytest
from click.testing import CliRunner, Result

from milou_ssl.cli.main import cli
from milou_ssl.tls.policy import LifecyclePolicy


@pytest.fixture
def workspace(tmp_path: Path) -> Dict[str, Path]:
    """
    Create a workspace with ssl/, legacy/ and a config file.

    Returns:
        Dict with "root", "ssl", "legacy", "config" and "log" paths.
    """
    paths = {
        "root": tmp_path,
        "ssl": tmp_path / "ssl",
        "legacy": tmp_path / "legacy",
        "config": tmp_path / "config.json",
        "log": tmp_path / "logs" / "milou-ssl.log",
    }
    paths["config"].write_text(
        json.dumps(
            {
                "ssl": {
                    "domain": "localhost",
                    "ssl_path": str(paths["ssl"]),
                    "legacy_locations": [str(paths["legacy"])],
                },
                "logging": {"level": "ERROR", "log_file": str(paths["log"])},
            }
        )
    )
    return paths


@pytest.fixture
def run_cli(workspace, generator, fake_acme, acquirer_factory) -> Callable[..., Result]:
    """Return a helper running milou-ssl against the workspace."""
    runner = CliRunner()
    acquirer = acquirer_factory(fake_acme)

    def run(*args: str, input: Optional[str] = None) -> Result:
        return runner.invoke(
            cli,
            ["--config", str(workspace["config"]), *args],
            obj={"policy_factory": lambda config: LifecyclePolicy(generator, acquirer)},
            input=input,
        )

    return run
