"""Unit tests for CLI commands.

This module tests the command-line interface for milou-ssl including the main
group, the ssl and container command groups, and option handling. Commands run
against a temporary SSL directory with a fake ACME client and pooled keys.
"""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from milou_ssl.cli.main import cli
from milou_ssl.tls.policy import LifecyclePolicy
from milou_ssl.tls.store import CertificateStore
from milou_ssl.utils.exceptions import AcquisitionFailedError


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a config file pointing at tmp_path/ssl."""
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "ssl": {
                    "domain": "localhost",
                    "ssl_path": str(tmp_path / "ssl"),
                    "legacy_locations": [],
                },
                "logging": {"level": "ERROR", "log_file": str(tmp_path / "logs" / "test.log")},
            }
        )
    )
    return path


@pytest.fixture
def invoke(config_file, generator, fake_acme, acquirer_factory):
    """Return a helper invoking the CLI with the test config and fake policy."""
    runner = CliRunner()
    acquirer = acquirer_factory(fake_acme)

    def run(*args, input=None):
        return runner.invoke(
            cli,
            ["--config", str(config_file), *args],
            obj={"policy_factory": lambda config: LifecyclePolicy(generator, acquirer)},
            input=input,
        )

    return run


@pytest.fixture
def store(tmp_path: Path) -> CertificateStore:
    return CertificateStore(tmp_path / "ssl")


def _json(output: str) -> dict:
    return json.loads(output[output.index("{"):])


class TestMainCLI:
    """Test cases for main CLI entry point."""

    def test_cli_help(self):
        """Test main CLI help output."""
        # Arrange
        runner = CliRunner()

        # Act
        result = runner.invoke(cli, ["--help"])

        # Assert
        assert result.exit_code == 0
        assert "Milou SSL" in result.output
        assert "--verbose" in result.output
        assert "ssl" in result.output
        assert "container" in result.output

    def test_cli_version(self):
        """Test --version displays the program name and version."""
        result = CliRunner().invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "milou-ssl" in result.output
        assert "version" in result.output.lower()

    def test_cli_version_command(self, invoke):
        """Test explicit version command."""
        result = invoke("version")

        assert result.exit_code == 0
        assert "milou-ssl version" in result.output

    def test_verbose_flag_configures_logging(self, config_file):
        """Test --verbose flag enables DEBUG logging."""
        with patch("milou_ssl.cli.main.configure_logging") as mock_config:
            result = CliRunner().invoke(
                cli, ["--config", str(config_file), "--verbose", "ssl", "--help"]
            )

        assert result.exit_code == 0
        assert mock_config.call_args[1]["level"] == "DEBUG"

    def test_redact_secrets_flag(self, config_file):
        """Test --redact-secrets is passed to logging configuration."""
        with patch("milou_ssl.cli.main.configure_logging") as mock_config:
            CliRunner().invoke(
                cli, ["--config", str(config_file), "--redact-secrets", "ssl", "--help"]
            )

        assert mock_config.call_args[1]["redact_secrets"] is True

    def test_invalid_config(self, tmp_path):
        """Test an invalid config file exits with status 1."""
        bad = tmp_path / "bad.json"
        bad.write_text("{not json")

        result = CliRunner().invoke(cli, ["--config", str(bad), "ssl", "status"])

        assert result.exit_code == 1
        assert "Error loading configuration" in result.output

    def test_config_validate(self, config_file):
        """Test config validate prints the effective settings."""
        result = CliRunner().invoke(
            cli, ["--config", str(config_file), "config", "validate", str(config_file)]
        )

        assert result.exit_code == 0
        assert "Configuration is valid" in result.output
        assert "Domain:      localhost" in result.output


class TestStatusAndValidate:
    """Test read-only certificate commands."""

    def test_status_without_certificate(self, invoke):
        """Test status reports a missing certificate and exits 0."""
        result = invoke("ssl", "status")

        assert result.exit_code == 0
        assert "No certificate installed" in result.output

    def test_status_after_setup(self, invoke):
        """Test status shows the source and days left."""
        invoke("ssl", "setup", "--non-interactive")

        result = invoke("ssl", "status")

        assert result.exit_code == 0
        assert "Source:      localhost-dev" in result.output
        assert "Days left:" in result.output

    def test_validate_missing(self, invoke):
        """Test validate exits 1 when no certificate exists."""
        result = invoke("ssl", "validate")

        assert result.exit_code == 1
        assert "not usable" in result.output

    def test_validate_json(self, invoke):
        """Test validate --json reports findings as JSON."""
        result = invoke("ssl", "validate", "--json")

        data = _json(result.output)
        assert result.exit_code == 1
        assert data["valid"] is False
        assert data["findings"][0]["kind"] == "missing-file"

    def test_validate_strict_domain_mismatch(self, invoke):
        """Test --strict fails when the certificate does not cover the domain."""
        invoke("ssl", "setup", "--non-interactive")

        lenient = invoke("ssl", "validate", "--domain", "other.example.com")
        strict = invoke("ssl", "validate", "--domain", "other.example.com", "--strict")

        assert lenient.exit_code == 0
        assert strict.exit_code == 1
        assert "does not cover" in strict.output


class TestSetupAndRenew:
    """Test lifecycle commands."""

    def test_setup_localhost(self, invoke, store):
        """Test setup generates a localhost certificate."""
        result = invoke("ssl", "setup", "--non-interactive")

        assert result.exit_code == 0
        assert "Certificate generated" in result.output
        assert store.cert_path.exists()
        assert store.key_path.stat().st_mode & 0o777 == 0o600

    def test_setup_preserves_valid(self, invoke):
        """Test a second setup keeps the certificate."""
        invoke("ssl", "setup", "--non-interactive")

        result = invoke("ssl", "setup", "--non-interactive")

        assert result.exit_code == 0
        assert "Certificate preserved" in result.output

    def test_setup_acquires_for_public_domain(self, invoke, fake_acme, letsencrypt_bundle):
        """Test setup acquires from Let's Encrypt for a public domain."""
        fake_acme.bundle = letsencrypt_bundle()

        result = invoke("ssl", "setup", "--domain", "app.example.com", "--email", "ops@example.com")

        assert result.exit_code == 0
        assert "Certificate acquired" in result.output
        assert fake_acme.calls[0] == ("obtain", "app.example.com", "ops@example.com")

    def test_strict_letsencrypt_failure(self, invoke, fake_acme):
        """Test --provider letsencrypt --force fails with remediation."""
        fake_acme.installed = False

        result = invoke(
            "ssl", "setup", "--domain", "app.example.com",
            "--provider", "letsencrypt", "--force", "--non-interactive",
        )

        assert result.exit_code == 1
        assert "ACME preflight failed" in result.output
        assert "--provider self-signed" in result.output

    def test_setup_invalid_email(self, invoke):
        """Test an invalid --email is rejected."""
        result = invoke("ssl", "setup", "--email", "not-an-email")

        assert result.exit_code == 1

    def test_renewal_failure_exits_degraded(self, invoke, fake_acme, letsencrypt_bundle, install_pair, tmp_path):
        """Test a failed renewal of a still-valid certificate exits 3."""
        install_pair(tmp_path / "ssl", letsencrypt_bundle(days_left=5))
        fake_acme.renew_error = AcquisitionFailedError("renewal failed", hints=["check DNS"])

        result = invoke("ssl", "renew", "--domain", "app.example.com")

        assert result.exit_code == 3
        assert "Certificate renewal-failed" in result.output
        assert "Warnings:" in result.output

    def test_renew_without_certificate(self, invoke):
        """Test renew exits 1 when nothing is installed."""
        result = invoke("ssl", "renew")

        assert result.exit_code == 1
        assert "ssl setup" in result.output


class TestImportAndConsolidate:
    """Test adopting existing certificates."""

    def test_import(self, invoke, cert_factory, install_pair, tmp_path, store):
        """Test importing a valid pair."""
        bundle = cert_factory()
        paths = install_pair(tmp_path / "incoming", bundle)

        result = invoke("ssl", "import", str(paths["cert"]), str(paths["key"]))

        assert result.exit_code == 0
        assert "Certificate imported" in result.output
        assert store.cert_path.read_bytes() == bundle.certificate_pem

    def test_import_mismatch(self, invoke, cert_factory, tmp_path, store):
        """Test a mismatched pair is rejected with its findings."""
        (tmp_path / "cert.pem").write_bytes(cert_factory(key_index=0).certificate_pem)
        (tmp_path / "key.pem").write_bytes(cert_factory(key_index=1).private_key_pem)

        result = invoke("ssl", "import", str(tmp_path / "cert.pem"), str(tmp_path / "key.pem"))

        assert result.exit_code == 1
        assert "key-mismatch" in result.output
        assert not store.exists()

    def test_consolidate_none_found(self, invoke, tmp_path):
        """Test consolidate exits 1 when nothing is found."""
        result = invoke("ssl", "consolidate", "--location", str(tmp_path / "nowhere"))

        assert result.exit_code == 1
        assert "No valid certificate found" in result.output

    def test_consolidate(self, invoke, cert_factory, install_pair, tmp_path):
        """Test consolidate adopts a legacy pair."""
        install_pair(tmp_path / "legacy", cert_factory(common_name="localhost", sans=("localhost",)))

        result = invoke("ssl", "consolidate", "--location", str(tmp_path / "legacy"))

        assert result.exit_code == 0
        assert "Certificate consolidated" in result.output


class TestBackups:
    """Test backup, listing, restore and removal."""

    def test_backup_without_certificate(self, invoke):
        """Test backup exits 1 when nothing is installed."""
        result = invoke("ssl", "backup")

        assert result.exit_code == 1

    def test_backup_list_restore(self, invoke, store):
        """Test a labelled backup can be listed and restored."""
        invoke("ssl", "setup", "--non-interactive")
        original = store.cert_path.read_bytes()

        backup = invoke("ssl", "backup", "--label", "before-change")
        invoke("ssl", "setup", "--force", "--non-interactive")
        listing = invoke("ssl", "backups")
        restored = invoke("ssl", "restore", "before-change")

        assert "Backup created: before-change" in backup.output
        assert "before-change" in listing.output
        assert restored.exit_code == 0
        assert "Certificate restored" in restored.output
        assert store.cert_path.read_bytes() == original

    def test_restore_unknown(self, invoke):
        """Test restoring an unknown label exits 1."""
        result = invoke("ssl", "restore", "nope")

        assert result.exit_code == 1
        assert "Backup not found" in result.output

    def test_backup_rejects_path_label(self, invoke, store, tmp_path):
        """Test --label cannot write outside the backups directory."""
        invoke("ssl", "setup", "--non-interactive")

        result = invoke("ssl", "backup", "--label", "../../x")

        assert result.exit_code == 1
        assert "Invalid backup label" in result.output
        assert "ssl backups" in result.output
        assert not (tmp_path / "x.key").exists()

    def test_restore_rejects_path_label(self, invoke):
        """Test restore refuses labels that leave the backups directory."""
        invoke("ssl", "setup", "--non-interactive")

        result = invoke("ssl", "restore", "../../x")

        assert result.exit_code == 1
        assert "Invalid backup label" in result.output

    def test_remove_requires_confirmation(self, invoke, store):
        """Test remove aborts without confirmation."""
        invoke("ssl", "setup", "--non-interactive")

        result = invoke("ssl", "remove", input="n\n")

        assert result.exit_code == 1
        assert store.exists()

    def test_remove(self, invoke, store):
        """Test remove --yes backs up and deletes the live pair."""
        invoke("ssl", "setup", "--non-interactive")

        result = invoke("ssl", "remove", "--yes")

        assert result.exit_code == 0
        assert "Certificate removed" in result.output
        assert not store.exists()
        assert len(store.list_backups()) == 1


class TestContainerCommands:
    """Test container command error handling."""

    def test_export_container_not_running(self, invoke):
        """Test export fails cleanly when the container is down."""
        with patch("milou_ssl.tls.container.shutil.which", return_value=None):
            result = invoke("container", "export")

        assert result.exit_code == 1
        assert "not running" in result.output

    def test_inject_without_certificate(self, invoke):
        """Test inject fails when there is no live certificate."""
        result = invoke("container", "inject")

        assert result.exit_code == 1
        assert "ssl setup" in result.output
