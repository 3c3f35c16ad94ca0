"""Integration tests for complete CLI workflows.

These tests drive milou-ssl end to end through its command-line interface:
setup, status, validation, backups, restore and removal against one
workspace.
"""

import json

import pytest

from milou_ssl.tls.store import CertificateStore
from milou_ssl.utils.exceptions import AcquisitionFailedError

pytestmark = pytest.mark.integration


class TestCertificateWorkflow:
    """Test the day-to-day certificate workflow."""

    def test_setup_status_validate(self, run_cli, workspace):
        """Test setup followed by status and JSON validation."""
        # Act
        setup = run_cli("ssl", "setup", "--non-interactive")
        status = run_cli("ssl", "status")
        validate = run_cli("ssl", "validate", "--json")

        # Assert
        assert setup.exit_code == 0, setup.output
        assert "Certificate generated" in setup.output
        assert status.exit_code == 0
        assert "Subject CN:  localhost" in status.output
        data = json.loads(validate.output)
        assert validate.exit_code == 0
        assert data["valid"] is True
        assert data["source"] == "localhost-dev"
        assert data["findings"][-1]["kind"] == "valid"

    def test_backup_force_restore_remove(self, run_cli, workspace):
        """Test labelled backup, forced regeneration, restore and removal."""
        # Arrange
        store = CertificateStore(workspace["ssl"])
        run_cli("ssl", "setup", "--non-interactive")
        original = store.cert_path.read_bytes()

        # Act
        backup = run_cli("ssl", "backup", "--label", "known-good")
        forced = run_cli("ssl", "setup", "--force", "--non-interactive")
        regenerated = store.cert_path.read_bytes()
        listing = run_cli("ssl", "backups")
        restored = run_cli("ssl", "restore", "known-good")
        removed = run_cli("ssl", "remove", "--yes")

        # Assert
        assert backup.exit_code == 0
        assert forced.exit_code == 0
        assert "Backup:" in forced.output
        assert regenerated != original
        assert "known-good" in listing.output
        assert restored.exit_code == 0
        assert removed.exit_code == 0
        assert not store.exists()
        labels = [r.label for r in store.list_backups()]
        assert "known-good" in labels
        assert len(labels) == 4

    def test_consolidate_from_configured_location(
        self, run_cli, workspace, cert_factory, install_pair
    ):
        """Test consolidate uses the legacy locations from the config file."""
        legacy = cert_factory(common_name="localhost", sans=("localhost",))
        install_pair(workspace["legacy"], legacy)

        consolidated = run_cli("ssl", "consolidate")
        setup = run_cli("ssl", "setup", "--non-interactive")

        assert consolidated.exit_code == 0
        assert "Certificate consolidated" in consolidated.output
        assert "Certificate preserved" in setup.output
        assert (workspace["ssl"] / "milou.crt").read_bytes() == legacy.certificate_pem

    def test_log_file_written(self, run_cli, workspace):
        """Test commands write audit entries to the configured log file."""
        run_cli("ssl", "setup", "--non-interactive")

        content = workspace["log"].read_text()
        assert "AUDIT [CERTIFICATE_REPLACED]" in content
        assert "BEGIN PRIVATE KEY" not in content


class TestLetsEncryptWorkflow:
    """Test Let's Encrypt workflows through the CLI."""

    def test_acquire_then_degraded_renewal(
        self, run_cli, fake_acme, letsencrypt_bundle, workspace
    ):
        """Test acquisition succeeds and a failed forced renewal exits 3."""
        fake_acme.bundle = letsencrypt_bundle()
        acquired = run_cli(
            "ssl", "setup", "--domain", "app.example.com", "--email", "ops@example.com"
        )
        fake_acme.renew_error = AcquisitionFailedError("rate limited", hints=["wait an hour"])

        renewed = run_cli("ssl", "renew", "--domain", "app.example.com")

        assert acquired.exit_code == 0
        assert "Source:      letsencrypt" in acquired.output
        assert renewed.exit_code == 3
        assert "rate limited" in renewed.output
