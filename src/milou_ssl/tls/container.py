"""Copy certificates into and out of a running reverse-proxy container.

Used for one-off backup/restore when certificates were minted inside the
container rather than on the host path. Talks to the ``docker`` CLI.
"""

import logging
import shutil
import subprocess
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from ..logging_audit import log_audit_event
from ..models.certificate import BackupRecord, CertificateBundle
from ..utils.exceptions import CertificateNotFoundError, ContainerError
from .store import BACKUP_LABEL_FORMAT, CERT_FILE_MODE, KEY_FILE_MODE, CertificateStore

logger = logging.getLogger(__name__)

DEFAULT_CONTAINER_NAME = "milou-nginx"
DEFAULT_CONTAINER_SSL_PATH = "/etc/ssl"


class ContainerBridge:
    """Move the certificate pair between the store and a container.

    Attributes:
        container_name: Name of the reverse-proxy container
        container_ssl_path: Directory inside the container holding the pair
        docker_command: docker executable
        timeout: Seconds before a docker call is abandoned
    """

    def __init__(
        self,
        container_name: str = DEFAULT_CONTAINER_NAME,
        container_ssl_path: str = DEFAULT_CONTAINER_SSL_PATH,
        docker_command: str = "docker",
        timeout: int = 30,
    ) -> None:
        self.container_name = container_name
        self.container_ssl_path = container_ssl_path.rstrip("/")
        self.docker_command = docker_command
        self.timeout = timeout

    def is_running(self) -> bool:
        """Check whether the container is running."""
        if shutil.which(self.docker_command) is None:
            logger.debug("docker CLI not found")
            return False

        try:
            completed = self._docker(
                "ps", "--filter", f"name=^{self.container_name}$", "--format", "{{.Names}}"
            )
        except ContainerError as e:
            logger.debug(f"docker ps failed: {e}")
            return False
        return self.container_name in completed.stdout.split()

    def export_to_store(self, store: CertificateStore) -> BackupRecord:
        """Copy the container's pair into the store's backups directory.

        The live host pair is not touched; use ``restore`` to promote it.

        Returns:
            BackupRecord labelled ``container-<timestamp>``

        Raises:
            ContainerError: If the container is not running or docker cp fails
        """
        self._require_running()

        label = f"container-{datetime.now(timezone.utc).strftime(BACKUP_LABEL_FORMAT)}"
        store.backups_dir.mkdir(parents=True, exist_ok=True)
        record = BackupRecord(
            label=label,
            cert_path=store.backups_dir / f"{label}.crt",
            key_path=store.backups_dir / f"{label}.key",
            created_at=datetime.now(timezone.utc),
        )

        try:
            for name, target, mode in (
                (f"{store.cert_name}.crt", record.cert_path, CERT_FILE_MODE),
                (f"{store.cert_name}.key", record.key_path, KEY_FILE_MODE),
            ):
                self._docker(
                    "cp", f"{self.container_name}:{self.container_ssl_path}/{name}", str(target)
                )
                target.chmod(mode)
        except (ContainerError, OSError) as e:
            # No half-exported pair in backups/
            record.cert_path.unlink(missing_ok=True)
            record.key_path.unlink(missing_ok=True)
            if isinstance(e, ContainerError):
                raise
            raise ContainerError(f"Cannot store exported certificates: {e}") from e

        logger.info(f"Exported certificates from {self.container_name} as backup {label}")
        log_audit_event(
            "CERTIFICATE_EXPORTED",
            {"status": "success", "container": self.container_name, "label": label},
        )
        return record

    def inject_from_store(self, store: CertificateStore) -> CertificateBundle:
        """Copy the live host pair into the container and fix modes there.

        Raises:
            CertificateNotFoundError: If the store has no complete pair
            ContainerError: If the container is not running or docker fails
        """
        bundle = store.load()
        if bundle is None or not bundle.is_complete:
            raise CertificateNotFoundError(f"No complete certificate pair at {store.ssl_path}")

        self._require_running()

        cert_target = f"{self.container_ssl_path}/{store.cert_name}.crt"
        key_target = f"{self.container_ssl_path}/{store.cert_name}.key"

        # Stage copies so docker cp never reads a file being replaced.
        with tempfile.TemporaryDirectory() as staging:
            staged_cert = Path(staging) / f"{store.cert_name}.crt"
            staged_key = Path(staging) / f"{store.cert_name}.key"
            staged_cert.write_bytes(bundle.certificate_pem)
            staged_key.write_bytes(bundle.private_key_pem)
            staged_key.chmod(KEY_FILE_MODE)

            self._docker("cp", str(staged_cert), f"{self.container_name}:{cert_target}")
            self._docker("cp", str(staged_key), f"{self.container_name}:{key_target}")

        self._docker("exec", self.container_name, "chmod", "644", cert_target)
        self._docker("exec", self.container_name, "chmod", "600", key_target)

        logger.info(f"Injected certificates into {self.container_name}")
        log_audit_event(
            "CERTIFICATE_INJECTED",
            {"status": "success", "container": self.container_name},
        )
        return bundle

    def _require_running(self) -> None:
        if not self.is_running():
            raise ContainerError(f"Container {self.container_name} is not running")

    def _docker(self, *args: str) -> subprocess.CompletedProcess:
        cmd: List[str] = [self.docker_command, *args]
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            completed = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self.timeout
            )
        except subprocess.TimeoutExpired as e:
            raise ContainerError(f"docker {args[0]} timed out after {self.timeout}s") from e
        except OSError as e:
            raise ContainerError(f"Cannot run docker: {e}") from e

        if completed.returncode != 0:
            raise ContainerError(
                f"docker {args[0]} failed (exit code {completed.returncode}): "
                f"{completed.stderr.strip()}"
            )
        return completed
