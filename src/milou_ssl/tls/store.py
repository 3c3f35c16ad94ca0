"""Filesystem store for the live certificate pair, its backups and metadata.

Layout under ``ssl_path``:

    <name>.crt               PEM certificate chain, mode 0644
    <name>.key               PEM private key, mode 0600
    .ssl_info.json           metadata (source, domain, timestamps), mode 0644
    backups/<label>.crt|key  backup copies with the same modes

Every replace writes both new files to temporary files in ``ssl_path`` and
promotes them with ``os.replace`` only after a backup of the previous pair is
confirmed on disk.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..logging_audit import log_audit_event
from ..models.certificate import (
    BackupRecord,
    CertificateBundle,
    CertificateFacts,
    CertificateSource,
    ValidationResult,
    summarize_findings,
)
from ..utils.exceptions import (
    BackupError,
    CertificateNotFoundError,
    ImportRejectedError,
    InvalidBackupLabelError,
    StoreError,
    UnparsableCertificateError,
)
from .inspector import CertificateInspector
from .matcher import is_local_domain
from .validator import DEFAULT_RENEWAL_THRESHOLD_DAYS, Validator

logger = logging.getLogger(__name__)

CERT_FILE_MODE = 0o644
KEY_FILE_MODE = 0o600
INFO_FILE_MODE = 0o644
BACKUPS_DIR_NAME = "backups"
INFO_FILE_NAME = ".ssl_info.json"
BACKUP_LABEL_FORMAT = "%Y%m%d_%H%M%S"


def infer_source(facts: CertificateFacts) -> CertificateSource:
    """Infer how a certificate was produced when no metadata is recorded."""
    if facts.is_self_signed:
        if is_local_domain(facts.subject_cn):
            return CertificateSource.LOCALHOST_DEV
        return CertificateSource.SELF_SIGNED_PROD
    if facts.issuer_organization and "let's encrypt" in facts.issuer_organization.lower():
        return CertificateSource.LETSENCRYPT
    return CertificateSource.USER_IMPORTED


def check_backup_label(label: str) -> None:
    """Reject labels that would address files outside the backups directory.

    Raises:
        InvalidBackupLabelError: If the label is empty or not a plain file name
    """
    if (
        not label
        or label in (".", "..")
        or label != Path(label).name
        or "\\" in label
        or label.startswith(".")
    ):
        raise InvalidBackupLabelError(f"Invalid backup label: {label!r}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CertificateStore:
    """Read/write boundary for the canonical certificate location.

    Example:
        >>> store = CertificateStore(Path("ssl"))
        >>> bundle = store.load()
        >>> if bundle is None:
        ...     store.backup_then_replace(new_bundle, domain="app.example.com")
    """

    def __init__(
        self,
        ssl_path: Path,
        cert_name: str = "milou",
        validator: Optional[Validator] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.ssl_path = Path(ssl_path)
        self.cert_name = cert_name
        self.validator = validator or Validator()
        self.inspector: CertificateInspector = self.validator.inspector
        self.clock = clock

    @property
    def cert_path(self) -> Path:
        return self.ssl_path / f"{self.cert_name}.crt"

    @property
    def key_path(self) -> Path:
        return self.ssl_path / f"{self.cert_name}.key"

    @property
    def backups_dir(self) -> Path:
        return self.ssl_path / BACKUPS_DIR_NAME

    @property
    def info_path(self) -> Path:
        return self.ssl_path / INFO_FILE_NAME

    def exists(self) -> bool:
        return self.cert_path.exists() or self.key_path.exists()

    def load(self) -> Optional[CertificateBundle]:
        """Load the live pair.

        Returns:
            CertificateBundle (with None for a missing file), or None when
            neither file exists

        Raises:
            StoreError: If an existing file cannot be read
        """
        if not self.exists():
            logger.debug(f"No certificate at {self.ssl_path}")
            return None

        cert_pem = _read_optional(self.cert_path)
        key_pem = _read_optional(self.key_path)
        source = self._recorded_source() or self._infer_bundle_source(cert_pem, key_pem)

        return CertificateBundle(
            certificate_pem=cert_pem,
            private_key_pem=key_pem,
            source=source,
            cert_path=self.cert_path,
            key_path=self.key_path,
        )

    def backup(self, label: Optional[str] = None) -> Optional[BackupRecord]:
        """Copy the live pair into the backups directory.

        Args:
            label: Backup name; defaults to a UTC timestamp

        Returns:
            BackupRecord, or None when there is nothing to back up

        Raises:
            BackupError: If the copy cannot be confirmed on disk
            InvalidBackupLabelError: If the label is not a plain file name
        """
        if label is not None:
            check_backup_label(label)
        if not self.exists():
            return None

        created_at = self.clock()
        label = self._unique_label(label or created_at.strftime(BACKUP_LABEL_FORMAT))
        record = BackupRecord(
            label=label,
            cert_path=self.backups_dir / f"{label}.crt",
            key_path=self.backups_dir / f"{label}.key",
            created_at=created_at,
        )

        try:
            self.backups_dir.mkdir(parents=True, exist_ok=True)
            for live, target, mode in (
                (self.cert_path, record.cert_path, CERT_FILE_MODE),
                (self.key_path, record.key_path, KEY_FILE_MODE),
            ):
                if not live.exists():
                    continue
                data = live.read_bytes()
                _atomic_write(target, data, mode)
                if target.read_bytes() != data:
                    raise BackupError(f"Backup verification failed for {target}")
        except OSError as e:
            raise BackupError(f"Failed to back up certificate to {self.backups_dir}: {e}") from e

        logger.info(f"Backed up certificate to {self.backups_dir}/{label}.*")
        log_audit_event(
            "CERTIFICATE_BACKED_UP",
            {"status": "success", "label": label, "ssl_path": str(self.ssl_path)},
        )
        return record

    def backup_then_replace(
        self,
        bundle: CertificateBundle,
        label: Optional[str] = None,
        domain: Optional[str] = None,
    ) -> Optional[BackupRecord]:
        """Back up the live pair, then atomically promote a new one.

        Args:
            bundle: Complete bundle to commit
            label: Backup label for the previous pair
            domain: Domain recorded in the metadata file

        Returns:
            BackupRecord of the previous pair, or None if there was none

        Raises:
            BackupError: If the backup fails; live files are left untouched
            StoreError: If the new pair cannot be written
        """
        if not bundle.is_complete:
            raise StoreError("Refusing to commit an incomplete certificate bundle")

        record = self.backup(label)
        self._promote(bundle)
        self.write_info(bundle, domain=domain)

        log_audit_event(
            "CERTIFICATE_REPLACED",
            {
                "status": "success",
                "source": bundle.source.value,
                "domain": domain,
                "backup": record.label if record else None,
                "ssl_path": str(self.ssl_path),
            },
        )
        return record

    def import_user_provided(
        self,
        cert_bytes: bytes,
        key_bytes: bytes,
        expected_domain: Optional[str] = None,
        enforce_domain: bool = False,
        renewal_threshold_days: int = DEFAULT_RENEWAL_THRESHOLD_DAYS,
        now: Optional[datetime] = None,
    ) -> CertificateBundle:
        """Validate user-provided certificates and commit them.

        Args:
            cert_bytes: PEM certificate (chain)
            key_bytes: PEM private key
            expected_domain: Domain the certificate must serve
            enforce_domain: Reject certificates that do not cover the domain
            renewal_threshold_days: Threshold for the expiring-soon advisory
            now: Reference time for expiry checks

        Returns:
            The committed bundle as loaded from the store

        Raises:
            ImportRejectedError: If validation produces blocking findings
            BackupError: If the previous pair cannot be backed up
        """
        candidate = CertificateBundle(
            certificate_pem=cert_bytes,
            private_key_pem=key_bytes,
            source=CertificateSource.USER_IMPORTED,
        )
        result = self.validator.validate(
            candidate,
            expected_domain=expected_domain,
            renewal_threshold_days=renewal_threshold_days,
            enforce_domain=enforce_domain,
            allow_local=True,
            now=now,
        )
        if not result.is_valid:
            blocking = [f for f in result.findings if f.is_blocking]
            log_audit_event(
                "CERTIFICATE_IMPORT_REJECTED",
                {"status": "failure", "error_message": summarize_findings(blocking)},
            )
            raise ImportRejectedError(
                f"Certificate rejected: {summarize_findings(blocking)}", findings=blocking
            )

        for warning in result.warnings:
            logger.warning(warning)

        self.backup_then_replace(candidate, domain=expected_domain)
        log_audit_event(
            "CERTIFICATE_IMPORTED",
            {"status": "success", "domain": expected_domain, "ssl_path": str(self.ssl_path)},
        )
        return self.load()

    def consolidate_from_known_locations(
        self,
        locations: Iterable[Path],
        expected_domain: Optional[str] = None,
        enforce_domain: bool = False,
        renewal_threshold_days: int = DEFAULT_RENEWAL_THRESHOLD_DAYS,
    ) -> Optional[CertificateBundle]:
        """Promote the first pair found in an ordered list of legacy locations.

        Each location is a directory searched for ``<name>.crt`` and
        ``<name>.key``. The store's own directory is skipped. Only a pair without
        blocking findings is promoted.

        Args:
            locations: Ordered directories to search
            expected_domain: Domain the certificate must serve
            enforce_domain: Require the domain to match
            renewal_threshold_days: Threshold for the expiring-soon advisory

        Returns:
            The promoted bundle, or None when no location holds a valid pair
        """
        own_dir = self.ssl_path.resolve()
        for location in locations:
            location = Path(location).expanduser()
            if location.resolve() == own_dir:
                continue

            cert_file = location / f"{self.cert_name}.crt"
            key_file = location / f"{self.cert_name}.key"
            if not (cert_file.is_file() and key_file.is_file()):
                continue

            logger.debug(f"Found candidate certificate pair in {location}")
            try:
                candidate = CertificateBundle(
                    certificate_pem=cert_file.read_bytes(),
                    private_key_pem=key_file.read_bytes(),
                    source=CertificateSource.USER_IMPORTED,
                )
            except OSError as e:
                logger.warning(f"Cannot read certificates in {location}: {e}")
                continue

            result = self.validator.validate(
                candidate,
                expected_domain=expected_domain,
                renewal_threshold_days=renewal_threshold_days,
                enforce_domain=enforce_domain,
                allow_local=True,
            )
            if not result.is_valid:
                logger.info(
                    f"Skipping certificates in {location}: "
                    f"{summarize_findings(result.findings)}"
                )
                continue

            source = infer_source(result.facts) if result.facts else candidate.source
            bundle = CertificateBundle(
                certificate_pem=candidate.certificate_pem,
                private_key_pem=candidate.private_key_pem,
                source=source,
            )
            self.backup_then_replace(bundle, domain=expected_domain)
            logger.info(f"Consolidated certificates from {location}")
            log_audit_event(
                "CERTIFICATE_CONSOLIDATED",
                {"status": "success", "location": str(location), "source": source.value},
            )
            return self.load()

        logger.debug("No valid certificates found for consolidation")
        return None

    def fix_permissions(self) -> bool:
        """Reset modes on the live pair to 0644/0600.

        Returns:
            True if any mode was changed
        """
        changed = False
        for path, mode in ((self.cert_path, CERT_FILE_MODE), (self.key_path, KEY_FILE_MODE)):
            if not path.exists():
                continue
            current = path.stat().st_mode & 0o777
            if current != mode:
                os.chmod(path, mode)
                logger.info(f"Corrected permissions on {path}: {current:o} -> {mode:o}")
                changed = True
        return changed

    def list_backups(self) -> List[BackupRecord]:
        """Return backups with both files present, oldest first."""
        if not self.backups_dir.is_dir():
            return []

        records = []
        for cert_file in self.backups_dir.glob("*.crt"):
            key_file = cert_file.with_suffix(".key")
            if not key_file.exists():
                continue
            records.append(
                BackupRecord(
                    label=cert_file.stem,
                    cert_path=cert_file,
                    key_path=key_file,
                    created_at=datetime.fromtimestamp(
                        cert_file.stat().st_mtime, tz=timezone.utc
                    ),
                )
            )
        return sorted(records, key=lambda r: (r.created_at, r.label))

    def restore(self, label: str) -> CertificateBundle:
        """Make a backup live again, backing up the current pair first.

        Raises:
            CertificateNotFoundError: If no backup has that label
            InvalidBackupLabelError: If the label is not a plain file name
        """
        check_backup_label(label)
        cert_file = self.backups_dir / f"{label}.crt"
        key_file = self.backups_dir / f"{label}.key"
        if not (cert_file.is_file() and key_file.is_file()):
            raise CertificateNotFoundError(f"Backup not found: {label}")

        cert_pem = cert_file.read_bytes()
        key_pem = key_file.read_bytes()
        bundle = CertificateBundle(
            certificate_pem=cert_pem,
            private_key_pem=key_pem,
            source=self._infer_bundle_source(cert_pem, key_pem),
        )
        self.backup_then_replace(bundle)
        log_audit_event("CERTIFICATE_RESTORED", {"status": "success", "label": label})
        return self.load()

    def remove(self) -> BackupRecord:
        """Disable SSL: back up, then delete the live pair and archive metadata.

        Raises:
            CertificateNotFoundError: If there is no live pair
            BackupError: If the backup fails; nothing is deleted
        """
        record = self.backup()
        if record is None:
            raise CertificateNotFoundError(f"No certificate to remove at {self.ssl_path}")

        for path in (self.cert_path, self.key_path):
            path.unlink(missing_ok=True)

        if self.info_path.exists():
            os.replace(self.info_path, self.backups_dir / f"{record.label}{INFO_FILE_NAME}")

        logger.info(f"Removed certificate from {self.ssl_path}")
        log_audit_event(
            "CERTIFICATE_REMOVED",
            {"status": "success", "backup": record.label, "ssl_path": str(self.ssl_path)},
        )
        return record

    def read_info(self) -> Optional[Dict[str, Any]]:
        """Read the metadata file, if present and well-formed."""
        if not self.info_path.exists():
            return None
        try:
            return json.loads(self.info_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable metadata file {self.info_path}: {e}")
            return None

    def write_info(
        self,
        bundle: CertificateBundle,
        domain: Optional[str] = None,
        result: Optional[ValidationResult] = None,
    ) -> None:
        """Record source, domain and validity of the live pair."""
        info: Dict[str, Any] = {
            "source": bundle.source.value,
            "domain": domain,
            "generated_at": self.clock().isoformat(),
        }

        facts = result.facts if result else None
        if facts is None:
            try:
                facts = self.inspector.inspect(bundle)
            except UnparsableCertificateError:
                facts = None
        if facts is not None:
            info.update(
                {
                    "subject_cn": facts.subject_cn,
                    "issuer_cn": facts.issuer_cn,
                    "not_after": facts.not_after.isoformat(),
                    "validity_days": (facts.not_after - facts.not_before).days,
                    "key_size": facts.key_size,
                }
            )

        data = json.dumps(info, indent=2).encode("utf-8")
        try:
            _atomic_write(self.info_path, data, INFO_FILE_MODE)
        except OSError as e:
            raise StoreError(f"Failed to write metadata {self.info_path}: {e}") from e

    def _recorded_source(self) -> Optional[CertificateSource]:
        info = self.read_info()
        if not info or "source" not in info:
            return None
        try:
            return CertificateSource(info["source"])
        except ValueError:
            logger.warning(f"Unknown source in metadata: {info['source']}")
            return None

    def _infer_bundle_source(
        self, cert_pem: Optional[bytes], key_pem: Optional[bytes]
    ) -> CertificateSource:
        if not cert_pem:
            return CertificateSource.USER_IMPORTED
        try:
            facts = self.inspector.inspect(
                CertificateBundle(cert_pem, key_pem, CertificateSource.USER_IMPORTED)
            )
        except UnparsableCertificateError:
            return CertificateSource.USER_IMPORTED
        return infer_source(facts)

    def _unique_label(self, label: str) -> str:
        candidate = label
        counter = 1
        while (self.backups_dir / f"{candidate}.crt").exists() or (
            self.backups_dir / f"{candidate}.key"
        ).exists():
            candidate = f"{label}_{counter}"
            counter += 1
        return candidate

    def _promote(self, bundle: CertificateBundle) -> None:
        """Write both files to temporaries, then rename them into place."""
        try:
            self.ssl_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create SSL directory {self.ssl_path}: {e}") from e

        staged: List[Path] = []
        previous_key: Optional[Path] = None
        key_swapped = False
        try:
            cert_tmp = _write_temp(self.ssl_path, bundle.certificate_pem, CERT_FILE_MODE)
            staged.append(cert_tmp)
            key_tmp = _write_temp(self.ssl_path, bundle.private_key_pem, KEY_FILE_MODE)
            staged.append(key_tmp)
            if self.key_path.exists():
                previous_key = _write_temp(
                    self.ssl_path,
                    self.key_path.read_bytes(),
                    self.key_path.stat().st_mode & 0o777,
                )
                staged.append(previous_key)
            os.replace(key_tmp, self.key_path)
            key_swapped = True
            os.replace(cert_tmp, self.cert_path)
        except OSError as e:
            if key_swapped:
                self._roll_back_key(previous_key)
            for path in staged:
                path.unlink(missing_ok=True)
            raise StoreError(f"Failed to write certificate to {self.ssl_path}: {e}") from e

        if previous_key is not None:
            previous_key.unlink(missing_ok=True)
        logger.info(f"Installed {bundle.source.value} certificate at {self.cert_path}")

    def _roll_back_key(self, previous_key: Optional[Path]) -> None:
        """Put the old key back after the certificate could not be swapped in."""
        try:
            if previous_key is None:
                self.key_path.unlink(missing_ok=True)
            else:
                os.replace(previous_key, self.key_path)
        except OSError as e:
            logger.error(f"Could not restore previous key at {self.key_path}: {e}")
            return
        logger.warning(f"Restored previous key at {self.key_path} after a failed write")


def _read_optional(path: Path) -> Optional[bytes]:
    if not path.exists():
        return None
    try:
        return path.read_bytes()
    except OSError as e:
        raise StoreError(f"Cannot read {path}: {e}") from e


def _write_temp(directory: Path, data: bytes, mode: int) -> Path:
    fd, name = tempfile.mkstemp(dir=directory, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as f:
            os.fchmod(f.fileno(), mode)
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
    except OSError:
        Path(name).unlink(missing_ok=True)
        raise
    return Path(name)


def _atomic_write(path: Path, data: bytes, mode: int) -> None:
    tmp = _write_temp(path.parent, data, mode)
    try:
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise
