"""Custom exception classes for Milou SSL.

All exceptions inherit from MilouSSLError to allow catching all custom exceptions.
Validation findings (expired, key mismatch, ...) are reported as data on a
ValidationResult, not raised; only structural and operational failures are
exceptions.
"""

from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:
    from ..models.certificate import ValidationFinding


class MilouSSLError(Exception):
    """Base exception for all Milou SSL custom exceptions."""

    pass


class ConfigurationError(MilouSSLError):
    """Raised when configuration loading or validation fails.

    Examples:
        - Invalid configuration file format
        - Unknown provider name
        - Renewal threshold out of range
    """

    pass


class CertificateError(MilouSSLError):
    """Base exception for certificate processing errors."""

    pass


class GenerationFailedError(CertificateError):
    """Raised when a key pair or self-signed certificate cannot be generated.

    Examples:
        - Subject contains characters the X.509 builder rejects
        - Unsupported key size
        - Underlying cryptography primitive unavailable
    """

    pass


class UnparsableCertificateError(CertificateError):
    """Raised when certificate or private key bytes cannot be parsed.

    Examples:
        - File is not PEM
        - Truncated or corrupted certificate
        - Encrypted private key without password
    """

    pass


class ImportRejectedError(CertificateError):
    """Raised when user-provided certificates fail validation.

    Carries the blocking findings so callers can report them individually.
    """

    def __init__(self, message: str, findings: Sequence["ValidationFinding"] = ()) -> None:
        super().__init__(message)
        self.findings: List["ValidationFinding"] = list(findings)


class AcmeError(MilouSSLError):
    """Base exception for ACME client errors."""

    pass


class PreflightFailedError(AcmeError):
    """Raised when ACME preflight checks do not pass.

    Examples:
        - Not running with elevated privilege
        - Port 80 already bound by another process
        - ACME client not installed
    """

    def __init__(self, message: str, reasons: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.reasons: List[str] = list(reasons)


class AcquisitionFailedError(AcmeError):
    """Raised when the ACME client fails to obtain or renew a certificate.

    The hints are diagnostic guesses (DNS, reachability, rate limits, firewall),
    not distinct failure types.
    """

    def __init__(
        self,
        message: str,
        hints: Sequence[str] = (),
        output: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.hints: List[str] = list(hints)
        self.output = output


class StoreError(MilouSSLError):
    """Raised when the certificate store cannot read or write files."""

    pass


class BackupError(StoreError):
    """Raised when a backup copy cannot be confirmed on disk.

    Backup failure is fatal to the replace operation: the live bundle is never
    overwritten without a backup.
    """

    pass


class CertificateNotFoundError(StoreError):
    """Raised when a requested certificate pair or backup does not exist."""

    pass


class InvalidBackupLabelError(StoreError):
    """Raised when a backup label is not a plain file name."""

    pass


class ContainerError(MilouSSLError):
    """Raised when copying certificates into or out of a container fails.

    Examples:
        - Container not running
        - docker CLI missing
        - docker cp returned non-zero
    """

    pass


def get_remediation(exception: Exception) -> str:
    """Return actionable guidance for an error.

    Args:
        exception: Exception that occurred

    Returns:
        Remediation message suitable for CLI output

    Example:
        >>> get_remediation(BackupError("disk full"))
        'Check free space and permissions in the backups directory...'
    """
    if isinstance(exception, PreflightFailedError):
        return (
            "Run as root, stop any service bound to port 80, and install certbot "
            "(or re-run interactively to be offered installation). "
            "Use --provider self-signed to skip Let's Encrypt."
        )

    if isinstance(exception, AcquisitionFailedError):
        if exception.hints:
            return "Possible causes: " + "; ".join(exception.hints)
        return "Check certbot logs in /var/log/letsencrypt/ for details."

    if isinstance(exception, ImportRejectedError):
        return (
            "Provide a PEM certificate and its matching unencrypted PEM private key. "
            "Check the certificate has not expired."
        )

    if isinstance(exception, UnparsableCertificateError):
        return "Ensure the files are PEM encoded and not truncated."

    if isinstance(exception, GenerationFailedError):
        return "Check the domain name contains only valid hostname characters."

    if isinstance(exception, BackupError):
        return (
            "Check free space and permissions in the backups directory. "
            "The live certificate was left untouched."
        )

    if isinstance(exception, InvalidBackupLabelError):
        return (
            "Use a plain name such as 'before-upgrade' without '/' or '..'. "
            "Run 'milou-ssl ssl backups' to list existing labels."
        )

    if isinstance(exception, CertificateNotFoundError):
        return "Run 'milou-ssl ssl setup' to create a certificate first."

    if isinstance(exception, ContainerError):
        return "Start the stack first and check the container name in config.json."

    if isinstance(exception, ConfigurationError):
        return "Check config/config.json and MILOU_SSL_* environment variables."

    return "Re-run with --verbose and check the log file for details."
