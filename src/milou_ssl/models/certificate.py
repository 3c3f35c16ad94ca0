"""Data models for certificate lifecycle management.

This module defines dataclasses and enums for certificate bundles, parsed
certificate facts, validation findings, lifecycle state, and outcomes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple


class CertificateSource(Enum):
    """How a certificate bundle was produced.

    LOCALHOST_DEV, SELF_SIGNED_PROD and MINIMAL bundles are always self-signed;
    LETSENCRYPT bundles never are. USER_IMPORTED provenance is unknown.
    """

    LOCALHOST_DEV = "localhost-dev"
    SELF_SIGNED_PROD = "self-signed-prod"
    MINIMAL = "minimal"
    LETSENCRYPT = "letsencrypt"
    USER_IMPORTED = "user-imported"

    @property
    def is_self_signed_profile(self) -> bool:
        return self in (
            CertificateSource.LOCALHOST_DEV,
            CertificateSource.SELF_SIGNED_PROD,
            CertificateSource.MINIMAL,
        )


class Provider(Enum):
    """Preferred acquisition strategy."""

    AUTO = "auto"
    LETSENCRYPT = "letsencrypt"
    SELF_SIGNED = "self-signed"


class FindingKind(Enum):
    """Kinds of validation findings."""

    VALID = "valid"
    EXPIRED = "expired"
    EXPIRING_SOON = "expiring-soon"
    KEY_MISMATCH = "key-mismatch"
    DOMAIN_MISMATCH = "domain-mismatch"
    MISSING_FILE = "missing-file"
    BAD_PERMISSIONS = "bad-permissions"
    UNPARSABLE_CERTIFICATE = "unparsable-certificate"


# DOMAIN_MISMATCH is only produced under strict enforcement, so it blocks too.
BLOCKING_FINDINGS = frozenset(
    {
        FindingKind.EXPIRED,
        FindingKind.KEY_MISMATCH,
        FindingKind.UNPARSABLE_CERTIFICATE,
        FindingKind.MISSING_FILE,
        FindingKind.DOMAIN_MISMATCH,
    }
)


class LifecycleState(Enum):
    """State of the live certificate as seen by the lifecycle policy."""

    NO_CERTIFICATE = "no-certificate"
    HAS_INVALID_CERTIFICATE = "has-invalid-certificate"
    HAS_VALID_CERTIFICATE = "has-valid-certificate"
    HAS_EXPIRING_SOON_CERTIFICATE = "has-expiring-soon-certificate"


class LifecycleAction(Enum):
    """What the lifecycle policy did."""

    PRESERVED = "preserved"
    GENERATED = "generated"
    ACQUIRED = "acquired"
    RENEWED = "renewed"
    RENEWAL_FAILED = "renewal-failed"
    FALLBACK_MINIMAL = "fallback-minimal"
    IMPORTED = "imported"
    CONSOLIDATED = "consolidated"
    RESTORED = "restored"


class ExitCode(IntEnum):
    """Process exit codes for the CLI surface."""

    OK = 0
    FAILED = 1
    DEGRADED = 3


@dataclass(frozen=True)
class CertificateBundle:
    """Certificate and private key pair as opaque PEM bytes.

    Bundles are never mutated; renewal produces a new bundle. Either byte field
    may be None when the bundle was loaded from disk with a file missing.

    Attributes:
        certificate_pem: PEM certificate chain (leaf first)
        private_key_pem: PEM private key
        source: How the bundle was produced
        cert_path: Path the certificate was loaded from, if any
        key_path: Path the key was loaded from, if any
    """

    certificate_pem: Optional[bytes]
    private_key_pem: Optional[bytes]
    source: CertificateSource
    cert_path: Optional[Path] = None
    key_path: Optional[Path] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.certificate_pem) and bool(self.private_key_pem)


@dataclass(frozen=True)
class CertificateFacts:
    """Structured facts extracted from a certificate/key pair.

    Attributes:
        subject_cn: Subject common name
        subject_alt_names: DNS names and IP literals from the SAN extension
        not_before: Validity start (UTC)
        not_after: Validity end (UTC)
        issuer_cn: Issuer common name
        issuer_organization: Issuer organisation name, if present
        key_fingerprint: SHA-256 of the certificate's public key
        private_key_fingerprint: SHA-256 of the private key's public key
        serial_number: Certificate serial number
        key_size: Public key size in bits, if applicable
    """

    subject_cn: str
    subject_alt_names: Tuple[str, ...]
    not_before: datetime
    not_after: datetime
    issuer_cn: str
    key_fingerprint: str
    private_key_fingerprint: Optional[str] = None
    issuer_organization: Optional[str] = None
    serial_number: Optional[int] = None
    key_size: Optional[int] = None

    @property
    def is_self_signed(self) -> bool:
        return self.issuer_cn == self.subject_cn

    @property
    def key_matches(self) -> bool:
        return self.private_key_fingerprint == self.key_fingerprint


@dataclass(frozen=True)
class ValidationFinding:
    """Single validation finding.

    Attributes:
        kind: Finding kind
        message: Human-readable description
        days_left: Whole days until expiry (EXPIRING_SOON only)
    """

    kind: FindingKind
    message: str
    days_left: Optional[int] = None

    @property
    def is_blocking(self) -> bool:
        return self.kind in BLOCKING_FINDINGS


@dataclass
class ValidationResult:
    """Result of a validation run.

    Attributes:
        findings: Ordered findings; a clean run holds a single VALID finding
        facts: Parsed certificate facts, when the bundle could be parsed
        days_until_expiry: Whole days until expiry, when known
    """

    findings: List[ValidationFinding]
    facts: Optional[CertificateFacts] = None
    days_until_expiry: Optional[int] = None

    def has(self, kind: FindingKind) -> bool:
        return any(f.kind == kind for f in self.findings)

    @property
    def is_valid(self) -> bool:
        """True if no blocking finding is present."""
        return not any(f.is_blocking for f in self.findings)

    @property
    def errors(self) -> List[str]:
        return [f.message for f in self.findings if f.is_blocking]

    @property
    def warnings(self) -> List[str]:
        return [
            f.message
            for f in self.findings
            if not f.is_blocking and f.kind != FindingKind.VALID
        ]


@dataclass(frozen=True)
class LifecycleContext:
    """Explicit inputs for one lifecycle invocation.

    Attributes:
        domain: Domain the certificate must serve
        ssl_path: Directory holding the live certificate pair
        provider: Preferred acquisition strategy
        contact_email: ACME registration e-mail
        force: Replace even a valid bundle; with LETSENCRYPT, disables fallback
        interactive: Whether prompts (e.g. client installation) are allowed
        renewal_threshold_days: Days before expiry at which to renew
        enforce_domain: Treat domain mismatch as blocking
        legacy_locations: Ordered directories searched by consolidation
        cert_name: Base name of the live certificate files
    """

    domain: str
    ssl_path: Path
    provider: Provider = Provider.AUTO
    contact_email: Optional[str] = None
    force: bool = False
    interactive: bool = False
    renewal_threshold_days: int = 30
    enforce_domain: bool = False
    legacy_locations: Tuple[Path, ...] = ()
    cert_name: str = "milou"

    @property
    def provider_is_strict(self) -> bool:
        return self.force and self.provider == Provider.LETSENCRYPT

    @property
    def email(self) -> str:
        return self.contact_email or f"admin@{self.domain}"


@dataclass(frozen=True)
class PreflightCheck:
    """Outcome of one ACME preflight check."""

    name: str
    passed: bool
    detail: str = ""


@dataclass
class PreflightReport:
    """Aggregated ACME preflight checks."""

    checks: List[PreflightCheck] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(c.passed for c in self.checks)

    @property
    def reasons(self) -> List[str]:
        return [c.detail or c.name for c in self.checks if not c.passed]

    @property
    def client_missing(self) -> bool:
        return any(c.name == "client" and not c.passed for c in self.checks)

    @property
    def only_client_missing(self) -> bool:
        failed = [c for c in self.checks if not c.passed]
        return len(failed) == 1 and failed[0].name == "client"


@dataclass(frozen=True)
class BackupRecord:
    """Backup copy of a certificate pair."""

    label: str
    cert_path: Path
    key_path: Path
    created_at: datetime


@dataclass
class LifecycleOutcome:
    """Result of a lifecycle policy run.

    Attributes:
        state_before: State detected before acting
        state_after: State after acting
        action: What the policy did
        source: Source of the live bundle afterwards
        result: Validation of the live bundle afterwards
        warnings: Non-fatal issues surfaced during the run
        backup: Backup taken of the previous bundle, if any
    """

    state_before: LifecycleState
    state_after: LifecycleState
    action: LifecycleAction
    source: Optional[CertificateSource]
    result: ValidationResult
    warnings: List[str] = field(default_factory=list)
    backup: Optional[BackupRecord] = None

    @property
    def exit_code(self) -> ExitCode:
        if not self.result.is_valid:
            return ExitCode.FAILED
        if self.action == LifecycleAction.RENEWAL_FAILED:
            return ExitCode.DEGRADED
        return ExitCode.OK


def summarize_findings(findings: Sequence[ValidationFinding]) -> str:
    """Return a comma-separated list of finding kinds."""
    return ", ".join(f.kind.value for f in findings)
