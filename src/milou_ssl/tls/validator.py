"""Certificate bundle validation.

Composes the inspector and domain matcher into an ordered list of findings.
The caller decides blocking vs. advisory through ValidationResult.is_valid.
"""

import logging
import os
import stat
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from ..models.certificate import (
    CertificateBundle,
    FindingKind,
    ValidationFinding,
    ValidationResult,
)
from ..utils.exceptions import UnparsableCertificateError
from .inspector import CertificateInspector
from .matcher import matches

logger = logging.getLogger(__name__)

DEFAULT_RENEWAL_THRESHOLD_DAYS = 30
KEY_FILE_MODE = 0o600


def key_permissions_ok(mode: int) -> bool:
    """Check that no group or other permission bit is set."""
    return stat.S_IMODE(mode) & 0o077 == 0


class Validator:
    """Validate certificate bundles.

    Example:
        >>> result = Validator().validate(bundle, "app.example.com", enforce_domain=True)
        >>> result.is_valid
        True
    """

    def __init__(self, inspector: Optional[CertificateInspector] = None) -> None:
        self.inspector = inspector or CertificateInspector()

    def validate(
        self,
        bundle: Optional[CertificateBundle],
        expected_domain: Optional[str] = None,
        renewal_threshold_days: int = DEFAULT_RENEWAL_THRESHOLD_DAYS,
        enforce_domain: bool = False,
        allow_local: bool = False,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        """Run all checks against a bundle.

        Args:
            bundle: Bundle to validate (None counts as missing)
            expected_domain: Domain the certificate must serve
            renewal_threshold_days: Days before expiry that count as expiring soon
            enforce_domain: Check the domain and report DOMAIN_MISMATCH
            allow_local: Let localhost and IP literals bypass domain matching
            now: Reference time (defaults to the current UTC time)

        Returns:
            ValidationResult with ordered findings
        """
        if bundle is None or not bundle.certificate_pem or not bundle.private_key_pem:
            return ValidationResult(findings=[_missing_finding(bundle)])

        try:
            facts = self.inspector.inspect(bundle)
        except UnparsableCertificateError as e:
            logger.debug(f"Certificate could not be parsed: {e}")
            return ValidationResult(
                findings=[
                    ValidationFinding(
                        FindingKind.UNPARSABLE_CERTIFICATE,
                        f"Certificate could not be parsed: {e}",
                    )
                ]
            )

        findings: List[ValidationFinding] = []

        if not facts.key_matches:
            findings.append(
                ValidationFinding(
                    FindingKind.KEY_MISMATCH,
                    "Private key does not match the certificate's public key",
                )
            )

        now = now or datetime.now(timezone.utc)
        remaining = facts.not_after - now
        days_left = remaining.days
        if remaining < timedelta(0):
            findings.append(
                ValidationFinding(
                    FindingKind.EXPIRED,
                    f"Certificate expired on {facts.not_after:%Y-%m-%d %H:%M} UTC",
                    days_left=days_left,
                )
            )
        elif remaining <= timedelta(days=renewal_threshold_days):
            findings.append(
                ValidationFinding(
                    FindingKind.EXPIRING_SOON,
                    f"Certificate expires in {days_left} days "
                    f"(renewal threshold {renewal_threshold_days} days)",
                    days_left=days_left,
                )
            )

        if expected_domain and enforce_domain:
            if not matches(
                expected_domain,
                facts.subject_cn,
                facts.subject_alt_names,
                allow_local=allow_local,
            ):
                findings.append(
                    ValidationFinding(
                        FindingKind.DOMAIN_MISMATCH,
                        f"Certificate (CN={facts.subject_cn}) does not cover "
                        f"{expected_domain}",
                    )
                )

        if bundle.key_path is not None:
            try:
                mode = os.stat(bundle.key_path).st_mode
            except FileNotFoundError:
                mode = None
            if mode is not None and not key_permissions_ok(mode):
                findings.append(
                    ValidationFinding(
                        FindingKind.BAD_PERMISSIONS,
                        f"Private key {bundle.key_path} has mode "
                        f"{stat.S_IMODE(mode):o}, expected {KEY_FILE_MODE:o}",
                    )
                )

        if not findings:
            findings.append(ValidationFinding(FindingKind.VALID, "Certificate is valid"))

        return ValidationResult(findings=findings, facts=facts, days_until_expiry=days_left)


def _missing_finding(bundle: Optional[CertificateBundle]) -> ValidationFinding:
    if bundle is None:
        return ValidationFinding(FindingKind.MISSING_FILE, "No certificate found")

    missing = []
    if not bundle.certificate_pem:
        missing.append(str(bundle.cert_path) if bundle.cert_path else "certificate")
    if not bundle.private_key_pem:
        missing.append(str(bundle.key_path) if bundle.key_path else "private key")
    return ValidationFinding(FindingKind.MISSING_FILE, f"Missing: {', '.join(missing)}")
