"""Self-signed certificate generation per profile.

Generation is side-effect free: it returns a CertificateBundle and leaves
persistence to the store.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from ..models.certificate import CertificateBundle, CertificateSource
from ..utils.exceptions import GenerationFailedError
from .engine import CertificateRequest, CryptographyEngine, KeyPairEngine
from .matcher import is_ip_literal, is_local_domain, is_valid_hostname, normalize

logger = logging.getLogger(__name__)


class CertificateProfile(Enum):
    """Self-signed generation profiles."""

    LOCALHOST_DEV = "localhost-dev"
    SELF_SIGNED_PROD = "self-signed-prod"
    MINIMAL = "minimal"

    @property
    def source(self) -> CertificateSource:
        return CertificateSource(self.value)


@dataclass(frozen=True)
class ProfileDefaults:
    """Key size, validity and subject attributes for a profile."""

    key_bits: int
    validity_days: int
    organization: str
    organizational_unit: Optional[str] = None
    country: str = "US"
    state: Optional[str] = None
    locality: Optional[str] = None


PROFILE_DEFAULTS = {
    CertificateProfile.LOCALHOST_DEV: ProfileDefaults(
        key_bits=2048,
        validity_days=365,
        organization="Milou Development",
    ),
    CertificateProfile.SELF_SIGNED_PROD: ProfileDefaults(
        key_bits=4096,
        validity_days=365,
        organization="Milou",
        organizational_unit="Self-Signed",
    ),
    CertificateProfile.MINIMAL: ProfileDefaults(
        key_bits=2048,
        validity_days=30,
        organization="Milou",
        state="Fallback",
        locality="Minimal",
    ),
}

LOCALHOST_SANS: Tuple[str, ...] = ("localhost", "*.localhost", "127.0.0.1", "::1")


def profile_for_domain(domain: str) -> CertificateProfile:
    """Pick LOCALHOST_DEV for local names and SELF_SIGNED_PROD otherwise."""
    if is_local_domain(domain):
        return CertificateProfile.LOCALHOST_DEV
    return CertificateProfile.SELF_SIGNED_PROD


def subject_alt_names(profile: CertificateProfile, domain: str) -> Tuple[str, ...]:
    """Return the SAN set a profile issues for a domain.

    Example:
        >>> subject_alt_names(CertificateProfile.SELF_SIGNED_PROD, "app.example.com")
        ('app.example.com', '*.app.example.com')
    """
    if profile == CertificateProfile.LOCALHOST_DEV:
        if domain in LOCALHOST_SANS:
            return LOCALHOST_SANS
        return (domain,) + LOCALHOST_SANS

    if profile == CertificateProfile.SELF_SIGNED_PROD and not is_ip_literal(domain):
        return (domain, f"*.{domain}")

    return (domain,)


class KeyPairGenerator:
    """Produce self-signed certificate bundles.

    Example:
        >>> generator = KeyPairGenerator()
        >>> bundle = generator.generate(CertificateProfile.SELF_SIGNED_PROD, "app.example.com")
        >>> bundle.source
        <CertificateSource.SELF_SIGNED_PROD: 'self-signed-prod'>
    """

    def __init__(self, engine: Optional[KeyPairEngine] = None) -> None:
        self.engine = engine or CryptographyEngine()

    def generate(
        self,
        profile: CertificateProfile,
        subject_domain: str,
        validity_days: Optional[int] = None,
        key_bits: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> CertificateBundle:
        """Generate a private key and self-signed certificate.

        Args:
            profile: Generation profile selecting the defaults
            subject_domain: Domain used as CN and primary SAN
            validity_days: Override the profile's validity
            key_bits: Override the profile's key size
            now: Validity start (defaults to the current time)

        Returns:
            CertificateBundle tagged with the profile's source

        Raises:
            GenerationFailedError: If the domain is invalid or a primitive fails
        """
        domain = normalize(subject_domain)
        if not (is_valid_hostname(domain) or is_ip_literal(domain)):
            raise GenerationFailedError(
                f"Invalid subject domain: {subject_domain!r}. "
                f"Use letters, digits, hyphens and dots only"
            )

        defaults = PROFILE_DEFAULTS[profile]
        validity = validity_days if validity_days is not None else defaults.validity_days
        bits = key_bits if key_bits is not None else defaults.key_bits
        if validity < 1:
            raise GenerationFailedError(f"Validity must be at least 1 day, got {validity}")

        request = CertificateRequest(
            common_name=domain,
            subject_alt_names=subject_alt_names(profile, domain),
            validity_days=validity,
            organization=defaults.organization,
            organizational_unit=defaults.organizational_unit,
            country=defaults.country,
            state=defaults.state,
            locality=defaults.locality,
            not_before=now,
        )

        logger.info(
            f"Generating {profile.value} certificate for {domain} "
            f"({bits}-bit key, {validity} days)"
        )
        key_pem = self.engine.generate_private_key(bits)
        cert_pem = self.engine.self_sign(key_pem, request)

        return CertificateBundle(
            certificate_pem=cert_pem,
            private_key_pem=key_pem,
            source=profile.source,
        )
