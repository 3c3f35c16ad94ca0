"""Key pair engine capability and its cryptography-backed adapter.

The engine is the only place that touches asymmetric key and X.509 builder
primitives. Generation and policy logic depend on the KeyPairEngine interface so
tests can substitute a stub.
"""

import ipaddress
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
)
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from ..utils.exceptions import GenerationFailedError

logger = logging.getLogger(__name__)

SUPPORTED_KEY_SIZES = (2048, 3072, 4096)


@dataclass(frozen=True)
class CertificateRequest:
    """Subject, SAN set and validity window for a self-signed certificate.

    Attributes:
        common_name: Subject CN (also used as issuer CN)
        subject_alt_names: DNS names and IP literals
        validity_days: Days from not_before to not_after
        organization: Subject O
        organizational_unit: Subject OU
        country: Subject C
        state: Subject ST
        locality: Subject L
        not_before: Validity start; defaults to the current time
    """

    common_name: str
    subject_alt_names: Tuple[str, ...]
    validity_days: int
    organization: Optional[str] = None
    organizational_unit: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    locality: Optional[str] = None
    not_before: Optional[datetime] = None


class KeyPairEngine(ABC):
    """Narrow interface over key generation and certificate signing."""

    @abstractmethod
    def generate_private_key(self, key_bits: int) -> bytes:
        """Generate a private key and return it PEM encoded."""

    @abstractmethod
    def self_sign(self, private_key_pem: bytes, request: CertificateRequest) -> bytes:
        """Issue a self-signed certificate for the key and return it PEM encoded."""


class CryptographyEngine(KeyPairEngine):
    """KeyPairEngine backed by the cryptography package (RSA keys, SHA-256)."""

    def generate_private_key(self, key_bits: int) -> bytes:
        if key_bits not in SUPPORTED_KEY_SIZES:
            raise GenerationFailedError(
                f"Unsupported key size: {key_bits}. "
                f"Must be one of: {', '.join(str(s) for s in SUPPORTED_KEY_SIZES)}"
            )

        logger.debug(f"Generating {key_bits}-bit RSA key")
        try:
            key = rsa.generate_private_key(public_exponent=65537, key_size=key_bits)
        except (ValueError, TypeError) as e:
            raise GenerationFailedError(f"Key generation failed: {e}") from e

        return key.private_bytes(
            encoding=Encoding.PEM,
            format=PrivateFormat.PKCS8,
            encryption_algorithm=NoEncryption(),
        )

    def self_sign(self, private_key_pem: bytes, request: CertificateRequest) -> bytes:
        try:
            key = serialization.load_pem_private_key(private_key_pem, password=None)
        except (ValueError, TypeError) as e:
            raise GenerationFailedError(f"Cannot load generated private key: {e}") from e

        try:
            name = _build_name(request)
            not_before = request.not_before or datetime.now(timezone.utc)
            not_after = not_before + timedelta(days=request.validity_days)

            builder = (
                x509.CertificateBuilder()
                .subject_name(name)
                .issuer_name(name)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(not_before)
                .not_valid_after(not_after)
                .add_extension(
                    x509.BasicConstraints(ca=False, path_length=None), critical=True
                )
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        content_commitment=False,
                        key_encipherment=True,
                        data_encipherment=False,
                        key_agreement=False,
                        key_cert_sign=False,
                        crl_sign=False,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(
                    x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
                    critical=False,
                )
            )
            if request.subject_alt_names:
                builder = builder.add_extension(
                    x509.SubjectAlternativeName(
                        [_general_name(n) for n in request.subject_alt_names]
                    ),
                    critical=False,
                )

            cert = builder.sign(key, hashes.SHA256())
        except (ValueError, TypeError) as e:
            raise GenerationFailedError(
                f"Certificate signing rejected parameters for {request.common_name!r}: {e}"
            ) from e

        return cert.public_bytes(Encoding.PEM)


def _build_name(request: CertificateRequest) -> x509.Name:
    attributes = []
    if request.country:
        attributes.append(x509.NameAttribute(NameOID.COUNTRY_NAME, request.country))
    if request.state:
        attributes.append(
            x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, request.state)
        )
    if request.locality:
        attributes.append(x509.NameAttribute(NameOID.LOCALITY_NAME, request.locality))
    if request.organization:
        attributes.append(
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, request.organization)
        )
    if request.organizational_unit:
        attributes.append(
            x509.NameAttribute(
                NameOID.ORGANIZATIONAL_UNIT_NAME, request.organizational_unit
            )
        )
    attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, request.common_name))
    return x509.Name(attributes)


def _general_name(value: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(value))
    except ValueError:
        return x509.DNSName(value)
