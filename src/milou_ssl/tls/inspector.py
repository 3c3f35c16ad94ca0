"""Certificate inspection via structured X.509 parsing.

Tolerates certificates from any CA. For a chain, the first PEM block is taken
as the leaf.
"""

import logging
from typing import Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import dh, dsa, ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from cryptography.x509.oid import NameOID

from ..models.certificate import CertificateBundle, CertificateFacts
from ..utils.exceptions import UnparsableCertificateError

logger = logging.getLogger(__name__)

PublicKey = Union[
    rsa.RSAPublicKey,
    ec.EllipticCurvePublicKey,
    dsa.DSAPublicKey,
    dh.DHPublicKey,
    ed25519.Ed25519PublicKey,
    ed448.Ed448PublicKey,
]


def public_key_fingerprint(public_key: PublicKey) -> str:
    """Return the SHA-256 hex digest of a public key's DER SubjectPublicKeyInfo.

    Used for both the certificate's key and the private key's derived public
    key, so the two fingerprints are directly comparable.
    """
    der = public_key.public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
    digest = hashes.Hash(hashes.SHA256())
    digest.update(der)
    return digest.finalize().hex()


def load_leaf_certificate(cert_pem: bytes) -> x509.Certificate:
    """Load the first certificate of a PEM chain.

    Raises:
        UnparsableCertificateError: If no certificate can be parsed
    """
    try:
        chain = x509.load_pem_x509_certificates(cert_pem)
    except ValueError as e:
        raise UnparsableCertificateError(f"Invalid PEM certificate: {e}") from e

    if not chain:
        raise UnparsableCertificateError("No certificate found in PEM data")
    return chain[0]


def load_private_key(key_pem: bytes):
    """Load an unencrypted PEM private key.

    Raises:
        UnparsableCertificateError: If the key is malformed or encrypted
    """
    try:
        return serialization.load_pem_private_key(key_pem, password=None)
    except TypeError as e:
        raise UnparsableCertificateError(
            "Private key is encrypted. Provide an unencrypted PEM key"
        ) from e
    except ValueError as e:
        raise UnparsableCertificateError(f"Invalid PEM private key: {e}") from e


def _name_attribute(name: x509.Name, oid: x509.ObjectIdentifier) -> Optional[str]:
    values = name.get_attributes_for_oid(oid)
    if not values:
        return None
    value = values[0].value
    return value.decode("utf-8", "replace") if isinstance(value, bytes) else value


class CertificateInspector:
    """Extract CertificateFacts from a bundle."""

    def inspect(self, bundle: CertificateBundle) -> CertificateFacts:
        """Parse the bundle's certificate and key.

        Args:
            bundle: Bundle to inspect; the private key is optional

        Returns:
            CertificateFacts for the leaf certificate

        Raises:
            UnparsableCertificateError: If the certificate or key cannot be parsed
        """
        if not bundle.certificate_pem:
            raise UnparsableCertificateError("Bundle has no certificate data")

        cert = load_leaf_certificate(bundle.certificate_pem)

        private_fingerprint = None
        if bundle.private_key_pem:
            private_key = load_private_key(bundle.private_key_pem)
            private_fingerprint = public_key_fingerprint(private_key.public_key())

        try:
            san_ext = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            sans = tuple(
                san_ext.value.get_values_for_type(x509.DNSName)
                + [str(ip) for ip in san_ext.value.get_values_for_type(x509.IPAddress)]
            )
        except x509.ExtensionNotFound:
            sans = ()
        except ValueError as e:
            raise UnparsableCertificateError(f"Malformed certificate extensions: {e}") from e

        public_key = cert.public_key()
        facts = CertificateFacts(
            subject_cn=_name_attribute(cert.subject, NameOID.COMMON_NAME) or "",
            subject_alt_names=sans,
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
            issuer_cn=_name_attribute(cert.issuer, NameOID.COMMON_NAME) or "",
            key_fingerprint=public_key_fingerprint(public_key),
            private_key_fingerprint=private_fingerprint,
            issuer_organization=_name_attribute(cert.issuer, NameOID.ORGANIZATION_NAME),
            serial_number=cert.serial_number,
            key_size=getattr(public_key, "key_size", None),
        )

        logger.debug(
            f"Inspected certificate CN={facts.subject_cn} issuer={facts.issuer_cn} "
            f"expires={facts.not_after.isoformat()}"
        )
        return facts
