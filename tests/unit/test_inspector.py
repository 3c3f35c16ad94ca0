"""Unit tests for certificate inspection."""

from datetime import datetime, timedelta, timezone

import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import (
    BestAvailableEncryption,
    Encoding,
    NoEncryption,
    PrivateFormat,
)

from milou_ssl.models.certificate import CertificateBundle, CertificateSource
from milou_ssl.tls.inspector import CertificateInspector, public_key_fingerprint
from milou_ssl.utils.exceptions import UnparsableCertificateError


@pytest.fixture
def inspector():
    return CertificateInspector()


class TestInspect:
    """Test fact extraction."""

    def test_extracts_facts(self, inspector, cert_factory, rsa_keys):
        """Test subject, SANs, validity and fingerprints are extracted."""
        # Arrange
        not_before = datetime(2026, 1, 1, tzinfo=timezone.utc)
        not_after = datetime(2027, 1, 1, tzinfo=timezone.utc)
        bundle = cert_factory(
            common_name="app.example.com",
            sans=("app.example.com", "*.app.example.com"),
            not_before=not_before,
            not_after=not_after,
        )

        # Act
        facts = inspector.inspect(bundle)

        # Assert
        assert facts.subject_cn == "app.example.com"
        assert facts.subject_alt_names == ("app.example.com", "*.app.example.com")
        assert facts.not_before == not_before
        assert facts.not_after == not_after
        assert facts.issuer_cn == "app.example.com"
        assert facts.is_self_signed
        assert facts.key_matches
        assert facts.key_size == 2048
        assert facts.key_fingerprint == public_key_fingerprint(rsa_keys[0].public_key())

    def test_ca_issued_facts(self, inspector, letsencrypt_bundle):
        """Test issuer CN and organisation of a CA-issued certificate."""
        facts = inspector.inspect(letsencrypt_bundle())

        assert facts.issuer_cn == "R3"
        assert facts.issuer_organization == "Let's Encrypt"
        assert not facts.is_self_signed

    def test_chain_uses_leaf(self, inspector, cert_factory):
        """Test the first PEM block of a chain is treated as the leaf."""
        leaf = cert_factory(common_name="leaf.example.com", sans=("leaf.example.com",))
        other = cert_factory(common_name="ca.example.com", sans=(), key_index=1)
        chain = CertificateBundle(
            certificate_pem=leaf.certificate_pem + other.certificate_pem,
            private_key_pem=leaf.private_key_pem,
            source=CertificateSource.USER_IMPORTED,
        )

        facts = inspector.inspect(chain)

        assert facts.subject_cn == "leaf.example.com"
        assert facts.key_matches

    def test_mismatched_key(self, inspector, cert_factory):
        """Test fingerprints differ when the key belongs to another certificate."""
        first = cert_factory(key_index=0)
        second = cert_factory(key_index=1)
        swapped = CertificateBundle(
            certificate_pem=first.certificate_pem,
            private_key_pem=second.private_key_pem,
            source=CertificateSource.USER_IMPORTED,
        )

        facts = inspector.inspect(swapped)

        assert not facts.key_matches

    def test_no_san_extension(self, inspector, cert_factory):
        """Test certificates without SAN yield an empty tuple."""
        facts = inspector.inspect(cert_factory(sans=()))

        assert facts.subject_alt_names == ()

    def test_ip_san(self, inspector, cert_factory):
        """Test IP SAN entries are returned as strings."""
        facts = inspector.inspect(cert_factory(common_name="localhost", sans=("localhost", "127.0.0.1")))

        assert "127.0.0.1" in facts.subject_alt_names

    def test_key_optional(self, inspector, cert_factory):
        """Test a bundle without key still yields facts."""
        bundle = cert_factory()
        cert_only = CertificateBundle(bundle.certificate_pem, None, bundle.source)

        facts = inspector.inspect(cert_only)

        assert facts.private_key_fingerprint is None
        assert not facts.key_matches

    def test_ec_key_fingerprint(self, inspector, cert_factory):
        """Test fingerprints are computed for non-RSA keys."""
        ec_key = ec.generate_private_key(ec.SECP256R1())
        ec_pem = ec_key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
        bundle = CertificateBundle(
            cert_factory().certificate_pem, ec_pem, CertificateSource.USER_IMPORTED
        )

        facts = inspector.inspect(bundle)

        assert facts.private_key_fingerprint == public_key_fingerprint(ec_key.public_key())
        assert not facts.key_matches


class TestUnparsable:
    """Test malformed input handling."""

    def test_garbage_certificate(self, inspector, cert_factory):
        """Test non-PEM certificate bytes raise UnparsableCertificateError."""
        bundle = CertificateBundle(
            b"not a certificate", cert_factory().private_key_pem, CertificateSource.USER_IMPORTED
        )

        with pytest.raises(UnparsableCertificateError):
            inspector.inspect(bundle)

    def test_truncated_certificate(self, inspector, cert_factory):
        """Test a truncated PEM body raises UnparsableCertificateError."""
        good = cert_factory()
        bundle = CertificateBundle(
            good.certificate_pem[:120], good.private_key_pem, CertificateSource.USER_IMPORTED
        )

        with pytest.raises(UnparsableCertificateError):
            inspector.inspect(bundle)

    def test_garbage_key(self, inspector, cert_factory):
        """Test an invalid private key raises UnparsableCertificateError."""
        bundle = CertificateBundle(
            cert_factory().certificate_pem, b"garbage", CertificateSource.USER_IMPORTED
        )

        with pytest.raises(UnparsableCertificateError, match="private key"):
            inspector.inspect(bundle)

    def test_encrypted_key(self, inspector, cert_factory, rsa_keys):
        """Test an encrypted private key is rejected with a clear message."""
        encrypted = rsa_keys[0].private_bytes(
            Encoding.PEM, PrivateFormat.PKCS8, BestAvailableEncryption(b"secret")
        )
        bundle = CertificateBundle(
            cert_factory().certificate_pem, encrypted, CertificateSource.USER_IMPORTED
        )

        with pytest.raises(UnparsableCertificateError, match="encrypted"):
            inspector.inspect(bundle)

    def test_empty_certificate(self, inspector):
        """Test a bundle without certificate data is unparsable."""
        with pytest.raises(UnparsableCertificateError):
            inspector.inspect(CertificateBundle(None, None, CertificateSource.USER_IMPORTED))


def test_expiry_is_timezone_aware(cert_factory):
    """Test not_after is a UTC-aware datetime usable in arithmetic."""
    facts = CertificateInspector().inspect(cert_factory())

    assert facts.not_after - datetime.now(timezone.utc) > timedelta(days=300)
