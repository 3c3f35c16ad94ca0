"""
Shared pytest configuration and fixtures.

This module provides fixtures and configuration used across all test suites
(unit and integration tests): certificate factories built on real
cryptography keys, a key engine that reuses pre-generated keys, and a fake
ACME client.
"""

import ipaddress
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
)
from cryptography.x509.oid import NameOID

from milou_ssl.models.certificate import CertificateBundle, CertificateSource
from milou_ssl.tls.acme import AcmeAcquirer, AcmeClient
from milou_ssl.tls.engine import CertificateRequest, CryptographyEngine, KeyPairEngine
from milou_ssl.tls.generator import KeyPairGenerator
from milou_ssl.utils.exceptions import AcquisitionFailedError, GenerationFailedError


@pytest.fixture
def project_root() -> Path:
    """
    Return the project root directory.

    Returns:
        Path: Absolute path to the project root directory.
    """
    return Path(__file__).parent.parent


@pytest.fixture
def tests_dir(project_root: Path) -> Path:
    """
    Return the tests directory path.

    Args:
        project_root: Project root directory fixture.

    Returns:
        Path: Absolute path to the tests directory.
    """
    return project_root / "tests"


@pytest.fixture
def ssl_dir(tmp_path: Path) -> Path:
    """
    Return an empty, not yet created SSL directory.

    Returns:
        Path: tmp_path / "ssl"
    """
    return tmp_path / "ssl"


@pytest.fixture(scope="session")
def rsa_keys() -> List[rsa.RSAPrivateKey]:
    """
    Generate a small pool of 2048-bit keys once per test session.

    Returns:
        List of three distinct RSA private keys.
    """
    return [rsa.generate_private_key(public_exponent=65537, key_size=2048) for _ in range(3)]


def key_to_pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())


def _general_name(value: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(value))
    except ValueError:
        return x509.DNSName(value)


@pytest.fixture
def cert_factory(rsa_keys: List[rsa.RSAPrivateKey]) -> Callable[..., CertificateBundle]:
    """
    Return a factory that issues certificates with arbitrary facts.

    The factory accepts common_name, sans, not_before, not_after, issuer_cn,
    issuer_org, key_index and source. When issuer_cn differs from the common
    name the certificate is signed by a separate CA key.
    """

    def issue(
        common_name: str = "app.example.com",
        sans: Sequence[str] = ("app.example.com",),
        not_before: Optional[datetime] = None,
        not_after: Optional[datetime] = None,
        issuer_cn: Optional[str] = None,
        issuer_org: Optional[str] = None,
        key_index: int = 0,
        source: CertificateSource = CertificateSource.SELF_SIGNED_PROD,
    ) -> CertificateBundle:
        now = datetime.now(timezone.utc)
        not_before = not_before or now - timedelta(days=1)
        not_after = not_after or now + timedelta(days=365)
        key = rsa_keys[key_index]

        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        issuer_cn = issuer_cn or common_name
        issuer_attrs = []
        if issuer_org:
            issuer_attrs.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, issuer_org))
        issuer_attrs.append(x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn))
        issuer = x509.Name(issuer_attrs)
        signing_key = key if issuer_cn == common_name else rsa_keys[2]

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_after)
        )
        if sans:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([_general_name(s) for s in sans]),
                critical=False,
            )
        cert = builder.sign(signing_key, hashes.SHA256())

        return CertificateBundle(
            certificate_pem=cert.public_bytes(Encoding.PEM),
            private_key_pem=key_to_pem(key),
            source=source,
        )

    return issue


class PooledKeyEngine(KeyPairEngine):
    """KeyPairEngine that hands out pre-generated keys.

    Records requested key sizes and can be told to fail for given sizes.
    """

    def __init__(self, keys: List[rsa.RSAPrivateKey], fail_bits: Sequence[int] = ()) -> None:
        self.keys = keys
        self.fail_bits = set(fail_bits)
        self.requested_bits: List[int] = []
        self.requests: List[CertificateRequest] = []
        self._signer = CryptographyEngine()
        self._next = 0

    def generate_private_key(self, key_bits: int) -> bytes:
        self.requested_bits.append(key_bits)
        if key_bits in self.fail_bits:
            raise GenerationFailedError(f"{key_bits}-bit keys unavailable")
        key = self.keys[self._next % len(self.keys)]
        self._next += 1
        return key_to_pem(key)

    def self_sign(self, private_key_pem: bytes, request: CertificateRequest) -> bytes:
        self.requests.append(request)
        return self._signer.self_sign(private_key_pem, request)


@pytest.fixture
def engine(rsa_keys: List[rsa.RSAPrivateKey]) -> PooledKeyEngine:
    """Return a key engine backed by the session key pool."""
    return PooledKeyEngine(rsa_keys[:2])


@pytest.fixture
def engine_factory(rsa_keys: List[rsa.RSAPrivateKey]) -> Callable[..., PooledKeyEngine]:
    """Return a factory for key engines that fail for chosen key sizes."""
    return lambda fail_bits=(): PooledKeyEngine(rsa_keys[:2], fail_bits=fail_bits)


@pytest.fixture
def generator(engine: PooledKeyEngine) -> KeyPairGenerator:
    """Return a generator using the pooled key engine."""
    return KeyPairGenerator(engine)


class FakeAcmeClient(AcmeClient):
    """In-memory ACME client writing a prepared bundle to its live directory."""

    def __init__(self, live_root: Path, bundle: Optional[CertificateBundle] = None) -> None:
        self.live_root = live_root
        self.bundle = bundle
        self.installed = True
        self.obtain_error: Optional[AcquisitionFailedError] = None
        self.renew_error: Optional[AcquisitionFailedError] = None
        self.calls: List[Tuple[str, ...]] = []

    def is_installed(self) -> bool:
        return self.installed

    def obtain(self, domain: str, email: str) -> None:
        self.calls.append(("obtain", domain, email))
        if self.obtain_error:
            raise self.obtain_error
        self._write(domain)

    def renew(self, domain: str) -> None:
        self.calls.append(("renew", domain))
        if self.renew_error:
            raise self.renew_error
        self._write(domain)

    def live_paths(self, domain: str) -> Tuple[Path, Path]:
        live_dir = self.live_root / "live" / domain
        return live_dir / "fullchain.pem", live_dir / "privkey.pem"

    def install(self) -> bool:
        self.calls.append(("install",))
        self.installed = True
        return True

    def _write(self, domain: str) -> None:
        cert_file, key_file = self.live_paths(domain)
        cert_file.parent.mkdir(parents=True, exist_ok=True)
        cert_file.write_bytes(self.bundle.certificate_pem)
        key_file.write_bytes(self.bundle.private_key_pem)


@pytest.fixture
def fake_acme(tmp_path: Path) -> FakeAcmeClient:
    """Return a fake ACME client rooted in tmp_path/letsencrypt."""
    return FakeAcmeClient(tmp_path / "letsencrypt")


@pytest.fixture
def acquirer_factory() -> Callable[..., AcmeAcquirer]:
    """Return a factory for acquirers with stubbed privilege and port checks."""

    def build(client: AcmeClient, privileged: bool = True, port_free: bool = True) -> AcmeAcquirer:
        return AcmeAcquirer(
            client,
            privilege_check=lambda: privileged,
            port_check=lambda port: port_free,
        )

    return build


@pytest.fixture
def letsencrypt_bundle(cert_factory: Callable[..., CertificateBundle]) -> Callable[..., CertificateBundle]:
    """Return a factory for CA-issued (Let's Encrypt style) bundles."""

    def issue(domain: str = "app.example.com", days_left: float = 90, key_index: int = 1) -> CertificateBundle:
        now = datetime.now(timezone.utc)
        return cert_factory(
            common_name=domain,
            sans=(domain,),
            not_before=now - timedelta(days=90 - days_left),
            not_after=now + timedelta(days=days_left),
            issuer_cn="R3",
            issuer_org="Let's Encrypt",
            key_index=key_index,
            source=CertificateSource.LETSENCRYPT,
        )

    return issue


def write_pair(directory: Path, bundle: CertificateBundle, name: str = "milou") -> Dict[str, Path]:
    """Write a bundle as <name>.crt/<name>.key with production modes."""
    directory.mkdir(parents=True, exist_ok=True)
    cert_file = directory / f"{name}.crt"
    key_file = directory / f"{name}.key"
    cert_file.write_bytes(bundle.certificate_pem)
    key_file.write_bytes(bundle.private_key_pem)
    cert_file.chmod(0o644)
    key_file.chmod(0o600)
    return {"cert": cert_file, "key": key_file}


@pytest.fixture
def install_pair() -> Callable[..., Dict[str, Path]]:
    """Return a helper that writes a bundle into a directory."""
    return write_pair
