"""Certificate acquisition from a public CA through an external ACME client.

The ACME protocol itself is delegated to certbot (standalone HTTP-01). This
module runs preflight checks, invokes the client, reads its live output files
and turns failures into diagnostic hints.
"""

import ipaddress
import logging
import os
import shutil
import socket
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

import psutil

from ..logging_audit import log_audit_event
from ..models.certificate import (
    CertificateBundle,
    CertificateSource,
    PreflightCheck,
    PreflightReport,
)
from ..utils.exceptions import AcquisitionFailedError, PreflightFailedError
from .matcher import is_local_domain, is_valid_hostname, normalize

logger = logging.getLogger(__name__)

DEFAULT_HTTP_PORT = 80
DEFAULT_ACME_CONFIG_DIR = Path("/etc/letsencrypt")
NON_PUBLIC_SUFFIXES = (".local", ".localdomain", ".internal", ".lan", ".test", ".invalid")

HINT_DNS = "Domain does not resolve publicly; check its DNS A/AAAA records"
HINT_PORT = "Port 80 is not reachable from the internet; check NAT and port forwarding"
HINT_RATE_LIMIT = "Let's Encrypt rate limit reached; wait before retrying or use staging"
HINT_FIREWALL = "A firewall may be blocking inbound HTTP on port 80"

# Package manager -> install commands for certbot, tried in order.
INSTALL_COMMANDS: Sequence[Tuple[str, Sequence[Sequence[str]]]] = (
    ("apt-get", (("apt-get", "update"), ("apt-get", "install", "-y", "certbot"))),
    ("dnf", (("dnf", "install", "-y", "certbot"),)),
    ("yum", (("yum", "install", "-y", "certbot"),)),
    ("snap", (("snap", "install", "--classic", "certbot"),)),
)


def can_use_letsencrypt(domain: str) -> bool:
    """Check whether a domain looks publicly resolvable by name.

    Example:
        >>> can_use_letsencrypt("app.example.com")
        True
        >>> can_use_letsencrypt("localhost")
        False
    """
    name = normalize(domain)
    if is_local_domain(name) or not is_valid_hostname(name):
        return False
    if "." not in name:
        return False
    return not name.endswith(NON_PUBLIC_SUFFIXES)


def has_elevated_privilege() -> bool:
    """Check whether the process runs as root."""
    if not hasattr(os, "geteuid"):
        return False
    return os.geteuid() == 0


def is_port_available(port: int) -> bool:
    """Check that no process is listening on a TCP port.

    Uses psutil's connection table; falls back to a bind probe when the table
    cannot be read without privilege.
    """
    try:
        for conn in psutil.net_connections(kind="inet"):
            if conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port:
                logger.debug(f"Port {port} in use by PID {conn.pid}")
                return False
        return True
    except psutil.AccessDenied:
        logger.debug("Connection table not readable, probing port with bind()")

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind(("0.0.0.0", port))
        except OSError:
            return False
    return True


def resolves_publicly(domain: str) -> bool:
    """Check that a domain resolves to at least one public address."""
    try:
        infos = socket.getaddrinfo(domain, None)
    except socket.gaierror:
        return False

    for info in infos:
        address = ipaddress.ip_address(info[4][0].split("%")[0])
        if address.is_global:
            return True
    return False


def diagnose_failure(domain: str, output: str) -> List[str]:
    """Guess likely causes of an ACME failure from client output and DNS.

    Returns:
        Hints, most specific first; all generic hints when nothing matches
    """
    text = output.lower()
    hints: List[str] = []

    if "rate limit" in text or "too many certificates" in text:
        hints.append(HINT_RATE_LIMIT)
    if "dns problem" in text or "nxdomain" in text or not resolves_publicly(domain):
        hints.append(HINT_DNS)
    if "connection refused" in text or "timeout during connect" in text:
        hints.append(HINT_PORT)
    if "firewall" in text or "timeout" in text:
        hints.append(HINT_FIREWALL)

    if not hints:
        hints = [HINT_DNS, HINT_PORT, HINT_RATE_LIMIT, HINT_FIREWALL]
    return list(dict.fromkeys(hints))


class AcmeClient(ABC):
    """Capability interface over an external ACME client."""

    @abstractmethod
    def is_installed(self) -> bool:
        """Check whether the client binary is available."""

    @abstractmethod
    def obtain(self, domain: str, email: str) -> None:
        """Run the standalone HTTP-01 flow for a domain.

        Raises:
            AcquisitionFailedError: If the client reports failure
        """

    @abstractmethod
    def renew(self, domain: str) -> None:
        """Renew the domain's certificate.

        Raises:
            AcquisitionFailedError: If the client reports failure
        """

    @abstractmethod
    def live_paths(self, domain: str) -> Tuple[Path, Path]:
        """Return (certificate chain, private key) paths for a domain."""

    def install(self) -> bool:
        """Install the client. Returns True if it is installed afterwards."""
        return False


class CertbotClient(AcmeClient):
    """AcmeClient adapter that shells out to certbot.

    Attributes:
        command: certbot executable name or path
        config_dir: certbot configuration directory (holds live/<domain>/)
        http_port: Port for the standalone HTTP-01 listener
        staging: Use the Let's Encrypt staging CA
        timeout: Seconds before a certbot run is abandoned
    """

    def __init__(
        self,
        command: str = "certbot",
        config_dir: Path = DEFAULT_ACME_CONFIG_DIR,
        http_port: int = DEFAULT_HTTP_PORT,
        staging: bool = False,
        timeout: int = 300,
    ) -> None:
        self.command = command
        self.config_dir = Path(config_dir)
        self.http_port = http_port
        self.staging = staging
        self.timeout = timeout

    def is_installed(self) -> bool:
        return shutil.which(self.command) is not None

    def obtain(self, domain: str, email: str) -> None:
        args = [
            "certonly",
            "--standalone",
            "--non-interactive",
            "--agree-tos",
            "--email",
            email,
            "-d",
            domain,
            "--http-01-port",
            str(self.http_port),
        ]
        self._run(args, f"Certificate request for {domain} failed")

    def renew(self, domain: str) -> None:
        # The lifecycle threshold decides when a renewal is due, not certbot.
        args = ["renew", "--cert-name", domain, "--force-renewal", "--non-interactive"]
        self._run(args, f"Certificate renewal for {domain} failed")

    def live_paths(self, domain: str) -> Tuple[Path, Path]:
        live_dir = self.config_dir / "live" / domain
        return live_dir / "fullchain.pem", live_dir / "privkey.pem"

    def install(self) -> bool:
        for manager, commands in INSTALL_COMMANDS:
            if shutil.which(manager) is None:
                continue
            logger.info(f"Installing certbot with {manager}")
            for cmd in commands:
                try:
                    subprocess.run(
                        list(cmd),
                        check=True,
                        capture_output=True,
                        text=True,
                        timeout=self.timeout,
                    )
                except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
                    logger.error(f"certbot installation with {manager} failed: {e}")
                    return False
            return self.is_installed()

        logger.error("No supported package manager found (apt-get, dnf, yum, snap)")
        return False

    def _run(self, args: List[str], failure_message: str) -> str:
        cmd = [self.command, *args, "--config-dir", str(self.config_dir)]
        if self.staging:
            cmd.append("--staging")

        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise AcquisitionFailedError(
                f"{failure_message}: timed out after {self.timeout}s",
                output=str(e.output or ""),
            ) from e
        except OSError as e:
            raise AcquisitionFailedError(f"{failure_message}: {e}") from e

        output = f"{completed.stdout}\n{completed.stderr}".strip()
        if completed.returncode != 0:
            raise AcquisitionFailedError(
                f"{failure_message} (exit code {completed.returncode})",
                output=output,
            )
        return output


class AcmeAcquirer:
    """Obtain and renew certificates through an AcmeClient.

    Example:
        >>> acquirer = AcmeAcquirer(CertbotClient())
        >>> report = acquirer.preflight("app.example.com")
        >>> if report.passed:
        ...     bundle = acquirer.acquire("app.example.com", "ops@example.com")
    """

    def __init__(
        self,
        client: AcmeClient,
        http_port: int = DEFAULT_HTTP_PORT,
        privilege_check: Callable[[], bool] = has_elevated_privilege,
        port_check: Callable[[int], bool] = is_port_available,
    ) -> None:
        self.client = client
        self.http_port = http_port
        self.privilege_check = privilege_check
        self.port_check = port_check

    def preflight(self, domain: str) -> PreflightReport:
        """Run every preflight check; none short-circuits the others."""
        checks = [
            PreflightCheck(
                "domain",
                can_use_letsencrypt(domain),
                f"{domain} is not a public domain name",
            ),
            PreflightCheck(
                "privilege",
                self.privilege_check(),
                "Elevated privilege (root) is required",
            ),
            PreflightCheck(
                "port",
                self.port_check(self.http_port),
                f"Port {self.http_port} is already in use",
            ),
            PreflightCheck(
                "client",
                self.client.is_installed(),
                "ACME client (certbot) is not installed",
            ),
        ]
        report = PreflightReport(checks=checks)
        for check in checks:
            logger.debug(f"Preflight {check.name}: {'ok' if check.passed else 'failed'}")
        return report

    def acquire(self, domain: str, contact_email: str) -> CertificateBundle:
        """Obtain a certificate for a domain.

        Args:
            domain: Public domain name
            contact_email: ACME registration e-mail

        Returns:
            CertificateBundle tagged LETSENCRYPT

        Raises:
            PreflightFailedError: If any preflight check fails
            AcquisitionFailedError: If the client fails or produces no files
        """
        self._require_preflight(domain)

        logger.info(f"Requesting Let's Encrypt certificate for {domain}")
        try:
            self.client.obtain(domain, contact_email)
        except AcquisitionFailedError as e:
            raise self._with_hints(domain, e) from e

        bundle = self._read_live(domain)
        log_audit_event("CERTIFICATE_ACQUIRED", {"status": "success", "domain": domain})
        return bundle

    def renew(self, domain: str) -> CertificateBundle:
        """Renew a domain's certificate and re-read the refreshed files.

        Raises:
            PreflightFailedError: If any preflight check fails
            AcquisitionFailedError: If the renewal fails
        """
        self._require_preflight(domain)

        logger.info(f"Renewing Let's Encrypt certificate for {domain}")
        try:
            self.client.renew(domain)
        except AcquisitionFailedError as e:
            raise self._with_hints(domain, e) from e

        return self._read_live(domain)

    def _require_preflight(self, domain: str) -> None:
        report = self.preflight(domain)
        if not report.passed:
            raise PreflightFailedError(
                f"ACME preflight failed: {'; '.join(report.reasons)}",
                reasons=report.reasons,
            )

    def _with_hints(self, domain: str, error: AcquisitionFailedError) -> AcquisitionFailedError:
        hints = error.hints or diagnose_failure(domain, error.output or "")
        return AcquisitionFailedError(str(error), hints=hints, output=error.output)

    def _read_live(self, domain: str) -> CertificateBundle:
        cert_file, key_file = self.client.live_paths(domain)
        try:
            cert_pem = cert_file.read_bytes()
            key_pem = key_file.read_bytes()
        except OSError as e:
            raise AcquisitionFailedError(
                f"ACME client reported success but files are unreadable: {e}"
            ) from e

        return CertificateBundle(
            certificate_pem=cert_pem,
            private_key_pem=key_pem,
            source=CertificateSource.LETSENCRYPT,
        )
