"""Configuration schema models using pydantic.

This module defines the configuration structure and validation rules using pydantic.
All configuration values are validated according to the schema defined here.
"""

from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .defaults import DEFAULT_LEGACY_LOCATIONS

VALID_PROVIDERS = ["auto", "letsencrypt", "self-signed"]


class SSLConfig(BaseModel):
    """Configuration for the live certificate.

    Attributes:
        domain: Domain the certificate must serve
        ssl_path: Directory holding <cert_name>.crt and <cert_name>.key
        cert_name: Base name of the certificate files
        provider: auto, letsencrypt or self-signed
        contact_email: ACME registration e-mail (defaults to admin@<domain>)
        renewal_threshold_days: Days before expiry at which to renew
        enforce_domain: Treat a domain mismatch as blocking
        legacy_locations: Ordered directories searched by consolidation
    """

    domain: str = Field(default="localhost", description="Certificate domain")
    ssl_path: Path = Field(default=Path("ssl"), description="Certificate directory")
    cert_name: str = Field(default="milou", description="Certificate file base name")
    provider: str = Field(default="auto", description="auto, letsencrypt or self-signed")
    contact_email: Optional[str] = None
    renewal_threshold_days: int = Field(
        default=30,
        ge=1,
        le=365,
        description="Renew when fewer days than this remain",
    )
    enforce_domain: bool = False
    legacy_locations: List[Path] = Field(
        default_factory=lambda: [Path(p) for p in DEFAULT_LEGACY_LOCATIONS]
    )

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        """Normalize the domain and reject blanks or URLs.

        Raises:
            ValueError: If the domain is empty or contains a scheme or path
        """
        v = v.strip().lower().rstrip(".")
        if not v:
            raise ValueError("Domain must not be empty")
        if "://" in v or "/" in v:
            raise ValueError(f"Invalid domain: {v}. Use a bare host name, not a URL")
        return v

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        """Validate the provider name.

        Raises:
            ValueError: If provider is not one of auto, letsencrypt, self-signed
        """
        v_lower = v.lower()
        if v_lower not in VALID_PROVIDERS:
            raise ValueError(
                f"Invalid provider: {v}. Must be one of: {', '.join(VALID_PROVIDERS)}"
            )
        return v_lower

    @field_validator("contact_email")
    @classmethod
    def validate_contact_email(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and "@" not in v:
            raise ValueError(f"Invalid contact_email: {v}")
        return v

    @field_validator("cert_name")
    @classmethod
    def validate_cert_name(cls, v: str) -> str:
        if not v or "/" in v or v.startswith("."):
            raise ValueError(f"Invalid cert_name: {v!r}. Use a plain file base name")
        return v


class AcmeConfig(BaseModel):
    """Configuration for the external ACME client.

    Attributes:
        command: certbot executable
        config_dir: certbot configuration directory
        staging: Use the Let's Encrypt staging CA
        http_port: Port for the HTTP-01 challenge listener
        timeout: Seconds before a certbot run is abandoned
    """

    command: str = "certbot"
    config_dir: Path = Path("/etc/letsencrypt")
    staging: bool = False
    http_port: int = Field(default=80, ge=1, le=65535)
    timeout: int = Field(default=300, ge=1, description="certbot timeout in seconds")


class ContainerConfig(BaseModel):
    """Configuration for the reverse-proxy container.

    Attributes:
        name: Container name
        ssl_path: Certificate directory inside the container
        docker_command: docker executable
        timeout: Seconds before a docker call is abandoned
    """

    name: str = "milou-nginx"
    ssl_path: str = "/etc/ssl"
    docker_command: str = "docker"
    timeout: int = Field(default=30, ge=1)


class LoggingConfig(BaseModel):
    """Configuration for logging.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file
        redact_secrets: Whether to redact e-mail addresses from logs
    """

    level: str = Field(
        default="INFO",
        description="Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )
    log_file: Path = Field(
        default=Path("logs/milou-ssl.log"),
        description="Log file path"
    )
    redact_secrets: bool = Field(
        default=False,
        description="Redact e-mail addresses from logs"
    )

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level.

        Args:
            v: Log level string

        Returns:
            Validated log level (uppercase)

        Raises:
            ValueError: If log level is not valid
        """
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(valid_levels)}"
            )
        return v_upper


class Config(BaseModel):
    """Root configuration model.

    Attributes:
        ssl: Live certificate configuration
        acme: ACME client configuration
        container: Reverse-proxy container configuration
        logging: Logging configuration

    Example:
        >>> config = Config(ssl=SSLConfig(domain="app.example.com"))
        >>> config.ssl.renewal_threshold_days
        30
    """

    ssl: SSLConfig = SSLConfig()
    acme: AcmeConfig = AcmeConfig()
    container: ContainerConfig = ContainerConfig()
    logging: LoggingConfig = LoggingConfig()
