"""Configuration manager for loading and managing configuration.

This module provides the main configuration loading and management functionality,
including support for JSON configuration files, environment variable overrides,
and configuration validation.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from milou_ssl.config.defaults import DEFAULT_CONFIG, DEFAULT_CONFIG_PATH
from milou_ssl.config.schema import Config
from milou_ssl.models.certificate import LifecycleContext, Provider
from milou_ssl.utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Environment variable prefix for all configuration overrides
ENV_PREFIX = "MILOU_SSL_"


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from file and environment variables.

    Configuration is loaded with the following precedence (highest to lowest):
    1. CLI arguments (handled by caller)
    2. Environment variables (MILOU_SSL_* prefix)
    3. Configuration file (JSON)
    4. Default values

    Args:
        config_path: Path to configuration file. If None, uses ./config/config.json

    Returns:
        Validated Config instance

    Raises:
        ConfigurationError: If configuration is invalid or malformed

    Example:
        >>> config = load_config(Path("custom/config.json"))
        >>> domain = config.ssl.domain
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(DEFAULT_CONFIG_PATH)

    config_dict = _load_config_file(config_path)
    config_dict = _apply_env_overrides(config_dict)

    try:
        return Config(**config_dict)
    except ValidationError as e:
        raise ConfigurationError(
            f"Configuration validation failed:\n{e}\n\n"
            f"Fix: Check your configuration file at {config_path} and the "
            f"{ENV_PREFIX}* environment variables."
        )


def _load_config_file(config_path: Path) -> dict[str, Any]:
    """Load configuration file or return defaults.

    Raises:
        ConfigurationError: If JSON is malformed or unreadable
    """
    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config_dict = json.load(f)
            logger.info(f"Loaded configuration from {config_path}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Invalid JSON in config file: {config_path}\n"
                f"Error: {e}\n"
                f"Fix: Check JSON syntax at line {e.lineno}, column {e.colno}"
            )
        except OSError as e:
            raise ConfigurationError(
                f"Failed to read config file: {config_path}\n"
                f"Error: {e}\n"
                f"Fix: Check file permissions and path"
            )
        if not isinstance(config_dict, dict):
            raise ConfigurationError(
                f"Config file {config_path} must contain a JSON object\n"
                f"Fix: Wrap settings in {{\"ssl\": {{...}}}}"
            )
        return config_dict

    logger.debug(f"Config file not found: {config_path}. Using default configuration.")
    # Deep copy so callers cannot mutate the defaults
    return json.loads(json.dumps(DEFAULT_CONFIG))


def _apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides with MILOU_SSL_ prefix.

    For example: MILOU_SSL_DOMAIN, MILOU_SSL_PROVIDER, MILOU_SSL_LOG_LEVEL

    Args:
        config_dict: Configuration dictionary to update

    Returns:
        Updated configuration dictionary with environment overrides applied

    Raises:
        ConfigurationError: If a numeric override is not a number
    """
    # SSL section
    if domain := os.getenv(f"{ENV_PREFIX}DOMAIN"):
        config_dict.setdefault("ssl", {})["domain"] = domain
        logger.debug("Override: domain from environment")

    if ssl_path := os.getenv(f"{ENV_PREFIX}SSL_PATH"):
        config_dict.setdefault("ssl", {})["ssl_path"] = ssl_path
        logger.debug("Override: ssl_path from environment")

    if cert_name := os.getenv(f"{ENV_PREFIX}CERT_NAME"):
        config_dict.setdefault("ssl", {})["cert_name"] = cert_name
        logger.debug("Override: cert_name from environment")

    if provider := os.getenv(f"{ENV_PREFIX}PROVIDER"):
        config_dict.setdefault("ssl", {})["provider"] = provider
        logger.debug("Override: provider from environment")

    if contact_email := os.getenv(f"{ENV_PREFIX}CONTACT_EMAIL"):
        config_dict.setdefault("ssl", {})["contact_email"] = contact_email
        logger.debug("Override: contact_email from environment")

    if threshold := os.getenv(f"{ENV_PREFIX}RENEWAL_THRESHOLD_DAYS"):
        config_dict.setdefault("ssl", {})["renewal_threshold_days"] = _parse_int(
            "RENEWAL_THRESHOLD_DAYS", threshold
        )
        logger.debug("Override: renewal_threshold_days from environment")

    if enforce_domain := os.getenv(f"{ENV_PREFIX}ENFORCE_DOMAIN"):
        config_dict.setdefault("ssl", {})["enforce_domain"] = _parse_bool(enforce_domain)
        logger.debug("Override: enforce_domain from environment")

    # ACME section
    if acme_command := os.getenv(f"{ENV_PREFIX}ACME_COMMAND"):
        config_dict.setdefault("acme", {})["command"] = acme_command
        logger.debug("Override: acme command from environment")

    if acme_config_dir := os.getenv(f"{ENV_PREFIX}ACME_CONFIG_DIR"):
        config_dict.setdefault("acme", {})["config_dir"] = acme_config_dir
        logger.debug("Override: acme config_dir from environment")

    if acme_staging := os.getenv(f"{ENV_PREFIX}ACME_STAGING"):
        config_dict.setdefault("acme", {})["staging"] = _parse_bool(acme_staging)
        logger.debug("Override: acme staging from environment")

    if http_port := os.getenv(f"{ENV_PREFIX}HTTP_PORT"):
        config_dict.setdefault("acme", {})["http_port"] = _parse_int("HTTP_PORT", http_port)
        logger.debug("Override: http_port from environment")

    # Container section
    if container_name := os.getenv(f"{ENV_PREFIX}CONTAINER_NAME"):
        config_dict.setdefault("container", {})["name"] = container_name
        logger.debug("Override: container name from environment")

    # Logging section
    if log_level := os.getenv(f"{ENV_PREFIX}LOG_LEVEL"):
        config_dict.setdefault("logging", {})["level"] = log_level
        logger.debug("Override: log_level from environment")

    if log_file := os.getenv(f"{ENV_PREFIX}LOG_FILE"):
        config_dict.setdefault("logging", {})["log_file"] = log_file
        logger.debug("Override: log_file from environment")

    if redact_secrets := os.getenv(f"{ENV_PREFIX}REDACT_SECRETS"):
        config_dict.setdefault("logging", {})["redact_secrets"] = _parse_bool(
            redact_secrets
        )
        logger.debug("Override: redact_secrets from environment")

    return config_dict


def _parse_bool(value: str) -> bool:
    """Parse boolean value from string (case-insensitive)."""
    return value.lower() in ("true", "1", "yes", "on")


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(
            f"Invalid {ENV_PREFIX}{name}: {value!r}\n"
            f"Fix: Set {ENV_PREFIX}{name} to a whole number"
        )


def build_lifecycle_context(
    config: Config,
    domain: Optional[str] = None,
    provider: Optional[str] = None,
    contact_email: Optional[str] = None,
    force: bool = False,
    interactive: bool = False,
    enforce_domain: Optional[bool] = None,
) -> LifecycleContext:
    """Build the explicit context for one lifecycle invocation.

    CLI values, when given, take precedence over the configuration.

    Args:
        config: Loaded configuration
        domain: Domain override
        provider: Provider override (auto, letsencrypt, self-signed)
        contact_email: ACME e-mail override
        force: Replace even a valid certificate
        interactive: Allow prompts
        enforce_domain: Strict domain enforcement override

    Returns:
        LifecycleContext

    Raises:
        ConfigurationError: If an override is invalid

    Example:
        >>> context = build_lifecycle_context(load_config(), domain="app.example.com")
        >>> context.provider
        <Provider.AUTO: 'auto'>
    """
    ssl = config.ssl
    overrides: dict[str, Any] = {}
    if domain is not None:
        overrides["domain"] = domain
    if provider is not None:
        overrides["provider"] = provider
    if contact_email is not None:
        overrides["contact_email"] = contact_email

    if overrides:
        try:
            ssl = ssl.model_validate({**ssl.model_dump(), **overrides})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid option:\n{e}")

    return LifecycleContext(
        domain=ssl.domain,
        ssl_path=ssl.ssl_path,
        provider=Provider(ssl.provider),
        contact_email=ssl.contact_email,
        force=force,
        interactive=interactive,
        renewal_threshold_days=ssl.renewal_threshold_days,
        enforce_domain=ssl.enforce_domain if enforce_domain is None else enforce_domain,
        legacy_locations=tuple(ssl.legacy_locations),
        cert_name=ssl.cert_name,
    )
