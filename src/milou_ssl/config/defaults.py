"""Default configuration values.

This module defines the default configuration values used when no configuration
file is provided or when configuration values are not specified.
"""

from typing import Any

# Legacy certificate locations searched by `ssl consolidate`, in order.
# Migration aid for installs that kept certificates outside ssl_path.
DEFAULT_LEGACY_LOCATIONS = [
    "./ssl",
    "../ssl",
    "/etc/ssl/certs",
    "/etc/nginx/ssl",
    "/etc/apache2/ssl",
    "/opt/ssl",
    "~/ssl",
    "./static/ssl",
    "../static/ssl",
]

# Default configuration dictionary
# This is used as a fallback when no configuration file is present
DEFAULT_CONFIG: dict[str, Any] = {
    "ssl": {
        "domain": "localhost",
        "ssl_path": "ssl",
        "cert_name": "milou",
        # auto: Let's Encrypt for public domains, self-signed otherwise
        "provider": "auto",
        "contact_email": None,
        "renewal_threshold_days": 30,
        "enforce_domain": False,
        "legacy_locations": DEFAULT_LEGACY_LOCATIONS,
    },
    "acme": {
        "command": "certbot",
        "config_dir": "/etc/letsencrypt",
        "staging": False,
        "http_port": 80,
        # HTTP-01 round trips can take tens of seconds
        "timeout": 300,
    },
    "container": {
        "name": "milou-nginx",
        "ssl_path": "/etc/ssl",
        "docker_command": "docker",
        "timeout": 30,
    },
    "logging": {
        "level": "INFO",
        "log_file": "logs/milou-ssl.log",
        "redact_secrets": False,
    },
}

# Default configuration file path
DEFAULT_CONFIG_PATH = "config/config.json"
