"""Custom log formatters for Milou SSL.

This module provides a formatter that keeps key material out of log output.
"""

import logging
import re
from typing import List, Tuple

PRIVATE_KEY_BLOCK = re.compile(
    r"-----BEGIN (?:[A-Z]+ )*PRIVATE KEY-----.*?-----END (?:[A-Z]+ )*PRIVATE KEY-----",
    re.DOTALL,
)


class SecretRedactingFormatter(logging.Formatter):
    """Formatter that strips private keys and, optionally, contact details.

    PEM private key blocks are always replaced. E-mail addresses (the ACME
    contact) are replaced only when ``redact_secrets`` is enabled.

    Attributes:
        redact_secrets: Whether to redact e-mail addresses
        patterns: List of (regex_pattern, replacement_text) tuples applied when
            redact_secrets is enabled

    Example:
        >>> formatter = SecretRedactingFormatter(
        ...     fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        ...     redact_secrets=True
        ... )
        >>> handler = logging.StreamHandler()
        >>> handler.setFormatter(formatter)
    """

    def __init__(
        self,
        fmt: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt: str | None = None,
        redact_secrets: bool = False,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.redact_secrets = redact_secrets

        self.patterns: List[Tuple[re.Pattern[str], str]] = [
            # ops@example.com
            (re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+"), "[EMAIL-REDACTED]"),
            # https://acme-v02.api.letsencrypt.org/acme/acct/123456
            (re.compile(r"(acme-v02\.api\.letsencrypt\.org/acme/acct/)\d+"), r"\1[ACCOUNT-REDACTED]"),
        ]

    def format(self, record: logging.LogRecord) -> str:
        """Format the record, then strip key material and optional secrets."""
        formatted = super().format(record)
        formatted = PRIVATE_KEY_BLOCK.sub("[PRIVATE-KEY-REDACTED]", formatted)

        if self.redact_secrets:
            for pattern, replacement in self.patterns:
                formatted = pattern.sub(replacement, formatted)

        return formatted
