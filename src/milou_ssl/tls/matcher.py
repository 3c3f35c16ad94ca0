"""Domain matching against certificate CN and SAN entries.

Wildcard entries follow standard certificate scope: ``*.example.com`` covers
``foo.example.com`` but neither ``example.com`` nor ``a.b.example.com``.
"""

import ipaddress
import re
from typing import Iterable

LOCAL_DOMAINS = frozenset({"localhost", "localhost.localdomain"})

_LABEL = r"(?!-)[a-z0-9-]{1,63}(?<!-)"
HOSTNAME_PATTERN = re.compile(rf"^(?:{_LABEL}\.)*{_LABEL}$")


def normalize(name: str) -> str:
    """Lower-case a name and strip one trailing dot."""
    name = name.strip().lower()
    if name.endswith(".") and len(name) > 1:
        name = name[:-1]
    return name


def is_ip_literal(value: str) -> bool:
    """Check whether a value is a bare IPv4 or IPv6 address."""
    try:
        ipaddress.ip_address(value.strip().strip("[]"))
    except ValueError:
        return False
    return True


def is_local_domain(domain: str) -> bool:
    """Check whether a domain names the local machine (localhost or an IP literal).

    Example:
        >>> is_local_domain("localhost")
        True
        >>> is_local_domain("api.localhost")
        True
        >>> is_local_domain("example.com")
        False
    """
    name = normalize(domain)
    return name in LOCAL_DOMAINS or name.endswith(".localhost") or is_ip_literal(name)


def is_valid_hostname(domain: str) -> bool:
    """Check hostname syntax (letters, digits, hyphens; labels up to 63 chars)."""
    name = normalize(domain)
    if not name or len(name) > 253:
        return False
    return bool(HOSTNAME_PATTERN.match(name))


def wildcard_covers(pattern: str, domain: str) -> bool:
    """Check whether a ``*.X`` pattern covers domain with exactly one extra label."""
    pattern = normalize(pattern)
    domain = normalize(domain)
    if not pattern.startswith("*."):
        return False

    base = pattern[2:]
    if not base or not domain.endswith("." + base):
        return False

    prefix = domain[: -(len(base) + 1)]
    return bool(prefix) and "." not in prefix


def matches(
    domain: str,
    subject_cn: str,
    san_list: Iterable[str],
    allow_local: bool = False,
) -> bool:
    """Decide whether a domain is covered by a certificate's CN or SANs.

    Args:
        domain: Domain the certificate must serve
        subject_cn: Certificate subject common name
        san_list: DNS names and IP literals from the SAN extension
        allow_local: Bypass matching for localhost and IP literals

    Returns:
        True if the domain is covered

    Example:
        >>> matches("foo.example.com", "example.com", ["*.example.com"])
        True
        >>> matches("a.b.example.com", "example.com", ["*.example.com"])
        False
    """
    if allow_local and is_local_domain(domain):
        return True

    target = normalize(domain)
    names = [normalize(subject_cn)] if subject_cn else []
    names.extend(normalize(san) for san in san_list)

    if target in names:
        return True

    return any(wildcard_covers(name, target) for name in names if name.startswith("*."))
