"""
Domain Normalization.

Usage is metered per hostname. Clients send either a bare hostname or a full
URL; both reduce to the same lower-cased host so the ledger never double counts.
"""

import re
from urllib.parse import urlsplit

from kuiqlee.exceptions import InvalidDomainError

MAX_DOMAIN_LENGTH = 253

_HOST_PATTERN = re.compile(r"^[a-z0-9_]([a-z0-9_-]{0,62})(\.[a-z0-9_-]{1,63})*$")


def normalize_domain(raw: str) -> str:
    """
    Reduce a hostname or URL to its canonical lower-case hostname.

    - surrounding whitespace and a trailing dot are dropped
    - a scheme, path, query, credentials and port are dropped
    - "www." is kept; www.example.com and example.com are different domains

    Raises:
        InvalidDomainError: Nothing resembling a hostname remains
    """
    candidate = raw.strip().lower()
    if not candidate:
        raise InvalidDomainError(raw)

    # urlsplit only finds a netloc after "//"
    if "://" not in candidate:
        candidate = "//" + candidate

    try:
        host = urlsplit(candidate).hostname
    except ValueError:
        raise InvalidDomainError(raw) from None

    if not host:
        raise InvalidDomainError(raw)

    host = host.rstrip(".")
    if not host or len(host) > MAX_DOMAIN_LENGTH:
        raise InvalidDomainError(raw)

    # IPv6 literals come back without brackets
    if ":" in host:
        return host

    if not _HOST_PATTERN.match(host):
        raise InvalidDomainError(raw)

    return host
