"""Sender-domain and company-name helpers used by the matcher."""

from __future__ import annotations

import ipaddress
import re
from email.utils import parseaddr

HOST_RE = re.compile(r"^[A-Za-z0-9.-]+$")
LOCAL_PART_RE = re.compile(r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+$")

# Second-level labels that act as public suffixes (example.co.uk -> example).
SECOND_LEVEL_SUFFIXES = frozenset({"co", "com", "ac", "org", "net", "gov", "edu", "ne", "or"})
# Subdomains that companies put in front of their hiring mail.
HIRING_SUBDOMAINS = frozenset(
    {"careers", "career", "jobs", "job", "recruiting", "recruitment", "talent", "hr", "hiring",
     "mail", "email", "notifications", "no-reply", "noreply", "people"}
)
# Consumer mailbox providers never identify an employer.
MAILBOX_PROVIDERS = frozenset(
    {"gmail.com", "googlemail.com", "outlook.com", "hotmail.com", "live.com", "yahoo.com",
     "icloud.com", "me.com", "aol.com", "proton.me", "protonmail.com", "gmx.com", "gmx.de"}
)
COMPANY_SUFFIX_RE = re.compile(
    r"[,.]|\b(?:inc|llc|corp|corporation|ltd|limited|co|gmbh|plc)\b", re.IGNORECASE
)


def split_address(address: str) -> tuple[str | None, str | None]:
    """Split ``"Name <addr>"`` into (display name, lowercased address)."""

    display, email_addr = parseaddr(address or "")
    if not email_addr and address:
        if "<" in address and ">" in address:
            email_addr = address.split("<", 1)[1].split(">", 1)[0].strip()
        else:
            email_addr = address.strip()
    display = display.strip().strip('"').strip() or None
    email_addr = email_addr.strip().lower() or None
    return display, email_addr


def is_valid_mailbox(address: str | None) -> bool:
    """Return True for a syntactically valid ``local@domain`` mailbox."""

    if not address or address.count("@") != 1:
        return False
    local, host = address.rsplit("@", 1)
    if not local or not LOCAL_PART_RE.match(local):
        return False
    normalized = _normalize_host(host)
    return normalized is not None and ("." in normalized or _is_ip(normalized))


def domain_from_address(address: str) -> str | None:
    """Return the full, normalized sender host for a From address."""

    _display, email_addr = split_address(address)
    if not email_addr or "@" not in email_addr:
        return None
    return _normalize_host(email_addr.rsplit("@", 1)[1])


def base_domain(host: str | None) -> str | None:
    """Collapse a host to its registrable domain (careers.stripe.com -> stripe.com)."""

    normalized = _normalize_host(host)
    if normalized is None or _is_ip(normalized):
        return normalized
    labels = normalized.split(".")
    if len(labels) <= 2:
        return normalized
    if len(labels[-1]) == 2 and labels[-2] in SECOND_LEVEL_SUFFIXES:
        return ".".join(labels[-3:])
    return ".".join(labels[-2:])


def domain_matches(host: str | None, domain: str) -> bool:
    """Return True if ``host`` is ``domain`` or one of its subdomains."""

    if not host:
        return False
    target = domain.lower().rstrip(".")
    return host == target or host.endswith(f".{target}")


def is_mailbox_provider(host: str | None) -> bool:
    return base_domain(host) in MAILBOX_PROVIDERS


def company_slug(host: str | None) -> str | None:
    """Derive the company label from a sender host.

    ``careers.stripe.com`` and ``stripe.com`` both yield ``stripe``; IP literals
    and mailbox providers yield None.
    """

    normalized = _normalize_host(host)
    if normalized is None or _is_ip(normalized) or is_mailbox_provider(normalized):
        return None
    labels = normalized.split(".")
    while len(labels) > 2 and labels[0] in HIRING_SUBDOMAINS:
        labels = labels[1:]
    registrable = base_domain(".".join(labels)) or ""
    slug = registrable.split(".", 1)[0]
    return slug or None


def normalize_company_name(name: str) -> str:
    """Lowercase a company name and strip legal suffixes and punctuation."""

    stripped = COMPANY_SUFFIX_RE.sub("", name.lower())
    return re.sub(r"\s+", " ", stripped).strip()


def _is_ip(candidate: str) -> bool:
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return False
    return True


def _normalize_host(host: str | None) -> str | None:
    if not host:
        return None
    candidate = host.strip().lower().rstrip(".")
    if candidate.startswith("[") and candidate.endswith("]"):
        candidate = candidate[1:-1]
    if not candidate:
        return None

    # IPv4/IPv6 literals retain their exact string.
    if _is_ip(candidate):
        return candidate

    if not HOST_RE.match(candidate):
        return None

    labels = [label for label in candidate.split(".") if label]
    if not labels:
        return None
    return ".".join(labels)


__all__ = [
    "base_domain",
    "company_slug",
    "domain_from_address",
    "domain_matches",
    "is_mailbox_provider",
    "is_valid_mailbox",
    "normalize_company_name",
    "split_address",
]
