"""Sender and body extraction utilities."""

from .domain import (
    base_domain,
    company_slug,
    domain_from_address,
    domain_matches,
    is_valid_mailbox,
    normalize_company_name,
    split_address,
)
from .html import html_to_text

__all__ = [
    "base_domain",
    "company_slug",
    "domain_from_address",
    "domain_matches",
    "html_to_text",
    "is_valid_mailbox",
    "normalize_company_name",
    "split_address",
]
