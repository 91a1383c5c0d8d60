"""Applicant-tracking-system providers and their company extraction rules.

Each provider is a member of the closed :class:`AtsProvider` enum. A member
owns the sender domains it mails from and an ordered list of field patterns;
the first pattern that matches yields the company name from its first group.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from ..extractor.domain import domain_matches
from ..types import ParsedEmail


class EmailField(str, Enum):
    SUBJECT = "subject"
    BODY = "body"
    SENDER_NAME = "sender_name"


@dataclass(frozen=True)
class FieldPattern:
    """Pattern applied to one email field."""

    field: EmailField
    pattern: re.Pattern[str]

    def extract(self, email: ParsedEmail) -> str | None:
        text = _field_text(email, self.field)
        if not text:
            return None
        match = self.pattern.search(text)
        if not match:
            return None
        company = match.group(1).strip(" \t\"'")
        return company or None


@dataclass(frozen=True)
class AtsRule:
    domains: tuple[str, ...]
    patterns: tuple[FieldPattern, ...]


def _pattern(field: EmailField, pattern: str) -> FieldPattern:
    return FieldPattern(field=field, pattern=re.compile(pattern, re.IGNORECASE))


_WORKDAY_PATTERNS = (_pattern(EmailField.SUBJECT, r"^(.+?):\s*your\s+application"),)


class AtsProvider(Enum):
    """Known ATS senders."""

    GREENHOUSE = AtsRule(
        domains=("greenhouse.io",),
        patterns=(
            # "Your application to Stripe" / "Thank you for applying to Stripe"
            _pattern(
                EmailField.SUBJECT,
                r"(?:application to|applying to|applied to)\s+(.+?)(?:\s*[-–]|$)",
            ),
            # "Thank you for your interest in Stripe."
            _pattern(EmailField.BODY, r"interest in\s+(.+?)(?:\.|\s+and\b)"),
        ),
    )
    LEVER = AtsRule(
        domains=("lever.co",),
        patterns=(
            # "Stripe via Lever" / "Stripe Recruiting through Lever"
            _pattern(EmailField.SENDER_NAME, r"(.+?)\s+(?:via|through)\s+Lever"),
            # "Stripe - Software Engineer Application"
            _pattern(EmailField.SUBJECT, r"^(.+?)\s*[-–]\s*.+application"),
        ),
    )
    ASHBY = AtsRule(
        domains=("ashbyhq.com",),
        patterns=(_pattern(EmailField.SUBJECT, r"^(.+?):\s*.+(?:application|update)"),),
    )
    JOBVITE = AtsRule(
        domains=("jobvite.com",),
        patterns=(
            _pattern(EmailField.SUBJECT, r"application\s+(?:with|to|at)\s+(.+?)(?:\s*[-–]|$)"),
        ),
    )
    WORKDAY = AtsRule(domains=("workday.com", "myworkdayjobs.com"), patterns=_WORKDAY_PATTERNS)
    ICIMS = AtsRule(
        domains=("icims.com",),
        patterns=(_pattern(EmailField.SUBJECT, r"applying\s+to\s+(.+?)(?:\s*[-–]|$)"),),
    )
    SMARTRECRUITERS = AtsRule(
        domains=("smartrecruiters.com",),
        patterns=(_pattern(EmailField.SUBJECT, r"application\s+at\s+(.+?)(?:\s*[-–]|$)"),),
    )
    LINKEDIN = AtsRule(
        domains=("linkedin.com",),
        patterns=(
            # "Your application was sent to Stripe" / "You applied to Stripe"
            _pattern(
                EmailField.SUBJECT,
                r"(?:sent to|applied to|application.*?to)\s+(.+?)(?:\s*[-–]|$)",
            ),
        ),
    )

    @property
    def domains(self) -> tuple[str, ...]:
        return self.value.domains

    def owns(self, host: str | None) -> bool:
        return any(domain_matches(host, domain) for domain in self.value.domains)

    def extract_company(self, email: ParsedEmail) -> str | None:
        for field_pattern in self.value.patterns:
            company = field_pattern.extract(email)
            if company:
                return company
        return None


def provider_for(host: str | None) -> AtsProvider | None:
    """Return the provider that owns ``host``, if any."""

    if not host:
        return None
    for provider in AtsProvider:
        if provider.owns(host):
            return provider
    return None


def is_ats_domain(host: str | None) -> bool:
    return provider_for(host) is not None


def _field_text(email: ParsedEmail, field: EmailField) -> str | None:
    if field is EmailField.SUBJECT:
        return email.subject
    if field is EmailField.BODY:
        return email.body
    return email.sender_name


__all__ = ["AtsProvider", "AtsRule", "EmailField", "FieldPattern", "is_ats_domain", "provider_for"]
