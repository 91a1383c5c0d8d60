"""Match inbound email to one of a user's tracked applications."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from ..extractor.domain import (
    company_slug,
    domain_from_address,
    is_mailbox_provider,
    normalize_company_name,
)
from ..types import MatchMethod, MatchResult, ParsedEmail
from .aliases import DEFAULT_ALIASES, DomainAliases
from .ats import is_ats_domain, provider_for
from .subject import SUBJECT_TEMPLATES, SubjectTemplate, subject_candidates

if TYPE_CHECKING:
    from ..repository import ApplicationRow

LOGGER = logging.getLogger(__name__)

ATS_CONFIDENCE = 0.9
DOMAIN_CONFIDENCE = 0.95
ALIAS_CONFIDENCE = 0.85
MIN_SLUG_CHARS = 3


class ApplicationLookup(Protocol):
    """Read side of the repository the matcher depends on."""

    def find_by_company(
        self, user_id: str, name: str, *, exact: bool = False, limit: int = 1
    ) -> list[ApplicationRow]: ...


class Matcher:
    """Runs the match strategies in priority order; the first hit wins.

    Strategies: ATS extraction, direct sender domain, corporate domain alias,
    subject templates. Only reads from the repository.
    """

    def __init__(
        self,
        repository: ApplicationLookup,
        *,
        aliases: DomainAliases = DEFAULT_ALIASES,
        subject_templates: tuple[SubjectTemplate, ...] = SUBJECT_TEMPLATES,
    ) -> None:
        self._repository = repository
        self._aliases = aliases
        self._subject_templates = subject_templates

    def match(self, user_id: str, email: ParsedEmail) -> MatchResult:
        host = domain_from_address(email.sender)

        ats_company = self._ats_company(host, email)
        if ats_company:
            application = self._find_by_company_name(user_id, ats_company)
            if application is not None:
                return self._result(application, ats_company, ATS_CONFIDENCE, MatchMethod.ATS)

        application = self._find_by_domain(user_id, host)
        if application is not None:
            return self._result(
                application, application.company_name, DOMAIN_CONFIDENCE, MatchMethod.DOMAIN
            )

        alias = self._aliases.resolve(host)
        if alias:
            application = self._find_by_company_name(user_id, alias)
            if application is not None:
                return self._result(application, alias, ALIAS_CONFIDENCE, MatchMethod.ALIAS)

        candidates = subject_candidates(email.subject, self._subject_templates)
        for candidate in candidates:
            application = self._find_by_company_name(user_id, candidate.company)
            if application is not None:
                return self._result(
                    application, candidate.company, candidate.score, MatchMethod.SUBJECT
                )

        hint = ats_company or (candidates[0].company if candidates else None)
        LOGGER.info("No application matched email from %s (hint=%s)", email.sender, hint)
        return MatchResult(
            application_id=None,
            company_name=hint,
            confidence=0.0,
            method=MatchMethod.NONE,
        )

    def _ats_company(self, host: str | None, email: ParsedEmail) -> str | None:
        provider = provider_for(host)
        if provider is None:
            return None
        company = provider.extract_company(email)
        LOGGER.debug("ATS %s extracted company %r", provider.name, company)
        return company

    def _find_by_company_name(self, user_id: str, name: str) -> ApplicationRow | None:
        exact = self._repository.find_by_company(user_id, name, exact=True)
        if exact:
            return exact[0]
        normalized = normalize_company_name(name)
        if len(normalized) < MIN_SLUG_CHARS:
            return None
        partial = self._repository.find_by_company(user_id, normalized)
        return partial[0] if partial else None

    def _find_by_domain(self, user_id: str, host: str | None) -> ApplicationRow | None:
        if host is None or is_ats_domain(host) or is_mailbox_provider(host):
            return None
        slug = company_slug(host)
        if not slug or len(slug) < MIN_SLUG_CHARS:
            return None
        found = self._repository.find_by_company(user_id, slug)
        return found[0] if found else None

    @staticmethod
    def _result(
        application: ApplicationRow,
        company: str | None,
        confidence: float,
        method: MatchMethod,
    ) -> MatchResult:
        LOGGER.info(
            "Matched application %s (%s) via %s at %.2f",
            application.id,
            application.company_name,
            method.value,
            confidence,
        )
        return MatchResult(
            application_id=application.id,
            company_name=company,
            confidence=confidence,
            method=method,
        )


__all__ = ["ALIAS_CONFIDENCE", "ATS_CONFIDENCE", "DOMAIN_CONFIDENCE", "Matcher"]
