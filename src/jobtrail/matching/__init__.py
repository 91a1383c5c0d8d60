"""Email-to-application matching strategies."""

from .aliases import DEFAULT_ALIASES, DomainAliases
from .ats import AtsProvider, is_ats_domain, provider_for
from .matcher import Matcher
from .subject import SUBJECT_TEMPLATES, SubjectTemplate, subject_candidates

__all__ = [
    "AtsProvider",
    "DEFAULT_ALIASES",
    "DomainAliases",
    "Matcher",
    "SUBJECT_TEMPLATES",
    "SubjectTemplate",
    "is_ats_domain",
    "provider_for",
    "subject_candidates",
]
