"""Subject-line templates that recover a candidate company name."""

from __future__ import annotations

import re
from dataclasses import dataclass

MIN_COMPANY_CHARS = 3
MAX_COMPANY_CHARS = 50
STOP_WORDS = frozenset({"your", "the", "a", "an", "you", "us", "our", "me"})


@dataclass(frozen=True)
class SubjectTemplate:
    """A regular expression whose first group names a company."""

    name: str
    pattern: re.Pattern[str]
    score: float

    def extract(self, subject: str) -> str | None:
        match = self.pattern.search(subject)
        if not match or not match.group(1):
            return None
        company = match.group(1).strip(" \t\"'!.")
        if not _plausible_company(company):
            return None
        return company


@dataclass(frozen=True)
class SubjectCandidate:
    company: str
    score: float
    template: str


SUBJECT_TEMPLATES: tuple[SubjectTemplate, ...] = (
    # "Interview invitation from Stripe"
    SubjectTemplate(
        name="preposition",
        pattern=re.compile(r"(?:from|at|with)\s+(.+?)(?:\s*[-–:]|$)", re.IGNORECASE),
        score=0.7,
    ),
    # "Stripe - Application update"
    SubjectTemplate(
        name="leading_company",
        pattern=re.compile(r"^(.+?)\s*[-–:]\s*(?:application|interview|offer)", re.IGNORECASE),
        score=0.7,
    ),
    # "Your interview with Stripe"
    SubjectTemplate(
        name="keyword_then_company",
        pattern=re.compile(
            r"(?:application|interview|offer).*?(?:at|with|from)\s+(.+?)(?:\s*[-–]|$)",
            re.IGNORECASE,
        ),
        score=0.75,
    ),
)


def subject_candidates(
    subject: str,
    templates: tuple[SubjectTemplate, ...] = SUBJECT_TEMPLATES,
) -> list[SubjectCandidate]:
    """Return every distinct candidate, highest template score first.

    Templates with equal scores keep their declaration order.
    """

    if not subject:
        return []
    ranked = sorted(enumerate(templates), key=lambda item: (-item[1].score, item[0]))
    seen: set[str] = set()
    candidates: list[SubjectCandidate] = []
    for _index, template in ranked:
        company = template.extract(subject)
        if company is None or company.lower() in seen:
            continue
        seen.add(company.lower())
        candidates.append(
            SubjectCandidate(company=company, score=template.score, template=template.name)
        )
    return candidates


def _plausible_company(company: str) -> bool:
    if not (MIN_COMPANY_CHARS <= len(company) < MAX_COMPANY_CHARS):
        return False
    return company.lower() not in STOP_WORDS


__all__ = ["SUBJECT_TEMPLATES", "SubjectCandidate", "SubjectTemplate", "subject_candidates"]
