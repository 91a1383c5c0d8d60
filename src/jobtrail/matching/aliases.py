"""Corporate domain families that resolve to a single employer."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType

from ..extractor.domain import domain_matches

SEEDED_FAMILIES: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "Google": ("google.com", "youtube.com", "deepmind.com", "waymo.com", "withgoogle.com"),
        "Meta": ("meta.com", "fb.com", "facebook.com", "instagram.com", "whatsapp.com"),
        "Amazon": ("amazon.com", "amazon.jobs", "aws.com", "amazonaws.com", "twitch.tv"),
        "Microsoft": ("microsoft.com", "linkedin-corp.com", "github.com", "xbox.com"),
        "Apple": ("apple.com",),
        "Alphabet": ("abc.xyz",),
        "Salesforce": ("salesforce.com", "slack.com", "tableau.com"),
        "Block": ("block.xyz", "squareup.com", "cash.app"),
        "X": ("x.com", "twitter.com"),
        "Atlassian": ("atlassian.com", "trello.com"),
    }
)


class DomainAliases:
    """Lookup from sender host to canonical employer name."""

    def __init__(self, families: Mapping[str, Iterable[str]] | None = None) -> None:
        merged: dict[str, tuple[str, ...]] = dict(SEEDED_FAMILIES)
        for name, domains in (families or {}).items():
            merged[name] = tuple(domain.lower() for domain in domains)
        self._families = MappingProxyType(merged)

    @property
    def families(self) -> Mapping[str, tuple[str, ...]]:
        return self._families

    def resolve(self, host: str | None) -> str | None:
        """Return the canonical company for ``host``; the longest domain wins."""

        best: tuple[int, str] | None = None
        for name, domains in self._families.items():
            for domain in domains:
                if domain_matches(host, domain) and (best is None or len(domain) > best[0]):
                    best = (len(domain), name)
        return best[1] if best else None


DEFAULT_ALIASES = DomainAliases()

__all__ = ["DEFAULT_ALIASES", "DomainAliases", "SEEDED_FAMILIES"]
