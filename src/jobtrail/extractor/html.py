"""Helpers for turning HTML-only email bodies into plain text."""

from __future__ import annotations

from bs4 import BeautifulSoup

# Elements whose contents never belong in the readable body.
SKIPPED_TAGS = ("script", "style", "head", "noscript")


def html_to_text(html: str | None) -> str:
    """Return whitespace-collapsed visible text for an HTML fragment."""

    if not html or not html.strip():
        return ""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup.find_all(SKIPPED_TAGS):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    text = soup.get_text(" ", strip=True)
    return " ".join(text.split())


__all__ = ["html_to_text"]
