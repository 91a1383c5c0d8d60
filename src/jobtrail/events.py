"""Inbound email events delivered by the mail gateway."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .extractor.domain import is_valid_mailbox, split_address
from .extractor.html import html_to_text
from .types import ParsedEmail

KEY_BODY_CHARS = 500


class EventError(ValueError):
    """Raised when an inbound event is malformed."""


@dataclass(frozen=True)
class InboundEvent:
    """One forwarded email addressed to one user."""

    user_id: str
    email: ParsedEmail
    message_id: str | None = None

    @property
    def key(self) -> str:
        """Idempotency key shared by every redelivery of the same message."""

        if self.message_id:
            return f"{self.user_id}:{self.message_id}"
        digest = hashlib.sha256()
        for part in (
            self.user_id,
            self.email.sender,
            self.email.subject,
            self.email.received_at.isoformat(),
            self.email.body[:KEY_BODY_CHARS],
        ):
            digest.update(part.encode("utf-8"))
            digest.update(b"\x00")
        return f"{self.user_id}:{digest.hexdigest()}"

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> InboundEvent:
        """Validate a gateway payload of the form ``{userId, email: {...}}``."""

        if not isinstance(payload, Mapping):
            raise EventError("Event payload must be a mapping.")
        user_id = _required_str(payload, "userId", "userId")
        raw_email = payload.get("email")
        if not isinstance(raw_email, Mapping):
            raise EventError("Event is missing the 'email' mapping.")

        display, address = split_address(_required_str(raw_email, "from", "email.from"))
        if not is_valid_mailbox(address):
            raise EventError(f"email.from is not a valid mailbox: {raw_email.get('from')!r}")
        subject = _required_str(raw_email, "subject", "email.subject")
        sender_name = _optional_str(raw_email.get("fromName")) or display

        body = _optional_str(raw_email.get("body")) or ""
        if not body.strip():
            body = html_to_text(_optional_str(raw_email.get("html")))

        email = ParsedEmail(
            sender=address or "",
            sender_name=sender_name,
            subject=subject,
            body=body,
            received_at=parse_timestamp(raw_email.get("receivedAt")),
        )
        message_id = _optional_str(payload.get("messageId") or raw_email.get("messageId"))
        return cls(user_id=user_id, email=email, message_id=message_id)

    @classmethod
    def from_file(cls, path: Path) -> InboundEvent:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise EventError(f"Event file {path} is not valid JSON: {exc}") from exc
        return cls.from_payload(payload)

    def to_payload(self) -> dict[str, Any]:
        email: dict[str, Any] = {
            "from": self.email.sender,
            "subject": self.email.subject,
            "body": self.email.body,
            "receivedAt": self.email.received_at.isoformat(),
        }
        if self.email.sender_name:
            email["fromName"] = self.email.sender_name
        payload: dict[str, Any] = {"userId": self.user_id, "email": email}
        if self.message_id:
            payload["messageId"] = self.message_id
        return payload


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are UTC, missing means now."""

    if value is None or value == "":
        return datetime.now(timezone.utc)
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = f"{text[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise EventError(f"email.receivedAt is not an ISO-8601 timestamp: {value!r}") from exc
    else:
        raise EventError(f"email.receivedAt must be a string: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _required_str(data: Mapping[str, Any], key: str, label: str) -> str:
    value = _optional_str(data.get(key))
    if not value:
        raise EventError(f"Event is missing required field '{label}'.")
    return value


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


__all__ = ["EventError", "InboundEvent", "parse_timestamp"]
