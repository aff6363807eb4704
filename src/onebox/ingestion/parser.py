"""Utilities for parsing raw RFC822 messages into normalized records."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime
from email import errors as email_errors
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime

from ..core.datetime_utils import utcnow
from ..core.models import NormalizedMessage
from .cleanup import clean_text, strip_html

NO_SUBJECT = "No Subject"
UNKNOWN_SENDER = "Unknown"


class ParseError(ValueError):
    """Raised when message bytes cannot be turned into a record."""


class MessageParser:
    """Convert raw email payloads into normalized messages."""

    def __init__(self) -> None:
        """Prepare internal parser instance."""
        self._parser = BytesParser(policy=policy.default)

    def parse(self, payload: bytes, account_id: str, folder: str) -> NormalizedMessage:
        """Parse raw RFC822 bytes into a :class:`NormalizedMessage`.

        Each call generates a fresh identifier, so parsing the same bytes
        twice yields two distinct records sharing one ``message_id``.
        """
        if not isinstance(payload, (bytes, bytearray)):
            raise ParseError(f"Expected bytes, got {type(payload).__name__}")
        if not payload.strip():
            raise ParseError("Message payload is empty")

        try:
            message = self._parser.parsebytes(bytes(payload))
            if not isinstance(message, EmailMessage) or not message.keys():
                raise ParseError("Payload carries no RFC822 headers")
            subject = _header_text(message, "Subject") or NO_SUBJECT
            sender = _header_text(message, "From") or UNKNOWN_SENDER
            recipients = tuple(_extract_addresses(message.get_all("To", [])))
            date = _try_parse_datetime(message.get("Date")) or utcnow()
            message_id = _header_text(message, "Message-ID") or ""
            thread_id = _header_text(message, "In-Reply-To") or None
            body = _select_body(message)
            attachment_count = sum(1 for _ in _iter_attachments(message))
        except ParseError:
            raise
        except (email_errors.MessageError, LookupError, TypeError, ValueError) as exc:
            raise ParseError(f"Malformed message: {exc}") from exc

        return NormalizedMessage(
            id=str(uuid.uuid4()),
            account_id=account_id,
            folder=folder,
            subject=subject,
            body=body,
            sender=sender,
            to=recipients,
            date=date,
            message_id=message_id,
            thread_id=thread_id,
            has_attachments=attachment_count > 0,
            attachment_count=attachment_count,
            indexed_at=utcnow(),
        )


def _header_text(message: EmailMessage, name: str) -> str | None:
    value = message.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _extract_addresses(headers: Iterable[str]) -> Iterable[str]:
    for _, email_address in getaddresses([str(header) for header in headers]):
        if email_address:
            yield email_address


def _select_body(message: EmailMessage) -> str:
    """Prefer the plain-text part; otherwise strip markup from the HTML part."""
    plain_text, html = _extract_bodies(message)
    if plain_text:
        return clean_text(plain_text)
    if html:
        return clean_text(strip_html(html))
    return ""


def _collapse_chunks(chunks: Iterable[str], separator: str) -> str | None:
    filtered_chunks = [chunk for chunk in chunks if chunk]
    if not filtered_chunks:
        return None
    return separator.join(filtered_chunks)


def _extract_bodies(message: EmailMessage) -> tuple[str | None, str | None]:
    plain_chunks: list[str] = []
    html_chunks: list[str] = []

    for part in message.walk():
        if part.is_multipart():
            continue
        if part.get_content_disposition() == "attachment":
            continue
        content_type = part.get_content_type()
        if content_type not in ("text/plain", "text/html"):
            continue
        try:
            content_obj = part.get_content()
        except (LookupError, UnicodeDecodeError):
            payload = part.get_payload(decode=True) or b""
            content_obj = payload.decode("utf-8", errors="replace")
        if not isinstance(content_obj, str):
            continue
        content = content_obj.strip()
        if content_type == "text/plain":
            plain_chunks.append(content)
        else:
            html_chunks.append(content)

    text = _collapse_chunks(plain_chunks, "\n\n")
    html = _collapse_chunks(html_chunks, "\n")
    return text, html


def _iter_attachments(message: EmailMessage) -> Iterable[EmailMessage]:
    for part in message.walk():
        if part.is_multipart():
            continue
        if part.is_attachment():
            yield part


def _try_parse_datetime(header_value: object) -> datetime | None:
    if header_value is None:
        return None
    try:
        return parsedate_to_datetime(str(header_value))
    except (TypeError, ValueError, IndexError):
        return None


__all__ = ["MessageParser", "NO_SUBJECT", "ParseError", "UNKNOWN_SENDER"]
