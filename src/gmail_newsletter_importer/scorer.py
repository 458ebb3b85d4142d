"""Scoring of message headers into a newsletter confidence."""

from __future__ import annotations

import re

from .constants import (
    KNOWN_NEWSLETTER_DOMAINS,
    MAX_SCORE,
    NEWSLETTER_THRESHOLD,
    SCORE_NEWSLETTER,
    WEIGHT_KNOWN_DOMAIN,
    WEIGHT_LIST_ID,
    WEIGHT_LIST_UNSUBSCRIBE,
    WEIGHT_PRECEDENCE_BULK,
)
from .models import EmailHeaders

_ANGLE_RE = re.compile(r"<([^>]*)>")
_NAME_RE = re.compile(r"^([^<]+)<[^>]*>\s*$")


def extract_sender_email(from_value: str | None) -> str:
    """Return the lowercased address from a From header, or "" if there is none.

    Handles "Name <email@domain.com>", "<email@domain.com>" and a bare address.
    """
    if not from_value:
        return ""
    m = _ANGLE_RE.search(from_value)
    candidate = m.group(1) if m else from_value
    email = candidate.strip().strip("<>").strip().lower()
    if "@" not in email or any(c.isspace() for c in email):
        return ""
    return email


def extract_sender_name(from_value: str | None) -> str | None:
    """Return the display name from a "Name <email>" header, quotes stripped."""
    if not from_value:
        return None
    m = _NAME_RE.match(from_value.strip())
    if not m:
        return None
    name = m.group(1).strip()
    if len(name) >= 2 and name[0] == name[-1] and name[0] in ('"', "'"):
        name = name[1:-1].strip()
    return name or None


def extract_domain(email: str | None) -> str:
    if not email or "@" not in email:
        return ""
    return email.rsplit("@", 1)[1].strip().lower()


def is_known_newsletter_domain(domain: str) -> bool:
    return any(domain == known or domain.endswith(f".{known}") for known in KNOWN_NEWSLETTER_DOMAINS)


def _is_bulk_precedence(precedence: str | None) -> bool:
    return (precedence or "").strip().lower() in ("bulk", "list")


def calculate_score(headers: EmailHeaders) -> int:
    """Calculate a newsletter confidence score for one message.

    Returns an int between 0 and 100.
    """
    total = 0

    if headers.list_unsubscribe:
        total += WEIGHT_LIST_UNSUBSCRIBE

    domain = extract_domain(extract_sender_email(headers.from_))
    if domain and is_known_newsletter_domain(domain):
        total += WEIGHT_KNOWN_DOMAIN

    if headers.list_id:
        total += WEIGHT_LIST_ID

    if _is_bulk_precedence(headers.precedence):
        total += WEIGHT_PRECEDENCE_BULK

    return min(total, MAX_SCORE)


def is_newsletter(headers: EmailHeaders) -> bool:
    return calculate_score(headers) >= NEWSLETTER_THRESHOLD


def classify_confidence(score: int) -> str:
    """Bucket a score for display."""
    if score >= SCORE_NEWSLETTER:
        return "newsletter"
    if score >= NEWSLETTER_THRESHOLD:
        return "likely_newsletter"
    return "unlikely"
