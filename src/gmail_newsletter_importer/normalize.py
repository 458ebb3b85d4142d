"""Content normalization for newsletter deduplication.

The same newsletter sent to two recipients differs in tracking pixels,
unsubscribe links, greetings and per-recipient IDs. Normalizing those away
lets identical issues hash to the same value.
"""

from __future__ import annotations

import hashlib
import re

from .constants import GREETING_PLACEHOLDER, HEX_PLACEHOLDER, MIN_TRACKING_HEX_LENGTH, UNSUBSCRIBE_PLACEHOLDER

# Only path segments and subdomains count, so "tracksuit.jpg" survives.
_TRACKING_PATH_IMG_RE = re.compile(
    r"""<img[^>]*src=["'][^"']*/(?:track|pixel|beacon|open|click)/[^"']*["'][^>]*>""",
    re.IGNORECASE,
)
_TRACKING_HOST_IMG_RE = re.compile(
    r"""<img[^>]*src=["']https?://(?:track|pixel|beacon|open)\.[^"']+["'][^>]*>""",
    re.IGNORECASE,
)
_ONE_PIXEL_WH_RE = re.compile(r"""<img[^>]*width=["']?1(?!\d)["']?[^>]*height=["']?1(?!\d)["']?[^>]*>""", re.IGNORECASE)
_ONE_PIXEL_HW_RE = re.compile(r"""<img[^>]*height=["']?1(?!\d)["']?[^>]*width=["']?1(?!\d)["']?[^>]*>""", re.IGNORECASE)
_UNSUBSCRIBE_HREF_RE = re.compile(r"""href=["'][^"']*unsubscribe[^"']*["']""", re.IGNORECASE)
_GREETING_RE = re.compile(r"\b(Hi|Hello|Dear|Hey)\s+[A-Za-z][A-Za-z-]*\s*,", re.IGNORECASE)
_HEX_RE = re.compile(rf"[a-f0-9]{{{MIN_TRACKING_HEX_LENGTH},}}", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_for_hash(content: str) -> str:
    """Strip recipient-specific noise from newsletter HTML or text.

    Deterministic and idempotent: ``normalize_for_hash(normalize_for_hash(x))``
    equals ``normalize_for_hash(x)``.
    """
    text = _TRACKING_PATH_IMG_RE.sub("", content)
    text = _TRACKING_HOST_IMG_RE.sub("", text)
    text = _ONE_PIXEL_WH_RE.sub("", text)
    text = _ONE_PIXEL_HW_RE.sub("", text)
    text = _UNSUBSCRIBE_HREF_RE.sub(f'href="{UNSUBSCRIBE_PLACEHOLDER}"', text)
    # hex first: "Hi <hex>," must still end up as "Hi USER,"
    text = _HEX_RE.sub(HEX_PLACEHOLDER, text)
    text = _GREETING_RE.sub(lambda m: f"{m.group(1)} {GREETING_PLACEHOLDER},", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def effective_content(content: str | None, subject: str) -> str:
    """Content to hash and store; blank bodies fall back to the subject."""
    if content and content.strip():
        return content
    return f"<p>{subject}</p>"


def compute_content_hash(content: str) -> str:
    """SHA-256 of the content as a 64-character lowercase hex string."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def content_hash_for(content: str | None, subject: str) -> str:
    """Hash of the normalized content, or of the subject when nothing survives normalization."""
    normalized = normalize_for_hash(content or "")
    if not normalized:
        normalized = normalize_for_hash(f"<p>{subject}</p>")
    return compute_content_hash(normalized)
