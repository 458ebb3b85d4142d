"""Exception hierarchy with stable error codes surfaced to callers."""

from __future__ import annotations


class ImporterError(Exception):
    """Base error. ``code`` is what callers see in a failed RunResult."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


# --- Gmail API ---


class GmailApiError(ImporterError):
    code = "GMAIL_API_ERROR"


class TokenExpiredError(GmailApiError):
    code = "TOKEN_EXPIRED"


class RateLimitedError(GmailApiError):
    code = "RATE_LIMITED"


class ForbiddenError(GmailApiError):
    code = "FORBIDDEN"


class NotFoundError(GmailApiError):
    code = "NOT_FOUND"


class UpstreamError(GmailApiError):
    code = "GMAIL_API_ERROR"


# --- Run admission ---


class AlreadyRunningError(ImporterError):
    code = "ALREADY_RUNNING"


class NotConnectedError(ImporterError):
    code = "NOT_CONNECTED"


class NoApprovedSendersError(ImporterError):
    code = "NO_APPROVED_SENDERS"


class QuotaExceededError(ImporterError):
    """Free-tier refusal. ``code`` tells sender cap and email cap apart."""

    code = "FREE_PREVIEW_EMAIL_LIMIT"


def describe_error(exc: BaseException) -> tuple[str, str | None]:
    """Return a human-readable message and error code for any exception."""
    if isinstance(exc, ImporterError):
        return exc.message, exc.code
    return str(exc) or exc.__class__.__name__, None
