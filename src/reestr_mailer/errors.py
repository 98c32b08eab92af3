"""Exception hierarchy for the mail → download pipeline."""

from __future__ import annotations


class MailerError(Exception):
    """Base class for pipeline failures."""


class ConfigurationError(MailerError):
    """A required setting is missing or invalid."""


class MailConnectionError(MailerError):
    """The IMAP server could not be reached or dropped the connection."""


class MailAuthenticationError(MailerError):
    """The IMAP server rejected the credentials."""


class DownloadError(MailerError):
    """A single file could not be retrieved."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Download of {url} failed: {reason}")
        self.url = url
        self.reason = reason


class RunCancelled(MailerError):
    """Cancellation was requested while a pass was in progress."""
