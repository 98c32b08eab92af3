"""IMAP helper that yields the HTML bodies of unseen messages."""

from __future__ import annotations

import base64
import logging
import quopri
import threading
from typing import Callable, Iterator, Optional, Sequence

from imapclient import IMAPClient, SEEN
from imapclient.exceptions import IMAPClientError, LoginError

from .cancellation import raise_if_cancelled
from .config import Settings
from .errors import MailAuthenticationError, MailConnectionError
from .models import MailSummary
from .utils import decode_mime_words, format_received, to_text

logger = logging.getLogger(__name__)


class MailHarvester:
    """Connects to one mailbox folder and hands out unseen HTML bodies one at a time."""

    INBOX = "INBOX"
    SUMMARY_ITEMS = ["ENVELOPE", "INTERNALDATE", "BODYSTRUCTURE"]

    def __init__(
        self,
        settings: Settings,
        cancel_event: threading.Event | None = None,
        mark_seen: bool | None = None,
        client_factory: Callable[..., IMAPClient] = IMAPClient,
    ) -> None:
        self.settings = settings
        self.cancel_event = cancel_event
        self.mark_seen = settings.auto_mark_read if mark_seen is None else mark_seen
        self.client_factory = client_factory

    def iter_html_bodies(self) -> Iterator[str]:
        """Yield HTML bodies of unseen messages in server search order.

        A message is flagged \\Seen only once the consumer asks for the next
        item, so abandoning the iterator leaves the current message unseen.
        """
        client = self._connect()
        try:
            folder = self.resolve_folder(client)
            if folder is None:
                logger.error("Mail folder not found: %r", self.settings.imap_folder)
                return

            raise_if_cancelled(self.cancel_event)
            client.select_folder(folder, readonly=False)

            logger.info("Searching unseen messages in %s", folder)
            raise_if_cancelled(self.cancel_event)
            uids = client.search(["UNSEEN"])
            logger.info("Unseen messages: %s", len(uids))

            for summary in self._fetch_summaries(client, uids):
                if not summary.has_html:
                    logger.debug("Message %s has no HTML body; skipping", summary.uid)
                    continue

                logger.info(
                    "Loading message from %s: %s", format_received(summary.received), summary.subject
                )
                body = self._fetch_html_body(client, summary)
                if body is None:
                    logger.debug("Message %s HTML part could not be decoded; skipping", summary.uid)
                    continue

                yield body

                if self.mark_seen:
                    raise_if_cancelled(self.cancel_event)
                    logger.info("Marking message %s as read", summary.uid)
                    client.add_flags([summary.uid], [SEEN])
        finally:
            self._disconnect(client)

    def resolve_folder(self, client: IMAPClient) -> Optional[str]:
        """Return the configured folder as-is or nested under INBOX, or None."""
        for candidate in self.folder_candidates(self._delimiter(client)):
            raise_if_cancelled(self.cancel_event)
            logger.debug("Looking up mail folder %s", candidate)
            if client.folder_exists(candidate):
                return candidate
        return None

    def folder_candidates(self, delimiter: str) -> list[str]:
        segments = [part.strip() for part in self.settings.imap_folder.split("/") if part.strip()]
        if not segments:
            return [self.INBOX]
        verbatim = delimiter.join(segments)
        under_inbox = delimiter.join([self.INBOX, *segments])
        if verbatim.upper() == self.INBOX:
            return [verbatim]
        return [verbatim, under_inbox]

    def _connect(self) -> IMAPClient:
        settings = self.settings
        raise_if_cancelled(self.cancel_event)
        logger.info("Connecting to %s:%s", settings.imap_host, settings.imap_port)
        try:
            client = self.client_factory(
                settings.imap_host,
                port=settings.imap_port,
                ssl=settings.imap_use_ssl,
                timeout=settings.timeout_seconds,
            )
        except (OSError, IMAPClientError) as exc:
            raise MailConnectionError(
                f"Unable to connect to {settings.imap_host}:{settings.imap_port}: {exc}"
            ) from exc

        try:
            raise_if_cancelled(self.cancel_event)
            logger.info("Authenticating as %s", settings.imap_username)
            client.login(settings.imap_username, settings.imap_password)
        except LoginError as exc:
            self._disconnect(client)
            raise MailAuthenticationError(
                f"IMAP login rejected for {settings.imap_username}: {exc}"
            ) from exc
        except (OSError, IMAPClientError) as exc:
            self._disconnect(client)
            raise MailConnectionError(f"IMAP connection failed during login: {exc}") from exc
        except BaseException:
            self._disconnect(client)
            raise
        return client

    def _disconnect(self, client: IMAPClient) -> None:
        logger.info("Disconnecting from %s", self.settings.imap_host)
        try:
            client.logout()
        except (OSError, IMAPClientError) as exc:
            logger.warning("IMAP logout failed: %s", exc)

    def _delimiter(self, client: IMAPClient) -> str:
        for _flags, delimiter, _name in client.list_folders(pattern=self.INBOX):
            if delimiter:
                return to_text(delimiter)
        return "/"

    def _fetch_summaries(self, client: IMAPClient, uids: Sequence[int]) -> list[MailSummary]:
        if not uids:
            return []
        raise_if_cancelled(self.cancel_event)
        logger.info("Fetching message summaries")
        response = client.fetch(list(uids), self.SUMMARY_ITEMS)
        summaries: list[MailSummary] = []
        for uid in uids:
            data = response.get(uid)
            if not data:
                continue
            summaries.append(self._to_summary(uid, data))
        return summaries

    def _fetch_html_body(self, client: IMAPClient, summary: MailSummary) -> Optional[str]:
        raise_if_cancelled(self.cancel_event)
        # BODY.PEEK keeps the server from setting \Seen on its own.
        response = client.fetch([summary.uid], [f"BODY.PEEK[{summary.html_section}]"])
        raw = (response.get(summary.uid) or {}).get(f"BODY[{summary.html_section}]".encode())
        if raw is None:
            return None
        return decode_part(raw, summary.html_encoding, summary.html_charset)

    @staticmethod
    def _to_summary(uid: int, data: dict) -> MailSummary:
        envelope = data.get(b"ENVELOPE")
        received = data.get(b"INTERNALDATE") or getattr(envelope, "date", None)
        subject = decode_mime_words(getattr(envelope, "subject", None))
        summary = MailSummary(uid=uid, received=received, subject=subject)
        found = find_html_part(data.get(b"BODYSTRUCTURE"))
        if found is not None:
            section, leaf = found
            summary.html_section = section
            summary.html_charset = _body_params(leaf).get("charset", "utf-8")
            summary.html_encoding = to_text(leaf[5] or b"7bit").lower()
        return summary


def find_html_part(structure, section: str = "") -> Optional[tuple[str, tuple]]:
    """Return the IMAP section number and leaf of the first text/html part."""
    if not structure:
        return None
    if structure.is_multipart:
        for index, part in enumerate(structure[0], start=1):
            found = find_html_part(part, f"{section}.{index}" if section else str(index))
            if found is not None:
                return found
        return None
    if to_text(structure[0]).lower() == "text" and to_text(structure[1]).lower() == "html":
        return section or "1", structure
    return None


def decode_part(raw: bytes, transfer_encoding: str, charset: str) -> str:
    if transfer_encoding == "base64":
        raw = base64.b64decode(raw)
    elif transfer_encoding == "quoted-printable":
        raw = quopri.decodestring(raw)
    try:
        return raw.decode(charset, errors="replace")
    except LookupError:
        logger.debug("Unknown charset %s; decoding as utf-8", charset)
        return raw.decode("utf-8", errors="replace")


def _body_params(leaf) -> dict[str, str]:
    params = leaf[2] or ()
    return {to_text(key).lower(): to_text(value) for key, value in zip(params[::2], params[1::2])}
