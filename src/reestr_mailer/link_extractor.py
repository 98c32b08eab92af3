"""Find the download link and the request title inside a notification body."""

from __future__ import annotations

import logging
import re
from datetime import date
from typing import Iterable, Optional
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from .models import ExtractionResult, ExtractionStatus, LinkInfo
from .utils import date_stamp

logger = logging.getLogger(__name__)


def _normalize_path(path: str) -> str:
    return (path.rstrip("/") or "/").lower()


class LinkExtractor:
    """Match anchors against the configured host and path."""

    def __init__(self, target_host: str, target_path: str, title_pattern: re.Pattern[str]) -> None:
        self.target_host = target_host.lower()
        self.target_path = _normalize_path(target_path)
        self.title_pattern = title_pattern

    def extract(self, html: str, today: Optional[date] = None) -> ExtractionResult:
        """Return every matching link, all sharing the title derived from the body."""
        logger.info("Extracting download link from message body")
        title = self.derive_title(html, today=today)
        soup = BeautifulSoup(html, "html.parser")
        links = [LinkInfo(title=title, uri=uri) for uri in self._matching_uris(soup)]

        result = ExtractionResult(title=title, links=links)
        if result.status is ExtractionStatus.NONE:
            logger.warning("No link to %s%s found in message '%s'", self.target_host, self.target_path, title)
        elif result.status is ExtractionStatus.AMBIGUOUS:
            logger.warning("Found %s links to the download source in message '%s'; downloading all", len(links), title)
        return result

    def derive_title(self, text: str, today: Optional[date] = None) -> str:
        match = self.title_pattern.search(text)
        title = _captured(match).strip() if match else ""
        if not title:
            title = date_stamp(today)
            logger.warning("Request number not found in message text; using current date %s", title)
        return title

    def matches(self, uri: str) -> bool:
        try:
            parts = urlsplit(uri)
            host = parts.hostname
        except ValueError:
            return False
        if not host or host.lower() != self.target_host:
            return False
        return _normalize_path(parts.path) == self.target_path

    def _matching_uris(self, soup: BeautifulSoup) -> Iterable[str]:
        base_tag = soup.find("base", href=True)
        base = base_tag["href"].strip() if base_tag else ""
        for anchor in soup.find_all("a", href=True):
            href = anchor["href"].strip()
            if not href:
                continue
            try:
                uri = urljoin(base, href) if base else href
            except ValueError:
                logger.debug("Skipping malformed href %r", href)
                continue
            if self.matches(uri):
                yield uri
            else:
                logger.debug("Ignoring link %s", uri)


def _captured(match: re.Match[str]) -> str:
    """Prefer a group named ``title``, then the first group, then the whole match."""
    if "title" in match.re.groupindex:
        return match.group("title") or ""
    if match.re.groups:
        return match.group(1) or ""
    return match.group(0)
