"""Stream linked files to disk."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

import requests
from requests import Response

from .cancellation import raise_if_cancelled
from .errors import DownloadError
from .file_namer import FileNamer
from .models import LinkInfo

logger = logging.getLogger(__name__)


class Downloader:
    """Fetch one URL per call and write it under a name that does not clash."""

    CHUNK_SIZE = 64 * 1024

    def __init__(
        self,
        timeout: float,
        cancel_event: threading.Event | None = None,
        session: requests.Session | None = None,
        dry_run: bool = False,
    ) -> None:
        self.timeout = timeout
        self.cancel_event = cancel_event
        self.session = session or requests.Session()
        self.dry_run = dry_run

    def download(self, link: LinkInfo, namer: FileNamer) -> Optional[Path]:
        """Download ``link`` into the namer's folder and return the created path."""
        logger.info("Downloading file: %s", link.title)
        if self.dry_run:
            logger.info("[DRY-RUN] Would save %s as %s", link.uri, namer.unique_path(link.title))
            return None

        response = self._get(link.uri)
        with response:
            for path in namer.candidates(link.title):
                try:
                    destination = path.open("xb")
                except FileExistsError:
                    logger.debug("%s was created concurrently; trying next name", path)
                    continue
                logger.info("Saving to disk: %s", path)
                with destination:
                    self._copy(response, destination, link.uri)
                return path

    def _get(self, url: str) -> Response:
        raise_if_cancelled(self.cancel_event)
        try:
            resp = self.session.get(url, stream=True, timeout=self.timeout)
        except requests.RequestException as exc:
            raise DownloadError(url, str(exc)) from exc
        if resp.status_code >= 400:
            logger.error("Download request failed (%s): %s", resp.status_code, url)
            resp.close()
            raise DownloadError(url, f"HTTP {resp.status_code}")
        return resp

    def _copy(self, response: Response, destination, url: str) -> None:
        try:
            for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                raise_if_cancelled(self.cancel_event)
                if chunk:
                    destination.write(chunk)
        except requests.RequestException as exc:
            raise DownloadError(url, str(exc)) from exc
