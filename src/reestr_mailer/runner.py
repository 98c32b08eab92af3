"""One invocation: harvest → extract → download, retried as a whole."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
import threading
from contextlib import closing
from datetime import date
from pathlib import Path
from typing import Callable, Generator, Optional, Protocol

from .cancellation import raise_if_cancelled
from .config import Settings
from .errors import RunCancelled
from .file_namer import FileNamer, destination_folder
from .link_extractor import LinkExtractor
from .models import ExtractionResult, LinkInfo, RunReport, RunState

logger = logging.getLogger(__name__)


class BodySource(Protocol):
    def iter_html_bodies(self) -> Generator[str, None, None]: ...


class LinkDownloader(Protocol):
    def download(self, link: LinkInfo, namer: FileNamer) -> Optional[Path]: ...


def reveal_folder(path: Path) -> None:
    """Open ``path`` in the desktop file browser; failures are only logged."""
    logger.info("Opening destination folder %s", path)
    try:
        if sys.platform.startswith("win"):
            os.startfile(str(path))  # type: ignore[attr-defined]
            return
        opener = "open" if sys.platform == "darwin" else "xdg-open"
        # Both hand the folder to the desktop and exit straight away.
        completed = subprocess.run([opener, str(path)], check=False)
    except OSError as exc:
        logger.warning("Could not open destination folder %s: %s", path, exc)
        return
    if completed.returncode != 0:
        logger.warning(
            "Could not open destination folder %s: %s exited with %s", path, opener, completed.returncode
        )


class HarvestRunner:
    """Drive full passes until one succeeds, is cancelled, or attempts run out."""

    def __init__(
        self,
        settings: Settings,
        harvester: BodySource,
        extractor: LinkExtractor,
        downloader: LinkDownloader,
        cancel_event: threading.Event | None = None,
        explore: bool | None = None,
        today: Optional[date] = None,
        revealer: Callable[[Path], None] = reveal_folder,
    ) -> None:
        self.settings = settings
        self.harvester = harvester
        self.extractor = extractor
        self.downloader = downloader
        self.cancel_event = cancel_event
        self.explore = settings.explore_destination_on_finish if explore is None else explore
        self.today = today
        self.revealer = revealer
        self._namers: dict[Path, FileNamer] = {}

    def run(self) -> RunReport:
        report = RunReport()
        max_attempts = self.settings.retries

        while report.attempts < max_attempts:
            report.attempts += 1
            report.state = RunState.RUNNING
            try:
                raise_if_cancelled(self.cancel_event)
                self._run_pass(report)
            except (RunCancelled, KeyboardInterrupt):
                logger.warning("Run cancelled during attempt %s", report.attempts)
                report.state = RunState.CANCELLED
                break
            except Exception:
                logger.exception(
                    "Processing failed, attempt %s/%s", report.attempts, max_attempts
                )
                continue
            report.state = RunState.SUCCEEDED
            break
        else:
            logger.error("Giving up after %s attempts", report.attempts)
            report.state = RunState.EXHAUSTED_RETRIES

        if report.state is RunState.SUCCEEDED and self.explore and report.last_folder is not None:
            self.revealer(report.last_folder)

        logger.info(
            "Run complete: state=%s attempts=%s downloaded=%s",
            report.state.value,
            report.attempts,
            len(report.downloaded),
        )
        return report

    def _run_pass(self, report: RunReport) -> None:
        with closing(self.harvester.iter_html_bodies()) as bodies:
            for body in bodies:
                result = self.extractor.extract(body, today=self.today)
                self._download_all(result, report)

    def _download_all(self, result: ExtractionResult, report: RunReport) -> None:
        if not result.links:
            return
        folder = destination_folder(
            self.settings.destination_path, self.settings.group_by_date, self.today
        )
        namer = self._namers.setdefault(folder, FileNamer(folder))
        for link in result.links:
            path = self.downloader.download(link, namer)
            if path is not None:
                report.downloaded.append(path)
                report.last_folder = folder
