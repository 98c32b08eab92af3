"""Entry point that downloads files linked from unread registry notifications."""

from __future__ import annotations

import argparse
import logging
import threading
from pathlib import Path
from typing import Sequence

from pydantic import ValidationError

from . import __version__
from .cancellation import install_signal_handlers
from .config import Settings, load_settings
from .downloader import Downloader
from .errors import ConfigurationError
from .link_extractor import LinkExtractor
from .mail_harvester import MailHarvester
from .models import RunReport, RunState
from .runner import HarvestRunner

EXIT_OK = 0
EXIT_FAILURE = 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Download files linked from unread notification emails."
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="JSON file with settings (defaults to ./config.json when present)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log the links that would be downloaded; leave messages unread",
    )
    parser.add_argument(
        "--no-explore",
        action="store_true",
        help="Do not open the destination folder when the run finishes",
    )
    return parser


def configure_logging(level: str, log_file: Path | None = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=handlers,
    )


def build_runner(
    settings: Settings,
    cancel_event: threading.Event,
    dry_run: bool = False,
    explore: bool | None = None,
) -> HarvestRunner:
    harvester = MailHarvester(
        settings,
        cancel_event=cancel_event,
        mark_seen=False if dry_run else None,
    )
    extractor = LinkExtractor(
        target_host=settings.download_source_host,
        target_path=settings.download_source_path,
        title_pattern=settings.title_regex,
    )
    downloader = Downloader(
        timeout=settings.timeout_seconds,
        cancel_event=cancel_event,
        dry_run=dry_run,
    )
    return HarvestRunner(
        settings,
        harvester=harvester,
        extractor=extractor,
        downloader=downloader,
        cancel_event=cancel_event,
        explore=explore,
    )


def exit_code(report: RunReport, settings: Settings) -> int:
    if report.state is RunState.EXHAUSTED_RETRIES and settings.strict_retries:
        return EXIT_FAILURE
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.config)
    except (ValidationError, ConfigurationError) as exc:
        configure_logging("INFO")
        logging.error("Invalid configuration: %s", exc)
        return EXIT_FAILURE

    configure_logging(settings.log_level, settings.log_file)
    logging.info("reestr-mailer version %s", __version__)

    cancel_event = threading.Event()
    install_signal_handlers(cancel_event)

    runner = build_runner(
        settings,
        cancel_event,
        dry_run=args.dry_run,
        explore=False if args.no_explore else None,
    )
    report = runner.run()
    return exit_code(report, settings)
