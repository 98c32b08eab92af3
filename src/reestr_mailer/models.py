"""Typed containers shared across the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional


@dataclass
class MailSummary:
    """What the harvester needs to know about an unseen message."""

    uid: int
    received: Optional[datetime]
    subject: str
    html_section: Optional[str] = None
    html_charset: str = "utf-8"
    html_encoding: str = "7bit"

    @property
    def has_html(self) -> bool:
        return self.html_section is not None


@dataclass(frozen=True)
class LinkInfo:
    """A download link paired with the title derived from its message."""

    title: str
    uri: str


class ExtractionStatus(str, Enum):
    NONE = "none"
    SINGLE = "single"
    AMBIGUOUS = "ambiguous"


@dataclass
class ExtractionResult:
    """Links found in one message body plus an advisory status."""

    title: str
    links: list[LinkInfo]

    @property
    def status(self) -> ExtractionStatus:
        if not self.links:
            return ExtractionStatus.NONE
        if len(self.links) > 1:
            return ExtractionStatus.AMBIGUOUS
        return ExtractionStatus.SINGLE


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"
    EXHAUSTED_RETRIES = "exhausted_retries"


@dataclass
class RunReport:
    """Outcome of one invocation."""

    state: RunState = RunState.IDLE
    attempts: int = 0
    downloaded: list[Path] = field(default_factory=list)
    last_folder: Optional[Path] = None
