"""Collision-free file names for downloaded archives."""

from __future__ import annotations

import logging
import re
from datetime import date
from pathlib import Path
from typing import Iterator, Optional

from .utils import date_stamp

logger = logging.getLogger(__name__)

PLACEHOLDER = "_"
EXTENSION = ".zip"
# Most filesystems cap a name at 255 bytes; keep room for " (n).zip".
MAX_STEM_BYTES = 200
_INVALID_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def sanitize_name(name: str, max_bytes: int = MAX_STEM_BYTES) -> str:
    """Replace characters that are illegal in file names and cut to ``max_bytes`` of UTF-8."""
    cleaned = _INVALID_CHARS.sub(PLACEHOLDER, name)
    encoded = cleaned.encode("utf-8")
    if len(encoded) <= max_bytes:
        return cleaned
    logger.warning("Title is longer than %s bytes; shortening the file name", max_bytes)
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def destination_folder(base: Path, group_by_date: bool, today: Optional[date] = None) -> Path:
    """Return (and create) the folder downloads of this run go to."""
    folder = base / date_stamp(today) if group_by_date else base
    folder.mkdir(parents=True, exist_ok=True)
    return folder.resolve()


class FileNamer:
    """Hand out ``{title}.zip``, ``{title} (1).zip``, ... within one folder.

    The index for a title never goes backwards during the namer's lifetime, so
    two calls never return the same path even if the first one was not created.
    """

    def __init__(self, folder: Path) -> None:
        self.folder = folder
        self._next_index: dict[str, int] = {}

    def candidates(self, title: str) -> Iterator[Path]:
        """Yield successive names that do not exist at the time they are produced."""
        stem = sanitize_name(title)
        while True:
            index = self._next_index.get(stem, 0)
            self._next_index[stem] = index + 1
            path = self.folder / self._file_name(stem, index)
            if path.exists():
                logger.debug("%s already exists", path)
                continue
            yield path

    def unique_path(self, title: str) -> Path:
        return next(self.candidates(title))

    @staticmethod
    def _file_name(stem: str, index: int) -> str:
        suffix = f" ({index})" if index else ""
        return f"{stem}{suffix}{EXTENSION}"
