"""Configuration management for the mailbox → download pipeline."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlsplit

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

# Load .env early so BaseSettings can pick values up seamlessly.
load_dotenv()

DEFAULT_CONFIG_FILE = Path("config.json")
DEFAULT_TITLE_PATTERN = r"Заявк[аи]\s*№\s*(?P<title>[^\s<]+)"

# .NET-style named groups, e.g. (?<title>...), which Python spells (?P<title>...).
_DOTNET_GROUP = re.compile(r"\(\?<(?=[A-Za-z_])")
_TIMESPAN = re.compile(r"(\d+):(\d{1,2}):(\d{1,2}(?:\.\d+)?)")

# Setting names used by earlier config.json files and RRM_* variables, squashed
# to lower case without underscores.
LEGACY_KEYS = {
    "usessl": "IMAP_USE_SSL",
    "username": "IMAP_USERNAME",
    "password": "IMAP_PASSWORD",
    "folder": "IMAP_FOLDER",
    "timeout": "TIMEOUT_SECONDS",
    "titleregexpattern": "TITLE_PATTERN",
    "autosetread": "AUTO_MARK_READ",
}
LEGACY_ENV_PREFIX = "RRM_"


class Settings(BaseSettings):
    """App configuration derived from environment variables and config.json."""

    imap_host: str = Field(..., alias="IMAP_HOST")
    imap_port: int = Field(993, alias="IMAP_PORT", gt=0, lt=65536)
    imap_use_ssl: bool = Field(True, alias="IMAP_USE_SSL")
    imap_username: str = Field(..., alias="IMAP_USERNAME")
    imap_password: str = Field(..., alias="IMAP_PASSWORD")
    imap_folder: str = Field("", alias="IMAP_FOLDER")

    download_source: str = Field(..., alias="DOWNLOAD_SOURCE")
    destination_folder: Path = Field(Path("downloads"), alias="DESTINATION_FOLDER")
    group_by_date: bool = Field(False, alias="GROUP_BY_DATE")
    explore_destination_on_finish: bool = Field(False, alias="EXPLORE_DESTINATION_ON_FINISH")

    timeout_seconds: float = Field(60.0, alias="TIMEOUT_SECONDS", gt=0)
    retries: int = Field(3, alias="RETRIES", ge=1)
    strict_retries: bool = Field(False, alias="STRICT_RETRIES")
    title_pattern: str = Field(DEFAULT_TITLE_PATTERN, alias="TITLE_PATTERN")
    auto_mark_read: bool = Field(True, alias="AUTO_MARK_READ")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_file: Path | None = Field(None, alias="LOG_FILE")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("imap_host", "imap_username", "download_source", mode="before")
    @classmethod
    def _strip_required(cls, value):
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("must not be empty")
        return value

    @field_validator("imap_folder", mode="before")
    @classmethod
    def _normalize_folder(cls, value):
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("log_file", mode="before")
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("timeout_seconds", mode="before")
    @classmethod
    def _parse_timespan(cls, value):
        # "hh:mm:ss", as written by older config.json files
        if isinstance(value, str) and ":" in value:
            match = _TIMESPAN.fullmatch(value.strip())
            if not match:
                raise ValueError(f"invalid timeout {value!r}")
            hours, minutes, seconds = match.groups()
            return int(hours) * 3600 + int(minutes) * 60 + float(seconds)
        return value

    @field_validator("download_source")
    @classmethod
    def _normalize_download_source(cls, value: str) -> str:
        if "://" not in value:
            value = f"https://{value}"
        parts = urlsplit(value)
        if not parts.hostname:
            raise ValueError(f"no host in download source {value!r}")
        return value

    @field_validator("title_pattern")
    @classmethod
    def _compile_title_pattern(cls, value: str) -> str:
        value = _DOTNET_GROUP.sub("(?P<", value)
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid title pattern: {exc}") from exc
        return value

    @property
    def download_source_host(self) -> str:
        return (urlsplit(self.download_source).hostname or "").lower()

    @property
    def download_source_path(self) -> str:
        return urlsplit(self.download_source).path or "/"

    @property
    def destination_path(self) -> Path:
        return self.destination_folder.expanduser().resolve()

    @property
    def title_regex(self) -> re.Pattern[str]:
        return re.compile(self.title_pattern, re.IGNORECASE)


def read_config_file(path: Path) -> dict[str, Any]:
    """Read the JSON object of setting overrides from ``path``."""
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Failed to parse {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a JSON object")
    return data


def _squash(name: str) -> str:
    return name.replace("_", "").lower()


def canonical_key(name: str) -> str:
    """Map ``ImapHost``, ``imap_host`` or ``UseSSL`` style names to the env alias."""
    squashed = _squash(name)
    if squashed in LEGACY_KEYS:
        return LEGACY_KEYS[squashed]
    for field in Settings.model_fields.values():
        if field.alias and _squash(field.alias) == squashed:
            return field.alias
    return name.upper()


def legacy_environment(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Collect ``RRM_``-prefixed variables under their canonical names."""
    environ = os.environ if environ is None else environ
    prefix_len = len(LEGACY_ENV_PREFIX)
    return {
        canonical_key(name[prefix_len:]): value
        for name, value in environ.items()
        if name.upper().startswith(LEGACY_ENV_PREFIX)
    }


def load_settings(config_file: Path | None = None) -> Settings:
    """Build settings from env/.env, then ``RRM_*`` variables, then a JSON file.

    Later sources win. The default ``config.json`` is optional; an explicitly
    requested file must exist.
    """
    file_values: dict[str, Any] = {}
    if config_file is not None:
        if not config_file.exists():
            raise ConfigurationError(f"Config file not found: {config_file}")
        file_values = read_config_file(config_file)
    elif DEFAULT_CONFIG_FILE.exists():
        file_values = read_config_file(DEFAULT_CONFIG_FILE)

    overrides: dict[str, Any] = legacy_environment()
    overrides.update({canonical_key(str(key)): value for key, value in file_values.items()})
    return Settings(**overrides)
