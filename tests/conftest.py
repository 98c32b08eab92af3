from __future__ import annotations

import base64
import quopri
from types import SimpleNamespace
from typing import Optional

import pytest
from imapclient.exceptions import LoginError
from imapclient.response_types import BodyData

from reestr_mailer.config import Settings

TARGET = "target.example/files"


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "IMAP_HOST": "imap.example.com",
        "IMAP_USERNAME": "robot@example.com",
        "IMAP_PASSWORD": "secret",
        "DOWNLOAD_SOURCE": TARGET,
        "DESTINATION_FOLDER": str(tmp_path / "downloads"),
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


def _leaf(subtype: bytes, charset: bytes, encoding: bytes, size: int) -> BodyData:
    return BodyData((b"text", subtype, (b"CHARSET", charset), None, None, encoding, size, 1))


def _encode(text: str, charset: str, encoding: str) -> bytes:
    payload = text.encode(charset)
    if encoding == "base64":
        return base64.encodebytes(payload)
    if encoding == "quoted-printable":
        return quopri.encodestring(payload)
    return payload


def html_message(html: str, encoding: str = "base64", charset: str = "utf-8") -> dict:
    """multipart/alternative with the HTML leaf at section 2."""
    structure = BodyData(
        (
            [
                _leaf(b"plain", b"utf-8", b"7bit", 18),
                _leaf(b"html", charset.encode(), encoding.upper().encode(), len(html)),
            ],
            b"alternative",
        )
    )
    return {
        "structure": structure,
        "parts": {"1": b"Plain text version", "2": _encode(html, charset, encoding)},
    }


def html_with_attachment(html: str) -> dict:
    """multipart/mixed: alternative body (1.1, 1.2) plus a zip attachment (2)."""
    alternative = html_message(html)
    attachment = BodyData((b"application", b"zip", (b"NAME", b"old.zip"), None, None, b"BASE64", 4096))
    return {
        "structure": BodyData(([alternative["structure"], attachment], b"mixed")),
        "parts": {
            "1.1": alternative["parts"]["1"],
            "1.2": alternative["parts"]["2"],
            "2": b"UEsDBA==" * 512,
        },
    }


def plain_message(text: str) -> dict:
    return {"structure": _leaf(b"plain", b"utf-8", b"7bit", len(text)), "parts": {"1": text.encode()}}


class FakeIMAPClient:
    """In-memory stand-in for imapclient.IMAPClient."""

    def __init__(self, folders=("INBOX",), delimiter=b"/", login_error: Optional[Exception] = None):
        self.folders = set(folders)
        self.delimiter = delimiter
        self.login_error = login_error
        self.messages: dict[int, dict] = {}
        self.seen: set[int] = set()
        self.selected: Optional[str] = None
        self.logged_out = False
        self.connect_kwargs: dict = {}
        self.fetch_failures: set[int] = set()
        self.body_fetches: list[str] = []

    # factory signature used by MailHarvester
    def __call__(self, host, **kwargs):
        self.connect_kwargs = {"host": host, **kwargs}
        return self

    def add_message(self, uid: int, message: dict, subject=b"Notification"):
        self.messages[uid] = {**message, "subject": subject}

    def login(self, username, password):
        if self.login_error is not None:
            raise self.login_error
        return b"OK"

    def logout(self):
        self.logged_out = True

    def list_folders(self, directory="", pattern="*"):
        return [((b"\\HasChildren",), self.delimiter, name) for name in sorted(self.folders) if name == pattern]

    def folder_exists(self, folder):
        return folder in self.folders

    def select_folder(self, folder, readonly=False):
        assert folder in self.folders
        assert readonly is False
        self.selected = folder
        return {b"EXISTS": len(self.messages)}

    def search(self, criteria):
        assert criteria == ["UNSEEN"]
        return [uid for uid in self.messages if uid not in self.seen]

    def fetch(self, uids, items):
        result = {}
        for uid in uids:
            if uid in self.fetch_failures:
                raise OSError(f"connection reset while fetching {uid}")
            message = self.messages[uid]
            if items[0].startswith("BODY.PEEK["):
                section = items[0][len("BODY.PEEK[") : -1]
                self.body_fetches.append(section)
                result[uid] = {f"BODY[{section}]".encode(): message["parts"][section], b"SEQ": uid}
            else:
                result[uid] = {
                    b"ENVELOPE": SimpleNamespace(subject=message["subject"], date=None),
                    b"INTERNALDATE": None,
                    b"BODYSTRUCTURE": message["structure"],
                    b"SEQ": uid,
                }
        return result

    def add_flags(self, uids, flags):
        self.seen.update(uids)


def rejected_login() -> LoginError:
    return LoginError("[AUTHENTICATIONFAILED] Invalid credentials")


class FakeResponse:
    def __init__(self, status_code: int = 200, chunks=(b"PK\x03\x04", b"payload"), between_chunks=None):
        self.status_code = status_code
        self.chunks = list(chunks)
        self.between_chunks = between_chunks
        self.closed = False

    def iter_content(self, chunk_size=1):
        for index, chunk in enumerate(self.chunks):
            if index and self.between_chunks is not None:
                self.between_chunks()
            yield chunk

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class FakeSession:
    def __init__(self, responses=None, error: Optional[Exception] = None):
        self.responses = responses or {}
        self.error = error
        self.requests: list[tuple[str, dict]] = []

    def get(self, url, **kwargs):
        self.requests.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.responses.get(url) or FakeResponse()
