from __future__ import annotations

import threading

import pytest
import requests

from conftest import FakeResponse, FakeSession
from reestr_mailer.downloader import Downloader
from reestr_mailer.errors import DownloadError, RunCancelled
from reestr_mailer.file_namer import FileNamer
from reestr_mailer.models import LinkInfo

LINK = LinkInfo(title="2024.05.01", uri="https://target.example/files?id=9")


def test_streams_the_response_to_a_new_file(tmp_path):
    session = FakeSession()
    downloader = Downloader(timeout=12, session=session)

    path = downloader.download(LINK, FileNamer(tmp_path))

    assert path == tmp_path / "2024.05.01.zip"
    assert path.read_bytes() == b"PK\x03\x04payload"
    assert session.requests == [(LINK.uri, {"stream": True, "timeout": 12})]


def test_existing_file_is_never_overwritten(tmp_path):
    (tmp_path / "2024.05.01.zip").write_bytes(b"old")
    downloader = Downloader(timeout=5, session=FakeSession())

    path = downloader.download(LINK, FileNamer(tmp_path))

    assert path == tmp_path / "2024.05.01 (1).zip"
    assert (tmp_path / "2024.05.01.zip").read_bytes() == b"old"


def test_file_created_after_the_name_was_checked_is_left_alone(tmp_path, monkeypatch):
    namer = FileNamer(tmp_path)
    original = namer.candidates

    def racing_candidates(title):
        for path in original(title):
            if not path.name.endswith("(1).zip"):
                path.write_bytes(b"someone else")
            yield path

    monkeypatch.setattr(namer, "candidates", racing_candidates)

    path = Downloader(timeout=5, session=FakeSession()).download(LINK, namer)

    assert path == tmp_path / "2024.05.01 (1).zip"
    assert (tmp_path / "2024.05.01.zip").read_bytes() == b"someone else"


def test_error_status_is_a_download_error(tmp_path):
    response = FakeResponse(status_code=404)
    session = FakeSession(responses={LINK.uri: response})

    with pytest.raises(DownloadError) as excinfo:
        Downloader(timeout=5, session=session).download(LINK, FileNamer(tmp_path))

    assert "HTTP 404" in str(excinfo.value)
    assert response.closed
    assert list(tmp_path.iterdir()) == []


def test_transport_error_is_a_download_error(tmp_path):
    session = FakeSession(error=requests.ConnectionError("reset"))

    with pytest.raises(DownloadError):
        Downloader(timeout=5, session=session).download(LINK, FileNamer(tmp_path))


def test_dry_run_does_not_touch_the_network_or_disk(tmp_path):
    session = FakeSession()

    assert Downloader(timeout=5, session=session, dry_run=True).download(LINK, FileNamer(tmp_path)) is None
    assert session.requests == []
    assert list(tmp_path.iterdir()) == []


def test_cancellation_before_request(tmp_path):
    cancel_event = threading.Event()
    cancel_event.set()
    session = FakeSession()

    with pytest.raises(RunCancelled):
        Downloader(timeout=5, session=session, cancel_event=cancel_event).download(LINK, FileNamer(tmp_path))
    assert session.requests == []


def test_cancellation_between_chunks_leaves_the_partial_file(tmp_path):
    cancel_event = threading.Event()
    response = FakeResponse(chunks=(b"first", b"second"), between_chunks=cancel_event.set)
    session = FakeSession(responses={LINK.uri: response})

    with pytest.raises(RunCancelled):
        Downloader(timeout=5, session=session, cancel_event=cancel_event).download(LINK, FileNamer(tmp_path))

    assert (tmp_path / "2024.05.01.zip").read_bytes() == b"first"
    assert response.closed


def test_very_long_title_still_produces_a_usable_file(tmp_path):
    link = LinkInfo(title="Ж" * 200, uri="https://target.example/files?id=1")
    downloader = Downloader(timeout=5, session=FakeSession())
    namer = FileNamer(tmp_path)

    first = downloader.download(link, namer)
    second = downloader.download(link, namer)

    assert first.read_bytes() == second.read_bytes() == b"PK\x03\x04payload"
    assert len(second.name.encode("utf-8")) <= 255
    assert second.name.endswith(" (1).zip")
