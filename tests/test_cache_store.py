from __future__ import annotations

import json
import stat
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from upton.config import CacheConfig
from upton.models import FetchOutcome, FetchResult
from upton.storage.keys import hashed_key
from upton.storage.stash import CacheStore, initialize_cache_dir, write_atomic

URI = "https://example.com/article"


class StubFetcher:
    def __init__(self, content: bytes = b"hello", outcome: FetchOutcome = FetchOutcome.SUCCESS) -> None:
        self.content = content
        self.outcome = outcome
        self.calls: list[str] = []

    def fetch(self, uri: str) -> FetchResult:
        self.calls.append(uri)
        body = self.content if self.outcome is FetchOutcome.SUCCESS else b""
        return FetchResult(uri=uri, outcome=self.outcome, content=body, attempts=1)


def _store(location: Path, fetcher: StubFetcher, **config) -> CacheStore:
    return CacheStore(
        config=CacheConfig(location=location, **config),
        fetcher=fetcher,
        log=lambda message: None,
    )


def test_miss_fetches_and_persists_raw_content(tmp_path: Path) -> None:
    fetcher = StubFetcher(b"hello")
    store = _store(tmp_path / "stash", fetcher)

    result = store.lookup(URI)

    assert result.content == b"hello"
    assert result.from_cache is False
    entries = list((tmp_path / "stash").iterdir())
    assert [entry.name for entry in entries] == [hashed_key(URI)]
    assert entries[0].read_bytes() == b"hello"


def test_hit_is_served_without_fetching(tmp_path: Path) -> None:
    location = tmp_path / "stash"
    location.mkdir()
    (location / hashed_key(URI)).write_bytes(b"cached")
    fetcher = StubFetcher(b"fresh")

    result = _store(location, fetcher).lookup(URI)

    assert result.content == b"cached"
    assert result.from_cache is True
    assert fetcher.calls == []


def test_second_get_is_served_from_disk_byte_for_byte(tmp_path: Path) -> None:
    body = bytes(range(256)) * 4
    fetcher = StubFetcher(body)
    store = _store(tmp_path / "stash", fetcher)

    first = store.get(URI)
    second = store.get(URI)

    assert first == second == body
    assert fetcher.calls == [URI]


def test_readable_mode_fetches_on_every_call(tmp_path: Path) -> None:
    moments = iter(
        datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc) + timedelta(seconds=n) for n in range(10)
    )
    fetcher = StubFetcher(b"hello")
    store = CacheStore(
        config=CacheConfig(location=tmp_path / "stash", readable_filenames=True),
        fetcher=fetcher,
        log=lambda message: None,
        clock=lambda: next(moments),
    )

    store.get(URI)
    store.get(URI)

    assert fetcher.calls == [URI, URI]
    names = sorted(entry.name for entry in (tmp_path / "stash").iterdir())
    assert names == [
        "httpsexamplecomarticle.2026-01-02_03:04:05_UTC.html",
        "httpsexamplecomarticle.2026-01-02_03:04:06_UTC.html",
    ]


def test_terminal_failure_is_cached_as_empty_entry(tmp_path: Path) -> None:
    fetcher = StubFetcher(outcome=FetchOutcome.NOT_FOUND)
    store = _store(tmp_path / "stash", fetcher)

    assert store.get(URI) == b""
    assert store.get(URI) == b""

    assert fetcher.calls == [URI]
    assert (tmp_path / "stash" / hashed_key(URI)).read_bytes() == b""


def test_terminal_failure_not_cached_when_disabled(tmp_path: Path) -> None:
    fetcher = StubFetcher(outcome=FetchOutcome.SERVER_ERROR)
    store = _store(tmp_path / "stash", fetcher, cache_failures=False)

    store.get(URI)
    store.get(URI)

    assert fetcher.calls == [URI, URI]
    assert list((tmp_path / "stash").iterdir()) == []


@pytest.mark.parametrize(
    "outcome", [FetchOutcome.RETRIES_EXHAUSTED, FetchOutcome.TRANSPORT_ERROR]
)
def test_transient_failures_are_never_cached(tmp_path: Path, outcome: FetchOutcome) -> None:
    store = _store(tmp_path / "stash", StubFetcher(outcome=outcome))

    result = store.lookup(URI)

    assert result.outcome is outcome
    assert list((tmp_path / "stash").iterdir()) == []


def test_entry_written_during_download_is_kept(tmp_path: Path) -> None:
    location = tmp_path / "stash"

    class RacingFetcher(StubFetcher):
        def fetch(self, uri: str) -> FetchResult:
            (location / hashed_key(uri)).write_bytes(b"other writer")
            return super().fetch(uri)

    store = _store(location, RacingFetcher(b"mine"))

    assert store.get(URI) == b"mine"
    assert (location / hashed_key(URI)).read_bytes() == b"other writer"


def test_directory_created_owner_only(tmp_path: Path) -> None:
    location = tmp_path / "nested" / "stash"

    _store(location, StubFetcher())

    assert location.is_dir()
    assert stat.S_IMODE(location.stat().st_mode) == 0o700


def test_existing_directory_is_left_alone(tmp_path: Path) -> None:
    location = tmp_path / "stash"
    location.mkdir(mode=0o755)
    location.chmod(0o755)
    (location / "keep").write_bytes(b"x")

    initialize_cache_dir(location)

    assert stat.S_IMODE(location.stat().st_mode) == 0o755
    assert (location / "keep").read_bytes() == b"x"


def test_unusable_location_propagates(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")

    with pytest.raises(OSError):
        _store(blocker, StubFetcher())
    with pytest.raises(OSError):
        _store(blocker / "stash", StubFetcher())


def test_write_atomic_leaves_no_temp_files(tmp_path: Path) -> None:
    target = tmp_path / "entry"
    write_atomic(target, b"one")
    write_atomic(target, b"two")

    assert target.read_bytes() == b"two"
    assert [path.name for path in tmp_path.iterdir()] == ["entry"]


def test_status_lines_and_event_log(tmp_path: Path) -> None:
    messages: list[str] = []
    event_log = tmp_path / "events.jsonl"
    store = CacheStore(
        config=CacheConfig(location=tmp_path / "stash"),
        fetcher=StubFetcher(b"hello"),
        log=messages.append,
        event_log=event_log,
    )

    store.get(URI)
    store.get(URI)

    assert messages == [
        f"Cache of {URI} unavailable. Will download from the internet",
        f"Writing {URI} data to the cache",
        f"Cache of {URI} available",
    ]
    events = [json.loads(line) for line in event_log.read_text(encoding="utf-8").splitlines()]
    assert [event["event"] for event in events] == ["cache_miss", "cache_write", "cache_hit"]
    assert events[1]["outcome"] == "success"
    assert events[2]["size"] == 5


def test_unreadable_entry_propagates(tmp_path: Path) -> None:
    location = tmp_path / "stash"
    location.mkdir()
    (location / hashed_key(URI)).mkdir()
    fetcher = StubFetcher()

    with pytest.raises(OSError):
        _store(location, fetcher).get(URI)
    assert fetcher.calls == []


def test_failed_entry_write_propagates(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    location = tmp_path / "stash"
    store = _store(location, StubFetcher(b"hello"))

    def refuse(*args, **kwargs):
        raise PermissionError(13, "Permission denied", str(location))

    monkeypatch.setattr("upton.storage.stash.tempfile.mkstemp", refuse)

    with pytest.raises(PermissionError):
        store.get(URI)
    assert list(location.iterdir()) == []


def test_write_atomic_failure_removes_temp_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    target = tmp_path / "entry"

    def broken_replace(src, dst):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr("upton.storage.stash.os.replace", broken_replace)

    with pytest.raises(OSError, match="No space left"):
        write_atomic(target, b"partial")
    assert list(tmp_path.glob(".upton-*.tmp")) == []
    assert not target.exists()
