"""Tests for the save engine.

Key behaviors tested:
- Content is installed under its name and the previous generation is kept
  as O<name>; no staging file survives a successful save
- Indexed URLs are fetched and written at most once per directory
- A failing item does not stop the others; SaveError names only failures
- An ok_empty marker skips the per-item loop
- fetch_urls mirrors every record URL as an indexed item
- Group and mode are applied before install
"""

import logging
import os
import sqlite3
import stat
from pathlib import Path

import pytest

from webfetch.common.exceptions import NoSaveError, SaveError
from webfetch.data_types import DataTable, Savable
from webfetch.driver.save_engine import (
    SaveEngine,
    SaveState,
    parse_mode,
    resolve_gid,
)
from webfetch.driver.url_index import INDEX_FILENAME, UrlIndex
from tests.utils import DictFetcher


class TestInstall:
    """Tests for the staging, backup and install sequence."""

    def test_writes_text_and_bytes(self, tmp_path: Path) -> None:
        engine = SaveEngine(tmp_path)
        text = Savable(file="a.txt", content="café\n")
        raw = Savable(file="b.bin", content=b"\x00\x01")

        committed = engine.save([text, raw])

        assert committed == [text, raw]
        assert (tmp_path / "a.txt").read_bytes() == "café\n".encode()
        assert (tmp_path / "b.bin").read_bytes() == b"\x00\x01"
        assert not (tmp_path / "Na.txt").exists()
        assert engine.state_of(text) is SaveState.COMMITTED

    def test_previous_generation_kept_as_backup(self, tmp_path: Path) -> None:
        """Each save shall move the prior content to O<name>."""
        for version in ("v1", "v2", "v3"):
            SaveEngine(tmp_path).save([Savable(file="a.txt", content=version)])

        assert (tmp_path / "a.txt").read_text() == "v3"
        assert (tmp_path / "Oa.txt").read_text() == "v2"

    def test_stale_staging_file_replaced(self, tmp_path: Path) -> None:
        (tmp_path / "Na.txt").write_text("left over from a crash")

        SaveEngine(tmp_path).save([Savable(file="a.txt", content="new")])

        assert (tmp_path / "a.txt").read_text() == "new"
        assert not (tmp_path / "Na.txt").exists()

    def test_subdirectory_names(self, tmp_path: Path) -> None:
        (tmp_path / "sub").mkdir()

        SaveEngine(tmp_path).save([Savable(file="sub/a.txt", content="x")])
        SaveEngine(tmp_path).save([Savable(file="sub/a.txt", content="y")])

        assert (tmp_path / "sub" / "a.txt").read_text() == "y"
        assert (tmp_path / "sub" / "Oa.txt").read_text() == "x"

    def test_content_wins_over_source_url(self, tmp_path: Path) -> None:
        fetcher = DictFetcher({"https://e.org/a.txt": b"remote"})
        savable = Savable(
            file="a.txt", content="local", source_url="https://e.org/a.txt"
        )

        SaveEngine(tmp_path, fetch=fetcher).save([savable])

        assert (tmp_path / "a.txt").read_text() == "local"
        assert fetcher.calls == []


class TestIndexedFetch:
    """Tests for direct-fetch items and the URL index."""

    def test_fetched_once_per_url(self, tmp_path: Path) -> None:
        """A second save of an indexed URL shall neither fetch nor write."""
        url = "https://e.org/files/report.pdf"
        fetcher = DictFetcher({url: b"%PDF-1.4"})

        def item() -> Savable:
            return Savable(file="report.pdf", source_url=url, indexed=True)

        first = SaveEngine(tmp_path, fetch=fetcher).save([item()])
        (tmp_path / "report.pdf").write_bytes(b"edited locally")
        engine = SaveEngine(tmp_path, fetch=fetcher)
        second_item = item()
        second = engine.save([second_item])

        assert len(first) == 1
        assert second == []
        assert fetcher.calls == [url]
        assert (tmp_path / "report.pdf").read_bytes() == b"edited locally"
        assert not (tmp_path / "Oreport.pdf").exists()
        assert list(UrlIndex(tmp_path).entries()) == [url]
        assert engine.state_of(second_item) is SaveState.SKIPPED
        assert second_item.error is None

    def test_unindexed_url_always_fetched(self, tmp_path: Path) -> None:
        url = "https://e.org/feed.xml"
        fetcher = DictFetcher({url: b"<rss/>"})

        for _ in range(2):
            SaveEngine(tmp_path, fetch=fetcher).save(
                [Savable(file="feed.xml", source_url=url)]
            )

        assert fetcher.calls == [url, url]
        assert not UrlIndex(tmp_path).path.exists()

    def test_failed_fetch_still_indexed(self, tmp_path: Path) -> None:
        """The index entry is made before the fetch is attempted."""
        url = "https://e.org/gone.html"
        fetcher = DictFetcher({})
        savable = Savable(file="gone.html", source_url=url, indexed=True)

        with pytest.raises(SaveError):
            SaveEngine(tmp_path, fetch=fetcher).save([savable])

        assert "404" in savable.error
        assert UrlIndex(tmp_path).lookup(url) is not None
        assert not (tmp_path / "gone.html").exists()

    def test_index_released_during_fetch(self, tmp_path: Path) -> None:
        """Another run shall be able to write the index mid-fetch."""
        url = "https://e.org/slow.html"
        other = "https://e.org/other.html"

        def fetch(requested: str) -> bytes:
            conn = sqlite3.connect(tmp_path / INDEX_FILENAME, timeout=0.5)
            try:
                conn.execute(
                    "INSERT INTO url_index (url, value) VALUES (?, ?)",
                    (other, "1#other.html"),
                )
                conn.commit()
            finally:
                conn.close()
            return b"<html/>"

        SaveEngine(tmp_path, fetch=fetch).save(
            [Savable(file="slow.html", source_url=url, indexed=True)]
        )

        assert set(UrlIndex(tmp_path).entries()) == {url, other}
        assert (tmp_path / "slow.html").read_bytes() == b"<html/>"

    def test_no_fetcher(self, tmp_path: Path) -> None:
        savable = Savable(file="a.html", source_url="https://e.org/a.html")

        with pytest.raises(SaveError):
            SaveEngine(tmp_path).save([savable])

        assert "no retrieval capability" in savable.error


class TestFailures:
    """Tests for per-item failures and the aggregate SaveError."""

    def test_partial_failure(self, tmp_path: Path) -> None:
        """Good items shall commit even when an item between them fails."""
        items = [
            Savable(file="item1.txt", content="one"),
            Savable(file="missing/item2.txt", content="two"),
            Savable(file="item3.txt", content="three"),
        ]

        with pytest.raises(SaveError) as exc_info:
            SaveEngine(tmp_path).save(items)

        err = exc_info.value
        assert err.failures == [items[1]]
        assert str(err).startswith(f"1 errors - error saving results in {tmp_path}")
        assert "file: missing/item2.txt error: failed to write" in str(err)
        assert "item1.txt" not in str(err)
        assert (tmp_path / "item1.txt").read_text() == "one"
        assert (tmp_path / "item3.txt").read_text() == "three"

    def test_missing_file_name(self, tmp_path: Path) -> None:
        savable = Savable(content="orphan")

        with pytest.raises(SaveError):
            SaveEngine(tmp_path).save([savable])

        assert savable.error == "missing file name - skipped"

    def test_absolute_file_name_rejected(self, tmp_path: Path) -> None:
        """An absolute file name shall not write outside the directory."""
        target = tmp_path / "target"
        target.mkdir()
        outside = tmp_path / "outside.txt"
        savable = Savable(file=str(outside), content="x")

        with pytest.raises(SaveError, match="escapes target directory"):
            SaveEngine(target).save([savable])

        assert not outside.exists()
        assert not (tmp_path / "Noutside.txt").exists()

    def test_parent_reference_rejected(self, tmp_path: Path) -> None:
        target = tmp_path / "target"
        target.mkdir()
        items = [
            Savable(file="../escape.txt", content="x"),
            Savable(file="sub/..", content="x"),
            Savable(file="kept.txt", content="x"),
        ]

        with pytest.raises(SaveError) as exc_info:
            SaveEngine(target).save(items)

        assert exc_info.value.failures == items[:2]
        assert items[0].error == "file name escapes target directory - skipped"
        assert not (tmp_path / "escape.txt").exists()
        assert (target / "kept.txt").read_text() == "x"

    def test_missing_content(self, tmp_path: Path) -> None:
        savable = Savable(file="empty.txt")

        with pytest.raises(SaveError):
            SaveEngine(tmp_path).save([savable])

        assert savable.error == "missing content or URL - skipped"
        assert not (tmp_path / "empty.txt").exists()

    def test_handler_error_is_reported(self, tmp_path: Path) -> None:
        savable = Savable(file="feed.xml", error="template not found")

        with pytest.raises(SaveError) as exc_info:
            SaveEngine(tmp_path).save([savable])

        assert "file: feed.xml error: template not found" in str(exc_info.value)

    def test_no_directory(self) -> None:
        with pytest.raises(NoSaveError):
            SaveEngine(None).save([])

    def test_no_savables(self, tmp_path: Path) -> None:
        with pytest.raises(NoSaveError):
            SaveEngine(tmp_path).save(None)

    def test_directory_is_a_file(self, tmp_path: Path) -> None:
        target = tmp_path / "plain"
        target.write_text("")

        with pytest.raises(NoSaveError, match="not a directory"):
            SaveEngine(target).save([])

    def test_empty_list_is_fine(self, tmp_path: Path) -> None:
        assert SaveEngine(tmp_path).save([]) == []


class TestOkEmpty:
    """Tests for the ok_empty marker."""

    def test_marker_skips_loop(self, tmp_path: Path) -> None:
        items = [Savable(ok_empty=True), Savable(file="a.txt", content="x")]

        assert SaveEngine(tmp_path).save(items) == []

        assert not (tmp_path / "a.txt").exists()


class TestFetchUrls:
    """Tests for the fetch_urls pre-pass."""

    def test_record_urls_mirrored(
        self, tmp_path: Path, headlines: DataTable, fetcher: DictFetcher
    ) -> None:
        """Each record URL shall be saved under its last path segment."""
        savables: list[Savable] = []

        committed = SaveEngine(tmp_path, fetch=fetcher, fetch_urls=True).save(
            savables, headlines
        )

        assert [s.file for s in committed] == ["one.html", "two.html"]
        assert all(s.indexed for s in savables)
        assert (tmp_path / "one.html").read_bytes() == b"<p>one</p>"
        assert (tmp_path / "two.html").read_bytes() == b"<p>two</p>"

    def test_directory_url_saved_as_index(self, tmp_path: Path) -> None:
        """A URL ending in "/" shall be saved as index.html."""
        url = "https://example.org/dir/"
        table = DataTable()
        table.add_fields("url")
        table.add_record(url)
        savables: list[Savable] = []

        committed = SaveEngine(
            tmp_path, fetch=DictFetcher({url: b"<p>dir</p>"}), fetch_urls=True
        ).save(savables, table)

        assert [s.file for s in committed] == ["index.html"]
        assert (tmp_path / "index.html").read_bytes() == b"<p>dir</p>"

    def test_table_without_urls(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        table = DataTable()
        table.add_fields("headline")
        table.add_record("no link")

        with caplog.at_level(logging.WARNING):
            committed = SaveEngine(tmp_path, fetch_urls=True).save([], table)

        assert committed == []
        assert "no url field" in caplog.text


class TestOwnership:
    """Tests for group and mode handling."""

    def test_mode_applied(self, tmp_path: Path) -> None:
        SaveEngine(tmp_path).save(
            [Savable(file="a.txt", content="x", mode="640")]
        )

        assert stat.S_IMODE((tmp_path / "a.txt").stat().st_mode) == 0o640

    def test_own_group_applied(self, tmp_path: Path) -> None:
        gid = os.getgid()

        SaveEngine(tmp_path).save(
            [Savable(file="a.txt", content="x", group=str(gid))]
        )

        assert (tmp_path / "a.txt").stat().st_gid == gid

    def test_unknown_group(self, tmp_path: Path) -> None:
        savable = Savable(
            file="a.txt", content="x", group="webfetch-no-such-group"
        )

        with pytest.raises(SaveError):
            SaveEngine(tmp_path).save([savable])

        assert "does not exist" in savable.error
        assert not (tmp_path / "a.txt").exists()

    def test_bad_mode(self, tmp_path: Path) -> None:
        savable = Savable(file="a.txt", content="x", mode="rw-r--r--")

        with pytest.raises(SaveError):
            SaveEngine(tmp_path).save([savable])

        assert "cannot chmod" in savable.error

    def test_parse_mode(self) -> None:
        assert parse_mode("0644") == 0o644
        assert parse_mode(0o600) == 0o600

    def test_resolve_gid(self) -> None:
        assert resolve_gid(0) == 0
        assert resolve_gid("42") == 42
        assert resolve_gid("webfetch-no-such-group") is None
