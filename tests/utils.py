"""Test helpers: canned fetchers and small plugins."""

from pathlib import Path

from webfetch.common.exceptions import NetworkGetError
from webfetch.data_types import (
    DataTable,
    FetchResult,
    LegacyResult,
    StructuredResult,
)
from webfetch.driver.url_index import UrlIndex
from webfetch.plugin import InputPlugin, OutputContext, OutputPlugin


class DictFetcher:
    """Retrieval capability backed by a dict of URL -> body.

    Unknown URLs raise NetworkGetError with a 404 status. Every call is
    recorded in ``calls``.
    """

    def __init__(self, bodies: dict[str, bytes]) -> None:
        self.bodies = bodies
        self.calls: list[str] = []

    def __call__(self, url: str) -> bytes:
        self.calls.append(url)
        if url not in self.bodies:
            raise NetworkGetError(url, "HTTP 404 Not Found", 404)
        return self.bodies[url]


def make_table() -> DataTable:
    table = DataTable()
    table.add_fields("headline", "link")
    table.add_well_known(title="headline", url="link")
    table.add_record("Hello", "https://example.org/hello.html")
    return table


class TableInput(InputPlugin):
    """Returns a fixed table and writes it with the ``text`` output."""

    def fetch(self) -> FetchResult:
        return StructuredResult(make_table(), {"text": [("titles.txt",)]})


class LegacyInput(InputPlugin):
    """Queues its own file and returns no table."""

    def fetch(self) -> FetchResult:
        self.context(None).raw_savable("legacy.txt", "legacy\n")
        return LegacyResult()


class BrokenInput(InputPlugin):
    """Fails while fetching."""

    def fetch(self) -> FetchResult:
        raise RuntimeError("source unavailable")


class TextOutput(OutputPlugin):
    """Writes one title per line."""

    @classmethod
    def fmt_handler_text(cls, ctx: OutputContext, filename: str) -> None:
        assert ctx.table is not None
        titles = []
        ctx.table.reset_pos()
        while (record := ctx.table.next_record()) is not None:
            titles.append(record.title)
        ctx.raw_savable(filename, "\n".join(titles) + "\n")


class NoHandlerOutput(OutputPlugin):
    """Registered for ``output:text`` but defines no handler."""


def record_url(directory: str, url: str) -> bool:
    """Record *url* in the index of *directory*; used from worker processes."""
    return UrlIndex(Path(directory)).check_and_record(url, "x")
