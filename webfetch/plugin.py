"""Base classes for input and output plugins.

An input plugin subclasses InputPlugin, registers an ``input:<format>``
capability and implements fetch()::

    class HeadlinesInput(InputPlugin):
        def fetch(self) -> FetchResult:
            table = DataTable()
            table.add_fields("headline", "link")
            table.add_well_known(title="headline", url="link")
            ...
            return StructuredResult(table, {"dump": [("headlines.json",)]})

    register(HeadlinesInput, "input:headlines")

An output plugin registers ``output:<key>`` and provides a classmethod
named ``fmt_handler_<key>``. The dispatcher calls it once per parameter
tuple of the ``<key>`` action, passing an OutputContext first::

    class CsvOutput(OutputPlugin):
        @classmethod
        def fmt_handler_csv(cls, ctx: OutputContext, filename: str) -> None:
            ctx.raw_savable(filename, render_csv(ctx.table))

    register(CsvOutput, "output:csv")

Handlers never reach into the input plugin; everything they may use is
on the context.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import webfetch
from webfetch.common.exceptions import MustOverrideError, NetworkGetError
from webfetch.common.request_manager import Fetcher
from webfetch.data_types import DataTable, FetchResult, Savable

_URL_PARAMS = re.compile(r"[;?].*$", re.DOTALL)

DEFAULT_INDEX_NAME = "index.html"


def filename_from_url(url: str) -> str:
    """Derive a local file name from the last path segment of *url*.

    A URL whose path ends in "/" names a directory and maps to
    ``index.html``.
    """
    path = _URL_PARAMS.sub("", url)
    return path.rsplit("/", 1)[-1] or DEFAULT_INDEX_NAME


@dataclass
class OutputContext:
    """Everything an output handler may use.

    Attributes:
        table: The table produced by the input plugin (None for legacy runs).
        options: Run options, including plugin-specific ones.
        savables: Pending list shared with the input plugin; handlers append
            Savable descriptors to it.
        fetcher: Retrieval capability for handlers that need to download.
    """

    table: DataTable | None
    options: dict[str, Any] = field(default_factory=dict)
    savables: list[Savable] = field(default_factory=list)
    fetcher: Fetcher | None = None

    def _ownership(self) -> dict[str, Any]:
        attrs: dict[str, Any] = {}
        if self.options.get("group") is not None:
            attrs["group"] = self.options["group"]
        if self.options.get("mode") is not None:
            attrs["mode"] = self.options["mode"]
        return attrs

    def raw_savable(self, filename: str, content: str | bytes) -> Savable:
        """Queue *content* for writing to *filename*."""
        savable = Savable(file=filename, content=content, **self._ownership())
        self.savables.append(savable)
        return savable

    def html_savable(self, filename: str, content: str) -> Savable:
        """Queue generated HTML wrapped in do-not-edit markers."""
        banner = (
            f"generated by webfetch {webfetch.__version__} - "
            "do not manually edit"
        )
        return self.raw_savable(
            filename,
            f"<!--- begin text {banner} --->\n"
            f"{content}"
            f"<!--- end text {banner} --->\n",
        )

    def direct_fetch_savable(self, url: str) -> Savable:
        """Queue *url* to be downloaded verbatim at save time.

        The item is indexed, so a URL already saved from this directory
        is not fetched again.
        """
        savable = Savable(
            file=filename_from_url(url),
            source_url=url,
            indexed=True,
            **self._ownership(),
        )
        self.savables.append(savable)
        return savable

    def error_savable(self, filename: str, error: str) -> Savable:
        """Queue a descriptor that only reports a handler failure."""
        savable = Savable(file=filename, error=error)
        self.savables.append(savable)
        return savable

    def no_savables_ok(self) -> None:
        """Mark the batch as satisfied by a handler that wrote its own files."""
        self.savables.append(Savable(ok_empty=True))

    def get(self, url: str) -> bytes:
        """Retrieve *url* through the injected fetcher."""
        if self.fetcher is None:
            raise NetworkGetError(url, "no retrieval capability configured")
        return self.fetcher(url)


class InputPlugin:
    """Base class for input plugins.

    Subclasses implement fetch(). Options from the command line (or from
    an embedding caller) are available as ``self.options``; a plugin that
    writes its own Savables appends them to ``self.savables`` and returns
    LegacyResult().
    """

    def __init__(
        self, options: dict[str, Any], fetcher: Fetcher | None = None
    ) -> None:
        self.options = dict(options)
        self.fetcher = fetcher
        self.savables: list[Savable] = []

    @property
    def sources(self) -> list[str]:
        source = self.options.get("source")
        if source is None:
            return []
        if isinstance(source, str):
            return [source]
        return list(source)

    def fetch(self) -> FetchResult:
        raise MustOverrideError(
            f"{type(self).__name__}.fetch is abstract and must be "
            "overridden by a subclass"
        )

    def get(self, url: str) -> bytes:
        if self.fetcher is None:
            raise NetworkGetError(url, "no retrieval capability configured")
        return self.fetcher(url)

    def context(self, table: DataTable | None) -> OutputContext:
        """Build the context output handlers will see for this run."""
        return OutputContext(
            table=table,
            options=self.options,
            savables=self.savables,
            fetcher=self.fetcher,
        )


class OutputPlugin:
    """Marker base class for output plugins.

    Output plugins hold no per-run state: handlers are classmethods named
    ``fmt_handler_<key>`` that receive an OutputContext.
    """
