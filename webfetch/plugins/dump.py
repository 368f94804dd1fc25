"""JSON dump input and output.

DumpOutput writes the table of a run as JSON; DumpInput reads such files
back. Together they let one run's table be inspected, edited and fed to
another run::

    webfetch --dir out --source_format sitenews --source news.txt \\
        --dest_format dump --dest news.json
    webfetch --dir out --source_format dump --source out/news.json \\
        --dest_format rss --dest news.xml

A dump document is the table's ``to_dict()`` form, optionally with the
actions to run on it::

    {
      "fields": ["headline", "link"],
      "well_known": {"title": "headline", "url": "link"},
      "records": [["Hello", "https://example.org/1"]],
      "actions": {"dump": [["copy.json"]]}
    }
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError, model_validator

from webfetch.common.exceptions import WebFetchException
from webfetch.common.registry import CapabilityRegistry
from webfetch.data_types import (
    ActionSpec,
    DataTable,
    FetchResult,
    StructuredResult,
)
from webfetch.plugin import InputPlugin, OutputContext, OutputPlugin

logger = logging.getLogger(__name__)


class DumpDocument(BaseModel):
    """Validated form of a dump file."""

    fields: list[str]
    well_known: dict[str, str] = {}
    records: list[list[Any]] = []
    actions: dict[str, list[list[Any]]] | None = None

    @model_validator(mode="after")
    def _check_records(self) -> DumpDocument:
        if len(set(self.fields)) != len(self.fields):
            raise ValueError("field names must be unique")
        for num, values in enumerate(self.records):
            if len(values) != len(self.fields):
                raise ValueError(
                    f"record {num} has {len(values)} values, expected "
                    f"{len(self.fields)}"
                )
        return self


class DumpOutput(OutputPlugin):
    """Saves the table as indented JSON."""

    @classmethod
    def fmt_handler_dump(cls, ctx: OutputContext, filename: str) -> None:
        if ctx.table is None:
            ctx.error_savable(filename, "no table to dump")
            return
        ctx.raw_savable(
            filename, json.dumps(ctx.table.to_dict(), indent=2) + "\n"
        )


class DumpInput(InputPlugin):
    """Reads one or more dump documents into a single table.

    Each ``source`` is a local path or an http(s) URL. When several
    documents are given their fields are merged in order of first
    appearance, records missing a field get None for it, and their actions
    are concatenated.
    """

    def fetch(self) -> FetchResult:
        if not self.sources:
            raise WebFetchException("dump input requires at least one source")

        documents = [self._read(source) for source in self.sources]
        return StructuredResult(
            merge_documents(documents), merge_actions(documents)
        )

    def _read(self, source: str) -> DumpDocument:
        if source.startswith(("http://", "https://")):
            raw: bytes | str = self.get(source)
        else:
            raw = Path(source).read_text(encoding="utf-8")
        try:
            return DumpDocument.model_validate_json(raw)
        except ValidationError as e:
            raise WebFetchException(
                f"invalid dump document {source}", {"errors": e.error_count()}
            ) from e


def merge_documents(documents: list[DumpDocument]) -> DataTable:
    """Merge dump documents into one table."""
    table = DataTable()
    for doc in documents:
        table.add_fields(*doc.fields)
    for doc in documents:
        table.add_well_known(
            {
                role: fname
                for role, fname in doc.well_known.items()
                if role not in table.well_known
            }
        )
    for doc in documents:
        for values in doc.records:
            by_name = dict(zip(doc.fields, values))
            table.add_record(*(by_name.get(name) for name in table.fields))
    return table


def merge_actions(documents: list[DumpDocument]) -> ActionSpec:
    actions: ActionSpec = {}
    for doc in documents:
        for key, entries in (doc.actions or {}).items():
            actions.setdefault(key, []).extend(
                tuple(entry) for entry in entries
            )
    return actions


def register_plugins(registry: CapabilityRegistry) -> None:
    """Register the dump input and output with *registry*."""
    registry.register(DumpInput, "input:dump")
    registry.register(DumpOutput, "output:dump")
