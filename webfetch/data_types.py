"""Data types shared by input plugins, output plugins and the save engine.

This module defines the contract between producers and consumers:

1. DataTable - a generic ordered table of named fields and records, plus
   an alias map from well-known semantic roles (title, url, date, ...)
   to the concrete field names a given input happens to use.
2. Record - a read/write view of one row of a DataTable.
3. Savable - a descriptor for one artifact the save engine will write.
4. LegacyResult / StructuredResult - what an input plugin's fetch()
   returns, telling the dispatcher whether there is anything to route.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, TypeAlias

from webfetch.common.exceptions import AccessorError

# Roles an input plugin may alias to one of its fields. Output plugins
# use these to find e.g. the title of a record without knowing what the
# input called that column.
WELL_KNOWN_NAMES: tuple[str, ...] = (
    "title",
    "url",
    "id",
    "date",
    "summary",
    "comments",
    "author",
    "category",
    "location",
)


class DataTable:
    """Ordered table with named, positionally indexed fields.

    Invariants:
        - Field names are unique.
        - Every well-known role maps to an existing field.
        - Every record has exactly ``len(fields)`` values.

    The table carries a single cursor for reset_pos()/next_record(); only
    one walk over a given instance can be active at a time.

    Example::

        table = DataTable()
        table.add_fields("posted", "headline", "link")
        table.add_well_known(date="posted", title="headline", url="link")
        table.add_record("2024-05-01", "Hello", "https://example.org/1")

        table.reset_pos()
        while (record := table.next_record()) is not None:
            print(record.title, record.url)
    """

    def __init__(self) -> None:
        self.fields: list[str] = []
        self.well_known: dict[str, str] = {}
        self.records: list[list[Any]] = []
        self._findex: dict[str, int] = {}
        self._accessors: dict[str, int] = {}
        self._pos = 0

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def add_fields(self, *names: str) -> None:
        """Append previously unseen field names; known names are ignored.

        Records added earlier get ``None`` for each new field.
        """
        for name in names:
            if name in self._findex:
                continue
            self._findex[name] = len(self.fields)
            self.fields.append(name)
            for record in self.records:
                record.append(None)
            # A new field may shadow a role alias with the same name.
            self._accessors.pop(name, None)

    def add_well_known(
        self, mapping: dict[str, str] | None = None, **roles: str
    ) -> None:
        """Alias well-known roles to fields.

        Entries naming a field that does not exist are dropped, so the
        alias map only ever describes data that is actually present.
        """
        merged = dict(mapping or {})
        merged.update(roles)
        for role, fname in merged.items():
            if fname in self._findex:
                self.well_known[role] = fname
                self._accessors.pop(role, None)

    def add_record(self, *values: Any) -> None:
        """Append one record.

        Raises:
            ValueError: If the number of values differs from the number of
                fields. The table is left unchanged.
        """
        if len(values) != len(self.fields):
            raise ValueError(
                f"record has {len(values)} values but the table has "
                f"{len(self.fields)} fields"
            )
        self.records.append(list(values))

    # ------------------------------------------------------------------
    # Name resolution
    # ------------------------------------------------------------------

    def field_index(self, name: str) -> int:
        """Return the position of field *name*."""
        try:
            return self._findex[name]
        except KeyError:
            raise AccessorError(name) from None

    def well_known_field(self, role: str) -> str:
        """Return the field name aliased to well-known *role*."""
        try:
            return self.well_known[role]
        except KeyError:
            raise AccessorError(role) from None

    def well_known_index(self, role: str) -> int:
        """Return the position of the field aliased to *role*."""
        return self.field_index(self.well_known_field(role))

    def has_symbol(self, symbol: str) -> bool:
        return symbol in self._findex or symbol in self.well_known

    def resolve(self, symbol: str) -> int:
        """Resolve a field name or role to a position, caching the result.

        Field names take precedence over roles with the same name.

        Raises:
            AccessorError: If *symbol* is neither a field nor a role.
        """
        index = self._accessors.get(symbol)
        if index is not None:
            return index
        if symbol in self._findex:
            index = self._findex[symbol]
        elif symbol in self.well_known:
            index = self._findex[self.well_known[symbol]]
        else:
            raise AccessorError(symbol)
        self._accessors[symbol] = index
        return index

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    @property
    def num_records(self) -> int:
        return len(self.records)

    def record(self, num: int) -> Record:
        """Return a view of record *num*."""
        if not 0 <= num < len(self.records):
            raise IndexError(f"record {num} out of range")
        return Record(self, num)

    def reset_pos(self) -> None:
        """Rewind the cursor to the first record."""
        self._pos = 0

    def next_record(self) -> Record | None:
        """Return the record at the cursor and advance, or None at the end."""
        if self._pos >= len(self.records):
            return None
        record = Record(self, self._pos)
        self._pos += 1
        return record

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "fields": list(self.fields),
            "well_known": dict(self.well_known),
            "records": [list(r) for r in self.records],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DataTable:
        table = cls()
        table.add_fields(*data.get("fields", []))
        table.add_well_known(data.get("well_known", {}))
        for values in data.get("records", []):
            table.add_record(*values)
        return table

    def __len__(self) -> int:
        return len(self.records)

    def __repr__(self) -> str:
        return (
            f"DataTable(fields={self.fields!r}, "
            f"records={len(self.records)})"
        )


class Record:
    """Read/write view of one DataTable record.

    Values can be reached by position (``by_index``), by exact field name
    (``by_name``), or by field-or-role through ``get``/``set``, item access
    and attribute access::

        record.by_index(0)
        record.by_name("headline")
        record["title"]
        record.title = "New title"

    An unknown name raises AccessorError rather than returning a default.

    Attribute access is shadowed by the view's own members. A field named
    ``table``, ``num``, ``values``, ``get``, ``set``, ``as_dict``,
    ``by_index`` or ``by_name`` is reached with ``record["values"]``.
    """

    __slots__ = ("_table", "_num")

    def __init__(self, table: DataTable, num: int) -> None:
        object.__setattr__(self, "_table", table)
        object.__setattr__(self, "_num", num)

    @property
    def table(self) -> DataTable:
        return self._table

    @property
    def num(self) -> int:
        return self._num

    @property
    def values(self) -> list[Any]:
        return self._table.records[self._num]

    def by_index(self, index: int) -> Any:
        return self.values[index]

    def by_name(self, name: str) -> Any:
        return self.values[self._table.field_index(name)]

    def get(self, symbol: str) -> Any:
        return self.values[self._table.resolve(symbol)]

    def set(self, symbol: str, value: Any) -> Any:
        """Store *value* under *symbol* and return the previous value."""
        index = self._table.resolve(symbol)
        previous = self.values[index]
        self.values[index] = value
        return previous

    def as_dict(self) -> dict[str, Any]:
        return dict(zip(self._table.fields, self.values))

    def __getitem__(self, key: int | str) -> Any:
        if isinstance(key, int):
            return self.by_index(key)
        return self.get(key)

    def __setitem__(self, key: int | str, value: Any) -> None:
        if isinstance(key, int):
            self.values[key] = value
        else:
            self.set(key, value)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return self.get(name)

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_"):
            object.__setattr__(self, name, value)
        else:
            self.set(name, value)

    def __repr__(self) -> str:
        return f"Record({self._num}, {self.as_dict()!r})"


@dataclass
class Savable:
    """Descriptor for one file the save engine will install.

    Exactly one content source is used: ``content`` if present, otherwise
    ``source_url`` is fetched at save time. A descriptor may also carry only
    an ``error`` (a handler reporting its own failure) or only ``ok_empty``
    (a handler that wrote its output itself).

    Attributes:
        file: Target file name, relative to the save directory.
        content: Text (written as UTF-8) or raw bytes.
        source_url: URL to retrieve when content is absent.
        group: Group name or numeric id to apply to the file.
        mode: Permission bits, as an int or an octal string like "644".
        indexed: Record source_url in the duplicate index; skip if seen.
        error: Failure reason, set by the handler or the save engine.
        ok_empty: Marks the batch as already satisfied.
    """

    file: str | None = None
    content: str | bytes | None = None
    source_url: str | None = None
    group: str | int | None = None
    mode: str | int | None = None
    indexed: bool = False
    error: str | None = None
    ok_empty: bool = False


# Output capability key -> parameter tuples, each passed verbatim to the
# resolved handler.
ActionSpec: TypeAlias = dict[str, list[tuple[Any, ...]]]


@dataclass
class LegacyResult:
    """Fetch result of a plugin that already queued or wrote its own files."""


@dataclass
class StructuredResult:
    """Fetch result carrying a table and the output actions to run on it."""

    table: DataTable
    actions: ActionSpec = field(default_factory=dict)


FetchResult: TypeAlias = LegacyResult | StructuredResult
