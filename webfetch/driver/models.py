"""SQLModel table definitions for the duplicate-URL index.

Tables:
- url_index: URL -> "timestamp#filename" for every direct-fetch item
  that has been saved (or attempted) from this directory.
"""

from __future__ import annotations

from sqlmodel import Field, SQLModel


class UrlIndexEntry(SQLModel, table=True):  # type: ignore[call-arg]
    """One indexed URL and the value recorded for it."""

    __tablename__ = "url_index"

    url: str = Field(primary_key=True)
    value: str
