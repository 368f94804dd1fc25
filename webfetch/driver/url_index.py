"""Persistent URL index for duplicate suppression.

Direct-fetch items are saved at most once per URL: the first time a URL
is seen its mapping is recorded, and every later save of the same URL
is treated as already complete. There is no freshness check.

The index is a SQLite file in the save directory. Several scheduled runs
may race on the same directory, so every operation opens the database,
does its work in one transaction and disposes the engine before
returning. The index is never held open across a network fetch or a
file write.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any

import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.pool import NullPool
from sqlalchemy.schema import CreateTable
from sqlmodel import Session, select

from webfetch.driver.models import UrlIndexEntry

logger = logging.getLogger(__name__)

INDEX_FILENAME = "id_index.db"

# Seconds SQLite waits on a lock held by another process.
LOCK_TIMEOUT = 30.0


def format_value(timestamp: int, filename: str) -> str:
    return f"{timestamp}#{filename}"


def parse_value(value: str) -> tuple[int, str]:
    timestamp, _, filename = value.partition("#")
    return int(timestamp), filename


class UrlIndex:
    """Key/value store of URL -> ``"timestamp#filename"``.

    Example::

        index = UrlIndex(Path("/var/www/news"))
        if index.check_and_record(url, "story.html"):
            ...  # first time: go fetch it
    """

    def __init__(self, directory: Path, filename: str = INDEX_FILENAME):
        self.path = Path(directory) / filename

    def _create_engine(self) -> sa.Engine:
        engine = sa.create_engine(
            f"sqlite:///{self.path}",
            connect_args={"timeout": LOCK_TIMEOUT},
            poolclass=NullPool,
        )

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_conn: Any, connection_record: Any) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        # Concurrent first runs may all try to create the table.
        with engine.begin() as conn:
            conn.execute(
                CreateTable(UrlIndexEntry.__table__, if_not_exists=True)
            )
        return engine

    def check_and_record(
        self, url: str, filename: str, now: int | None = None
    ) -> bool:
        """Record *url* unless it is already indexed.

        Returns:
            True if the URL was new and has now been recorded, False if it
            was already present (including when a concurrent run recorded
            it first).
        """
        timestamp = int(time.time()) if now is None else now
        stmt = (
            sqlite_insert(UrlIndexEntry.__table__)
            .values(url=url, value=format_value(timestamp, filename))
            .on_conflict_do_nothing(index_elements=["url"])
        )
        engine = self._create_engine()
        try:
            # A single INSERT takes the write lock directly, so racing runs
            # wait on the lock timeout instead of failing on a stale read.
            with engine.begin() as conn:
                recorded = conn.execute(stmt).rowcount == 1
            if not recorded:
                logger.debug(f"{url} already in index")
            return recorded
        finally:
            engine.dispose()

    def lookup(self, url: str) -> tuple[int, str] | None:
        """Return ``(timestamp, filename)`` recorded for *url*, if any."""
        if not self.path.exists():
            return None
        engine = self._create_engine()
        try:
            with Session(engine) as session:
                entry = session.get(UrlIndexEntry, url)
                return parse_value(entry.value) if entry else None
        finally:
            engine.dispose()

    def entries(self) -> dict[str, str]:
        """Return every URL and its raw value."""
        if not self.path.exists():
            return {}
        engine = self._create_engine()
        try:
            with Session(engine) as session:
                rows = session.exec(select(UrlIndexEntry)).all()
                return {row.url: row.value for row in rows}
        finally:
            engine.dispose()
