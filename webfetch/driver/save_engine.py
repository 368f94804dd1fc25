"""Commit pending Savables to a directory.

Each artifact uses three names in the target directory:

- ``N<name>``: staging file, written first and invisible under the
  final name
- ``<name>``: the installed file
- ``O<name>``: backup holding the previous generation of ``<name>``

Per item, the engine runs the steps below and stops at the first failing
one, recording the reason in the Savable's ``error`` field. It then moves
on to the next item.

    Pending -> Precheck -> IndexChecked -> ContentResolved -> Written
            -> BackedUp -> Installed

The rename from ``N<name>`` to ``<name>`` is the only step that makes new
content visible. A crash before it leaves the prior content intact and
at worst a stray staging file, which the next attempt removes.

Failures aggregate: after every item has been processed, save() raises a
single SaveError naming the failed items. Items that committed stay
committed.
"""

from __future__ import annotations

import grp
import logging
import os
from collections.abc import Callable
from enum import Enum
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from webfetch.common.exceptions import (
    NetworkGetError,
    NoSaveError,
    SaveError,
)
from webfetch.data_types import DataTable, Savable
from webfetch.driver.url_index import UrlIndex
from webfetch.plugin import filename_from_url

logger = logging.getLogger(__name__)

STAGING_PREFIX = "N"
BACKUP_PREFIX = "O"


class SaveState(Enum):
    """Progress of one Savable through the commit steps."""

    PENDING = "pending"
    PRECHECK = "precheck"
    INDEX_CHECKED = "index_checked"
    CONTENT_RESOLVED = "content_resolved"
    WRITTEN = "written"
    BACKED_UP = "backed_up"
    COMMITTED = "committed"
    SKIPPED = "skipped"
    FAILED = "failed"


class _ItemFailed(Exception):
    """Internal: a step failed; the message becomes the Savable's error."""


class SaveEngine:
    """Installs Savables into a directory.

    Example::

        engine = SaveEngine(Path("/var/www/news"), fetch=fetcher.fetch)
        engine.save([Savable(file="news.html", content=html)])

    Args:
        directory: Target directory.
        fetch: Retrieval capability used for items that only carry a
            source URL. Without one, such items fail.
        fetch_urls: Before saving, mirror the URL of every table record
            to a local file in the same pass.
    """

    def __init__(
        self,
        directory: Path | str | None,
        fetch: Callable[[str], bytes] | None = None,
        fetch_urls: bool = False,
    ) -> None:
        self.directory = Path(directory) if directory is not None else None
        self.fetch = fetch
        self.fetch_urls = fetch_urls
        self.states: dict[int, SaveState] = {}

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def save(
        self,
        savables: list[Savable] | None,
        table: DataTable | None = None,
    ) -> list[Savable]:
        """Commit every Savable in *savables*.

        Args:
            savables: Pending list. Direct-fetch items for record URLs are
                appended to it when ``fetch_urls`` is set.
            table: Table whose records are mirrored by ``fetch_urls``.

        Returns:
            The Savables that were installed in this call.

        Raises:
            NoSaveError: If the directory or the savable list is missing.
            SaveError: If any item failed; raised after the whole batch.
        """
        logger.debug("entering save()")
        self._precheck(savables)
        assert savables is not None and self.directory is not None

        if self.fetch_urls and table is not None:
            self._add_record_urls(savables, table)

        committed: list[Savable] = []
        if any(s.ok_empty for s in savables):
            logger.debug("batch marked ok_empty - nothing to save")
        else:
            index = UrlIndex(self.directory)
            for savable in savables:
                if self.save_one(savable, index):
                    committed.append(savable)

        failures = [s for s in savables if s.error is not None]
        for savable in failures:
            logger.error(f"failed to save {savable.file}: {savable.error}")
        if failures:
            raise SaveError(str(self.directory), failures)
        return committed

    def _precheck(self, savables: list[Savable] | None) -> None:
        if self.directory is None:
            raise NoSaveError("directory path missing - required for save")
        if savables is None:
            raise NoSaveError("nothing to save")
        if not self.directory.is_dir():
            raise NoSaveError(
                f"cannot save - {self.directory} is not a directory"
            )

    def _add_record_urls(
        self, savables: list[Savable], table: DataTable
    ) -> None:
        if not table.has_symbol("url"):
            logger.warning("fetch_urls set but the table has no url field")
            return
        table.reset_pos()
        while (record := table.next_record()) is not None:
            url = record.get("url")
            if url:
                savables.append(
                    Savable(
                        file=filename_from_url(url),
                        source_url=url,
                        indexed=True,
                    )
                )

    # ------------------------------------------------------------------
    # Per item
    # ------------------------------------------------------------------

    def save_one(self, savable: Savable, index: UrlIndex) -> bool:
        """Run the commit steps for one item.

        Returns:
            True if the item was installed, False if it was skipped as a
            duplicate or failed (see its ``error`` field).
        """
        key = id(savable)
        self.states[key] = SaveState.PENDING
        if savable.error is not None:
            # Reported by its handler; nothing to write.
            self.states[key] = SaveState.FAILED
            return False

        logger.debug(f"saving {savable.file}")
        try:
            self.states[key] = SaveState.PRECHECK
            self._check_item(savable)

            if not self._check_index(savable, index):
                self.states[key] = SaveState.SKIPPED
                return False
            self.states[key] = SaveState.INDEX_CHECKED

            self._fill_from_url(savable)
            self.states[key] = SaveState.CONTENT_RESOLVED

            main, staging, backup = self.paths_for(savable)
            self._write_content(savable, staging)
            self.states[key] = SaveState.WRITTEN

            self._remove(backup)
            self._main_to_backup(main, backup)
            self.states[key] = SaveState.BACKED_UP

            self._apply_file_mode(savable, staging)
            self._install(staging, main)
        except _ItemFailed as e:
            savable.error = str(e)
            self.states[key] = SaveState.FAILED
            return False

        self.states[key] = SaveState.COMMITTED
        return True

    def state_of(self, savable: Savable) -> SaveState | None:
        return self.states.get(id(savable))

    def paths_for(self, savable: Savable) -> tuple[Path, Path, Path]:
        """Return the (main, staging, backup) paths for *savable*."""
        assert self.directory is not None and savable.file is not None
        main = self.directory / savable.file
        staging = main.with_name(STAGING_PREFIX + main.name)
        backup = main.with_name(BACKUP_PREFIX + main.name)
        return main, staging, backup

    def _check_item(self, savable: Savable) -> None:
        if not savable.file:
            raise _ItemFailed("missing file name - skipped")
        if not self._inside_directory(savable.file):
            raise _ItemFailed("file name escapes target directory - skipped")
        if savable.content is None and savable.source_url is None:
            raise _ItemFailed("missing content or URL - skipped")

    def _inside_directory(self, filename: str) -> bool:
        """True if *filename* names a file strictly below the directory."""
        assert self.directory is not None
        if Path(filename).is_absolute():
            return False
        root = self.directory.resolve()
        target = (root / filename).resolve()
        return target != root and target.is_relative_to(root)

    def _check_index(self, savable: Savable, index: UrlIndex) -> bool:
        if savable.source_url is None or not savable.indexed:
            return True
        try:
            return index.check_and_record(savable.source_url, savable.file)
        except (SQLAlchemyError, OSError) as e:
            raise _ItemFailed(f"cannot update URL index {index.path}: {e}")

    def _fill_from_url(self, savable: Savable) -> None:
        if savable.content is not None:
            return
        assert savable.source_url is not None
        if self.fetch is None:
            raise _ItemFailed(
                f"no retrieval capability to get {savable.source_url}"
            )
        try:
            savable.content = self.fetch(savable.source_url)
        except NetworkGetError as e:
            raise _ItemFailed(e.message)
        except OSError as e:
            raise _ItemFailed(f"failed to get {savable.source_url}: {e}")

    def _write_content(self, savable: Savable, staging: Path) -> None:
        self._remove(staging)
        content = savable.content
        data = content.encode("utf-8") if isinstance(content, str) else content
        assert data is not None
        try:
            with staging.open("wb") as new_file:
                new_file.write(data)
        except OSError as e:
            raise _ItemFailed(f"failed to write to {staging}: {e}")

    def _main_to_backup(self, main: Path, backup: Path) -> None:
        if not main.is_file():
            return
        try:
            main.rename(backup)
        except OSError as e:
            raise _ItemFailed(f"cannot rename {main} to {backup}: {e}")

    def _apply_file_mode(self, savable: Savable, staging: Path) -> None:
        if savable.group is not None:
            gid = resolve_gid(savable.group)
            if gid is None:
                raise _ItemFailed(
                    f"cannot chgrp {staging}: {savable.group} does not exist"
                )
            try:
                os.chown(staging, -1, gid)
            except OSError as e:
                raise _ItemFailed(
                    f"cannot chgrp {staging} to {savable.group}: {e}"
                )
        if savable.mode is not None:
            try:
                mode = parse_mode(savable.mode)
                os.chmod(staging, mode)
            except (OSError, ValueError) as e:
                raise _ItemFailed(
                    f"cannot chmod {staging} to {savable.mode}: {e}"
                )

    def _install(self, staging: Path, main: Path) -> None:
        try:
            os.replace(staging, main)
        except OSError as e:
            raise _ItemFailed(f"cannot rename {staging} to {main}: {e}")

    def _remove(self, path: Path) -> None:
        if not path.is_file():
            return
        try:
            path.unlink()
        except OSError as e:
            raise _ItemFailed(f"cannot unlink {path}: {e}")


def resolve_gid(group: str | int) -> int | None:
    """Return the numeric id for a group name or id, or None if unknown."""
    if isinstance(group, int):
        return group
    if group.isdigit():
        return int(group)
    try:
        return grp.getgrnam(group).gr_gid
    except KeyError:
        return None


def parse_mode(mode: str | int) -> int:
    """Parse permission bits given as an int or an octal string."""
    if isinstance(mode, int):
        return mode
    return int(mode, 8)
