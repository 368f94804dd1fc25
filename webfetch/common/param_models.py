"""Run option models.

The driver accepts options as a plain mapping (from the command line or
an embedding caller) and validates the core keys with RunOptions. Keys
that are not core options are plugin options and pass through unchanged.

Example::

    from webfetch.common.param_models import RunOptions

    options = RunOptions.model_validate(
        {"dir": "/var/www/news", "source": ["feed.json"], "limit": 10}
    )
    options.dir            # Path("/var/www/news")
    options.model_extra    # {"limit": 10}
"""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


class RunOptions(BaseModel):
    """Core options for one fetch run.

    Attributes:
        dir: Directory the run saves into.
        group: Group name or id to give saved files.
        mode: Permission bits for saved files, as an octal string or int.
        source: Source locations, passed to the input plugin.
        source_format: Input capability topic. Defaults to the only
            registered input format when there is exactly one.
        dest: Output file name, appended as an action of ``dest_format``.
        dest_format: Output capability topic for ``dest``.
        fetch_urls: Mirror every record URL into ``dir``.
        quiet: Report retrieval failures at debug level only.
        debug: Verbose logging.
    """

    model_config = ConfigDict(extra="allow")

    dir: Path
    group: str | None = None
    mode: str | None = None
    source: list[str] = []
    source_format: str | None = None
    dest: str | None = None
    dest_format: str | None = None
    fetch_urls: bool = False
    quiet: bool = False
    debug: bool = False

    @field_validator("source", mode="before")
    @classmethod
    def _listify_source(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("mode", mode="before")
    @classmethod
    def _mode_as_octal(cls, value: Any) -> Any:
        if isinstance(value, int):
            return format(value, "o")
        if isinstance(value, str):
            int(value, 8)
        return value

    def plugin_options(self) -> dict[str, Any]:
        """Return the options that are not core run options."""
        return dict(self.model_extra or {})

    def as_plugin_dict(self) -> dict[str, Any]:
        """Return every option as the flat dict plugins receive."""
        options = self.model_dump()
        options["dir"] = str(self.dir)
        return options
