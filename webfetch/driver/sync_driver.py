"""Synchronous fetch driver.

One run goes through these steps:

1. Resolve ``source_format`` and ``dest_format``. Without explicit values,
   they default to the only registered input and output formats.
2. Try each ``input:<source_format>`` provider in registration order.
   Load it, instantiate it with the run options, and call fetch().
3. If ``dest`` was given, append ``(dest,)`` to the ``dest_format``
   action.
4. Dispatch the result's actions to output handlers. A provider that
   fails to load, or raises during fetch or dispatch, is logged and the
   next candidate is tried.
5. Hand the accumulated Savables to the SaveEngine.

Save failures are not retried with another provider: by then the input
has succeeded and some files may already be installed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import ValidationError

from webfetch.common.exceptions import (
    LoadFailure,
    NoHandlerError,
    NoRunError,
    RunFailure,
    UsageError,
)
from webfetch.common.param_models import RunOptions
from webfetch.common.registry import CapabilityRegistry, get_registry
from webfetch.common.request_manager import Fetcher, HttpFetcher
from webfetch.data_types import FetchResult, StructuredResult
from webfetch.driver.dispatcher import ActionDispatcher
from webfetch.driver.save_engine import SaveEngine
from webfetch.plugin import InputPlugin

logger = logging.getLogger(__name__)


class FetchDriver:
    """Runs one fetch: input provider, output actions, save.

    Example::

        driver = FetchDriver({"dir": "/var/www/news", "source": ["a.json"]})
        driver.run()
    """

    def __init__(
        self,
        options: Mapping[str, Any] | RunOptions,
        registry: CapabilityRegistry | None = None,
        fetcher: Fetcher | None = None,
        on_run_start: Callable[[str], None] | None = None,
        on_run_complete: Callable[[str, str, Exception | None], None]
        | None = None,
    ) -> None:
        """Initialize the driver.

        Args:
            options: Run options. Core keys are validated with RunOptions;
                any other keys are passed to the plugins untouched.
            registry: Registry to resolve providers in. Defaults to the
                current context's registry.
            fetcher: Retrieval capability. Defaults to an HttpFetcher
                created for the run and closed afterwards.
            on_run_start: Optional callback invoked before a candidate
                input provider runs. Receives the provider id.
            on_run_complete: Optional callback invoked after a candidate
                finishes. Receives the provider id, a status ("completed"
                or "error") and the error, if any.

        Raises:
            UsageError: If the options fail validation.
        """
        if isinstance(options, RunOptions):
            self.options = options
        else:
            try:
                self.options = RunOptions.model_validate(dict(options))
            except ValidationError as e:
                raise UsageError(f"invalid options: {e}") from e
        self.registry = registry if registry is not None else get_registry()
        self.fetcher = fetcher
        self.on_run_start = on_run_start
        self.on_run_complete = on_run_complete
        self.plugin: InputPlugin | None = None
        self.result: FetchResult | None = None

    def run(self) -> int:
        """Run the fetch and save its output.

        Returns:
            0 on success.

        Raises:
            NoHandlerError: If no input format was given or inferable.
            NoRunError: If every candidate input provider failed.
            SaveError: If any output file failed to save.
        """
        own_fetcher: HttpFetcher | None = None
        if self.fetcher is None:
            own_fetcher = HttpFetcher(quiet=self.options.quiet)
            self.fetcher = own_fetcher
        try:
            return self._run()
        finally:
            if own_fetcher is not None:
                own_fetcher.close()
                self.fetcher = None

    def _run(self) -> int:
        source_format = self.options.source_format or self.registry.singular(
            "input"
        )
        if source_format is None:
            raise NoHandlerError("input")
        dest_format = self.options.dest_format or self.registry.singular(
            "output"
        )

        options = self.options.as_plugin_dict()
        options["source_format"] = source_format
        options["dest_format"] = dest_format

        attempts: dict[str, Exception] = {}
        for provider_id in self.registry.select(f"input:{source_format}"):
            try:
                plugin, result = self._try_provider(provider_id, options)
            except (LoadFailure, RunFailure) as e:
                logger.error(str(e))
                attempts[provider_id] = e
                continue

            self.plugin = plugin
            self.result = result
            logger.debug(f"input handled by {provider_id}")
            return self._finish(plugin, result)

        raise NoRunError(source_format, attempts)

    def _try_provider(
        self, provider_id: str, options: dict[str, Any]
    ) -> tuple[InputPlugin, FetchResult]:
        cls = self.registry.load_provider(provider_id)

        if self.on_run_start:
            self.on_run_start(provider_id)
        status = "completed"
        error: Exception | None = None
        try:
            # A failing plugin must leave the registry as it found it.
            with self.registry.transaction():
                plugin = cls(options, fetcher=self.fetcher)
                result = plugin.fetch()
                self._add_dest_action(result, options.get("dest_format"))
                ActionDispatcher(self.registry).do_actions(
                    plugin.context(
                        result.table
                        if isinstance(result, StructuredResult)
                        else None
                    ),
                    result,
                )
        except Exception as e:
            status = "error"
            error = e
            raise RunFailure(provider_id, e) from e
        finally:
            if self.on_run_complete:
                self.on_run_complete(provider_id, status, error)
        return plugin, result

    def _add_dest_action(
        self, result: FetchResult, dest_format: str | None
    ) -> None:
        dest = self.options.dest
        if dest is None or not isinstance(result, StructuredResult):
            return
        if dest_format is None:
            logger.warning(
                f"--dest {dest} given but no output format could be "
                "determined - ignored"
            )
            return
        if result.actions is None:
            result.actions = {}
        result.actions.setdefault(dest_format, []).append((dest,))

    def _finish(self, plugin: InputPlugin, result: FetchResult) -> int:
        engine = SaveEngine(
            self.options.dir,
            fetch=self.fetcher,
            fetch_urls=self.options.fetch_urls,
        )
        table = result.table if isinstance(result, StructuredResult) else None
        committed = engine.save(plugin.savables, table)
        logger.info(f"saved {len(committed)} files to {self.options.dir}")
        return 0
