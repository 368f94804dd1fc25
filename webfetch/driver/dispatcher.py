"""Action dispatch from input plugins to output handlers.

An input plugin declares what it wants done with its table as an
ActionSpec: output capability key -> list of parameter tuples. For each
key the dispatcher finds the first ``output:<key>`` provider exposing
``fmt_handler_<key>`` and calls it once per tuple.

Problems with a single action are warnings, not run-aborting errors:
an unknown key or a malformed entry is skipped and the rest of the batch
still runs.
"""

from __future__ import annotations

import logging

from webfetch.common.registry import (
    HANDLER_PREFIX,
    CapabilityRegistry,
    get_registry,
)
from webfetch.data_types import FetchResult, LegacyResult, StructuredResult
from webfetch.plugin import OutputContext

logger = logging.getLogger(__name__)


class ActionDispatcher:
    """Resolves declared actions against the registry and runs them."""

    def __init__(self, registry: CapabilityRegistry | None = None) -> None:
        self.registry = registry if registry is not None else get_registry()

    def do_actions(self, ctx: OutputContext, result: FetchResult) -> int:
        """Run every action in *result* against *ctx*.

        Args:
            ctx: Context handed to each handler; handlers append Savables
                to ``ctx.savables``.
            result: The input plugin's fetch result. A LegacyResult means
                the plugin already queued its own files and there is nothing
                to dispatch.

        Returns:
            The number of handler invocations made.
        """
        match result:
            case LegacyResult():
                logger.debug("legacy result - no actions to dispatch")
                return 0
            case StructuredResult(table=None) | StructuredResult(actions=None):
                return 0
            case StructuredResult():
                pass

        calls = 0
        for key, entries in result.actions.items():
            found = self.registry.handler_for(key)
            if found is None:
                logger.warning(
                    f'action "{key}" specified but {HANDLER_PREFIX}{key}() '
                    "is not defined by any registered output provider "
                    "- ignored"
                )
                continue

            provider_id, handler = found
            logger.debug(f"action {key} -> {provider_id}")
            for entry in entries:
                if not isinstance(entry, (tuple, list)):
                    logger.warning(
                        f'entry in action spec "{key}" expected to be a '
                        f"tuple, found {type(entry).__name__} instead "
                        "- ignored"
                    )
                    continue
                handler(ctx, *entry)
                calls += 1
        return calls
