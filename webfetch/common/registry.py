"""Capability registry and configuration store.

Plugins announce what they can do by registering a provider id against
one or more capability strings. A capability is either flat
(``"cmdline"``) or namespaced as ``group:topic`` (``"input:dump"``,
``"output:dump"``). The driver and the action dispatcher find each other's
plugins through these lookups at run time.

The registry also owns the key/value configuration store that plugins
populate while they register (for example the ``Options`` and ``Usage``
entries that extend the command line).

Registries are context scoped. ``get_registry()`` returns the registry for
the current context, and ``use_registry()`` installs a fresh one for the
duration of a block::

    with use_registry(CapabilityRegistry()) as registry:
        registry.register(MyOutput, "output:mine")
        ...
"""

from __future__ import annotations

import copy
import importlib
import logging
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

from webfetch.common.exceptions import (
    LoadFailure,
    MethodNotFoundError,
    NoHandlerError,
)

logger = logging.getLogger(__name__)

HANDLER_PREFIX = "fmt_handler_"

# One default provider per well-known topic. Not user-extensible: plugins
# add providers through register() instead.
DEFAULT_PROVIDERS: Mapping[str, Mapping[str, str]] = {
    "input": {
        "dump": "webfetch.plugins.dump:DumpInput",
        "rss": "webfetch_rss.input:RSSInput",
        "atom": "webfetch_atom.input:AtomInput",
        "sitenews": "webfetch_sitenews.input:SiteNewsInput",
    },
    "output": {
        "dump": "webfetch.plugins.dump:DumpOutput",
        "rss": "webfetch_rss.output:RSSOutput",
        "tt": "webfetch_tt.output:TemplateOutput",
    },
}


def provider_id_for(provider: type | str) -> str:
    """Return the ``module.path:ClassName`` id for a provider."""
    if isinstance(provider, str):
        return provider
    return f"{provider.__module__}:{provider.__qualname__}"


def split_capability(capability: str) -> tuple[str | None, str]:
    """Split ``group:topic`` into its parts; flat capabilities have no group."""
    if ":" in capability:
        group, topic = capability.split(":", 1)
        return group, topic
    return None, capability


class ConfigStore:
    """Process-wide key/value configuration populated by plugins."""

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def has(self, key: str) -> bool:
        return key in self._values

    __contains__ = has

    def delete(self, key: str) -> None:
        self._values.pop(key, None)

    def import_config(self, mapping: Mapping[str, Any]) -> None:
        """Copy every key/value pair of *mapping* into the store."""
        for key, value in mapping.items():
            self._values[key] = value

    def keys(self) -> list[str]:
        return list(self._values)


class CapabilityRegistry:
    """Map from capability keys to ordered provider ids.

    Namespaced capabilities live in ``_grouped[group][topic]``; flat ones in
    ``_flat[capability]``. Lists keep registration order and never hold the
    same provider twice.

    Output handlers are resolved once, when a provider class registers an
    ``output:<key>`` capability, and kept in ``_handlers``. A provider
    without the matching ``fmt_handler_<key>`` function is recorded with
    ``None`` so the dispatcher sees an explicit "not found".
    """

    def __init__(
        self, defaults: Mapping[str, Mapping[str, str]] = DEFAULT_PROVIDERS
    ) -> None:
        self.config = ConfigStore()
        self._defaults = defaults
        self._grouped: dict[str, dict[str, list[str]]] = {}
        self._flat: dict[str, list[str]] = {}
        self._classes: dict[str, type] = {}
        self._handlers: dict[tuple[str, str], Callable[..., Any] | None] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        provider: type | str,
        *capabilities: str | Mapping[str, Any],
    ) -> str:
        """Register *provider* for each capability string.

        Args:
            provider: Provider class, or a ``module.path:ClassName`` id to
                be imported on first use.
            *capabilities: Capability strings. If the first one is a
                mapping it is merged into the configuration store before
                the strings are processed.

        Returns:
            The provider id.
        """
        pid = provider_id_for(provider)
        caps = list(capabilities)
        if caps and isinstance(caps[0], Mapping):
            self.config.import_config(caps.pop(0))

        if not isinstance(provider, str):
            self._classes[pid] = provider

        for capability in caps:
            if not isinstance(capability, str):
                raise TypeError(
                    f"capability for {pid} must be a string, got "
                    f"{type(capability).__name__}"
                )
            group, topic = split_capability(capability)
            if group is None:
                providers = self._flat.setdefault(topic, [])
            else:
                providers = self._grouped.setdefault(group, {}).setdefault(
                    topic, []
                )
            if pid not in providers:
                providers.append(pid)
            if group == "output" and not isinstance(provider, str):
                self._handlers[(topic, pid)] = getattr(
                    provider, HANDLER_PREFIX + topic, None
                )
            logger.debug(f"registered {pid} for {capability}")
        return pid

    def provides(
        self, *capabilities: str | Mapping[str, Any]
    ) -> Callable[[type], type]:
        """Class decorator form of register()."""

        def decorator(cls: type) -> type:
            self.register(cls, *capabilities)
            return cls

        return decorator

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def select(self, capability: str, optional: bool = False) -> list[str]:
        """Return the provider ids registered for *capability*.

        A namespaced capability with no registered providers falls back to
        the built-in default table; a flat capability has no fallback.

        Raises:
            NoHandlerError: If nothing was found and *optional* is false.
        """
        group, topic = split_capability(capability)
        if group is not None:
            handlers = list(self._grouped.get(group, {}).get(topic, []))
            if not handlers and topic in self._defaults.get(group, {}):
                handlers = [self._defaults[group][topic]]
        else:
            handlers = list(self._flat.get(topic, []))

        if not handlers and not optional:
            raise NoHandlerError(capability)
        logger.debug(f"select({capability}): {' '.join(handlers)}")
        return handlers

    def singular(self, group: str) -> str | None:
        """Return the only topic in *group*, if exactly one provider exists.

        The count is the total over all topics of the group, so two
        providers spread across two topics still yield None.
        """
        count = 0
        last_topic = None
        for topic, providers in self._grouped.get(group, {}).items():
            count += len(providers)
            if count > 1:
                return None
            if len(providers) == 1:
                last_topic = topic
        return last_topic if count == 1 else None

    def topics(self, group: str) -> list[str]:
        """Return the topics that have registered providers in *group*."""
        return list(self._grouped.get(group, {}))

    def handler_for(
        self, key: str
    ) -> tuple[str, Callable[..., Any]] | None:
        """Find the first provider of ``output:<key>`` that has a handler.

        Returns:
            ``(provider_id, handler)`` or None when no provider exposes
            ``fmt_handler_<key>``.
        """
        for pid in self.select(f"output:{key}", optional=True):
            if (key, pid) in self._handlers:
                handler = self._handlers[(key, pid)]
            else:
                # Default-table entries are resolved on first use.
                try:
                    cls = self.load_provider(pid)
                except LoadFailure as e:
                    logger.warning(str(e))
                    continue
                handler = getattr(cls, HANDLER_PREFIX + key, None)
                self._handlers[(key, pid)] = handler
            if handler is not None:
                return pid, handler
        return None

    def require_handler(self, key: str) -> tuple[str, Callable[..., Any]]:
        """Like handler_for() but raises instead of returning None.

        Raises:
            MethodNotFoundError: If no provider exposes the handler.
        """
        found = self.handler_for(key)
        if found is None:
            raise MethodNotFoundError(
                HANDLER_PREFIX + key,
                f"{HANDLER_PREFIX}{key} not defined by any output:{key} "
                "provider",
            )
        return found

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_provider(self, provider_id: str) -> type:
        """Return the provider class for *provider_id*, importing it if needed.

        Raises:
            LoadFailure: If the module cannot be imported or has no such
                class. Registrations made by a failed import are rolled back.
        """
        if provider_id in self._classes:
            return self._classes[provider_id]
        if ":" not in provider_id:
            raise LoadFailure(
                provider_id, "expected format 'module.path:ClassName'"
            )

        module_path, class_name = provider_id.rsplit(":", 1)
        try:
            with self.transaction():
                module = importlib.import_module(module_path)
        except Exception as e:
            raise LoadFailure(
                provider_id, f"{type(e).__name__}: {e}"
            ) from e

        obj: Any = module
        for part in class_name.split("."):
            obj = getattr(obj, part, None)
            if obj is None:
                raise LoadFailure(
                    provider_id,
                    f"module '{module_path}' has no class '{class_name}'",
                )
        self._classes[provider_id] = obj
        return obj

    @contextmanager
    def transaction(self) -> Iterator[CapabilityRegistry]:
        """Restore registry and configuration if the block raises."""
        saved = (
            copy.deepcopy(self._grouped),
            copy.deepcopy(self._flat),
            dict(self._classes),
            dict(self._handlers),
            dict(self.config._values),
        )
        try:
            yield self
        except BaseException:
            (
                self._grouped,
                self._flat,
                self._classes,
                self._handlers,
                self.config._values,
            ) = saved
            raise


_current_registry: ContextVar[CapabilityRegistry | None] = ContextVar(
    "webfetch_registry", default=None
)
_process_registry: CapabilityRegistry | None = None


def get_registry() -> CapabilityRegistry:
    """Return the registry for the current context."""
    global _process_registry
    registry = _current_registry.get()
    if registry is not None:
        return registry
    if _process_registry is None:
        _process_registry = CapabilityRegistry()
    return _process_registry


@contextmanager
def use_registry(
    registry: CapabilityRegistry | None = None,
) -> Iterator[CapabilityRegistry]:
    """Install *registry* (or a new one) as current for the block."""
    registry = registry if registry is not None else CapabilityRegistry()
    token = _current_registry.set(registry)
    try:
        yield registry
    finally:
        _current_registry.reset(token)


def register(
    provider: type | str, *capabilities: str | Mapping[str, Any]
) -> str:
    """Register with the current registry. See CapabilityRegistry.register."""
    return get_registry().register(provider, *capabilities)


def provides(
    *capabilities: str | Mapping[str, Any],
) -> Callable[[type], type]:
    """Class decorator registering with the registry current at import time."""

    def decorator(cls: type) -> type:
        get_registry().register(cls, *capabilities)
        return cls

    return decorator
