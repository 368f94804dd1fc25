"""webfetch CLI: fetch from an input format and save to a directory.

Usage:
    webfetch --dir /var/www/news --source feed.json --source_format dump
    webfetch --dir out --source feed.json --dest feed.dump.json
    webfetch --dir out --source https://example.org/feed.json --fetch_urls

Plugins may add their own flags. A plugin that registers the flat
``cmdline`` capability can store Getopt-style option specs under
``Options`` and a usage fragment under ``Usage`` in the configuration
store::

    register(
        HeadlinesInput,
        {"Options": ["limit=i", "title:s", "verbose_items"],
         "Usage": "[--limit N] [--title [TEXT]] [--verbose_items]"},
        "cmdline",
        "input:headlines",
    )

Spec forms: ``name=s`` (string value), ``name:s`` (optional string value),
``name=i`` / ``name=f`` (int / float value), ``name`` (flag). ``|``
separates aliases and a trailing ``@`` makes the option repeatable.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from importlib.metadata import entry_points
from typing import Any

import click

import webfetch
from webfetch.common.exceptions import UsageError, WebFetchException
from webfetch.common.registry import CapabilityRegistry, get_registry
from webfetch.driver.sync_driver import FetchDriver

logger = logging.getLogger(__name__)

PLUGIN_GROUP = "webfetch.plugins"

_OPTION_SPEC = re.compile(
    r"^(?P<names>[A-Za-z]\w*(?:\|\w+)*)"
    r"(?:(?P<sep>[=:])(?P<type>[sif]))?"
    r"(?P<multiple>@)?$"
)

_SPEC_TYPES: dict[str, Any] = {"s": str, "i": int, "f": float}


def option_from_spec(spec: str) -> click.Option:
    """Build a click option from a Getopt-style spec string.

    Raises:
        UsageError: If *spec* is not in a supported form.
    """
    match = _OPTION_SPEC.match(spec.strip())
    if match is None:
        raise UsageError(f"unsupported option spec {spec!r}")

    names = match["names"].split("|")
    decls = [f"--{names[0]}", *(f"--{alias}" for alias in names[1:]), names[0]]
    kwargs: dict[str, Any] = {"default": None}
    if match["sep"] is None:
        kwargs["is_flag"] = True
        kwargs["default"] = False
    else:
        kwargs["type"] = _SPEC_TYPES[match["type"]]
        if match["sep"] == ":":
            # Value may be omitted: "--name" alone yields "".
            kwargs["is_flag"] = False
            kwargs["flag_value"] = "" if match["type"] == "s" else 0
    if match["multiple"]:
        kwargs["multiple"] = True
        kwargs["default"] = ()
    return click.Option(decls, **kwargs)


def plugin_options(registry: CapabilityRegistry) -> list[click.Option]:
    """Return the extra options plugins contributed, if any."""
    if not registry.select("cmdline", optional=True):
        return []
    specs = registry.config.get("Options") or []
    if isinstance(specs, str):
        specs = [specs]
    options = []
    for spec in specs:
        try:
            options.append(option_from_spec(spec))
        except UsageError as e:
            logger.warning(f"{e.message} - ignored")
    return options


def _core_options() -> list[click.Option]:
    return [
        click.Option(
            ["--dir", "dir"],
            required=True,
            type=click.Path(file_okay=False),
            help="Directory to save results in.",
        ),
        click.Option(["--group"], help="Group to give saved files."),
        click.Option(
            ["--mode"], help="Octal permissions to give saved files."
        ),
        click.Option(
            ["--source"],
            multiple=True,
            help="Source location for the input plugin; repeatable.",
        ),
        click.Option(
            ["--source_format", "source_format"],
            help="Input format (default: the only one registered).",
        ),
        click.Option(["--dest"], help="Output file name."),
        click.Option(
            ["--dest_format", "dest_format"],
            help="Output format for --dest (default: the only one "
            "registered).",
        ),
        click.Option(
            ["--fetch_urls", "fetch_urls"],
            is_flag=True,
            help="Also save the content of every record URL.",
        ),
        click.Option(
            ["--quiet"], is_flag=True, help="Only report warnings and errors."
        ),
        click.Option(["--debug"], is_flag=True, help="Verbose logging."),
    ]


def configure_logging(debug: bool, quiet: bool) -> None:
    if debug:
        log_level = logging.DEBUG
    elif quiet:
        log_level = logging.WARNING
    else:
        log_level = logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("webfetch").setLevel(log_level)


def run_fetch(registry: CapabilityRegistry, options: dict[str, Any]) -> int:
    """Run the driver and translate framework errors into click errors.

    Raises:
        click.UsageError: For invalid invocations (exit status 2).
        click.ClickException: For any other failure (exit status 1).
    """
    options = {
        key: list(value) if isinstance(value, tuple) else value
        for key, value in options.items()
        if value is not None
    }
    try:
        return FetchDriver(options, registry=registry).run()
    except UsageError as e:
        raise click.UsageError(e.message) from e
    except WebFetchException as e:
        raise click.ClickException(str(e)) from e
    except Exception as e:
        logger.debug("unclassified failure", exc_info=True)
        raise click.ClickException(
            f"unknown exception of type {type(e).__name__}: {e}"
        ) from e


def build_cli(registry: CapabilityRegistry | None = None) -> click.Command:
    """Build the fetch command for *registry*.

    The command's options are the core options plus whatever the
    registry's ``cmdline`` providers declared.
    """
    registry = registry if registry is not None else get_registry()
    extra = plugin_options(registry)
    epilog = None
    if extra and registry.config.get("Usage"):
        epilog = f"Plugin options: {registry.config.get('Usage')}"

    def callback(**kwargs: Any) -> int:
        configure_logging(kwargs["debug"], kwargs["quiet"])
        return run_fetch(registry, kwargs)

    command = click.Command(
        "webfetch",
        callback=callback,
        params=[*_core_options(), *extra],
        help="Fetch content with an input plugin and save the output "
        "plugins' files into --dir.",
        epilog=epilog,
    )
    return click.version_option(
        webfetch.__version__, prog_name="webfetch"
    )(command)


def register_builtin_plugins(registry: CapabilityRegistry) -> None:
    from webfetch.plugins import dump

    dump.register_plugins(registry)


def load_plugins(
    registry: CapabilityRegistry, group: str = PLUGIN_GROUP
) -> list[str]:
    """Load the built-in plugins and every installed plugin entry point.

    An entry point may name a module (registering on import, through the
    current registry) or a callable, which is called with *registry*. A
    plugin that fails to load is skipped with a warning and its partial
    registrations are rolled back.

    Returns:
        The names of the entry points that loaded.
    """
    register_builtin_plugins(registry)
    loaded: list[str] = []
    for ep in _plugin_entry_points(group):
        try:
            with registry.transaction():
                obj = ep.load()
                if callable(obj) and not isinstance(obj, type):
                    obj(registry)
        except Exception as e:
            logger.warning(
                f"skip plugin {ep.name}: {type(e).__name__}: {e}"
            )
            continue
        logger.debug(f"loaded plugin {ep.name} from {ep.value}")
        loaded.append(ep.name)
    return loaded


def _plugin_entry_points(group: str) -> Iterable[Any]:
    return entry_points(group=group)


def fetch_main(
    args: list[str] | None = None,
    registry: CapabilityRegistry | None = None,
) -> None:
    """Run the command line against an already populated registry.

    Plugin modules call this from ``__main__`` after registering
    themselves. Exits the process with the command's status.
    """
    build_cli(registry).main(args=args, prog_name="webfetch")


def main() -> None:
    """Console script entry point."""
    registry = get_registry()
    load_plugins(registry)
    fetch_main(registry=registry)


if __name__ == "__main__":
    main()
