"""Shared fixtures for webfetch tests."""

from collections.abc import Generator

import pytest

from webfetch.common.registry import CapabilityRegistry, use_registry
from webfetch.data_types import DataTable
from tests.utils import DictFetcher


@pytest.fixture
def registry() -> Generator[CapabilityRegistry, None, None]:
    """A fresh registry installed as current for the test.

    Yields:
        An empty CapabilityRegistry with the built-in default table.
    """
    with use_registry(CapabilityRegistry()) as registry:
        yield registry


@pytest.fixture
def headlines() -> DataTable:
    """A small table whose roles are aliased to differently named fields.

    Returns:
        DataTable with fields posted/headline/link and two records.
    """
    table = DataTable()
    table.add_fields("posted", "headline", "link")
    table.add_well_known(date="posted", title="headline", url="link")
    table.add_record("2024-05-01", "First", "https://example.org/a/one.html")
    table.add_record("2024-05-02", "Second", "https://example.org/b/two.html?x=1")
    return table


@pytest.fixture
def fetcher() -> DictFetcher:
    """A retrieval capability serving canned bodies.

    Returns:
        DictFetcher that knows the URLs of the ``headlines`` table.
    """
    return DictFetcher(
        {
            "https://example.org/a/one.html": b"<p>one</p>",
            "https://example.org/b/two.html?x=1": b"<p>two</p>",
        }
    )
