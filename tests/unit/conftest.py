"""Unit test configuration: every test collected below ``tests/unit`` is marked ``unit``."""

import pytest


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests against a temporary SQLite repository")


def pytest_collection_modifyitems(config, items):
    """Mark the tests of the unit directory so ``-m unit`` selects them."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
