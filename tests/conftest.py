"""
Shared fixtures for filebacked tests.
"""

import pytest

from filebacked import Directory, LockRegistry
from filebacked.error_handling import set_diagnostic_hook


@pytest.fixture
def registry():
    """A private lock registry so tests never share locks by accident."""
    return LockRegistry()


@pytest.fixture
def directory(tmp_path, registry):
    """A Directory under pytest's temporary path. Not created on disk yet."""
    return Directory(tmp_path / "store", registry=registry)


@pytest.fixture
def diagnostics():
    """Collect failures sent to the diagnostic hook during a test."""
    reported = []
    previous = set_diagnostic_hook(lambda error, context: reported.append((error, context)))
    yield reported
    set_diagnostic_hook(previous)


@pytest.fixture(autouse=True)
def _reset_diagnostic_hook():
    """Make sure no test leaks a diagnostic hook into the next."""
    previous = set_diagnostic_hook(None)
    yield
    set_diagnostic_hook(previous)
