"""
Tests for the error_handling module.

This module tests:
- Exception hierarchy and context logging
- The with_error_handling decorator
- file_operation conversion of OSError
- The diagnostic hook used for unreportable failures
"""

import errno
import logging
from pathlib import Path

import pytest

from filebacked.error_handling import (
    DecodeError,
    EncodeError,
    NilValueError,
    PersistenceConfigurationError,
    PersistenceError,
    PersistenceIOError,
    file_operation,
    get_diagnostic_hook,
    report_unhandled,
    set_diagnostic_hook,
    with_error_handling,
)


class TestErrorHierarchy:
    def test_base_initialization(self):
        error = PersistenceError("Test message")
        assert str(error) == "Test message"
        assert error.context == {}

        context = {"key1": "value1", "key2": 42}
        error = PersistenceError("Test message", context)
        assert error.context == context

    def test_logs_with_context(self, caplog):
        with caplog.at_level(logging.ERROR):
            PersistenceError("Test error", {"operation": "test", "key": "k"})

        assert "Persistence error: Test error" in caplog.text
        assert "operation=test" in caplog.text
        assert "key=k" in caplog.text

    def test_specific_types(self):
        for error_type in (
            EncodeError,
            DecodeError,
            NilValueError,
            PersistenceIOError,
            PersistenceConfigurationError,
        ):
            error = error_type("Test message", {"type": error_type.__name__})
            assert isinstance(error, PersistenceError)
            assert str(error) == "Test message"
            assert error.context["type"] == error_type.__name__

    def test_nil_value_is_decode_error(self):
        assert isinstance(NilValueError("nil"), DecodeError)

    def test_io_error_is_os_error(self):
        error = PersistenceIOError("disk full")
        assert isinstance(error, OSError)
        assert str(error) == "disk full"

    def test_configuration_error_is_value_error(self):
        assert isinstance(PersistenceConfigurationError("bad"), ValueError)


class TestWithErrorHandling:
    def test_reraises_persistence_errors(self):
        @with_error_handling(EncodeError)
        def failing():
            raise DecodeError("original")

        with pytest.raises(DecodeError, match="original"):
            failing()

    def test_converts_other_exceptions(self):
        @with_error_handling(EncodeError, {"serializer": "test"})
        def failing():
            raise ValueError("bad value")

        with pytest.raises(EncodeError) as exc_info:
            failing()

        error = exc_info.value
        assert "Error in failing: bad value" in str(error)
        assert error.context["function"] == "failing"
        assert error.context["original_error_type"] == "ValueError"
        assert error.context["serializer"] == "test"
        assert isinstance(error.__cause__, ValueError)

    def test_passes_return_value(self):
        @with_error_handling()
        def ok(x):
            return x * 2

        assert ok(21) == 42

    def test_preserves_metadata(self):
        @with_error_handling()
        def documented():
            """Docstring."""

        assert documented.__name__ == "documented"
        assert documented.__doc__ == "Docstring."


class TestFileOperation:
    def test_converts_os_error(self, tmp_path):
        with pytest.raises(PersistenceIOError) as exc_info:
            with file_operation("read", tmp_path / "missing"):
                (tmp_path / "missing").read_bytes()

        error = exc_info.value
        assert error.context["operation"] == "read"
        assert error.context["errno"] == errno.ENOENT
        assert isinstance(error.__cause__, FileNotFoundError)

    def test_converts_permission_error(self):
        with pytest.raises(PersistenceIOError, match="Permission denied for write"):
            with file_operation("write", Path("/x")):
                raise PermissionError("nope")

    def test_leaves_other_exceptions(self):
        with pytest.raises(KeyError):
            with file_operation("read", "/x"):
                raise KeyError("not an OSError")

    def test_passes_persistence_errors(self):
        with pytest.raises(DecodeError):
            with file_operation("read", "/x"):
                raise DecodeError("inner")

    def test_logs_completion(self, tmp_path, caplog):
        with caplog.at_level(logging.DEBUG, logger="filebacked.error_handling"):
            with file_operation("list", tmp_path):
                pass
        assert "list completed" in caplog.text


class TestDiagnosticHook:
    def test_set_returns_previous(self):
        def first(error, context):
            pass

        def second(error, context):
            pass

        assert set_diagnostic_hook(first) is None
        assert set_diagnostic_hook(second) is first
        assert get_diagnostic_hook() is second
        assert set_diagnostic_hook(None) is second

    def test_report_logs_and_calls_hook(self, caplog):
        received = []
        set_diagnostic_hook(lambda error, context: received.append((error, context)))
        error = RuntimeError("deferred failure")

        with caplog.at_level(logging.CRITICAL):
            report_unhandled(error, {"key": "k"})

        assert received == [(error, {"key": "k"})]
        assert "Unhandled persistence failure: RuntimeError: deferred failure" in caplog.text

    def test_report_without_hook(self, caplog):
        with caplog.at_level(logging.CRITICAL):
            report_unhandled(RuntimeError("no hook"))
        assert "no hook" in caplog.text

    def test_failing_hook_is_contained(self, caplog):
        def broken(error, context):
            raise RuntimeError("hook exploded")

        set_diagnostic_hook(broken)
        with caplog.at_level(logging.WARNING):
            report_unhandled(ValueError("original"))
        assert "hook exploded" in caplog.text

    def test_custom_level(self, caplog):
        with caplog.at_level(logging.ERROR):
            report_unhandled(ValueError("lossy read"), level=logging.ERROR)
        records = [r for r in caplog.records if "lossy read" in r.getMessage()]
        assert records and records[0].levelno == logging.ERROR
