"""Tests for the custom exception hierarchy."""

import pytest

from emuident.common.exceptions import (
    CatalogLoadError,
    CatalogParseError,
    ConfigurationError,
    DatabaseError,
    DatabaseInitializationError,
    DirectoryReadError,
    EmuIdentError,
    EntryNotFoundError,
    ExtractionError,
    FileNotFoundError,
    FileOperationError,
    FileReadError,
    HashError,
    InitializationError,
    ParseError,
    SourceError,
    SourceRateLimitedError,
    SourceTimeoutError,
    SourceUnavailableError,
    WorkflowCancelledError,
    format_exception_chain,
)


class TestBaseException:
    def test_basic_creation(self):
        exc = EmuIdentError("test error")
        assert str(exc) == "test error"
        assert exc.message == "test error"
        assert exc.details == {}

    def test_with_details(self):
        exc = EmuIdentError("test error", {"key": "value", "count": 42})
        assert "key=value" in str(exc)
        assert "count=42" in str(exc)

    def test_inheritance(self):
        exc = ConfigurationError("config error")
        assert isinstance(exc, EmuIdentError)
        assert isinstance(exc, Exception)


class TestFileOperationErrors:
    def test_file_operation_error(self):
        exc = FileOperationError("/path/to/file", "failed to process")
        assert exc.path == "/path/to/file"
        assert "failed to process" in str(exc)
        assert "path=/path/to/file" in str(exc)

    def test_file_not_found(self):
        exc = FileNotFoundError("/missing/file.bin")
        assert exc.path == "/missing/file.bin"
        assert "not found" in str(exc).lower()

    def test_directory_read_error_is_read_error(self):
        exc = DirectoryReadError("/roms", "permission denied")
        assert isinstance(exc, FileReadError)
        assert str(exc) == "Could not read directory /roms: permission denied"
        assert exc.details["reason"] == "permission denied"

    def test_message_values_not_repeated(self):
        assert str(HashError("/x.bin", "EIO")) == "Hashing failed for /x.bin: EIO"
        assert str(SourceTimeoutError("tgdb", 5.0)) == "Source tgdb timed out after 5.0s"
        assert str(SourceRateLimitedError("tgdb")) == "Source tgdb is rate limited"


class TestFatalErrors:
    @pytest.mark.parametrize(
        "exc",
        [
            DatabaseInitializationError("/tmp/x.db", "disk full"),
            CatalogLoadError("/dats/gb.dat", "unreadable"),
        ],
    )
    def test_fatal_errors_share_a_base(self, exc):
        assert isinstance(exc, InitializationError)

    def test_catalog_parse_error_line(self):
        exc = CatalogParseError("gb.dat", "mismatched tag", 42)
        assert isinstance(exc, ParseError)
        assert exc.line == 42
        assert "line 42" in str(exc)


class TestSourceErrors:
    def test_all_carry_source(self):
        for exc in (
            SourceUnavailableError("tgdb", "no key"),
            SourceRateLimitedError("tgdb", 30.0),
            SourceTimeoutError("tgdb", 5.0),
        ):
            assert isinstance(exc, SourceError)
            assert exc.source == "tgdb"

    def test_rate_limit_retry_after(self):
        assert SourceRateLimitedError("hasheous", 12.5).retry_after == 12.5


class TestMiscErrors:
    def test_entry_not_found(self):
        exc = EntryNotFoundError("7", "matches")
        assert isinstance(exc, DatabaseError)
        assert "7 in matches" in str(exc)

    def test_workflow_cancelled(self):
        assert "scan" in str(WorkflowCancelledError("scan"))
        assert str(WorkflowCancelledError()).startswith("Workflow cancelled")

    def test_hash_and_extraction(self):
        assert "/x.bin" in str(HashError("/x.bin", "EIO"))
        assert "a.gb" in str(ExtractionError("pack.zip", "a.gb", "crc error"))


class TestFormatExceptionChain:
    def test_chain(self):
        try:
            try:
                raise OSError("disk gone")
            except OSError as e:
                raise HashError("/x.bin", "read failed") from e
        except HashError as exc:
            text = format_exception_chain(exc)

        assert text.startswith("Hashing failed for /x.bin")
        assert text.endswith("OSError: disk gone")
        assert " -> " in text

    def test_with_traceback(self):
        try:
            raise EmuIdentError("boom")
        except EmuIdentError as exc:
            text = format_exception_chain(exc, include_traceback=True)
        assert "Traceback" in text
        assert "boom" in text
