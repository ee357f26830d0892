"""
Tests for amzsync.exceptions module.
"""
import pytest

from amzsync.exceptions import (
    SyncError,
    CredentialError,
    SPAPIConnectionError,
    SPAPIError,
    RateLimitedError,
    RateLimitExhaustedError,
    ReportFailureError,
    ReportTimeoutError,
    DataError,
    AlreadyRunningError,
    ValidationError,
    QueryTimeoutError,
)


class TestSyncError:
    """Tests for base SyncError exception."""

    def test_message_only(self):
        """Error with message only."""
        error = SyncError("Something went wrong")
        assert str(error) == "Something went wrong"
        assert error.message == "Something went wrong"
        assert error.details is None

    def test_message_with_details(self):
        """Error with message and details."""
        error = SyncError("Failed to fetch", "Connection timeout")
        assert str(error) == "Failed to fetch: Connection timeout"
        assert error.details == "Connection timeout"


class TestSPAPIConnectionError:
    """Tests for SPAPIConnectionError exception."""

    def test_inheritance(self):
        """Should inherit from SyncError."""
        assert isinstance(SPAPIConnectionError("Connection failed"), SyncError)

    def test_retry_after(self):
        error = SPAPIConnectionError("Timeout", retry_after=5)
        assert error.retry_after == 5

    def test_no_retry_after(self):
        assert SPAPIConnectionError("Failed").retry_after is None


class TestSPAPIError:
    """Tests for SPAPIError and RateLimitedError."""

    def test_status_code(self):
        error = SPAPIError("API returned 400", status_code=400)
        assert error.status_code == 400
        assert error.error_code is None

    def test_rate_limited_is_api_error(self):
        """429 is an API error with a fixed status code."""
        error = RateLimitedError("Too many requests", retry_after=30)
        assert isinstance(error, SPAPIError)
        assert error.status_code == 429
        assert error.error_code == "QuotaExceeded"
        assert error.retry_after == 30


class TestReportErrors:
    """Tests for report lifecycle errors."""

    def test_exhausted_message(self):
        error = RateLimitExhaustedError(5)
        assert error.attempts == 5
        assert "5" in str(error)
        assert isinstance(error, SyncError)

    def test_failure_carries_report_id(self):
        error = ReportFailureError("Report FATAL", report_id="R-1")
        assert error.report_id == "R-1"
        assert str(error) == "Report FATAL"

    def test_timeout_is_failure(self):
        """A timed out report is a kind of report failure."""
        error = ReportTimeoutError("R-2", 900)
        assert isinstance(error, ReportFailureError)
        assert error.report_id == "R-2"
        assert error.waited_seconds == 900
        assert str(error) == "Report timed out: not DONE after 900s"


class TestDataError:

    def test_field(self):
        error = DataError("Unknown SKU", field="sku")
        assert error.field == "sku"
        assert isinstance(error, SyncError)


class TestControlErrors:
    """Errors raised by the run controller; not part of the SyncError tree."""

    def test_already_running_default_message(self):
        error = AlreadyRunningError()
        assert error.message == "Sync already running"
        assert not isinstance(error, SyncError)

    def test_validation_error_with_value(self):
        error = ValidationError("size", "must be a positive number of days", 0)
        assert error.field == "size"
        assert str(error) == "size: must be a positive number of days (got: 0)"

    def test_validation_error_without_value(self):
        error = ValidationError("total", "is required")
        assert str(error) == "total: is required"


class TestQueryTimeoutError:

    def test_truncates_long_query(self):
        """Long queries are cut to 200 characters."""
        error = QueryTimeoutError("SELECT " + "x" * 500, 30)
        assert len(error.query) == 203
        assert error.query.endswith("...")
        assert "30s" in str(error)


class TestExceptionCatching:
    """Tests for catching exceptions by base class."""

    @pytest.mark.parametrize("error", [
        CredentialError("No Amazon credentials"),
        SPAPIConnectionError("reset"),
        RateLimitedError("429"),
        RateLimitExhaustedError(5),
        ReportTimeoutError("R-3", 10),
        DataError("bad row"),
    ])
    def test_catch_all_sync_errors(self, error):
        """All batch and run errors should be catchable as SyncError."""
        with pytest.raises(SyncError):
            raise error
