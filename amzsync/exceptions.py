"""
Custom exception hierarchy for the historical order sync.

Exception Hierarchy:
    SyncError (base)
    ├── CredentialError          - Missing credentials / token exchange failed (fatal)
    ├── SPAPIConnectionError     - Network/timeout issues talking to the provider
    ├── SPAPIError               - Provider returned a non-success status
    │   └── RateLimitedError     - HTTP 429
    ├── RateLimitExhaustedError  - 429 retry budget used up for one batch
    ├── ReportFailureError       - Report CANCELLED/FATAL or unusable
    │   └── ReportTimeoutError   - Report never reached DONE
    └── DataError                - A single row could not be used

    AlreadyRunningError          - start() while a run is active
    ValidationError              - Input validation failed
    QueryTimeoutError            - Store query exceeded its timeout
"""


class SyncError(Exception):
    """Base exception for all sync-related errors."""

    def __init__(self, message: str, details: str = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class CredentialError(SyncError):
    """
    Provider credentials are missing or the token exchange failed.

    Fatal to the whole run; never retried.
    """


class SPAPIConnectionError(SyncError):
    """
    Network-related errors (timeout, connection refused, etc.).

    Inside a batch these surface as a batch error; the run continues.
    """

    def __init__(self, message: str, details: str = None, retry_after: int = None):
        super().__init__(message, details)
        self.retry_after = retry_after


# Network failure while downloading or parsing a report document
TransientIOError = SPAPIConnectionError


class SPAPIError(SyncError):
    """
    Provider returned an error response.

    Check status_code for specifics.
    """

    def __init__(
        self,
        message: str,
        details: str = None,
        status_code: int = None,
        error_code: str = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code
        self.error_code = error_code


class RateLimitedError(SPAPIError):
    """Provider answered 429 Too Many Requests."""

    def __init__(self, message: str, details: str = None, retry_after: int = None):
        super().__init__(message, details, status_code=429, error_code="QuotaExceeded")
        self.retry_after = retry_after


class RateLimitExhaustedError(SyncError):
    """Every create-report attempt for a batch was rate limited."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Failed to create report after {attempts} rate-limited attempts")


class ReportFailureError(SyncError):
    """
    Report could not be produced.

    Raised when the provider marks a report CANCELLED or FATAL, rejects the
    create call, or returns a document we cannot fetch.
    """

    def __init__(self, message: str, details: str = None, report_id: str = None):
        super().__init__(message, details)
        self.report_id = report_id


class ReportTimeoutError(ReportFailureError):
    """Report did not reach DONE within the maximum wait."""

    def __init__(self, report_id: str, waited_seconds: float):
        super().__init__(
            "Report timed out",
            details=f"not DONE after {waited_seconds:.0f}s",
            report_id=report_id,
        )
        self.waited_seconds = waited_seconds


class DataError(SyncError):
    """
    A parsed row is unusable (missing order id, unknown SKU).

    Counted as skipped; never fails a batch.
    """

    def __init__(self, message: str, details: str = None, field: str = None):
        super().__init__(message, details)
        self.field = field


class AlreadyRunningError(Exception):
    """A historical sync run is already in progress."""

    def __init__(self, message: str = "Sync already running"):
        self.message = message
        super().__init__(message)


class ValidationError(Exception):
    """
    Input validation failed.

    Used for validating control-surface input before starting a run.
    """

    def __init__(self, field: str, message: str, value: any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        if self.value is not None:
            return f"{self.field}: {self.message} (got: {self.value!r})"
        return f"{self.field}: {self.message}"


class QueryTimeoutError(Exception):
    """Database query exceeded its timeout."""

    def __init__(self, query: str, timeout: float):
        self.query = query[:200] + "..." if len(query) > 200 else query
        self.timeout = timeout
        super().__init__(f"Query timed out after {timeout}s")

    def __str__(self) -> str:
        return f"QueryTimeoutError: Query timed out after {self.timeout}s - {self.query}"
