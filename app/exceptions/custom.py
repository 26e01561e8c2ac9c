class DoNotStayError(Exception):
    code = "ANALYSIS_ERROR"
    status_code = 500

    def __init__(self, message: str, detail: str | None = None):
        self.message = message
        self.detail = detail  # logged only, never returned to the caller
        super().__init__(message)


class ExtractionEmptyError(DoNotStayError):
    code = "EXTRACTION_EMPTY"
    status_code = 422

    def __init__(self, message: str = "Could not find reviews for this hotel"):
        super().__init__(message)


class UpstreamUnavailableError(DoNotStayError):
    code = "UPSTREAM_UNAVAILABLE"
    status_code = 502

    def __init__(self, service: str, detail: str | None = None):
        self.service = service
        super().__init__(f"{service} is unavailable", detail)


class ResponseTruncatedError(DoNotStayError):
    code = "RESPONSE_TRUNCATED"
    status_code = 502

    def __init__(self, detail: str | None = None):
        super().__init__("Analysis response was truncated", detail)


class ResponseMalformedError(DoNotStayError):
    code = "RESPONSE_MALFORMED"
    status_code = 502

    def __init__(self, diagnostic: str, detail: str | None = None):
        self.diagnostic = diagnostic
        super().__init__(f"Analysis response could not be parsed: {diagnostic}", detail)


class SchemaViolationError(DoNotStayError):
    code = "SCHEMA_VIOLATION"
    status_code = 502

    def __init__(self, field_errors: list[str], detail: str | None = None):
        self.field_errors = field_errors
        super().__init__(
            "Analysis response failed validation: " + ", ".join(field_errors), detail
        )


class StorageUnavailableError(DoNotStayError):
    code = "STORAGE_UNAVAILABLE"
    status_code = 503

    def __init__(self, detail: str | None = None):
        super().__init__("Storage is unavailable", detail)


class StorageConflictError(Exception):
    """A unique-constraint insert lost to a concurrent writer. Recovered by the
    caller, never surfaced."""

    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Unique constraint violated on {table}")


class InsufficientCreditsError(Exception):
    def __init__(self, credits_remaining: int = 0):
        self.credits_remaining = credits_remaining
        super().__init__("No credits left to charge")


class InvalidRequestError(DoNotStayError):
    code = "INVALID_REQUEST"
    status_code = 400

    def __init__(self, message: str = "Missing required fields"):
        super().__init__(message)


class InvalidFeedbackTypeError(DoNotStayError):
    code = "INVALID_TYPE"
    status_code = 400

    def __init__(self, feedback_type: str):
        self.feedback_type = feedback_type
        super().__init__("Invalid feedback type", f"got {feedback_type!r}")


class FeedbackError(DoNotStayError):
    code = "FEEDBACK_ERROR"
    status_code = 500

    def __init__(self, detail: str | None = None):
        super().__init__("Failed to save feedback", detail)
