"""Error taxonomy. Each class carries the HTTP status it is reported with."""

EXCERPT_LIMIT = 200


class MeterReaderError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MeterReaderError):
    """No file, wrong content type or oversized upload."""

    status_code = 400


class AuthError(MeterReaderError):
    """Missing, invalid or expired bearer token."""

    status_code = 401


class NotFoundError(MeterReaderError):
    status_code = 404


class ExternalServiceError(MeterReaderError):
    """The vision model call failed (network, auth, rate limit, 5xx)."""


class ParseError(MeterReaderError):
    """The model reply was not a JSON object after fence stripping."""

    def __init__(self, text: str, reason: str = "Invalid JSON response from vision model"):
        self.excerpt = (text or "")[:EXCERPT_LIMIT]
        super().__init__(f"{reason}: {self.excerpt}")


class PersistenceError(MeterReaderError):
    """The backing store rejected an insert or query."""
