"""Exception taxonomy shared by the access gate, search path, and index writers."""


class DirectoryError(Exception):
    """Base class for directory service errors.

    Attributes:
        status_code: HTTP status the error maps to at the API boundary.
        code: Machine-readable error identifier.
    """

    status_code = 500
    code = "directory_error"

    def __init__(self, message: str) -> None:
        """Initialize error.

        Args:
            message: Human-readable description.
        """
        super().__init__(message)
        self.message = message


class NotFoundError(DirectoryError):
    """Raised when an organization is absent or not visible to the caller.

    Private organizations the caller cannot resolve access to raise this
    same error so that their existence is not disclosed.
    """

    status_code = 404
    code = "not_found"


class ForbiddenError(DirectoryError):
    """Raised when the caller's role is insufficient."""

    status_code = 403
    code = "forbidden"


class QueryValidationError(DirectoryError):
    """Raised for malformed search input.

    Never reaches an HTTP caller: the search path turns it into an empty
    result carrying the message as a warning.
    """

    status_code = 400
    code = "invalid_query"

    def __init__(self, message: str, reason: str) -> None:
        """Initialize validation error.

        Args:
            message: Human-readable description.
            reason: Machine-readable rejection reason.
        """
        super().__init__(message)
        self.reason = reason


class IndexQueryError(DirectoryError):
    """Raised when a text-index query fails to execute."""

    code = "index_query_failed"

    def __init__(self, message: str, index: str) -> None:
        """Initialize index error.

        Args:
            message: Human-readable description.
            index: Name of the index table that failed.
        """
        super().__init__(message)
        self.index = index


class CustomFieldValueError(DirectoryError):
    """Raised when a custom field value does not fit its definition."""

    status_code = 400
    code = "invalid_custom_field_value"


class ConflictError(DirectoryError):
    """Raised when a write collides with existing data."""

    status_code = 409
    code = "conflict"
