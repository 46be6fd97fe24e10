"""CRM transport exception classes."""


class CRMUnavailableError(RuntimeError):
    """Raised when CRM calls are short-circuited because the CRM looks down."""


class CRMRequestFailed(RuntimeError):
    """Raised when the CRM answers with an unexpected HTTP status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


__all__ = [
    "CRMUnavailableError",
    "CRMRequestFailed",
]
