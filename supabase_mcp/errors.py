"""Error taxonomy surfaced by tools."""


class SupabaseMcpError(Exception):
    """Base class for every error a tool call can raise."""


class ValidationError(SupabaseMcpError):
    """Malformed input or an illegal operation. Raised before any backend call."""


class BackendUnavailableError(SupabaseMcpError):
    """The backend could not be reached (connection refused, DNS, timeout)."""


class BackendRejectedError(SupabaseMcpError):
    """The backend answered with a non-success status."""

    def __init__(self, message, status=None, body=None):
        super().__init__(message)
        self.status = status
        self.body = body
