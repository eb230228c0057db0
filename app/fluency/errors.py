"""
Error taxonomy for fluency level changes and certificates.

Routers translate these into HTTP responses; nothing in the fluency
package retries on its own.
"""

UNKNOWN_LEVEL = "UnknownLevel"
NO_OP_TRANSITION = "NoOpTransition"
SKIPPED_LEVEL = "SkippedLevel"


class FluencyError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class Forbidden(FluencyError):
    status_code = 403


class NotFound(FluencyError):
    status_code = 404


class InvalidTransition(FluencyError):
    """The requested level change is not allowed; the caller must fix the request."""

    status_code = 400

    MESSAGES = {
        UNKNOWN_LEVEL: "Invalid fluency level",
        NO_OP_TRANSITION: "User is already at the requested level",
        SKIPPED_LEVEL: "Invalid level transition. Can only move one level at a time",
    }

    def __init__(self, reason: str):
        super().__init__(self.MESSAGES.get(reason, "Invalid level transition"))
        self.reason = reason


class ConcurrentTransition(FluencyError):
    """Another transition for the same user was written first."""

    status_code = 409


class StorageFailure(FluencyError):
    """The key/value store failed. The only class a caller may retry."""

    status_code = 503
