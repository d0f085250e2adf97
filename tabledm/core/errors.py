"""Error taxonomy for TableDM.

Every error carries the HTTP status the API layer should answer with and
a short human-readable message. Routes never build error payloads by
hand; a single exception handler in ``api.main`` maps these.
"""


class TableDMError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(TableDMError):
    """Malformed or missing required fields. Rejected before any mutation."""

    status_code = 400


class NoActiveCombat(TableDMError):
    """The operation needs an active encounter but there is none."""

    status_code = 400

    def __init__(self, message: str = "No active combat in this session"):
        super().__init__(message)


class NotFound(TableDMError):
    """A referenced session does not resolve.

    Unresolved *combatant* ids are never raised as this; they are
    ignored and reported as warnings.
    """

    status_code = 404


class Forbidden(TableDMError):
    """Caller is not allowed to perform a host-only action."""

    status_code = 403


class SessionPaused(TableDMError):
    """Combat is frozen while the owning session is paused."""

    status_code = 409

    def __init__(self, message: str = "Session is paused; combat is frozen until it resumes"):
        super().__init__(message)


class ConcurrentUpdate(TableDMError):
    """Optimistic version check kept failing after all retries."""

    status_code = 409


class StorageFailure(TableDMError):
    """The persistence read or write failed. Nothing was committed."""

    status_code = 503


class OracleFailure(TableDMError):
    """The narration oracle (LLM) call failed. Nothing was applied."""

    status_code = 502
