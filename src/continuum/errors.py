"""Error taxonomy shared by the engine, the tool handlers and the relay.

Every error carries a machine-readable ``code`` and a ``recoverable`` flag so
handlers can tell the caller whether retrying makes sense.
"""

from typing import Any, Dict, Optional


class ContinuumError(Exception):
    """Base class for all errors raised by continuum."""

    code = "CONTINUUM_ERROR"
    recoverable = False

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {
            "message": self.message,
            "code": self.code,
            "recoverable": self.recoverable,
        }
        if self.details is not None:
            error["details"] = self.details
        return {"success": False, "error": error}


class ValidationError(ContinuumError):
    """Input the caller must fix (empty text, unfilled template, bad value)."""

    code = "VALIDATION_ERROR"


class NotFoundError(ContinuumError):
    """A key that does not name any stored record."""

    code = "NOT_FOUND"


STORAGE_REMEDIATION = """\
The memory tables are not ready yet. To fix this:
1. Use any knowledge-store tool once (for example, store or search a document)
   so the collaborator creates its tables in the shared database file.
2. Check that both processes point at the same file (CONTINUUM_DB_PATH).
3. Retry this operation; the engine initializes its own tables on first use."""


class StorageUnavailable(ContinuumError):
    """The collaborator has not created its tables in the storage file yet."""

    code = "STORAGE_UNAVAILABLE"
    recoverable = True

    def __init__(self, message: str, details: Optional[Any] = None, remediation: str = STORAGE_REMEDIATION):
        super().__init__(message, details)
        self.remediation = remediation

    def __str__(self) -> str:
        return f"{self.message}\n\n{self.remediation}"

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["error"]["remediation"] = self.remediation
        return payload
