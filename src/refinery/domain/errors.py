"""Error kinds raised by the scheduler, the config layer and the record stores."""


class RefineryError(Exception):
    """Base class for every error Refinery raises on purpose."""


class InvalidGrade(RefineryError, ValueError):
    """Raised when a grade is outside the Fail/Hard/Good/Easy set."""

    def __init__(self, value: object):
        super().__init__(f"Invalid grade: {value!r} (expected fail, hard, good or easy)")
        self.value = value


class InvalidConfig(RefineryError, ValueError):
    """Raised when an algorithm or deck configuration violates a required bound."""


class InvalidRecord(RefineryError, ValueError):
    """Raised when a stored document or card state is incomplete or inconsistent."""


class RecordNotFound(RefineryError, LookupError):
    """Raised when the store has no record with the requested id."""

    def __init__(self, record_id: str):
        super().__init__(f"Record not found: {record_id}")
        self.record_id = record_id


class Conflict(RefineryError):
    """Raised when an update carries a stale revision token."""

    def __init__(self, record_id: str, revision: str | None):
        super().__init__(f"Revision conflict on {record_id} (token {revision!r} is stale)")
        self.record_id = record_id
        self.revision = revision


class StoreError(RefineryError):
    """Raised when the document store cannot be reached or answers unexpectedly."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status
