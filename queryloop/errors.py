"""Error taxonomy for the orchestration core.

Provider unavailability is deliberately absent: search and research
providers report it through ``ProviderResult.unavailable`` instead of raising.
Everything here is either fatal for a submission or drives a poller
transition.
"""

from __future__ import annotations


class QueryLoopError(Exception):
    """Base class for errors that carry a short user-facing message.

    Attributes:
        code: machine-readable error code, e.g. ``"EMPTY_QUERY"``.
        message: human-readable text safe to show in a toast.
        http_status: status code used when the error crosses the HTTP layer.
    """

    code = "QUERYLOOP_ERROR"
    http_status = 500

    def __init__(self, message: str, *, code: str | None = None, http_status: int | None = None):
        self.message = message
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        super().__init__(message)


class EmptyQueryError(QueryLoopError):
    code = "EMPTY_QUERY"
    http_status = 400

    def __init__(self, message: str = "Enter a question or attach a file."):
        super().__init__(message)


class ConversationNotFoundError(QueryLoopError):
    code = "CONVERSATION_NOT_FOUND"
    http_status = 404

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__("Conversation not found.")


class PersistenceError(QueryLoopError):
    code = "PERSISTENCE_FAILED"
    http_status = 502


class SchemaDriftError(PersistenceError):
    """The store rejected a write because of an unrecognized column.

    ``field`` names the offending optional column when it can be identified
    from the store's error message, otherwise ``None``.
    """

    code = "SCHEMA_DRIFT"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class JobSubmissionError(QueryLoopError):
    code = "JOB_SUBMISSION_FAILED"
    http_status = 503


class JobStatusFormatError(QueryLoopError):
    """Status check rejected as malformed. Retrying cannot fix it."""

    code = "JOB_STATUS_FORMAT"
    http_status = 400


class JobRunnerUnavailableError(QueryLoopError):
    """Transient status-check failure (transport, timeout, 5xx)."""

    code = "JOB_RUNNER_UNAVAILABLE"
    http_status = 503


class FileAnalysisError(QueryLoopError):
    code = "FILE_ANALYSIS_FAILED"
    http_status = 502


class MessageNotFoundError(QueryLoopError):
    code = "MESSAGE_NOT_FOUND"
    http_status = 404

    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__("Message not found.")
