"""Error taxonomy for the deduplication engine.

Every error carries a stable ``code`` and the HTTP status it maps to, so the
API layer can render the ``{success: false, error: {message, code}}``
envelope without knowing about individual failure types.
"""


class DeduplicationError(Exception):
    """Base class for all errors surfaced to API callers."""

    status_code = 500
    code = "INTERNAL_ERROR"
    message = "Internal server error"

    def __init__(self, message: str | None = None, code: str | None = None):
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"message": self.message, "code": self.code}


# ── Input validation (400) ──

class ValidationFailed(DeduplicationError):
    status_code = 400
    code = "INVALID_REQUEST"
    message = "Invalid request"


class EmptyCriteria(ValidationFailed):
    code = "INVALID_SEARCH_CRITERIA"
    message = "At least one search criterion must be provided"


class InvalidPanFormat(ValidationFailed):
    code = "INVALID_PAN_FORMAT"
    message = "Invalid PAN number format"


class InvalidDecisionData(ValidationFailed):
    code = "INVALID_DECISION_DATA"
    message = "Missing required decision fields"


class InvalidDecisionType(ValidationFailed):
    code = "INVALID_DECISION_TYPE"
    message = "Invalid decision type"


class MissingCaseId(ValidationFailed):
    code = "MISSING_CASE_ID"
    message = "Case ID is required"


class InvalidSearchToken(ValidationFailed):
    code = "INVALID_SEARCH_TOKEN"
    message = "Search token is missing, expired or does not match the decision data"


# ── Authentication / authorization (401 / 403) ──

class AuthenticationRequired(DeduplicationError):
    status_code = 401
    code = "AUTHENTICATION_REQUIRED"
    message = "User not authenticated"


class Unauthorized(DeduplicationError):
    status_code = 401
    code = "UNAUTHORIZED"
    message = "Authentication required"


class AccessDenied(DeduplicationError):
    status_code = 403
    code = "ACCESS_DENIED"
    message = "Access denied"


class NoClientAccess(AccessDenied):
    code = "NO_CLIENT_ACCESS"
    message = "Access denied - user has no assigned clients"


class CaseAccessDenied(AccessDenied):
    code = "CASE_ACCESS_DENIED"
    message = "Access denied - case belongs to unassigned client"


# ── Not found (404) ──

class CaseNotFound(DeduplicationError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Case not found"


# ── Infrastructure (500 / 504) ──

class StoreError(DeduplicationError):
    """Store unavailable or query failure; message stays generic for callers."""


class SearchFailed(StoreError):
    code = "DEDUPLICATION_SEARCH_ERROR"
    message = "Failed to search for duplicates"


class DecisionFailed(StoreError):
    code = "DEDUPLICATION_DECISION_ERROR"
    message = "Failed to record deduplication decision"


class HistoryFailed(StoreError):
    code = "DEDUPLICATION_HISTORY_ERROR"
    message = "Failed to fetch deduplication history"


class ClustersFailed(StoreError):
    code = "DUPLICATE_CLUSTERS_ERROR"
    message = "Failed to fetch duplicate clusters"


class RequestTimeout(DeduplicationError):
    status_code = 504
    code = "REQUEST_TIMEOUT"
    message = "The request took too long to complete"


class AuditRecordImmutable(Exception):
    """Raised when code tries to mutate or delete a written audit record.

    Not a ``DeduplicationError``: this is a programming error, never a
    caller-facing condition.
    """
