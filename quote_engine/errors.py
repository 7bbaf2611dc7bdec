"""
Error taxonomy for the quote engine.

Every error carries a machine-readable ``code`` and optional ``details`` so
callers can report structured failures. ``MemberQuoteError`` subclasses are
recoverable at the member level: the member is skipped and the run continues.
Everything else aborts the whole operation.
"""

from typing import Any, Dict, Optional


class QuoteEngineError(Exception):
    """Base class for all quote engine errors."""
    code = "QUOTE_ENGINE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(QuoteEngineError):
    """A collaborator had no record for the requested key."""
    code = "NOT_FOUND"


# Member-level errors

class MemberQuoteError(QuoteEngineError):
    """A single member could not be quoted; the member is skipped."""
    code = "MEMBER_QUOTE_ERROR"


class GeographyNotResolved(MemberQuoteError):
    code = "GEOGRAPHY_NOT_RESOLVED"


class NoPlansAvailable(MemberQuoteError):
    """
    No priced plan for a member. Raised at group level when every member
    was dropped, in which case ``details['skipped_members']`` lists them.
    """
    code = "NO_PLANS_AVAILABLE"


class NoSilverBenchmarkAvailable(MemberQuoteError):
    code = "NO_SILVER_BENCHMARK"


# External dependency errors

class ExternalCallError(QuoteEngineError):
    """
    Failed call to an external service, before retry handling.
    ``status_code`` is the HTTP status, or None when no response arrived
    (timeout, dropped connection, database unavailable).
    """
    code = "EXTERNAL_CALL_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.status_code = status_code

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


class ExternalRateLimitExceeded(QuoteEngineError):
    """Rate limit still exceeded after the scheduler's retries."""
    code = "RATE_LIMIT_EXCEEDED"


class ExternalServiceUnavailable(QuoteEngineError):
    """Transport failure still present after the scheduler's retries."""
    code = "EXTERNAL_SERVICE_UNAVAILABLE"


class CallDropped(ExternalServiceUnavailable):
    """A queued call was discarded by a queue clear or scheduler shutdown."""
    code = "CALL_DROPPED"


class AffordabilityTrialLimitExceeded(QuoteEngineError):
    """The affordability endpoint's lifetime quota is spent. Never retried."""
    code = "AFFORDABILITY_TRIAL_LIMIT_EXCEEDED"


class ComplianceDataUnavailable(QuoteEngineError):
    """No completed affordability calculation to report compliance from."""
    code = "COMPLIANCE_DATA_UNAVAILABLE"


# Caller errors

class InvalidFilterInput(QuoteEngineError):
    code = "INVALID_FILTER_INPUT"


class GroupNotFound(QuoteEngineError):
    code = "GROUP_NOT_FOUND"


class QuoteNotFound(QuoteEngineError):
    code = "QUOTE_NOT_FOUND"
