"""Domain-specific exceptions"""

from typing import Optional


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class LedgerConnectionError(DomainException):
    """Credentials for the ledger platform are missing or unusable"""

    pass


class ConnectionNotFoundError(LedgerConnectionError):
    """User has never connected (or has disconnected) a ledger tenant"""

    pass


class AuthExpiredError(LedgerConnectionError):
    """Refresh token was rejected; the user must reconnect"""

    pass


class TokenRefreshError(LedgerConnectionError):
    """Token refresh failed for a transient reason and the old token is expired"""

    pass


class FetchError(DomainException):
    """A page request against the ledger platform failed"""

    def __init__(self, message: str, status_code: Optional[int] = None, rate_limit=None):
        super().__init__(message)
        self.status_code = status_code
        self.rate_limit = rate_limit


class RecordError(DomainException):
    """A single external record could not be mapped or written"""

    def __init__(self, message: str, external_ref: Optional[str] = None):
        super().__init__(message)
        self.external_ref = external_ref


class InvalidRequestError(DomainException):
    """Request is malformed and was rejected before any work started"""

    pass


class InvalidScheduleTransitionError(InvalidRequestError):
    """Payment schedule cannot move to the requested status"""

    pass
