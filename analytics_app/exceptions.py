"""
Analytics error taxonomy.

Each error carries a machine-readable code and the HTTP status the API
layer renders it with. Ingestion code raises these to the worker, which
logs and drops them; reporting code lets them reach the admin caller.
"""


class AnalyticsError(Exception):
    """Base class for analytics errors"""

    code = "ANALYTICS_ERROR"
    status_code = 500

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class NotFoundError(AnalyticsError):
    """Requested analytics record does not exist"""

    code = "NOT_FOUND"
    status_code = 404


class VisitorNotFoundError(NotFoundError):
    """Visitor not found"""

    code = "VISITOR_NOT_FOUND"


class SessionNotFoundError(NotFoundError):
    """Session not found"""

    code = "SESSION_NOT_FOUND"


class AuthenticationError(AnalyticsError):
    """Invalid or expired token"""

    code = "INVALID_TOKEN"
    status_code = 401


class PermissionDeniedError(AnalyticsError):
    """Insufficient permissions"""

    code = "INSUFFICIENT_PERMISSIONS"
    status_code = 403


class ReportingError(AnalyticsError):
    """Analytics query failed"""

    code = "ANALYTICS_QUERY_FAILED"
    status_code = 500
