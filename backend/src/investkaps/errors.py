"""Service errors mapped onto HTTP responses by the app"""


class InvestKapsError(Exception):
    """Base error with an HTTP status"""

    status_code = 500

    def __init__(self, message: str, **extra) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra


class BadRequestError(InvestKapsError):
    status_code = 400


class AuthenticationError(InvestKapsError):
    status_code = 401


class BrokerTokenMissingError(AuthenticationError):
    """No active Kite access token"""

    def __init__(self, message: str = "Zerodha access token not set or expired") -> None:
        super().__init__(message)


class PermissionDeniedError(InvestKapsError):
    status_code = 403


class NotFoundError(InvestKapsError):
    status_code = 404


class ConflictError(InvestKapsError):
    status_code = 409


class RateLimitedError(InvestKapsError):
    status_code = 429


class UpstreamError(InvestKapsError):
    """Third-party API failure"""

    status_code = 502
