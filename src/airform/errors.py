from __future__ import annotations


class AirformError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class Unauthenticated(AirformError):
    status_code = 401


class InvalidSessionToken(Unauthenticated):
    def __init__(self, message: str = "Invalid or expired token") -> None:
        super().__init__(message)


class Forbidden(AirformError):
    status_code = 403


class NotFound(AirformError):
    status_code = 404


class Conflict(AirformError):
    status_code = 409


class ValidationError(AirformError):
    status_code = 400

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class ExternalAuthError(AirformError):
    """OAuth code exchange, refresh or identity lookup failed."""


class ExternalAPIError(AirformError):
    """A proxied call to the Airtable data API failed."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
