"""
Error types raised by the order, payment and catalog services.

Each carries a human-readable message and the HTTP status the API reports it with.
"""


class AppError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequestError(AppError):
    status_code = 400


class AuthenticationError(AppError):
    status_code = 401


class AuthorizationError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class InvalidTransitionError(AppError):
    status_code = 409


class ConcurrencyError(AppError):
    status_code = 409


class ExternalServiceError(AppError):
    status_code = 502


class ConfigurationError(AppError):
    status_code = 503
