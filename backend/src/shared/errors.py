"""
Error taxonomy shared by services and handlers.
Each error carries the HTTP status a handler should answer with.
"""


class QualifyFirstError(Exception):
    """Base class for expected, classified failures."""
    status_code = 500

    def __init__(self, message: str = ''):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(QualifyFirstError):
    """Missing or malformed request fields."""
    status_code = 400


class AuthError(QualifyFirstError):
    """Caller could not be authenticated (bad signature or token)."""
    status_code = 401


class NotFoundError(QualifyFirstError):
    """Unknown user, profile, offer or completion."""
    status_code = 404


class UpstreamError(QualifyFirstError):
    """External AI or balance service unavailable or answered non-2xx."""
    status_code = 502


class PersistenceError(QualifyFirstError):
    """DynamoDB read or write failure."""
    status_code = 500


class ConflictError(PersistenceError):
    """A conditional write lost a race with a concurrent writer."""
    status_code = 409


class DuplicateError(PersistenceError):
    """A conditional put found an item with the same key already stored."""
    status_code = 409


class ConfigError(QualifyFirstError):
    """Required configuration is missing from the environment."""
    status_code = 503
