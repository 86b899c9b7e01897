"""Domain exceptions raised by the compliance services and mapped to HTTP by the API."""


class CoverWatchError(Exception):
    """Base class for domain errors."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(CoverWatchError):
    status_code = 404


class TemplateLockedError(CoverWatchError):
    """System default templates cannot be edited or deleted."""

    status_code = 403


class TemplateInUseError(CoverWatchError):
    status_code = 409


class DuplicateRequirementError(CoverWatchError):
    """Two requirements in one template share a (coverage_type, limit_type) pair."""

    status_code = 422


class InvalidTransitionError(CoverWatchError):
    """Certificate processing_status change not allowed by the state machine."""

    status_code = 409
