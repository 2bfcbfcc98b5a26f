"""
Error kinds raised by the donation lifecycle.

Routes map these to HTTP status codes in app.py.
"""


class DonationError(Exception):
    """Base class for donation lifecycle errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DonationError):
    """Malformed input at creation time."""

    status_code = 400


class NotFoundError(DonationError):
    status_code = 404


class InvalidTransitionError(DonationError):
    """Illegal edge, terminal record, or a lost race on the same record."""

    status_code = 409


class StorageError(DonationError):
    """Storage I/O failure. Retryable."""

    status_code = 503
