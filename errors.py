"""Error taxonomy shared by the services and the HTTP layer.

Services raise these for expected business conditions; ``main`` registers a
single exception handler that turns any ``LibraryError`` into a JSON response
with the matching status code.
"""


class LibraryError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(LibraryError):
    """A user, book, borrowing, notification or review does not exist."""
    status_code = 404


class ConflictError(LibraryError):
    """Stock exhausted, duplicate identity, or an invalid state transition."""
    status_code = 409


class AuthorizationError(LibraryError):
    """The acting user does not own the resource and is not an admin."""
    status_code = 403


class InvalidTokenError(LibraryError):
    """Unknown or expired password reset token."""
    status_code = 400


class EmailDeliveryError(LibraryError):
    status_code = 502
