"""Typed failures raised by the booking core.

Each error carries the HTTP status the routes answer with and a short code
the chat tools hand back to the model, so "slot taken", "bad input" and
"not allowed" stay distinguishable to both kinds of client.
"""


class BookingError(Exception):
    status_code = 500
    code = 'internal'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    status_code = 400
    code = 'invalid_input'


class NotFoundError(BookingError):
    status_code = 404
    code = 'not_found'


class AuthorizationError(BookingError):
    status_code = 403
    code = 'not_authorized'


class ConflictError(BookingError):
    status_code = 409
    code = 'conflict'


class ExternalServiceError(BookingError):
    status_code = 503
    code = 'external_service'


class InternalError(BookingError):
    pass
