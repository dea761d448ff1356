class BookingError(Exception):
    """
    Base of the error taxonomy surfaced by the booking core.

    Each variant carries a `kind` tag and the HTTP status it maps to.
    `details` holds extra fields that are safe to show the caller.
    """

    kind = "error"
    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"kind": self.kind, "error": self.message, **self.details}


class ValidationError(BookingError):
    kind = "validation"
    status_code = 400


class ConflictError(BookingError):
    kind = "conflict"
    status_code = 409


class NotFoundError(BookingError):
    kind = "not_found"
    status_code = 404


class PersistenceError(BookingError):
    kind = "persistence"
    status_code = 500

    def to_dict(self) -> dict:
        # never leak storage detail to the caller
        return {"kind": self.kind, "error": "Internal server error"}
