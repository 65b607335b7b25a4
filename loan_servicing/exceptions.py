"""Exception hierarchy for the loan servicing core."""


class ServicingError(Exception):
    """Base exception for all loan servicing errors."""


class NotFoundError(ServicingError):
    """Raised when a referenced loan cycle, loan number or client does not exist."""


class InvalidInputError(ServicingError):
    """Raised when identifiers are missing, a batch is empty or associations mismatch."""


class DuplicateRecordError(InvalidInputError):
    """Raised when inserting a record whose storage key already exists."""
