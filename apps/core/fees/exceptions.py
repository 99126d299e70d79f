from django.core.exceptions import ObjectDoesNotExist, ValidationError

__all__ = [
    'InvalidStateError',
    'LedgerError',
    'NotFoundError',
    'StorageError',
    'ValidationError',
]


class LedgerError(Exception):
    """Base class for fee ledger failures. ``step`` names the workflow step that failed."""

    def __init__(self, message, *, step=''):
        super().__init__(message)
        self.message = message
        self.step = step

    def __str__(self):
        return self.message


class NotFoundError(LedgerError, ObjectDoesNotExist):
    pass


class InvalidStateError(LedgerError):
    pass


class StorageError(LedgerError):
    pass
