from __future__ import annotations


class LedgerError(Exception):
    """Base class for errors raised by the ledger core."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(LedgerError):
    """A referenced project, day or day-project entry does not exist."""


class PreconditionError(LedgerError):
    """The caller violated an operation contract (e.g. reorder index out of range)."""


class InvalidProjectError(LedgerError):
    """Project data breaks the name/date invariants."""


class ImportFormatError(LedgerError):
    """An import document could not be understood."""
