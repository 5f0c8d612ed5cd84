"""Custom exceptions for the income ledger pipeline."""

from __future__ import annotations


class IncomeLedgerError(Exception):
    """Base exception for all income ledger errors."""

    status_code = 500

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(IncomeLedgerError):
    """Raised when input validation fails."""

    status_code = 400


class WorkbookError(IncomeLedgerError):
    """Raised when a statement workbook cannot be read or has no worksheet."""

    status_code = 400


class HeaderNotFoundError(WorkbookError):
    """Raised when no transaction header row can be detected."""

    pass


class SourceFetchError(IncomeLedgerError):
    """Raised when the statement file cannot be downloaded."""

    status_code = 502


class SourceReadError(IncomeLedgerError):
    """Raised when a page of the source collection cannot be read.

    Carries the resume cursor so the caller can continue from the last
    successfully processed document.
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        last_doc_id: str = "",
        migrated: int = 0,
        details: dict | None = None,
    ) -> None:
        super().__init__(message, details)
        self.last_doc_id = last_doc_id
        self.migrated = migrated


class PartitionWriteError(IncomeLedgerError):
    """Raised when a month partition blob cannot be written."""

    pass
