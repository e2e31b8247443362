from typing import Optional


class LedgerError(Exception):
    """Base class for errors that abort a ledger run."""


class InputError(LedgerError):
    """The record stream could not be read or decoded."""

    def __init__(self, message: str, line: Optional[int] = None):
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class AggregationError(LedgerError):
    """Two lanes reported the same client."""

    def __init__(self, client_id: int):
        self.client_id = client_id
        super().__init__(f"Client {client_id} was reported by more than one lane")
