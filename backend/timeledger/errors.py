from __future__ import annotations


class LedgerError(Exception):
    """Base class for all errors raised by the ledger."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        if self.__cause__ is not None:
            return f"{self.message}; reason: [{self.__cause__}]"
        return self.message


class InvalidData(LedgerError):
    kind = "invalid data"


class InvalidTimer(LedgerError):
    kind = "invalid timer"


class Conflict(LedgerError):
    kind = "conflict"


class NotFound(LedgerError):
    kind = "not found"


class Internal(LedgerError):
    kind = "internal error"
