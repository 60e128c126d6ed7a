"""Custom exceptions for the SQLite store."""


class StoreError(Exception):
    """Base exception for store read/write failures."""


class StoreWriteError(StoreError):
    """Raised when a write fails (constraint violation, locked database)."""

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Store write failed during {operation}: {detail}")


class StoreReadError(StoreError):
    """Raised when a read query fails."""

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Store read failed during {operation}: {detail}")
