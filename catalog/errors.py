from __future__ import annotations

from dataclasses import dataclass


@dataclass(eq=False)
class StoreError(Exception):
    code: str
    message: str
    retryable: bool = False

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class NotFound(StoreError):
    """Absent, or present but not visible to the caller."""

    def __init__(self, message: str = "not found") -> None:
        super().__init__(code="not_found", message=message)


class ConstraintViolation(StoreError):
    def __init__(self, message: str = "constraint violated") -> None:
        super().__init__(code="constraint_violation", message=message)


class Conflict(StoreError):
    def __init__(self, message: str = "conflict") -> None:
        super().__init__(code="conflict", message=message)


class Transient(StoreError):
    """Connection, pool or deadline failure; the whole operation may be retried."""

    def __init__(self, message: str = "transient store failure") -> None:
        super().__init__(code="transient", message=message, retryable=True)
