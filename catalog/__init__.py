from .errors import Conflict, ConstraintViolation, NotFound, StoreError, Transient

__all__ = [
    "StoreError",
    "NotFound",
    "ConstraintViolation",
    "Conflict",
    "Transient",
]
