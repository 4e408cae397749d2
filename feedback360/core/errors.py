"""Exception types shared by the resolution services.

Row and item level problems are never raised; they are collected as
strings on the result objects.  Only the two types below escape a call.
"""
from __future__ import annotations


class NotFoundError(KeyError):
    """A survey, tenant, employee or anchor record is missing or inactive."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class PersistenceError(RuntimeError):
    """The unit of work could not be committed and was rolled back."""


class ConflictingWriteError(PersistenceError):
    """A uniqueness constraint rejected the commit; another writer got there first."""
