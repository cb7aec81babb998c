#!/usr/bin/env python3
"""
Exception types shared across the facet query core.
"""

from typing import Optional


class LogFacetsError(Exception):
    """Base exception for this project"""


class InvalidFilterRejected(LogFacetsError):
    """A filter was dropped because its column or operator is not allowed.

    Never raised to callers of the compiler; instances are collected on the
    compiled result so the rejection can be inspected and logged.
    """

    def __init__(self, column: str, reason: str):
        super().__init__(f"Rejected filter on {column!r}: {reason}")
        self.column = column
        self.reason = reason


class QueryError(LogFacetsError):
    """Backend rejected or failed a query"""

    def __init__(self, message: str, code: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.detail = detail

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class QueryCancelled(QueryError):
    """The cancellation token attached to a query fired"""

    def __init__(self, message: str = "Query cancelled"):
        super().__init__(message, code='CANCELLED')


class MissingValueLookupFailed(LogFacetsError):
    """Best-effort lookup of filtered values outside the top-N failed"""
