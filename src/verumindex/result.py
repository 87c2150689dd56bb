"""Uniform success/failure envelope returned by every read operation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Pagination:
    offset: int
    limit: int
    has_more: bool
    total: int | None = None


@dataclass(frozen=True)
class Result(Generic[T]):
    """Result of an indexer or fetcher call.

    A failed result carries a human-readable ``error``; a successful one may
    still carry an ``error`` note when the data is partial.
    """

    success: bool
    data: T | None = None
    error: str | None = None
    pagination: Pagination | None = None

    @classmethod
    def ok(cls, data: T, *, error: str | None = None, pagination: Pagination | None = None) -> Result[T]:
        return cls(success=True, data=data, error=error, pagination=pagination)

    @classmethod
    def fail(cls, error: str) -> Result[T]:
        return cls(success=False, error=error)
