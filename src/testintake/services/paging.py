"""Offset pagination shared by the listing operations."""

from dataclasses import dataclass
from typing import Generic, TypeVar

from testintake.errors import InvalidArgument

MAX_PAGE_SIZE = 200

T = TypeVar("T")


@dataclass(frozen=True)
class Pagination:
    limit: int = 50
    offset: int = 0

    def __post_init__(self) -> None:
        if not 1 <= self.limit <= MAX_PAGE_SIZE:
            raise InvalidArgument(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if self.offset < 0:
            raise InvalidArgument("offset must not be negative")


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T]
    total: int
    pagination: Pagination
