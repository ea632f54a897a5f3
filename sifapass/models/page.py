from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    """A newest-first slice of a listing plus the total matching count."""

    items: list[T]
    total: int
    limit: int
    offset: int
