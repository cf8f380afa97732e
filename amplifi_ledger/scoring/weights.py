from __future__ import annotations

from typing import Any, Callable, Iterable, TypeVar

T = TypeVar("T")


def stable_sorted(
    items: Iterable[T],
    key: Callable[[T], Any],
    reverse: bool = False,
    tie_breaker: Callable[[T], Any] | None = None,
) -> list[T]:
    """Sort by ``key``; equal keys keep input order unless ``tie_breaker`` is given."""
    items_list = list(items)
    if tie_breaker is not None:
        items_list = sorted(items_list, key=tie_breaker)
    return sorted(items_list, key=key, reverse=reverse)
