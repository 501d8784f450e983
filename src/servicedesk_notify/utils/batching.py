"""Helpers for splitting work into gateway-sized batches."""

from collections.abc import Iterable, Iterator, Sequence
from typing import TypeVar

T = TypeVar("T")


def chunked(items: Iterable[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive lists of at most ``size`` items, preserving order."""
    if size < 1:
        raise ValueError(f"Chunk size must be at least 1, got {size}")
    chunk: list[T] = []
    for item in items:
        chunk.append(item)
        if len(chunk) == size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def dedupe(items: Sequence[T]) -> list[T]:
    """Drop repeated items, keeping the first occurrence of each."""
    return list(dict.fromkeys(items))
