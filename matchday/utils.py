"""Small shared helpers."""

from typing import Iterator, Sequence


def chunked(items: Sequence, size: int) -> Iterator[Sequence]:
    """Consecutive slices of at most `size` items."""
    size = max(1, size)
    for start in range(0, len(items), size):
        yield items[start:start + size]
