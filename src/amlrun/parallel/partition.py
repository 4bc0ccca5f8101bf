"""Split work items across worker ranks."""

from __future__ import annotations

from typing import List, Tuple

__all__ = ["chunk_bounds", "total_workers"]


def total_workers(node_count: int, process_count_per_node: int) -> int:
    if node_count < 1 or process_count_per_node < 1:
        raise ValueError("node_count and process_count_per_node must be >= 1")
    return node_count * process_count_per_node


def chunk_bounds(n_items: int, n_workers: int) -> List[Tuple[int, int]]:
    """Return one ``(start, stop)`` range per worker rank.

    Ranges are contiguous, cover ``range(n_items)`` exactly once and differ in
    length by at most one. The first ``n_items % n_workers`` ranks take the
    extra item; ranks beyond ``n_items`` get an empty range.
    """
    if n_items < 0:
        raise ValueError("n_items must be >= 0")
    if n_workers < 1:
        raise ValueError("n_workers must be >= 1")
    base, extra = divmod(n_items, n_workers)
    bounds = []
    start = 0
    for rank in range(n_workers):
        size = base + (1 if rank < extra else 0)
        bounds.append((start, start + size))
        start += size
    return bounds
