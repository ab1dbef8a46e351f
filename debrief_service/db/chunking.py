"""Statement-size-safe batching helpers.

Some backends (SQLite builds, Cloudflare D1) reject statements that bind more
than a fixed number of parameters. Multi-row INSERTs bind one parameter per
column per row and ``IN (...)`` lists one per id, so large writes are split
into several statements whose parameter count stays under the budget.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")

# Smallest ceiling among the supported backends (D1 allows 100 bound parameters)
DEFAULT_PARAMETER_LIMIT = 100


def chunk_list(items: Sequence[T], chunk_size: int) -> list[list[T]]:
    """Split ``items`` into consecutive chunks of at most ``chunk_size``."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return [list(items[i:i + chunk_size]) for i in range(0, len(items), chunk_size)]


def get_insert_chunk_size(
    rows: Iterable[Mapping[str, Any]],
    parameter_limit: int = DEFAULT_PARAMETER_LIMIT,
) -> int:
    """
    Rows per INSERT so that ``rows_per_statement * fields_per_row <= parameter_limit``.

    The widest row decides the field count. With no rows, or rows without
    fields, the whole budget is available. Never returns less than 1.
    """
    if parameter_limit <= 0:
        raise ValueError("parameter_limit must be positive")

    fields_per_row = max((len(row) for row in rows), default=0)
    if fields_per_row == 0:
        return parameter_limit
    return max(1, parameter_limit // fields_per_row)


async def chunked_batch(
    items: Sequence[T],
    execute_chunk: Callable[[list[T]], Awaitable[Sequence[R] | None]],
    *,
    chunk_size: int,
) -> list[R]:
    """
    Run ``execute_chunk`` once per chunk and concatenate the results.

    Chunks run sequentially so results come back in input order.
    """
    results: list[R] = []
    for chunk in chunk_list(items, chunk_size):
        chunk_result = await execute_chunk(chunk)
        if chunk_result:
            results.extend(chunk_result)
    return results


async def chunked_insert(
    rows: Sequence[Mapping[str, Any]],
    execute_chunk: Callable[[list[Mapping[str, Any]]], Awaitable[Sequence[R] | None]],
    *,
    parameter_limit: int = DEFAULT_PARAMETER_LIMIT,
) -> list[R]:
    """Insert ``rows`` in as few statements as the parameter budget allows."""
    if not rows:
        return []
    chunk_size = get_insert_chunk_size(rows, parameter_limit)
    return await chunked_batch(rows, execute_chunk, chunk_size=chunk_size)


async def where_in_chunks(
    ids: Sequence[T],
    execute_chunk: Callable[[list[T]], Awaitable[Sequence[R] | None]],
    *,
    chunk_size: int = DEFAULT_PARAMETER_LIMIT,
) -> list[R]:
    """Run an ``IN (...)`` statement over ``ids`` without exceeding the budget."""
    if not ids:
        return []
    return await chunked_batch(ids, execute_chunk, chunk_size=chunk_size)
