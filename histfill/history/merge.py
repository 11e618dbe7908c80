from __future__ import annotations

from typing import Callable, Iterable, List, Sequence, TypeVar

T = TypeVar("T")


def _ts_key(record) -> int:
    return int(record.ts_ms)


def merge_records(
    batches: Iterable[Sequence[T]],
    *,
    key: Callable[[T], int] = _ts_key,
) -> List[T]:
    """
    Concatenate batches, stable-sort ascending by key, drop any record whose key equals
    the previous survivor's. First-seen wins on ties, so merge_records([merge_records(b)])
    equals merge_records(b).
    """
    combined: List[T] = [r for batch in batches for r in batch]
    combined.sort(key=key)

    out: List[T] = []
    last_key: int | None = None
    for r in combined:
        k = key(r)
        if last_key is not None and k == last_key:
            continue
        out.append(r)
        last_key = k
    return out


def tail(records: Sequence[T], n: int) -> List[T]:
    """Most recent n of an ascending sequence (all of it when shorter)."""
    if n <= 0:
        return []
    return list(records[-n:])
