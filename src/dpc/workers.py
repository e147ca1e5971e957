from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, TypeVar
import threading

from .diagnostics import CompilationCancelled

T = TypeVar("T")
R = TypeVar("R")


class CancellationToken:
    """Cooperative cancellation, checked at unit boundaries."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        if self._event.is_set():
            raise CompilationCancelled("compilation cancelled")


def checkpoint(cancel: Optional[CancellationToken]) -> None:
    if cancel is not None:
        cancel.check()


def parallel_map(
    fn: Callable[[T], R],
    items: Iterable[T],
    jobs: int = 1,
    cancel: Optional[CancellationToken] = None,
) -> List[R]:
    """Map fn over items, results in input order. jobs > 1 uses a thread pool."""
    items = list(items)

    def run(item: T) -> R:
        checkpoint(cancel)
        return fn(item)

    if jobs <= 1 or len(items) <= 1:
        return [run(it) for it in items]
    with ThreadPoolExecutor(max_workers=jobs) as pool:
        return list(pool.map(run, items))
