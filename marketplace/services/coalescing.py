"""
Request-scoped coalescing of duplicate evaluations.

One EvaluationScope lives for one request. Concurrent calls that ask for
the same key wait on the first caller's Future instead of recomputing.
An entry lives only while its computation runs, so a call made after a
write always sees fresh data.
"""
import threading
from concurrent.futures import Future
from typing import Callable, Dict, Generator, Hashable, TypeVar

T = TypeVar("T")


class EvaluationScope:
    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[Hashable, Future] = {}
        self._closed = False

    def run(self, key: Hashable, compute: Callable[[], T]) -> T:
        with self._lock:
            if self._closed:
                future, owner = None, False
            else:
                future = self._entries.get(key)
                owner = future is None
                if owner:
                    future = Future()
                    self._entries[key] = future

        if future is None:
            return compute()
        if not owner:
            return future.result()

        try:
            result = compute()
        except BaseException as exc:
            self._forget(key, future)
            future.set_exception(exc)
            raise
        self._forget(key, future)
        future.set_result(result)
        return result

    def _forget(self, key: Hashable, future: Future):
        with self._lock:
            if self._entries.get(key) is future:
                del self._entries[key]

    def __len__(self):
        """Number of evaluations currently in flight."""
        with self._lock:
            return len(self._entries)

    def close(self):
        with self._lock:
            self._entries.clear()
            self._closed = True

    def __enter__(self) -> "EvaluationScope":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def get_evaluation_scope() -> Generator[EvaluationScope, None, None]:
    """FastAPI dependency: one scope per request, torn down afterwards."""
    scope = EvaluationScope()
    try:
        yield scope
    finally:
        scope.close()
