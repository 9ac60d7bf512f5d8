"""
Directory Locks and Registry
============================

Every physical directory path gets exactly one :class:`DirectoryLock` among
the live Directory handles pointing at it. The lock is a reader/writer lock:
any number of readers, or one writer, at a time. It also owns the single
background worker that runs deferred writes for that path, in submission
order.

:class:`LockRegistry` hands out those locks. It keeps only weak references,
so a path's lock is reclaimed once no Directory uses it and a later handle
for the same path gets a fresh one.
"""

import logging
import os
import threading
import weakref
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional, Union

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """
    Reader/writer lock built on a condition variable.

    Writers are preferred: once a writer is waiting, new readers queue behind
    it, so a steady stream of readers cannot starve writes. Not reentrant.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            if self._readers <= 0:
                raise RuntimeError("release_read() called without a read grant")
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            if not self._writer:
                raise RuntimeError("release_write() called without a write grant")
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self):
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self):
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()

    @property
    def readers(self) -> int:
        """Number of read grants currently held."""
        with self._cond:
            return self._readers

    @property
    def is_write_locked(self) -> bool:
        with self._cond:
            return self._writer


class DirectoryLock:
    """
    Synchronization primitive shared by all handles for one path.

    Holds no data. ``read_locked()``/``write_locked()`` serialize I/O, and
    ``submit()`` queues deferred work on a single worker thread created on
    first use.
    """

    def __init__(self, path: Path):
        self.path = path
        self._rw = ReadWriteLock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    def read_locked(self):
        return self._rw.read_locked()

    def write_locked(self):
        return self._rw.write_locked()

    @property
    def rw_lock(self) -> ReadWriteLock:
        return self._rw

    def submit(self, fn: Callable[[], None]) -> Future:
        """Queue ``fn`` on this path's deferred-write worker."""
        return self._get_executor().submit(fn)

    def drain(self) -> None:
        """Block until every task submitted so far has finished."""
        with self._executor_lock:
            executor = self._executor
        if executor is not None:
            # single worker: a no-op queued now runs after everything before it
            executor.submit(lambda: None).result()

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="filebacked-deferred"
                )
                logger.debug(f"Started deferred-write worker for {self.path}")
            return self._executor

    def __repr__(self):
        return f"DirectoryLock({str(self.path)!r})"


class LockRegistry:
    """
    Maps a physical path to the single DirectoryLock guarding it.

    The registry's own lock covers only the lookup-or-insert step.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, DirectoryLock]" = (
            weakref.WeakValueDictionary()
        )
        self._lock = threading.Lock()

    @staticmethod
    def canonical_path(path: Union[str, os.PathLike]) -> Path:
        """Absolute form of ``path``; symlinks are not resolved."""
        return Path(os.path.normpath(Path(path).expanduser().absolute()))

    def lock_for(self, path: Union[str, os.PathLike]) -> DirectoryLock:
        """Return the live lock for ``path``, creating it if none exists."""
        canonical = self.canonical_path(path)
        key = str(canonical)
        with self._lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = DirectoryLock(canonical)
                self._locks[key] = lock
                logger.debug(f"Allocated directory lock for {key}")
        return lock

    def __contains__(self, path: Union[str, os.PathLike]) -> bool:
        key = str(self.canonical_path(path))
        with self._lock:
            return self._locks.get(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._locks)


default_registry = LockRegistry()
