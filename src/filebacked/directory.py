"""
Keyed Persistence Directory
===========================

A :class:`Directory` is a flat keyed store on disk: each key maps to one file
named after a hash of the key. All handles for the same physical path share
one :class:`~filebacked.locks.DirectoryLock`, so reads run concurrently while
writes, deletes and clears are exclusive, even across handles that were
constructed independently.

Usage:
    from filebacked import Directory

    directory = Directory.in_temporary_directory("thumbnails")
    directory.write_data(b"\\x89PNG...", "avatar.png")
    data = directory.data_for_key("avatar.png")

    item = directory.make_item("settings", value_type=dict)
    item.set({"theme": "dark"})
"""

import logging
import os
import shutil
import tempfile
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Optional, Union

import platformdirs

from .config import DEFAULT_CONFIG, PersistenceConfig
from .error_handling import (
    PersistenceConfigurationError,
    file_operation,
    report_unhandled,
)
from .item import Item, ItemOptions
from .locks import LockRegistry, default_registry
from .naming import file_name_for_key, hash_name
from .serializers import AnySerializer, Serializer, default_serializer_for

logger = logging.getLogger(__name__)

_USER_DIRECTORY_RESOLVERS = {
    "cache": platformdirs.user_cache_path,
    "data": platformdirs.user_data_path,
    "state": platformdirs.user_state_path,
    "config": platformdirs.user_config_path,
}


class Directory:
    """
    A physical directory managed as a flat keyed store.

    Construction never touches the disk. The directory is created on the
    first write and removed only by :meth:`clear`.
    """

    def __init__(
        self,
        path: Union[str, os.PathLike],
        *,
        registry: Optional[LockRegistry] = None,
        config: Optional[PersistenceConfig] = None,
    ):
        """
        Bind a handle to ``path``.

        Args:
            path: Directory location; relative paths are made absolute
            registry: Lock registry to share locks through (process default if None)
            config: Storage and compression configuration
        """
        self._url = LockRegistry.canonical_path(path)
        self.config = config or DEFAULT_CONFIG
        self._registry = registry or default_registry
        self._lock = self._registry.lock_for(self._url)

    @classmethod
    def named(
        cls,
        base_directory: Union[str, os.PathLike],
        name: str,
        **kwargs,
    ) -> "Directory":
        """Directory at ``base_directory / namespace / hash_name(name)``."""
        config = kwargs.get("config") or DEFAULT_CONFIG
        path = Path(base_directory) / config.namespace / hash_name(name)
        return cls(path, **kwargs)

    @classmethod
    def in_temporary_directory(cls, name: str, **kwargs) -> "Directory":
        """Named directory under the system temporary directory."""
        return cls.named(tempfile.gettempdir(), name, **kwargs)

    @classmethod
    def in_user_directory(
        cls,
        kind: str,
        name: str,
        app_name: str = "filebacked",
        **kwargs,
    ) -> "Directory":
        """
        Named directory under a per-user platform directory.

        Args:
            kind: One of ``cache``, ``data``, ``state``, ``config``
            name: Logical directory name (hashed into the path)
            app_name: Application name used by platformdirs

        Raises:
            PersistenceConfigurationError: If ``kind`` is unknown
            PersistenceIOError: If the base directory cannot be created
        """
        try:
            resolver = _USER_DIRECTORY_RESOLVERS[kind]
        except KeyError:
            raise PersistenceConfigurationError(
                f"Unknown user directory kind: {kind!r}. "
                f"Available: {sorted(_USER_DIRECTORY_RESOLVERS)}",
                {"kind": kind},
            ) from None

        base = resolver(app_name, appauthor=False)
        with file_operation("create base directory", base):
            base.mkdir(parents=True, exist_ok=True)
        return cls.named(base, name, **kwargs)

    @property
    def url(self) -> Path:
        return self._url

    @property
    def lock(self):
        """The DirectoryLock shared with every other handle for this path."""
        return self._lock

    def file_url_for_key(self, key: str) -> Path:
        """Path the value for ``key`` is stored at, whether or not it exists."""
        return self._url / file_name_for_key(key)

    # ------------------------------------------------------------------
    # Byte-level operations
    # ------------------------------------------------------------------

    def data_for_key(self, key: str) -> Optional[bytes]:
        """
        Read the stored bytes for ``key``.

        Returns:
            File contents, or None if nothing is stored under ``key``

        Raises:
            PersistenceIOError: If the file exists but cannot be read
        """
        path = self.file_url_for_key(key)
        with self._lock.read_locked():
            with file_operation("read", path):
                try:
                    return path.read_bytes()
                except (FileNotFoundError, NotADirectoryError):
                    return None

    def write_data(self, data: Optional[bytes], key: str) -> None:
        """
        Store ``data`` under ``key``, or delete the key when ``data`` is None.

        Content writes are atomic: readers see either the old file or the
        new one, never a partial write. Deleting a missing key is a no-op.

        Raises:
            PersistenceIOError: If the filesystem operation fails
        """
        path = self.file_url_for_key(key)
        with self._lock.write_locked():
            if data is None:
                self._remove_file(path)
            else:
                self._create_if_needed()
                self._atomic_write(path, data)

    def write_data_deferred(self, data: Optional[bytes], key: str) -> Future:
        """
        Queue :meth:`write_data` on this path's background worker.

        Returns immediately. Failures cannot reach the caller; they are
        logged and passed to the diagnostic hook instead. The returned
        future resolves once the write has run, successfully or not.
        """
        path = self.file_url_for_key(key)

        def run():
            try:
                self.write_data(data, key)
            except Exception as e:
                report_unhandled(
                    e,
                    {
                        "operation": "deferred delete" if data is None else "deferred write",
                        "key": key,
                        "path": str(path),
                    },
                )

        return self._lock.submit(run)

    def wait_for_pending_writes(self) -> None:
        """Block until all deferred writes queued so far for this path have run."""
        self._lock.drain()

    def contains(self, key: str) -> bool:
        """Whether a file is stored for ``key``."""
        path = self.file_url_for_key(key)
        with self._lock.read_locked():
            return path.is_file()

    def clear(self) -> None:
        """
        Remove the directory and everything in it. No-op if it does not exist.

        Raises:
            PersistenceIOError: If removal fails
        """
        with self._lock.write_locked():
            with file_operation("clear", self._url):
                if self._url.is_dir() and not self._url.is_symlink():
                    shutil.rmtree(self._url)
                    logger.debug(f"Cleared directory {self._url}")
                elif self._url.exists() or self._url.is_symlink():
                    self._url.unlink()

    def current_disk_usage(self) -> int:
        """
        Total size in bytes of the files directly inside the directory.

        Returns 0 if the directory is missing or cannot be listed.
        """
        with self._lock.read_locked():
            total = 0
            try:
                with os.scandir(self._url) as entries:
                    for entry in entries:
                        try:
                            if entry.is_file(follow_symlinks=False):
                                total += entry.stat(follow_symlinks=False).st_size
                        except OSError:
                            continue
            except OSError:
                return 0
            return total

    # ------------------------------------------------------------------
    # Typed operations
    # ------------------------------------------------------------------

    def get(self, key: str, serializer: Serializer) -> Any:
        """Read and decode the value for ``key``; None if absent."""
        data = self.data_for_key(key)
        if data is None:
            return None
        return AnySerializer(serializer).decode(data)

    def set(self, value: Any, key: str, serializer: Serializer) -> None:
        """Encode and store ``value`` under ``key``; None deletes the key."""
        data = None if value is None else AnySerializer(serializer).encode(value)
        self.write_data(data, key)

    def make_item(
        self,
        key: str,
        serializer: Optional[Serializer] = None,
        *,
        value_type: Optional[type] = None,
        options: ItemOptions = ItemOptions.NONE,
    ) -> Item:
        """
        Create an :class:`Item` bound to ``key`` in this directory.

        Without an explicit serializer one is chosen from ``value_type``:
        bytes pass through, JSON-native types and dataclasses use the
        structured codec, other classes use the object codec.
        """
        if serializer is None:
            serializer = default_serializer_for(
                value_type, compression=self.config.compression
            )
        return Item(self, key, serializer, options=options)

    # ------------------------------------------------------------------
    # Internals; callers must hold the write grant
    # ------------------------------------------------------------------

    def _create_if_needed(self) -> None:
        if self._url.is_dir():
            return
        with file_operation("create directory", self._url):
            if self._url.exists() or self._url.is_symlink():
                logger.warning(f"Replacing non-directory entry at {self._url}")
                self._url.unlink()
            if self.config.private_directories:
                self._url.mkdir(mode=0o700, parents=True, exist_ok=True)
            else:
                self._url.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created persistence directory {self._url}")

    def _atomic_write(self, path: Path, data: bytes) -> None:
        storage = self.config.storage
        with file_operation("write", path):
            fd, temp_name = tempfile.mkstemp(
                dir=self._url, prefix=f".{path.name}.", suffix=storage.temp_suffix
            )
            temp_path = Path(temp_name)
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                    if storage.fsync_writes:
                        f.flush()
                        os.fsync(f.fileno())
                os.replace(temp_path, path)
            except BaseException:
                temp_path.unlink(missing_ok=True)
                raise
        logger.debug(f"Wrote {len(data)} bytes to {path}")

    def _remove_file(self, path: Path) -> None:
        with file_operation("delete", path):
            try:
                path.unlink()
            except (FileNotFoundError, NotADirectoryError):
                return
        logger.debug(f"Deleted {path}")

    def __eq__(self, other):
        if not isinstance(other, Directory):
            return NotImplemented
        return self._url == other._url

    def __hash__(self):
        return hash(self._url)

    def __repr__(self):
        return f"Directory({str(self._url)!r})"

