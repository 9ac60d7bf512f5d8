"""
Typed, cached handles to one key in a Directory.

An :class:`Item` caches the decoded value after the first read or any write,
so repeated reads never touch the disk until :meth:`Item.clear_cache` is
called. The cache belongs to the Item object; two Items for the same key do
not see each other's writes until they refresh.
"""

import enum
import logging
import threading
from typing import TYPE_CHECKING, Any, Generic, Optional, TypeVar

from .error_handling import PersistenceConfigurationError, PersistenceError, report_unhandled
from .serializers import AnySerializer

if TYPE_CHECKING:
    from .directory import Directory

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ItemOptions(enum.Flag):
    NONE = 0
    # Queue disk writes on the directory's background worker
    ASYNC_WRITE_DISK = enum.auto()


class _CacheCell:
    __slots__ = ("value", "is_valid", "lock")

    def __init__(self):
        self.value = None
        self.is_valid = False
        self.lock = threading.Lock()


class Item(Generic[T]):
    """
    Cached handle to the value stored under one key.

    Creating an Item does no I/O. ``get()`` reads from disk once and caches
    the result, present or absent; ``set()`` writes and updates the cache.

    With ``ItemOptions.ASYNC_WRITE_DISK`` the disk write is queued and
    ``set()`` returns at once. The cache still updates immediately, so this
    Item reads back the new value before it lands on disk. Write failures in
    that mode cannot be raised to anyone: they are logged and sent to the
    diagnostic hook (see :func:`filebacked.error_handling.set_diagnostic_hook`).
    Encoding still happens in the caller's thread, so EncodeError is raised
    in both modes.
    """

    def __init__(
        self,
        directory: "Directory",
        key: str,
        serializer: Any,
        options: ItemOptions = ItemOptions.NONE,
    ):
        self._directory = directory
        self._key = key
        self._serializer: AnySerializer[T] = AnySerializer(serializer)
        self._options = options
        self._url = directory.file_url_for_key(key)
        self._cache = _CacheCell()

    @property
    def directory(self) -> "Directory":
        return self._directory

    @property
    def key(self) -> str:
        return self._key

    @property
    def url(self):
        """File path this item is stored at."""
        return self._url

    @property
    def options(self) -> ItemOptions:
        return self._options

    @property
    def serializer(self) -> AnySerializer:
        return self._serializer

    @property
    def deferred(self) -> bool:
        return bool(self._options & ItemOptions.ASYNC_WRITE_DISK)

    def get(self) -> Optional[T]:
        """
        Return the value, reading from disk only if the cache is invalid.

        Raises:
            DecodeError: If the stored bytes cannot be decoded
            PersistenceIOError: If the file cannot be read
        """
        with self._cache.lock:
            if self._cache.is_valid:
                return self._cache.value

            data = self._directory.data_for_key(self._key)
            value = None if data is None else self._serializer.decode(data)
            self._cache.value = value
            self._cache.is_valid = True
            return value

    def set(self, value: Optional[T]) -> None:
        """
        Store ``value``, or delete the stored value when ``value`` is None.

        Raises:
            EncodeError: If the value cannot be encoded
            PersistenceIOError: If a synchronous write fails
        """
        data = None if value is None else self._serializer.encode(value)
        with self._cache.lock:
            if self.deferred:
                self._directory.write_data_deferred(data, self._key)
            else:
                self._directory.write_data(data, self._key)
            self._cache.value = value
            self._cache.is_valid = True

    def clear_cache(self) -> None:
        """Invalidate the cache; the next ``get()`` reads from disk."""
        with self._cache.lock:
            self._cache.value = None
            self._cache.is_valid = False

    @property
    def is_cached(self) -> bool:
        with self._cache.lock:
            return self._cache.is_valid

    @property
    def value(self) -> Optional[T]:
        """
        Non-throwing access to :meth:`get` / :meth:`set`.

        This is a lossy convenience layer. Errors are logged with their
        traceback and sent to the diagnostic hook, then reading returns None
        and writing does nothing. Do not use it where a failed read must be
        told apart from an absent value; call ``get()``/``set()`` instead.
        """
        try:
            return self.get()
        except PersistenceError as e:
            report_unhandled(e, {"operation": "get", "key": self._key}, level=logging.ERROR)
            return None

    @value.setter
    def value(self, new_value: Optional[T]) -> None:
        try:
            self.set(new_value)
        except PersistenceError as e:
            report_unhandled(e, {"operation": "set", "key": self._key}, level=logging.ERROR)

    def __repr__(self):
        return f"Item(key={self._key!r}, url={str(self._url)!r}, serializer={self._serializer.name})"


class FileBacked(Generic[T]):
    """
    Descriptor exposing an Item as a plain attribute with a default.

    Example:
        >>> class Preferences:
        ...     theme = FileBacked(directory.make_item("theme", value_type=str), default="light")
        >>> Preferences().theme
        'light'

    Reads and writes go through :attr:`Item.value`, so errors are logged
    rather than raised. Deleting the attribute deletes the stored value.
    """

    def __init__(self, item: Item[T], default: T):
        if default is None:
            raise PersistenceConfigurationError(
                "FileBacked needs a non-None default; use FileBackedOptional instead",
                {"key": item.key},
            )
        self.item = item
        self.default = default

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self
        value = self.item.value
        return self.default if value is None else value

    def __set__(self, obj, value: T) -> None:
        self.item.value = value

    def __delete__(self, obj) -> None:
        self.item.value = None


class FileBackedOptional(Generic[T]):
    """Descriptor exposing an Item as a plain attribute that may be None."""

    def __init__(self, item: Item[T]):
        self.item = item

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self
        return self.item.value

    def __set__(self, obj, value: Optional[T]) -> None:
        self.item.value = value

    def __delete__(self, obj) -> None:
        self.item.value = None
