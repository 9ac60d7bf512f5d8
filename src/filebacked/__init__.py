"""
filebacked - Keyed, file-backed persistence with an in-memory cache overlay.

A Directory stores typed values under string keys, one file per key, named
by a stable hash of the key. Items are typed handles to one key that cache
the decoded value, so repeated reads never touch the disk.

Key Features:
- Atomic writes (temp file + rename); readers never see partial files
- One reader/writer lock per physical path, shared by every handle to it
- Pluggable serializers: raw bytes, orjson structured data, compressed pickles
- Optional deferred writes on a per-path background worker
- Platform directory helpers via platformdirs

Quick Start:
    >>> from filebacked import Directory
    >>>
    >>> directory = Directory.in_temporary_directory("example")
    >>> item = directory.make_item("greeting", value_type=str)
    >>> item.get() is None
    True
    >>> item.set("hello")
    >>> item.value
    'hello'
    >>> directory.clear()
"""

from .config import CompressionConfig, PersistenceConfig, StorageConfig, create_config
from .directory import Directory
from .error_handling import (
    DecodeError,
    EncodeError,
    NilValueError,
    PersistenceConfigurationError,
    PersistenceError,
    PersistenceIOError,
    set_diagnostic_hook,
)
from .item import FileBacked, FileBackedOptional, Item, ItemOptions
from .locks import DirectoryLock, LockRegistry, ReadWriteLock, default_registry
from .naming import file_name_for_key, hash_name
from .serializers import (
    AnySerializer,
    ObjectSerializer,
    PassthroughSerializer,
    Serializer,
    StructuredSerializer,
    default_serializer_for,
)

__version__ = "0.1.0"

__all__ = [
    # Core classes
    "Directory",
    "Item",
    "ItemOptions",
    "FileBacked",
    "FileBackedOptional",
    # Serializers
    "Serializer",
    "AnySerializer",
    "PassthroughSerializer",
    "StructuredSerializer",
    "ObjectSerializer",
    "default_serializer_for",
    # Locks
    "ReadWriteLock",
    "DirectoryLock",
    "LockRegistry",
    "default_registry",
    # Naming
    "file_name_for_key",
    "hash_name",
    # Configuration
    "PersistenceConfig",
    "StorageConfig",
    "CompressionConfig",
    "create_config",
    # Errors
    "PersistenceError",
    "EncodeError",
    "DecodeError",
    "NilValueError",
    "PersistenceIOError",
    "PersistenceConfigurationError",
    "set_diagnostic_hook",
    # Version info
    "__version__",
]
