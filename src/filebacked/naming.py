"""
Key to file name mapping.

Keys are arbitrary strings; file names are a stable hash of the key with the
key's extension kept, so tools that sniff types from extensions still work on
the stored files.
"""

import re

import xxhash

_SAFE_EXTENSION = re.compile(r"^\.[A-Za-z0-9_-]{1,16}$")


def hash_name(name: str) -> str:
    """Return a 32 character hex digest of ``name``. Uniqueness, not security."""
    return xxhash.xxh3_128(name.encode("utf-8", "surrogatepass")).hexdigest()


def key_extension(key: str) -> str:
    """
    Return the extension of the key's last path component, including the dot.

    >>> key_extension("blob.bin")
    '.bin'
    >>> key_extension("archive.tar.gz")
    '.gz'
    >>> key_extension(".hidden")
    ''
    """
    last = re.split(r"[/\\]", key)[-1]
    stem, dot, ext = last.rpartition(".")
    if not dot or not stem.strip("."):
        return ""
    suffix = "." + ext
    if not _SAFE_EXTENSION.match(suffix):
        return ""
    return suffix


def file_name_for_key(key: str) -> str:
    """Map a key to a file name that is always a single safe path component."""
    return hash_name(key) + key_extension(key)
