"""
Serializers
===========

A serializer turns one kind of value into bytes and back. Every serializer
must satisfy ``decode(encode(x)) == x`` for the values it supports.

Stock implementations:
- PassthroughSerializer: raw bytes, unchanged
- StructuredSerializer: JSON-native values and dataclasses, via orjson, inside
  a ``{"root": value}`` envelope so scalars and containers are stored alike
- ObjectSerializer: pickled object graphs compressed with blosc2, decoded by a
  restricted unpickler that only resolves explicitly allowed classes

Directory and Item code only ever talks to :class:`AnySerializer`, which
wraps any object with ``encode``/``decode`` methods (or a pair of callables).
"""

import dataclasses
import io
import logging
import math
import pickle
from abc import ABC, abstractmethod
from types import SimpleNamespace
from typing import Any, Callable, Generic, Iterable, Optional, Tuple, Type, TypeVar

from . import json_utils
from .compression import DecompressionError, compress_bytes, decompress_bytes
from .config import DEFAULT_CONFIG, CompressionConfig
from .error_handling import (
    DecodeError,
    EncodeError,
    NilValueError,
    PersistenceError,
    with_error_handling,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ROOT_FIELD = "root"

# Builtins the restricted unpickler resolves for every ObjectSerializer
_SAFE_BUILTINS = frozenset(
    {
        "bool",
        "bytearray",
        "bytes",
        "complex",
        "dict",
        "float",
        "frozenset",
        "int",
        "list",
        "range",
        "set",
        "slice",
        "str",
        "tuple",
    }
)

_JSON_NATIVE = (str, int, float, bool, list, dict, type(None))


class Serializer(ABC, Generic[T]):
    """Contract between a typed value and its stored bytes."""

    @abstractmethod
    def encode(self, value: T) -> bytes:
        """
        Encode a value to bytes.

        Raises:
            EncodeError: If the value cannot be encoded
        """
        pass

    @abstractmethod
    def decode(self, data: bytes) -> T:
        """
        Decode bytes produced by :meth:`encode`.

        Raises:
            DecodeError: If the bytes cannot be decoded
        """
        pass


class PassthroughSerializer(Serializer[bytes]):
    """Identity serializer for raw bytes."""

    def encode(self, value: bytes) -> bytes:
        if isinstance(value, bytes):
            return value
        if isinstance(value, (bytearray, memoryview)):
            return bytes(value)
        raise EncodeError(
            f"PassthroughSerializer expects bytes, got {type(value).__name__}",
            {"value_type": type(value).__name__},
        )

    def decode(self, data: bytes) -> bytes:
        return bytes(data)


class StructuredSerializer(Serializer[T]):
    """
    Serializer for structured data via orjson.

    Values are wrapped in a single-field envelope, ``{"root": value}``, so a
    top-level ``"hello"`` or ``42`` is stored the same way as a dict or list.

    Only values that decode back equal to themselves are accepted. Without a
    ``value_type`` that means JSON-native values: str, int, finite float,
    bool, None, and lists and str-keyed dicts of those. Tuples, dataclasses
    and datetimes are refused because they would come back as lists, dicts
    and strings.

    Pass ``value_type`` to store one top-level non-JSON shape: dataclasses
    are rebuilt with ``value_type(**root)``, tuples from lists, and any other
    type is checked with ``isinstance``. The contents of that top-level
    value must still be JSON-native.
    """

    def __init__(self, value_type: Optional[Type[T]] = None):
        self.value_type = value_type

    def encode(self, value: T) -> bytes:
        self._check_encodable(value)
        try:
            return json_utils.dumps({ROOT_FIELD: value})
        except (TypeError, ValueError) as e:
            raise EncodeError(
                f"Cannot encode {type(value).__name__} as structured data: {e}",
                {"value_type": type(value).__name__},
            ) from e

    def decode(self, data: bytes) -> T:
        try:
            envelope = json_utils.loads(data)
        except ValueError as e:
            raise DecodeError(f"Stored data is not valid JSON: {e}", {"size": len(data)}) from e

        if not isinstance(envelope, dict) or ROOT_FIELD not in envelope:
            raise DecodeError(
                f"Stored data is missing the '{ROOT_FIELD}' envelope",
                {"size": len(data)},
            )
        return self._restore(envelope[ROOT_FIELD])

    def _check_encodable(self, value: Any) -> None:
        value_type = self.value_type
        if value_type is None:
            _check_json_native(value, ROOT_FIELD)
            return

        if value_type is float and type(value) is int:
            return
        if not isinstance(value, value_type):
            raise EncodeError(
                f"Expected {value_type.__name__}, got {type(value).__name__}",
                {"expected": value_type.__name__, "actual": type(value).__name__},
            )

        if dataclasses.is_dataclass(value_type):
            for f in dataclasses.fields(value):
                _check_json_native(getattr(value, f.name), f"{ROOT_FIELD}.{f.name}")
        elif isinstance(value, tuple):
            for index, item in enumerate(value):
                _check_json_native(item, f"{ROOT_FIELD}[{index}]")
        else:
            _check_json_native(value, ROOT_FIELD)

    def _restore(self, root: Any) -> T:
        value_type = self.value_type
        if value_type is None:
            return root

        if dataclasses.is_dataclass(value_type):
            if not isinstance(root, dict):
                raise DecodeError(
                    f"Expected an object for {value_type.__name__}, got {type(root).__name__}"
                )
            try:
                return value_type(**root)
            except TypeError as e:
                raise DecodeError(f"Cannot rebuild {value_type.__name__}: {e}") from e

        if value_type is tuple and isinstance(root, list):
            return tuple(root)

        # JSON has one number type; an integral float may come back as int
        if value_type is float and isinstance(root, int) and not isinstance(root, bool):
            return float(root)

        if not isinstance(root, value_type):
            raise DecodeError(
                f"Expected {value_type.__name__}, got {type(root).__name__}",
                {"expected": value_type.__name__, "actual": type(root).__name__},
            )
        return root


def _check_json_native(value: Any, location: str) -> None:
    """Raise EncodeError unless ``value`` survives a JSON round trip unchanged."""
    kind = type(value)
    if kind is float:
        # orjson writes NaN and infinities as null
        if not math.isfinite(value):
            raise EncodeError(
                f"Non-finite float {value!r} at {location} cannot be stored as JSON",
                {"location": location},
            )
    elif kind in (str, int, bool, type(None)):
        return
    elif kind is list:
        for index, item in enumerate(value):
            _check_json_native(item, f"{location}[{index}]")
    elif kind is dict:
        for key, item in value.items():
            if type(key) is not str:
                raise EncodeError(
                    f"Dict key {key!r} at {location} is not a string",
                    {"location": location, "key_type": type(key).__name__},
                )
            _check_json_native(item, f"{location}.{key}")
    else:
        raise EncodeError(
            f"{kind.__name__} at {location} does not round-trip through JSON",
            {"location": location, "value_type": kind.__name__},
        )


class _RestrictedUnpickler(pickle.Unpickler):
    """Unpickler that only resolves builtins from a safe list and allowed classes."""

    def __init__(self, file, allowed):
        super().__init__(file)
        self._allowed = allowed

    def find_class(self, module, name):
        if module == "builtins" and name in _SAFE_BUILTINS:
            return super().find_class(module, name)
        if (module, name) in self._allowed:
            return super().find_class(module, name)
        raise pickle.UnpicklingError(f"Class {module}.{name} is not allowed")


class ObjectSerializer(Serializer[T]):
    """
    Serializer for arbitrary object graphs, pickled and blosc2-compressed.

    Decoding is restricted: only the builtin containers and scalars plus the
    classes in ``value_type`` and ``allowed_types`` can be resolved, so a
    tampered file cannot import arbitrary callables. Every class that appears
    anywhere in the stored graph must be allowed.

    Raises :class:`NilValueError` when the stored graph's root is ``None``.
    """

    def __init__(
        self,
        value_type: Type[T],
        allowed_types: Iterable[type] = (),
        compression: Optional[CompressionConfig] = None,
    ):
        if not isinstance(value_type, type):
            raise TypeError(f"value_type must be a class, got {value_type!r}")
        self.value_type = value_type
        self.compression = compression or DEFAULT_CONFIG.compression
        self._allowed = frozenset(
            _class_key(cls) for cls in (value_type, *allowed_types)
        )

    @property
    def allowed_classes(self) -> Tuple[Tuple[str, str], ...]:
        return tuple(sorted(self._allowed))

    @with_error_handling(EncodeError, {"serializer": "ObjectSerializer"})
    def encode(self, value: T) -> bytes:
        if value is None:
            raise EncodeError("Cannot encode None as an object root")
        if not isinstance(value, self.value_type):
            raise EncodeError(
                f"Expected {self.value_type.__name__}, got {type(value).__name__}",
                {"expected": self.value_type.__name__, "actual": type(value).__name__},
            )
        pickled = pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)
        return compress_bytes(
            pickled, codec=self.compression.codec, clevel=self.compression.clevel
        )

    def decode(self, data: bytes) -> T:
        try:
            pickled = decompress_bytes(data)
            value = _RestrictedUnpickler(io.BytesIO(pickled), self._allowed).load()
        except DecompressionError as e:
            raise DecodeError(f"Cannot decompress stored object: {e}", {"size": len(data)}) from e
        except (
            pickle.UnpicklingError,
            EOFError,
            AttributeError,
            ImportError,
            IndexError,
            KeyError,
            TypeError,
            ValueError,
        ) as e:
            raise DecodeError(f"Cannot unarchive stored object: {e}", {"size": len(data)}) from e

        if value is None:
            raise NilValueError(
                "Stored archive decoded to no object",
                {"expected": self.value_type.__name__},
            )
        if not isinstance(value, self.value_type):
            raise DecodeError(
                f"Expected {self.value_type.__name__}, got {type(value).__name__}",
                {"expected": self.value_type.__name__, "actual": type(value).__name__},
            )
        return value


class AnySerializer(Serializer[T]):
    """
    Type-erased serializer.

    Wraps any object exposing ``encode``/``decode``. Exceptions from the
    wrapped callables that are not already EncodeError/DecodeError are
    converted, so callers only ever handle the persistence error types.
    """

    def __init__(self, serializer: Any, name: Optional[str] = None):
        if isinstance(serializer, AnySerializer):
            encoder, decoder = serializer._encoder, serializer._decoder
            name = name or serializer.name
        else:
            encoder, decoder = serializer.encode, serializer.decode
            name = name or type(serializer).__name__
        self._encoder: Callable[[T], bytes] = encoder
        self._decoder: Callable[[bytes], T] = decoder
        self.name = name

    @classmethod
    def from_functions(
        cls,
        encode: Callable[[T], bytes],
        decode: Callable[[bytes], T],
        name: str = "FunctionSerializer",
    ) -> "AnySerializer[T]":
        """Build a serializer from a pair of plain callables."""
        return cls(SimpleNamespace(encode=encode, decode=decode), name=name)

    def encode(self, value: T) -> bytes:
        try:
            data = self._encoder(value)
        except EncodeError:
            raise
        except PersistenceError as e:
            raise EncodeError(str(e), e.context) from e
        except Exception as e:
            raise EncodeError(
                f"{self.name} failed to encode {type(value).__name__}: {e}",
                {"serializer": self.name, "original_error_type": type(e).__name__},
            ) from e
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise EncodeError(
                f"{self.name} returned {type(data).__name__}, expected bytes",
                {"serializer": self.name},
            )
        return bytes(data)

    def decode(self, data: bytes) -> T:
        try:
            return self._decoder(data)
        except DecodeError:
            raise
        except PersistenceError as e:
            raise DecodeError(str(e), e.context) from e
        except Exception as e:
            raise DecodeError(
                f"{self.name} failed to decode {len(data)} bytes: {e}",
                {"serializer": self.name, "original_error_type": type(e).__name__},
            ) from e

    def __repr__(self):
        return f"AnySerializer({self.name})"


def default_serializer_for(
    value_type: Optional[type] = None,
    compression: Optional[CompressionConfig] = None,
) -> Serializer:
    """
    Pick the stock serializer for a value type.

    - ``bytes``: PassthroughSerializer
    - ``None``, JSON-native types, tuples and dataclasses:
      StructuredSerializer
    - any other class: ObjectSerializer restricted to that class
    """
    if value_type is bytes:
        return PassthroughSerializer()
    if value_type is None or value_type in _JSON_NATIVE or value_type is tuple:
        return StructuredSerializer(value_type)
    if dataclasses.is_dataclass(value_type):
        return StructuredSerializer(value_type)
    return ObjectSerializer(value_type, compression=compression)


def _class_key(cls: type) -> Tuple[str, str]:
    return cls.__module__, cls.__qualname__
