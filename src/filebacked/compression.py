"""Byte compression for pickled objects, using blosc2.

The object serializer pickles first and then compresses the whole pickle as
a single blosc2 frame. Frames larger than ``blosc2.MAX_BUFFERSIZE`` are
rejected rather than split.
"""

import logging

import blosc2

logger = logging.getLogger(__name__)

_CODEC_MAP = {
    "lz4": blosc2.Codec.LZ4,
    "lz4hc": blosc2.Codec.LZ4HC,
    "zstd": blosc2.Codec.ZSTD,
    "zlib": blosc2.Codec.ZLIB,
    "blosclz": blosc2.Codec.BLOSCLZ,
}


class CompressionError(Exception):
    """Raised when compression fails."""

    pass


class DecompressionError(Exception):
    """Raised when decompression fails."""

    pass


def compress_bytes(data: bytes, codec: str = "lz4", clevel: int = 5) -> bytes:
    """Compress ``data`` into a single blosc2 frame.

    Parameters
    ----------
    data : bytes
        Raw bytes, typically a pickle.
    codec : str
        One of ``lz4``, ``lz4hc``, ``zstd``, ``zlib``, ``blosclz``.
    clevel : int
        Compression level, 0-9.

    Raises
    ------
    CompressionError
        If the codec is unknown, the input is too large, or blosc2 fails.
    """
    try:
        codec_enum = _CODEC_MAP[codec.lower()]
    except KeyError:
        raise CompressionError(
            f"Unsupported codec: {codec}. Supported: {sorted(_CODEC_MAP)}"
        ) from None

    if len(data) > blosc2.MAX_BUFFERSIZE:
        raise CompressionError(
            f"Data of {len(data)} bytes exceeds blosc2 buffer limit {blosc2.MAX_BUFFERSIZE}"
        )

    try:
        # typesize=1: pickles have no fixed element width to shuffle on
        compressed = blosc2.compress(
            data,
            typesize=1,
            clevel=clevel,
            filter=blosc2.Filter.NOFILTER,
            codec=codec_enum,
        )
    except Exception as e:
        raise CompressionError(f"Failed to compress data: {e}") from e

    logger.debug(f"Compressed {len(data)} -> {len(compressed)} bytes with {codec}@{clevel}")
    return bytes(compressed)


def decompress_bytes(data: bytes) -> bytes:
    """Decompress a frame produced by :func:`compress_bytes`."""
    try:
        decompressed = blosc2.decompress(data)
    except Exception as e:
        raise DecompressionError(f"Failed to decompress data: {e}") from e
    if not isinstance(decompressed, (bytes, bytearray, memoryview)):
        raise DecompressionError(
            f"Unexpected decompression result type: {type(decompressed).__name__}"
        )
    return bytes(decompressed)
