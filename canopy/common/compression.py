"""Zstd compression for cached page bodies.

Downloaded HTML compresses very well, so the filesystem cache can optionally
store raw bodies zstd-compressed.
"""

from __future__ import annotations

import zstandard as zstd

# Default compression level (3 is a good balance of speed/ratio)
DEFAULT_COMPRESSION_LEVEL = 3


def compress(data: bytes, level: int = DEFAULT_COMPRESSION_LEVEL) -> bytes:
    """Compress data using zstd.

    Args:
        data: The data to compress.
        level: Compression level (1-22, default 3).

    Returns:
        Compressed data bytes.
    """
    return zstd.ZstdCompressor(level=level).compress(data)


def decompress(data: bytes) -> bytes:
    """Decompress zstd-compressed data."""
    return zstd.ZstdDecompressor().decompress(data)
