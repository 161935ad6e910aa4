"""
Byte oriented algorithms: ``GZIP_1``, ``GZIP_2`` and the identity
``NOCOMPRESS``.  They accept every element type the typed codec knows and
are always lossless.
"""

import gzip
import zlib

import numpy as np

from tilefits.codec import decode, encode
from tilefits.compression.base import CompressionAlgorithm, GzipOption, \
                                      NoCompressOption, _fill
from tilefits.errors import InvalidStreamError, SizeMismatchError


def _tile_bytes(tile):
    return encode(np.asarray(tile))


def _decode_into(raw, out):
    try:
        values = decode(raw, out.shape, out.dtype)
    except SizeMismatchError as exc:
        raise InvalidStreamError('invalid stream: %s' % exc) from exc
    return _fill(out, values)


def shuffle(raw, itemsize):
    """
    Reorder the bytes of big-endian values so that all most significant
    bytes come first, then all second bytes, and so on.
    """

    if itemsize <= 1:
        return bytes(raw)
    return np.frombuffer(raw, dtype=np.uint8).reshape(-1, itemsize) \
             .T.tobytes()


def unshuffle(raw, itemsize):
    """The inverse of `shuffle`."""

    if itemsize <= 1:
        return bytes(raw)
    if len(raw) % itemsize:
        raise InvalidStreamError(
            'invalid stream: %d bytes do not hold whole %d byte values'
            % (len(raw), itemsize))
    return np.frombuffer(raw, dtype=np.uint8).reshape(itemsize, -1) \
             .T.tobytes()


def _gunzip(data):
    try:
        return gzip.decompress(bytes(data))
    except (OSError, EOFError, zlib.error) as exc:
        raise InvalidStreamError('invalid stream: %s' % exc) from exc


def _itemsize(dtype):
    if dtype.kind == 'b':
        return 1
    return dtype.itemsize


class GzipCompressor(CompressionAlgorithm):
    """``GZIP_1``: gzip of the big-endian bytes of the tile."""

    name = 'GZIP_1'
    option_class = GzipOption

    def compress(self, tile, option=None):
        option = self._option(option)
        return gzip.compress(_tile_bytes(tile), compresslevel=option.level,
                             mtime=0)

    def decompress(self, data, out, option=None):
        self._option(option)
        return _decode_into(_gunzip(data), out)


class ShuffledGzipCompressor(GzipCompressor):
    """
    ``GZIP_2``: like ``GZIP_1`` but the bytes of the values are shuffled
    first, which usually deflates better for multi-byte types.
    """

    name = 'GZIP_2'

    def compress(self, tile, option=None):
        option = self._option(option)
        tile = np.asarray(tile)
        raw = shuffle(_tile_bytes(tile), _itemsize(tile.dtype))
        return gzip.compress(raw, compresslevel=option.level, mtime=0)

    def decompress(self, data, out, option=None):
        self._option(option)
        raw = unshuffle(_gunzip(data), _itemsize(out.dtype))
        return _decode_into(raw, out)


class NoCompressor(CompressionAlgorithm):
    """``NOCOMPRESS``: the tile's big-endian bytes, unchanged."""

    name = 'NOCOMPRESS'
    option_class = NoCompressOption

    def compress(self, tile, option=None):
        self._option(option)
        return _tile_bytes(tile)

    def decompress(self, data, out, option=None):
        self._option(option)
        return _decode_into(bytes(data), out)
