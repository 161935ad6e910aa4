"""
The compression algorithm library.

Algorithms are looked up by the names used in the ``ZCMPTYPE`` (images) and
``ZCTYPn`` (tables) header keywords through the single `ALGORITHMS` table.
"""

from tilefits.compression.base import CompressionAlgorithm, \
     CompressionOption, GzipOption, HCompressOption, NoCompressOption, \
     PlioOption, RiceOption
from tilefits.compression.deflate import GzipCompressor, NoCompressor, \
     ShuffledGzipCompressor
from tilefits.compression.hcompress import HCompressor
from tilefits.compression.plio import PlioCompressor
from tilefits.compression.quantize import NO_DITHER, QUANTIZE_METHODS, \
     QuantizeOption, SUBTRACTIVE_DITHER_1, SUBTRACTIVE_DITHER_2
from tilefits.compression.rice import RiceCompressor
from tilefits.errors import UnsupportedFeatureError


DEFAULT_COMPRESSION_TYPE = 'RICE_1'

# 'RICE_ONE' is an alternate spelling found in older files
ALGORITHMS = {
    'RICE_1': RiceCompressor(),
    'RICE_ONE': RiceCompressor(),
    'GZIP_1': GzipCompressor(),
    'GZIP_2': ShuffledGzipCompressor(),
    'PLIO_1': PlioCompressor(),
    'HCOMPRESS_1': HCompressor(),
    'NOCOMPRESS': NoCompressor(),
}

COMPRESSION_TYPES = sorted(ALGORITHMS)


def get_algorithm(name):
    """
    Return the algorithm registered under ``name`` (case insensitive).

    Raises
    ------
    UnsupportedFeatureError
        for names not in `ALGORITHMS`
    """

    if isinstance(name, CompressionAlgorithm):
        return name
    key = str(name).strip().upper()
    try:
        return ALGORITHMS[key]
    except KeyError:
        raise UnsupportedFeatureError(
            'Unsupported compression algorithm %r; supported algorithms are '
            '%s' % (name, ', '.join(COMPRESSION_TYPES)))


def is_known_algorithm(name):
    return str(name).strip().upper() in ALGORITHMS
