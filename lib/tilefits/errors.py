"""
Exception classes raised across the public boundary of tilefits.

Every failure derives from `FITSError`.  Where a failure corresponds to a
builtin exception category the class also derives from that builtin, so
code written against ``ValueError``/``IOError``/``NotImplementedError``
keeps working.
"""


class FITSError(Exception):
    """Base class of all tilefits failures."""


class FormatError(FITSError, ValueError):
    """
    Malformed header or data: missing mandatory keywords, unparsable
    cards, checksum strings that break the encoding rules.
    """


class VerifyError(FormatError):
    """
    Verify exception class.
    """


class ChecksumFormatError(FormatError):
    """An encoded checksum string that cannot be decoded."""


class MissingChecksumError(FormatError):
    """The ``CHECKSUM`` or ``DATASUM`` card needed for verification is absent."""


class ArgumentError(FITSError, ValueError):
    """A caller-construction error detected before any I/O is attempted."""


class UnsupportedElementTypeError(ArgumentError, TypeError):
    pass


class SizeMismatchError(ArgumentError):
    pass


class TileGeometryError(ArgumentError):
    """Invalid tile corners, lengths or steps."""


class CompressionError(FITSError):
    """
    A compression algorithm could not represent a tile.

    When raised out of a tiled pass the ``tile_index`` attribute names the
    tile whose work unit failed.
    """

    tile_index = None


class ValueOutOfRangeError(CompressionError, ValueError):
    pass


class InvalidStreamError(FITSError, ValueError):
    """A compressed tile stream is malformed and cannot be decoded."""

    tile_index = None


class FITSIOError(FITSError, IOError):
    """A transport failure while reading or writing bytes."""


class UnsupportedFeatureError(FITSError, NotImplementedError):
    pass


class StridingNotSupportedError(UnsupportedFeatureError):
    pass
