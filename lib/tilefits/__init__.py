"""
tilefits reads and writes FITS files with tiled compression.

Images and binary tables are split into tiles that are compressed
independently (Rice, HCOMPRESS, PLIO, GZIP or none, with optional
quantization of floating point images), and every header data unit can
carry the ``CHECKSUM``/``DATASUM`` integrity cards.

    >>> import tilefits
    >>> with tilefits.open('image.fits') as hdul:
    ...     comp = tilefits.CompImageHDU.from_image_hdu(hdul[0])
    ...     comp.writeto('image.fz.fits', checksum=True)
"""

__version__ = '1.0.0'

from tilefits import core
from tilefits.card import Card
from tilefits.column import Column, ColDefs
from tilefits.core import set_check_ascii_strings, \
     set_enable_long_keywords, set_enable_long_strings, set_max_workers
from tilefits.errors import ArgumentError, ChecksumFormatError, \
     CompressionError, FITSError, FITSIOError, FormatError, \
     InvalidStreamError, MissingChecksumError, SizeMismatchError, \
     StridingNotSupportedError, TileGeometryError, \
     UnsupportedElementTypeError, UnsupportedFeatureError, \
     ValueOutOfRangeError, VerifyError
from tilefits.fitsrec import FITS_rec
from tilefits.header import Header
from tilefits.hdu import *

open = fitsopen

__all__ = ['open', 'fitsopen', 'Card', 'Header', 'Column', 'ColDefs',
           'FITS_rec', 'HDUList', 'PrimaryHDU', 'ImageHDU', 'ImageTiler',
           'BinTableHDU', 'new_table', 'CompImageHDU', 'CompImageTiler',
           'CompTableHDU', 'DELAYED', 'set_enable_long_keywords',
           'set_enable_long_strings', 'set_check_ascii_strings',
           'set_max_workers', 'FITSError', 'FormatError', 'VerifyError',
           'ChecksumFormatError', 'MissingChecksumError', 'ArgumentError',
           'UnsupportedElementTypeError', 'SizeMismatchError',
           'TileGeometryError', 'CompressionError', 'ValueOutOfRangeError',
           'InvalidStreamError', 'FITSIOError', 'UnsupportedFeatureError',
           'StridingNotSupportedError']
