"""
Conversion between native numpy arrays and their FITS on-disk form.

All multi-byte values are big-endian; booleans are the ASCII bytes ``T``
and ``F``; strings are right-padded with blanks to their field width and,
when read back, are cut at the first NUL byte and stripped of surrounding
blanks.
"""

import sys
import warnings

import numpy as np

from tilefits import core
from tilefits.errors import SizeMismatchError, UnsupportedElementTypeError
from tilefits.util import _is_offset_int, _offset_storage, _offset_zero


# mappings between FITS and numpy typecodes
BITPIX2DTYPE = {8: 'uint8', 16: 'int16', 32: 'int32', 64: 'int64',
                -32: 'float32', -64: 'float64'}
DTYPE2BITPIX = {'uint8': 8, 'int8': 8, 'int16': 16, 'uint16': 16,
                'int32': 32, 'uint32': 32, 'int64': 64, 'uint64': 64,
                'float32': -32, 'float64': -64}

# element types understood by encode()/decode(); the value is the kind of
# conversion applied
NUMERIC_KINDS = 'iuf'
ELEMENT_KINDS = {
    'int8': 'numeric', 'uint8': 'numeric', 'int16': 'numeric',
    'uint16': 'numeric', 'int32': 'numeric', 'uint32': 'numeric',
    'int64': 'numeric', 'uint64': 'numeric',
    'float32': 'numeric', 'float64': 'numeric',
    'complex64': 'numeric', 'complex128': 'numeric',
    'bool': 'bool', 'char': 'char', 'string': 'string',
}

if sys.byteorder == 'little':
    SWAP_TYPES = ('<', '=')
else:
    SWAP_TYPES = ('<',)


def element_kind(element_type):
    """
    Classify an element type, given as a numpy dtype (or anything
    `numpy.dtype` accepts) or one of the names ``'bool'``, ``'char'`` and
    ``'string'``.

    Returns a ``(kind, dtype)`` pair where ``kind`` is one of
    ``'numeric'``, ``'bool'``, ``'char'`` or ``'string'``.
    """

    if isinstance(element_type, str) and element_type in ('char', 'string'):
        return element_type, np.dtype('S1')
    try:
        dtype = np.dtype(element_type)
    except TypeError:
        raise UnsupportedElementTypeError(
            'unsupported element type: %r' % (element_type,))

    if dtype.kind == 'b':
        return 'bool', dtype
    elif dtype.kind in ('S', 'U'):
        if dtype.itemsize == 1 and dtype.kind == 'S':
            return 'char', dtype
        return 'string', dtype
    elif dtype.kind in NUMERIC_KINDS or dtype.kind == 'c':
        if dtype.newbyteorder('=').name not in ELEMENT_KINDS:
            raise UnsupportedElementTypeError(
                'unsupported element type: %s' % dtype)
        return 'numeric', dtype
    raise UnsupportedElementTypeError('unsupported element type: %s' % dtype)


def to_big_endian(array):
    """
    Returns ``array`` (or a copy of it) with a big-endian dtype; the
    input is never modified.
    """

    dtype = array.dtype
    if dtype.itemsize == 1 or dtype.byteorder in ('>', '|'):
        return array
    if dtype.str[0] in SWAP_TYPES:
        return array.astype(dtype.newbyteorder('>'))
    return array


def encode(array, width=None):
    """
    Encode an array (or scalar/sequence convertible to one) to its FITS
    byte representation.

    Parameters
    ----------
    array : array-like
        The values to encode.

    width : int, optional
        Field width for string arrays; by default the array's own item
        size is used.  Longer strings are truncated.

    Returns
    -------
    bytes
    """

    array = np.asanyarray(array)
    kind, dtype = element_kind(array.dtype)

    if kind == 'bool':
        return np.where(array, b'T', b'F').astype('S1').tobytes()

    if kind in ('char', 'string'):
        if width is None:
            width = max(array.dtype.itemsize // (4 if dtype.kind == 'U'
                                                 else 1), 1)
        flat = array.ravel()
        out = bytearray()
        for item in flat:
            if isinstance(item, bytes):
                text = item
            else:
                text = str(item).encode('ascii')
            out += text[:width].ljust(width, b' ')
        return bytes(out)

    if _is_offset_int(array.dtype):
        # offset integers are stored with their zero point shifted, which
        # amounts to flipping the sign bit
        flipped = array ^ array.dtype.type(_offset_zero(array.dtype))
        array = flipped.astype(array.dtype.newbyteorder('>')).view(
            _offset_storage(array.dtype).newbyteorder('>'))
    return to_big_endian(np.ascontiguousarray(array)).tobytes()


def decode(data, shape, element_type, width=None):
    """
    Decode FITS bytes into a new array of the given shape and element type.

    Parameters
    ----------
    data : bytes-like
        The raw bytes; their length must match the shape exactly.

    shape : int or tuple of int
        Shape of the result (for strings: the number of strings).

    element_type : numpy dtype or 'bool'/'char'/'string'
        The element type of the result.

    width : int, optional
        Field width of each string; defaults to the dtype's item size.
    """

    kind, dtype = element_kind(element_type)
    if isinstance(shape, int):
        shape = (shape,)
    shape = tuple(shape)
    count = int(np.prod(shape)) if shape else 1
    buf = memoryview(data).cast('B')

    if kind == 'string':
        if width is None:
            width = dtype.itemsize if dtype.kind == 'S' else \
                dtype.itemsize // 4
        _check_size(len(buf), count * width, shape, element_type)
        values = [_decode_string(bytes(buf[idx * width:(idx + 1) * width]))
                  for idx in range(count)]
        return np.array(values, dtype='U%d' % max(width, 1)).reshape(shape)

    itemsize = 1 if kind in ('bool', 'char') else dtype.itemsize
    _check_size(len(buf), count * itemsize, shape, element_type)

    if kind == 'bool':
        raw = np.frombuffer(buf, dtype='S1', count=count)
        return (raw == b'T').reshape(shape)
    elif kind == 'char':
        return np.frombuffer(buf, dtype='S1', count=count).copy() \
                 .reshape(shape)

    big = dtype.newbyteorder('>')
    raw = np.frombuffer(buf, dtype=big, count=count)
    if _is_offset_int(dtype):
        native = raw.astype(dtype.newbyteorder('='))
        return (native ^ native.dtype.type(_offset_zero(dtype))).reshape(
            shape)
    return raw.astype(dtype.newbyteorder('=')).reshape(shape)


def decode_image(data, shape, element_type):
    """
    Fast path for image pixels: like `decode` but only numeric element types
    are accepted.
    """

    kind, dtype = element_kind(element_type)
    if kind != 'numeric' or dtype.kind == 'c':
        raise UnsupportedElementTypeError(
            'unsupported for image decode: %s' % (element_type,))
    return decode(data, shape, dtype)


def decode_strings(raw):
    """
    Decode an ``S`` array of fixed-width FITS string fields into native
    strings, following the same NUL/blank conventions as `decode`.
    """

    raw = np.asarray(raw)
    width = max(raw.dtype.itemsize, 1)
    values = [_decode_string(item) for item in raw.ravel()]
    return np.array(values, dtype='U%d' % width).reshape(raw.shape)


def _decode_string(raw):
    nul = raw.find(b'\0')
    if nul >= 0:
        raw = raw[:nul]
    if core.CHECK_ASCII_STRINGS and \
            any(not (32 <= b <= 126) for b in raw):
        warnings.warn('Table string field contains non-printable '
                      'characters; they are replaced by blanks.')
        raw = bytes(b if 32 <= b <= 126 else 32 for b in raw)
    return raw.decode('latin-1').strip()


def _check_size(nbytes, expected, shape, element_type):
    if nbytes != expected:
        raise SizeMismatchError(
            'size mismatch: %d bytes cannot hold an array of shape %s and '
            'element type %s (%d bytes expected)'
            % (nbytes, shape, element_type, expected))
