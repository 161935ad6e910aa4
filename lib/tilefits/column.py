import re

import numpy as np

from tilefits.codec import decode, decode_strings, encode
from tilefits.errors import ArgumentError, FormatError, \
                           UnsupportedElementTypeError
from tilefits.util import _is_int


__all__ = ['Column', 'ColDefs']


# mapping from TFORM data type to numpy data type (code)
# L: Logical (Boolean)
# X: Bit
# B: Unsigned Byte
# I: 16-bit Integer
# J: 32-bit Integer
# K: 64-bit Integer
# E: Single-precision Floating Point
# D: Double-precision Floating Point
# C: Single-precision Complex
# M: Double-precision Complex
# A: Character
FITS2NUMPY = {'L': 'bool', 'X': 'bool', 'B': 'uint8', 'I': 'int16',
              'J': 'int32', 'K': 'int64', 'E': 'float32', 'D': 'float64',
              'C': 'complex64', 'M': 'complex128', 'A': 'S'}

# the inverse dictionary of the above
NUMPY2FITS = dict([(val, key) for key, val in FITS2NUMPY.items()
                   if key not in 'X'])
NUMPY2FITS.update({'int8': 'B', 'uint16': 'I', 'uint32': 'J',
                   'uint64': 'K'})

# element sizes in bytes
FITSSIZE = {'L': 1, 'B': 1, 'I': 2, 'J': 4, 'K': 8, 'E': 4, 'D': 8,
            'C': 8, 'M': 16, 'A': 1}

# lists of column/field definition common names and keyword names, make
# sure to preserve the one-to-one correspondence when updating the list(s).
KEYWORD_NAMES = ['TTYPE', 'TFORM', 'TUNIT', 'TNULL', 'TZERO', 'TDIM']
KEYWORD_ATTRIBUTES = ['name', 'format', 'unit', 'null', 'bzero', 'dim']

# regular expressions of table definition keywords and TFORM values
TDEF_RE = re.compile(r'(?P<label>^T[A-Z]*)(?P<num>[1-9][0-9 ]*$)')

TFORMAT_RE = re.compile(r'(?P<repeat>^[0-9]*)(?P<dtype>[A-Za-z])'
                        r'(?P<option>[!-~]*)')

# variable length array descriptor formats
_DESCRIPTORS = {'P': '>i4', 'Q': '>i8'}


class _ColumnFormat(object):
    """
    A parsed binary table ``TFORMn`` value.

    For variable length (``P``/``Q``) formats `code` is the descriptor
    letter and `element` the code of the array elements stored in the
    heap.
    """

    def __init__(self, tform):
        match = TFORMAT_RE.match(str(tform).strip())
        if not match:
            raise FormatError('Illegal binary table format %r.' % (tform,))
        repeat, code, option = match.group('repeat', 'dtype', 'option')
        code = code.upper()
        self.repeat = int(repeat) if repeat else 1
        self.code = code
        self.element = code
        self.max = None

        if code in _DESCRIPTORS:
            if not option or option[0].upper() not in FITSSIZE:
                raise FormatError('Illegal variable length array format '
                                  '%r.' % (tform,))
            self.element = option[0].upper()
            max_match = re.match(r'\((\d+)\)', option[1:])
            if max_match:
                self.max = int(max_match.group(1))
            if self.repeat > 1:
                raise FormatError('Variable length array formats take a '
                                  'repeat count of at most 1: %r' % (tform,))
        elif code not in FITSSIZE and code != 'X':
            raise FormatError('Illegal binary table format %r.' % (tform,))

    @property
    def is_variable(self):
        return self.code in _DESCRIPTORS

    @property
    def width(self):
        """Bytes taken by one field of this format in a table row."""

        if self.is_variable:
            return 2 * np.dtype(_DESCRIPTORS[self.code]).itemsize
        if self.code == 'X':
            return (self.repeat + 7) // 8
        return FITSSIZE[self.code] * self.repeat

    @property
    def dtype(self):
        """Native numpy dtype of the (element) values."""

        code = self.element
        if code == 'A':
            return np.dtype('S%d' % max(self.repeat, 1)) \
                if not self.is_variable else np.dtype('S1')
        return np.dtype(FITS2NUMPY[code])

    def __str__(self):
        if self.is_variable:
            text = '1%s%s' % (self.code, self.element)
            if self.max is not None:
                text += '(%d)' % self.max
            return text
        return '%d%s' % (self.repeat, self.code)

    def __repr__(self):
        return '_ColumnFormat(%r)' % str(self)

    def __eq__(self, other):
        if isinstance(other, str):
            other = _ColumnFormat(other)
        if not isinstance(other, _ColumnFormat):
            return NotImplemented
        return str(self) == str(other)

    def __hash__(self):
        return hash(str(self))


class Column(object):
    """
    Class which contains the definition of one column, e.g.  `ttype`,
    `tform`, etc. and the array containing values for the column.
    """

    def __init__(self, name=None, format=None, unit=None, null=None,
                 bzero=None, dim=None, array=None):
        """
        Construct a `Column` by specifying attributes.  All attributes
        except `format` can be optional.

        Parameters
        ----------
        name : str, optional
            column name, corresponding to ``TTYPE`` keyword

        format : str, optional
            column format, corresponding to ``TFORM`` keyword; when
            omitted it is derived from `array`

        unit : str, optional
            column unit, corresponding to ``TUNIT`` keyword

        null : int, optional
            null value, corresponding to ``TNULL`` keyword

        bzero : int, optional
            zero point, corresponding to ``TZERO`` keyword; only the
            offsets of pseudo-unsigned integers are supported

        dim : str, optional
            column dimension, corresponding to ``TDIM`` keyword

        array : ndarray or list, optional
            the column data; a list of arrays for variable length
            formats
        """

        if format is None:
            if array is None:
                raise ArgumentError('Must specify a format or an array for '
                                    'column %r' % (name,))
            format, bzero = _format_for(array, bzero)

        self.name = name
        self.format = _ColumnFormat(format)
        self.unit = unit
        self.null = null
        self.bzero = bzero
        self.dim = dim
        self.array = array

    def __repr__(self):
        text = ''
        for attr in KEYWORD_ATTRIBUTES:
            value = getattr(self, attr)
            if value is not None:
                text += '%s = %s; ' % (attr, value)
        return text[:-2]

    def copy(self):
        """Return a copy of this `Column`."""

        array = self.array
        if isinstance(array, np.ndarray):
            array = array.copy()
        return Column(self.name, str(self.format), self.unit, self.null,
                      self.bzero, self.dim, array)

    @property
    def unsigned(self):
        """Does the column hold pseudo-unsigned integers (via ``TZERO``)?"""

        if self.bzero is None or self.format.element not in 'IJK':
            return False
        bits = 8 * FITSSIZE[self.format.element]
        return int(self.bzero) == 1 << (bits - 1)

    @property
    def dtype(self):
        """Native dtype of the values of the column."""

        dtype = self.format.dtype
        if self.unsigned:
            dtype = np.dtype('uint%d' % (8 * dtype.itemsize))
        return dtype


def _is_ragged(array):
    """Is ``array`` a sequence of arrays of varying length?"""

    if isinstance(array, np.ndarray):
        return array.dtype == object
    if not isinstance(array, (list, tuple)) or not array:
        return False
    if not all(isinstance(item, (list, tuple, np.ndarray))
               for item in array):
        return False
    return len(set(len(item) for item in array)) > 1


def _format_for(array, bzero=None):
    """Derive a ``TFORM`` value (and ``TZERO``) from column data."""

    if _is_ragged(array):
        items = [np.asarray(item) for item in array]
        if not items:
            return '1PB', bzero
        element, bzero = _format_for(items[0], bzero)
        return '1P%s' % element.lstrip('0123456789'), bzero

    array = np.asarray(array)
    if array.dtype.kind in 'SU':
        width = array.dtype.itemsize
        if array.dtype.kind == 'U':
            width //= 4
        return '%dA' % max(width, 1), bzero

    name = array.dtype.newbyteorder('=').name
    try:
        code = NUMPY2FITS[name]
    except KeyError:
        raise UnsupportedElementTypeError(
            'unsupported element type: %s' % array.dtype)
    if array.dtype.kind == 'u' and array.dtype.itemsize > 1:
        bzero = 1 << (array.dtype.itemsize * 8 - 1)
    repeat = int(np.prod(array.shape[1:])) if array.ndim > 1 else 1
    return '%d%s' % (repeat, code), bzero


class ColDefs(object):
    """
    Column definitions class.

    It has attributes corresponding to the `Column` attributes
    (e.g. `ColDefs` has the attribute `~ColDefs.names` while `Column`
    has `~Column.name`).  Each attribute in `ColDefs` is a list of
    corresponding attribute values from all `Column` objects.
    """

    def __init__(self, input):
        if isinstance(input, ColDefs):
            input = input.columns
        self.columns = [col if isinstance(col, Column) else Column(**col)
                        for col in input]

    @classmethod
    def fromheader(cls, header):
        """Build the column definitions described by a table header."""

        nfields = header.get('TFIELDS', 0)
        columns = []
        for idx in range(1, nfields + 1):
            kwargs = {}
            for keyword, attr in zip(KEYWORD_NAMES, KEYWORD_ATTRIBUTES):
                key = '%s%d' % (keyword, idx)
                if key in header:
                    kwargs[attr] = header[key]
            if 'format' not in kwargs:
                raise FormatError('Missing TFORM%d keyword for column %d'
                                  % (idx, idx))
            columns.append(Column(**kwargs))
        return cls(columns)

    def __getitem__(self, key):
        return self.columns[self.index_of(key)]

    def __len__(self):
        return len(self.columns)

    def __iter__(self):
        return iter(self.columns)

    def __repr__(self):
        return 'ColDefs(%s)' % repr(self.columns)

    @property
    def names(self):
        return [col.name for col in self.columns]

    @property
    def formats(self):
        return [str(col.format) for col in self.columns]

    @property
    def widths(self):
        return [col.format.width for col in self.columns]

    @property
    def row_width(self):
        return sum(self.widths)

    def index_of(self, key):
        """Index of a column given by its position or (case insensitive)
        name."""

        if _is_int(key):
            if not -len(self.columns) <= key < len(self.columns):
                raise IndexError('Column index %d out of range' % key)
            return key % len(self.columns)
        names = [str(name).strip().lower() for name in self.names]
        try:
            return names.index(str(key).strip().lower())
        except ValueError:
            raise KeyError('Key %r does not exist.' % (key,))

    def add_col(self, column):
        """Append one `Column` to the column definition."""

        self.columns.append(column)
        return self

    def del_col(self, col_name):
        """Delete (the definition of) one `Column`."""

        del self.columns[self.index_of(col_name)]
        return self

    def header_cards(self):
        """The ``(keyword, value, comment)`` triples describing the
        columns."""

        cards = []
        for idx, col in enumerate(self.columns):
            num = idx + 1
            if col.name is not None:
                cards.append(('TTYPE%d' % num, col.name,
                              'label for field %d' % num))
            cards.append(('TFORM%d' % num, str(col.format),
                          'data format of field'))
            if col.unit is not None:
                cards.append(('TUNIT%d' % num, col.unit, ''))
            if col.null is not None:
                cards.append(('TNULL%d' % num, col.null, ''))
            if col.bzero is not None:
                cards.append(('TZERO%d' % num, col.bzero,
                              'offset for unsigned integers'))
            if col.dim is not None:
                cards.append(('TDIM%d' % num, col.dim, ''))
        return cards


def _field_shape(column, nrows):
    fmt = column.format
    if fmt.code in 'AX' or fmt.repeat == 1 or fmt.is_variable:
        if fmt.code == 'X':
            return (nrows, fmt.repeat)
        return (nrows,)
    return (nrows, fmt.repeat)


def _coerce_field(column, array, nrows):
    """
    Convert user supplied column data to the in-memory representation of
    a field: a numpy array with one row per table row, or an object array
    of 1-D arrays for variable length columns.
    """

    fmt = column.format
    if fmt.is_variable:
        field = np.empty(nrows, dtype=object)
        items = [] if array is None else list(array)
        for idx in range(nrows):
            item = items[idx] if idx < len(items) else []
            field[idx] = _coerce_element(column, item)
        return field

    shape = _field_shape(column, nrows)
    if fmt.code == 'A':
        field = np.zeros(shape, dtype='U%d' % max(fmt.repeat, 1))
    else:
        field = np.zeros(shape, dtype=column.dtype)
    if array is not None:
        array = np.asarray(array)
        if fmt.code == 'A' and array.dtype.kind == 'S':
            array = np.char.decode(array, 'ascii')
        count = min(len(array), nrows)
        field[:count] = array[:count].reshape((count,) + shape[1:])
    return field


def _coerce_element(column, item):
    if column.format.element == 'A':
        if isinstance(item, bytes):
            item = item.decode('ascii')
        return str(item)
    dtype = column.dtype
    return np.asarray(item, dtype=dtype).ravel()


def _encode_field(column, field, heap):
    """
    Encode one field to its ``(nrows, width)`` byte matrix, appending any
    variable length array data to the bytearray ``heap``.
    """

    fmt = column.format
    nrows = len(field)
    width = fmt.width

    if fmt.is_variable:
        desc = np.zeros((nrows, 2), dtype=_DESCRIPTORS[fmt.code])
        for idx, item in enumerate(field):
            if fmt.element == 'A':
                raw = str(item).encode('ascii')
                count = len(raw)
            else:
                item = np.asarray(item)
                raw = encode(item.astype(column.dtype, copy=False))
                count = item.size
            desc[idx] = (count, len(heap))
            heap += raw
        return desc.view(np.uint8).reshape(nrows, width)

    if fmt.code == 'X':
        bits = np.asarray(field, dtype=bool).reshape(nrows, fmt.repeat)
        return np.packbits(bits, axis=1)

    if fmt.code == 'A':
        raw = encode(np.asarray(field), width=fmt.repeat)
    else:
        raw = encode(np.asarray(field).astype(column.dtype, copy=False))
    return np.frombuffer(raw, dtype=np.uint8).reshape(nrows, width)


def _decode_field(column, raw, heap=b''):
    """
    Decode a ``(nrows, width)`` byte matrix back into a field; ``heap`` is
    the table's heap for variable length columns.
    """

    fmt = column.format
    nrows = raw.shape[0]
    data = np.ascontiguousarray(raw).tobytes()

    if fmt.is_variable:
        desc = np.frombuffer(data, dtype=_DESCRIPTORS[fmt.code]) \
                 .reshape(nrows, 2)
        itemsize = FITSSIZE[fmt.element]
        field = np.empty(nrows, dtype=object)
        for idx, (count, offset) in enumerate(desc.tolist()):
            nbytes = count * itemsize
            if offset < 0 or offset + nbytes > len(heap):
                raise FormatError('Variable length array descriptor of row '
                                  '%d points outside of the heap' % idx)
            chunk = heap[offset:offset + nbytes]
            if fmt.element == 'A':
                field[idx] = decode_strings(
                    np.array([bytes(chunk)], dtype='S%d' % max(count, 1)))[0]
            else:
                field[idx] = decode(chunk, (count,), column.dtype)
        return field

    if fmt.code == 'X':
        bits = np.unpackbits(np.frombuffer(data, dtype=np.uint8)
                             .reshape(nrows, fmt.width), axis=1)
        return bits[:, :fmt.repeat].astype(bool)

    if fmt.code == 'A':
        return decode(data, (nrows,), 'string', width=fmt.repeat)

    return decode(data, _field_shape(column, nrows), column.dtype)
