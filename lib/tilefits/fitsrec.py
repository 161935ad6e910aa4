import numpy as np

from tilefits.column import FITSSIZE, ColDefs, _coerce_field, \
                            _decode_field, _encode_field
from tilefits.errors import SizeMismatchError
from tilefits.util import _is_int


class FITS_rec(object):
    """
    Binary table data: one array per column, all with the same number of
    rows.

    Fixed width columns are numpy arrays with one entry (or one row of
    ``repeat`` entries) per table row; character columns are unicode
    string arrays; variable length columns are object arrays holding one
    1-D array per row.
    """

    def __init__(self, columns, fields=None, nrows=None):
        self._coldefs = ColDefs(columns)
        if fields is None:
            fields = [col.array for col in self._coldefs]
        if nrows is None:
            nrows = max([len(f) for f in fields if f is not None] or [0])
        self._nrows = nrows
        self._fields = [_coerce_field(col, field, nrows)
                        for col, field in zip(self._coldefs, fields)]

    @classmethod
    def from_columns(cls, columns, nrows=None):
        """Create table data from the arrays attached to the columns."""

        return cls(columns, nrows=nrows)

    @classmethod
    def frombytes(cls, columns, nrows, raw, heap=b''):
        """
        Decode table data from the bytes of the main table and the heap.
        """

        columns = ColDefs(columns)
        width = columns.row_width
        if len(raw) != nrows * width:
            raise SizeMismatchError(
                'size mismatch: %d bytes cannot hold %d rows of %d bytes'
                % (len(raw), nrows, width))
        rows = np.frombuffer(raw, dtype=np.uint8).reshape(nrows, width)
        fields = []
        offset = 0
        for col in columns:
            span = col.format.width
            fields.append(_decode_field(col, rows[:, offset:offset + span],
                                        heap))
            offset += span
        return cls(columns, fields, nrows)

    def tobytes(self):
        """
        Encode the table.  Returns the bytes of the main table and of the
        heap.
        """

        heap = bytearray()
        parts = [_encode_field(col, field, heap)
                 for col, field in zip(self._coldefs, self._fields)]
        if parts:
            main = np.hstack(parts)
        else:
            main = np.zeros((self._nrows, 0), dtype=np.uint8)
        return main.tobytes(), bytes(heap)

    def heap_size(self):
        """Number of bytes the variable length arrays take in the heap."""

        size = 0
        for col, field in zip(self._coldefs, self._fields):
            fmt = col.format
            if not fmt.is_variable:
                continue
            if fmt.element == 'A':
                size += sum(len(str(item)) for item in field)
            else:
                size += FITSSIZE[fmt.element] * \
                    sum(np.asarray(item).size for item in field)
        return size

    def max_lengths(self):
        """Longest array of each variable length column, by column index."""

        return dict((idx, max([len(item) for item in field] or [0]))
                    for idx, (col, field) in
                    enumerate(zip(self._coldefs, self._fields))
                    if col.format.is_variable)

    @property
    def columns(self):
        return self._coldefs

    @property
    def names(self):
        return self._coldefs.names

    def __len__(self):
        return self._nrows

    def __repr__(self):
        return 'FITS_rec(%d rows: %s)' % (self._nrows,
                                          ', '.join(map(str, self.names)))

    def field(self, key):
        """A view of a column's data."""

        return self._fields[self._coldefs.index_of(key)]

    def setfield(self, key, value):
        idx = self._coldefs.index_of(key)
        self._fields[idx] = _coerce_field(self._coldefs[idx], value,
                                          self._nrows)

    def __getitem__(self, key):
        if isinstance(key, str) or _is_int(key):
            return self.field(key)
        if isinstance(key, slice):
            return FITS_rec(self._coldefs,
                            [field[key] for field in self._fields],
                            len(range(*key.indices(self._nrows))))
        raise KeyError('Illegal table data index %r' % (key,))

    def __setitem__(self, key, value):
        self.setfield(key, value)

    def __eq__(self, other):
        if not isinstance(other, FITS_rec):
            return NotImplemented
        if self.names != other.names or len(self) != len(other):
            return False
        for mine, theirs in zip(self._fields, other._fields):
            if mine.dtype == object:
                if not all(np.array_equal(a, b) for a, b in zip(mine, theirs)):
                    return False
            elif not np.array_equal(mine, theirs):
                return False
        return True

    def copy(self):
        fields = []
        for field in self._fields:
            if field.dtype == object:
                copied = np.empty(len(field), dtype=object)
                for idx, item in enumerate(field):
                    copied[idx] = item.copy() if hasattr(item, 'copy') \
                                  else item
                fields.append(copied)
            else:
                fields.append(field.copy())
        return FITS_rec(self._coldefs, fields, self._nrows)
