import numpy as np

from tilefits.card import Card
from tilefits.column import KEYWORD_NAMES, TDEF_RE, ColDefs, Column, \
                            _ColumnFormat
from tilefits.errors import FormatError
from tilefits.fitsrec import FITS_rec
from tilefits.hdu.base import DELAYED, _update_card
from tilefits.hdu.extension import _ExtensionHDU
from tilefits.header import Header
from tilefits.util import lazyproperty, _is_int


class _TableBaseHDU(_ExtensionHDU):
    """
    FITS table extension base HDU class.
    """

    def __init__(self, data=None, header=None, name=None):
        """
        Parameters
        ----------
        data : FITS_rec, ColDefs or list of Column
            data to be used

        header : Header instance
            header to be used

        name : str
            name to be populated in ``EXTNAME`` keyword
        """

        super(_TableBaseHDU, self).__init__(data=data)

        if header is not None and not isinstance(header, Header):
            raise ValueError('header must be a Header object')

        if data is DELAYED:
            # this should never happen
            if header is None:
                raise ValueError('No header to setup HDU.')

            # if the file is read the first time, no need to copy, and keep
            # it unchanged
            self._header = header
        else:
            # construct a list of cards of minimal header
            cards = [Card('XTENSION', self._extension,
                          'binary table extension'),
                     Card('BITPIX', 8, 'array data type'),
                     Card('NAXIS', 2, 'number of array dimensions'),
                     Card('NAXIS1', 0, 'length of dimension 1'),
                     Card('NAXIS2', 0, 'length of dimension 2'),
                     Card('PCOUNT', 0, 'number of group parameters'),
                     Card('GCOUNT', 1, 'number of groups'),
                     Card('TFIELDS', 0, 'number of table fields')]

            if header is not None:
                # Make a copy of the input header, since it may get
                # modified
                cards.extend(header.copy(strip=True).cards)

            self._header = Header(cards)

            if isinstance(data, FITS_rec):
                self.data = data
            elif isinstance(data, (ColDefs, list, tuple)):
                self.data = FITS_rec(ColDefs(data))
            elif data is not None:
                raise TypeError('table data has incorrect type: %r'
                                % type(data))
            else:
                self.data = None
            self.update()

        #  set extension name
        if not name and 'EXTNAME' in self._header:
            name = self._header['EXTNAME']
        if name:
            self.name = name

    def _get_tabledata(self):
        """Decode the table in the data unit of the file."""

        nrows = self._header['NAXIS2']
        width = self._header['NAXIS1']
        raw = self._read_deferred(0, self.size())
        main = width * nrows
        theap = self._header.get('THEAP', main)
        if not _is_int(theap) or theap < main or theap > len(raw):
            raise FormatError('Invalid THEAP value %r for a table of %d '
                              'bytes' % (theap, len(raw)))
        return FITS_rec.frombytes(self._header_columns, nrows, raw[:main],
                                  raw[theap:])

    def data(self):
        """The table data; decoded from the file on first access."""

        if self._deferred is None:
            return None
        return self._get_tabledata()

    def _set_data(self, data):
        if data is not None and not isinstance(data, FITS_rec):
            raise TypeError('table data has incorrect type: %r'
                            % type(data))

    data = lazyproperty(data, _set_data)

    @property
    def _table(self):
        """The table the header keywords describe."""

        return self.data

    @property
    def _table_loaded(self):
        return self._data_loaded

    @lazyproperty
    def _header_columns(self):
        return ColDefs.fromheader(self._header)

    @property
    def columns(self):
        """The column definitions of the table."""

        if self._table_loaded and self._table is not None:
            return self._table.columns
        return self._header_columns

    def get_coldefs(self):
        """
        Returns the table's column definitions.
        """

        return self.columns

    def _summary(self):
        """
        Summarize the HDU: name, dimensions, and formats.
        """

        type = self.__class__.__name__

        # if data is touched, use data info.
        if self._table_loaded:
            if self._table is None:
                nrows = 0
            else:
                nrows = len(self._table)
            ncols = len(self.columns)
            format = '[%s]' % ', '.join(self.columns.formats)

        # if data is not touched yet, use header info.
        else:
            nrows = self._header['NAXIS2']
            ncols = self._header['TFIELDS']
            format = ', '.join([str(self._header['TFORM' + str(j + 1)])
                                for j in range(ncols)])
            format = '[%s]' % format
        dims = '%dR x %dC' % (nrows, ncols)

        return '%-10s  %-11s  %5d  %-12s  %s' % \
            (self.name, type, len(self._header), dims, format)

    def update(self):
        """
        Update header keywords to reflect recent changes of columns.

        Cards that already hold the right value are left untouched, so an
        unchanged table keeps a byte-identical header.
        """

        data = self._table
        if data is None:
            cols = ColDefs([])
            nrows = 0
            heap = 0
        else:
            cols = data.columns
            nrows = len(data)
            heap = data.heap_size()
            for idx, length in data.max_lengths().items():
                fmt = cols[idx].format
                if fmt.max is None or fmt.max < length:
                    fmt.max = length

        header = self._header
        _update_card(header, 'NAXIS1', cols.row_width, after='NAXIS')
        _update_card(header, 'NAXIS2', nrows, after='NAXIS1')
        _update_card(header, 'PCOUNT', heap, after='NAXIS2')
        _update_card(header, 'TFIELDS', len(cols), after='GCOUNT')
        del header['THEAP']

        wanted = cols.header_cards()
        wanted_keys = set(card[0] for card in wanted)

        # Wipe out the old table definition keywords that are no longer
        # needed
        for card in header.cards:
            match = TDEF_RE.match(card.keyword)
            if match and match.group('label') in KEYWORD_NAMES and \
                    card.keyword not in wanted_keys:
                del header[card.keyword]

        # populate the new table definition keywords
        after = 'TFIELDS'
        for keyword, value, comment in wanted:
            if keyword in header:
                current = header[keyword]
                if keyword.startswith('TFORM'):
                    try:
                        same = _ColumnFormat(current) == value
                    except FormatError:
                        same = False
                else:
                    same = current == value
                if not same:
                    header[keyword] = value
            else:
                header.update(keyword, value, comment, after=after)
            after = keyword

    def _prepare_header(self):
        if self._table_loaded:
            self.update()

    def _encode_data(self):
        data = self._table
        if data is None:
            return b''
        main, heap = data.tobytes()
        return main + heap

    def copy(self):
        """
        Make a copy of the table HDU, both header and data are copied.
        """

        data = self.data
        if data is not None:
            data = data.copy()
        return self.__class__(data=data, header=self._header.copy())

    def _verify(self, option='warn'):
        """
        _TableBaseHDU verify method.
        """

        errs = super(_TableBaseHDU, self)._verify(option=option)
        self.req_cards('NAXIS', None, lambda v: v == 2, 2, option, errs)
        self.req_cards('BITPIX', None, lambda v: v == 8, 8, option, errs)
        self.req_cards('TFIELDS', 7,
                       lambda v: (_is_int(v) and v >= 0 and v <= 999), 0,
                       option, errs)
        tfields = self._header.get('TFIELDS', 0)
        for idx in range(tfields):
            self.req_cards('TFORM' + str(idx + 1), None, None, None, option,
                           errs)
        return errs


class BinTableHDU(_TableBaseHDU):
    """
    Binary table HDU class.
    """

    _extension = 'BINTABLE'

    @classmethod
    def match_header(cls, header):
        card = header.cards[0]
        xtension = str(card.value).rstrip()
        return (card.keyword == 'XTENSION' and
                xtension in (cls._extension, 'A3DTABLE') and
                header.get('ZIMAGE') is not True and
                header.get('ZTABLE') is not True)

    @classmethod
    def from_columns(cls, columns, header=None, nrows=None, name=None):
        """
        Create a table HDU from a list of `Column` objects (or a
        `ColDefs`), using the arrays attached to the columns.
        """

        data = FITS_rec.from_columns(columns, nrows=nrows)
        return cls(data=data, header=header, name=name)


def new_table(input, header=None, nrows=None, name=None):
    """
    Create a new binary table HDU from column definitions, or from a
    mapping of column names to arrays.
    """

    if isinstance(input, dict):
        input = [Column(name=key, array=np.asarray(value))
                 for key, value in input.items()]
    return BinTableHDU.from_columns(input, header=header, nrows=nrows,
                                    name=name)
