import inspect
import warnings
from collections import namedtuple

import numpy as np

from tilefits import checksum as _checksum
from tilefits.errors import FITSIOError, FormatError
from tilefits.header import Header
from tilefits.util import itersubclasses, _is_int, _new_lock, _pad_length
from tilefits.verify import _Verify, _ErrList


class _Delayed(object):
    def __repr__(self):
        return 'DELAYED'

# Marks data that has not been read from the file yet
DELAYED = _Delayed()


class Deferred(namedtuple('Deferred', ['file', 'offset', 'size'])):
    """
    Location of a data unit that has not been read yet: the `_File` it
    lives in, the byte offset of the data and its unpadded size.
    """

    __slots__ = ()


def _hdu_class_from_header(cls, header):
    """
    Used primarily by _BaseHDU.__new__ to find an appropriate HDU class to use
    based on values in the header.  See the _BaseHDU.__new__ docstring.
    """

    klass = cls # By default, if no subclasses are defined
    if header:
        for c in reversed(list(itersubclasses(cls))):
            try:
                if c.match_header(header):
                    klass = c
                    break
            except NotImplementedError:
                continue

    return klass


class _BaseHDU(object):
    """
    Base class for all HDU (header data unit) classes.
    """

    def __new__(cls, data=None, header=None, **kwargs):
        """
        Iterates through the subclasses of _BaseHDU and uses that class's
        match_header() method to determine which subclass to instantiate.

        The class hierarchy is traversed in a depth-last order.  Each
        match_header() should identify an HDU type as uniquely as possible.
        Abstract types may simply raise NotImplementedError to be skipped.
        """

        klass = _hdu_class_from_header(cls, header)
        return super(_BaseHDU, cls).__new__(klass)

    def __init__(self, data=None, header=None):
        self._header = header
        self._file = None
        self._deferred = None
        self._lazy_lock = _new_lock()

    def _getheader(self):
        return self._header

    def _setheader(self, value):
        self._header = value
    header = property(_getheader, _setheader)

    @classmethod
    def match_header(cls, header):
        raise NotImplementedError

    @classmethod
    def _readfrom(cls, ffo, **kwargs):
        """
        Read the next HDU from the `_File` ``ffo``, leaving its data in the
        file.  The file is positioned after the data unit on return.
        """

        header = Header.fromfile(ffo)
        first = header.cards[0].keyword if len(header) else ''
        if first not in ('SIMPLE', 'XTENSION'):
            raise FormatError('Block does not begin with SIMPLE or XTENSION')
        datloc = ffo.tell()

        # Only pass on the keyword arguments the selected class accepts
        klass = _hdu_class_from_header(cls, header)
        params = inspect.signature(klass.__init__).parameters
        new_kwargs = dict((key, value) for key, value in kwargs.items()
                          if key in params)

        hdu = klass(data=DELAYED, header=header, **new_kwargs)
        size = hdu.size()
        hdu._file = ffo
        span = size + _pad_length(size)
        hdu._deferred = Deferred(ffo, datloc, size)
        ffo.seek(datloc + span)
        return hdu

    def writeto(self, name, output_verify='exception', clobber=False,
                checksum=False):
        """
        Write the HDU to a new file.  This is a convenience method to
        provide a user easier output interface if only one HDU needs
        to be written to a file.

        Parameters
        ----------
        name : file path, file object or file-like object
            Output FITS file.

        output_verify : str
            Output verification option.  Must be one of ``"fix"``,
            ``"silentfix"``, ``"ignore"``, ``"warn"``, or
            ``"exception"``.

        clobber : bool
            Overwrite the output file if exists.

        checksum : bool
            When `True` adds both ``DATASUM`` and ``CHECKSUM`` cards
            to the header of the HDU when written to the file.
        """

        from tilefits.hdu.hdulist import HDUList

        hdulist = HDUList([self])
        hdulist.writeto(name, output_verify, clobber=clobber,
                        checksum=checksum)


class _ValidHDU(_BaseHDU, _Verify):
    """
    Base class for all HDUs which are not corrupted.
    """

    name = ''

    def size(self):
        """
        Size (in bytes) of the data portion of the HDU.
        """

        size = 0
        naxis = self._header.get('NAXIS', 0)
        if naxis > 0:
            size = 1
            for idx in range(naxis):
                size = size * self._header['NAXIS' + str(idx + 1)]
            bitpix = self._header['BITPIX']
            gcount = self._header.get('GCOUNT', 1)
            pcount = self._header.get('PCOUNT', 0)
            size = abs(bitpix) * gcount * (pcount + size) // 8
        return size

    @property
    def _data_loaded(self):
        return type(self).data.is_loaded(self)

    def _read_deferred(self, offset=0, size=None):
        """
        Read (part of) the deferred data unit from its file.  The per-HDU
        lock is held while the file is accessed.
        """

        with self._lazy_lock:
            deferred = self._deferred
            if deferred is None:
                return b''
            if size is None:
                size = deferred.size - offset
            if deferred.file.closed:
                raise FITSIOError('The file %s has been closed; the data of '
                                  'this HDU can no longer be read.'
                                  % deferred.file.name)
            return deferred.file.readbytes(deferred.offset + offset, size)

    def copy(self):
        """
        Make a copy of the HDU, both header and data are copied.
        """

        if self.data is not None:
            data = self.data.copy()
        else:
            data = None
        return self.__class__(data=data, header=self._header.copy())

    def _summary(self):
        return '%-10s  %-11s  %5d' % (self.name, self.__class__.__name__,
                                      len(self._header))

    def _prepare_header(self):
        """
        Bring the header in agreement with the data before the HDU is
        summed or written.
        """

    def _encode_data(self):
        """The bytes of the in-memory data unit, without padding."""

        return b''

    def _data_bytes(self):
        """
        The bytes of the data unit as they are (or will be) in the file.
        Data that was never read is taken from the file as is.
        """

        if self._deferred is not None and not self._data_loaded:
            return self._read_deferred()
        return self._encode_data()

    def _writeheader(self, ffo):
        offset = ffo.tell()
        ffo.write(self._header.tobytes())
        return offset

    def _writedata(self, ffo, data=None):
        if data is None:
            data = self._data_bytes()
        offset = ffo.tell()
        if data:
            ffo.write(data)
            ffo.writepad(len(data))
        return offset, len(data)

    def _writeto(self, ffo, checksum=False):
        """
        Write the complete HDU to the `_File` ``ffo``.  Returns the header
        offset, data offset and data size.
        """

        self._prepare_header()
        if checksum:
            self.add_checksum(prepared=True)
        data = self._data_bytes()
        if len(data) != self.size():
            raise FormatError(
                'The data unit of %s HDU %r is %d bytes long, but its header '
                'declares %d bytes.' % (self.__class__.__name__, self.name,
                                        len(data), self.size()))
        hdrloc = self._writeheader(ffo)
        datloc, size = self._writedata(ffo, data)
        return hdrloc, datloc, size

    def _verify(self, option='warn'):
        from tilefits.hdu.extension import _ExtensionHDU

        errs = _ErrList([], unit='Card')

        is_valid = lambda v: v in [8, 16, 32, 64, -32, -64]

        # Verify location and value of mandatory keywords.
        # Do the first card here, instead of in the respective HDU classes,
        # so the checking is in order, in case of required cards in wrong
        # order.
        if isinstance(self, _ExtensionHDU):
            firstkey = 'XTENSION'
            firstval = self._extension
        else:
            firstkey = 'SIMPLE'
            firstval = True

        self.req_cards(firstkey, 0, None, firstval, option, errs)
        self.req_cards('BITPIX', 1, lambda v: (_is_int(v) and is_valid(v)), 8,
                       option, errs)
        self.req_cards('NAXIS', 2,
                       lambda v: (_is_int(v) and v >= 0 and v <= 999), 0,
                       option, errs)

        naxis = self._header.get('NAXIS', 0)
        if naxis < 1000:
            for ax in range(3, naxis + 3):
                self.req_cards('NAXIS' + str(ax - 2), ax,
                               lambda v: (_is_int(v) and v >= 0), 1, option,
                               errs)

            # Remove NAXISj cards where j is not in range 1, naxis inclusive.
            for card in self._header.cards:
                if card.keyword.startswith('NAXIS') and len(card.keyword) > 5:
                    try:
                        number = int(card.keyword[5:])
                        if number <= 0 or number > naxis:
                            raise ValueError
                    except ValueError:
                        err_text = "NAXISj keyword out of range ('%s' when " \
                                   "NAXIS == %d)" % (card.keyword, naxis)

                        def fix(self=self, card=card):
                            del self._header[card.keyword]

                        errs.append(
                            self.run_option(option=option, err_text=err_text,
                                            fix=fix, fix_text='Deleted.'))
        return errs

    def req_cards(self, keyword, pos, test, fix_value, option, errlist):
        """
        Check the existence, location, and value of a required `Card`.

        If `pos` is `None`, it can be anywhere.  If the card does not exist,
        the new card will have the `fix_value` as its value when created.
        Also check the card's value by using the `test` argument.
        """

        errs = errlist
        fix = None

        try:
            index = self._header.index(keyword)
        except (KeyError, IndexError):
            index = None

        fixable = fix_value is not None

        insert_pos = len(self._header) + 1

        # If pos is an int, insert at the given position (and convert it to a
        # lambda)
        if _is_int(pos):
            insert_pos = pos
            pos = lambda x: x == insert_pos

        # if the card does not exist
        if index is None:
            err_text = "'%s' card does not exist." % keyword
            fix_text = "Fixed by inserting a new '%s' card." % keyword
            if fixable:
                def fix(self=self, insert_pos=insert_pos):
                    self._header.insert(insert_pos, (keyword, fix_value))

            errs.append(self.run_option(option, err_text=err_text,
                        fix_text=fix_text, fix=fix, fixable=fixable))
        else:
            # if the supposed location is specified
            if pos is not None:
                if not pos(index):
                    err_text = "'%s' card at the wrong place (card %d)." \
                               % (keyword, index)
                    fix_text = 'Fixed by moving it to the right place ' \
                               '(card %d).' % insert_pos

                    def fix(self=self, index=index, insert_pos=insert_pos):
                        card = self._header.cards[index]
                        del self._header[index]
                        self._header.insert(insert_pos, card)

                    errs.append(self.run_option(option, err_text=err_text,
                                fix_text=fix_text, fix=fix))

            # if value checking is specified
            if test:
                val = self._header[keyword]
                if not test(val):
                    err_text = "'%s' card has invalid value '%s'." \
                               % (keyword, val)
                    fix_text = "Fixed by setting a new value '%s'." \
                               % (fix_value,)

                    if fixable:
                        def fix(self=self, keyword=keyword, val=fix_value):
                            self._header[keyword] = val

                    errs.append(self.run_option(option, err_text=err_text,
                                fix_text=fix_text, fix=fix, fixable=fixable))

        return errs

    def add_datasum(self, when=None):
        """
        Add the ``DATASUM`` card to this HDU with the value set to the
        checksum calculated for the data.

        Parameters
        ----------
        when : str, optional
            Comment string for the card

        Returns
        -------
        checksum : int
            The calculated datasum
        """

        self._prepare_header()
        cs = self._calculate_datasum()
        if when is None:
            when = 'data unit checksum'
        self._header.update('DATASUM', str(cs), when)
        return cs

    def add_checksum(self, when=None, override_datasum=False,
                     prepared=False):
        """
        Add the ``CHECKSUM`` and ``DATASUM`` cards to this HDU with
        the values set to the checksum calculated for the HDU and the
        data respectively.  The addition of the ``DATASUM`` card may
        be overridden.

        Parameters
        ----------
        when : str, optional
           comment string for the cards

        override_datasum : bool, optional
           add the ``CHECKSUM`` card only

        Notes
        -----
        The default comments carry no timestamp, so stamping unchanged
        content twice yields identical cards.
        """

        if not prepared:
            self._prepare_header()

        if not override_datasum:
            # Calculate and add the data checksum to the header.
            data_cs = self.add_datasum(when)
        else:
            # Just calculate the data checksum
            data_cs = self._calculate_datasum()

        if when is None:
            when = 'HDU checksum'

        # Add the CHECKSUM card to the header with a value of all zeros.
        if 'DATASUM' in self._header:
            self._header.update('CHECKSUM', _checksum.ZERO_CHECKSUM, when,
                                before='DATASUM')
        else:
            self._header.update('CHECKSUM', _checksum.ZERO_CHECKSUM, when)

        s = self._calculate_checksum(data_cs)

        # Update the header card.
        self._header.update('CHECKSUM', s, when)
        return s

    def verify_datasum(self):
        """
        Verify that the value in the ``DATASUM`` keyword matches the value
        calculated for the ``DATASUM`` of the current HDU data.

        Returns
        -------
        valid : int
           - 0 - failure
           - 1 - success
           - 2 - no ``DATASUM`` keyword present
        """

        if 'DATASUM' in self._header:
            datasum = self._calculate_datasum()
            try:
                stored = int(str(self._header['DATASUM']).strip())
            except ValueError:
                return 0
            if datasum == stored:
                return 1
            else:
                return 0
        else:
            return 2

    def verify_checksum(self):
        """
        Verify that the value in the ``CHECKSUM`` keyword matches the
        value calculated for the current HDU CHECKSUM.

        Returns
        -------
        valid : int
           - 0 - failure
           - 1 - success
           - 2 - no ``CHECKSUM`` keyword present
        """

        if 'CHECKSUM' in self._header:
            datasum = self._calculate_datasum()
            try:
                _checksum.decode(self._header['CHECKSUM'])
            except FormatError:
                return 0
            total = _checksum.checksum(self._header.tobytes(), datasum)
            if total == _checksum.ALL_ONES:
                return 1
            else:
                return 0
        else:
            return 2

    def _verify_checksum_datasum(self):
        """
        Verify the checksum/datasum values if the cards exist in the header.
        Simply displays warnings if either the checksum or datasum don't
        match.
        """

        if 'CHECKSUM' in self._header and not self.verify_checksum():
            warnings.warn('Warning:  Checksum verification failed for '
                          'HDU %r.' % (self.name,))
        if 'DATASUM' in self._header and not self.verify_datasum():
            warnings.warn('Warning:  Datasum verification failed for '
                          'HDU %r.' % (self.name,))

    def _calculate_datasum(self):
        """
        Calculate the value for the ``DATASUM`` card in the HDU.
        """

        return _checksum.checksum(self._data_bytes())

    def _calculate_checksum(self, datasum):
        """
        Calculate the value of the ``CHECKSUM`` card in the HDU.

        A header without a ``CHECKSUM`` card gets one holding the zero
        baseline; an existing value is restored after summing.
        """

        if 'CHECKSUM' not in self._header:
            if 'DATASUM' in self._header:
                self._header.update('CHECKSUM', _checksum.ZERO_CHECKSUM,
                                    before='DATASUM')
            else:
                self._header.update('CHECKSUM', _checksum.ZERO_CHECKSUM)
            old_checksum = None
        else:
            old_checksum = self._header['CHECKSUM']
            self._header.update('CHECKSUM', _checksum.ZERO_CHECKSUM)

        try:
            cs = _checksum.checksum(self._header.tobytes(), datasum)
        finally:
            if old_checksum is not None:
                self._header.update('CHECKSUM', old_checksum)

        # Encode the complement so the whole HDU sums to all ones
        return _checksum.encode(cs, complement=True)


def _shape_from_header(header, prefix='NAXIS'):
    """
    Returns a tuple of image dimensions, reverse the order of ``NAXIS``.
    """

    naxis = header.get(prefix, 0)
    axes = [header[prefix + str(idx + 1)] for idx in range(naxis)]
    axes.reverse()
    return tuple(axes)


def _prod(shape):
    return int(np.prod(shape)) if shape else 0


def _update_card(header, keyword, value, comment=None, after=None):
    """
    Set a keyword without moving an existing card, or insert it after
    ``after`` when missing.  An unchanged value leaves the card image as
    it is.
    """

    if keyword in header:
        current = header[keyword]
        if current != value or type(current) is not type(value):
            header[keyword] = value
    else:
        header.update(keyword, value, comment, after=after)
