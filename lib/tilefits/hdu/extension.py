from tilefits.card import Card
from tilefits.hdu.base import _ValidHDU
from tilefits.util import lazyproperty, _is_int


class _ExtensionHDU(_ValidHDU):
    """
    An extension HDU class.

    This class is the base class for the `ImageHDU` and `BinTableHDU`
    classes.
    """

    _extension = ''

    def __init__(self, data=None, header=None, name=None, **kwargs):
        super(_ExtensionHDU, self).__init__(data=data, header=header)
        if header is not None:
            if name is None:
                if not self.name and 'EXTNAME' in header:
                    self.name = header['EXTNAME']
            else:
                self.name = name

    def __setattr__(self, attr, value):
        """
        Set an HDU attribute; the ``name`` is mirrored in ``EXTNAME``.
        """

        if attr == 'name' and value:
            if not isinstance(value, str):
                raise TypeError("'name' attribute must be a string")
            value = value.strip().upper()
            header = self.__dict__.get('_header')
            if header is not None:
                if 'EXTNAME' in header:
                    header['EXTNAME'] = value
                else:
                    header.append(Card('EXTNAME', value, 'extension name'))

        super(_ExtensionHDU, self).__setattr__(attr, value)

    @property
    def ver(self):
        return self._header.get('EXTVER', 1)

    @classmethod
    def match_header(cls, header):
        """
        This class should never be instantiated directly.  Either a standard
        extension HDU type should be used for a specific extension, or
        _NonstandardExtHDU should be used.
        """

        raise NotImplementedError

    def writeto(self, name, output_verify='exception', clobber=False,
                checksum=False):
        """
        Works similarly to the normal writeto(), but prepends a default
        `PrimaryHDU` are required by extension HDUs (which cannot stand on
        their own).
        """

        from tilefits.hdu.hdulist import HDUList
        from tilefits.hdu.image import PrimaryHDU

        hdulist = HDUList([PrimaryHDU(), self])
        hdulist.writeto(name, output_verify, clobber=clobber,
                        checksum=checksum)

    def _verify(self, option='warn'):

        errs = super(_ExtensionHDU, self)._verify(option=option)

        # Verify location and value of mandatory keywords.
        naxis = self._header.get('NAXIS', 0)
        self.req_cards('PCOUNT', naxis + 3, lambda v: (_is_int(v) and v >= 0),
                       0, option, errs)
        self.req_cards('GCOUNT', naxis + 4, lambda v: (_is_int(v) and v == 1),
                       1, option, errs)
        return errs


class _NonstandardExtHDU(_ExtensionHDU):
    """
    A Non-standard Extension HDU class.

    This class is used for an Extension HDU when the ``XTENSION``
    `Card` has a value not handled by tilefits (ASCII tables among them).
    The size of the data is known from the header but not what it is; the
    data is kept as the byte string found after the header, and written
    back unchanged.
    """

    def __init__(self, data=None, header=None, name=None):
        super(_NonstandardExtHDU, self).__init__(data=data, header=header,
                                                 name=name)
        if isinstance(data, (bytes, bytearray)):
            self.data = bytes(data)

    @classmethod
    def match_header(cls, header):
        """
        Matches any extension HDU that is not one of the extension types
        tilefits decodes.
        """

        card = header.cards[0]
        xtension = str(card.value).rstrip()
        return card.keyword == 'XTENSION' and \
            xtension not in ('IMAGE', 'BINTABLE', 'A3DTABLE')

    def _summary(self):
        return '%-10s  %-11s  %5d' % (self.name, 'NonstandardExtHDU',
                                      len(self._header))

    @lazyproperty
    def data(self):
        """
        Return the file data.
        """

        return self._read_deferred()

    def _encode_data(self):
        return bytes(self.data or b'')
