import numpy as np

from tilefits import codec
from tilefits.card import Card
from tilefits.errors import SizeMismatchError, UnsupportedElementTypeError
from tilefits.hdu.base import DELAYED, _ValidHDU, _shape_from_header, \
                              _update_card
from tilefits.hdu.extension import _ExtensionHDU
from tilefits.header import Header
from tilefits.tiles import byte_runs, check_region, region_slices
from tilefits.util import lazyproperty, _is_offset_int, _offset_zero


class _ImageBaseHDU(_ValidHDU):
    """FITS image HDU base class.

    Attributes
    ----------
    header
        image header

    data
        image data
    """

    def __init__(self, data=None, header=None, do_not_scale_image_data=False,
                 uint=True):
        super(_ImageBaseHDU, self).__init__(data=data, header=header)

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
            if isinstance(self, _ExtensionHDU):
                c0 = Card('XTENSION', 'IMAGE', 'Image extension')
            else:
                c0 = Card('SIMPLE', True, 'conforms to FITS standard')

            cards = [c0,
                     Card('BITPIX', 8, 'array data type'),
                     Card('NAXIS', 0, 'number of array dimensions')]

            if isinstance(self, _ExtensionHDU):
                cards.append(Card('PCOUNT', 0, 'number of parameters'))
                cards.append(Card('GCOUNT', 1, 'number of groups'))

            if header is not None:
                cards.extend(header.copy(strip=True).cards)

            self._header = Header(cards)

        self._do_not_scale_image_data = do_not_scale_image_data
        self._uint = uint
        if do_not_scale_image_data:
            self._bzero = 0
            self._bscale = 1
        else:
            self._bzero = self._header.get('BZERO', 0)
            self._bscale = self._header.get('BSCALE', 1)

        if data is DELAYED:
            return

        self.data = data
        if not do_not_scale_image_data:
            # delete the keywords BSCALE and BZERO; unsigned data gets its
            # offset back from update_header
            del self._header['BSCALE']
            del self._header['BZERO']
        self.update_header()

    @property
    def shape(self):
        """The shape of the image, in numpy order."""

        if self._data_loaded:
            return () if self.data is None else self.data.shape
        return _shape_from_header(self._header)

    @property
    def tiler(self):
        """A random-access reader of regions of the image."""

        return ImageTiler(self)

    def _is_offset_file(self):
        """
        Are the pixels integers stored with the standard offset of
        unsigned (or, for ``BITPIX = 8``, signed) integers?
        """

        bitpix = self._header['BITPIX']
        if not self._uint or self._bscale != 1:
            return False
        if bitpix == 8:
            return self._bzero == -128
        return bitpix in (16, 32, 64) and self._bzero == 1 << (bitpix - 1)

    def _file_dtype(self):
        """The element type the stored pixels are decoded to."""

        bitpix = self._header['BITPIX']
        if self._is_offset_file():
            return np.dtype('int8' if bitpix == 8 else 'uint%d' % bitpix)
        return np.dtype(codec.BITPIX2DTYPE[bitpix])

    def _output_dtype(self):
        """The element type of the image data once scaled."""

        dtype = self._file_dtype()
        if self._is_offset_file() or \
                (self._bzero == 0 and self._bscale == 1):
            return dtype
        if self._header['BITPIX'] > 16:
            return np.dtype(np.float64)
        elif self._header['BITPIX'] > 0:
            return np.dtype(np.float32)
        return dtype

    def _convert_raw(self, raw):
        """
        Apply ``BSCALE``/``BZERO`` (and ``BLANK``) to pixels decoded with
        `_file_dtype`.
        """

        if self._is_offset_file() or \
                (self._bzero == 0 and self._bscale == 1):
            return raw

        # In these cases, we end up with floating-point arrays and have to
        # apply bscale and bzero.  We may have to handle BLANK and convert
        # to NaN in the resulting floating-point arrays.
        blanks = None
        if 'BLANK' in self._header and self._header['BITPIX'] > 0:
            blanks = raw == self._header['BLANK']

        data = np.array(raw, dtype=self._output_dtype())
        if self._bscale != 1:
            np.multiply(data, self._bscale, data)
        if self._bzero != 0:
            data += self._bzero
        if blanks is not None and blanks.any():
            data[blanks] = np.nan
        return data

    def data(self):
        """
        Image data; read from the file and scaled on first access.
        """

        if self._deferred is None or not self._header.get('NAXIS', 0):
            return None

        shape = _shape_from_header(self._header)
        raw = codec.decode_image(self._read_deferred(0, self.size()), shape,
                                 self._file_dtype())
        data = self._convert_raw(raw)

        if data is not raw and not self._do_not_scale_image_data:
            # delete the keywords BSCALE and BZERO after scaling
            del self._header['BSCALE']
            del self._header['BZERO']
            del self._header['BLANK']
            self._header['BITPIX'] = codec.DTYPE2BITPIX[data.dtype.name]
        return data

    def _set_data(self, data):
        if data is not None and not isinstance(data, np.ndarray):
            raise TypeError('incorrect array type: %r' % type(data))
        if data is not None and data.dtype.name not in codec.DTYPE2BITPIX:
            raise UnsupportedElementTypeError(
                'unsupported element type for image data: %s' % data.dtype)

    data = lazyproperty(data, _set_data)

    def update_header(self):
        """
        Update the header keywords to agree with the data.
        """

        old_naxis = self._header.get('NAXIS', 0)
        data = self.data

        if isinstance(data, np.ndarray):
            _update_card(self._header, 'BITPIX',
                         codec.DTYPE2BITPIX[data.dtype.name])
            axes = list(data.shape)
            axes.reverse()
        elif data is None:
            axes = []
        else:
            raise ValueError('incorrect array type')

        _update_card(self._header, 'NAXIS', len(axes))

        # add NAXISi if it does not exist
        for j in range(len(axes)):
            key = 'NAXIS' + str(j + 1)
            if key in self._header:
                _update_card(self._header, key, axes[j])
            else:
                if j == 0:
                    after = 'NAXIS'
                else:
                    after = 'NAXIS' + str(j)
                self._header.update(key, axes[j], after=after)

        # delete extra NAXISi's
        for j in range(len(axes) + 1, old_naxis + 1):
            del self._header['NAXIS' + str(j)]

        if data is not None and _is_offset_int(data.dtype):
            bzero = _offset_zero(data.dtype)
            # the scaling keywords follow the mandatory keywords
            if 'GCOUNT' in self._header:
                after = 'GCOUNT'
            else:
                after = 'NAXIS' + str(len(axes)) if axes else 'NAXIS'
            _update_card(self._header, 'BSCALE', 1, after=after)
            _update_card(self._header, 'BZERO', bzero, after='BSCALE')
            self._bscale = 1
            self._bzero = bzero
        elif data is not None:
            self._bscale = self._header.get('BSCALE', 1)
            self._bzero = self._header.get('BZERO', 0)

    def _prepare_header(self):
        if self._data_loaded:
            self.update_header()

    def _encode_data(self):
        if self.data is None:
            return b''
        return codec.encode(self.data)

    def _summary(self):
        """
        Summarize the HDU: name, dimensions, and formats.
        """

        type = self.__class__.__name__

        # if data is touched, use data info.
        if self._data_loaded:
            if self.data is None:
                shape, format = (), ''
            else:
                # the shape will be in the order of NAXIS's which is the
                # reverse of the numpy shape
                shape = list(self.data.shape)
                format = self.data.dtype.name
                shape.reverse()
                shape = tuple(shape)

        # if data is not touched yet, use header info.
        else:
            shape = tuple(reversed(_shape_from_header(self._header)))
            format = self._output_dtype().name if shape else ''

        return '%-10s  %-11s  %5d  %-12s  %s' % \
            (self.name, type, len(self._header), shape, format)


class ImageHDU(_ExtensionHDU, _ImageBaseHDU):
    """
    FITS image extension HDU class.
    """

    _extension = 'IMAGE'

    def __init__(self, data=None, header=None, name=None,
                 do_not_scale_image_data=False, uint=True):
        """
        Construct an image HDU.

        Parameters
        ----------
        data : array
            The data in the HDU.

        header : Header instance
            The header to be used (as a template).  If `header` is
            `None`, a minimal header will be provided.

        name : str, optional
            The name of the HDU, will be the value of the keyword
            ``EXTNAME``.

        do_not_scale_image_data : bool, optional
            If `True`, image data is not scaled using BSCALE/BZERO values
            when read.

        uint : bool, optional
            Read integer images stored with the unsigned offset in
            ``BZERO`` as unsigned integers.
        """

        # no need to run _ExtensionHDU.__init__ since it is not doing
        # anything but setting the name
        _ImageBaseHDU.__init__(self, data=data, header=header,
                               do_not_scale_image_data=do_not_scale_image_data,
                               uint=uint)

        #  set extension name
        if name is None and 'EXTNAME' in self._header:
            name = self._header['EXTNAME']
        if name:
            self.name = name

    @classmethod
    def match_header(cls, header):
        card = header.cards[0]
        return card.keyword == 'XTENSION' and \
            str(card.value).rstrip() == cls._extension

    def _verify(self, option='warn'):
        """
        ImageHDU verify method.
        """

        errs = super(ImageHDU, self)._verify(option=option)
        naxis = self._header.get('NAXIS', 0)
        self.req_cards('PCOUNT', naxis + 3, lambda v: v == 0, 0, option,
                       errs)
        return errs


class PrimaryHDU(_ImageBaseHDU):
    """
    FITS primary HDU class.
    """

    def __init__(self, data=None, header=None, do_not_scale_image_data=False,
                 uint=True):
        """
        Construct a primary HDU.

        Parameters
        ----------
        data : array or DELAYED, optional
            The data in the HDU.

        header : Header instance, optional
            The header to be used (as a template).  If `header` is
            `None`, a minimal header will be provided.

        do_not_scale_image_data : bool, optional
            If `True`, image data is not scaled using BSCALE/BZERO values
            when read.
        """

        super(PrimaryHDU, self).__init__(
            data=data, header=header,
            do_not_scale_image_data=do_not_scale_image_data, uint=uint)
        self.name = 'PRIMARY'

        # insert the keywords EXTEND
        if header is None:
            dim = self._header['NAXIS']
            if dim == 0:
                after = 'NAXIS'
            else:
                after = 'NAXIS' + str(dim)
            self._header.update('EXTEND', True, after=after)

    @classmethod
    def match_header(cls, header):
        card = header.cards[0]
        return card.keyword == 'SIMPLE' and card.value is True


class ImageTiler(object):
    """
    Random access to rectangular, optionally strided, regions of an image
    HDU.

    Regions are given in numpy axis order by their ``corners`` (first
    pixel), ``lengths`` (number of output pixels per axis) and ``steps``.
    When the image data has not been read yet the requested pixels are
    read straight from the file, one run of pixels per output row, without
    loading the rest of the image.
    """

    def __init__(self, hdu):
        self.hdu = hdu

    @property
    def shape(self):
        return self.hdu.shape

    @property
    def dtype(self):
        hdu = self.hdu
        if hdu._data_loaded:
            return hdu.data.dtype
        return hdu._output_dtype()

    def get_complete_image(self):
        """The whole image."""

        shape = self.shape
        return self.get_tile((0,) * len(shape), shape)

    def get_tile(self, corners, lengths, steps=None):
        """Return a new array holding the requested region."""

        out = np.empty(tuple(lengths), dtype=self.dtype)
        return self.get_tile_into(out, corners, lengths, steps)

    def get_tile_into(self, array, corners, lengths, steps=None):
        """
        Fill ``array`` (whose shape must equal ``lengths``) with the
        requested region and return it.
        """

        shape = self.shape
        corners, lengths, steps = check_region(shape, corners, lengths,
                                               steps)
        if tuple(array.shape) != tuple(lengths):
            raise SizeMismatchError(
                'size mismatch: the destination array has shape %s, the '
                'requested region %s' % (array.shape, lengths))

        hdu = self.hdu
        if hdu._data_loaded or hdu._deferred is None:
            array[...] = hdu.data[region_slices(corners, lengths, steps)]
            return array

        dtype = hdu._file_dtype()
        itemsize = dtype.itemsize
        for offset, nbytes, index in byte_runs(shape, itemsize, corners,
                                               lengths, steps):
            raw = codec.decode_image(hdu._read_deferred(offset, nbytes),
                                     nbytes // itemsize, dtype)
            array[index] = hdu._convert_raw(raw[::steps[-1]])
        return array
