"""
Tile compressed image and binary table HDUs.

A compressed image is stored in a binary table with one row per tile
(``ZIMAGE = T``); the keywords of the original image header are carried in
the table header, the structural ones renamed with a ``Z`` prefix.  A
compressed table (``ZTABLE = T``) keeps one row per tile of rows and one
variable length column per original column.
"""

import copy
import re
import warnings

import numpy as np

from tilefits import codec
from tilefits.card import Card
from tilefits.checksum import checksum as _checksum
from tilefits.column import KEYWORD_NAMES, NUMPY2FITS, TDEF_RE, ColDefs, \
                            Column, _coerce_field
from tilefits.compression import DEFAULT_COMPRESSION_TYPE, HCompressOption, \
     QUANTIZE_METHODS, QuantizeOption, RiceOption, get_algorithm, \
     is_known_algorithm, tiled
from tilefits.compression.quantize import DEFAULT_QUANTIZE_LEVEL, N_RANDOM, \
     NO_DITHER, NULL_VALUE, SUBTRACTIVE_DITHER_1
from tilefits.errors import ArgumentError, FormatError, SizeMismatchError, \
                           StridingNotSupportedError, UnsupportedFeatureError
from tilefits.fitsrec import FITS_rec
from tilefits.hdu.base import DELAYED, _shape_from_header
from tilefits.hdu.extension import _ExtensionHDU
from tilefits.hdu.image import ImageHDU
from tilefits.hdu.table import BinTableHDU
from tilefits.header import Header
from tilefits.tiles import check_geometry, check_region, image_tiles, \
                           intersects, table_tiles
from tilefits.util import lazyproperty, _is_offset_int, _offset_storage, \
     _offset_zero


DEFAULT_TABLE_COMPRESSION_TYPE = 'GZIP_2'

# algorithms a table column may be compressed with
TABLE_COMPRESSION_TYPES = ('GZIP_1', 'GZIP_2', 'RICE_1', 'NOCOMPRESS')

# image header keywords stored under another name in the table header
_IMAGE_TO_TABLE = {'SIMPLE': 'ZSIMPLE', 'XTENSION': 'ZTENSION',
                   'EXTEND': 'ZEXTEND', 'PCOUNT': 'ZPCOUNT',
                   'GCOUNT': 'ZGCOUNT', 'CHECKSUM': 'ZHECKSUM',
                   'DATASUM': 'ZDATASUM'}

_TABLE_TO_IMAGE = dict((value, key) for key, value in _IMAGE_TO_TABLE.items())

_COMMENTS = {'ZSIMPLE': 'file does conform to FITS standard',
             'ZTENSION': 'Image extension',
             'ZEXTEND': 'FITS dataset may contain extensions',
             'ZPCOUNT': 'number of parameters',
             'ZGCOUNT': 'number of groups',
             'ZHECKSUM': 'HDU checksum of the uncompressed image',
             'ZDATASUM': 'data unit checksum of the uncompressed image'}

# table header keywords describing the compressed image
_COMPRESSION_KEYWORDS = set(['XTENSION', 'BITPIX', 'NAXIS', 'NAXIS1',
                             'NAXIS2', 'PCOUNT', 'GCOUNT', 'TFIELDS', 'THEAP',
                             'ZIMAGE', 'ZBITPIX', 'ZNAXIS', 'ZCMPTYPE',
                             'ZQUANTIZ', 'ZDITHER0', 'ZBLANK', 'ZMASKCMP',
                             'ZSCALE', 'ZZERO', 'CHECKSUM', 'DATASUM'])

_COMPRESSION_KEYWORDS_RE = re.compile(r'^(ZNAXIS|ZTILE|ZNAME|ZVAL)\d+$')

# table header keywords describing a compressed table
_TABLE_KEYWORDS = set(['ZTABLE', 'ZTILELEN', 'ZNAXIS1', 'ZNAXIS2',
                       'ZPCOUNT', 'ZTHEAP'])

_TABLE_KEYWORDS_RE = re.compile(r'^(ZFORM|ZCTYP)\d+$')

# standard minimal set of binary table cards, in order
_TABLE_CARDS = [('XTENSION', 'BINTABLE', 'binary table extension'),
                ('BITPIX', 8, '8-bit bytes'),
                ('NAXIS', 2, '2-dimensional binary table'),
                ('NAXIS1', 0, 'width of table in bytes'),
                ('NAXIS2', 0, 'number of rows in table'),
                ('PCOUNT', 0, 'size of special data area'),
                ('GCOUNT', 1, 'one data group (required keyword)'),
                ('TFIELDS', 0, 'number of fields in each row')]


def _table_header():
    return Header([Card(*card) for card in _TABLE_CARDS])


def _quantize_method(header):
    """The ``ZQUANTIZ`` method of a header; `None` for no quantization."""

    method = str(header.get('ZQUANTIZ', NO_DITHER)).strip().upper()
    if method == 'NONE':
        return None
    if method not in QUANTIZE_METHODS:
        warnings.warn('Unknown quantization method %r; %s is assumed.'
                      % (method, NO_DITHER))
        return NO_DITHER
    return method


def _is_compression_keyword(keyword):
    if keyword in _COMPRESSION_KEYWORDS or \
            _COMPRESSION_KEYWORDS_RE.match(keyword):
        return True
    match = TDEF_RE.match(keyword)
    return bool(match and match.group('label') in KEYWORD_NAMES)


def _storage(image):
    """
    The pixels of ``image`` as they are stored: offset integers (unsigned
    integers and signed bytes) are shifted to the integer type of the
    same size and opposite signedness.
    """

    if _is_offset_int(image.dtype):
        zero = image.dtype.type(_offset_zero(image.dtype))
        return (image ^ zero).view(_offset_storage(image.dtype))
    bitpix = codec.DTYPE2BITPIX[image.dtype.name]
    dtype = np.dtype(codec.BITPIX2DTYPE[bitpix])
    if image.dtype != dtype:
        return image.astype(dtype)
    return image


def _hcompress_tile_shape(shape, tile_size):
    """
    Tile extents (FITS order) for H-compress, which works on tiles of at
    least 4x4 pixels.  Without a requested tile size the tiles hold 16
    rows of the image (or whatever row count from 14 to 30 leaves at
    least 4 rows in the last tile); images of at most 30 rows are a single
    tile.
    """

    axes = list(reversed(shape))
    if len(axes) < 2:
        raise ArgumentError('Hcompress cannot be used with 1-dimensional '
                            'images.')
    if axes[0] < 4 or axes[1] < 4:
        raise ArgumentError('Hcompress minimum image dimension is 4 pixels')
    if tile_size and (tile_size[0] < 4 or tile_size[1] < 4) and \
            not (tile_size[0] == 0 and tile_size[1] == 0):
        raise ArgumentError('Hcompress minimum tile dimension is 4 pixels')

    if tile_size and tile_size[0] == 0 and tile_size[1] == 0:
        # compress the whole image as a single tile
        tile_size = [axes[0], axes[1]] + [1] * (len(axes) - 2)
    elif not tile_size:
        tile_size = [axes[0]]
        if axes[1] <= 30:
            tile_size.append(axes[1])
        else:
            for rows in (16, 24, 20, 30, 28, 26, 22, 18, 14):
                if axes[1] % rows == 0 or axes[1] % rows > 3:
                    tile_size.append(rows)
                    break
            else:
                tile_size.append(17)
        tile_size.extend([1] * (len(axes) - 2))
    else:
        tile_size = list(tile_size)

    # make sure the last tile along the first two axes has at least
    # 4 pixels
    for idx, name in ((0, '1st'), (1, '2nd')):
        remain = axes[idx] % tile_size[idx]
        if 0 < remain < 4:
            tile_size[idx] += 1
            remain = axes[idx] % tile_size[idx]
            if 0 < remain < 4:
                raise ArgumentError('Last tile along %s dimension has less '
                                    'than 4 pixels' % name)
    return tile_size


class CompImageHDU(BinTableHDU):
    """
    Compressed Image HDU class.

    The ``header`` and ``data`` attributes give the uncompressed image;
    the binary table holding the compressed tiles is ``compressed_data``,
    described by the table header in ``_header``.
    """

    def __init__(self, data=None, header=None, name=None,
                 compression_type=DEFAULT_COMPRESSION_TYPE, tile_size=None,
                 hcomp_scale=0, hcomp_smooth=False,
                 quantize_level=DEFAULT_QUANTIZE_LEVEL,
                 quantize_method=SUBTRACTIVE_DITHER_1, dither_seed=None):
        """
        Parameters
        ----------
        data : array, optional
            data of the image

        header : Header instance, optional
            header to be associated with the image; when reading the HDU
            from a file (data=DELAYED), the header read from the file

        name : str, optional
            the ``EXTNAME`` value; defaults to ``COMPRESSED_IMAGE``

        compression_type : str, optional
            compression algorithm, one of ``RICE_1``, ``RICE_ONE``,
            ``GZIP_1``, ``GZIP_2``, ``PLIO_1``, ``HCOMPRESS_1`` or
            ``NOCOMPRESS``

        tile_size : sequence of int, optional
            compression tile sizes in FITS axis order; the default is one
            row of the image per tile (16 rows for ``HCOMPRESS_1``)

        hcomp_scale : float, optional
            HCOMPRESS scale parameter

        hcomp_smooth : bool, optional
            HCOMPRESS smooth parameter

        quantize_level : float, optional
            floating point quantization level; see `QuantizeOption`

        quantize_method : str, optional
            floating point quantization dithering method; ``NO_DITHER``,
            ``SUBTRACTIVE_DITHER_1`` or ``SUBTRACTIVE_DITHER_2``

        dither_seed : int, optional
            random seed for the dithering; by default a seed is derived
            from the image pixels

        Notes
        -----
        The image is compressed when the HDU is written, or when
        `compress` or ``compressed_data`` is called on it; the options can
        be changed up to then.
        """

        self._no_loss_regions = []
        self._tile_algorithms = {}
        self._mask_algorithm = None
        self._null_value = None
        self._primary_cards = []
        self._compressed = None

        if data is DELAYED:
            super(CompImageHDU, self).__init__(data=data, header=header)
            self._image_header = self._image_header_from_table()
            self._read_compression_settings()
            return

        _ExtensionHDU.__init__(self, data=None)

        self._image_header = ImageHDU(data=data, header=header).header
        if header is not None:
            for keyword in ('SIMPLE', 'EXTEND'):
                if keyword in header:
                    self._primary_cards.append(
                        Card(_IMAGE_TO_TABLE[keyword], header[keyword],
                             _COMMENTS[_IMAGE_TO_TABLE[keyword]]))
            for keyword in ('CHECKSUM', 'DATASUM'):
                if keyword in header:
                    self._image_header.append(
                        Card(keyword, header[keyword],
                             header.comments[keyword]))

        if not is_known_algorithm(compression_type):
            warnings.warn('Unknown compression type provided.  Default '
                          '%s compression used.' % DEFAULT_COMPRESSION_TYPE)
            compression_type = DEFAULT_COMPRESSION_TYPE
        self._algorithm = get_algorithm(compression_type)
        self._tile_size = list(tile_size) if tile_size else None
        self._options = {}
        hcompress = self.get_compress_option(HCompressOption)
        hcompress.scale = hcomp_scale
        hcompress.smooth = hcomp_smooth
        self._options[QuantizeOption] = QuantizeOption(
            quantize_level, quantize_method, dither_seed)

        if not name:
            name = (header is not None and header.get('EXTNAME')) or \
                   'COMPRESSED_IMAGE'
        self._header = self._build_table_header(None)
        self.data = data
        self.name = name

    @classmethod
    def match_header(cls, header):
        card = header.cards[0]
        return (card.keyword == 'XTENSION' and
                str(card.value).rstrip() == 'BINTABLE' and
                header.get('ZIMAGE') is True)

    @classmethod
    def from_image_hdu(cls, image_hdu, **kwargs):
        """
        Create a compressed image HDU holding the image of ``image_hdu``;
        the keyword arguments are those of `CompImageHDU`.
        """

        return cls(data=image_hdu.data, header=image_hdu.header, **kwargs)

    def as_image_hdu(self):
        """
        Returns an `ImageHDU` holding the uncompressed image and header.
        """

        return ImageHDU(data=self.data, header=self._image_header)

    # The image header; the table header is available as _header
    def _getheader(self):
        return self._image_header

    def _setheader(self, value):
        if not isinstance(value, Header):
            raise ValueError('header must be a Header object')
        self._image_header = value
    header = property(_getheader, _setheader)

    @property
    def shape(self):
        """The shape of the image, in numpy order."""

        if self._image_loaded:
            return () if self.data is None else self.data.shape
        return _shape_from_header(self._header, 'ZNAXIS')

    @property
    def tiler(self):
        """A random-access reader of regions of the image."""

        return CompImageTiler(self)

    @property
    def _image_loaded(self):
        return type(self).data.is_loaded(self)

    @property
    def _table_loaded(self):
        return type(self).compressed_data.is_loaded(self)

    @property
    def _data_loaded(self):
        return self._image_loaded or self._table_loaded

    @property
    def _table(self):
        return self.compressed_data

    def data(self):
        """
        The uncompressed image; decompressed on first access.
        """

        if self._deferred is None and not self._table_loaded:
            return None
        shape = _shape_from_header(self._header, 'ZNAXIS')
        if not shape:
            return None

        storage = np.empty(shape, dtype=self._storage_dtype())
        tiles = self._tiles(shape)
        rows = self._tile_rows(self.compressed_data)
        if len(rows) != len(tiles):
            raise FormatError(
                'The compressed image table has %d rows for %d tiles.'
                % (len(rows), len(tiles)))

        plan = self._header_plan()
        tiled.execute([tiled.ImageTileDecompressor(tile, storage, plan, row)
                       for tile, row in zip(tiles, rows)])

        view = self._image_view()
        data = self._convert_storage(storage, view)
        if data is not storage and not view._is_offset_file():
            # the image header now describes the scaled data
            del self._image_header['BSCALE']
            del self._image_header['BZERO']
            del self._image_header['BLANK']
            self._image_header['BITPIX'] = \
                codec.DTYPE2BITPIX[data.dtype.name]
        return data

    def _set_data(self, data):
        ImageHDU._set_data(self, data)
        self._compressed = None

    data = lazyproperty(data, _set_data)

    def compressed_data(self):
        """
        The binary table of compressed tiles, read from the file or
        produced from the image.
        """

        if self._deferred is not None and not self._image_loaded:
            return self._get_tabledata()
        return self.compress()

    def _set_compressed_data(self, data):
        if not isinstance(data, FITS_rec):
            raise TypeError('compressed data has incorrect type: %r'
                            % type(data))

    compressed_data = lazyproperty(compressed_data, _set_compressed_data)

    def get_compress_option(self, cls):
        """
        The option object of class ``cls`` (`RiceOption`,
        `HCompressOption`, `QuantizeOption`, ...) used by the next
        compression; changes made to it apply from then on.
        """

        if cls not in self._options:
            self._options[cls] = cls()
        return self._options[cls]

    @property
    def compression_type(self):
        return self._algorithm.name

    def force_no_loss(self, corners, lengths):
        """
        Store every tile intersecting the region (in numpy axis order)
        without loss: tiles that would be compressed lossily go to the
        ``UNCOMPRESSED_DATA`` column instead.
        """

        corners, lengths, steps = check_geometry(corners, lengths)
        self._no_loss_regions.append((corners, lengths))
        return self

    def preserve_nulls(self, null_value=None, algorithm='RICE_1'):
        """
        Record the null pixels of each tile in a ``NULL_PIXEL_MASK``
        column, compressed with ``algorithm``, so they survive lossy
        compression.  Null pixels are NaN in floating point images and
        equal to ``null_value`` in integer images.
        """

        self._mask_algorithm = get_algorithm(algorithm)
        self._null_value = null_value
        return self

    def set_tile_algorithm(self, index, name):
        """
        Compress the tile with the given index with another algorithm;
        only ``GZIP_1`` and ``NOCOMPRESS`` can replace the algorithm of
        the HDU.
        """

        algorithm = get_algorithm(name)
        if algorithm.name == self._algorithm.name:
            self._tile_algorithms.pop(index, None)
        elif algorithm.name in ('GZIP_1', 'NOCOMPRESS'):
            self._tile_algorithms[index] = algorithm.name
        else:
            raise UnsupportedFeatureError(
                'Tile %d of a %s compressed image can only be stored with '
                'GZIP_1 or NOCOMPRESS, not %s.'
                % (index, self._algorithm.name, algorithm.name))
        return self

    def _tile_shape(self, shape):
        """Tile extents, in numpy order, for an image of ``shape``."""

        tile_size = self._tile_size
        if tile_size and len(tile_size) != len(shape):
            warnings.warn('Provided tile size not appropriate for the '
                          'data.  Default tile size will be used.')
            tile_size = None

        if self._algorithm.name == 'HCOMPRESS_1':
            tile_size = _hcompress_tile_shape(shape, tile_size)
        elif not tile_size:
            return None

        axes = reversed(shape)
        return tuple(reversed([min(extent, n) if extent else n
                               for extent, n in zip(tile_size, axes)]))

    def _tiles(self, shape):
        tile_shape = []
        for idx in range(len(shape)):
            tile_shape.append(self._header.get('ZTILE%d' % (idx + 1),
                                               1 if idx else shape[-1]))
        tile_shape.reverse()
        return image_tiles(shape, [max(extent, 1) for extent in tile_shape])

    def _storage_dtype(self):
        return np.dtype(codec.BITPIX2DTYPE[self._header['ZBITPIX']])

    def _image_view(self):
        return ImageHDU(data=DELAYED, header=self._image_header)

    def _convert_storage(self, storage, view):
        if view._is_offset_file():
            dtype = view._file_dtype()
            return storage.view(dtype) ^ dtype.type(_offset_zero(dtype))
        return view._convert_raw(storage)

    def _compression_values(self):
        """The ``ZNAMEn``/``ZVALn`` mapping of the table header."""

        values = {}
        idx = 1
        while 'ZNAME%d' % idx in self._header:
            values[str(self._header['ZNAME%d' % idx]).strip().upper()] = \
                self._header.get('ZVAL%d' % idx)
            idx += 1
        return values

    def _read_compression_settings(self):
        """
        Pick up the compression settings of a file so that the image is
        compressed the same way when it is written back.
        """

        header = self._header
        plan = self._header_plan()
        self._algorithm = plan.algorithm
        self._options = {plan.algorithm.option_class: plan.option}
        quantize = plan.quantize
        if quantize is None:
            quantize = QuantizeOption()
        if _quantize_method(header) is None:
            quantize.level = 0
        self._options[QuantizeOption] = quantize

        naxis = header.get('ZNAXIS', 0)
        self._tile_size = [header['ZTILE%d' % (idx + 1)]
                           for idx in range(naxis)
                           if 'ZTILE%d' % (idx + 1) in header] or None
        self._mask_algorithm = plan.mask_algorithm
        self._null_value = plan.null_value

    def _header_plan(self):
        """The plan decompressing the tiles described by the table header."""

        header = self._header
        algorithm = get_algorithm(header.get('ZCMPTYPE',
                                             DEFAULT_COMPRESSION_TYPE))
        values = self._compression_values()
        option = algorithm.default_option().from_header_values(values)

        quantize = None
        if header['ZBITPIX'] < 0:
            quantize = QuantizeOption(method=_quantize_method(header) or
                                      NO_DITHER,
                                      dither_seed=header.get('ZDITHER0', 1),
                                      null_value=header.get('ZBLANK',
                                                            NULL_VALUE))
            quantize.from_header_values(values)

        mask_algorithm = None
        null_value = None
        if 'ZMASKCMP' in header:
            mask_algorithm = get_algorithm(header['ZMASKCMP'])
            if header['ZBITPIX'] > 0:
                null_value = header.get('ZBLANK')
        return tiled.ImageCompressionPlan(algorithm, option, quantize, [], {},
                                          mask_algorithm, null_value)

    def _tile_rows(self, table):
        """One mapping of column names to values per row of ``table``."""

        fields = {}
        names = [name.upper() for name in table.names]
        for name in (tiled.COMPRESSED_DATA, tiled.GZIP_COMPRESSED_DATA,
                     tiled.UNCOMPRESSED_DATA, tiled.ZSCALE, tiled.ZZERO,
                     tiled.NULL_PIXEL_MASK):
            if name in names:
                fields[name] = table.field(names.index(name))

        constants = {}
        for name in (tiled.ZSCALE, tiled.ZZERO):
            if name not in fields and name in self._header:
                constants[name] = self._header[name]

        rows = []
        for idx in range(len(table)):
            row = dict(constants)
            for name, field in fields.items():
                row[name] = field[idx]
            rows.append(row)
        return rows

    def _make_plan(self, storage):
        """The plan of a compression pass over the stored pixels."""

        algorithm = self._algorithm
        option = self.get_compress_option(algorithm.option_class).copy()
        is_float = storage.dtype.kind == 'f'

        quantize = None
        if is_float:
            quantize = self.get_compress_option(QuantizeOption).copy()
            if not quantize.level:
                quantize = None
            elif quantize.dithered and quantize.dither_seed is None:
                quantize.dither_seed = \
                    _checksum(codec.encode(storage)) % N_RANDOM + 1

        if isinstance(option, RiceOption) and not option.bytepix:
            option.bytepix = 4 if is_float else storage.dtype.itemsize

        tile_algorithms = dict((index, get_algorithm(name))
                               for index, name in self._tile_algorithms.items())
        return tiled.ImageCompressionPlan(algorithm, option, quantize,
                                          list(self._no_loss_regions),
                                          tile_algorithms,
                                          self._mask_algorithm,
                                          self._null_value)

    def _settings_key(self):
        options = sorted((cls.__name__, repr(option))
                         for cls, option in self._options.items())
        return (self._algorithm.name, tuple(options),
                tuple(self._tile_size or ()),
                tuple(self._no_loss_regions),
                tuple(sorted(self._tile_algorithms.items())),
                self._mask_algorithm and self._mask_algorithm.name,
                self._null_value)

    def compress(self):
        """
        Compress the image into the table of compressed tiles and bring
        the table header up to date; returns the table.

        All tiles are compressed before anything is replaced, so a
        failing tile leaves the HDU as it was.
        """

        image = self.data
        self._update_image_header(image)

        if image is None:
            storage = np.zeros((0,), dtype=np.uint8)
            shape = ()
        else:
            storage = _storage(image)
            shape = storage.shape

        key = (_checksum(codec.encode(storage)), shape, storage.dtype.str,
               self._settings_key())
        if self._compressed is None or self._compressed[0] != key:
            tile_shape = self._tile_shape(shape) if shape else ()
            plan = self._make_plan(storage)
            tiles = image_tiles(shape, tile_shape) if shape else []
            units = tiled.execute([tiled.ImageTileCompressor(tile, storage,
                                                             plan)
                                   for tile in tiles])
            table = self._assemble(units, plan, storage.dtype)
            if tiles:
                tile_shape = tiles[0].lengths
            self._compressed = (key, plan, table, tile_shape)

        key, plan, table, tile_shape = self._compressed
        old_header = self._header
        header = self._build_table_header(plan, storage, tile_shape)
        for keyword in ('CHECKSUM', 'DATASUM'):
            if keyword in old_header:
                header.append(Card(keyword, old_header[keyword],
                                   old_header.comments[keyword]))

        self._header = header
        self.compressed_data = table
        self.update()
        return table

    def _assemble(self, units, plan, dtype):
        """The compressed table holding the results of a pass."""

        used = set(unit.column for unit in units)
        nrows = len(units)

        def payloads(column, element_dtype):
            empty = np.zeros(0, dtype=element_dtype)
            return [unit.payload if unit.column == column else empty
                    for unit in units]

        element_code = plan.algorithm.element_code
        columns = [Column(tiled.COMPRESSED_DATA, '1P%s' % element_code,
                          array=payloads(tiled.COMPRESSED_DATA,
                                         np.int16 if element_code == 'I'
                                         else np.uint8))]
        if tiled.GZIP_COMPRESSED_DATA in used:
            columns.append(Column(tiled.GZIP_COMPRESSED_DATA, '1PB',
                                  array=payloads(tiled.GZIP_COMPRESSED_DATA,
                                                 np.uint8)))
        if tiled.UNCOMPRESSED_DATA in used:
            columns.append(Column(tiled.UNCOMPRESSED_DATA,
                                  '1P%s' % NUMPY2FITS[dtype.name],
                                  array=payloads(tiled.UNCOMPRESSED_DATA,
                                                 dtype)))
        if dtype.kind == 'f' and plan.quantize is not None:
            columns.append(Column(tiled.ZSCALE, '1D', array=np.array(
                [1.0 if unit.zscale is None else unit.zscale
                 for unit in units], dtype=np.float64)))
            columns.append(Column(tiled.ZZERO, '1D', array=np.array(
                [0.0 if unit.zzero is None else unit.zzero
                 for unit in units], dtype=np.float64)))
        if plan.mask_algorithm is not None:
            empty = np.zeros(0, dtype=np.uint8)
            columns.append(Column(tiled.NULL_PIXEL_MASK, '1PB', array=[
                empty if unit.null_mask is None else unit.null_mask
                for unit in units]))
        return FITS_rec(ColDefs(columns), nrows=nrows)

    def _update_image_header(self, image):
        """Bring the structural keywords of the image header up to date."""

        hdu = ImageHDU(data=DELAYED, header=self._image_header)
        hdu.data = image
        hdu.update_header()

    def _build_table_header(self, plan, storage=None, tile_shape=()):
        """
        A fresh table header describing the compressed image; the table
        column keywords are added by `update`.
        """

        image_header = self._image_header
        header = _table_header()
        header.append(Card('ZIMAGE', True, 'extension contains compressed '
                           'image'))

        if storage is not None:
            bitpix = codec.DTYPE2BITPIX[storage.dtype.name]
            axes = list(reversed(storage.shape)) if storage.ndim and \
                storage.size else []
        else:
            bitpix = image_header.get('BITPIX', 8)
            axes = [image_header['NAXIS%d' % (idx + 1)]
                    for idx in range(image_header.get('NAXIS', 0))]
        if image_header.get('NAXIS', 0) == 0:
            axes = []

        header.append(Card('ZBITPIX', bitpix, 'data type of original image'))
        header.append(Card('ZNAXIS', len(axes), 'dimension of original '
                           'image'))
        for idx, length in enumerate(axes):
            header.append(Card('ZNAXIS%d' % (idx + 1), length,
                               'length of original image axis'))
        if plan is not None:
            for idx, extent in enumerate(reversed(tile_shape or ())):
                header.append(Card('ZTILE%d' % (idx + 1), extent,
                                   'size of tiles to be compressed'))

        header.append(Card('ZCMPTYPE', self._algorithm.name,
                           'compression algorithm'))

        if plan is not None:
            values = plan.option.to_header_values()
            if plan.quantize is not None:
                values.extend(plan.quantize.to_header_values())
            for idx, (name, value) in enumerate(values):
                header.append(Card('ZNAME%d' % (idx + 1), name,
                                   'compression option name'))
                header.append(Card('ZVAL%d' % (idx + 1), value,
                                   'compression option value'))

            if bitpix < 0:
                if plan.quantize is None:
                    header.append(Card('ZQUANTIZ', 'NONE',
                                       'no quantization of the pixels'))
                else:
                    header.append(Card('ZQUANTIZ', plan.quantize.method,
                                       'pixel quantization method'))
                    if plan.quantize.dithered:
                        header.append(Card('ZDITHER0',
                                           plan.quantize.dither_seed,
                                           'dithering offset when quantizing '
                                           'floats'))
                    header.append(Card('ZBLANK', plan.quantize.null_value,
                                       'null value in the compressed integer '
                                       'array'))
            if plan.mask_algorithm is not None:
                header.append(Card('ZMASKCMP', plan.mask_algorithm.name,
                                   'compression algorithm of the null pixel '
                                   'mask'))
                if bitpix > 0 and plan.null_value is not None:
                    header.append(Card('ZBLANK', plan.null_value,
                                       'null value of the image pixels'))

        header.append(Card('EXTNAME', self.name or 'COMPRESSED_IMAGE',
                           'name of this binary table extension'))

        header.extend(self._primary_cards)
        for card in image_header.cards:
            keyword = card.keyword
            if keyword in ('BITPIX', 'NAXIS', 'EXTNAME') or \
                    re.match(r'^NAXIS\d+$', keyword):
                continue
            if keyword in _IMAGE_TO_TABLE:
                keyword = _IMAGE_TO_TABLE[keyword]
                header.append(Card(keyword, card.value,
                                   card.comment or _COMMENTS[keyword]))
            else:
                header.append(copy.copy(card), end=True)
        return header

    def _image_header_from_table(self):
        """Rebuild the header of the uncompressed image."""

        table = self._header
        cards = [Card('XTENSION', 'IMAGE', 'Image extension'),
                 Card('BITPIX', table['ZBITPIX'], 'data type of original '
                      'image'),
                 Card('NAXIS', table['ZNAXIS'], 'dimension of original '
                      'image')]
        for idx in range(table['ZNAXIS']):
            cards.append(Card('NAXIS%d' % (idx + 1),
                              table['ZNAXIS%d' % (idx + 1)],
                              'length of data axis %d' % (idx + 1)))
        cards.append(Card('PCOUNT', table.get('ZPCOUNT', 0),
                          'number of parameters'))
        cards.append(Card('GCOUNT', table.get('ZGCOUNT', 1),
                          'number of groups'))
        if table.get('ZTENSION', 'IMAGE').rstrip() != 'IMAGE':
            warnings.warn("ZTENSION keyword in compressed extension != "
                          "'IMAGE'")

        header = Header(cards)
        for card in table.cards:
            keyword = card.keyword
            if _is_compression_keyword(keyword) or \
                    keyword in ('ZTENSION', 'ZPCOUNT', 'ZGCOUNT'):
                continue
            if keyword in ('ZSIMPLE', 'ZEXTEND'):
                self._primary_cards.append(copy.copy(card))
            elif keyword in _TABLE_TO_IMAGE:
                header.append(Card(_TABLE_TO_IMAGE[keyword], card.value,
                                   card.comment))
            else:
                header.append(copy.copy(card), end=True)
        return header

    def _prepare_header(self):
        if self._image_loaded:
            self.compress()
        elif self._table_loaded:
            self.update()

    def copy(self):
        """
        Make a copy of the HDU; the image is copied and compressed with
        the same settings.
        """

        data = self.data
        hdu = CompImageHDU(data=None if data is None else data.copy(),
                           header=self._image_header.copy(), name=self.name,
                           compression_type=self._algorithm.name,
                           tile_size=self._tile_size)
        hdu._options = dict((cls, option.copy())
                            for cls, option in self._options.items())
        hdu._no_loss_regions = list(self._no_loss_regions)
        hdu._tile_algorithms = dict(self._tile_algorithms)
        hdu._mask_algorithm = self._mask_algorithm
        hdu._null_value = self._null_value
        hdu._primary_cards = [copy.copy(card) for card in self._primary_cards]
        return hdu

    def _summary(self):
        """
        Summarize the HDU: name, dimensions, and formats.
        """

        class_name = self.__class__.__name__

        # if data is touched, use data info.
        if self._image_loaded:
            if self.data is None:
                shape, format = (), ''
            else:
                shape = tuple(reversed(self.data.shape))
                format = self.data.dtype.name
        # if data is not touched yet, use header info.
        else:
            shape = tuple(reversed(self.shape))
            format = self._image_view()._output_dtype().name if shape else ''

        return '%-10s  %-11s  %5d  %-12s  %s' % \
            (self.name, class_name, len(self._header), shape, format)

    def _verify(self, option='warn'):
        errs = super(CompImageHDU, self)._verify(option=option)
        self.req_cards('ZBITPIX', None,
                       lambda v: v in (8, 16, 32, 64, -32, -64), None, option,
                       errs)
        self.req_cards('ZNAXIS', None, lambda v: 0 <= v <= 999, None, option,
                       errs)
        self.req_cards('ZCMPTYPE', None, is_known_algorithm, None, option,
                       errs)
        return errs


class CompImageTiler(object):
    """
    Random access to rectangular regions of a compressed image.  Only the
    tiles intersecting a region are decompressed; strided regions are not
    supported.
    """

    def __init__(self, hdu):
        self.hdu = hdu

    @property
    def shape(self):
        return self.hdu.shape

    @property
    def dtype(self):
        hdu = self.hdu
        if hdu._image_loaded:
            return hdu.data.dtype
        return hdu._image_view()._output_dtype()

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

        corners, lengths, steps = check_region(self.shape, corners, lengths,
                                               steps)
        if any(step != 1 for step in steps):
            raise StridingNotSupportedError(
                'striding unsupported: the compressed image tiler cannot '
                'read regions with steps %r' % (steps,))
        if tuple(array.shape) != tuple(lengths):
            raise SizeMismatchError(
                'size mismatch: the destination array has shape %s, the '
                'requested region %s' % (array.shape, lengths))

        hdu = self.hdu
        if hdu._image_loaded or hdu._deferred is None:
            array[...] = hdu.data[tuple(slice(c, c + n)
                                        for c, n in zip(corners, lengths))]
            return array

        shape = hdu.shape
        table = hdu.compressed_data
        rows = hdu._tile_rows(table)
        plan = hdu._header_plan()
        dtype = hdu._storage_dtype()

        units = []
        for tile in hdu._tiles(shape):
            if not intersects(tile, corners, lengths):
                continue
            buffer = np.empty(tile.lengths, dtype=dtype)
            local = tile._replace(corners=(0,) * len(shape))
            units.append(tiled.ImageTileDecompressor(local, buffer, plan,
                                                     rows[tile.index]))
            units[-1].source = tile
        tiled.execute(units)

        storage = np.empty(tuple(lengths), dtype=dtype)
        for unit in units:
            tile = unit.source
            target = []
            source = []
            for tc, tn, c, n in zip(tile.corners, tile.lengths, corners,
                                    lengths):
                low = max(tc, c)
                high = min(tc + tn, c + n)
                target.append(slice(low - c, high - c))
                source.append(slice(low - tc, high - tc))
            storage[tuple(target)] = unit.out[tuple(source)]

        array[...] = hdu._convert_storage(storage, hdu._image_view())
        return array


class CompTableHDU(BinTableHDU):
    """
    Compressed binary table HDU class.

    The table is stored as one row per tile of ``ZTILELEN`` rows; every
    column of the original table becomes a variable length byte column
    holding the compressed values of the tile.
    """

    _source = None
    _tile_rows = None
    _column_algorithms = None

    @classmethod
    def match_header(cls, header):
        card = header.cards[0]
        return (card.keyword == 'XTENSION' and
                str(card.value).rstrip() == 'BINTABLE' and
                header.get('ZTABLE') is True)

    @classmethod
    def from_table_hdu(cls, table_hdu, tile_rows=None, *column_algorithms):
        """
        Prepare the compression of a binary table HDU.

        Parameters
        ----------
        table_hdu : BinTableHDU
            the table to compress

        tile_rows : int, optional
            number of rows per tile; by default the table is one tile

        column_algorithms : str
            compression algorithm of each column in turn (``GZIP_1``,
            ``GZIP_2``, ``RICE_1`` or ``NOCOMPRESS``); columns without one
            use ``GZIP_2``

        The compression happens in `compress`, or when the HDU is written.
        """

        columns = table_hdu.columns
        for column in columns:
            if column.format.is_variable:
                raise UnsupportedFeatureError(
                    'Variable length column %r cannot be compressed.'
                    % column.name)

        algorithms = []
        for idx, column in enumerate(columns):
            if idx < len(column_algorithms) and column_algorithms[idx]:
                algorithm = get_algorithm(column_algorithms[idx])
            else:
                algorithm = get_algorithm(DEFAULT_TABLE_COMPRESSION_TYPE)
            if algorithm.name not in TABLE_COMPRESSION_TYPES:
                raise UnsupportedFeatureError(
                    '%s cannot compress table columns; use one of %s.'
                    % (algorithm.name, ', '.join(TABLE_COMPRESSION_TYPES)))
            if algorithm.integer_only and column.format.code in 'ED':
                warnings.warn('%s cannot compress the %s values of column '
                              '%r; %s is used instead.'
                              % (algorithm.name, column.format, column.name,
                                 DEFAULT_TABLE_COMPRESSION_TYPE))
                algorithm = get_algorithm(DEFAULT_TABLE_COMPRESSION_TYPE)
            algorithms.append(algorithm)

        hdu = cls(name=table_hdu.name or None)
        hdu._source = table_hdu
        hdu._tile_rows = tile_rows
        hdu._column_algorithms = algorithms
        return hdu

    def compress(self):
        """
        Compress the source table; returns the table of compressed tiles.
        Nothing is changed unless every tile compresses.
        """

        source = self._source
        if source is None:
            raise ArgumentError('This HDU has no table to compress.')

        data = source.data
        columns = source.columns
        nrows = 0 if data is None else len(data)
        tiles = table_tiles(nrows, self._tile_rows)

        units = []
        for idx, column in enumerate(columns):
            field = None if data is None else data.field(idx)
            algorithm = self._column_algorithms[idx]
            for tile in tiles:
                units.append(tiled.TableTileCompressor(
                    tile.with_column(idx), column, field, algorithm,
                    algorithm.default_option()))
        tiled.execute(units)

        compressed = []
        for idx, column in enumerate(columns):
            payloads = [unit.payload for unit in units
                        if unit.tile.column == idx]
            compressed.append(Column(name=column.name, format='1QB',
                                     unit=column.unit, null=column.null,
                                     bzero=column.bzero, dim=column.dim,
                                     array=payloads))
        table = FITS_rec(ColDefs(compressed), nrows=len(tiles))

        header = _table_header()
        header.append(Card('ZTABLE', True, 'extension contains compressed '
                           'binary table'))
        header.append(Card('ZTILELEN', tiles[0].lengths[0] if tiles else 0,
                           'number of rows in each tile'))
        header.append(Card('ZNAXIS1', columns.row_width,
                           'original row width in bytes'))
        header.append(Card('ZNAXIS2', nrows, 'original number of rows'))
        header.append(Card('ZPCOUNT', 0, 'original size of the heap'))
        for idx, column in enumerate(columns):
            header.append(Card('ZFORM%d' % (idx + 1), str(column.format),
                               'data format of field'))
            header.append(Card('ZCTYP%d' % (idx + 1),
                               self._column_algorithms[idx].name,
                               'compression algorithm for column'))
        if self.name:
            header.append(Card('EXTNAME', self.name, 'extension name'))
        for card in source.header.copy(strip=True).cards:
            if card.keyword != 'EXTNAME':
                header.append(card, end=True)

        self._header = header
        self.data = table
        self._source = None
        self.update()
        return table

    def _prepare_header(self):
        if self._source is not None:
            self.compress()
        super(CompTableHDU, self)._prepare_header()

    def _original_columns(self):
        if self._source is not None:
            self.compress()
        header = self._header
        columns = []
        for idx in range(header.get('TFIELDS', 0)):
            n = idx + 1
            if 'ZFORM%d' % n not in header:
                raise FormatError('Compressed table column %d has no '
                                  'ZFORM%d keyword.' % (n, n))
            columns.append(Column(name=header.get('TTYPE%d' % n),
                                  format=header['ZFORM%d' % n],
                                  unit=header.get('TUNIT%d' % n),
                                  null=header.get('TNULL%d' % n),
                                  bzero=header.get('TZERO%d' % n),
                                  dim=header.get('TDIM%d' % n)))
        return ColDefs(columns)

    def _tile_range(self, from_tile, to_tile):
        header = self._header
        nrows = header.get('ZNAXIS2', 0)
        tiles = table_tiles(nrows, header.get('ZTILELEN') or None)
        if from_tile is None:
            from_tile = 0
        if to_tile is None:
            to_tile = len(tiles)
        if not 0 <= from_tile <= to_tile <= len(tiles):
            raise ArgumentError('Invalid tile range %d to %d of a table with '
                                '%d tiles.' % (from_tile, to_tile,
                                               len(tiles)))
        return tiles[from_tile:to_tile]

    def _decompress(self, indices, from_tile, to_tile):
        """
        Decompress the columns with the given indices, each into its own
        field, from the tiles in the given range.
        """

        columns = self._original_columns()
        tiles = self._tile_range(from_tile, to_tile)
        first = tiles[0].corners[0] if tiles else 0
        nrows = sum(tile.lengths[0] for tile in tiles)
        data = self.data

        fields = []
        units = []
        for target, idx in enumerate(indices):
            column = columns[idx]
            fields.append(_coerce_field(column, None, nrows))
            algorithm = get_algorithm(self._header.get('ZCTYP%d' % (idx + 1),
                                                       'GZIP_1'))
            payloads = data.field(idx)
            for tile in tiles:
                local = tile._replace(corners=(tile.corners[0] - first,),
                                      column=idx)
                unit = tiled.TableTileDecompressor(
                    local, column, payloads[tile.index], algorithm, fields,
                    algorithm.default_option())
                units.append(unit.decompress_to_column(target))
        tiled.execute(units)
        return fields, nrows

    def as_table_hdu(self, from_tile=None, to_tile=None):
        """
        Returns a `BinTableHDU` holding the uncompressed rows of the tiles
        ``from_tile`` (inclusive) to ``to_tile`` (exclusive); by default
        the whole table.
        """

        columns = self._original_columns()
        fields, nrows = self._decompress(range(len(columns)), from_tile,
                                         to_tile)
        data = FITS_rec(columns, fields, nrows)

        header = Header()
        for card in self._header.copy(strip=True).cards:
            keyword = card.keyword
            if keyword in _TABLE_KEYWORDS or _TABLE_KEYWORDS_RE.match(keyword):
                continue
            header.append(card, end=True)
        return BinTableHDU(data=data, header=header)

    def get_column_data(self, column, from_tile=0, to_tile=None):
        """
        The uncompressed values of one column (by name or index) from the
        given range of tiles.
        """

        idx = self._original_columns().index_of(column)
        fields, nrows = self._decompress([idx], from_tile, to_tile)
        return fields[0]

