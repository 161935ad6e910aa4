"""
Per-tile work units of the tiled compression passes and the worker pool
that runs them.

A pass builds one work unit per tile.  Units share nothing but read-only
inputs: compressors keep their result on the unit until the pass
assembles the output table, decompressors write into their own disjoint
slice of a destination array (or table column).  `execute` runs the
units, serially or on a thread pool, and only returns once every unit has
finished; the first failure in tile order is then re-raised with the
index of the failing tile attached as ``tile_index``.
"""

from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from tilefits import core
from tilefits.codec import to_big_endian
from tilefits.column import FITS2NUMPY, _decode_field, _encode_field
from tilefits.compression import get_algorithm
from tilefits.compression.quantize import dequantize, quantize
from tilefits.errors import InvalidStreamError
from tilefits.tiles import intersects


# names of the columns of a compressed image table
COMPRESSED_DATA = 'COMPRESSED_DATA'
GZIP_COMPRESSED_DATA = 'GZIP_COMPRESSED_DATA'
UNCOMPRESSED_DATA = 'UNCOMPRESSED_DATA'
ZSCALE = 'ZSCALE'
ZZERO = 'ZZERO'
NULL_PIXEL_MASK = 'NULL_PIXEL_MASK'

# table column formats handled as typed numbers; the others are compressed
# as their raw bytes
_NUMERIC_CODES = 'BIJKED'


def execute(units, max_workers=None):
    """
    Run the work units of one pass.

    Parameters
    ----------
    units : list of work units
        objects with a ``run()`` method and a ``tile`` attribute

    max_workers : int, optional
        size of the thread pool; defaults to `tilefits.core.MAX_WORKERS`.
        With a single worker (or a single unit) the units run serially in
        the calling thread.
    """

    units = list(units)
    if max_workers is None:
        max_workers = core.MAX_WORKERS

    if max_workers <= 1 or len(units) <= 1:
        for unit in units:
            try:
                unit.run()
            except Exception as exc:
                _attach_tile(exc, unit)
                raise
        return units

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(unit.run) for unit in units]

    # the executor has joined every unit; report the first failure
    for unit, future in zip(units, futures):
        exc = future.exception()
        if exc is not None:
            _attach_tile(exc, unit)
            raise exc
    return units


def _attach_tile(exc, unit):
    try:
        exc.tile_index = unit.tile.index
    except AttributeError:
        pass


class _WorkUnit(object):
    """A unit of work for one tile."""

    def __init__(self, tile):
        self.tile = tile
        self.done = False

    def run(self):
        self._run()
        self.done = True

    def _run(self):
        raise NotImplementedError


class ImageCompressionPlan(namedtuple('ImageCompressionPlan',
                                     ['algorithm', 'option', 'quantize',
                                      'no_loss_regions', 'tile_algorithms',
                                      'mask_algorithm', 'null_value'])):
    """
    The configuration of one image compression pass, shared read-only by
    all of its work units.

    ``option`` and ``quantize`` are private copies made for the pass;
    ``no_loss_regions`` is a list of ``(corners, lengths)`` pairs that
    must be stored without loss; ``tile_algorithms`` maps tile indices to
    the algorithm overriding the primary one; ``mask_algorithm`` (or
    `None`) compresses the ``NULL_PIXEL_MASK`` of tiles holding null
    pixels, which are NaN or equal to ``null_value``.
    """

    __slots__ = ()

    def algorithm_for(self, tile):
        return self.tile_algorithms.get(tile.index, self.algorithm)

    def option_for(self, algorithm):
        if algorithm is self.algorithm:
            return self.option
        return algorithm.default_option()

    def must_be_lossless(self, tile):
        return any(intersects(tile, corners, lengths)
                   for corners, lengths in self.no_loss_regions)


def _payload(data, element_code='B'):
    """The variable length array holding a compressed stream."""

    if element_code == 'I':
        return np.frombuffer(data, dtype='>i2').astype(np.int16)
    return np.frombuffer(data, dtype=np.uint8).copy()


def _stream(payload, element_code='B'):
    """The compressed stream held by a variable length array."""

    payload = np.asarray(payload)
    if element_code == 'I':
        return payload.astype('>i2').tobytes()
    return payload.astype(np.uint8).tobytes()


def _null_pixels(data, null_value):
    if data.dtype.kind == 'f':
        return np.isnan(data)
    if null_value is None:
        return np.zeros(data.shape, dtype=bool)
    return data == null_value


class ImageTileCompressor(_WorkUnit):
    """
    Compresses one tile of an image.  After `run` the result is found in
    ``column`` (the name of the column the tile is stored in), ``payload``,
    and, for quantized tiles, ``zscale``/``zzero``; ``null_mask`` holds the
    compressed null pixel mask, if any.
    """

    def __init__(self, tile, image, plan):
        super(ImageTileCompressor, self).__init__(tile)
        self.image = image
        self.plan = plan
        self.column = None
        self.payload = None
        self.zscale = None
        self.zzero = None
        self.null_mask = None

    def _run(self):
        plan = self.plan
        data = np.ascontiguousarray(self.image[self.tile.slices])
        algorithm = plan.algorithm_for(self.tile)
        option = plan.option_for(algorithm)
        is_float = data.dtype.kind == 'f'

        if plan.mask_algorithm is not None:
            nulls = _null_pixels(data, plan.null_value)
            if nulls.any():
                self.null_mask = _payload(plan.mask_algorithm.compress(
                    nulls.astype(np.uint8)))

        lossy = algorithm.is_lossy(option)
        if is_float and plan.quantize is not None:
            lossy = lossy or plan.quantize.is_lossy()

        if algorithm.name == 'NOCOMPRESS' or \
                (lossy and plan.must_be_lossless(self.tile)):
            self._store(UNCOMPRESSED_DATA, data.ravel())
            return

        if algorithm is not plan.algorithm and algorithm.name == 'GZIP_1':
            self._store(GZIP_COMPRESSED_DATA,
                        _payload(algorithm.compress(data, option)))
            return

        if is_float:
            quantized = None
            if plan.quantize is not None:
                quantized = quantize(data, plan.quantize,
                                     self.tile.index + 1)
            if quantized is None and \
                    (plan.quantize is not None or algorithm.integer_only):
                # not representable as scaled integers: keep the floats
                gzip = get_algorithm('GZIP_1')
                self._store(GZIP_COMPRESSED_DATA,
                            _payload(gzip.compress(data)))
                return
            if quantized is not None:
                ints, self.zscale, self.zzero = quantized
                data = ints.reshape(data.shape)

        self._store(COMPRESSED_DATA,
                    _payload(algorithm.compress(data, option),
                             plan.algorithm.element_code))

    def _store(self, column, payload):
        self.column = column
        self.payload = payload


class ImageTileDecompressor(_WorkUnit):
    """
    Decompresses one tile of an image into its region of ``out``.

    ``row`` maps the column names of the compressed table to the values
    of the tile's row; ``ZSCALE``/``ZZERO`` may also come from header
    constants.  The unit only ever writes into the tile's own region.
    """

    def __init__(self, tile, out, plan, row):
        super(ImageTileDecompressor, self).__init__(tile)
        self.out = out
        self.plan = plan
        self.row = row

    def _run(self):
        plan = self.plan
        row = self.row
        target = self.out[self.tile.slices]
        shape = target.shape

        uncompressed = row.get(UNCOMPRESSED_DATA)
        gzipped = row.get(GZIP_COMPRESSED_DATA)
        compressed = row.get(COMPRESSED_DATA)

        if uncompressed is not None and len(uncompressed):
            values = np.asarray(uncompressed)
            if values.size != target.size:
                raise InvalidStreamError(
                    'invalid stream: %d uncompressed values for a tile of %d '
                    'pixels' % (values.size, target.size))
            target[...] = values.reshape(shape)
        elif gzipped is not None and len(gzipped):
            tmp = np.empty(shape, dtype=target.dtype)
            get_algorithm('GZIP_1').decompress(_stream(gzipped), tmp)
            target[...] = tmp
        elif compressed is not None and len(compressed):
            algorithm = plan.algorithm
            stream = _stream(compressed, algorithm.element_code)
            zscale = row.get(ZSCALE)
            if target.dtype.kind == 'f' and zscale is not None:
                ints = np.empty(shape, dtype=np.int32)
                algorithm.decompress(stream, ints, plan.option)
                target[...] = dequantize(
                    ints, zscale, row.get(ZZERO, 0.0), plan.quantize,
                    self.tile.index + 1, np.nan, target.dtype).reshape(shape)
            else:
                tmp = np.empty(shape, dtype=target.dtype)
                algorithm.decompress(stream, tmp, plan.option)
                target[...] = tmp
        else:
            raise InvalidStreamError('invalid stream: tile %d holds no data'
                                     % self.tile.index)

        mask = row.get(NULL_PIXEL_MASK)
        if mask is not None and len(mask) and plan.mask_algorithm is not None:
            nulls = np.empty(shape, dtype=np.uint8)
            plan.mask_algorithm.decompress(_stream(mask), nulls)
            nulls = nulls.astype(bool)
            if target.dtype.kind == 'f':
                target[nulls] = np.nan
            elif plan.null_value is not None:
                target[nulls] = plan.null_value


def _storage_dtype(column):
    """Element type a table column's tile is compressed as."""

    code = column.format.code
    if code in _NUMERIC_CODES:
        return np.dtype(FITS2NUMPY[code])
    return np.dtype(np.uint8)


def table_tile_values(column, rows):
    """
    The values of a range of rows of a table column, as handed to a
    compression algorithm: numeric columns as their stored numbers (so
    pseudo-unsigned integers keep their offset), the others as raw bytes.
    """

    raw = _encode_field(column, rows, bytearray())
    if column.format.code not in _NUMERIC_CODES:
        return np.ascontiguousarray(raw).ravel()
    dtype = _storage_dtype(column)
    big = np.frombuffer(np.ascontiguousarray(raw).tobytes(),
                        dtype=dtype.newbyteorder('>'))
    return big.astype(dtype)


def table_tile_field(column, values, nrows):
    """The inverse of `table_tile_values`."""

    raw = to_big_endian(np.ascontiguousarray(values)).tobytes()
    matrix = np.frombuffer(raw, dtype=np.uint8).reshape(nrows,
                                                        column.format.width)
    return _decode_field(column, matrix)


def table_tile_length(column, nrows):
    """Number of values `table_tile_values` yields for ``nrows`` rows."""

    return nrows * column.format.width // _storage_dtype(column).itemsize


class TableTileCompressor(_WorkUnit):
    """
    Compresses the rows of one table tile of one column.  After `run` the
    compressed stream is in ``payload``.
    """

    def __init__(self, tile, column, field, algorithm, option=None):
        super(TableTileCompressor, self).__init__(tile)
        self.column = column
        self.field = field
        self.algorithm = algorithm
        self.option = option
        self.payload = None

    def _run(self):
        start = self.tile.corners[0]
        rows = self.field[start:start + self.tile.lengths[0]]
        values = table_tile_values(self.column, rows)
        self.payload = _payload(self.algorithm.compress(values, self.option))


class TableTileDecompressor(_WorkUnit):
    """
    Decompresses one table tile of one column into the rows of the tile
    in ``fields[target_column]``.

    By default a tile is decompressed into the column it was compressed
    from; `decompress_to_column` redirects it, which is how a subset of
    the columns is extracted into a table of its own.
    """

    def __init__(self, tile, column, payload, algorithm, fields,
                 option=None):
        super(TableTileDecompressor, self).__init__(tile)
        self.column = column
        self.payload = payload
        self.algorithm = algorithm
        self.fields = fields
        self.option = option
        self.target_column = tile.column

    def decompress_to_column(self, index):
        """
        Write the tile into column ``index`` of the destination.  Has no
        effect once the unit has run.
        """

        if not self.done:
            self.target_column = index
        return self

    def _run(self):
        nrows = self.tile.lengths[0]
        start = self.tile.corners[0]
        values = np.empty(table_tile_length(self.column, nrows),
                          dtype=_storage_dtype(self.column))
        self.algorithm.decompress(_stream(self.payload), values, self.option)
        field = self.fields[self.target_column]
        field[start:start + nrows] = table_tile_field(self.column, values,
                                                      nrows)
