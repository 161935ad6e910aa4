"""
Partitioning of image pixel grids and table row ranges into tiles.

Shapes, corners and lengths in this module are in numpy axis order (the
slowest varying axis first), the reverse of the FITS ``NAXISn`` order.
"""

import itertools
from collections import namedtuple

import numpy as np

from tilefits.errors import TileGeometryError
from tilefits.util import _is_int


class TileDescription(namedtuple('TileDescription',
                                 ['index', 'column', 'corners', 'lengths',
                                  'steps'])):
    """
    One tile of a data unit.

    ``index`` is the 0-based position of the tile in iteration order,
    ``column`` the table column the tile belongs to (0 for images), and
    ``corners``/``lengths``/``steps`` give the covered region per axis.
    For table tiles these are 1-tuples of row numbers.
    """

    __slots__ = ()

    @property
    def size(self):
        return int(np.prod(self.lengths)) if self.lengths else 1

    @property
    def slices(self):
        return tile_slices(self)

    def with_column(self, column):
        """A copy of this tile description bound to another column."""

        return self._replace(column=column)


def check_geometry(corners, lengths, steps=None):
    """
    Validate and normalize a region request: corners and lengths must be
    non-negative integers of equal rank, steps (default 1) strictly
    positive.  Returns the ``(corners, lengths, steps)`` tuples.
    """

    corners = tuple(corners)
    lengths = tuple(lengths)
    if steps is None:
        steps = (1,) * len(corners)
    steps = tuple(steps)

    if not (len(corners) == len(lengths) == len(steps)):
        raise TileGeometryError(
            'corners, lengths and steps must have the same number of '
            'axes: %r, %r, %r' % (corners, lengths, steps))
    for name, values in (('corner', corners), ('length', lengths)):
        for value in values:
            if not _is_int(value) or value < 0:
                raise TileGeometryError('Tile %s must be a non-negative '
                                        'integer: %r' % (name, value))
    for value in steps:
        if not _is_int(value) or value <= 0:
            raise TileGeometryError('Tile step must be a positive '
                                    'integer: %r' % (value,))
    return corners, lengths, steps


def default_tile_shape(shape):
    """One row of the image per tile."""

    if not shape:
        return ()
    return (1,) * (len(shape) - 1) + (shape[-1],)


def image_tiles(shape, tile_shape=None, column=0):
    """
    Partition an image of the given shape.

    Tiles are generated in FITS order: the tile grid is walked with the
    fastest (last numpy) axis varying first.  The last tile along an axis
    is truncated when the axis length is not a multiple of the tile
    extent.

    Parameters
    ----------
    shape : tuple of int
        The image shape.

    tile_shape : tuple of int, optional
        Extent of a full tile along every axis; by default each row of
        the image is a tile.  Extents larger than the image are clipped.
    """

    shape = tuple(int(n) for n in shape)
    if tile_shape is None:
        tile_shape = default_tile_shape(shape)
    tile_shape = tuple(tile_shape)

    if len(tile_shape) != len(shape):
        raise TileGeometryError(
            'Tile shape %r does not match the %d dimensions of the image'
            % (tile_shape, len(shape)))
    for extent in tile_shape:
        if not _is_int(extent) or extent <= 0:
            raise TileGeometryError('Tile extents must be positive '
                                    'integers: %r' % (tile_shape,))
    for n in shape:
        if n < 0:
            raise TileGeometryError('Invalid image shape %r' % (shape,))

    if any(n == 0 for n in shape):
        return []

    grid = [range(0, n, t) for n, t in zip(shape, tile_shape)]
    tiles = []
    for index, corners in enumerate(itertools.product(*grid)):
        lengths = tuple(min(t, n - c)
                        for c, t, n in zip(corners, tile_shape, shape))
        tiles.append(TileDescription(index, column, tuple(corners), lengths,
                                     (1,) * len(shape)))
    return tiles


def tile_grid_shape(shape, tile_shape):
    """Number of tiles along each axis."""

    return tuple((n - 1) // t + 1 if n else 0
                 for n, t in zip(shape, tile_shape))


def table_tiles(nrows, tile_rows=None, column=0):
    """
    Partition the row range of a table into tiles of ``tile_rows`` rows;
    by default the whole table is a single tile.  The last tile takes the
    remainder.
    """

    if nrows < 0:
        raise TileGeometryError('Invalid number of rows: %r' % nrows)
    if tile_rows is None or tile_rows == 0:
        tile_rows = max(nrows, 1)
    if not _is_int(tile_rows) or tile_rows < 0:
        raise TileGeometryError('Tile row count must be a positive '
                                'integer: %r' % (tile_rows,))

    return [TileDescription(index, column, (start,),
                            (min(tile_rows, nrows - start),), (1,))
            for index, start in enumerate(range(0, nrows, tile_rows))]


def tile_slices(tile):
    """The tuple of slices selecting a tile's region out of its array."""

    return tuple(slice(c, c + n * s, s)
                 for c, n, s in zip(tile.corners, tile.lengths, tile.steps))


def intersects(tile, corners, lengths):
    """Does the tile overlap the region given by corners and lengths?"""

    for tc, tn, c, n in zip(tile.corners, tile.lengths, corners, lengths):
        if tc >= c + n or c >= tc + tn:
            return False
    return True


def check_region(shape, corners, lengths, steps=None):
    """
    Validate a region request against the shape of the array it is taken
    from; returns the normalized ``(corners, lengths, steps)``.
    """

    corners, lengths, steps = check_geometry(corners, lengths, steps)
    if len(shape) != len(corners):
        raise TileGeometryError(
            'Region of rank %d requested from an array of rank %d'
            % (len(corners), len(shape)))
    for c, n, s, axis in zip(corners, lengths, steps, shape):
        if n and c + (n - 1) * s >= axis:
            raise TileGeometryError(
                'Requested region exceeds the array bounds: corners %r, '
                'lengths %r, steps %r, shape %r'
                % (corners, lengths, steps, shape))
    return corners, lengths, steps


def region_slices(corners, lengths, steps):
    """Slices selecting a (strided) region given by corners and lengths."""

    return tuple(slice(c, c + (n - 1) * s + 1 if n else c, s)
                 for c, n, s in zip(corners, lengths, steps))


def byte_runs(shape, itemsize, corners, lengths, steps=None):
    """
    Generate the contiguous byte runs of a row-major array on disk that
    hold a (possibly strided) sub-region.

    Yields ``(offset, nbytes, index)`` triples, where ``offset`` is the
    byte offset of the run from the start of the array, and ``index`` the
    index tuple (over all axes but the last) of the destination row.  Along
    the fastest axis a run spans from the first to the last requested
    element, so strided requests must be subsampled by the caller.
    """

    corners, lengths, steps = check_region(shape, corners, lengths, steps)
    if not shape or any(n == 0 for n in lengths):
        return

    strides = [itemsize]
    for n in reversed(shape[1:]):
        strides.insert(0, strides[0] * n)

    run = ((lengths[-1] - 1) * steps[-1] + 1) * itemsize
    outer = [range(n) for n in lengths[:-1]]
    for index in itertools.product(*outer):
        offset = corners[-1] * itemsize
        for axis, idx in enumerate(index):
            offset += (corners[axis] + idx * steps[axis]) * strides[axis]
        yield offset, run, index
