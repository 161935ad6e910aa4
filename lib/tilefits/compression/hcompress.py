"""
H-compress image coder (``HCOMPRESS_1``).

The tile is treated as a two dimensional image, ``ZTILE1`` pixels wide.
The coder is R. White's H-compress as used by the FITS tiled image
convention, so its streams can be read by the other implementations of
the convention:

1. an integer H-transform (a two dimensional Haar transform) is applied
   ``ceil(log2(max(rows, columns)))`` times; after each level the
   coefficients are shuffled so that they are grouped by order;
2. with a scale larger than one the coefficients are digitized, that is
   divided by the scale with rounding to the nearest integer;
3. the first coefficient (the sum of all pixels) is written as is; the
   magnitudes of the others are coded bit plane by bit plane, quadrant by
   quadrant, with a quadtree of 4-bit nodes and a fixed Huffman code;
   their signs follow as one bit per nonzero coefficient.

Stream layout: the magic bytes ``0xDD 0x99``; the number of rows, the
number of columns and the scale as big-endian 32-bit integers; the sum of
all pixels as a big-endian 64-bit integer; one byte per quadrant class
with its number of bit planes; the bit plane codes, closed by a zero
nybble and padded to a whole byte; and the sign bits.
"""

import numpy as np

from tilefits.compression.base import CompressionAlgorithm, \
                                      HCompressOption, _fill
from tilefits.errors import ArgumentError, InvalidStreamError, \
                           ValueOutOfRangeError


HCOMPRESS_MAGIC = b'\xdd\x99'

_HEADER_SIZE = len(HCOMPRESS_MAGIC) + 3 * 4 + 8 + 3

# Huffman code and code length of each 4-bit quadtree node
_CODES = [0x3e, 0x00, 0x01, 0x08, 0x02, 0x09, 0x1a, 0x1b,
          0x03, 0x1c, 0x0a, 0x1d, 0x0b, 0x1e, 0x3f, 0x0c]
_CODE_BITS = np.array([6, 3, 3, 4, 3, 4, 5, 5, 3, 5, 4, 5, 4, 5, 6, 4])

_NODES = dict(((int(nbits), code), node) for node, (code, nbits)
              in enumerate(zip(_CODES, _CODE_BITS)))

_NYBBLE_QUADTREE = 0xF
_NYBBLE_DIRECT = 0x0


def _log2n(n):
    """log2 of ``n`` rounded up to an integer; 0 for ``n <= 1``."""

    return max(n - 1, 0).bit_length()


def _round(h, prnd, nrnd, mask):
    return (h + np.where(h >= 0, prnd, nrnd)) & mask


def _shuffle(block):
    # even elements first, then odd ones, along both axes
    for axis in (0, 1):
        work = np.moveaxis(block, axis, 0)
        work[...] = np.concatenate((work[0::2], work[1::2]))


def _unshuffle(block):
    for axis in (0, 1):
        work = np.moveaxis(block, axis, 0)
        half = (work.shape[0] + 1) >> 1
        merged = np.empty_like(work)
        merged[0::2] = work[:half]
        merged[1::2] = work[half:]
        work[...] = merged


def _htrans_level(block, shift, prnd, mask):
    """
    One level of the forward transform, in place.  Each 2x2 group becomes
    its sum (``h0``), its x and y differences (``hx``, ``hy``) and its
    curvature (``hc``); the low bits that can be recovered from the
    parities of the other coefficients are dropped.
    """

    prnd2 = prnd << 1
    mask2 = mask << 1
    nxtop, nytop = block.shape
    ex = nxtop - nxtop % 2
    ey = nytop - nytop % 2

    s00 = block[0:ex:2, 0:ey:2]
    s01 = block[0:ex:2, 1:ey:2]
    s10 = block[1:ex:2, 0:ey:2]
    s11 = block[1:ex:2, 1:ey:2]
    h0 = (s11 + s10 + s01 + s00) >> shift
    hx = (s11 + s10 - s01 - s00) >> shift
    hy = (s11 - s10 + s01 - s00) >> shift
    hc = (s11 - s10 - s01 + s00) >> shift
    s11[...] = hc
    s10[...] = _round(hx, prnd, 0, mask)
    s01[...] = _round(hy, prnd, 0, mask)
    s00[...] = _round(h0, prnd2, prnd2 - 1, mask2)

    if nytop % 2:
        # last column, the right neighbours are off the edge
        c00 = block[0:ex:2, nytop - 1]
        c10 = block[1:ex:2, nytop - 1]
        h0 = (c10 + c00) << (1 - shift)
        hx = (c10 - c00) << (1 - shift)
        c10[...] = _round(hx, prnd, 0, mask)
        c00[...] = _round(h0, prnd2, prnd2 - 1, mask2)

    if nxtop % 2:
        # last row
        r00 = block[nxtop - 1, 0:ey:2]
        r01 = block[nxtop - 1, 1:ey:2]
        h0 = (r01 + r00) << (1 - shift)
        hy = (r01 - r00) << (1 - shift)
        r01[...] = _round(hy, prnd, 0, mask)
        r00[...] = _round(h0, prnd2, prnd2 - 1, mask2)
        if nytop % 2:
            corner = block[nxtop - 1:, nytop - 1:]
            corner[...] = _round(corner << (2 - shift), prnd2, prnd2 - 1,
                                 mask2)


def _hinv_level(block, bit0):
    """Undo `_htrans_level` on a block of interleaved coefficients."""

    bit1 = bit0 << 1
    prnd0 = bit0 >> 1
    nrnd0 = max(prnd0 - 1, 0)
    # sums are divided by 4 on the last level, by 2 on the others
    shift = 2 if bit0 == 1 else 1
    nxtop, nytop = block.shape
    ex = nxtop - nxtop % 2
    ey = nytop - nytop % 2

    h0 = block[0:ex:2, 0:ey:2]
    hx = _round(block[1:ex:2, 0:ey:2], bit0, bit0 - 1, -bit1)
    hy = _round(block[0:ex:2, 1:ey:2], bit0, bit0 - 1, -bit1)
    hc = _round(block[1:ex:2, 1:ey:2], prnd0, nrnd0, -bit0)
    # put the low bits back from the parities of hc, hx and hy
    lowbit0 = hc & bit0
    hx = np.where(hx >= 0, hx - lowbit0, hx + lowbit0)
    hy = np.where(hy >= 0, hy - lowbit0, hy + lowbit0)
    lowbit1 = (hc ^ hx ^ hy) & bit1
    h0 = np.where(h0 >= 0, h0 + lowbit0 - lowbit1,
                  h0 + np.where(lowbit0 == 0, lowbit1, lowbit0 - lowbit1))
    block[1:ex:2, 1:ey:2] = (h0 + hx + hy + hc) >> shift
    block[1:ex:2, 0:ey:2] = (h0 + hx - hy - hc) >> shift
    block[0:ex:2, 1:ey:2] = (h0 - hx + hy - hc) >> shift
    block[0:ex:2, 0:ey:2] = (h0 - hx - hy + hc) >> shift

    if nytop % 2:
        h0 = block[0:ex:2, nytop - 1]
        hx = _round(block[1:ex:2, nytop - 1], bit0, bit0 - 1, -bit1)
        lowbit1 = hx & bit1
        h0 = np.where(h0 >= 0, h0 - lowbit1, h0 + lowbit1)
        block[1:ex:2, nytop - 1] = (h0 + hx) >> shift
        block[0:ex:2, nytop - 1] = (h0 - hx) >> shift

    if nxtop % 2:
        h0 = block[nxtop - 1, 0:ey:2]
        hy = _round(block[nxtop - 1, 1:ey:2], bit0, bit0 - 1, -bit1)
        lowbit1 = hy & bit1
        h0 = np.where(h0 >= 0, h0 - lowbit1, h0 + lowbit1)
        block[nxtop - 1, 1:ey:2] = (h0 + hy) >> shift
        block[nxtop - 1, 0:ey:2] = (h0 - hy) >> shift
        if nytop % 2:
            block[nxtop - 1, nytop - 1] >>= shift


def _level_shapes(shape, count):
    shapes = []
    nx, ny = shape
    for _ in range(count):
        shapes.append((nx, ny))
        nx = (nx + 1) >> 1
        ny = (ny + 1) >> 1
    return shapes


def htrans(image):
    """
    Forward H-transform of a 2-D integer image.

    Returns the shuffled coefficients as a new int64 array of the same
    shape; the sum of all pixels ends up in the first element.
    """

    a = np.array(image, dtype=np.int64)
    shift = 0
    prnd = 1
    mask = -2
    for nxtop, nytop in _level_shapes(a.shape, _log2n(max(a.shape))):
        block = a[:nxtop, :nytop]
        _htrans_level(block, shift, prnd, mask)
        _shuffle(block)
        # the first level keeps the sums, the others divide them by 2
        shift = 1
        prnd <<= 1
        mask <<= 1
    return a


def _limit(value, diff, dmin, dmax, bits, smax):
    # move value towards diff / 2**bits by at most smax, unless the
    # monotonicity constraints leave no room for a change
    diff = np.maximum(np.minimum(diff, dmax), dmin)
    s = diff - (value << bits)
    s = np.where(s >= 0, s >> bits, (s + (1 << bits) - 1) >> bits)
    s = np.clip(s, -smax, smax)
    return np.where(dmin < dmax, value + s, value)


def _hsmooth(block, scale):
    """
    Interpolate the differences of a level from the sums of the
    neighbouring groups.  A coefficient moves by no more than half the
    scale, the rounding error left by the digitization.
    """

    smax = scale >> 1
    if smax <= 0:
        return
    nxtop, nytop = block.shape
    rows = np.arange(2, nxtop - 2, 2)
    cols = np.arange(2, nytop - 2, 2)

    # x differences
    i, j = np.ix_(rows, np.arange(0, nytop, 2))
    if i.size and j.size:
        hm = block[i - 2, j]
        h0 = block[i, j]
        hp = block[i + 2, j]
        dmax = np.maximum(np.minimum(hp - h0, h0 - hm), 0) << 2
        dmin = np.minimum(np.maximum(hp - h0, h0 - hm), 0) << 2
        block[i + 1, j] = _limit(block[i + 1, j], hp - hm, dmin, dmax, 3,
                                 smax)

    # y differences
    i, j = np.ix_(np.arange(0, nxtop, 2), cols)
    if i.size and j.size:
        hm = block[i, j - 2]
        h0 = block[i, j]
        hp = block[i, j + 2]
        dmax = np.maximum(np.minimum(hp - h0, h0 - hm), 0) << 2
        dmin = np.minimum(np.maximum(hp - h0, h0 - hm), 0) << 2
        block[i, j + 1] = _limit(block[i, j + 1], hp - hm, dmin, dmax, 3,
                                 smax)

    # curvature
    i, j = np.ix_(rows, cols)
    if i.size and j.size:
        hmm = block[i - 2, j - 2]
        hpm = block[i + 2, j - 2]
        hmp = block[i - 2, j + 2]
        hpp = block[i + 2, j + 2]
        h0 = block[i, j]
        hx2 = block[i + 1, j] << 1
        hy2 = block[i, j + 1] << 1
        zero = np.zeros_like(h0)
        m1 = np.minimum(np.maximum(hpp - h0, zero) - hx2 - hy2,
                        np.maximum(h0 - hpm, zero) + hx2 - hy2)
        m2 = np.minimum(np.maximum(h0 - hmp, zero) - hx2 + hy2,
                        np.maximum(hmm - h0, zero) + hx2 + hy2)
        dmax = np.minimum(m1, m2) << 4
        m1 = np.maximum(np.minimum(hpp - h0, zero) - hx2 - hy2,
                        np.minimum(h0 - hpm, zero) + hx2 - hy2)
        m2 = np.maximum(np.minimum(h0 - hmp, zero) - hx2 + hy2,
                        np.minimum(hmm - h0, zero) + hx2 + hy2)
        dmin = np.maximum(m1, m2) << 4
        block[i + 1, j + 1] = _limit(block[i + 1, j + 1],
                                     hpp + hmm - hmp - hpm, dmin, dmax, 6,
                                     smax)


def hinv(coefficients, smooth=False, scale=0):
    """
    Inverse of `htrans`.

    Parameters
    ----------
    coefficients : ndarray
        2-D array of shuffled H-transform coefficients

    smooth : bool, optional
        interpolate the differences of each level from the neighbouring
        sums before inverting it; used for images digitized with a scale

    scale : int, optional
        the digitization scale, which bounds the smoothing
    """

    a = np.array(coefficients, dtype=np.int64)
    log2n = _log2n(max(a.shape))
    if log2n == 0:
        return a

    # round the sum to a multiple of the weight of its lowest kept bit
    prnd2 = 1 << log2n
    h0 = int(a[0, 0])
    a[0, 0] = (h0 + (prnd2 if h0 >= 0 else prnd2 - 1)) & -(prnd2 << 1)

    shapes = _level_shapes(a.shape, log2n)
    for level in range(log2n - 1, -1, -1):
        nxtop, nytop = shapes[level]
        block = a[:nxtop, :nytop]
        _unshuffle(block)
        if smooth:
            _hsmooth(block, scale)
        _hinv_level(block, 1 << level)
    return a


def _digitize(a, scale):
    # divide by the scale, rounding to the nearest integer away from zero
    d = (scale + 1) // 2 - 1
    return np.where(a > 0, (a + d) // scale, -((d - a) // scale))


def _nodes(plane):
    """
    Pack a 2-D array of bits into 4-bit quadtree nodes, one per 2x2 group:
    ``(i, j)`` is bit 3, ``(i, j+1)`` bit 2, ``(i+1, j)`` bit 1 and
    ``(i+1, j+1)`` bit 0.  Groups on the edges are padded with zeros.
    """

    nx, ny = plane.shape
    padded = np.zeros((nx + nx % 2, ny + ny % 2), dtype=np.uint8)
    padded[:nx, :ny] = plane
    return ((padded[0::2, 0::2] << 3) | (padded[0::2, 1::2] << 2) |
            (padded[1::2, 0::2] << 1) | padded[1::2, 1::2])


def _expand(nodes, shape):
    """Inverse of `_nodes`: the bits of ``nodes`` cropped to ``shape``."""

    nx, ny = nodes.shape
    bits = np.empty((2 * nx, 2 * ny), dtype=np.uint8)
    bits[0::2, 0::2] = (nodes >> 3) & 1
    bits[0::2, 1::2] = (nodes >> 2) & 1
    bits[1::2, 0::2] = (nodes >> 1) & 1
    bits[1::2, 1::2] = nodes & 1
    return np.ascontiguousarray(bits[:shape[0], :shape[1]])


class _BitWriter(object):
    def __init__(self):
        self._chunks = []

    def write(self, value, nbits):
        if nbits:
            self._chunks.append(format(value, '0%db' % nbits))

    def nybble(self, value):
        self.write(value, 4)

    def huffman(self, node):
        self.write(_CODES[node], int(_CODE_BITS[node]))

    def tobytes(self):
        bits = ''.join(self._chunks)
        bits += '0' * (-len(bits) % 8)
        if not bits:
            return b''
        return int(bits, 2).to_bytes(len(bits) // 8, 'big')


class _BitReader(object):
    def __init__(self, data):
        self.bits = np.unpackbits(np.array(bytearray(data),
                                           dtype=np.uint8)).tolist()
        self.pos = 0

    def read(self, nbits):
        end = self.pos + nbits
        if end > len(self.bits):
            raise InvalidStreamError('invalid stream: HCOMPRESS stream ended '
                                     'after %d bits' % len(self.bits))
        value = 0
        for bit in self.bits[self.pos:end]:
            value = (value << 1) | bit
        self.pos = end
        return value

    def huffman(self):
        code = 0
        for nbits in range(1, 7):
            code = (code << 1) | self.read(1)
            node = _NODES.get((nbits, code))
            if node is not None:
                return node
        raise InvalidStreamError('invalid stream: bad HCOMPRESS node code')


def _qtree_encode(writer, quadrant, nbitplanes):
    """
    Write the bit planes of a quadrant of coefficient magnitudes, the most
    significant one first.  A plane is written as a quadtree unless that
    would take more space than its bit map.
    """

    nqx, nqy = quadrant.shape
    nlevels = max(_log2n(max(nqx, nqy)), 1)
    nnodes = ((nqx + 1) // 2) * ((nqy + 1) // 2)
    limit = max((nnodes + 1) // 2, 1)

    for bit in range(nbitplanes - 1, -1, -1):
        plane = ((quadrant >> bit) & 1).astype(np.uint8)
        levels = [_nodes(plane)]
        for _ in range(nlevels - 1):
            levels.append(_nodes((levels[-1] != 0).astype(np.uint8)))
        codes = np.concatenate([nodes[nodes != 0] for nodes in levels])

        if int(_CODE_BITS[codes].sum()) // 8 >= limit:
            writer.nybble(_NYBBLE_DIRECT)
            for node in levels[0].ravel().tolist():
                writer.nybble(node)
            continue

        # the quadtree is read from the top: codes go out in reverse
        writer.nybble(_NYBBLE_QUADTREE)
        if not codes.size:
            writer.huffman(0)
        for node in codes[::-1].tolist():
            writer.huffman(node)


def _qtree_decode(reader, shape, nbitplanes):
    quadrant = np.zeros(shape, dtype=np.int64)
    nlevels = max(_log2n(max(shape)), 1)
    # shapes[0] is the quadrant, shapes[k] the nodes of level k - 1
    shapes = _level_shapes(shape, nlevels + 1)

    for bit in range(nbitplanes - 1, -1, -1):
        kind = reader.read(4)
        if kind == _NYBBLE_DIRECT:
            nx, ny = shapes[1]
            nodes = np.array([reader.read(4) for _ in range(nx * ny)],
                             dtype=np.uint8).reshape(nx, ny)
        elif kind == _NYBBLE_QUADTREE:
            nodes = np.array([[reader.huffman()]], dtype=np.uint8)
            for level_shape in reversed(shapes[1:-1]):
                nodes = _expand(nodes, level_shape)
                flat = nodes.reshape(-1)
                for idx in np.flatnonzero(flat)[::-1].tolist():
                    flat[idx] = reader.huffman()
        else:
            raise InvalidStreamError('invalid stream: bad HCOMPRESS bit '
                                     'plane code %d' % kind)
        quadrant |= _expand(nodes, shape).astype(np.int64) << bit
    return quadrant


def _quadrants(shape):
    nx, ny = shape
    nx2 = (nx + 1) // 2
    ny2 = (ny + 1) // 2
    return [(slice(0, nx2), slice(0, ny2)), (slice(0, nx2), slice(ny2, ny)),
            (slice(nx2, nx), slice(0, ny2)), (slice(nx2, nx), slice(ny2, ny))]


def _bit_planes(values):
    return int(values.max()).bit_length() if values.size else 0


def hcompress(image, scale=0):
    """
    Encode a 2-D integer image; see the module docstring for the layout.

    Parameters
    ----------
    image : ndarray
        2-D integer array, rows by columns

    scale : int, optional
        digitization scale of the coefficients; 0 or 1 is lossless

    Returns
    -------
    bytes
    """

    image = np.asarray(image)
    nx, ny = image.shape
    a = image.astype(np.int64)
    limit = 1 << (60 - _log2n(max(nx, ny)))
    if a.size and int(np.abs(a).max()) >= limit:
        raise ValueOutOfRangeError(
            'value out of range: HCOMPRESS values of a %dx%d tile must be '
            'smaller than %d in magnitude' % (nx, ny, limit))

    a = htrans(a)
    if scale > 1:
        a = _digitize(a, scale)
    sumall = int(a[0, 0])
    a[0, 0] = 0

    flat = a.ravel()
    signs = np.packbits(flat[flat != 0] < 0).tobytes()
    magnitudes = np.abs(a)
    quadrants = [magnitudes[rows, cols] for rows, cols in _quadrants(a.shape)]
    nbitplanes = [_bit_planes(quadrants[0]),
                  max(_bit_planes(quadrants[1]), _bit_planes(quadrants[2])),
                  _bit_planes(quadrants[3])]

    writer = _BitWriter()
    for quadrant, planes in zip(quadrants, (nbitplanes[0], nbitplanes[1],
                                            nbitplanes[1], nbitplanes[2])):
        _qtree_encode(writer, quadrant, planes)
    writer.nybble(0)

    header = (np.array([nx, ny, scale], dtype='>i4').tobytes() +
              np.array([sumall], dtype='>i8').tobytes() +
              bytes(bytearray(nbitplanes)))
    return HCOMPRESS_MAGIC + header + writer.tobytes() + signs


def hdecompress(data, smooth=False):
    """
    Decode a stream written by `hcompress`.  Returns the image and the
    scale it was coded with.
    """

    data = bytes(data)
    if len(data) < _HEADER_SIZE or data[:2] != HCOMPRESS_MAGIC:
        raise InvalidStreamError('invalid stream: missing HCOMPRESS magic '
                                 'bytes')
    nx, ny, scale = np.frombuffer(data[2:14], dtype='>i4').tolist()
    sumall = int(np.frombuffer(data[14:22], dtype='>i8')[0])
    nbitplanes = list(bytearray(data[22:_HEADER_SIZE]))
    if nx < 0 or ny < 0 or scale < 0 or max(nbitplanes) > 64:
        raise InvalidStreamError('invalid stream: bad HCOMPRESS header '
                                 '(%d, %d, %d, %r)'
                                 % (nx, ny, scale, nbitplanes))

    a = np.zeros((nx, ny), dtype=np.int64)
    reader = _BitReader(data[_HEADER_SIZE:])
    for (rows, cols), planes in zip(_quadrants(a.shape),
                                    (nbitplanes[0], nbitplanes[1],
                                     nbitplanes[1], nbitplanes[2])):
        a[rows, cols] = _qtree_decode(reader, a[rows, cols].shape, planes)
    if reader.read(4) != 0:
        raise InvalidStreamError('invalid stream: HCOMPRESS bit planes are '
                                 'not terminated')

    # the sign bits start on the next byte
    start = _HEADER_SIZE + (reader.pos + 7) // 8
    flat = a.reshape(-1)
    nonzero = np.flatnonzero(flat)
    signs = np.unpackbits(np.array(bytearray(data[start:]), dtype=np.uint8))
    if signs.size < nonzero.size:
        raise InvalidStreamError('invalid stream: HCOMPRESS sign bits are '
                                 'missing')
    negative = nonzero[signs[:nonzero.size].astype(bool)]
    flat[negative] = -flat[negative]
    a[0, 0] = sumall

    if scale > 1:
        a *= scale
    image = hinv(a, smooth and scale > 1, scale)
    return image, scale


def _as_image(tile):
    tile = np.asarray(tile)
    if tile.ndim == 0:
        return tile.reshape(1, 1)
    if tile.ndim == 1:
        return tile.reshape(1, -1)
    return tile.reshape(-1, tile.shape[-1])


def _scale(option):
    scale = option.scale or 0
    if scale < 0:
        raise ArgumentError('HCOMPRESS scale must not be negative, got %r'
                            % (scale,))
    scale = int(round(scale))
    return scale if scale > 1 else 0


class HCompressor(CompressionAlgorithm):
    """
    ``HCOMPRESS_1``: lossless with a scale of 0 or 1, lossy with larger
    scales.  Integer samples only.
    """

    name = 'HCOMPRESS_1'
    option_class = HCompressOption
    integer_only = True

    def is_lossy(self, option=None):
        if option is None:
            return False
        return _scale(option) > 1

    def compress(self, tile, option=None):
        option = self._option(option)
        tile = np.asarray(tile)
        self._check_integer(tile)
        return hcompress(_as_image(tile), _scale(option))

    def decompress(self, data, out, option=None):
        option = self._option(option)
        image, _ = hdecompress(data, bool(option.smooth))
        if image.size != out.size:
            raise InvalidStreamError(
                'invalid stream: HCOMPRESS tile of %d pixels decoded into a '
                'destination of %d' % (image.size, out.size))
        if out.dtype.kind in 'iu':
            info = np.iinfo(out.dtype)
            image = np.clip(image, info.min, info.max)
        return _fill(out, image)
