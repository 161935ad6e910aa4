"""
The Rice coder of the FITS tiled image convention (``RICE_1``).

Samples are differenced, the differences mapped to non-negative integers
and coded in blocks with an adaptive Golomb-Rice parameter chosen from the
mean of each block.  The bit stream is identical to the one written by
the ``fits_rcomp`` family of routines.
"""

from bisect import bisect_left

import numpy as np

from tilefits.compression.base import CompressionAlgorithm, RiceOption, _fill
from tilefits.errors import ArgumentError, InvalidStreamError, \
                           ValueOutOfRangeError


# bytepix -> (bits of the block code, largest split, bits per sample)
_PARAMETERS = {1: (3, 6, 8), 2: (4, 14, 16), 4: (5, 25, 32), 8: (6, 58, 64)}


def _parameters(bytepix):
    try:
        return _PARAMETERS[bytepix]
    except KeyError:
        raise ArgumentError('Rice BYTEPIX must be one of 1, 2, 4 or 8, '
                            'got %r' % (bytepix,))


def _pack_bits(values, nbits):
    """
    Concatenate bit fields, most significant bit first.  ``values[i]`` is
    written in ``nbits[i]`` bits; the last byte is zero padded.
    """

    if not len(nbits):
        return b''
    ends = np.cumsum(nbits)
    bits = np.zeros(int(ends[-1]), dtype=np.uint8)
    one = np.uint64(1)
    for k in range(64):
        sel = nbits > k
        if not sel.any():
            break
        bits[ends[sel] - 1 - k] = (values[sel] >> np.uint64(k)) & one
    return np.packbits(bits).tobytes()


def rice_encode(values, bytepix=4, block_size=32):
    """
    Rice code a one dimensional integer array.

    Parameters
    ----------
    values : ndarray
        integer samples; they must be representable in ``bytepix`` bytes

    bytepix : int
        width of the coded integers in bytes

    block_size : int
        number of samples per coding block

    Returns
    -------
    bytes
    """

    fsbits, fsmax, bbits = _parameters(bytepix)
    if block_size <= 0:
        raise ArgumentError('Rice block size must be positive, got %r'
                            % (block_size,))

    values = np.asarray(values).ravel()
    count = values.size
    if not count:
        return b''

    mask = (1 << bbits) - 1
    if values.dtype.kind == 'u':
        if values.dtype.itemsize > bytepix and int(values.max()) > mask:
            raise ValueOutOfRangeError(
                'value out of range: %d does not fit in %d bytes'
                % (int(values.max()), bytepix))
    elif bytepix < 8:
        lo, hi = int(values.min()), int(values.max())
        if lo < -(1 << (bbits - 1)) or hi >= (1 << (bbits - 1)):
            raise ValueOutOfRangeError(
                'value out of range: [%d, %d] does not fit in %d bytes'
                % (lo, hi, bytepix))

    # samples modulo 2**bbits
    u = values.astype(np.int64).view(np.uint64) if values.dtype.kind != 'u' \
        else values.astype(np.uint64)
    if bbits < 64:
        u = u & np.uint64(mask)

    # wrapped differences as signed bbits integers, the first one is zero
    diff = np.zeros(count, dtype=np.uint64)
    diff[1:] = u[1:] - u[:-1]
    if bbits < 64:
        diff &= np.uint64(mask)
        signed = diff.astype(np.int64)
        signed[signed >= (1 << (bbits - 1))] -= (1 << bbits)
    else:
        signed = diff.view(np.int64)
    mapped = ((signed << 1) ^ (signed >> 63)).view(np.uint64)

    field_values = [np.array([int(u[0])], dtype=np.uint64)]
    field_bits = [np.array([bbits], dtype=np.int64)]

    for start in range(0, count, block_size):
        block = mapped[start:start + block_size]
        thisblock = block.size
        pixelsum = float(block.astype(np.float64).sum())
        dpsum = (pixelsum - (thisblock // 2) - 1) / thisblock
        if dpsum < 0:
            dpsum = 0.0
        psum = int(dpsum) >> 1
        fs = psum.bit_length()

        if fs >= fsmax:
            # high entropy block: samples are written verbatim
            field_values.append(np.array([fsmax + 1], dtype=np.uint64))
            field_bits.append(np.array([fsbits], dtype=np.int64))
            field_values.append(block)
            field_bits.append(np.full(thisblock, bbits, dtype=np.int64))
        elif fs == 0 and pixelsum == 0:
            # low entropy block: all differences are zero
            field_values.append(np.array([0], dtype=np.uint64))
            field_bits.append(np.array([fsbits], dtype=np.int64))
        else:
            field_values.append(np.array([fs + 1], dtype=np.uint64))
            field_bits.append(np.array([fsbits], dtype=np.int64))
            top = (block >> np.uint64(fs)).astype(np.int64)
            codes = np.empty(2 * thisblock, dtype=np.uint64)
            nbits = np.empty(2 * thisblock, dtype=np.int64)
            # unary prefix: 'top' zeros then a one
            codes[0::2] = 1
            nbits[0::2] = top + 1
            codes[1::2] = block & np.uint64((1 << fs) - 1)
            nbits[1::2] = fs
            field_values.append(codes)
            field_bits.append(nbits)

    return _pack_bits(np.concatenate(field_values),
                      np.concatenate(field_bits))


class _BitReader(object):
    def __init__(self, data):
        self.data = bytes(data)
        self.bits = np.unpackbits(np.frombuffer(self.data, dtype=np.uint8))
        self.size = self.bits.size
        self.pos = 0
        self._ones = np.flatnonzero(self.bits).tolist()
        self._next = 0

    def _check(self, end):
        if end > self.size:
            raise InvalidStreamError('invalid stream: Rice stream ended '
                                     'after %d bits' % self.size)

    def take(self, nbits):
        if nbits == 0:
            return 0
        end = self.pos + nbits
        self._check(end)
        start = self.pos >> 3
        stop = (end + 7) >> 3
        chunk = int.from_bytes(self.data[start:stop], 'big')
        self.pos = end
        return (chunk >> ((stop << 3) - end)) & ((1 << nbits) - 1)

    def fields(self, starts, nbits):
        """The ``nbits`` wide fields starting at the bit offsets ``starts``."""

        starts = np.asarray(starts, dtype=np.int64)
        if nbits == 0 or not starts.size:
            return np.zeros(starts.size, dtype=np.uint64)
        self._check(int(starts[-1]) + nbits)
        bits = self.bits[starts[:, np.newaxis] + np.arange(nbits)]
        weights = np.uint64(1) << np.arange(nbits - 1, -1, -1,
                                            dtype=np.uint64)
        return (bits.astype(np.uint64) * weights).sum(axis=1,
                                                      dtype=np.uint64)

    def verbatim(self, count, nbits):
        """Read ``count`` consecutive fields of ``nbits`` bits."""

        starts = self.pos + nbits * np.arange(count, dtype=np.int64)
        values = self.fields(starts, nbits)
        self.pos += count * nbits
        return values

    def split(self, count, fs):
        """
        Read ``count`` samples coded with the split ``fs``: each one is a
        unary prefix (zeros closed by a one) and ``fs`` low bits.
        """

        ones = self._ones
        nones = len(ones)
        pos = self.pos
        nxt = self._next
        tops = []
        starts = []
        for _ in range(count):
            idx = bisect_left(ones, pos, nxt)
            if idx >= nones:
                raise InvalidStreamError('invalid stream: Rice stream ended '
                                         'inside a sample')
            one = ones[idx]
            tops.append(one - pos)
            starts.append(one + 1)
            pos = one + 1 + fs
            nxt = idx + 1
        self._check(pos)
        low = self.fields(starts, fs)
        self.pos = pos
        self._next = nxt
        return (np.array(tops, dtype=np.uint64) << np.uint64(fs)) | low


def rice_decode(data, count, bytepix=4, block_size=32):
    """
    Decode ``count`` samples from a Rice coded stream.

    Returns an unsigned integer array of ``bytepix`` bytes per element
    holding the samples modulo ``2**(8 * bytepix)``.
    """

    fsbits, fsmax, bbits = _parameters(bytepix)
    if count == 0:
        return np.zeros(0, dtype='u%d' % bytepix)

    reader = _BitReader(data)
    first = reader.take(bbits)
    mapped = np.zeros(count, dtype=np.uint64)

    for start in range(0, count, block_size):
        thisblock = min(block_size, count - start)
        fs = reader.take(fsbits) - 1
        if fs < 0:
            # all differences of the block are zero
            continue
        if fs > fsmax:
            raise InvalidStreamError('invalid stream: Rice block code %d '
                                     'out of range' % (fs + 1))
        if fs == fsmax:
            block = reader.verbatim(thisblock, bbits)
        else:
            block = reader.split(thisblock, fs)
        mapped[start:start + thisblock] = block

    # undo the mapping of signed differences to non-negative integers, then
    # sum them up modulo 2**64
    one = np.uint64(1)
    diffs = (mapped >> one) ^ ((mapped & one) * np.uint64(0xFFFFFFFFFFFFFFFF))
    values = np.cumsum(diffs, dtype=np.uint64) + np.uint64(first)
    if bbits < 64:
        values &= np.uint64((1 << bbits) - 1)
    return values.astype('u%d' % bytepix)


class RiceCompressor(CompressionAlgorithm):
    """``RICE_1``: lossless, integer samples only."""

    name = 'RICE_1'
    option_class = RiceOption
    integer_only = True

    def _bytepix(self, option, dtype):
        if option.bytepix:
            return int(option.bytepix)
        return min(max(dtype.itemsize, 1), 8)

    def compress(self, tile, option=None):
        option = self._option(option)
        tile = np.asarray(tile)
        self._check_integer(tile)
        if tile.dtype.kind == 'b':
            tile = tile.astype(np.uint8)
        return rice_encode(tile, self._bytepix(option, tile.dtype),
                           int(option.block_size))

    def decompress(self, data, out, option=None):
        option = self._option(option)
        bytepix = self._bytepix(option, out.dtype)
        raw = rice_decode(data, out.size, bytepix, int(option.block_size))
        if out.dtype.kind == 'u' and out.dtype.itemsize == bytepix:
            values = raw
        else:
            values = raw.view('i%d' % bytepix)
        return _fill(out, values)
