"""
The IRAF PLIO line list coder (``PLIO_1``).

A line list is a sequence of 16-bit instruction words describing runs of
zeros and of a current "high" value; it is very compact for masks and
segmentation maps that hold few distinct non-negative levels.  The word
stream is the one produced by IRAF's ``pl_p2li``.
"""

import numpy as np

from tilefits.compression.base import CompressionAlgorithm, PlioOption, _fill
from tilefits.errors import InvalidStreamError, ValueOutOfRangeError


# largest pixel value a line list can represent
PLIO_MAX_VALUE = (1 << 24) - 1

# length of the line list header in words
_HEADER_WORDS = 7

# instruction codes
_ZN, _SH, _IH, _DH, _HN, _PN, _IS, _DS = range(8)

_MAX_RUN = 4095


def plio_encode(values):
    """
    Encode a one dimensional array of non-negative integers as a line
    list.  Returns the list as an array of 16-bit words.
    """

    values = np.asarray(values).ravel().astype(np.int64)
    npix = values.size
    if npix and (int(values.min()) < 0 or int(values.max()) > PLIO_MAX_VALUE):
        raise ValueOutOfRangeError(
            'value out of range: PLIO can only code values from 0 to %d, '
            'got [%d, %d]' % (PLIO_MAX_VALUE, int(values.min()),
                              int(values.max())))

    words = [0, _HEADER_WORDS, -100, 0, 0, 0, 0]
    if not npix:
        return np.array(words, dtype=np.int16)

    # runs of equal values as (value, start, length)
    changes = np.flatnonzero(np.diff(values)) + 1
    starts = np.concatenate(([0], changes))
    lengths = np.diff(np.concatenate((starts, [npix])))

    hi = 1
    nzero = 0
    for start, length in zip(starts.tolist(), lengths.tolist()):
        pv = int(values[start])
        if pv == 0:
            nzero += length
            continue

        dv = pv - hi
        if dv:
            hi = pv
            if abs(dv) > _MAX_RUN:
                words.append((pv & 4095) + (_SH << 12))
                words.append(pv >> 12)
            else:
                if dv < 0:
                    words.append(-dv + (_DH << 12))
                else:
                    words.append(dv + (_IH << 12))
                if length == 1 and nzero == 0:
                    # fold the single pixel into the level change
                    words[-1] |= _HN << 12
                    continue

        zn_words = 0
        while nzero > 0:
            words.append(min(_MAX_RUN, nzero))
            nzero -= _MAX_RUN
            zn_words += 1
        nzero = 0

        if length == 1 and zn_words and words[-1] < _MAX_RUN:
            # zeros followed by a single high pixel
            words[-1] += (_PN << 12) + 1
            continue

        while length > 0:
            words.append(min(_MAX_RUN, length) + (_HN << 12))
            length -= _MAX_RUN

    while nzero > 0:
        words.append(min(_MAX_RUN, nzero))
        nzero -= _MAX_RUN

    nwords = len(words)
    words[3] = nwords % 32768
    words[4] = nwords // 32768
    return np.array(words, dtype=np.int16)


def plio_decode(words, npix):
    """Expand a line list into ``npix`` pixel values."""

    words = np.asarray(words, dtype=np.int64).tolist()
    if len(words) < 3:
        raise InvalidStreamError('invalid stream: PLIO line list has no '
                                 'header')
    if words[2] > 0:
        lllen = words[2]
        first = 3
    else:
        if len(words) < _HEADER_WORDS:
            raise InvalidStreamError('invalid stream: PLIO line list has no '
                                     'header')
        lllen = (words[4] << 15) + words[3]
        first = words[1]
    if lllen > len(words) or first < 0 or first > lllen:
        raise InvalidStreamError('invalid stream: PLIO line list length %d '
                                 'exceeds the %d words available'
                                 % (lllen, len(words)))

    out = np.zeros(npix, dtype=np.int32)
    op = 0
    pv = 1
    ip = first
    while ip < lllen and op < npix:
        word = words[ip]
        opcode = word >> 12
        data = word & 4095
        ip += 1
        if opcode in (_ZN, _HN, _PN):
            count = min(data, npix - op)
            if opcode == _HN:
                out[op:op + count] = pv
            elif opcode == _PN and count == data and data:
                out[op + count - 1] = pv
            op += count
        elif opcode == _SH:
            if ip >= lllen:
                raise InvalidStreamError('invalid stream: PLIO set-high '
                                         'instruction is truncated')
            pv = (words[ip] << 12) + data
            ip += 1
        elif opcode == _IH:
            pv += data
        elif opcode == _DH:
            pv -= data
        elif opcode in (_IS, _DS):
            pv += data if opcode == _IS else -data
            out[op] = pv
            op += 1
        else:
            raise InvalidStreamError('invalid stream: unknown PLIO '
                                     'instruction %d' % opcode)
    return out


class PlioCompressor(CompressionAlgorithm):
    """``PLIO_1``: lossless for integers from 0 to 2**24 - 1."""

    name = 'PLIO_1'
    option_class = PlioOption
    element_code = 'I'
    integer_only = True

    def compress(self, tile, option=None):
        self._option(option)
        tile = np.asarray(tile)
        self._check_integer(tile)
        return plio_encode(tile).astype('>i2').tobytes()

    def decompress(self, data, out, option=None):
        self._option(option)
        if len(data) % 2:
            raise InvalidStreamError('invalid stream: a PLIO line list has '
                                     'an odd number of bytes')
        words = np.frombuffer(data, dtype='>i2')
        return _fill(out, plio_decode(words, out.size))
