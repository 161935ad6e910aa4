"""
Quantization of floating point tiles to 32-bit integers before they are
handed to an integer compression algorithm.

A tile is scaled as ``value = integer * ZSCALE + ZZERO``.  The scale is
derived from an estimate of the noise in the tile and the quantization
level, or given directly by a negative level.  Subtractive dithering adds
a reproducible pseudo random offset (from the standard sequence of 10000
values) before rounding and removes it again when restoring.
"""

import numpy as np

from tilefits.compression.base import CompressionOption
from tilefits.errors import ArgumentError


NO_DITHER = 'NO_DITHER'
SUBTRACTIVE_DITHER_1 = 'SUBTRACTIVE_DITHER_1'
SUBTRACTIVE_DITHER_2 = 'SUBTRACTIVE_DITHER_2'

QUANTIZE_METHODS = (NO_DITHER, SUBTRACTIVE_DITHER_1, SUBTRACTIVE_DITHER_2)

# reserved integers: a null (NaN) pixel and, for SUBTRACTIVE_DITHER_2, an
# exact zero
NULL_VALUE = -2147483647
ZERO_VALUE = -2147483646
N_RESERVED_VALUES = 10

N_RANDOM = 10000

DEFAULT_QUANTIZE_LEVEL = 16.0

# median of |2 x[i] - x[i-2] - x[i+2]| -> sigma of gaussian noise
_NOISE_FACTOR = 0.6052697


class QuantizeOption(CompressionOption):
    """
    Parameters of the quantization of floating point tiles.

    Parameters
    ----------
    level : float, optional
        quantization level; a positive value ``q`` gives a step of
        ``noise / q``, a negative value is used as the step itself, and 0
        disables quantization (the tile is stored losslessly)

    method : str, optional
        one of ``NO_DITHER``, ``SUBTRACTIVE_DITHER_1`` (the default) or
        ``SUBTRACTIVE_DITHER_2``

    dither_seed : int, optional
        the ``ZDITHER0`` offset (1 to 10000) into the random sequence;
        when not set a seed is derived from the image

    null_value : int, optional
        integer written for NaN pixels (``ZBLANK``)
    """

    parameters = [('level', 'NOISEBIT')]

    def __init__(self, level=DEFAULT_QUANTIZE_LEVEL,
                 method=SUBTRACTIVE_DITHER_1, dither_seed=None,
                 null_value=NULL_VALUE):
        if method not in QUANTIZE_METHODS:
            raise ArgumentError('Unknown quantization method %r; expected '
                                'one of %s' % (method,
                                               ', '.join(QUANTIZE_METHODS)))
        self.level = level
        self.method = method
        self.dither_seed = dither_seed
        self.null_value = null_value

    @property
    def lossy(self):
        return bool(self.level)

    @property
    def dithered(self):
        return self.method != NO_DITHER


_RANDOM = []


def random_values():
    """
    The standard sequence of 10000 uniform deviates in [0, 1) used for
    subtractive dithering (a Park-Miller generator seeded with 1).
    """

    if not _RANDOM:
        a = 16807.0
        m = 2147483647.0
        seed = 1.0
        values = []
        for _ in range(N_RANDOM):
            temp = a * seed
            seed = temp - m * int(temp / m)
            values.append(seed / m)
        if int(seed) != 1043618065:
            raise RuntimeError('Error generating the dithering random '
                               'sequence (%d)' % seed)
        _RANDOM.append(np.array(values))
    return _RANDOM[0]


def dither_sequence(tile_number, dither_seed, count):
    """
    The dither offsets for the ``count`` pixels of the tile with the given
    1-based number.
    """

    values = random_values()
    iseed = (tile_number + dither_seed - 2) % N_RANDOM
    nextrand = int(values[iseed] * 500)
    parts = []
    remaining = count
    while remaining > 0:
        part = values[nextrand:nextrand + remaining]
        parts.append(part)
        remaining -= part.size
        iseed += 1
        if iseed == N_RANDOM:
            iseed = 0
        nextrand = int(values[iseed] * 500)
    if not parts:
        return np.zeros(0)
    return np.concatenate(parts)


def noise_estimate(tile):
    """
    Estimate the standard deviation of the noise in a tile from the median
    of the absolute differences ``2 x[i] - x[i-2] - x[i+2]`` along its
    rows.  Returns 0 for tiles too small to estimate.
    """

    tile = np.asarray(tile, dtype=np.float64)
    rows = tile.reshape(-1, tile.shape[-1]) if tile.ndim > 1 \
        else tile.reshape(1, -1)
    if rows.shape[1] < 5:
        rows = rows.reshape(1, -1)

    medians = []
    for row in rows:
        row = row[np.isfinite(row)]
        if row.size < 5:
            continue
        diffs = np.abs(2 * row[2:-2] - row[:-4] - row[4:])
        medians.append(np.median(diffs))
    if not medians:
        return 0.0
    return _NOISE_FACTOR * float(np.median(medians))


def _nint(x):
    return np.where(x >= 0, np.floor(x + 0.5), np.ceil(x - 0.5))


def quantize(tile, option, tile_number=1):
    """
    Quantize a floating point tile.

    Parameters
    ----------
    tile : ndarray
        the floating point samples

    option : QuantizeOption
        quantization parameters; ``option.dither_seed`` must be set for
        dithered methods

    tile_number : int
        1-based number of the tile, selecting its dither offsets

    Returns
    -------
    (ndarray, float, float) or None
        the ``int32`` samples with ``ZSCALE`` and ``ZZERO``, or `None` when
        the tile cannot be quantized and has to be stored losslessly
    """

    if not option.level:
        return None

    values = np.asarray(tile, dtype=np.float64).ravel()
    nulls = np.isnan(values)
    good = values[~nulls]
    if not good.size:
        return (np.full(values.size, option.null_value, dtype=np.int32),
                1.0, 0.0)
    if not np.isfinite(good).all():
        return None

    if option.level > 0:
        noise = noise_estimate(tile)
        delta = noise / option.level if noise else 1.0
    else:
        delta = -float(option.level)

    minval = float(good.min())
    maxval = float(good.max())
    if (maxval - minval) / delta > 2. * 2147483647. - N_RESERVED_VALUES:
        return None

    if (maxval - minval) / delta < 2147483647. - N_RESERVED_VALUES:
        zero = minval
        iqfactor = int(zero / delta + .5)
        zero = iqfactor * delta
    else:
        zero = (minval + maxval) / 2.

    scaled = (values - zero) / delta
    if option.dithered:
        scaled = scaled + dither_sequence(tile_number, option.dither_seed,
                                          values.size) - 0.5
    with np.errstate(invalid='ignore'):
        ints = _nint(scaled)
    ints = np.clip(np.nan_to_num(ints), -2147483647. + N_RESERVED_VALUES,
                   2147483647.).astype(np.int32)

    if option.method == SUBTRACTIVE_DITHER_2:
        ints[values == 0.0] = ZERO_VALUE
    ints[nulls] = option.null_value
    return ints, delta, zero


def dequantize(ints, scale, zero, option, tile_number=1, null=np.nan,
               dtype=np.float64):
    """
    Restore floating point values from a quantized tile; reserved null
    integers become ``null``.
    """

    ints = np.asarray(ints).ravel()
    values = ints.astype(np.float64)
    if option.dithered:
        values = (values - dither_sequence(tile_number, option.dither_seed,
                                           ints.size) + 0.5) * scale + zero
    else:
        values = values * scale + zero
    if option.method == SUBTRACTIVE_DITHER_2:
        values[ints == ZERO_VALUE] = 0.0
    values[ints == option.null_value] = null
    return values.astype(dtype)
