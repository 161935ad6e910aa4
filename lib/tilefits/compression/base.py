"""
Building blocks shared by the compression algorithms: the option objects
holding per-pass parameters and the algorithm base class.
"""

import copy

import numpy as np

from tilefits.errors import ArgumentError, CompressionError, \
                           InvalidStreamError


class CompressionOption(object):
    """
    Base class of the per-algorithm option objects.

    Options are plain mutable objects while a pass is being configured.
    Every tile work unit receives its own `copy`, so changing an option
    after a pass has started has no effect on it.

    ``parameters`` lists the ``(attribute, ZNAMEn value)`` pairs that are
    reflected into the ``ZNAMEn``/``ZVALn`` keywords of a compressed image
    header.
    """

    parameters = []
    lossy = False

    def copy(self):
        return copy.copy(self)

    def is_lossy(self):
        return self.lossy

    def to_header_values(self):
        """The ``(ZNAMEn, ZVALn)`` pairs describing this option."""

        values = []
        for attr, name in self.parameters:
            value = getattr(self, attr)
            if value is not None:
                values.append((name, value))
        return values

    def from_header_values(self, values):
        """
        Update the option from a mapping of ``ZNAMEn`` names to ``ZVALn``
        values; unknown names are ignored.
        """

        for attr, name in self.parameters:
            if name in values:
                setattr(self, attr, values[name])
        return self

    def __eq__(self, other):
        return type(self) is type(other) and \
               self.__dict__ == other.__dict__

    def __ne__(self, other):
        return not self == other

    def __repr__(self):
        args = ', '.join('%s=%r' % item
                         for item in sorted(self.__dict__.items()))
        return '%s(%s)' % (self.__class__.__name__, args)


class RiceOption(CompressionOption):
    """
    Parameters of the Rice coder.

    Parameters
    ----------
    block_size : int, optional
        number of samples per coding block (``BLOCKSIZE``), default 32

    bytepix : int, optional
        width in bytes of the coded integers (``BYTEPIX``); one of 1, 2, 4
        or 8.  When not set the width of the tile's pixel type is used.
    """

    parameters = [('block_size', 'BLOCKSIZE'), ('bytepix', 'BYTEPIX')]

    DEFAULT_BLOCK_SIZE = 32

    def __init__(self, block_size=DEFAULT_BLOCK_SIZE, bytepix=None):
        self.block_size = block_size
        self.bytepix = bytepix


class HCompressOption(CompressionOption):
    """
    Parameters of the H-transform coder.

    Parameters
    ----------
    scale : int or float, optional
        quantization step of the transformed image (``SCALE``); 0 and 1
        are lossless

    smooth : bool, optional
        smooth the reconstructed image on decompression (``SMOOTH``)
    """

    parameters = [('scale', 'SCALE'), ('smooth', 'SMOOTH')]

    def __init__(self, scale=0, smooth=False):
        self.scale = scale
        self.smooth = smooth

    @property
    def lossy(self):
        return self.scale is not None and self.scale > 1


class PlioOption(CompressionOption):
    """PLIO has no tunable parameters."""


class GzipOption(CompressionOption):
    """
    Parameters of the deflate based algorithms.

    Parameters
    ----------
    level : int, optional
        zlib compression level, 1 (fastest) to 9 (smallest)
    """

    def __init__(self, level=6):
        self.level = level


class NoCompressOption(CompressionOption):
    """The identity algorithm has no parameters."""


class CompressionAlgorithm(object):
    """
    Base class of the compression algorithms.

    An algorithm turns the pixels (or column values) of one tile into a
    compressed byte string and back.  Algorithms keep no state between
    calls; everything a call needs comes from its arguments.
    """

    #: name used in the ``ZCMPTYPE``/``ZCTYPn`` keywords
    name = None

    #: option class accepted by `compress`/`decompress`
    option_class = NoCompressOption

    #: ``TFORM`` element code of the column holding the compressed bytes
    element_code = 'B'

    #: whether the algorithm can only handle integer samples
    integer_only = False

    def default_option(self):
        return self.option_class()

    def is_lossy(self, option=None):
        if option is None:
            return False
        return option.is_lossy()

    def compress(self, tile, option=None):
        """
        Compress one tile.

        Parameters
        ----------
        tile : ndarray
            the samples of the tile, in native byte order

        option : CompressionOption, optional
            per-pass parameters; the defaults are used when omitted

        Returns
        -------
        bytes
            the compressed stream
        """

        raise NotImplementedError

    def decompress(self, data, out, option=None):
        """
        Decompress a stream produced by `compress` into ``out``.

        Parameters
        ----------
        data : bytes-like
            the compressed stream

        out : ndarray
            destination array with the shape and element type of the
            tile; it is filled in place and returned
        """

        raise NotImplementedError

    def _option(self, option):
        if option is None:
            return self.default_option()
        if not isinstance(option, self.option_class):
            raise ArgumentError('%s expects a %s, got %r'
                                % (self.name, self.option_class.__name__,
                                   option))
        return option

    def _check_integer(self, tile):
        if tile.dtype.kind not in 'iub':
            raise CompressionError(
                'compression failed: %s can only compress integer data, '
                'got %s' % (self.name, tile.dtype))

    def __repr__(self):
        return '<%s %s>' % (self.__class__.__name__, self.name)


def _fill(out, values):
    """
    Copy decoded values into a destination array, casting to its element
    type.
    """

    values = np.asarray(values)
    if values.size != out.size:
        raise InvalidStreamError(
            'invalid stream: decoded %d values for a destination of %d '
            'elements'
            % (values.size, out.size))
    np.copyto(out, values.reshape(out.shape), casting='unsafe')
    return out
