import os
import tempfile
import threading

import numpy as np


BLOCK_SIZE = 2880 # the FITS block size


def itersubclasses(cls, _seen=None):
    """
    Generator over all subclasses of a given class, in depth first order.

    >>> class A(object): pass
    >>> class B(A): pass
    >>> class C(A): pass
    >>> class D(B, C): pass
    >>> [c.__name__ for c in itersubclasses(A)]
    ['B', 'D', 'C']
    """

    if _seen is None:
        _seen = set()
    for sub in cls.__subclasses__():
        if sub not in _seen:
            _seen.add(sub)
            yield sub
            for sub in itersubclasses(sub, _seen):
                yield sub


class lazyproperty(object):
    """
    Works similarly to property(), but computes the value only once.

    The owner may provide a ``_lazy_lock`` attribute (any context manager,
    typically a `threading.RLock`); when present the first computation is
    done while holding it, so that concurrent readers of a deferred value
    only ever trigger one load from the backing store.
    """

    def __init__(self, fget, fset=None, fdel=None):
        self._fget = fget
        self._fset = fset
        self._fdel = fdel
        self.__doc__ = fget.__doc__

    def __get__(self, obj, owner=None):
        if obj is None:
            return self
        key = self._fget.__name__
        try:
            return obj.__dict__[key]
        except KeyError:
            pass

        lock = getattr(obj, '_lazy_lock', None)
        if lock is None:
            val = self._fget(obj)
            obj.__dict__[key] = val
            return val

        with lock:
            if key not in obj.__dict__:
                obj.__dict__[key] = self._fget(obj)
            return obj.__dict__[key]

    def __set__(self, obj, val):
        if self._fset:
            self._fset(obj, val)
        obj.__dict__[self._fget.__name__] = val

    def __delete__(self, obj):
        if self._fdel:
            self._fdel(obj)
        key = self._fget.__name__
        if key in obj.__dict__:
            del obj.__dict__[key]

    def is_loaded(self, obj):
        """Has the value been computed (or assigned) on ``obj`` yet?"""

        return self._fget.__name__ in obj.__dict__


def _new_lock():
    return threading.RLock()


def _offset_zero(dtype):
    """
    Given a numpy dtype stored with an offset, finds its "zero" point: the
    ``BZERO`` that maps the stored integers back onto the dtype's range.
    Flipping the sign bit of a value (``value ^ dtype.type(zero)``) moves
    it between the two representations.
    """

    assert _is_offset_int(dtype)
    if dtype.kind == 'u':
        return 1 << (dtype.itemsize * 8 - 1)
    return -128


def _offset_storage(dtype):
    """The integer type an offset dtype is stored as."""

    return np.dtype('%s%d' % ('i' if dtype.kind == 'u' else 'u',
                              dtype.itemsize))


def _is_offset_int(dtype):
    """
    Integers FITS stores with an offset in the integer type of the
    opposite signedness: unsigned 16, 32 and 64-bit integers and signed
    bytes.
    """

    return (dtype.kind == 'u' and dtype.itemsize >= 2) or \
        (dtype.kind == 'i' and dtype.itemsize == 1)


def _is_int(val):
    return isinstance(val, (int, np.integer)) and not isinstance(val, bool)


def _str_to_num(val):
    """Converts a given string to either an int or a float if necessary."""

    try:
        num = int(val)
    except ValueError:
        # If this fails then an exception should be raised anyways
        num = float(val)
    return num


def _pad_length(stringlen):
    """Bytes needed to pad the input stringlen to the next FITS block."""

    return (BLOCK_SIZE - (stringlen % BLOCK_SIZE)) % BLOCK_SIZE


def _words_group(input, strlen):
    """
    Split a long string into parts where each part is no longer than
    `strlen` and no word is cut into two pieces.  But if there is one
    single word which is longer than `strlen`, then it will be split in
    the middle of the word.
    """

    words = []
    nblanks = input.count(' ')
    nmax = max(nblanks, len(input) // strlen + 1)
    arr = np.frombuffer((input + ' ').encode('ascii'), dtype='S1')

    # locations of the blanks
    blank_loc = np.nonzero(arr == b' ')[0]
    offset = 0
    xoffset = 0
    for idx in range(nmax):
        try:
            loc = np.nonzero(blank_loc >= strlen + offset)[0][0]
            offset = blank_loc[loc - 1] + 1
            if loc == 0:
                offset = -1
        except IndexError:
            offset = len(input)

        # check for one word longer than strlen, break in the middle
        if offset <= xoffset:
            offset = xoffset + strlen

        # collect the pieces in a list
        words.append(input[xoffset:offset])
        if len(input) == offset:
            break
        xoffset = offset

    return words


def _tmp_name(input):
    """
    Create a temporary file name which should not already exist.  Use the
    directory of the input file as the base name of the mkstemp() output.
    """

    if input is not None:
        input = os.path.dirname(os.path.abspath(input))
    f, fn = tempfile.mkstemp(dir=input, suffix='.fits')
    os.close(f)
    return fn
