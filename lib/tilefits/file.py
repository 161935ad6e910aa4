import functools
import gzip
import os
import shutil
import tempfile
import warnings

import numpy as np

from tilefits.codec import to_big_endian
from tilefits.errors import FITSIOError
from tilefits.util import _pad_length


PYTHON_MODES = {'readonly': 'rb', 'update': 'rb+', 'append': 'ab+',
                'ostream': 'wb'}  # open modes


def _io_errors(func):
    """
    Re-raise transport failures of the wrapped `_File` method as
    `FITSIOError`, chaining the original exception.
    """

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except FITSIOError:
            raise
        except OSError as exc:
            raise FITSIOError('I/O failure on %s during %s: %s'
                              % (self.name, func.__name__, exc)) from exc
    return wrapper


class _File(object):
    """
    Represents a FITS file on disk (or in some other file-like object).
    """

    def __init__(self, fileobj=None, mode='readonly'):
        if mode not in PYTHON_MODES:
            raise ValueError("Mode '%s' not recognized" % mode)

        self.mode = mode
        self.closed = False
        self.compressed = False
        self.readonly = mode == 'readonly'
        self.writeonly = mode == 'ostream'
        self.file_like = False
        self._close_on_exit = False

        if fileobj is None:
            self.simulateonly = True
            self.name = None
            self.__file = None
            self.size = 0
            return
        self.simulateonly = False

        # Determine what the _File object's name should be
        if isinstance(fileobj, (str, os.PathLike)):
            self.name = os.fspath(fileobj)
        elif hasattr(fileobj, 'name') and isinstance(fileobj.name, str):
            self.name = fileobj.name
        else:
            self.name = str(type(fileobj))

        try:
            if isinstance(fileobj, (str, os.PathLike)):
                self.__file = self._open_path(self.name, mode)
                self._close_on_exit = True
            elif isinstance(fileobj, gzip.GzipFile):
                if mode != 'readonly':
                    raise OSError(
                        'Writing to gzipped fits files is not supported')
                self.compressed = True
                self.__file = self._uncompress_to_temp(fileobj)
                self._close_on_exit = True
            else:
                # We are dealing with a file like object; assume it is open.
                self.file_like = True
                self.__file = fileobj
                if mode in ('update', 'append', 'ostream') and \
                        not hasattr(fileobj, 'write'):
                    raise OSError("File-like object does not have a 'write' "
                                  "method, required for mode '%s'." % mode)
                if mode == 'readonly' and not hasattr(fileobj, 'read'):
                    raise OSError("File-like object does not have a 'read' "
                                  "method, required for mode 'readonly'.")
        except OSError as exc:
            raise FITSIOError(str(exc)) from exc

        if mode == 'ostream':
            self.size = 0
        elif hasattr(self.__file, 'seek'):
            pos = self.__file.tell()
            self.__file.seek(0, 2)
            self.size = self.__file.tell()
            self.__file.seek(pos if mode != 'append' else 0)
        else:
            self.size = 0

    def _open_path(self, name, mode):
        if os.path.splitext(name)[1] == '.gz':
            # Handle gzip files
            if mode != 'readonly':
                raise OSError(
                    'Writing to gzipped fits files is not supported')
            self.compressed = True
            with gzip.open(name, 'rb') as zfile:
                return self._uncompress_to_temp(zfile)
        fileobj = open(name, PYTHON_MODES[mode])
        fileobj.seek(0)
        return fileobj

    def _uncompress_to_temp(self, zfile):
        tfile = tempfile.TemporaryFile(suffix='.fits')
        shutil.copyfileobj(zfile, tfile)
        tfile.seek(0)
        return tfile

    def __repr__(self):
        return '<%s.%s %s>' % (self.__module__, self.__class__.__name__,
                               self.name)

    # Support the 'with' statement
    def __enter__(self):
        return self

    def __exit__(self, type, value, traceback):
        self.close()

    @_io_errors
    def read(self, size=None):
        if not hasattr(self.__file, 'read'):
            raise EOFError
        return self.__file.read(size)

    @_io_errors
    def readbytes(self, offset, size):
        """
        Read exactly ``size`` bytes starting at ``offset`` without moving
        the current file position and without any block padding.
        """

        pos = self.__file.tell()
        try:
            self.__file.seek(offset)
            data = self.__file.read(size)
        finally:
            self.__file.seek(pos)
        if len(data) != size:
            raise OSError('File may have been truncated: %d bytes '
                          'expected at offset %d, got %d'
                          % (size, offset, len(data)))
        return data

    def readarray(self, size=None, offset=0, dtype=np.uint8, shape=None):
        """
        Similar to file.read(), but returns the contents of the underlying
        file as a numpy array rather than a string.  The array has the
        file's (big-endian) byte order for multi-byte types.
        """

        if not isinstance(dtype, np.dtype):
            dtype = np.dtype(dtype)
        if dtype.itemsize > 1:
            dtype = dtype.newbyteorder('>')

        if isinstance(shape, int):
            shape = (shape,)

        if size and size % dtype.itemsize != 0:
            raise ValueError('size %d not a multiple of %s' % (size, dtype))

        if size and not shape:
            shape = (size // dtype.itemsize,)

        if not (size or shape):
            warnings.warn('No size or shape given to readarray(); assuming a '
                          'shape of (1,)')
            shape = (1,)

        count = int(np.prod(shape))
        data = self.readbytes(offset, count * dtype.itemsize)
        return np.frombuffer(data, dtype=dtype).reshape(shape)

    @_io_errors
    def write(self, data):
        if self.simulateonly:
            return
        if isinstance(data, str):
            data = data.encode('latin-1')
        self.__file.write(data)

    def writearray(self, array):
        """
        Similar to file.write(), but writes a numpy array instead of a
        string.  The array is written in big-endian byte order without
        modifying it.
        """

        self.write(to_big_endian(np.ascontiguousarray(array)).tobytes())

    def writepad(self, nbytes, fill=b'\0'):
        """Write the padding needed to complete a block after ``nbytes``."""

        npad = _pad_length(nbytes)
        if npad:
            self.write(fill * npad)
        return npad

    @_io_errors
    def flush(self):
        if hasattr(self.__file, 'flush'):
            self.__file.flush()

    @_io_errors
    def seek(self, offset, whence=0):
        if not hasattr(self.__file, 'seek'):
            return
        self.__file.seek(offset, whence)

        pos = self.__file.tell()
        if self.mode == 'readonly' and pos > self.size:
            warnings.warn('File may have been truncated: actual file length '
                          '(%i) is smaller than the expected size (%i)'
                          % (self.size, pos))

    @_io_errors
    def tell(self):
        if not hasattr(self.__file, 'tell'):
            raise EOFError
        return self.__file.tell()

    @_io_errors
    def truncate(self, size=None):
        if hasattr(self.__file, 'truncate'):
            self.__file.truncate(size)

    def close(self):
        """
        Close the 'physical' FITS file.  File-like objects handed in by the
        caller are flushed but left open.
        """

        if self.closed:
            return
        if self._close_on_exit and hasattr(self.__file, 'close'):
            self.__file.close()
        elif hasattr(self.__file, 'flush') and \
                not getattr(self.__file, 'closed', False):
            self.__file.flush()
        self.closed = True
