import io
import os
import sys
import warnings

import numpy as np

from tilefits.errors import FITSIOError, FormatError
from tilefits.file import PYTHON_MODES, _File
from tilefits.hdu.base import _BaseHDU, _ValidHDU
from tilefits.hdu.extension import _ExtensionHDU
from tilefits.hdu.image import ImageHDU, PrimaryHDU
from tilefits.util import _is_int, _tmp_name
from tilefits.verify import _ErrList, _Verify


def fitsopen(name, mode='readonly', checksum=False, **kwargs):
    """Factory function to open a FITS file and return an `HDUList` object.

    Parameters
    ----------
    name : file path, file object or file-like object
        File to be opened; paths ending in ``.gz`` are decompressed on
        the fly (read only).

    mode : str
        Open mode, 'readonly' (default), 'update', 'append', or
        'ostream'.

    checksum : bool
        If `True`, verifies that both ``DATASUM`` and ``CHECKSUM`` card
        values (when present in the HDU header) match the header and data
        of all HDU's in the file; mismatches are reported as warnings.

    kwargs : dict
        optional keyword arguments, possible values are:

        - **uint** : bool

            Interpret signed integer data where ``BZERO`` is the
            central value and ``BSCALE == 1`` as unsigned integer
            data.  For example, `int16` data with ``BZERO = 32768``
            and ``BSCALE = 1`` would be treated as `uint16` data.

        - **do_not_scale_image_data** : bool

            If `True`, image data is not scaled using BSCALE/BZERO values
            when read.

    Returns
    -------
        hdulist : an HDUList object
            `HDUList` containing all of the header data units in the
            file.  The data of the HDUs is only read when accessed.
    """

    if mode not in PYTHON_MODES:
        raise ValueError("Mode '%s' not recognized" % mode)

    ffo = _File(name, mode=mode)
    hdulist = HDUList(file=ffo)

    if mode == 'ostream':
        # Output stream--not interested in reading/parsing the HDUs--just
        # writing to the output file
        return hdulist

    try:
        # read all HDUs
        while True:
            try:
                hdu = _BaseHDU._readfrom(ffo, **kwargs)
            except EOFError:
                break
            # check in the case there is extra space after the last HDU or
            # corrupted HDU
            except FormatError as err:
                if not len(hdulist):
                    raise
                warnings.warn(
                    'Required keywords missing when trying to read HDU #%d.\n'
                    '          %s\n          There may be extra bytes after '
                    'the last HDU or the file is corrupted.'
                    % (len(hdulist), err))
                break
            super(HDUList, hdulist).append(hdu)

        # If we're trying to read only and no header units were found,
        # raise and exception
        if mode == 'readonly' and len(hdulist) == 0:
            raise FITSIOError('Empty FITS file')
    except Exception:
        ffo.close()
        raise

    hdulist._nwritten = len(hdulist)

    # For each HDU, verify the checksum/datasum value if the cards
    # exist in the header and we are opening with checksum=True.
    if checksum:
        for hdu in hdulist:
            hdu._verify_checksum_datasum()

    return hdulist


class HDUList(list, _Verify):
    """
    HDU list class.  This is the top-level FITS object.  When a FITS
    file is opened, a `HDUList` object is returned.
    """

    def __init__(self, hdus=[], file=None):
        """
        Construct a `HDUList` object.

        Parameters
        ----------
        hdus : sequence of HDU objects or single HDU, optional
            The HDU object(s) to comprise the `HDUList`.

        file : `_File` object, optional
            The opened physical file associated with the `HDUList`.
        """

        self._file = file
        self._nwritten = 0
        if hdus is None:
            hdus = []

        # can take one HDU, as well as a list of HDU's as input
        if isinstance(hdus, _ValidHDU):
            hdus = [hdus]
        elif not isinstance(hdus, (HDUList, list)):
            raise TypeError('Invalid input for HDUList.')

        for idx, hdu in enumerate(hdus):
            if not isinstance(hdu, _BaseHDU):
                raise TypeError(
                    'Element %d in the HDUList input is not an HDU.' % idx)
        list.__init__(self, hdus)

    def __getitem__(self, key):
        """
        Get an HDU from the `HDUList`, indexed by number or name.
        """

        if isinstance(key, slice):
            return HDUList(list.__getitem__(self, key))
        return list.__getitem__(self, self.index_of(key))

    def __setitem__(self, key, hdu):
        """
        Set an HDU to the `HDUList`, indexed by number or name.
        """

        if not isinstance(hdu, _BaseHDU):
            raise ValueError('%s is not an HDU.' % (hdu,))
        key = self.index_of(key)
        try:
            list.__setitem__(self, key, hdu)
        except IndexError:
            raise IndexError('Extension %s is out of bound or not found.'
                             % key)

    def __delitem__(self, key):
        """
        Delete an HDU from the `HDUList`, indexed by number or name.
        """

        if not isinstance(key, slice):
            key = self.index_of(key)
        list.__delitem__(self, key)

    # Support the 'with' statement
    def __enter__(self):
        return self

    def __exit__(self, type, value, traceback):
        self.close()

    def index_of(self, key):
        """
        Get the index of an HDU from the `HDUList`.

        Parameters
        ----------
        key : int, str or tuple of (string, int)
           The key identifying the HDU.  If `key` is a tuple, it is of
           the form (`key`, `ver`) where `ver` is an ``EXTVER`` value
           that must match the HDU being searched for.

        Returns
        -------
        index : int
           The index of the HDU in the `HDUList`.
        """

        if _is_int(key):
            return key
        elif isinstance(key, tuple):
            _key, _ver = key
        else:
            _key = key
            _ver = None

        if not isinstance(_key, str):
            raise KeyError(key)
        _key = _key.strip().upper()

        found = None
        nfound = 0
        for idx, hdu in enumerate(self):
            name = hdu.name
            if isinstance(name, str):
                name = name.strip().upper()
            if name == _key:
                # if only specify extname, can only have one extension with
                # that name
                if _ver is None or getattr(hdu, 'ver', 1) == _ver:
                    found = idx
                    nfound += 1

        if nfound == 0:
            raise KeyError('Extension %s not found.' % repr(key))
        elif nfound > 1:
            raise KeyError('There are %d extensions of %s.'
                           % (nfound, repr(key)))
        return found

    def insert(self, index, hdu):
        """
        Insert an HDU into the `HDUList` at the given `index`.

        Parameters
        ----------
        index : int
            Index before which to insert the new HDU.

        hdu : HDU instance
            The HDU object to insert
        """

        if not isinstance(hdu, _BaseHDU):
            raise ValueError('%s is not an HDU.' % (hdu,))

        num_hdus = len(self)
        if index == 0 or num_hdus == 0:
            if num_hdus != 0:
                # the current primary HDU becomes the first extension
                if isinstance(self[0], PrimaryHDU):
                    hdu1 = ImageHDU(self[0].data, self[0].header)
                    list.insert(self, 1, hdu1)
                    list.__delitem__(self, 0)

            if not isinstance(hdu, PrimaryHDU):
                # an image extension can be turned into the primary HDU;
                # other extensions get an empty primary HDU in front
                if isinstance(hdu, ImageHDU):
                    hdu = PrimaryHDU(hdu.data, hdu.header)
                else:
                    list.insert(self, 0, PrimaryHDU())
                    index = 1
        elif isinstance(hdu, PrimaryHDU):
            # only the first HDU can be primary
            hdu = ImageHDU(hdu.data, hdu.header)

        list.insert(self, index, hdu)

        # make sure the EXTEND keyword is in primary HDU if there is extension
        if len(self) > 1:
            self.update_extend()

    def append(self, hdu):
        """
        Append a new HDU to the `HDUList`.

        Parameters
        ----------
        hdu : HDU instance
            HDU to add to the `HDUList`.
        """

        if not isinstance(hdu, _BaseHDU):
            raise ValueError('HDUList can only append an HDU.')

        if len(self) > 0:
            if isinstance(hdu, PrimaryHDU):
                # only the first HDU can be primary
                hdu = ImageHDU(hdu.data, hdu.header)
        elif not isinstance(hdu, PrimaryHDU):
            if isinstance(hdu, ImageHDU):
                hdu = PrimaryHDU(hdu.data, hdu.header)
            else:
                list.append(self, PrimaryHDU())

        list.append(self, hdu)

        # make sure the EXTEND keyword is in primary HDU if there is extension
        if len(self) > 1:
            self.update_extend()

    def update_extend(self):
        """
        Make sure that if the primary header needs the keyword
        ``EXTEND`` that it has it and it is correct.
        """

        hdr = self[0].header
        if 'EXTEND' in hdr:
            if hdr['EXTEND'] is not True:
                hdr['EXTEND'] = True
        else:
            naxis = hdr.get('NAXIS', 0)
            if naxis == 0:
                hdr.update('EXTEND', True, after='NAXIS')
            else:
                hdr.update('EXTEND', True, after='NAXIS' + str(naxis))

    def _prepare(self, output_verify):
        if len(self) > 1:
            self.update_extend()
        for hdu in self:
            hdu._prepare_header()
        if output_verify == 'warn':
            output_verify = 'exception'
        self.verify(option=output_verify)

    def _writeall(self, ffo, hdus, checksum=False):
        for hdu in hdus:
            hdu._writeto(ffo, checksum=checksum)
        ffo.flush()

    def _write_file(self, filename, checksum=False):
        """
        Write all HDUs to a temporary file in the directory of
        ``filename`` and move it into place once complete, so that a
        failure leaves no partially written file behind.
        """

        tmp = _tmp_name(filename)
        try:
            with _File(tmp, mode='ostream') as ffo:
                self._writeall(ffo, self, checksum)
            os.replace(tmp, filename)
        finally:
            if os.path.exists(tmp):
                os.remove(tmp)

    def writeto(self, name, output_verify='exception', clobber=False,
                checksum=False):
        """
        Write the `HDUList` to a new file.

        Parameters
        ----------
        name : file path, file object or file-like object
            File to write to.

        output_verify : str
            Output verification option.  Must be one of ``"fix"``,
            ``"silentfix"``, ``"ignore"``, ``"warn"``, or
            ``"exception"``.

        clobber : bool
            When `True`, overwrite the output file if exists.

        checksum : bool
            When `True` adds both ``DATASUM`` and ``CHECKSUM`` cards
            to the headers of all HDU's written to the file.
        """

        if len(self) == 0:
            warnings.warn('There is nothing to write.')
            return

        self._prepare(output_verify)

        if isinstance(name, (str, os.PathLike)):
            filename = os.fspath(name)
            # check if the output file already exists
            if os.path.exists(filename) and os.path.getsize(filename) != 0:
                if clobber:
                    warnings.warn("Overwriting existing file '%s'."
                                  % filename)
                else:
                    raise FITSIOError("File '%s' already exists." % filename)
            self._write_file(filename, checksum)
        else:
            # a file-like object: collect the output first so nothing is
            # written unless every HDU could be encoded
            buffer = io.BytesIO()
            with _File(buffer, mode='ostream') as ffo:
                self._writeall(ffo, self, checksum)
            with _File(name, mode='ostream') as ffo:
                ffo.write(buffer.getvalue())
                ffo.flush()

    def flush(self, output_verify='exception'):
        """
        Force a write of the `HDUList` back to the file (for append and
        update modes only).
        """

        ffo = self._file
        if ffo is None or ffo.mode == 'readonly':
            warnings.warn("Flush for '%s' mode is not supported."
                          % (ffo.mode if ffo is not None else 'no file'))
            return

        self._prepare(output_verify)

        if ffo.mode == 'update':
            if ffo.file_like:
                buffer = io.BytesIO()
                with _File(buffer, mode='ostream') as out:
                    self._writeall(out, self)
                ffo.seek(0)
                ffo.write(buffer.getvalue())
                ffo.truncate()
                ffo.flush()
            else:
                self._write_file(ffo.name)
        else:
            # append and ostream modes only add the new HDUs at the end
            ffo.seek(0, 2)
            self._writeall(ffo, list.__getitem__(self,
                                                 slice(self._nwritten, None)))
        self._nwritten = len(self)

    def close(self, output_verify='exception', closed=True):
        """
        Close the associated FITS file, if any, after writing pending
        changes for the ``update``, ``append`` and ``ostream`` modes.

        Parameters
        ----------
        output_verify : str
            Output verification option.  Must be one of ``"fix"``,
            ``"silentfix"``, ``"ignore"``, ``"warn"``, or
            ``"exception"``.

        closed : bool
            When `True`, close the underlying file object.
        """

        ffo = self._file
        if ffo is None or ffo.closed:
            return
        try:
            if ffo.mode in ('update', 'append', 'ostream') and len(self):
                self.flush(output_verify=output_verify)
        finally:
            if closed:
                ffo.close()

    def info(self, output=None):
        """
        Summarize the info of the HDUs in this `HDUList`.

        Parameters
        ----------
        output : file, bool, optional
            A file-like object to write the output to; by default the
            summary is printed to ``sys.stdout``.  If `False`, the lines
            of the summary are returned as a list instead.
        """

        if self._file is None:
            name = '(No file associated with this HDUList)'
        else:
            name = self._file.name

        results = ['Filename: %s' % name,
                   'No.    Name         Type      Cards   Dimensions   Format']

        for idx, hdu in enumerate(self):
            results.append('%-3d  %s' % (idx, hdu._summary()))

        if output is False:
            return results
        if output is None:
            output = sys.stdout
        output.write('\n'.join(results) + '\n')
        output.flush()

    def filename(self):
        """
        Return the file name associated with the HDUList object if one exists.
        Otherwise returns None.
        """

        if self._file is not None:
            return self._file.name
        return None

    def add_checksum(self, when=None):
        """
        Add the ``CHECKSUM`` and ``DATASUM`` cards to every HDU of the
        list.
        """

        return [hdu.add_checksum(when) for hdu in self]

    def verify_checksum(self):
        """
        Verify the ``CHECKSUM`` and ``DATASUM`` cards of every HDU.

        Returns
        -------
        results : list of (int, int)
            the `verify_checksum` and `verify_datasum` result of each HDU:
            0 for failure, 1 for success, 2 for a missing card
        """

        return [(hdu.verify_checksum(), hdu.verify_datasum())
                for hdu in self]

    def _verify(self, option='warn'):
        errs = _ErrList([], unit='HDU')

        # the first (0th) element must be a primary HDU
        if len(self) > 0 and not isinstance(self[0], PrimaryHDU):
            err_text = "HDUList's 0th element is not a primary HDU."
            fix_text = 'Fixed by inserting one as 0th HDU.'

            def fix(self=self):
                list.insert(self, 0, PrimaryHDU())
                self.update_extend()

            errs.append(self.run_option(option, err_text=err_text,
                                        fix_text=fix_text, fix=fix))

        # each element calls their own verify
        for idx, hdu in enumerate(self):
            if idx > 0 and not isinstance(hdu, _ExtensionHDU):
                err_text = "HDUList's element %s is not an extension HDU." \
                           % str(idx)
                errs.append(self.run_option(option, err_text=err_text,
                                            fixable=False))
            else:
                result = hdu._verify(option)
                if result:
                    errs.append(result)
        return errs
