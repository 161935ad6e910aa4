import gzip
import io
import os
import warnings

import numpy as np
import pytest

import tilefits
from tilefits.errors import FITSIOError, VerifyError
from tilefits.file import _File
from tilefits.hdu import BinTableHDU, CompImageHDU, HDUList, ImageHDU, \
     PrimaryHDU, new_table
from tilefits.tests import TilefitsTestCase, random_image


class TestHDUListFunctions(TilefitsTestCase):
    def _make_file(self, filename='test.fits'):
        hdul = HDUList([PrimaryHDU(random_image((4, 5), np.int16)),
                        ImageHDU(random_image((3, 3)), name='SCI'),
                        new_table({'A': np.arange(4, dtype=np.int32)},
                                  name='CAT')])
        hdul.writeto(self.temp(filename))
        return self.temp(filename)

    def test_append_conversions(self):
        hdul = HDUList()
        hdul.append(ImageHDU(np.zeros(3, dtype=np.int16)))
        assert isinstance(hdul[0], PrimaryHDU)

        hdul.append(PrimaryHDU(np.ones(2, dtype=np.int16)))
        assert isinstance(hdul[1], ImageHDU)
        assert hdul[0].header['EXTEND'] is True

        tables = HDUList()
        tables.append(new_table({'A': [1, 2]}))
        assert len(tables) == 2
        assert isinstance(tables[0], PrimaryHDU)

    def test_insert_new_primary(self):
        hdul = HDUList([PrimaryHDU(np.zeros(2, dtype=np.int16))])
        hdul.insert(0, ImageHDU(np.ones(3, dtype=np.int16)))
        assert isinstance(hdul[0], PrimaryHDU)
        assert isinstance(hdul[1], ImageHDU)
        np.testing.assert_array_equal(hdul[0].data, [1, 1, 1])
        np.testing.assert_array_equal(hdul[1].data, [0, 0])

    def test_invalid_input(self):
        with pytest.raises(TypeError):
            HDUList(['not an HDU'])
        with pytest.raises(ValueError):
            HDUList().append('not an HDU')

    def test_index_of(self):
        with tilefits.open(self._make_file()) as hdul:
            assert hdul.index_of('sci') == 1
            assert hdul.index_of(('CAT', 1)) == 2
            assert hdul.index_of(2) == 2
            assert hdul['PRIMARY'] is hdul[0]
            with pytest.raises(KeyError):
                hdul.index_of('MISSING')
            with pytest.raises(KeyError):
                hdul.index_of(('SCI', 2))

    def test_ambiguous_name(self):
        hdul = HDUList([PrimaryHDU(), ImageHDU(name='SCI'),
                        ImageHDU(name='SCI')])
        with pytest.raises(KeyError):
            hdul.index_of('SCI')
        hdul[2].header['EXTVER'] = 2
        assert hdul.index_of(('SCI', 2)) == 2

    def test_slice(self):
        with tilefits.open(self._make_file()) as hdul:
            tail = hdul[1:]
            assert isinstance(tail, HDUList)
            assert len(tail) == 2

    def test_info(self):
        filename = self._make_file()
        with tilefits.open(filename) as hdul:
            lines = hdul.info(output=False)
            assert lines[0] == 'Filename: %s' % filename
            assert len(lines) == 5
            assert 'PrimaryHDU' in lines[2]
            assert '(5, 4)' in lines[2]
            assert 'BinTableHDU' in lines[4]

            output = io.StringIO()
            hdul.info(output)
            assert output.getvalue() == '\n'.join(lines) + '\n'

    def test_open_mode(self):
        with pytest.raises(ValueError):
            tilefits.open(self._make_file(), mode='bogus')

    def test_empty_file(self):
        open(self.temp('empty.fits'), 'wb').close()
        with pytest.raises(FITSIOError):
            tilefits.open(self.temp('empty.fits'))

    def test_missing_file(self):
        with pytest.raises(FITSIOError):
            tilefits.open(self.temp('missing.fits'))

    def test_not_fits(self):
        with open(self.temp('text.fits'), 'wb') as f:
            f.write(b'this is not a FITS file'.ljust(2880))
        with pytest.raises(tilefits.FormatError):
            tilefits.open(self.temp('text.fits'))

    def test_extra_bytes(self):
        filename = self._make_file()
        with open(filename, 'ab') as f:
            f.write(b'\0' * 2880)
        with warnings.catch_warnings(record=True) as w:
            with tilefits.open(filename) as hdul:
                assert len(hdul) == 3
            assert any('Required keywords missing' in str(x.message)
                       for x in w)

    def test_update_mode(self):
        filename = self._make_file()
        with tilefits.open(filename, mode='update') as hdul:
            hdul[1].header['OBSERVER'] = 'Henrietta Leavitt'
            del hdul['CAT']

        with tilefits.open(filename) as hdul:
            assert len(hdul) == 2
            assert hdul[1].header['OBSERVER'] == 'Henrietta Leavitt'
            np.testing.assert_array_equal(hdul[1].data,
                                          random_image((3, 3)))

    def test_append_mode(self):
        filename = self._make_file()
        with tilefits.open(filename, mode='append') as hdul:
            hdul.append(ImageHDU(np.arange(4, dtype=np.float32), name='NEW'))

        with tilefits.open(filename) as hdul:
            assert len(hdul) == 4
            np.testing.assert_array_equal(hdul['NEW'].data, np.arange(4))
            np.testing.assert_array_equal(hdul[0].data,
                                          random_image((4, 5), np.int16))

    def test_ostream_mode(self):
        filename = self.temp('stream.fits')
        with tilefits.open(filename, mode='ostream') as hdul:
            hdul.append(PrimaryHDU(np.arange(3, dtype=np.int32)))
            hdul.append(ImageHDU(np.arange(2, dtype=np.int16)))

        with tilefits.open(filename) as hdul:
            assert len(hdul) == 2
            np.testing.assert_array_equal(hdul[1].data, [0, 1])

    def test_flush_readonly(self):
        with tilefits.open(self._make_file()) as hdul:
            with warnings.catch_warnings(record=True) as w:
                hdul.flush()
                assert 'not supported' in str(w[0].message)

    def test_clobber(self):
        filename = self._make_file()
        hdul = HDUList([PrimaryHDU(np.zeros(2, dtype=np.uint8))])
        with pytest.raises(FITSIOError):
            hdul.writeto(filename)

        with warnings.catch_warnings(record=True) as w:
            hdul.writeto(filename, clobber=True)
            assert any('Overwriting' in str(x.message) for x in w)
        with tilefits.open(filename) as hdul:
            assert len(hdul) == 1

    def test_nothing_to_write(self):
        with warnings.catch_warnings(record=True) as w:
            HDUList().writeto(self.temp('nothing.fits'))
            assert 'nothing to write' in str(w[0].message)
        assert not os.path.exists(self.temp('nothing.fits'))

    def test_verify_fix(self):
        hdul = HDUList([PrimaryHDU()])
        list.append(hdul, PrimaryHDU())
        with pytest.raises(VerifyError):
            hdul.writeto(self.temp('bad.fits'))

        hdul = HDUList()
        list.append(hdul, ImageHDU(np.zeros(2, dtype=np.int16)))
        hdul.writeto(self.temp('fixed.fits'), output_verify='silentfix')
        with tilefits.open(self.temp('fixed.fits')) as hdul:
            assert len(hdul) == 2
            assert isinstance(hdul[0], PrimaryHDU)

    def test_file_like(self):
        buffer = io.BytesIO()
        HDUList([PrimaryHDU(np.arange(5, dtype=np.int64))]).writeto(buffer)
        assert len(buffer.getvalue()) == 2 * 2880

        with tilefits.open(io.BytesIO(buffer.getvalue())) as hdul:
            np.testing.assert_array_equal(hdul[0].data, np.arange(5))

        assert HDUList().filename() is None

    def test_gzip_input(self):
        filename = self._make_file()
        with open(filename, 'rb') as f:
            raw = f.read()
        with gzip.open(self.temp('test.fits.gz'), 'wb') as f:
            f.write(raw)

        with tilefits.open(self.temp('test.fits.gz')) as hdul:
            assert len(hdul) == 3
            np.testing.assert_array_equal(hdul['SCI'].data,
                                          random_image((3, 3)))

        with pytest.raises(FITSIOError):
            tilefits.open(self.temp('test.fits.gz'), mode='update')

    def test_checksum_on_open(self):
        filename = self.temp('cs.fits')
        HDUList([PrimaryHDU(random_image((10, 10), np.int32))]).writeto(
            filename, checksum=True)

        # flip one byte of the data unit
        with open(filename, 'r+b') as f:
            f.seek(2880 + 7)
            byte = f.read(1)
            f.seek(2880 + 7)
            f.write(bytes([byte[0] ^ 0xff]))

        with warnings.catch_warnings(record=True) as w:
            with tilefits.open(filename, checksum=True) as hdul:
                assert hdul.verify_checksum() == [(0, 0)]
            messages = [str(x.message) for x in w]
            assert any('Checksum verification failed' in m for m in messages)
            assert any('Datasum verification failed' in m for m in messages)

    def test_add_checksum(self):
        filename = self._make_file()
        with tilefits.open(filename, mode='update') as hdul:
            checksums = hdul.add_checksum()
            assert len(checksums) == 3

        with tilefits.open(filename) as hdul:
            assert hdul.verify_checksum() == [(1, 1)] * 3

    def test_compressed_in_list(self):
        hdul = HDUList([PrimaryHDU(),
                        CompImageHDU(random_image((16, 16)), name='COMP')])
        hdul.writeto(self.temp('comp.fits'))
        with tilefits.open(self.temp('comp.fits')) as hdul:
            lines = hdul.info(output=False)
            assert 'CompImageHDU' in lines[3]
            assert isinstance(hdul['COMP'], CompImageHDU)
            assert isinstance(hdul['COMP'], BinTableHDU)

    def test_failed_write_leaves_no_file(self, monkeypatch):
        hdul = HDUList([PrimaryHDU(np.zeros(100, dtype=np.int32))])
        original = _File.write
        calls = []

        def failing_write(self, data):
            calls.append(len(data))
            if len(calls) > 1:
                raise FITSIOError('I/O failure: disk full')
            return original(self, data)

        monkeypatch.setattr(_File, 'write', failing_write)
        with pytest.raises(FITSIOError):
            hdul.writeto(self.temp('partial.fits'))
        assert os.listdir(self.temp_dir) == []
