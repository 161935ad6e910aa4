import io
import os

import numpy as np

import tilefits
from tilefits.hdu import CompImageHDU, CompTableHDU, HDUList, ImageHDU, \
     PrimaryHDU, new_table
from tilefits.scripts import fitscheck, fitspack
from tilefits.tests import TilefitsTestCase, random_image


class TestFitscheck(TilefitsTestCase):
    def _write(self, filename, checksum):
        HDUList([PrimaryHDU(random_image((8, 8), np.int16)),
                 ImageHDU(random_image((4, 4)))]).writeto(
            self.temp(filename), checksum=checksum)
        return self.temp(filename)

    def test_good_file(self):
        filename = self._write('good.fits', True)
        output = io.StringIO()
        assert fitscheck.verify_file(filename, output=output) == 0
        assert output.getvalue() == ''
        assert fitscheck.main([filename]) == 0

    def test_missing(self, capsys):
        filename = self._write('plain.fits', False)
        assert fitscheck.main([filename]) == 4
        out = capsys.readouterr()[0]
        assert '%s: HDU 0 missing CHECKSUM' % filename in out
        assert '%s: HDU 1 missing DATASUM' % filename in out

        assert fitscheck.main(['-i', filename]) == 0

    def test_write(self):
        filename = self._write('plain.fits', False)
        assert fitscheck.main(['-w', filename]) == 4
        assert fitscheck.main([filename]) == 0
        with tilefits.open(filename) as hdul:
            np.testing.assert_array_equal(hdul[1].data, random_image((4, 4)))

    def test_bad(self, capsys):
        filename = self._write('bad.fits', True)
        with open(filename, 'r+b') as f:
            f.seek(2880 + 3)
            byte = f.read(1)
            f.seek(2880 + 3)
            f.write(bytes([byte[0] ^ 0x01]))
        assert fitscheck.main([filename]) == 2
        assert 'HDU 0 bad CHECKSUM' in capsys.readouterr()[0]

        assert fitscheck.main(['-f', filename]) == 2
        assert fitscheck.main([filename]) == 0

    def test_unreadable(self, capsys):
        assert fitscheck.main([self.temp('missing.fits')]) == 1
        assert 'missing.fits' in capsys.readouterr()[0]

    def test_usage(self, capsys):
        assert fitscheck.main([]) == 2
        assert fitscheck.main(['-x', 'file.fits']) == 2
        assert fitscheck.main(['-h']) == 0
        assert 'fitscheck' in capsys.readouterr()[0]


class TestFitspack(TilefitsTestCase):
    def _write(self, filename='image.fits'):
        header = PrimaryHDU().header
        header['OBJECT'] = 'NGC 1300'
        HDUList([PrimaryHDU(random_image((30, 40), np.int32), header),
                 ImageHDU(random_image((10, 10), np.float32), name='ERR'),
                 new_table({'ID': np.arange(20, dtype=np.int32)},
                           name='CAT')]).writeto(self.temp(filename))
        return self.temp(filename)

    def test_output_name(self):
        assert fitspack.output_name('a.fits') == 'a.fits.fz'
        assert fitspack.output_name('a.fits.fz', unpack=True) == 'a.fits'
        try:
            fitspack.output_name('a.fits', unpack=True)
        except ValueError:
            pass
        else:
            assert False, 'ValueError not raised'

    def test_pack(self):
        filename = self._write()
        assert fitspack.main(['-r', '5', filename]) == 0
        assert os.path.exists(filename + '.fz')

        with tilefits.open(filename + '.fz') as hdul:
            assert len(hdul) == 4
            assert hdul[0].shape == ()
            assert isinstance(hdul[1], CompImageHDU)
            assert hdul[1].header['OBJECT'] == 'NGC 1300'
            np.testing.assert_array_equal(hdul[1].data,
                                          random_image((30, 40), np.int32))
            assert isinstance(hdul['ERR'], CompImageHDU)
            assert isinstance(hdul['CAT'], CompTableHDU)
            assert hdul['CAT'].header['ZTILELEN'] == 5

    def test_round_trip(self):
        filename = self._write()
        packed = self.temp('packed.fits.fz')
        assert fitspack.main(['-t', 'gzip_2', '-c', '-o', packed,
                              filename]) == 0
        with tilefits.open(packed) as hdul:
            assert hdul[1].compression_type == 'GZIP_2'
            assert hdul.verify_checksum() == [(1, 1)] * 4

        assert fitspack.main(['-u', packed]) == 0
        with tilefits.open(self.temp('packed.fits')) as hdul:
            assert len(hdul) == 3
            assert isinstance(hdul[0], PrimaryHDU)
            assert 'EXTNAME' not in hdul[0].header
            assert hdul[0].header['OBJECT'] == 'NGC 1300'
            np.testing.assert_array_equal(hdul[0].data,
                                          random_image((30, 40), np.int32))
            assert isinstance(hdul['ERR'], ImageHDU)
            assert hdul['CAT'].data.field('ID')[19] == 19

    def test_existing_output(self, capsys):
        filename = self._write()
        assert fitspack.main([filename]) == 0
        assert fitspack.main([filename]) == 1
        assert 'already exists' in capsys.readouterr()[1]
        assert fitspack.main(['-C', filename]) == 0

    def test_variable_length_table_is_copied(self):
        filename = self.temp('var.fits')
        HDUList([PrimaryHDU(),
                 new_table([tilefits.Column(
                     'VAR', '1PJ',
                     array=[np.arange(n) for n in range(4)])])]).writeto(
            filename)
        assert fitspack.main([filename]) == 0
        with tilefits.open(filename + '.fz') as hdul:
            assert not isinstance(hdul[1], CompTableHDU)
            np.testing.assert_array_equal(hdul[1].data.field('VAR')[3],
                                          [0, 1, 2])

    def test_usage(self):
        assert fitspack.main([]) == 2
        assert fitspack.main(['-r', '0', 'a.fits']) == 2
        assert fitspack.main(['-o', 'out.fz', 'a.fits', 'b.fits']) == 2
