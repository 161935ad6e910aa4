import numpy as np
import pytest

import tilefits
from tilefits.card import Card
from tilefits.errors import SizeMismatchError, TileGeometryError, \
     UnsupportedElementTypeError
from tilefits.header import Header
from tilefits.hdu import ImageHDU, PrimaryHDU
from tilefits.tests import TilefitsTestCase, random_image


class TestImageFunctions(TilefitsTestCase):
    def test_minimal_headers(self):
        hdu = PrimaryHDU()
        assert hdu.header.keys() == ['SIMPLE', 'BITPIX', 'NAXIS', 'EXTEND']
        assert hdu.shape == ()

        ext = ImageHDU(np.zeros((3, 5), dtype=np.int16), name='sci')
        assert ext.header['XTENSION'] == 'IMAGE'
        assert ext.header['BITPIX'] == 16
        assert ext.header['NAXIS1'] == 5
        assert ext.header['NAXIS2'] == 3
        assert ext.name == 'SCI'

    def test_bad_data(self):
        with pytest.raises(TypeError):
            ImageHDU([1, 2, 3])
        with pytest.raises(UnsupportedElementTypeError):
            ImageHDU(np.zeros(3, dtype=np.complex64))

    def test_write_and_read(self):
        data = random_image((20, 30), np.int32, -1000, 1000)
        PrimaryHDU(data).writeto(self.temp('test.fits'))

        with tilefits.open(self.temp('test.fits')) as hdul:
            assert len(hdul) == 1
            # the header describes the image before the data is read
            assert hdul[0].shape == (20, 30)
            assert not hdul[0]._data_loaded
            np.testing.assert_array_equal(hdul[0].data, data)
            assert hdul[0].data.dtype == np.int32

    def test_every_bitpix(self):
        hdul = tilefits.HDUList([PrimaryHDU()])
        types = [np.uint8, np.int16, np.int32, np.int64, np.float32,
                 np.float64]
        for dtype in types:
            hdul.append(ImageHDU(random_image((7, 9), dtype)))
        hdul.writeto(self.temp('types.fits'))

        with tilefits.open(self.temp('types.fits')) as hdul:
            for hdu, dtype in zip(hdul[1:], types):
                assert hdu.data.dtype == np.dtype(dtype)
                np.testing.assert_array_equal(hdu.data,
                                              random_image((7, 9), dtype))

    def test_file_size_is_block_aligned(self):
        PrimaryHDU(np.arange(10, dtype=np.int16)).writeto(
            self.temp('small.fits'))
        with open(self.temp('small.fits'), 'rb') as f:
            assert len(f.read()) == 2 * 2880

    def test_unsigned(self):
        data = np.array([0, 1, 40000, 65535], dtype=np.uint16)
        hdu = ImageHDU(data)
        assert hdu.header['BITPIX'] == 16
        assert hdu.header['BZERO'] == 32768
        tilefits.HDUList([PrimaryHDU(), hdu]).writeto(self.temp('u.fits'))

        with tilefits.open(self.temp('u.fits')) as hdul:
            assert hdul[1].data.dtype == np.uint16
            np.testing.assert_array_equal(hdul[1].data, data)

        with tilefits.open(self.temp('u.fits'), uint=False) as hdul:
            assert hdul[1].data.dtype == np.float32
            np.testing.assert_array_equal(hdul[1].data, data)

    def test_unsigned_extension_keywords(self):
        hdul = tilefits.HDUList([PrimaryHDU()])
        for dtype in (np.uint16, np.uint32, np.uint64):
            hdul.append(ImageHDU(np.array([[0, 7], [9, np.iinfo(dtype).max]],
                                          dtype=dtype)))
        for hdu in hdul[1:]:
            assert hdu.header.keys()[:8] == [
                'XTENSION', 'BITPIX', 'NAXIS', 'NAXIS1', 'NAXIS2', 'PCOUNT',
                'GCOUNT', 'BSCALE']
            assert hdu.header.keys()[8] == 'BZERO'
        hdul.writeto(self.temp('unsigned.fits'))

        with tilefits.open(self.temp('unsigned.fits')) as hdul:
            for hdu, dtype in zip(hdul[1:], (np.uint16, np.uint32,
                                             np.uint64)):
                assert hdu.data.dtype == np.dtype(dtype)
                assert hdu.data[1, 1] == np.iinfo(dtype).max

    def test_signed_bytes(self):
        data = np.arange(-5, 5, dtype=np.int8)
        hdu = PrimaryHDU(data)
        assert hdu.header['BITPIX'] == 8
        assert hdu.header['BZERO'] == -128
        hdu.writeto(self.temp('int8.fits'))

        with open(self.temp('int8.fits'), 'rb') as f:
            f.seek(2880)
            assert list(bytearray(f.read(10))) == list(range(123, 133))

        with tilefits.open(self.temp('int8.fits')) as hdul:
            assert hdul[0].data.dtype == np.int8
            np.testing.assert_array_equal(hdul[0].data, data)

        with tilefits.open(self.temp('int8.fits'), uint=False) as hdul:
            assert hdul[0].data.dtype == np.float32
            np.testing.assert_array_equal(hdul[0].data, data)

    def test_signed_bytes_extension(self):
        data = random_image((6, 8), np.int32, -128, 128).astype(np.int8)
        tilefits.HDUList([PrimaryHDU(), ImageHDU(data)]).writeto(
            self.temp('int8.fits'))

        with tilefits.open(self.temp('int8.fits')) as hdul:
            np.testing.assert_array_equal(hdul[1].data, data)
            region = hdul[1].tiler.get_tile((1, 2), (3, 4))
            assert region.dtype == np.int8
            np.testing.assert_array_equal(region, data[1:4, 2:6])

    def test_scaled(self):
        raw = np.array([[0, 1], [2, -3]], dtype=np.int16)
        header = Header([Card('BSCALE', 2.0), Card('BZERO', 10.0)])
        hdu = PrimaryHDU(raw, header, do_not_scale_image_data=True)
        hdu.writeto(self.temp('scaled.fits'))

        with tilefits.open(self.temp('scaled.fits')) as hdul:
            data = hdul[0].data
            assert data.dtype == np.float32
            np.testing.assert_array_equal(data, raw * 2.0 + 10.0)
            assert hdul[0].header['BITPIX'] == -32
            assert 'BSCALE' not in hdul[0].header

        with tilefits.open(self.temp('scaled.fits'),
                           do_not_scale_image_data=True) as hdul:
            np.testing.assert_array_equal(hdul[0].data, raw)
            assert hdul[0].header['BSCALE'] == 2.0

    def test_blank(self):
        raw = np.array([1, -99, 3], dtype=np.int16)
        header = Header([Card('BSCALE', 1.0), Card('BZERO', 0.5),
                         Card('BLANK', -99)])
        PrimaryHDU(raw, header, do_not_scale_image_data=True).writeto(
            self.temp('blank.fits'))

        with tilefits.open(self.temp('blank.fits')) as hdul:
            data = hdul[0].data
            assert np.isnan(data[1])
            np.testing.assert_array_equal(data[[0, 2]], [1.5, 3.5])

    def test_update_header_after_reshape(self):
        hdu = ImageHDU(np.zeros((2, 3, 4), dtype=np.float32))
        hdu.data = np.zeros((5, 6), dtype=np.float64)
        hdu.update_header()
        assert hdu.header['NAXIS'] == 2
        assert hdu.header['BITPIX'] == -64
        assert 'NAXIS3' not in hdu.header

    def test_data_of_closed_file(self):
        PrimaryHDU(np.arange(6, dtype=np.int32)).writeto(
            self.temp('closed.fits'))
        hdul = tilefits.open(self.temp('closed.fits'))
        hdul.close()
        with pytest.raises(tilefits.FITSIOError):
            hdul[0].data

    def test_checksum_round_trip(self):
        data = random_image((10, 10), np.int16)
        PrimaryHDU(data).writeto(self.temp('cs.fits'), checksum=True)

        with tilefits.open(self.temp('cs.fits')) as hdul:
            assert 'CHECKSUM' in hdul[0].header
            assert hdul[0].verify_checksum() == 1
            assert hdul[0].verify_datasum() == 1

        with tilefits.open(self.temp('cs.fits'), mode='update') as hdul:
            hdul[0].data[0, 0] += 1

        with tilefits.open(self.temp('cs.fits')) as hdul:
            assert hdul[0].verify_datasum() == 0

    def test_checksum_detects_changed_byte(self):
        data = random_image((10, 10), np.int16)
        tilefits.HDUList([PrimaryHDU(), ImageHDU(data)]).writeto(
            self.temp('cs.fits'), checksum=True)
        with tilefits.open(self.temp('cs.fits')) as hdul:
            assert hdul[1].verify_checksum() == 1

        with open(self.temp('cs.fits'), 'r+b') as f:
            f.seek(2 * 2880 + 11)
            byte = f.read(1)
            f.seek(2 * 2880 + 11)
            f.write(bytes([byte[0] ^ 0x10]))

        with tilefits.open(self.temp('cs.fits')) as hdul:
            assert hdul[1].verify_checksum() == 0
            assert hdul[1].verify_datasum() == 0
            assert hdul[0].verify_checksum() == 1


class TestImageTiler(TilefitsTestCase):
    def setup_method(self, method):
        super(TestImageTiler, self).setup_method(method)
        self.data = np.arange(6 * 7 * 8, dtype=np.int32).reshape(6, 7, 8)
        PrimaryHDU(self.data).writeto(self.temp('cube.fits'))
        self.hdul = tilefits.open(self.temp('cube.fits'))

    def teardown_method(self, method):
        self.hdul.close()
        super(TestImageTiler, self).teardown_method(method)

    def test_region_from_file(self):
        tiler = self.hdul[0].tiler
        tile = tiler.get_tile((1, 2, 3), (2, 3, 4))
        np.testing.assert_array_equal(tile, self.data[1:3, 2:5, 3:7])
        # reading a region does not load the image
        assert not self.hdul[0]._data_loaded

    def test_strided_region(self):
        tiler = self.hdul[0].tiler
        tile = tiler.get_tile((0, 1, 0), (3, 3, 4), (2, 2, 2))
        np.testing.assert_array_equal(tile, self.data[0:6:2, 1:7:2, 0:8:2])

    def test_complete_image(self):
        np.testing.assert_array_equal(
            self.hdul[0].tiler.get_complete_image(), self.data)

    def test_loaded_image(self):
        self.hdul[0].data[0, 0, 0] = -1
        tile = self.hdul[0].tiler.get_tile((0, 0, 0), (1, 1, 2))
        np.testing.assert_array_equal(tile, [[[-1, 1]]])

    def test_scaled_region(self):
        header = Header([Card('BZERO', 0.5)])
        PrimaryHDU(self.data.astype(np.int16), header,
                   do_not_scale_image_data=True).writeto(
            self.temp('scaled.fits'))
        with tilefits.open(self.temp('scaled.fits')) as hdul:
            tiler = hdul[0].tiler
            assert tiler.dtype == np.float32
            tile = tiler.get_tile((5, 6, 0), (1, 1, 8))
            np.testing.assert_array_equal(tile, self.data[5:, 6:, :] + 0.5)

    def test_into_array(self):
        out = np.zeros((2, 2, 2), dtype=np.int32)
        result = self.hdul[0].tiler.get_tile_into(out, (4, 5, 6), (2, 2, 2))
        assert result is out
        np.testing.assert_array_equal(out, self.data[4:, 5:, 6:])

        with pytest.raises(SizeMismatchError):
            self.hdul[0].tiler.get_tile_into(np.zeros((2, 2), np.int32),
                                             (0, 0, 0), (2, 2, 2))

    def test_out_of_bounds(self):
        with pytest.raises(TileGeometryError):
            self.hdul[0].tiler.get_tile((5, 0, 0), (2, 1, 1))
