import numpy as np
import pytest

from tilefits import core
from tilefits.compression import ALGORITHMS, GzipOption, HCompressOption, \
     QuantizeOption, RiceOption, get_algorithm, is_known_algorithm, tiled
from tilefits.compression.deflate import shuffle, unshuffle
from tilefits.compression.hcompress import hcompress, hdecompress, hinv, \
     htrans
from tilefits.compression.plio import plio_decode, plio_encode
from tilefits.compression.quantize import NO_DITHER, NULL_VALUE, \
     SUBTRACTIVE_DITHER_2, ZERO_VALUE, dequantize, dither_sequence, \
     quantize, random_values
from tilefits.compression.rice import rice_decode, rice_encode
from tilefits.errors import ArgumentError, CompressionError, \
     InvalidStreamError, UnsupportedFeatureError, ValueOutOfRangeError
from tilefits.tests import TilefitsTestCase, random_image
from tilefits.tiles import image_tiles, table_tiles


class TestRegistry(TilefitsTestCase):
    def test_lookup(self):
        assert get_algorithm('rice_1').name == 'RICE_1'
        assert get_algorithm('RICE_ONE').name == 'RICE_1'
        assert is_known_algorithm(' gzip_2 ')
        assert not is_known_algorithm('LZW')

    def test_unknown(self):
        with pytest.raises(UnsupportedFeatureError):
            get_algorithm('LZW')

    def test_option_type_is_checked(self):
        with pytest.raises(ArgumentError):
            get_algorithm('RICE_1').compress(np.zeros(4, dtype=np.int32),
                                             GzipOption())


class TestRice(TilefitsTestCase):
    def test_constant_block(self):
        values = np.full(32, 5, dtype=np.int32)
        # first pixel, then a single low entropy block code
        assert rice_encode(values, 4) == b'\x00\x00\x00\x05\x00'

    def test_round_trip_widths(self):
        for dtype, bytepix in ((np.uint8, 1), (np.int16, 2), (np.int32, 4),
                               (np.int64, 8)):
            info = np.iinfo(dtype)
            values = random_image(1000, dtype, max(info.min, -5000),
                                  min(info.max, 5000))
            values[10] = info.max
            values[11] = info.min
            stream = rice_encode(values, bytepix)
            out = rice_decode(stream, values.size, bytepix)
            np.testing.assert_array_equal(out.view(values.dtype)
                                          if dtype is not np.uint8 else out,
                                          values)

    def test_image_round_trip(self):
        image = random_image((200, 200), np.int32, 0, 100)
        rice = get_algorithm('RICE_1')
        stream = rice.compress(image)
        assert len(stream) < image.nbytes
        out = np.empty_like(image)
        rice.decompress(stream, out)
        np.testing.assert_array_equal(out, image)

    def test_block_size_option(self):
        values = random_image(100, np.int16, -100, 100)
        rice = get_algorithm('RICE_1')
        option = RiceOption(block_size=16)
        out = np.empty_like(values)
        rice.decompress(rice.compress(values, option), out, option)
        np.testing.assert_array_equal(out, values)

    def test_out_of_range(self):
        with pytest.raises(ValueOutOfRangeError):
            rice_encode(np.array([70000], dtype=np.int32), 2)

    def test_floats_rejected(self):
        with pytest.raises(CompressionError):
            get_algorithm('RICE_1').compress(np.zeros(3))

    def test_mixed_blocks(self):
        # constant runs, slow ramps and full range noise give blocks with
        # no differences, split blocks and blocks written verbatim
        for dtype, bytepix in ((np.int16, 2), (np.int32, 4)):
            info = np.iinfo(dtype)
            parts = [np.full(1000, -7),
                     np.arange(3000) // 3,
                     random_image(2000, np.int64, info.min, info.max),
                     np.full(96, 12345),
                     random_image(93904, np.int64, -50, 50)]
            values = np.concatenate(parts).astype(dtype)
            assert values.size == 100000
            stream = rice_encode(values, bytepix)
            out = rice_decode(stream, values.size, bytepix)
            np.testing.assert_array_equal(out.view(dtype), values)

    def test_truncated_stream(self):
        values = random_image(100, np.int32, 0, 1000)
        stream = rice_encode(values, 4)
        with pytest.raises(InvalidStreamError):
            rice_decode(stream[:len(stream) // 2], values.size, 4)


class TestPlio(TilefitsTestCase):
    def test_round_trip(self):
        values = np.zeros(300, dtype=np.int32)
        values[10:20] = 3
        values[50:250] = 70000
        values[260] = 1
        words = plio_encode(values)
        np.testing.assert_array_equal(plio_decode(words, values.size),
                                      values)
        assert words.size < values.size

    def test_long_runs(self):
        values = np.zeros(20000, dtype=np.int32)
        values[5000:15000] = 7
        np.testing.assert_array_equal(
            plio_decode(plio_encode(values), values.size), values)

    def test_negative_values(self):
        with pytest.raises(ValueOutOfRangeError):
            plio_encode(np.array([1, -1]))
        with pytest.raises(ValueOutOfRangeError):
            plio_encode(np.array([1 << 24]))

    def test_algorithm(self):
        plio = get_algorithm('PLIO_1')
        tile = random_image((4, 25), np.int16, 0, 3)
        out = np.empty_like(tile)
        plio.decompress(plio.compress(tile), out)
        np.testing.assert_array_equal(out, tile)


class TestGzip(TilefitsTestCase):
    def test_shuffle(self):
        raw = b'\x01\x02\x03\x04\x05\x06'
        assert shuffle(raw, 2) == b'\x01\x03\x05\x02\x04\x06'
        assert unshuffle(shuffle(raw, 2), 2) == raw
        assert unshuffle(shuffle(raw, 3), 3) == raw

    def test_round_trip_all_types(self):
        for name in ('GZIP_1', 'GZIP_2', 'NOCOMPRESS'):
            algorithm = get_algorithm(name)
            for dtype in (np.uint8, np.int16, np.int32, np.float32,
                          np.float64):
                tile = random_image((10, 10), dtype)
                out = np.empty_like(tile)
                algorithm.decompress(algorithm.compress(tile), out)
                np.testing.assert_array_equal(out, tile)

    def test_gzip_is_deterministic(self):
        tile = random_image(100)
        gzip = get_algorithm('GZIP_1')
        assert gzip.compress(tile) == gzip.compress(tile)

    def test_corrupt_stream(self):
        out = np.empty(10, dtype=np.int32)
        with pytest.raises(InvalidStreamError):
            get_algorithm('GZIP_1').decompress(b'not gzip data', out)
        with pytest.raises(InvalidStreamError):
            get_algorithm('NOCOMPRESS').decompress(b'\x00' * 7, out)


class TestHCompress(TilefitsTestCase):
    # the 2x2 image [[1, 2], [3, 4]] as written by the standard H-compress
    # coder: header, sum of the pixels, bit plane counts, quadtree codes of
    # the two nonzero coefficients, then a byte of sign bits
    STREAM = (b'\xdd\x99' b'\x00\x00\x00\x02' b'\x00\x00\x00\x02'
              b'\x00\x00\x00\x00' b'\x00\x00\x00\x00\x00\x00\x00\x0c'
              b'\x00\x03\x00' b'\xff\xbd\xff\xde\xff\xef\xf8\x00' b'\x00')

    def test_standard_stream(self):
        image = np.array([[1, 2], [3, 4]], dtype=np.int32)
        assert hcompress(image) == self.STREAM
        out, scale = hdecompress(self.STREAM)
        assert scale == 0
        np.testing.assert_array_equal(out, image)

    def test_transform(self):
        coeffs = htrans(np.array([[1, 2], [3, 4]]))
        np.testing.assert_array_equal(coeffs, [[12, 2], [4, 0]])
        image = random_image((9, 14), np.int32, -3000, 3000)
        np.testing.assert_array_equal(hinv(htrans(image)), image)

    def test_lossless(self):
        image = random_image((16, 30), np.int32, -500, 500)
        out, scale = hdecompress(hcompress(image))
        assert scale == 0
        np.testing.assert_array_equal(out, image)

    def test_odd_shapes(self):
        for shape in ((1, 1), (1, 7), (2, 1), (5, 3), (17, 33)):
            image = random_image(shape, np.int32, -100, 100)
            out, _ = hdecompress(hcompress(image))
            np.testing.assert_array_equal(out, image)

    def test_flat_and_sparse_images(self):
        flat = np.full((12, 20), 37, dtype=np.int32)
        stream = hcompress(flat)
        # only the sum of the pixels is nonzero
        assert len(stream) == 26
        np.testing.assert_array_equal(hdecompress(stream)[0], flat)

        sparse = np.zeros((64, 64), dtype=np.int32)
        sparse[10, 20] = -5000
        sparse[40, 3] = 70000
        np.testing.assert_array_equal(hdecompress(hcompress(sparse))[0],
                                      sparse)

    def test_noisy_image(self):
        image = random_image((32, 32), np.int32, 0, 1 << 20)
        np.testing.assert_array_equal(hdecompress(hcompress(image))[0],
                                      image)

    def test_lossy_bound(self):
        y, x = np.mgrid[0:32, 0:32]
        image = (1000 + 20 * x + 15 * y).astype(np.int32) + \
            random_image((32, 32), np.int32, 0, 30)
        stream = hcompress(image, 10)
        assert len(stream) < len(hcompress(image))
        out, scale = hdecompress(stream)
        assert scale == 10
        error = np.abs(out - image)
        assert error.max() <= 2 * scale
        assert error.mean() <= scale / 2.0

    def test_coefficients_are_digitized(self):
        image = random_image((8, 8), np.int32, 0, 10000)
        stream = hcompress(image, 100)
        sumall = int(np.frombuffer(stream[14:22], dtype='>i8')[0])
        # the sum of the pixels is stored divided by the scale
        assert abs(sumall * 100 - int(htrans(image)[0, 0])) <= 50

    def test_algorithm_options(self):
        hcomp = get_algorithm('HCOMPRESS_1')
        assert not hcomp.is_lossy(HCompressOption(scale=1))
        assert hcomp.is_lossy(HCompressOption(scale=4))
        y, x = np.mgrid[0:16, 0:16]
        tile = (100 * x + 50 * y).astype(np.int16)
        for smooth in (False, True):
            out = np.empty_like(tile)
            option = HCompressOption(scale=8, smooth=smooth)
            hcomp.decompress(hcomp.compress(tile, option), out, option)
            assert np.abs(out.astype(int) - tile).max() <= 3 * 8

    def test_bad_magic(self):
        with pytest.raises(InvalidStreamError):
            hdecompress(b'\x00' * 30)

    def test_truncated_stream(self):
        stream = hcompress(random_image((16, 16), np.int32, -500, 500))
        with pytest.raises(InvalidStreamError):
            hdecompress(stream[:40])


class TestQuantize(TilefitsTestCase):
    def test_random_sequence(self):
        values = random_values()
        assert values.size == 10000
        assert 0 < values.min() and values.max() < 1
        np.testing.assert_array_equal(dither_sequence(3, 7, 20),
                                      dither_sequence(3, 7, 20))

    def test_bounded_error(self):
        tile = random_image((50, 50), np.float32, 0, 100)
        option = QuantizeOption(level=4, dither_seed=17)
        ints, scale, zero = quantize(tile, option, 3)
        assert ints.dtype == np.int32
        out = dequantize(ints, scale, zero, option, 3).reshape(tile.shape)
        assert np.abs(out - tile).max() <= scale

    def test_nulls(self):
        tile = np.array([1.0, np.nan, 2.5, 0.0])
        option = QuantizeOption(level=-0.01, method=SUBTRACTIVE_DITHER_2,
                                dither_seed=1)
        ints, scale, zero = quantize(tile, option)
        assert ints[1] == NULL_VALUE
        assert ints[3] == ZERO_VALUE
        out = dequantize(ints, scale, zero, option)
        assert np.isnan(out[1])
        assert out[3] == 0.0
        assert abs(out[2] - 2.5) <= 0.01

    def test_unquantizable(self):
        option = QuantizeOption(method=NO_DITHER)
        assert quantize(np.array([1.0, np.inf]), option) is None
        assert quantize(np.ones(4), QuantizeOption(level=0)) is None

    def test_bad_method(self):
        with pytest.raises(ArgumentError):
            QuantizeOption(method='DITHER_3')


class _Failing(tiled._WorkUnit):
    def __init__(self, tile, fail):
        super(_Failing, self).__init__(tile)
        self.fail = fail

    def _run(self):
        if self.fail:
            raise CompressionError('compression failed: tile %d'
                                   % self.tile.index)


class TestTiledExecution(TilefitsTestCase):
    def test_failure_carries_tile_index(self):
        tiles = table_tiles(40, 4)
        for workers in (1, 4):
            units = [_Failing(tile, tile.index in (3, 6)) for tile in tiles]
            with pytest.raises(CompressionError) as exc:
                tiled.execute(units, max_workers=workers)
            assert exc.value.tile_index == 3
            # every unit ran before the failure was reported
            if workers > 1:
                assert all(unit.done for unit in units
                           if unit.tile.index not in (3, 6))

    def test_serial_and_parallel_agree(self):
        image = random_image((64, 64), np.int32, 0, 50)
        tiles = image_tiles(image.shape, (16, 16))
        plan = tiled.ImageCompressionPlan(get_algorithm('RICE_1'),
                                          RiceOption(), None, [], {}, None,
                                          None)
        results = []
        for workers in (1, 8):
            core.set_max_workers(workers)
            units = tiled.execute([tiled.ImageTileCompressor(tile, image,
                                                             plan)
                                   for tile in tiles])
            results.append([bytes(unit.payload) for unit in units])
        assert results[0] == results[1]

    def test_image_tile_round_trip(self):
        image = random_image((30, 40), np.int16, -300, 300)
        tiles = image_tiles(image.shape, (8, 16))
        plan = tiled.ImageCompressionPlan(get_algorithm('RICE_1'),
                                          RiceOption(), None, [], {}, None,
                                          None)
        units = tiled.execute([tiled.ImageTileCompressor(tile, image, plan)
                               for tile in tiles])
        out = np.zeros_like(image)
        tiled.execute([tiled.ImageTileDecompressor(
            unit.tile, out, plan, {unit.column: unit.payload})
            for unit in units])
        np.testing.assert_array_equal(out, image)

    def test_options_are_not_shared(self):
        option = QuantizeOption(level=4)
        copied = option.copy()
        copied.level = 8
        assert option.level == 4
        assert ALGORITHMS['HCOMPRESS_1'].default_option() is not \
            ALGORITHMS['HCOMPRESS_1'].default_option()
