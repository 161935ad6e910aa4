import os
import warnings

import numpy as np
import pytest

import tilefits
from tilefits.column import ColDefs, Column
from tilefits.compression import get_algorithm, tiled
from tilefits.errors import ArgumentError, FITSIOError, \
     UnsupportedFeatureError
from tilefits.fitsrec import FITS_rec
from tilefits.hdu import BinTableHDU, CompTableHDU, PrimaryHDU, new_table
from tilefits.tests import TilefitsTestCase
from tilefits.tiles import table_tiles


def make_table(nrows=10):
    columns = [
        Column('ID', 'J', array=np.arange(nrows, dtype=np.int32) * 3),
        Column('FLUX', 'D', unit='Jy',
               array=np.linspace(0.5, 9.5, nrows)),
        Column('NAME', '8A', array=['star%d' % i for i in range(nrows)]),
        Column('FLAG', 'L', array=np.arange(nrows) % 3 == 0),
        Column('VEC', '3E',
               array=np.arange(3 * nrows, dtype=np.float32).reshape(-1, 3)),
        Column('COUNT', 'I', bzero=32768,
               array=np.arange(nrows, dtype=np.uint16) * 6000)]
    return BinTableHDU.from_columns(columns, name='CATALOG')


class TestBinTable(TilefitsTestCase):
    def test_header(self):
        hdu = make_table()
        header = hdu.header
        assert header['NAXIS1'] == 4 + 8 + 8 + 1 + 12 + 2
        assert header['NAXIS2'] == 10
        assert header['TFIELDS'] == 6
        assert header['TTYPE2'] == 'FLUX'
        assert header['TFORM3'] == '8A'
        assert header['TUNIT2'] == 'Jy'
        assert header['TZERO6'] == 32768
        assert header['EXTNAME'] == 'CATALOG'

    def test_round_trip(self):
        hdu = make_table()
        hdu.writeto(self.temp('table.fits'))
        with tilefits.open(self.temp('table.fits')) as hdul:
            table = hdul['CATALOG']
            assert isinstance(table, BinTableHDU)
            assert table.columns.names == ['ID', 'FLUX', 'NAME', 'FLAG',
                                           'VEC', 'COUNT']
            assert table.data == hdu.data
            assert table.data.field('NAME')[3] == 'star3'
            assert table.data.field('COUNT').dtype == np.uint16

    def test_variable_length_columns(self):
        ragged = [np.arange(n, dtype=np.int32) for n in range(5)]
        doubles = [np.linspace(0, 1, n) for n in (3, 1, 0, 2, 4)]
        hdu = new_table([Column('VAR', '1PJ', array=ragged),
                         Column('QVAR', '1QD', array=doubles)])
        assert hdu.header['TFORM1'] == '1PJ(4)'
        assert hdu.header['TFORM2'] == '1QD(4)'
        assert hdu.header['PCOUNT'] == 10 * 4 + 10 * 8
        hdu.writeto(self.temp('var.fits'))

        with tilefits.open(self.temp('var.fits')) as hdul:
            data = hdul[1].data
            for idx in range(5):
                np.testing.assert_array_equal(data.field('VAR')[idx],
                                              ragged[idx])
                np.testing.assert_array_equal(data.field('QVAR')[idx],
                                              doubles[idx])

    def test_new_table_from_dict(self):
        hdu = new_table({'A': np.array([1, 2, 3], dtype=np.int16)})
        assert hdu.header['TFORM1'] == '1I'
        assert len(hdu.data) == 3

    def test_bad_data(self):
        with pytest.raises(TypeError):
            BinTableHDU(data=np.zeros(3))

    def test_copy(self):
        hdu = make_table()
        other = hdu.copy()
        other.data.field('ID')[0] = 99
        assert hdu.data.field('ID')[0] == 0


class TestCompressedTable(TilefitsTestCase):
    def setup_method(self, method):
        super(TestCompressedTable, self).setup_method(method)
        self.table = make_table()

    def _write(self, hdu, filename='ctable.fits'):
        tilefits.HDUList([PrimaryHDU(), hdu]).writeto(self.temp(filename))
        return tilefits.open(self.temp(filename))

    def test_round_trip(self):
        hdu = CompTableHDU.from_table_hdu(self.table, 4)
        with self._write(hdu) as hdul:
            comp = hdul[1]
            assert isinstance(comp, CompTableHDU)
            header = comp.header
            assert header['ZTABLE'] is True
            assert header['ZTILELEN'] == 4
            assert header['ZNAXIS1'] == self.table.header['NAXIS1']
            assert header['ZNAXIS2'] == 10
            assert header['ZFORM1'] == '1J'
            assert header['ZCTYP1'] == 'GZIP_2'
            assert header['TFORM1'].startswith('1QB')
            assert header['EXTNAME'] == 'CATALOG'
            # one row per tile
            assert len(comp.data) == 3

            table = comp.as_table_hdu()
            assert table.name == 'CATALOG'
            assert table.header['TUNIT2'] == 'Jy'
            assert table.data == self.table.data

    def test_tile_range(self):
        hdu = CompTableHDU.from_table_hdu(self.table, 4)
        with self._write(hdu) as hdul:
            part = hdul[1].as_table_hdu(1, 2)
            assert len(part.data) == 4
            np.testing.assert_array_equal(part.data.field('ID'),
                                          self.table.data.field('ID')[4:8])

            last = hdul[1].as_table_hdu(2)
            assert len(last.data) == 2

            with pytest.raises(ArgumentError):
                hdul[1].as_table_hdu(2, 4)

    def test_column_data(self):
        hdu = CompTableHDU.from_table_hdu(self.table, 3)
        with self._write(hdu) as hdul:
            flux = hdul[1].get_column_data('FLUX', 1)
            np.testing.assert_array_equal(
                flux, self.table.data.field('FLUX')[3:])
            vec = hdul[1].get_column_data(4, 0, 1)
            np.testing.assert_array_equal(
                vec, self.table.data.field('VEC')[:3])

    def test_before_writing(self):
        hdu = CompTableHDU.from_table_hdu(self.table, 4)
        np.testing.assert_array_equal(hdu.get_column_data('NAME'),
                                      self.table.data.field('NAME'))
        assert hdu.as_table_hdu().data == self.table.data

    def test_column_algorithms(self):
        with warnings.catch_warnings(record=True) as w:
            hdu = CompTableHDU.from_table_hdu(self.table, 5, 'RICE_1',
                                              'RICE_1', 'NOCOMPRESS')
            assert any('cannot compress' in str(x.message) for x in w)
        with self._write(hdu) as hdul:
            header = hdul[1].header
            assert header['ZCTYP1'] == 'RICE_1'
            assert header['ZCTYP2'] == 'GZIP_2'
            assert header['ZCTYP3'] == 'NOCOMPRESS'
            assert header['ZCTYP4'] == 'GZIP_2'
            assert hdul[1].as_table_hdu().data == self.table.data

    def test_unsupported_algorithm(self):
        with pytest.raises(UnsupportedFeatureError):
            CompTableHDU.from_table_hdu(self.table, None, 'PLIO_1')

    def test_variable_length_column(self):
        hdu = new_table([Column('VAR', '1PJ',
                                array=[np.arange(n) for n in range(3)])])
        with pytest.raises(UnsupportedFeatureError):
            CompTableHDU.from_table_hdu(hdu)

    def test_single_tile(self):
        hdu = CompTableHDU.from_table_hdu(self.table)
        hdu.compress()
        assert len(hdu.data) == 1
        assert hdu.header['ZTILELEN'] == 10

    def test_failed_tile_leaves_no_file(self, monkeypatch):
        original = tiled.TableTileCompressor._run

        def failing(unit):
            if unit.tile.index == 1 and unit.tile.column == 2:
                raise FITSIOError('I/O failure while reading tile rows')
            original(unit)

        monkeypatch.setattr(tiled.TableTileCompressor, '_run', failing)
        hdu = CompTableHDU.from_table_hdu(self.table, 4)
        hdul = tilefits.HDUList([PrimaryHDU(), hdu])
        with pytest.raises(FITSIOError) as exc:
            hdul.writeto(self.temp('failed.fits'))
        assert exc.value.tile_index == 1
        assert os.listdir(self.temp_dir) == []

        monkeypatch.undo()
        hdul.writeto(self.temp('failed.fits'))
        with tilefits.open(self.temp('failed.fits')) as hdul:
            assert hdul[1].as_table_hdu().data == self.table.data

    def test_empty_table(self):
        empty = new_table([Column('A', 'J', array=np.zeros(0, np.int32))])
        hdu = CompTableHDU.from_table_hdu(empty, 4)
        with self._write(hdu) as hdul:
            assert hdul[1].header['ZNAXIS2'] == 0
            assert len(hdul[1].as_table_hdu().data) == 0


class TestTableTiles(TilefitsTestCase):
    def test_decompress_to_column(self):
        column = Column('ID', 'J')
        field = np.arange(8, dtype=np.int32)
        gzip = get_algorithm('GZIP_2')
        tiles = table_tiles(8, 3)

        compressors = [tiled.TableTileCompressor(tile, column, field, gzip)
                       for tile in tiles]
        tiled.execute(compressors)

        fields = [np.zeros(8, dtype=np.int32), np.zeros(8, dtype=np.int32)]
        units = [tiled.TableTileDecompressor(tile, column, unit.payload,
                                             gzip, fields)
                 .decompress_to_column(1)
                 for tile, unit in zip(tiles, compressors)]
        tiled.execute(units)
        np.testing.assert_array_equal(fields[0], 0)
        np.testing.assert_array_equal(fields[1], field)

        # redirecting a finished unit has no effect
        units[0].decompress_to_column(0)
        assert units[0].target_column == 1

    def test_tile_values(self):
        column = Column('COUNT', 'I', bzero=32768)
        rows = np.array([0, 65535], dtype=np.uint16)
        values = tiled.table_tile_values(column, rows)
        np.testing.assert_array_equal(values, [-32768, 32767])
        out = tiled.table_tile_field(column, values, 2)
        np.testing.assert_array_equal(out, rows)

    def test_fits_rec_slice(self):
        data = FITS_rec(ColDefs([Column('A', 'J',
                                        array=np.arange(6, dtype=np.int32))]))
        part = data[2:4]
        assert len(part) == 2
        np.testing.assert_array_equal(part['A'], [2, 3])
