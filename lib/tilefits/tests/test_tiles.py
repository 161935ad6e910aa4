import pytest

from tilefits import tiles
from tilefits.errors import TileGeometryError
from tilefits.tests import TilefitsTestCase


class TestImageTiles(TilefitsTestCase):
    def test_default_is_one_row_per_tile(self):
        result = tiles.image_tiles((3, 5))
        assert len(result) == 3
        assert [t.corners for t in result] == [(0, 0), (1, 0), (2, 0)]
        assert all(t.lengths == (1, 5) for t in result)

    def test_fastest_axis_varies_first(self):
        result = tiles.image_tiles((4, 4), (2, 2))
        assert [t.corners for t in result] == [(0, 0), (0, 2), (2, 0),
                                               (2, 2)]
        assert [t.index for t in result] == [0, 1, 2, 3]

    def test_edge_tiles_are_truncated(self):
        result = tiles.image_tiles((5, 7), (2, 3))
        assert tiles.tile_grid_shape((5, 7), (2, 3)) == (3, 3)
        assert len(result) == 9
        assert result[-1].corners == (4, 6)
        assert result[-1].lengths == (1, 1)
        assert sum(t.size for t in result) == 35

    def test_tile_covering_everything(self):
        result = tiles.image_tiles((10, 10), (100, 100))
        assert len(result) == 1
        assert result[0].lengths == (10, 10)

    def test_empty_image(self):
        assert tiles.image_tiles((0, 10)) == []

    def test_slices(self):
        tile = tiles.image_tiles((4, 6), (2, 3))[3]
        assert tile.slices == (slice(2, 4, 1), slice(3, 6, 1))

    def test_bad_tile_shape(self):
        with pytest.raises(TileGeometryError):
            tiles.image_tiles((4, 4), (2,))
        with pytest.raises(TileGeometryError):
            tiles.image_tiles((4, 4), (0, 2))


class TestTableTiles(TilefitsTestCase):
    def test_rows(self):
        result = tiles.table_tiles(10, 4, column=2)
        assert [t.corners for t in result] == [(0,), (4,), (8,)]
        assert [t.lengths for t in result] == [(4,), (4,), (2,)]
        assert all(t.column == 2 for t in result)

    def test_single_tile_by_default(self):
        result = tiles.table_tiles(7)
        assert len(result) == 1
        assert result[0].lengths == (7,)

    def test_with_column(self):
        tile = tiles.table_tiles(7)[0]
        assert tile.with_column(3).column == 3
        assert tile.column == 0


class TestRegions(TilefitsTestCase):
    def test_geometry_defaults(self):
        assert tiles.check_geometry((1, 2), (3, 4)) == \
            ((1, 2), (3, 4), (1, 1))

    def test_negative_values(self):
        with pytest.raises(TileGeometryError):
            tiles.check_geometry((-1, 0), (1, 1))
        with pytest.raises(TileGeometryError):
            tiles.check_geometry((0, 0), (1, -1))
        with pytest.raises(TileGeometryError):
            tiles.check_geometry((0, 0), (1, 1), (1, 0))

    def test_region_out_of_bounds(self):
        with pytest.raises(TileGeometryError):
            tiles.check_region((10, 10), (5, 5), (3, 6))
        # the last sampled pixel of a strided region is what counts
        tiles.check_region((10, 10), (0, 0), (5, 4), (2, 3))

    def test_intersects(self):
        tile = tiles.image_tiles((8, 8), (4, 4))[3]
        assert tiles.intersects(tile, (3, 3), (2, 2))
        assert not tiles.intersects(tile, (0, 0), (4, 8))

    def test_byte_runs(self):
        runs = list(tiles.byte_runs((4, 5), 2, (1, 1), (2, 3)))
        assert runs == [(12, 6, (0,)), (22, 6, (1,))]
