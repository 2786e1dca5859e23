"""
Tests for raster and settlement loading. Rasters are written with rasterio
into a temporary directory.
"""

import json
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import rasterio
import requests
from rasterio.transform import from_origin

from roadweaver.errors import ConfigurationError, LoadError
from roadweaver.loaders import load_region, read_settlements, read_terrain_raster

WIDTH, HEIGHT = 8, 6
TRANSFORM = from_origin(10.0, 50.0, 0.1, 0.1)


def _write_rgb(path, data):
    with rasterio.open(path, "w", driver="GTiff", width=WIDTH, height=HEIGHT, count=3,
                       dtype="uint8", crs="EPSG:4326", transform=TRANSFORM) as dst:
        dst.write(data)


def _write_grey(path, band, nodata=None):
    with rasterio.open(path, "w", driver="GTiff", width=WIDTH, height=HEIGHT, count=1,
                       dtype=band.dtype, crs="EPSG:4326", transform=TRANSFORM, nodata=nodata) as dst:
        dst.write(band, 1)


def _geojson(points):
    return {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature",
             "geometry": {"type": "Point", "coordinates": [lon, lat]},
             "properties": props}
            for lon, lat, props in points
        ],
    }


@pytest.fixture
def rgb_tif(tmp_path):
    data = np.full((3, HEIGHT, WIDTH), 120, dtype=np.uint8)
    data[2, 0, :] = 250  # top row blue-ish: water
    path = str(tmp_path / "terrain.tif")
    _write_rgb(path, data)
    return path


@pytest.fixture
def cities_file(tmp_path):
    path = tmp_path / "cities.geojson"
    path.write_text(json.dumps(_geojson([
        (10.05, 49.95, {"city_ascii": "Corner", "population": 5000}),
        (10.35, 49.75, {"name": "Middle", "population": None}),
        (20.0, 40.0, {"city_ascii": "Elsewhere", "population": 10}),
        (10.15, 49.85, {"population": 3}),
    ])))
    return str(path)


class TestReadTerrainRaster:
    def test_rgb_bands(self, rgb_tif):
        raster = read_terrain_raster(rgb_tif)
        assert (raster.width, raster.height) == (WIDTH, HEIGHT)
        assert raster.pixels.shape == (HEIGHT, WIDTH, 3)
        assert raster.pixels.dtype == np.uint8
        assert tuple(raster.pixels[0, 0]) == (120, 120, 250)
        assert not raster.blocked.any()

    def test_single_band_is_grey_and_nodata_blocked(self, tmp_path):
        band = np.full((HEIGHT, WIDTH), 90, dtype=np.uint8)
        band[2, 3] = 0
        path = str(tmp_path / "grey.tif")
        _write_grey(path, band, nodata=0)
        raster = read_terrain_raster(path)
        assert tuple(raster.pixels[1, 1]) == (90, 90, 90)
        assert raster.blocked[2, 3]
        assert raster.blocked.sum() == 1

    def test_wide_dtype_stretched(self, tmp_path):
        band = np.linspace(0, 4000, WIDTH * HEIGHT, dtype=np.float32).reshape(HEIGHT, WIDTH)
        path = str(tmp_path / "dem.tif")
        _write_grey(path, band)
        raster = read_terrain_raster(path)
        assert raster.pixels.dtype == np.uint8
        assert raster.pixels[0, 0, 0] == 0
        assert raster.pixels[-1, -1, 0] == 255

    def test_missing_file(self, tmp_path):
        with pytest.raises(LoadError):
            read_terrain_raster(str(tmp_path / "nope.tif"))


class TestReadSettlements:
    def test_lonlat_to_pixel(self, rgb_tif, cities_file):
        raster = read_terrain_raster(rgb_tif)
        towns = {s.name: s for s in read_settlements(cities_file, raster)}
        assert set(towns) == {"Corner", "Middle"}
        assert towns["Corner"].pixel == (0, 0)
        assert towns["Corner"].x == pytest.approx(0.0, abs=1e-6)
        assert towns["Middle"].pixel == (3, 2)
        assert towns["Middle"].population == 1
        assert towns["Corner"].lon == pytest.approx(10.05)

    def test_not_a_feature_collection(self, rgb_tif, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({"type": "Point"}))
        with pytest.raises(ConfigurationError):
            read_settlements(str(bad), read_terrain_raster(rgb_tif))

    @pytest.mark.parametrize("features", [
        ["not a feature"],
        [{"type": "Feature", "geometry": {"type": "Point", "coordinates": [10.05, 49.95]},
          "properties": {"name": "Corner", "population": "lots"}}],
        [{"type": "Feature", "geometry": {"type": "Point", "coordinates": ["east", 49.95]},
          "properties": {"name": "Corner"}}],
    ])
    def test_malformed_features(self, rgb_tif, tmp_path, features):
        bad = tmp_path / "bad.geojson"
        bad.write_text(json.dumps({"type": "FeatureCollection", "features": features}))
        with pytest.raises(ConfigurationError):
            read_settlements(str(bad), read_terrain_raster(rgb_tif))

    def test_unreadable_json(self, rgb_tif, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("{not json")
        with pytest.raises(LoadError):
            read_settlements(str(bad), read_terrain_raster(rgb_tif))

    def test_fetched_over_http(self, rgb_tif):
        response = MagicMock()
        response.json.return_value = _geojson([(10.05, 49.95, {"city_ascii": "Corner"})])
        with patch("roadweaver.loaders.requests.get", return_value=response) as get:
            towns = read_settlements("https://example.org/cities.geojson", read_terrain_raster(rgb_tif))
        get.assert_called_once()
        response.raise_for_status.assert_called_once()
        assert [s.name for s in towns] == ["Corner"]

    def test_http_failure_is_a_load_error(self, rgb_tif):
        with patch("roadweaver.loaders.requests.get", side_effect=requests.ConnectionError("down")):
            with pytest.raises(LoadError):
                read_settlements("https://example.org/cities.geojson", read_terrain_raster(rgb_tif))


class TestLoadRegion:
    def test_feeds_engine(self, rgb_tif, cities_file):
        from roadweaver.engine import Engine
        from roadweaver.models import PathResult

        raster, towns = load_region(rgb_tif, cities_file)
        engine = Engine()
        engine.load(raster.pixels, raster.width, raster.height, towns, blocked=raster.blocked)
        assert engine.grid.elevation[0] == -1.0  # water row
        result = engine.search(engine.settlement("Middle"), engine.settlement("Corner"))
        assert isinstance(result, PathResult)
