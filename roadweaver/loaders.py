# loaders.py
# ----------------
# Reads a region: a terrain raster (GeoTIFF, or PNG + .pgw world file) and a
# GeoJSON point layer of settlements, converted to pixel coordinates.
#
# Exposes:
#   - TerrainRaster                 (data container)
#   - read_terrain_raster(path)
#   - read_settlements(source, raster)
#   - load_region(raster_path, settlements_source)
#
# Dependencies: numpy, rasterio, requests (for http(s) settlement sources)

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple
import json

import numpy as np
import requests
import structlog

from .errors import ConfigurationError, LoadError
from .models import Settlement

# RasterIO is imported lazily inside functions that need it.

logger = structlog.get_logger()


# -----------------------------
# Data container for a raster
# -----------------------------

@dataclass
class TerrainRaster:
    """
    pixels:    (H, W, 3) uint8 RGB
    blocked:   (H, W) bool, True where the dataset mask says nodata
    transform: affine pixel -> map transform (identity without georeferencing)
    crs:       rasterio CRS or None
    """
    pixels: np.ndarray
    width: int
    height: int
    blocked: np.ndarray
    transform: Any
    crs: Any = None


# -----------------------------
# Utilities
# -----------------------------

def _to_uint8(bands: np.ndarray) -> np.ndarray:
    """Stretch non-8-bit rasters to 0..255 using the 2nd/98th percentiles."""
    if bands.dtype == np.uint8:
        return bands
    arr = bands.astype(np.float64)
    valid = arr[np.isfinite(arr)]
    if valid.size == 0:
        return np.zeros(arr.shape, dtype=np.uint8)
    lo, hi = np.percentile(valid, [2, 98])
    if not hi > lo:
        lo, hi = float(valid.min()), float(valid.max())
        if not hi > lo:
            lo, hi = lo, lo + 1.0
    scaled = np.clip((np.nan_to_num(arr, nan=lo) - lo) / (hi - lo), 0, 1)
    return (scaled * 255).astype(np.uint8)


def _is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def _read_json(source: str, timeout: float = 30.0) -> Any:
    if _is_url(source):
        try:
            r = requests.get(source, timeout=timeout)
            r.raise_for_status()
            return r.json()
        except (requests.RequestException, ValueError) as e:
            raise LoadError(f"Failed to fetch {source}: {e}") from e
    try:
        with open(source, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise LoadError(f"Failed to read {source}: {e}") from e


# -----------------------------
# Raster
# -----------------------------

def read_terrain_raster(path: str) -> TerrainRaster:
    """
    Read bands 1-3 as RGB (a single band is treated as greyscale), the
    dataset mask and the georeferencing.
    """
    import rasterio
    from rasterio.errors import RasterioError

    try:
        with rasterio.open(path) as ds:
            if ds.width < 1 or ds.height < 1:
                raise ConfigurationError(f"Raster {path} is empty ({ds.width}x{ds.height}).")
            if ds.count >= 3:
                bands = ds.read([1, 2, 3])
            else:
                bands = np.repeat(ds.read(1)[np.newaxis], 3, axis=0)
            mask = ds.dataset_mask()
            transform, crs = ds.transform, ds.crs
            width, height = ds.width, ds.height
    except RasterioError as e:
        raise LoadError(f"Failed to read raster {path}: {e}") from e

    pixels = np.ascontiguousarray(np.transpose(_to_uint8(bands), (1, 2, 0)))
    blocked = mask == 0
    logger.info("raster_loaded", path=path, width=width, height=height,
                blocked_fraction=round(float(blocked.mean()), 4))
    return TerrainRaster(pixels=pixels, width=width, height=height,
                         blocked=blocked, transform=transform, crs=crs)


# -----------------------------
# Settlements
# -----------------------------

def lonlat_to_pixel(lons: List[float], lats: List[float], raster: TerrainRaster) -> List[Tuple[float, float]]:
    """Geographic WGS84 lon/lat -> fractional pixel (x, y) of pixel centres."""
    xs, ys = list(lons), list(lats)
    if raster.crs:
        from rasterio.crs import CRS
        from rasterio.warp import transform as warp_transform
        wgs84 = CRS.from_epsg(4326)
        if raster.crs != wgs84:
            xs, ys = warp_transform(wgs84, raster.crs, xs, ys)

    inverse = ~raster.transform
    out = []
    for x, y in zip(xs, ys):
        col, row = inverse * (x, y)
        out.append((col - 0.5, row - 0.5))
    return out


def _feature_name(props: dict) -> Optional[str]:
    for key in ("city_ascii", "name", "NAME", "city"):
        value = props.get(key)
        if value:
            return str(value)
    return None


def read_settlements(source: str, raster: TerrainRaster) -> List[Settlement]:
    """Point features of a GeoJSON FeatureCollection as pixel-space Settlements."""
    data = _read_json(source)
    if not isinstance(data, dict) or not isinstance(data.get("features"), list):
        raise ConfigurationError(f"{source} is not a GeoJSON FeatureCollection.")

    names, pops, lons, lats = [], [], [], []
    for n, feature in enumerate(data["features"]):
        if not isinstance(feature, dict):
            raise ConfigurationError(f"{source}: feature {n} is not an object.")
        geom = feature.get("geometry") or {}
        props = feature.get("properties") or {}
        if not isinstance(geom, dict) or not isinstance(props, dict):
            raise ConfigurationError(f"{source}: feature {n} has malformed geometry or properties.")
        name = _feature_name(props)
        if geom.get("type") != "Point" or name is None:
            continue
        try:
            lon, lat = geom["coordinates"][:2]
            pop = float(props.get("population") or 1)
            lon, lat = float(lon), float(lat)
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"{source}: settlement {name!r} is malformed: {e}") from e
        names.append(name)
        pops.append(pop)
        lons.append(lon)
        lats.append(lat)

    settlements = []
    dropped = 0
    for name, pop, lon, lat, (x, y) in zip(names, pops, lons, lats, lonlat_to_pixel(lons, lats, raster)):
        s = Settlement(name=name, population=pop, x=x, y=y, lon=lon, lat=lat)
        px, py = s.pixel
        if 0 <= px < raster.width and 0 <= py < raster.height:
            settlements.append(s)
        else:
            dropped += 1

    if dropped:
        logger.warning("settlements_outside_raster", dropped=dropped, source=source)
    logger.info("settlements_loaded", count=len(settlements), source=source)
    return settlements


def load_region(raster_path: str, settlements_source: str):
    """Raster and settlements together; fails as a whole."""
    raster = read_terrain_raster(raster_path)
    settlements = read_settlements(settlements_source, raster)
    return raster, settlements
