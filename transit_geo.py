"""Geometry helpers: GeoJSON loading, the boundary bounding box and the
feature filter used by every map layer.

Coordinates in GeoJSON are (lon, lat); folium wants (lat, lon). Everything
here stays in GeoJSON order and only the layer builders swap.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import httpx
from shapely.geometry import shape
from shapely.ops import unary_union


@dataclass(frozen=True)
class BBox:
    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def contains_lonlat(self, lon: float, lat: float) -> bool:
        return (self.min_lon <= lon <= self.max_lon) and (self.min_lat <= lat <= self.max_lat)

    def to_latlon_bounds(self) -> List[List[float]]:
        """[[south, west], [north, east]] as folium's fit_bounds expects."""
        return [[self.min_lat, self.min_lon], [self.max_lat, self.max_lon]]


# ----------------------------
# Dataset loading
# ----------------------------

def is_url(source: str) -> bool:
    return source.startswith("http://") or source.startswith("https://")


async def fetch_geojson(source: str, client: httpx.AsyncClient) -> dict:
    """Load a FeatureCollection from a local path or an http(s) URL.

    Raises OSError, ValueError (bad JSON / not a FeatureCollection) or
    httpx.HTTPError.
    """
    if is_url(source):
        resp = await client.get(source)
        resp.raise_for_status()
        data = resp.json()
    else:
        with open(source, "r", encoding="utf-8") as f:
            data = json.load(f)

    if not isinstance(data, dict) or not isinstance(data.get("features"), list):
        raise ValueError(f"{source} is not a GeoJSON FeatureCollection")
    return data


async def try_fetch_geojson(source: str, client: httpx.AsyncClient) -> Optional[dict]:
    """Like fetch_geojson, but a failed load just means the layer is absent."""
    try:
        return await fetch_geojson(source, client)
    except (OSError, ValueError, httpx.HTTPError) as exc:
        print(f"[skip] {source}: {exc.__class__.__name__}: {exc}")
        return None


# ----------------------------
# Boundary
# ----------------------------

def load_boundary(data: dict):
    """Union of the polygonal features of a boundary FeatureCollection."""
    polys = []
    for feat in data.get("features", []):
        geom = geometry_of(feat)
        if geom.get("type") not in {"Polygon", "MultiPolygon"}:
            continue
        sh = shape(geom)
        if sh.geom_type in {"Polygon", "MultiPolygon"} and not sh.is_empty:
            polys.append(sh)
    if not polys:
        raise ValueError("boundary dataset has no polygon geometry")
    return unary_union(polys)


def boundary_bbox(geom) -> BBox:
    minx, miny, maxx, maxy = geom.bounds
    return BBox(float(minx), float(miny), float(maxx), float(maxy))


# ----------------------------
# Spatial filter
# ----------------------------

def geometry_of(feature) -> dict:
    geom = feature.get("geometry") if isinstance(feature, dict) else None
    return geom if isinstance(geom, dict) else {}


def properties_of(feature) -> dict:
    props = feature.get("properties") if isinstance(feature, dict) else None
    return props if isinstance(props, dict) else {}


def lonlat(coord) -> Optional[Tuple[float, float]]:
    """(lon, lat) from a GeoJSON position, None if it is not one."""
    if not isinstance(coord, (list, tuple)) or len(coord) < 2:
        return None
    lon, lat = coord[0], coord[1]
    if isinstance(lon, bool) or isinstance(lat, bool):
        return None
    if not isinstance(lon, (int, float)) or not isinstance(lat, (int, float)):
        return None
    return float(lon), float(lat)


def line_vertices(geometry: dict) -> List[Tuple[float, float]]:
    """Flatten LineString / MultiLineString coordinates to (lon, lat) pairs.

    Positions that are not a pair of numbers are skipped.
    """
    gtype = geometry.get("type")
    coords = geometry.get("coordinates") or []
    if gtype == "LineString":
        parts: Iterable = [coords]
    elif gtype == "MultiLineString":
        parts = coords
    else:
        return []
    out: List[Tuple[float, float]] = []
    for part in parts:
        if not isinstance(part, (list, tuple)):
            continue
        for c in part:
            ll = lonlat(c)
            if ll is not None:
                out.append(ll)
    return out


def feature_in_bbox(feature: dict, bbox: Optional[BBox]) -> bool:
    """Should this feature be drawn inside bbox?

    Points must fall inside the box. Lines pass when any vertex does, so a
    segment crossing the box with both ends outside is dropped. Other
    geometry types never pass, and nothing passes before the boundary is
    known.
    """
    if bbox is None:
        return False
    geometry = geometry_of(feature)
    gtype = geometry.get("type")

    if gtype == "Point":
        ll = lonlat(geometry.get("coordinates"))
        return ll is not None and bbox.contains_lonlat(*ll)
    if gtype in {"LineString", "MultiLineString"}:
        return any(bbox.contains_lonlat(lon, lat) for lon, lat in line_vertices(geometry))
    return False


def is_line(feature: dict) -> bool:
    return geometry_of(feature).get("type") in {"LineString", "MultiLineString"}


def is_point(feature: dict) -> bool:
    return geometry_of(feature).get("type") == "Point"
