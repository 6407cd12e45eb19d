#!/usr/bin/env python3
"""transit_map.py

Build a standalone HTML map of the public transport in one district:
- district boundary (grey outline; the view is fitted to it)
- tram lines (solid blue) and bus lines (dashed green)
- bus and tram stops with popups listing the lines that serve them
- terminus / loop facilities coloured by planning category (always on top)
- a static legend

Only features whose geometry touches the boundary's bounding box are drawn.
For lines that means "at least one vertex inside the box".

Dependencies:
  pip install folium shapely httpx

Usage example:
  python3 transit_map.py --data-dir data --out map.html

Notes:
- Every dataset flag takes a local path or an http(s) URL.
- A dataset that fails to load is skipped; only the boundary is mandatory.
"""

from __future__ import annotations

import argparse
import asyncio
import os
from dataclasses import dataclass
from typing import Optional, Tuple

import httpx

from transit_geo import boundary_bbox, fetch_geojson, load_boundary, try_fetch_geojson
from transit_layers import (
    RenderSession,
    add_boundary_layer,
    add_legend,
    add_line_layer,
    add_stop_layer,
    add_termini_layer,
    new_session,
)


@dataclass(frozen=True)
class Sources:
    boundary: str
    tram_lines: str
    bus_lines: str
    termini: str

    @classmethod
    def from_dir(cls, data_dir: str) -> "Sources":
        def p(name: str) -> str:
            return data_dir.rstrip("/") + "/" + name if "://" in data_dir else os.path.join(data_dir, name)

        return cls(
            boundary=p("bemowo.geojson"),
            tram_lines=p("tram_lines.geojson"),
            bus_lines=p("bus_lines.geojson"),
            termini=p("termini.geojson"),
        )


async def build_transit_map(
    sources: Sources,
    centre: Tuple[float, float] = (52.25, 20.92),
    zoom_start: int = 13,
    tiles: str = "OpenStreetMap",
    platforms_only: bool = True,
    timeout: float = 30.0,
    client: Optional[httpx.AsyncClient] = None,
) -> RenderSession:
    """Boundary -> lines -> stops -> termini -> legend, one dataset at a time.

    A boundary that cannot be loaded raises (OSError, ValueError or
    httpx.HTTPError); any other dataset that fails is left off the map.
    """
    session = new_session(centre=centre, zoom_start=zoom_start, tiles=tiles)

    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(timeout=timeout, follow_redirects=True)
    try:
        boundary_data = await fetch_geojson(sources.boundary, client)
        geom = load_boundary(boundary_data)
        add_boundary_layer(session, boundary_data, geom, boundary_bbox(geom))

        # Lines first, then stops; tram stops above bus stops.
        tram = await try_fetch_geojson(sources.tram_lines, client)
        bus = await try_fetch_geojson(sources.bus_lines, client)
        if tram is not None:
            add_line_layer(session, tram, name="Linie tramwajowe", color="blue")
        if bus is not None:
            add_line_layer(session, bus, name="Linie autobusowe", color="green", dashed=True)
        if bus is not None:
            add_stop_layer(session, bus, name="Przystanki autobusowe", mode="bus", color="green",
                           platforms_only=platforms_only)
        if tram is not None:
            add_stop_layer(session, tram, name="Przystanki tramwajowe", mode="tram", color="blue",
                           platforms_only=platforms_only)

        termini = await try_fetch_geojson(sources.termini, client)
        if termini is not None:
            add_termini_layer(session, termini)
    finally:
        if own_client:
            await client.aclose()

    add_legend(session)
    return session


# ----------------------------
# Main
# ----------------------------

def main() -> None:
    ap = argparse.ArgumentParser(description="Transit map (lines, stops, termini) clipped to a district boundary.")
    ap.add_argument("--data-dir", default="data", help="Directory (or base URL) holding the default GeoJSON files")
    ap.add_argument("--boundary", default=None, help="Boundary polygon GeoJSON (default: <data-dir>/bemowo.geojson)")
    ap.add_argument("--tram-lines", default=None, help="Tram lines + stops GeoJSON (default: <data-dir>/tram_lines.geojson)")
    ap.add_argument("--bus-lines", default=None, help="Bus lines + stops GeoJSON (default: <data-dir>/bus_lines.geojson)")
    ap.add_argument("--termini", default=None, help="Terminus / loop points GeoJSON (default: <data-dir>/termini.geojson)")
    ap.add_argument("--out", default="map.html", help="Output HTML filename")

    ap.add_argument("--centre", nargs=2, type=float, default=[52.25, 20.92], metavar=("LAT", "LON"),
                    help="Initial map centre before fitting to the boundary")
    ap.add_argument("--zoom-start", type=int, default=13)
    ap.add_argument("--tiles", default="OpenStreetMap", help="folium tiles name or URL template")
    ap.add_argument("--all-stop-points", action="store_true",
                    help="Draw every point attached to a route, not only platforms")
    ap.add_argument("--timeout", type=float, default=30.0, help="HTTP timeout (s) for URL sources")

    args = ap.parse_args()
    defaults = Sources.from_dir(args.data_dir)
    sources = Sources(
        boundary=args.boundary or defaults.boundary,
        tram_lines=args.tram_lines or defaults.tram_lines,
        bus_lines=args.bus_lines or defaults.bus_lines,
        termini=args.termini or defaults.termini,
    )

    try:
        session = asyncio.run(
            build_transit_map(
                sources,
                centre=(args.centre[0], args.centre[1]),
                zoom_start=args.zoom_start,
                tiles=args.tiles,
                platforms_only=not args.all_stop_points,
                timeout=args.timeout,
            )
        )
    except (OSError, ValueError, httpx.HTTPError) as exc:
        raise SystemExit(f"Cannot load boundary {sources.boundary}: {exc}") from exc
    session.m.save(args.out)

    print(f"Wrote: {args.out}")
    print(" | ".join(f"{name}: {n:,}" for name, n in session.counts.items()) or "No transit layers rendered")
    print(f"BBox: {session.bbox}")


if __name__ == "__main__":
    main()
