import asyncio
import json
import os
import tempfile
import unittest
from unittest.mock import patch

import httpx

import transit_map
from transit_geo import BBox
from transit_map import Sources, build_transit_map


BOUNDARY = {
    "type": "FeatureCollection",
    "features": [{
        "type": "Feature",
        "properties": {"name": "Bemowo"},
        "geometry": {"type": "Polygon",
                     "coordinates": [[[20.85, 52.22], [20.97, 52.22], [20.97, 52.28], [20.85, 52.28], [20.85, 52.22]]]},
    }],
}

TRAM = {
    "type": "FeatureCollection",
    "features": [
        {"type": "Feature", "properties": {"ref": "20"},
         "geometry": {"type": "LineString", "coordinates": [[20.90, 52.24], [20.92, 52.24]]}},
        {"type": "Feature",
         "properties": {"name": "Górczewska",
                        "@relations": [{"role": "platform", "reltags": {"route": "tram", "ref": "20"}}]},
         "geometry": {"type": "Point", "coordinates": [20.91, 52.24]}},
    ],
}

BUS = {
    "type": "FeatureCollection",
    "features": [
        {"type": "Feature", "properties": {},
         "geometry": {"type": "LineString", "coordinates": [[20.88, 52.25], [20.89, 52.26]]}},
        {"type": "Feature", "properties": {},
         "geometry": {"type": "LineString", "coordinates": [[21.10, 52.30], [21.20, 52.31]]}},
        {"type": "Feature",
         "properties": {"@relations": [{"role": "platform",
                                        "reltags": {"route": "bus", "ref": "105", "stop_name": "Ratuszowa"}}]},
         "geometry": {"type": "Point", "coordinates": [20.88, 52.25]}},
    ],
}

TERMINI = {
    "type": "FeatureCollection",
    "features": [
        {"type": "Feature", "properties": {"name": "Nowe Bemowo", "kategoria": "d", "type": "pętla tramwajowa"},
         "geometry": {"type": "Point", "coordinates": [20.89, 52.27]}},
    ],
}


class TestPipeline(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        for name, data in [("bemowo.geojson", BOUNDARY), ("tram_lines.geojson", TRAM),
                           ("bus_lines.geojson", BUS), ("termini.geojson", TERMINI)]:
            with open(os.path.join(self.tmpdir, name), "w", encoding="utf-8") as f:
                json.dump(data, f)

    def test_full_build_order(self):
        session = asyncio.run(build_transit_map(Sources.from_dir(self.tmpdir)))
        self.assertEqual(session.bbox, BBox(20.85, 52.22, 20.97, 52.28))
        self.assertEqual(
            list(session.counts.items()),
            [("Linie tramwajowe", 1), ("Linie autobusowe", 1), ("Przystanki autobusowe", 1),
             ("Przystanki tramwajowe", 1), ("Pętle", 1)],
        )
        self.assertEqual(session.layer_names()[-1], session.termini_layer.get_name())
        self.assertIn("transit-legend", session.m.get_root().render())

    def test_missing_layer_dataset_is_skipped(self):
        os.remove(os.path.join(self.tmpdir, "termini.geojson"))
        session = asyncio.run(build_transit_map(Sources.from_dir(self.tmpdir)))
        self.assertIsNone(session.termini_layer)
        self.assertNotIn("Pętle", session.counts)
        self.assertIn("Linie tramwajowe", session.counts)

    def test_missing_boundary_raises(self):
        os.remove(os.path.join(self.tmpdir, "bemowo.geojson"))
        with self.assertRaises(FileNotFoundError):
            asyncio.run(build_transit_map(Sources.from_dir(self.tmpdir)))

    def test_boundary_without_polygon_raises(self):
        with open(os.path.join(self.tmpdir, "bemowo.geojson"), "w", encoding="utf-8") as f:
            json.dump(TERMINI, f)
        with self.assertRaises(ValueError):
            asyncio.run(build_transit_map(Sources.from_dir(self.tmpdir)))

    def test_malformed_features_degrade(self):
        bad = {"type": "FeatureCollection", "features": BUS["features"] + [
            {"type": "Feature", "properties": {"@relations": [{"role": "platform", "reltags": "bus 105"}]},
             "geometry": {"type": "Point", "coordinates": [20.89, 52.25]}},
            {"type": "Feature", "properties": {},
             "geometry": {"type": "LineString", "coordinates": [None, [20.90, 52.25]]}},
        ]}
        with open(os.path.join(self.tmpdir, "bus_lines.geojson"), "w", encoding="utf-8") as f:
            json.dump(bad, f)
        session = asyncio.run(build_transit_map(Sources.from_dir(self.tmpdir)))
        self.assertEqual(session.counts["Linie autobusowe"], 2)
        self.assertEqual(session.counts["Przystanki autobusowe"], 2)

    def test_url_sources(self):
        payloads = {
            "/data/bemowo.geojson": BOUNDARY,
            "/data/tram_lines.geojson": TRAM,
            "/data/bus_lines.geojson": BUS,
        }

        def handler(request):
            data = payloads.get(request.url.path)
            return httpx.Response(200, json=data) if data else httpx.Response(404)

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                return await build_transit_map(Sources.from_dir("https://example.org/data"), client=client)

        session = asyncio.run(run())
        self.assertEqual(session.counts["Przystanki tramwajowe"], 1)
        self.assertIsNone(session.termini_layer)


class TestMain(unittest.TestCase):
    def test_writes_html(self):
        tmpdir = tempfile.mkdtemp()
        with open(os.path.join(tmpdir, "bemowo.geojson"), "w", encoding="utf-8") as f:
            json.dump(BOUNDARY, f)
        out = os.path.join(tmpdir, "map.html")
        argv = ["transit_map.py", "--data-dir", tmpdir, "--out", out]
        with patch("sys.argv", argv):
            transit_map.main()
        with open(out, "r", encoding="utf-8") as f:
            self.assertIn("Legenda", f.read())

    def test_missing_boundary_exits(self):
        tmpdir = tempfile.mkdtemp()
        argv = ["transit_map.py", "--data-dir", tmpdir, "--out", os.path.join(tmpdir, "map.html")]
        with patch("sys.argv", argv):
            with self.assertRaises(SystemExit) as ctx:
                transit_map.main()
        self.assertIn("Cannot load boundary", str(ctx.exception))
        self.assertFalse(os.path.exists(os.path.join(tmpdir, "map.html")))


if __name__ == "__main__":
    unittest.main()
