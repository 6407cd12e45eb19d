"""Map layers for the transit map: boundary, lines, stops, termini, legend.

All builders work on a RenderSession, which owns the folium map and the
handles a later step needs (boundary bbox, current termini layer).
"""

from __future__ import annotations

import html
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import folium
from folium import Element

from transit_geo import BBox, feature_in_bbox, is_line, is_point, line_vertices, properties_of


STOP_PLACEHOLDER = "Przystanek"
TERMINUS_PLACEHOLDER = "Pętla"
NO_ROUTES = "brak"

MODE_LABELS = {"bus": "Autobusy", "tram": "Tramwaje"}

PLATFORM_ROLES = {"platform", "platform_entry_only", "platform_exit_only"}

# kategoria -> (colour, legend text)
TERMINUS_CATEGORIES: Dict[str, Tuple[str, str]] = {
    "a": ("green", "istniejąca, zgodna z planem"),
    "b": ("red", "istniejąca, niezgodna z planem"),
    "c": ("orange", "istniejąca, nieujęta w planie"),
    "d": ("blue", "planowana, zgodna z planem"),
}
DEFAULT_TERMINUS_COLOR = "gray"

# Explicit layer stack (bottom -> top).
PANES: List[Tuple[str, int]] = [
    ("boundaryPane", 405),
    ("linesPane", 410),
    ("stopsPane", 420),
    ("terminiPane", 430),
]


class PipelineOrderError(RuntimeError):
    """A filtered layer was requested before the boundary was loaded."""


# ----------------------------
# Feature properties
# ----------------------------

def relations(feature: dict) -> List[dict]:
    props = properties_of(feature)
    rels = props.get("@relations") or []
    return [r for r in rels if isinstance(r, dict)] if isinstance(rels, list) else []


def reltags(rel: dict) -> dict:
    tags = rel.get("reltags")
    return tags if isinstance(tags, dict) else {}


def stop_name(feature: dict) -> str:
    """Explicit name, else the first relation stop_name tag, else a placeholder."""
    props = properties_of(feature)
    name = props.get("name")
    if name:
        return str(name)
    for rel in relations(feature):
        tag = reltags(rel).get("stop_name")
        if tag:
            return str(tag)
    return STOP_PLACEHOLDER


def is_platform(feature: dict) -> bool:
    return any(str(rel.get("role", "")) in PLATFORM_ROLES for rel in relations(feature))


def route_ref_html(tags: dict) -> str:
    ref = html.escape(str(tags["ref"]))
    url = tags.get("url")
    if url:
        return f'<a href="{html.escape(str(url), quote=True)}" target="_blank">{ref}</a>'
    return ref


def route_refs(feature: dict, mode: str) -> List[str]:
    """Distinct rendered route refs of one mode, in first-seen order."""
    out: List[str] = []
    for rel in relations(feature):
        tags = reltags(rel)
        if tags.get("route") != mode or not tags.get("ref"):
            continue
        item = route_ref_html(tags)
        if item not in out:
            out.append(item)
    return out


def route_refs_html(feature: dict, mode: str) -> str:
    refs = route_refs(feature, mode)
    return ", ".join(refs) if refs else NO_ROUTES


def stop_popup_html(feature: dict, mode: str) -> str:
    label = MODE_LABELS.get(mode, mode)
    return (
        f"<b>{html.escape(stop_name(feature))}</b><br/>"
        f"<b>{label}:</b> {route_refs_html(feature, mode)}"
    )


def terminus_color(category) -> str:
    entry = TERMINUS_CATEGORIES.get(str(category or "").strip().lower())
    return entry[0] if entry else DEFAULT_TERMINUS_COLOR


def terminus_popup_html(feature: dict) -> str:
    props = properties_of(feature)
    name = str(props.get("name") or TERMINUS_PLACEHOLDER)
    parts = [f"<b>{html.escape(name)}</b>"]
    if props.get("type"):
        parts.append(f"Typ: {html.escape(str(props['type']))}")
    if props.get("opis"):
        parts.append(html.escape(str(props["opis"])))
    return "<br/>".join(parts)


# ----------------------------
# Session
# ----------------------------

@dataclass
class RenderSession:
    m: folium.Map
    boundary: Optional[dict] = None
    boundary_geom: object = None
    boundary_layer: Optional[folium.FeatureGroup] = None
    bbox: Optional[BBox] = None
    termini_layer: Optional[folium.FeatureGroup] = None
    counts: Dict[str, int] = field(default_factory=dict)

    def require_boundary(self) -> BBox:
        if self.bbox is None:
            raise PipelineOrderError("boundary must be loaded before filtered layers are built")
        return self.bbox

    def add_layer(self, layer: folium.FeatureGroup) -> None:
        layer.add_to(self.m)
        self.keep_termini_on_top()

    def keep_termini_on_top(self) -> None:
        """Re-insert the termini layer as the map's last child."""
        if self.termini_layer is None:
            return
        name = self.termini_layer.get_name()
        if name in self.m._children:
            self.m._children.move_to_end(name)

    def layer_names(self) -> List[str]:
        return list(self.m._children.keys())


def new_session(
    centre: Tuple[float, float] = (52.25, 20.92),
    zoom_start: int = 13,
    tiles: str = "OpenStreetMap",
) -> RenderSession:
    m = folium.Map(location=list(centre), zoom_start=zoom_start, max_zoom=19, control_scale=True, tiles=tiles)
    for pane, z in PANES:
        folium.map.CustomPane(pane, z_index=z).add_to(m)
    return RenderSession(m=m)


# ----------------------------
# Layer builders
# ----------------------------

def add_boundary_layer(session: RenderSession, data: dict, geom, bbox: BBox) -> folium.FeatureGroup:
    """Draw the boundary outline and fit the view to its bounding box."""
    fg = folium.FeatureGroup(name="Granica dzielnicy", show=True)
    polys = list(geom.geoms) if geom.geom_type == "MultiPolygon" else [geom]
    for poly in polys:
        folium.Polygon(
            locations=[(lat, lon) for lon, lat in poly.exterior.coords],
            pane="boundaryPane",
            color="gray",
            weight=1,
            fill=True,
            fill_opacity=0.05,
        ).add_to(fg)

    session.boundary = data
    session.boundary_geom = geom
    session.bbox = bbox
    session.boundary_layer = fg
    session.add_layer(fg)
    session.m.fit_bounds(bbox.to_latlon_bounds())
    return fg


def add_line_layer(
    session: RenderSession,
    data: dict,
    name: str,
    color: str,
    dashed: bool = False,
) -> folium.FeatureGroup:
    bbox = session.require_boundary()
    fg = folium.FeatureGroup(name=name, show=True)
    count = 0
    for feat in data.get("features", []):
        if not is_line(feat) or not feature_in_bbox(feat, bbox):
            continue
        geometry = feat["geometry"]
        parts = [geometry["coordinates"]] if geometry["type"] == "LineString" else geometry["coordinates"]
        props = properties_of(feat)
        tip = props.get("name") or props.get("ref")
        for part in parts:
            coords = line_vertices({"type": "LineString", "coordinates": part})
            if len(coords) < 2:
                continue
            folium.PolyLine(
                locations=[(lat, lon) for lon, lat in coords],
                pane="linesPane",
                color=color,
                weight=3,
                dash_array="5,5" if dashed else None,
                tooltip=html.escape(str(tip)) if tip else None,
            ).add_to(fg)
        count += 1

    session.counts[name] = count
    session.add_layer(fg)
    return fg


def add_stop_layer(
    session: RenderSession,
    data: dict,
    name: str,
    mode: str,
    color: str,
    platforms_only: bool = True,
) -> folium.FeatureGroup:
    """Stops (points) of one mode with a popup listing the routes serving them."""
    bbox = session.require_boundary()
    fg = folium.FeatureGroup(name=name, show=True)
    count = 0
    for feat in data.get("features", []):
        if not is_point(feat) or not feature_in_bbox(feat, bbox):
            continue
        if platforms_only and not is_platform(feat):
            continue
        lon, lat = feat["geometry"]["coordinates"][:2]
        folium.CircleMarker(
            location=[float(lat), float(lon)],
            pane="stopsPane",
            radius=6,
            color="#fff",
            weight=1,
            opacity=1,
            fill=True,
            fill_color=color,
            fill_opacity=0.9,
            tooltip=html.escape(stop_name(feat)),
            popup=folium.Popup(stop_popup_html(feat, mode), max_width=300),
        ).add_to(fg)
        count += 1

    session.counts[name] = count
    session.add_layer(fg)
    return fg


def add_termini_layer(session: RenderSession, data: dict, name: str = "Pętle") -> folium.FeatureGroup:
    """(Re)build the termini layer; the previous instance is dropped first
    and the new one always ends up on top."""
    bbox = session.require_boundary()

    if session.termini_layer is not None:
        session.m._children.pop(session.termini_layer.get_name(), None)
        session.termini_layer = None

    fg = folium.FeatureGroup(name=name, show=True)
    count = 0
    for feat in data.get("features", []):
        if not is_point(feat) or not feature_in_bbox(feat, bbox):
            continue
        props = properties_of(feat)
        color = terminus_color(props.get("kategoria"))
        lon, lat = feat["geometry"]["coordinates"][:2]
        folium.CircleMarker(
            location=[float(lat), float(lon)],
            pane="terminiPane",
            radius=8,
            color="#000",
            weight=1,
            opacity=1,
            fill=True,
            fill_color=color,
            fill_opacity=0.9,
            tooltip=html.escape(str(props.get("name") or TERMINUS_PLACEHOLDER)),
            popup=folium.Popup(terminus_popup_html(feat), max_width=300),
        ).add_to(fg)
        count += 1

    session.counts[name] = count
    session.termini_layer = fg
    session.add_layer(fg)
    return fg


# ----------------------------
# Legend
# ----------------------------

def legend_html() -> str:
    rows = [
        '<div><span style="display:inline-block;width:22px;border-top:3px solid blue;vertical-align:middle;"></span> Linia tramwajowa</div>',
        '<div><span style="display:inline-block;width:22px;border-top:3px dashed green;vertical-align:middle;"></span> Linia autobusowa</div>',
        '<div><span style="display:inline-block;width:10px;height:10px;border-radius:50%;background:blue;"></span> Przystanek tramwajowy</div>',
        '<div><span style="display:inline-block;width:10px;height:10px;border-radius:50%;background:green;"></span> Przystanek autobusowy</div>',
        '<hr style="margin:6px 0;"/><b>Pętle</b>',
    ]
    for code, (color, label) in TERMINUS_CATEGORIES.items():
        rows.append(
            f'<div><span style="display:inline-block;width:12px;height:12px;border-radius:50%;'
            f'border:1px solid #000;background:{color};"></span> {code}: {label}</div>'
        )
    return f"""
    <div id="transit-legend" style="
      position: fixed; bottom: 24px; right: 12px; z-index: 9999;
      background: white; border: 1px solid #999; border-radius: 6px;
      padding: 10px; width: 260px; font: 13px/1.35 sans-serif;
      box-shadow: 0 1px 8px rgba(0,0,0,0.25);">
      <b>Legenda</b>
      {"".join(rows)}
    </div>
    """


def add_legend(session: RenderSession) -> None:
    session.m.get_root().html.add_child(Element(legend_html()))
