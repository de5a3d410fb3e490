# v5 one-line renderer over cad.layout
from __future__ import annotations

from pathlib import Path
import json as _json
import logging
from typing import Optional

import ezdxf
from ezdxf.enums import TextEntityAlignment
from pydantic import ValidationError

from evsingleline.cad.layout import build_layout
from evsingleline.core.settings import settings
from evsingleline.schemas.diagram import DiagramLayout, DiagramNode
from evsingleline.schemas.standards import StandardsConfig
from evsingleline.schemas.survey import Survey

logger = logging.getLogger(__name__)

_LAYER_BY_KIND = {
    "utility": "one_line_equip",
    "service": "one_line_equip",
    "mdp": "one_line_equip",
    "panel": "one_line_equip",
    "breaker": "one_line_equip",
    "bus": "one_line_bus",
    "feeder": "one_line_feeder",
    "charger": "one_line_ev",
    "xfmr_primary": "one_line_xfmr",
    "xfmr_secondary": "one_line_xfmr",
}


# -- standards loader ---------------------------------------------------------
def _load_standards(cfg_path: Optional[Path] = None) -> StandardsConfig:
    cfg_path = Path(cfg_path or settings.STANDARDS_FILE)
    if cfg_path.exists():
        try:
            return StandardsConfig(**_json.loads(cfg_path.read_text(encoding="utf-8")))
        except _json.JSONDecodeError as e:
            logger.warning(f"Standards file is not valid JSON: {cfg_path}. Error: {e}. Using defaults.")
        except ValidationError as e:
            logger.warning(f"Standards file does not match expected schema: {cfg_path}. Error: {e}. Using defaults.")
        except OSError as e:
            logger.error(f"Could not read standards from {cfg_path}: {e}. Using defaults.")
    return StandardsConfig()


# -- layer helper -------------------------------------------------------------
def _ensure_layer(doc, name: str, color: int = 7):
    if name not in doc.layers:
        doc.layers.add(name=name, color=color)


# -- text placement (ezdxf version-safe) -------------------------------------
def _place_text(ent, pos, align=TextEntityAlignment.LEFT):
    if hasattr(ent, "set_placement"):
        ent.set_placement(pos, align=align)
    else:
        ent.dxf.insert = pos


# -- utilities ----------------------------------------------------------------
def _draw_box(msp, x: float, y: float, w: float, h: float, layer: str):
    msp.add_lwpolyline([(x, y), (x + w, y), (x + w, y + h), (x, y + h)], dxfattribs={"closed": True, "layer": layer})


def _label(msp, text: str, pos: tuple[float, float], layer: str, height: float,
           align=TextEntityAlignment.MIDDLE_CENTER, style: Optional[str] = None):
    attribs = {"height": height, "layer": layer}
    if style:
        attribs["style"] = style
    ent = msp.add_text(text, dxfattribs=attribs)
    _place_text(ent, pos, align=align)
    return ent


class _Sheet:
    """Draws layout nodes into modelspace. Layout y grows down; DXF y grows up."""

    def __init__(self, doc, layout: DiagramLayout, cfg: StandardsConfig):
        self.msp = doc.modelspace()
        self.layout = layout
        self.cfg = cfg
        self.layers = {}
        for key, default in StandardsConfig().layers.items():
            name = cfg.layers.get(key, default)
            _ensure_layer(doc, name, cfg.layer_colors.get(key, 7))
            self.layers[key] = name

    def y(self, v: float) -> float:
        return self.layout.height - v

    def text(self, s: str, x: float, y: float, height: Optional[float] = None,
             align=TextEntityAlignment.MIDDLE_CENTER):
        if s:
            _label(self.msp, s, (x, self.y(y)), self.layers["annotations"],
                   height or self.cfg.text_height, align=align, style=self.cfg.text_style)

    def node(self, n: DiagramNode):
        layer = self.layers[_LAYER_BY_KIND[n.kind]]
        cx = n.center_x
        if n.kind == "bus":
            self.msp.add_lwpolyline([(n.x, self.y(n.y)), (n.x + n.w, self.y(n.y))],
                                    dxfattribs={"layer": layer, "const_width": 2.0})
            return
        if n.kind in ("xfmr_primary", "xfmr_secondary"):
            r = n.w / 2
            self.msp.add_circle((cx, self.y(n.y + r)), r, dxfattribs={"layer": layer})
            # labels sit to the right of the coil pair
            self.text(" ".join(p for p in (n.label, n.sublabel) if p), n.x + n.w + 4, n.y + r,
                      align=TextEntityAlignment.MIDDLE_LEFT)
            return
        if n.kind == "feeder":
            # breaker "X" between the bus drop and the feeder
            self.msp.add_line((n.x, self.y(n.y)), (n.x + n.w, self.y(n.bottom)), dxfattribs={"layer": layer})
            self.msp.add_line((n.x, self.y(n.bottom)), (n.x + n.w, self.y(n.y)), dxfattribs={"layer": layer})
            self.text(" ".join(p for p in (n.label, n.sublabel) if p), n.x + n.w + 4, n.y + n.h / 2,
                      align=TextEntityAlignment.MIDDLE_LEFT)
            return

        _draw_box(self.msp, n.x, self.y(n.bottom), n.w, n.h, layer)
        if n.sublabel:
            self.text(n.label, cx, n.y + n.h * 0.35)
            self.text(n.sublabel, cx, n.y + n.h * 0.7, height=self.cfg.text_height * 0.8)
        else:
            self.text(n.label, cx, n.y + n.h / 2)

    def edge(self, e):
        layer = self.layers["one_line_ev"] if e.dashed else self.layers["one_line_feeder"]
        attribs = {"layer": layer}
        if e.dashed:
            attribs["linetype"] = "DASHED"
        self.msp.add_lwpolyline([(x, self.y(y)) for x, y in e.points], dxfattribs=attribs)


# -- main generator -----------------------------------------------------------
def generate_one_line_dxf(survey: Survey, out_path: Path, title: Optional[str] = None) -> Path:
    """
    One-line diagram of the whole survey:
      - utility -> service entrances -> MDPs
      - each panel's bus with its load / EV breakers, chargers below them
      - feeder breakers, step-down transformers and sub-panels, recursively
    Raises ValueError when the survey has no panels to draw.
    """
    out_path = Path(out_path)
    layout = build_layout(survey)
    if layout is None:
        raise ValueError("Survey has no panels; nothing to draw.")

    doc = ezdxf.new(dxfversion="R2010", setup=True)
    cfg = _load_standards()
    sheet = _Sheet(doc, layout, cfg)

    # -- title ----------------------------------------------------------------
    site = survey.site_info
    project_title = title or site.customer_name or "EV Charging"
    sheet.text(f"{project_title} - One-Line Diagram", 0, -cfg.title_height * 2,
               height=cfg.title_height, align=TextEntityAlignment.LEFT)
    if site.address:
        sheet.text(site.address, 0, -cfg.title_height * 0.5, align=TextEntityAlignment.LEFT)

    # -- connectors first, equipment on top -----------------------------------
    for e in layout.edges:
        sheet.edge(e)
    for n in layout.nodes:
        sheet.node(n)

    # -- save -----------------------------------------------------------------
    out_path.parent.mkdir(parents=True, exist_ok=True)
    doc.saveas(out_path)
    logger.info(f"One-line DXF written: {out_path} ({len(layout.nodes)} nodes)")
    return out_path
