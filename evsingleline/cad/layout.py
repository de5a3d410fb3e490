"""
One-line diagram layout.

Two passes over the panel tree:

  measure  bottom-up. A panel's subtree is as wide as its own breaker columns
           plus the measured width of every child subtree:
               width = max(1, b + sum(child_width / COL_W)) * COL_W
  place    top-down. The panel box is centered over its subtree; the bus runs
           across its columns; each load / charger breaker takes one column in
           breaker-list order, then each child subtree takes its measured width
           in feeder order.

The output is a `DiagramLayout`. Ids are derived from survey ids and all
coordinates are rounded, so the same snapshot always lays out identically.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from evsingleline.electrical.tree import children_of, effective_voltage, root_panels
from evsingleline.electrical.units import charger_power_kw, phase_label, transformer_fla
from evsingleline.schemas.diagram import DiagramEdge, DiagramLayout, DiagramNode
from evsingleline.schemas.survey import Panel, ServiceEntrance, Survey

logger = logging.getLogger(__name__)

# drawing units
COL_W = 120.0
BOX_W = 100.0
BOX_H = 50.0
BREAKER_W = 60.0
BREAKER_H = 30.0
CHARGER_W = 90.0
CHARGER_H = 40.0
FEEDER_SIZE = 24.0
COIL_D = 24.0
BUS_GAP = 20.0
DROP = 20.0
ROW_GAP = 40.0
PAD = 40.0


def _r(v: float) -> float:
    return round(v, 2)


def _amps(v: float) -> str:
    return f"{v:g}A" if v else ""


class _Layout:
    def __init__(self, survey: Survey):
        self.survey = survey
        self.widths: Dict[str, float] = {}
        self.nodes: List[DiagramNode] = []
        self.edges: List[DiagramEdge] = []
        self.max_y = 0.0

    # -- pass 1 -------------------------------------------------------------
    def measure(self, panel: Panel) -> float:
        if panel.id in self.widths:
            return self.widths[panel.id]
        columns = sum(1 for b in panel.breakers if b.type != "subpanel")
        for child in children_of(self.survey, panel.id):
            columns += self.measure(child) / COL_W
        width = max(1.0, columns) * COL_W
        self.widths[panel.id] = width
        return width

    # -- primitives -----------------------------------------------------------
    def _node(self, id: str, kind: str, cx: float, y: float, w: float, h: float,
              label: str = "", sublabel: str = "", parent_id: Optional[str] = None) -> DiagramNode:
        node = DiagramNode(
            id=id, kind=kind, label=label, sublabel=sublabel.strip(),
            x=_r(cx - w / 2), y=_r(y), w=_r(w), h=_r(h), parent_id=parent_id,
        )
        self.nodes.append(node)
        self.max_y = max(self.max_y, node.bottom)
        return node

    def _edge(self, source: str, target: str, points: List[Tuple[float, float]], dashed: bool = False):
        pts = [(_r(x), _r(y)) for x, y in points]
        self.edges.append(DiagramEdge(id=f"{source}->{target}", source=source, target=target,
                                      points=pts, dashed=dashed))

    def _drop(self, upper: DiagramNode, lower: DiagramNode, dashed: bool = False):
        """Orthogonal connector: down from `upper`, across at mid-height, down into `lower`."""
        x1, y1 = upper.center_x, upper.bottom
        x2, y2 = lower.center_x, lower.y
        if abs(x1 - x2) < 0.005:
            self._edge(upper.id, lower.id, [(x1, y1), (x2, y2)], dashed)
        else:
            mid = (y1 + y2) / 2
            self._edge(upper.id, lower.id, [(x1, y1), (x1, mid), (x2, mid), (x2, y2)], dashed)

    # -- pass 2 -------------------------------------------------------------
    def panel_box(self, panel: Panel, cx: float, top: float, is_sub: bool,
                  parent_id: Optional[str] = None) -> DiagramNode:
        system = effective_voltage(self.survey, panel.id)
        return self._node(
            f"panel-{panel.id}", "panel" if is_sub else "mdp", cx, top, BOX_W, BOX_H,
            label=panel.display_name("Sub Panel" if is_sub else "MDP"),
            sublabel=f"{system} {phase_label(system)} {_amps(panel.main_breaker_amps)}",
            parent_id=parent_id,
        )

    def place(self, panel: Panel, box: DiagramNode) -> float:
        """Lay out everything below an already drawn panel box; returns the lowest y reached."""
        loads = [b for b in panel.breakers if b.type != "subpanel"]
        children = children_of(self.survey, panel.id)
        if not loads and not children:
            return box.bottom

        width = self.measure(panel)
        left = box.center_x - width / 2
        bus_y = box.bottom + BUS_GAP

        slots: List[Tuple[float, float]] = []
        cursor = left
        for _ in loads:
            slots.append((cursor + COL_W / 2, COL_W))
            cursor += COL_W
        for child in children:
            w = self.measure(child)
            slots.append((cursor + w / 2, w))
            cursor += w
        centers = [c for c, _ in slots]

        bus_x0 = min(centers[0], box.center_x)
        bus_x1 = max(centers[-1], box.center_x)
        bus = DiagramNode(
            id=f"bus-{panel.id}", kind="bus", x=_r(bus_x0), y=_r(bus_y), w=_r(bus_x1 - bus_x0), h=0.0,
            parent_id=box.id,
        )
        self.nodes.append(bus)
        self._edge(box.id, bus.id, [(box.center_x, box.bottom), (box.center_x, bus_y)])

        lowest = bus_y
        for b, (cx, _) in zip(loads, slots[:len(loads)]):
            volts = f"{b.voltage}V" if b.voltage else ""
            brk = self._node(f"breaker-{b.id}", "breaker", cx, bus_y + DROP, BREAKER_W, BREAKER_H,
                             label=b.label or b.circuit_number, sublabel=f"{_amps(b.amps)} {volts}",
                             parent_id=bus.id)
            self._edge(bus.id, brk.id, [(cx, bus_y), (cx, brk.y)])
            lowest = max(lowest, brk.bottom)
            if b.type == "evcharger":
                level = "DCFC" if b.charger_level == "Level 3" else (b.charger_level or "EV")
                kw = charger_power_kw(b)
                glyph = self._node(f"charger-{b.id}", "charger", cx, brk.bottom + DROP, CHARGER_W, CHARGER_H,
                                   label=level, sublabel=f"{kw:.1f} kW" if kw else "", parent_id=brk.id)
                self._drop(brk, glyph, dashed=True)
                lowest = max(lowest, glyph.bottom)

        for child, (cx, _) in zip(children, slots[len(loads):]):
            lowest = max(lowest, self.place_child(panel, child, cx, bus))
        return lowest

    def place_child(self, parent: Panel, child: Panel, cx: float, bus: DiagramNode) -> float:
        feeder = next((b for b in parent.breakers if b.id == child.feed_breaker_id), None)
        feeder_id = f"feeder-{child.feed_breaker_id}"
        glyph = self._node(feeder_id, "feeder", cx, bus.y + DROP, FEEDER_SIZE, FEEDER_SIZE,
                           label=_amps(feeder.amps) if feeder else "", sublabel=feeder.circuit_number if feeder else "",
                           parent_id=bus.id)
        self._edge(bus.id, glyph.id, [(cx, bus.y), (cx, glyph.y)])
        upper = glyph
        y = glyph.bottom + DROP

        xf = child.transformer
        if xf is not None:
            pri = self._node(
                f"xfmr-{child.id}-pri", "xfmr_primary", cx, y, COIL_D, COIL_D,
                label=xf.primary_voltage, sublabel=f"{xf.kva:g} kVA" if xf.kva else "", parent_id=glyph.id,
            )
            self._drop(glyph, pri)
            fla = transformer_fla(xf.kva, xf.secondary_voltage)
            # coils touch; the coupling is drawn by the renderer
            sec = self._node(
                f"xfmr-{child.id}-sec", "xfmr_secondary", cx, pri.bottom, COIL_D, COIL_D,
                label=xf.secondary_voltage, sublabel=f"{fla:.1f}A FLA" if fla else "", parent_id=pri.id,
            )
            upper = sec
            y = sec.bottom + DROP

        box = self.panel_box(child, cx, y, is_sub=True, parent_id=upper.id)
        self._drop(upper, box)
        return max(box.bottom, self.place(child, box))

    # -- top level -----------------------------------------------------------
    def _groups(self) -> List[Tuple[Optional[ServiceEntrance], List[Panel]]]:
        if not self.survey.services:
            return [(None, root_panels(self.survey))]
        return [(s, root_panels(self.survey, s.id)) for s in self.survey.services]

    def build(self) -> DiagramLayout:
        groups = self._groups()
        group_widths = []
        for _, roots in groups:
            w = sum(self.measure(r) for r in roots)
            group_widths.append(max(w, COL_W))
        total = sum(group_widths)

        utility_y = PAD
        service_y = utility_y + BOX_H + ROW_GAP
        providers = [s.utility_provider for s in self.survey.services if s.utility_provider]
        utility = self._node("utility", "utility", PAD + total / 2, utility_y, BOX_W, BOX_H,
                             label="UTILITY", sublabel=", ".join(providers) or "Power Company")

        left = PAD
        for i, ((service, roots), gw) in enumerate(zip(groups, group_widths)):
            top = utility.bottom + ROW_GAP
            upper = utility
            if service is not None:
                upper = self._node(
                    f"service-{service.id}", "service", left + gw / 2, service_y, BOX_W, BOX_H,
                    label=service.service_name or f"Service {i + 1}",
                    sublabel=f"{service.service_voltage} {phase_label(service.service_voltage)} "
                             f"{_amps(service.service_amperage)}",
                    parent_id=utility.id,
                )
                self._drop(utility, upper)
                top = upper.bottom + ROW_GAP

            cursor = left
            for root in roots:
                w = self.measure(root)
                box = self.panel_box(root, cursor + w / 2, top, is_sub=False, parent_id=upper.id)
                self._drop(upper, box)
                self.place(root, box)
                cursor += w
            left += gw

        layout = DiagramLayout(
            nodes=self.nodes,
            edges=self.edges,
            width=_r(total + 2 * PAD),
            height=_r(self.max_y + PAD),
        )
        logger.debug(f"Layout: {len(layout.nodes)} nodes, {len(layout.edges)} edges, "
                     f"{layout.width} x {layout.height}")
        return layout


def measure(survey: Survey, panel: Panel) -> float:
    """Width of the subtree rooted at `panel`, in drawing units."""
    return _Layout(survey).measure(panel)


def build_layout(survey: Survey) -> Optional[DiagramLayout]:
    """Position every drawn element; None when the survey has no panels to draw."""
    if not survey.panels:
        return None
    return _Layout(survey).build()
