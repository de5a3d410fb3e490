"""
Positioned one-line diagram.

Coordinates are drawing units with the origin at the top-left and y growing
downward; (x, y) is a node's top-left corner.
"""
from __future__ import annotations

from typing import List, Literal, Optional, Tuple

from pydantic import Field

from evsingleline.schemas.survey import SurveyModel

NodeKind = Literal[
    "utility",
    "service",
    "mdp",
    "panel",
    "bus",
    "breaker",
    "charger",
    "feeder",
    "xfmr_primary",
    "xfmr_secondary",
]


class DiagramNode(SurveyModel):
    id: str
    kind: NodeKind
    label: str = ""
    sublabel: str = ""
    x: float
    y: float
    w: float
    h: float
    parent_id: Optional[str] = None

    @property
    def center_x(self) -> float:
        return self.x + self.w / 2

    @property
    def bottom(self) -> float:
        return self.y + self.h


class DiagramEdge(SurveyModel):
    id: str
    source: str
    target: str
    points: List[Tuple[float, float]]
    dashed: bool = False


class DiagramLayout(SurveyModel):
    nodes: List[DiagramNode] = Field(default_factory=list)
    edges: List[DiagramEdge] = Field(default_factory=list)
    width: float = 0.0
    height: float = 0.0

    def node(self, node_id: str) -> DiagramNode:
        for n in self.nodes:
            if n.id == node_id:
                return n
        raise KeyError(node_id)
