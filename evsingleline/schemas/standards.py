# evsingleline/schemas/standards.py
from pydantic import BaseModel
from typing import Dict, Optional

class StandardsConfig(BaseModel):
    # Layer mappings, overridable from standards/active.json:
    # {"layers": {"one_line_ev": "E-EVSE-1L"}}
    layers: Dict[str, str] = {
        "annotations": "E-ANNO-TEXT",
        "one_line_bus": "E-POWR-1L-BUS",
        "one_line_equip": "E-POWR-1L-EQ",
        "one_line_feeder": "E-POWR-1L-FDR",
        "one_line_xfmr": "E-POWR-1L-XFMR",
        "one_line_ev": "E-EVSE-1L",
    }

    # ACI colors per layer key; unknown keys fall back to 7 (white/black)
    layer_colors: Dict[str, int] = {
        "one_line_bus": 1,
        "one_line_feeder": 8,
        "one_line_xfmr": 30,
        "one_line_ev": 3,
    }

    # Styles
    text_style: Optional[str] = "Standard"
    text_height: float = 6.0
    title_height: float = 12.0
