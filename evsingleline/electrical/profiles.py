"""
EV charger profile catalog.

A read-only lookup of charger model -> input current, ports and breaker /
conductor recommendations. The tree model uses it only to pre-fill a new
charger breaker; compliance checks treat profile-made and hand-entered
chargers the same way.
"""
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ChargerProfile(BaseModel):
    id: str
    name: str
    charger_level: str
    charger_amps: float = Field(..., gt=0)       # actual input current
    charger_ports: int = 1
    output_kw: Optional[float] = None            # rated DC output (DCFC only)
    nec_min_breaker: int                         # NEC 240.6(A) size >= 125% input
    recommended_breaker: int                     # manufacturer, with headroom
    min_conductor: Optional[str] = None          # 75°C Cu
    recommended_conductor: Optional[str] = None  # 75°C Cu


_PROFILE_ROWS = [
    # ---- Level 2 AC ----
    dict(id="ac50", name="CoreCharger AC/50", charger_level="Level 2", charger_amps=50,
         nec_min_breaker=70, recommended_breaker=70),
    dict(id="acs50", name="CoreCharger ACS/50", charger_level="Level 2", charger_amps=50,
         nec_min_breaker=70, recommended_breaker=70),
    dict(id="ac80", name="CoreCharger AC/80", charger_level="Level 2", charger_amps=80,
         nec_min_breaker=100, recommended_breaker=125),
    dict(id="dual-ac80", name="CoreCharger Dual AC/80", charger_level="Level 2", charger_amps=80,
         charger_ports=2, nec_min_breaker=100, recommended_breaker=125),
    # ---- Level 3 DCFC, 480V three-phase input ----
    dict(id="dc60", name="CoreCharger DC/60", charger_level="Level 3", charger_amps=81, charger_ports=2,
         output_kw=60, nec_min_breaker=110, recommended_breaker=125,
         min_conductor="1 AWG", recommended_conductor="1/0 AWG"),
    dict(id="dc80", name="CoreCharger DC/80", charger_level="Level 3", charger_amps=107, charger_ports=2,
         output_kw=80, nec_min_breaker=150, recommended_breaker=225,
         min_conductor="1/0 AWG", recommended_conductor="4/0 AWG"),
    dict(id="dc100", name="CoreCharger DC/100", charger_level="Level 3", charger_amps=133, charger_ports=2,
         output_kw=100, nec_min_breaker=175, recommended_breaker=225,
         min_conductor="2/0 AWG", recommended_conductor="4/0 AWG"),
    dict(id="dc120", name="CoreCharger DC/120", charger_level="Level 3", charger_amps=158, charger_ports=2,
         output_kw=120, nec_min_breaker=200, recommended_breaker=250,
         min_conductor="3/0 AWG", recommended_conductor="250 kcmil"),
    dict(id="dc140", name="CoreCharger DC/140", charger_level="Level 3", charger_amps=184, charger_ports=2,
         output_kw=140, nec_min_breaker=250, recommended_breaker=400,
         min_conductor="250 kcmil", recommended_conductor="500 kcmil"),
    dict(id="dc160", name="CoreCharger DC/160", charger_level="Level 3", charger_amps=209, charger_ports=2,
         output_kw=160, nec_min_breaker=300, recommended_breaker=400,
         min_conductor="350 kcmil", recommended_conductor="500 kcmil"),
    dict(id="dc180", name="CoreCharger DC/180", charger_level="Level 3", charger_amps=235, charger_ports=2,
         output_kw=180, nec_min_breaker=300, recommended_breaker=400,
         min_conductor="350 kcmil", recommended_conductor="500 kcmil"),
    dict(id="dc200", name="CoreCharger DC/200", charger_level="Level 3", charger_amps=260, charger_ports=2,
         output_kw=200, nec_min_breaker=350, recommended_breaker=400,
         min_conductor="350 kcmil", recommended_conductor="500 kcmil"),
    dict(id="dc220", name="CoreCharger DC/220", charger_level="Level 3", charger_amps=286, charger_ports=2,
         output_kw=220, nec_min_breaker=400, recommended_breaker=500,
         min_conductor="500 kcmil", recommended_conductor="2× 250 kcmil"),
    dict(id="dc240", name="CoreCharger DC/240", charger_level="Level 3", charger_amps=312, charger_ports=2,
         output_kw=240, nec_min_breaker=400, recommended_breaker=500,
         min_conductor="500 kcmil", recommended_conductor="2× 250 kcmil"),
]

CHARGER_PROFILES: List[ChargerProfile] = [ChargerProfile(**row) for row in _PROFILE_ROWS]
_BY_ID: Dict[str, ChargerProfile] = {p.id: p for p in CHARGER_PROFILES}


def get_profile(profile_id: Optional[str]) -> Optional[ChargerProfile]:
    if not profile_id:
        return None
    return _BY_ID.get(profile_id)
