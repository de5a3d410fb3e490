"""
Derived, read-only calculation results.

Nothing here is persisted; every model is recomputed from a survey snapshot.
"""
from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import Field

from evsingleline.schemas.survey import SurveyModel

Severity = Literal["error", "warning", "info"]


class Finding(SurveyModel):
    """One advisory result. `shortfall` is the numeric gap (amps, spaces or kVA) when there is one."""
    severity: Severity
    code: str
    message: str
    panel_id: Optional[str] = None
    breaker_id: Optional[str] = None
    shortfall: Optional[float] = None


class SpaceAccounting(SurveyModel):
    spaces_used: int = 0
    spare_spaces: int = 0
    accounted: int = 0
    total_spaces: int = 0

    @property
    def unaccounted(self) -> int:
        """Positive: spaces nobody accounted for; negative: over-accounted."""
        return self.total_spaces - self.accounted


class PanelLoad(SurveyModel):
    load_amps: float = 0.0           # load + evcharger breakers
    feed_through_amps: float = 0.0   # subpanel feeder ratings
    main_breaker_amps: float = 0.0

    @property
    def total_amps(self) -> float:
        return self.load_amps + self.feed_through_amps


class NecDemand(SurveyModel):
    continuous: float = 0.0
    non_continuous: float = 0.0
    total_demand: float = 0.0


class PeakDemand(SurveyModel):
    ev_kw: float = 0.0
    other_kw: float = 0.0
    total_kw: float = 0.0


class PanelReport(SurveyModel):
    panel_id: str
    panel_name: str
    voltage_system: str
    spaces: SpaceAccounting
    load: PanelLoad
    demand: NecDemand
    peak: PeakDemand
    findings: List[Finding] = Field(default_factory=list)


class ServiceReport(SurveyModel):
    service_id: str
    service_name: str
    rating_amps: float = 0.0          # min(service amps, MDP main) when both are set
    total_load_amps: float = 0.0      # every non-feeder breaker in the service
    capacity_used_pct: Optional[float] = None
    demand: NecDemand
    peak: PeakDemand
    findings: List[Finding] = Field(default_factory=list)


class ComplianceReport(SurveyModel):
    panels: List[PanelReport] = Field(default_factory=list)
    services: List[ServiceReport] = Field(default_factory=list)
    demand: NecDemand = Field(default_factory=NecDemand)
    peak: PeakDemand = Field(default_factory=PeakDemand)
    findings: List[Finding] = Field(default_factory=list)

    def by_severity(self, severity: str) -> List[Finding]:
        return [f for f in self.findings if f.severity == severity]
