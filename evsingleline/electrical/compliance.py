"""
Code-compliance calculator.

Pure functions over a survey snapshot. Nothing here mutates the survey and
nothing raises for an NEC problem: every problem becomes a `Finding`.

  - space accounting (breaker poles + spares vs physical spaces)
  - panel load vs main breaker
  - feeder alignment (feeder vs child main, child load, transformer primary FLA)
  - transformer secondary capacity
  - EV branch breaker sizing, NEC 625.40 (125% of charger input current)
  - NEC 210.20(A)/215.3 demand: ceil(continuous * 1.25) + non-continuous
  - peak kW (EV chargers at their AC input power)
  - service capacity used
"""
from __future__ import annotations

import logging
import math
from typing import Iterable, List, Optional

from evsingleline.electrical.tree import (
    effective_voltage,
    find_breaker,
    find_panel,
    service_panels,
    root_panels,
)
from evsingleline.electrical.units import (
    EV_CONTINUOUS_FACTOR,
    breaker_kw,
    breaker_poles,
    charger_power_kw,
    min_breaker_amps_for_ev,
    next_breaker_size,
    transformer_fla,
)
from evsingleline.schemas.report import (
    ComplianceReport,
    Finding,
    NecDemand,
    PanelLoad,
    PanelReport,
    PeakDemand,
    ServiceReport,
    SpaceAccounting,
)
from evsingleline.schemas.survey import Breaker, Panel, ServiceEntrance, Survey

logger = logging.getLogger(__name__)

CAPACITY_WARNING_PCT = 100.0
CAPACITY_CAUTION_PCT = 80.0


def _a(amps: float) -> str:
    return f"{amps:g}A"


def _terminal(breakers: Iterable[Breaker]) -> List[Breaker]:
    """Breakers that are loads in their own right; `subpanel` feeders are accounted downstream."""
    return [b for b in breakers if b.type != "subpanel"]


# -- spaces ---------------------------------------------------------------------
def spaces_used(panel: Panel) -> int:
    """Sum of pole counts. Feeder breakers count; a child panel's main lugs do not."""
    return sum(breaker_poles(b) for b in panel.breakers)


def space_accounting(panel: Panel) -> SpaceAccounting:
    used = spaces_used(panel)
    return SpaceAccounting(
        spaces_used=used,
        spare_spaces=panel.spare_spaces,
        accounted=used + panel.spare_spaces,
        total_spaces=panel.total_spaces,
    )


def space_findings(panel: Panel, spaces: Optional[SpaceAccounting] = None) -> List[Finding]:
    spaces = spaces or space_accounting(panel)
    if spaces.total_spaces <= 0:
        return []
    name = panel.display_name()
    gap = spaces.unaccounted
    if gap < 0:
        return [Finding(
            severity="error",
            code="SPACES_EXCEEDED",
            message=f"{name}: exceeds available spaces by {-gap} "
                    f"({spaces.spaces_used} breaker poles + {spaces.spare_spaces} spare > {spaces.total_spaces}).",
            panel_id=panel.id,
            shortfall=float(-gap),
        )]
    if gap > 0:
        plural = "s" if gap > 1 else ""
        return [Finding(
            severity="info",
            code="SPACES_UNACCOUNTED",
            message=f"{name}: {gap} space{plural} unaccounted for ({spaces.accounted} of {spaces.total_spaces} "
                    f"accounted: {spaces.spaces_used} breakers + {spaces.spare_spaces} spare).",
            panel_id=panel.id,
            shortfall=float(gap),
        )]
    return []


# -- load -----------------------------------------------------------------------
def panel_load(panel: Panel) -> PanelLoad:
    load = sum(b.amps for b in panel.breakers if b.type != "subpanel")
    feed = sum(b.amps for b in panel.breakers if b.type == "subpanel")
    return PanelLoad(load_amps=load, feed_through_amps=feed, main_breaker_amps=panel.main_breaker_amps)


def panel_load_findings(panel: Panel, load: Optional[PanelLoad] = None) -> List[Finding]:
    load = load or panel_load(panel)
    main = load.main_breaker_amps
    if main <= 0 or load.total_amps <= main:
        return []
    return [Finding(
        severity="warning",
        code="PANEL_OVERLOAD",
        message=f"{panel.display_name()}: breaker total {_a(load.total_amps)} "
                f"({_a(load.load_amps)} load + {_a(load.feed_through_amps)} feed-through) "
                f"exceeds main breaker {_a(main)}.",
        panel_id=panel.id,
        shortfall=load.total_amps - main,
    )]


# -- feeders and transformers -------------------------------------------------------
def feeder_alignment(survey: Survey, panel: Panel) -> List[Finding]:
    """Check the parent's feeder breaker against the child panel it feeds."""
    if panel.parent_panel_id is None or panel.feed_breaker_id is None:
        return []
    parent = find_panel(survey, panel.parent_panel_id)
    feeder = find_breaker(parent, panel.feed_breaker_id)
    child_name = panel.display_name("Sub Panel")
    parent_name = parent.display_name()

    if feeder.amps <= 0:
        return [Finding(
            severity="info",
            code="FEEDER_UNRATED",
            message=f"Feeder to {child_name} in {parent_name} has no breaker rating; feeder checks skipped.",
            panel_id=panel.id,
            breaker_id=feeder.id,
        )]

    out: List[Finding] = []
    if panel.main_breaker_amps > feeder.amps:
        out.append(Finding(
            severity="warning",
            code="FEEDER_BELOW_MAIN",
            message=f"Feeder breaker {_a(feeder.amps)} in {parent_name} is smaller than "
                    f"{child_name} main breaker {_a(panel.main_breaker_amps)}.",
            panel_id=panel.id,
            breaker_id=feeder.id,
            shortfall=panel.main_breaker_amps - feeder.amps,
        ))

    load = panel_load(panel)
    if load.total_amps > feeder.amps:
        out.append(Finding(
            severity="warning",
            code="FEEDER_BELOW_LOAD",
            message=f"Feeder breaker {_a(feeder.amps)} in {parent_name} is smaller than "
                    f"{child_name} breaker total {_a(load.total_amps)}.",
            panel_id=panel.id,
            breaker_id=feeder.id,
            shortfall=load.total_amps - feeder.amps,
        ))

    xf = panel.transformer
    if xf is not None:
        primary_fla = transformer_fla(xf.kva, xf.primary_voltage)
        if primary_fla > feeder.amps:
            out.append(Finding(
                severity="warning",
                code="FEEDER_BELOW_XFMR_PRIMARY",
                message=f"Feeder breaker {_a(feeder.amps)} in {parent_name} is below the {xf.kva:g} kVA "
                        f"transformer primary FLA {primary_fla:.1f}A ({xf.primary_voltage}) feeding {child_name}.",
                panel_id=panel.id,
                breaker_id=feeder.id,
                shortfall=round(primary_fla - feeder.amps, 2),
            ))
    return out


def transformer_capacity(panel: Panel) -> List[Finding]:
    xf = panel.transformer
    if xf is None or xf.kva <= 0:
        return []
    secondary_fla = transformer_fla(xf.kva, xf.secondary_voltage)
    if secondary_fla <= 0:
        return []
    name = panel.display_name()
    out: List[Finding] = []
    # mains up to the FLA rounded up to a whole amp pass
    main_limit = math.ceil(secondary_fla)
    if panel.main_breaker_amps > main_limit:
        out.append(Finding(
            severity="warning",
            code="XFMR_MAIN_ABOVE_FLA",
            message=f"{name}: main breaker {_a(panel.main_breaker_amps)} exceeds transformer "
                    f"secondary FLA {secondary_fla:.1f}A.",
            panel_id=panel.id,
            shortfall=round(panel.main_breaker_amps - main_limit, 2),
        ))
    # on-panel load only; feed-through is checked per child feeder
    load = panel_load(panel)
    if load.load_amps > secondary_fla:
        out.append(Finding(
            severity="warning",
            code="XFMR_OVERLOAD",
            message=f"{name}: on-panel breaker load {_a(load.load_amps)} exceeds transformer capacity "
                    f"({xf.kva:g} kVA, {secondary_fla:.1f}A secondary).",
            panel_id=panel.id,
            shortfall=round(load.load_amps - secondary_fla, 2),
        ))
    return out


# -- EV chargers ------------------------------------------------------------------
def ev_breaker_sizing(panel: Panel) -> List[Finding]:
    """NEC 625.40: each charger breaker >= ceil(charger input amps x 1.25)."""
    out: List[Finding] = []
    for b in panel.breakers:
        if b.type != "evcharger" or b.charger_amps <= 0:
            continue
        label = b.label or "EV charger"
        required = min_breaker_amps_for_ev(b.charger_amps)
        if b.amps <= 0:
            out.append(Finding(
                severity="info",
                code="EV_BREAKER_UNSET",
                message=f"{label} in {panel.display_name()}: no breaker size yet; "
                        f"NEC 625.40 requires at least {_a(required)} (use {_a(next_breaker_size(required))}).",
                panel_id=panel.id,
                breaker_id=b.id,
                shortfall=float(required),
            ))
            continue
        if b.amps < required:
            suggested = next_breaker_size(required)
            out.append(Finding(
                severity="warning",
                code="EV_BREAKER_UNDERSIZED",
                message=f"{label} in {panel.display_name()}: {_a(b.amps)} breaker is {_a(required - b.amps)} short "
                        f"of the NEC 625.40 minimum {_a(required)} for {_a(b.charger_amps)} continuous; "
                        f"use {_a(suggested)}.",
                panel_id=panel.id,
                breaker_id=b.id,
                shortfall=required - b.amps,
            ))
    return out


# -- demand -----------------------------------------------------------------------
def nec_demand(breakers: Iterable[Breaker]) -> NecDemand:
    continuous = 0.0
    non_continuous = 0.0
    for b in _terminal(breakers):
        if b.load_type == "continuous":
            continuous += b.amps
        else:
            non_continuous += b.amps
    return NecDemand(
        continuous=continuous,
        non_continuous=non_continuous,
        total_demand=math.ceil(continuous * EV_CONTINUOUS_FACTOR) + non_continuous,
    )


def peak_kw(breakers: Iterable[Breaker]) -> PeakDemand:
    ev = 0.0
    other = 0.0
    for b in _terminal(breakers):
        if b.type == "evcharger":
            ev += charger_power_kw(b)
        else:
            other += breaker_kw(b)
    return PeakDemand(ev_kw=round(ev, 2), other_kw=round(other, 2), total_kw=round(ev + other, 2))


def _all_breakers(panels: Iterable[Panel]) -> List[Breaker]:
    return [b for p in panels for b in p.breakers]


# -- service ------------------------------------------------------------------------
def service_rating(survey: Survey, service: ServiceEntrance) -> float:
    """min(service amperage, MDP main breaker); whichever is set when only one is."""
    roots = root_panels(survey, service.id)
    main = roots[0].main_breaker_amps if roots else 0.0
    svc = service.service_amperage
    if svc > 0 and main > 0:
        return min(svc, main)
    return svc or main


def analyze_service(survey: Survey, service: ServiceEntrance) -> ServiceReport:
    panels = service_panels(survey, service.id)
    breakers = _all_breakers(panels)
    demand = nec_demand(breakers)
    rating = service_rating(survey, service)
    total_load = sum(b.amps for b in _terminal(breakers))
    name = service.service_name or "Service"

    findings: List[Finding] = []
    used_pct: Optional[float] = None
    if rating > 0:
        used_pct = round(total_load / rating * 100, 1)
        if demand.total_demand > rating:
            findings.append(Finding(
                severity="error",
                code="DEMAND_EXCEEDS_SERVICE",
                message=f"{name}: NEC demand {_a(demand.total_demand)} exceeds the service/MDP rating {_a(rating)}.",
                shortfall=demand.total_demand - rating,
            ))
        if used_pct > CAPACITY_WARNING_PCT:
            findings.append(Finding(
                severity="warning",
                code="CAPACITY_EXCEEDED",
                message=f"{name}: total breaker load {_a(total_load)} is {used_pct:g}% of {_a(rating)}. "
                        f"A service upgrade or load management device may be required.",
                shortfall=total_load - rating,
            ))
        elif used_pct > CAPACITY_CAUTION_PCT:
            findings.append(Finding(
                severity="info",
                code="CAPACITY_CAUTION",
                message=f"{name}: above {CAPACITY_CAUTION_PCT:g}% capacity ({used_pct:g}%). "
                        f"Consider an NEC load calculation to verify.",
            ))

    return ServiceReport(
        service_id=service.id,
        service_name=name,
        rating_amps=rating,
        total_load_amps=total_load,
        capacity_used_pct=used_pct,
        demand=demand,
        peak=peak_kw(breakers),
        findings=findings,
    )


# -- whole survey ---------------------------------------------------------------------
def analyze_panel(survey: Survey, panel: Panel) -> PanelReport:
    spaces = space_accounting(panel)
    load = panel_load(panel)
    findings = (
        space_findings(panel, spaces)
        + panel_load_findings(panel, load)
        + feeder_alignment(survey, panel)
        + transformer_capacity(panel)
        + ev_breaker_sizing(panel)
    )
    return PanelReport(
        panel_id=panel.id,
        panel_name=panel.display_name(),
        voltage_system=effective_voltage(survey, panel.id),
        spaces=spaces,
        load=load,
        demand=nec_demand(panel.breakers),
        peak=peak_kw(panel.breakers),
        findings=findings,
    )


def analyze_survey(survey: Survey) -> ComplianceReport:
    """Every panel, every service and the whole-survey totals, with findings flattened in that order."""
    panel_reports = [analyze_panel(survey, p) for p in survey.panels]
    service_reports = [analyze_service(survey, s) for s in survey.services]
    breakers = _all_breakers(survey.panels)

    findings: List[Finding] = []
    for r in panel_reports:
        findings.extend(r.findings)
    for r in service_reports:
        findings.extend(r.findings)

    report = ComplianceReport(
        panels=panel_reports,
        services=service_reports,
        demand=nec_demand(breakers),
        peak=peak_kw(breakers),
        findings=findings,
    )
    logger.debug(
        f"Analyzed {len(panel_reports)} panel(s), {len(service_reports)} service(s): "
        f"{len(report.by_severity('error'))} error(s), {len(report.by_severity('warning'))} warning(s)"
    )
    return report
