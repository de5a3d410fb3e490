"""Plain-text survey summary, for pasting into emails and job notes."""
from __future__ import annotations

from typing import List, Optional

from evsingleline.electrical.compliance import analyze_survey
from evsingleline.electrical.tree import children_of, root_panels
from evsingleline.electrical.units import charger_power_kw
from evsingleline.schemas.report import ComplianceReport, PanelReport
from evsingleline.schemas.survey import Panel, Survey

RULE = "=" * 60
SUBRULE = "-" * 40


def _amps(v: float) -> str:
    return f"{v:g}A" if v else "--"


def _panel_lines(survey: Survey, panel: Panel, reports: dict, depth: int) -> List[str]:
    r: PanelReport = reports[panel.id]
    pad = "  " * depth
    lines = [f"{pad}{panel.display_name()} [{r.voltage_system}] main {_amps(panel.main_breaker_amps)}"]
    if panel.transformer:
        xf = panel.transformer
        lines.append(f"{pad}  transformer: {xf.kva:g} kVA {xf.primary_voltage} -> {xf.secondary_voltage}")
    if panel.panel_location:
        lines.append(f"{pad}  location: {panel.panel_location}")
    sp = r.spaces
    lines.append(f"{pad}  spaces: {sp.spaces_used} used + {sp.spare_spaces} spare of {sp.total_spaces}")
    lines.append(f"{pad}  demand: {r.demand.total_demand:g}A  peak: {r.peak.total_kw:g} kW")
    for b in panel.breakers:
        if b.type == "subpanel":
            continue
        line = f"{pad}  - ckt {b.circuit_number or '?'}: {b.label or b.type} {_amps(b.amps)}"
        if b.type == "evcharger":
            line += f" [{b.charger_level or 'EV'}, {b.charger_amps:g}A, {charger_power_kw(b):.1f} kW]"
        lines.append(line)
    for child in children_of(survey, panel.id):
        lines.extend(_panel_lines(survey, child, reports, depth + 1))
    return lines


def format_survey_text(survey: Survey, report: Optional[ComplianceReport] = None) -> str:
    report = report or analyze_survey(survey)
    reports = {r.panel_id: r for r in report.panels}
    site = survey.site_info

    lines = [RULE, "EV CHARGING SITE SURVEY", RULE]
    for label, value in (
        ("Customer", site.customer_name),
        ("Address", ", ".join(p for p in (site.address, site.city, site.state, site.zip) if p)),
        ("Survey date", site.survey_date),
        ("Technician", site.technician_name),
    ):
        if value:
            lines.append(f"{label}: {value}")

    for s, sr in zip(survey.services, report.services):
        lines += ["", SUBRULE, f"SERVICE: {sr.service_name}", SUBRULE]
        lines.append(f"Utility: {s.utility_provider or '--'}  Meter: {s.meter_number or '--'}")
        lines.append(f"{s.service_voltage} {s.service_phase}-phase {_amps(s.service_amperage)} ({s.condition})")
        pct = f"{sr.capacity_used_pct:g}%" if sr.capacity_used_pct is not None else "--"
        lines.append(f"Rating {_amps(sr.rating_amps)}  load {_amps(sr.total_load_amps)}  capacity used {pct}")
        lines.append(f"NEC demand {sr.demand.total_demand:g}A  peak {sr.peak.total_kw:g} kW")
        lines.append("")
        for root in root_panels(survey, s.id):
            lines.extend(_panel_lines(survey, root, reports, 0))

    if not survey.services:
        for root in root_panels(survey):
            lines.extend(_panel_lines(survey, root, reports, 0))

    lines += ["", SUBRULE, "FINDINGS", SUBRULE]
    if not report.findings:
        lines.append("None.")
    for f in report.findings:
        lines.append(f"[{f.severity.upper()}] {f.message}")
    if site.notes:
        lines += ["", "NOTES", site.notes]
    return "\n".join(lines) + "\n"
