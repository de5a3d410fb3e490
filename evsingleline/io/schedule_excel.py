from __future__ import annotations
import logging
from pathlib import Path
from typing import Dict, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill

from evsingleline.core.settings import settings
from evsingleline.electrical.circuits import parse_circuit_numbers
from evsingleline.electrical.compliance import analyze_survey
from evsingleline.electrical.tree import find_panel
from evsingleline.electrical.units import breaker_poles, is_three_phase
from evsingleline.schemas.report import ComplianceReport, PanelReport
from evsingleline.schemas.survey import Panel, Survey

logger = logging.getLogger(__name__)

FIRST_CKT_ROW = 12
ODD_COLS  = {"ckt": "A", "desc": "B", "type": "C", "breaker": "D", "pole": "E"}
EVEN_COLS = {"pole": "G", "breaker": "H", "type": "I", "desc": "J", "ckt": "K"}

HEADER_LABELS = [
    ("A2", "B2", "VOLTAGE"),
    ("A3", "B3", "PHASE"),
    ("A4", "B4", "MAIN BUS AMPS"),
    ("A5", "B5", "MAIN CIRCUIT BREAKER"),
    ("A6", "B6", "FED FROM"),
    ("A7", "B7", "TRANSFORMER"),
    ("G2", "J2", "LOCATION"),
    ("G3", "J3", "MAKE / MODEL"),
    ("G4", "J4", "SPACES"),
    ("G5", "J5", "NEC DEMAND"),
    ("G6", "J6", "PEAK KW"),
    ("G7", "J7", "CONDITION"),
]

_BOLD = Font(bold=True)
_SEVERITY_FILL = {
    "error": PatternFill("solid", fgColor="F8CBAD"),
    "warning": PatternFill("solid", fgColor="FFE699"),
    "info": PatternFill("solid", fgColor="DDEBF7"),
}


def _row_for_circuit(ckt: int) -> int:
    return FIRST_CKT_ROW + (ckt - 1) // 2

def _sanitize_filename(s: str) -> str:
    return "".join(ch if ch not in '\\/:*?"<>|' else "_" for ch in s).replace(" ", "_")

def _sanitize_sheet_title(s: str, taken: set) -> str:
    invalid = set('[]:*?/\\')
    base = ("".join("_" if ch in invalid else ch for ch in s).strip() or "PANEL")[:31]
    title, n = base, 2
    while title.upper() in taken:
        suffix = f" ({n})"
        title = base[:31 - len(suffix)] + suffix
        n += 1
    taken.add(title.upper())
    return title

def _header_values(survey: Survey, panel: Panel, r: PanelReport) -> Dict[str, str]:
    if panel.parent_panel_id:
        parent = find_panel(survey, panel.parent_panel_id)
        feeder = next((b for b in parent.breakers if b.id == panel.feed_breaker_id), None)
        fed_from = parent.display_name()
        if feeder is not None:
            fed_from += f" CKT {feeder.circuit_number}" + (f" ({feeder.amps:g}A)" if feeder.amps else "")
    else:
        fed_from = "SERVICE"
    xf = panel.transformer
    sp = r.spaces
    return {
        "VOLTAGE": r.voltage_system,
        "PHASE": "3PH" if is_three_phase(r.voltage_system) else "1PH",
        "MAIN BUS AMPS": f"{panel.bus_rating_amps:g}A" if panel.bus_rating_amps else "",
        "MAIN CIRCUIT BREAKER": f"{panel.main_breaker_amps:g}A" if panel.main_breaker_amps else "MLO",
        "FED FROM": fed_from,
        "TRANSFORMER": f"{xf.kva:g} kVA {xf.primary_voltage} -> {xf.secondary_voltage}" if xf else "",
        "LOCATION": panel.panel_location,
        "MAKE / MODEL": " ".join(p for p in (panel.panel_make, panel.panel_model) if p),
        "SPACES": f"{sp.spaces_used} used + {sp.spare_spaces} spare / {sp.total_spaces}",
        "NEC DEMAND": f"{r.demand.total_demand:g}A",
        "PEAK KW": f"{r.peak.total_kw:g}",
        "CONDITION": panel.condition.upper(),
    }

def _write_panel_sheet(ws, survey: Survey, panel: Panel, r: PanelReport):
    ws["A1"].value = panel.display_name().upper()
    ws["A1"].font = Font(bold=True, size=14)
    ws.merge_cells("A1:K1")

    values = _header_values(survey, panel, r)
    for name_cell, value_cell, label in HEADER_LABELS:
        ws[name_cell].value = label
        ws[name_cell].font = _BOLD
        ws[value_cell].value = values.get(label, "")

    for cols in (ODD_COLS, EVEN_COLS):
        for key, col in cols.items():
            ws[f"{col}{FIRST_CKT_ROW - 1}"].value = key.upper()
            ws[f"{col}{FIRST_CKT_ROW - 1}"].font = _BOLD

    unnumbered = []
    last_row = FIRST_CKT_ROW + max(r.spaces.total_spaces, 2) // 2 - 1
    for b in panel.breakers:
        ckts = parse_circuit_numbers(b.circuit_number)
        if not ckts:
            unnumbered.append(b)
            continue
        first = ckts[0]
        cols = ODD_COLS if first % 2 else EVEN_COLS
        row = _row_for_circuit(first)
        poles = breaker_poles(b)
        ws[f"{cols['ckt']}{row}"].value = b.circuit_number
        ws[f"{cols['desc']}{row}"].value = b.label or b.type.upper()
        ws[f"{cols['type']}{row}"].value = b.type.upper()
        ws[f"{cols['breaker']}{row}"].value = float(b.amps)
        ws[f"{cols['pole']}{row}"].value = int(poles)
        last_row = max(last_row, row)

        # continuation rows for the remaining poles on the same side
        for other in ckts[1:]:
            if other % 2 != first % 2:
                continue
            cont = _row_for_circuit(other)
            for key in ("desc", "type", "breaker", "pole"):
                ws[f"{cols[key]}{cont}"].value = "-"
            last_row = max(last_row, cont)

    row = last_row + 2
    if unnumbered:
        ws[f"A{row}"].value = "UNNUMBERED"
        ws[f"A{row}"].font = _BOLD
        for b in unnumbered:
            row += 1
            ws[f"B{row}"].value = b.label or b.type.upper()
            ws[f"C{row}"].value = b.type.upper()
            ws[f"D{row}"].value = float(b.amps)
            ws[f"E{row}"].value = breaker_poles(b)
        row += 2

    ws[f"A{row}"].value = "CONTINUOUS"
    ws[f"B{row}"].value = r.demand.continuous
    ws[f"A{row + 1}"].value = "NON-CONTINUOUS"
    ws[f"B{row + 1}"].value = r.demand.non_continuous
    ws[f"A{row + 2}"].value = "TOTAL DEMAND"
    ws[f"B{row + 2}"].value = r.demand.total_demand
    ws[f"A{row + 2}"].font = _BOLD

    ws.column_dimensions["B"].width = 28
    ws.column_dimensions["J"].width = 28

def _write_summary_sheet(ws, survey: Survey, report: ComplianceReport):
    ws["A1"].value = (survey.site_info.customer_name or "EV CHARGING SURVEY").upper()
    ws["A1"].font = Font(bold=True, size=14)
    ws["A2"].value = ", ".join(p for p in (survey.site_info.address, survey.site_info.city,
                                           survey.site_info.state) if p)

    headers = ["SERVICE", "RATING (A)", "LOAD (A)", "CAPACITY %", "NEC DEMAND (A)", "PEAK KW"]
    for i, h in enumerate(headers, start=1):
        ws.cell(row=4, column=i, value=h).font = _BOLD
    row = 5
    for s in report.services:
        ws.cell(row=row, column=1, value=s.service_name)
        ws.cell(row=row, column=2, value=s.rating_amps)
        ws.cell(row=row, column=3, value=s.total_load_amps)
        ws.cell(row=row, column=4, value=s.capacity_used_pct)
        ws.cell(row=row, column=5, value=s.demand.total_demand)
        ws.cell(row=row, column=6, value=s.peak.total_kw)
        row += 1
    ws.cell(row=row, column=1, value="TOTAL").font = _BOLD
    ws.cell(row=row, column=5, value=report.demand.total_demand)
    ws.cell(row=row, column=6, value=report.peak.total_kw)
    ws.column_dimensions["A"].width = 28

def _write_findings_sheet(ws, survey: Survey, report: ComplianceReport):
    names = {p.id: p.display_name() for p in survey.panels}
    for i, h in enumerate(["SEVERITY", "CODE", "PANEL", "MESSAGE"], start=1):
        ws.cell(row=1, column=i, value=h).font = _BOLD
    for row, f in enumerate(report.findings, start=2):
        ws.cell(row=row, column=1, value=f.severity.upper()).fill = _SEVERITY_FILL[f.severity]
        ws.cell(row=row, column=2, value=f.code)
        ws.cell(row=row, column=3, value=names.get(f.panel_id, ""))
        msg = ws.cell(row=row, column=4, value=f.message)
        msg.alignment = Alignment(wrap_text=True)
    ws.column_dimensions["B"].width = 26
    ws.column_dimensions["C"].width = 20
    ws.column_dimensions["D"].width = 90

def write_schedule_workbook(
    survey: Survey,
    out_path: Optional[str] = None,
    outputs_dir: Optional[Path] = None,
) -> Path:
    """
    Workbook with a SUMMARY sheet, one circuit schedule sheet per panel and a
    FINDINGS sheet. Without `out_path` the file lands in `outputs_dir`
    (default settings.OUT) as schedule_<customer>.xlsx.
    """
    report = analyze_survey(survey)
    wb = Workbook()
    summary = wb.active
    summary.title = "SUMMARY"
    _write_summary_sheet(summary, survey, report)

    taken = {"SUMMARY", "FINDINGS"}
    for panel, r in zip(survey.panels, report.panels):
        ws = wb.create_sheet(_sanitize_sheet_title(panel.display_name(), taken))
        _write_panel_sheet(ws, survey, panel, r)

    _write_findings_sheet(wb.create_sheet("FINDINGS"), survey, report)

    # --- File naming ---
    if out_path is not None:
        out_p = Path(out_path)
    else:
        outputs_dir = Path(outputs_dir or settings.OUT)
        customer = _sanitize_filename(survey.site_info.customer_name.strip() or "survey")
        out_p = outputs_dir / f"schedule_{customer}.xlsx"
    out_p.parent.mkdir(parents=True, exist_ok=True)

    wb.save(out_p)
    logger.info(f"Schedule workbook written: {out_p} ({len(survey.panels)} panel sheet(s))")
    return out_p
