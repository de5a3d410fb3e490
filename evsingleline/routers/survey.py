from __future__ import annotations
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse, PlainTextResponse
from pydantic import Field, TypeAdapter, ValidationError
from pathlib import Path
import uuid
import logging

logger = logging.getLogger(__name__)

# --- Internal project imports ---
from evsingleline.core.errors import EntityNotFoundError, InvalidEditError, StructuralEditError
from evsingleline.core.settings import settings
from evsingleline.schemas.survey import BreakerKind, Survey, SurveyModel
from evsingleline.schemas.edits import Edit
from evsingleline.electrical.tree import SurveyEditor, find_panel
from evsingleline.electrical.circuits import next_circuit_number
from evsingleline.electrical.compliance import analyze_survey
from evsingleline.electrical.profiles import CHARGER_PROFILES
from evsingleline.electrical.units import poles_for
from evsingleline.cad.layout import build_layout
from evsingleline.cad.one_line import generate_one_line_dxf
from evsingleline.io.schedule_excel import write_schedule_workbook
from evsingleline.io.survey_text import format_survey_text

# --- FastAPI Router Setup ---
router = APIRouter(prefix="/survey", tags=["survey"])

_EDIT = TypeAdapter(Edit)
_EDIT_LIST = TypeAdapter(List[Edit])


# -------------------------------------------------------------------
# MODELS
# -------------------------------------------------------------------
class EditRequest(SurveyModel):
    """
    Body for /survey/edit:
      { "survey": {...snapshot...}, "edit": {"op": "add_panel", "parentId": "p1"} }
    or a batch, applied in order:
      { "survey": {...}, "edits": [ {...}, {...} ] }
    """
    survey: Dict[str, Any]
    edit: Optional[Dict[str, Any]] = None
    edits: List[Dict[str, Any]] = Field(default_factory=list)


class NextCircuitRequest(SurveyModel):
    survey: Dict[str, Any]
    panel_id: str
    poles: Optional[int] = Field(None, ge=1, le=3)
    voltage: Optional[str] = None
    breaker_type: BreakerKind = "load"


# -------------------------------------------------------------------
# HELPERS
# -------------------------------------------------------------------
def _validation_detail(e: ValidationError):
    return e.errors(include_url=False, include_context=False, include_input=False)


def _parse_survey(raw: Dict[str, Any]) -> Survey:
    try:
        return Survey.model_validate(raw)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=_validation_detail(e))


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def _out_file(prefix: str, suffix: str) -> Path:
    out_dir = Path(settings.OUT)
    out_dir.mkdir(parents=True, exist_ok=True)
    return out_dir / f"{prefix}_{uuid.uuid4().hex[:8]}{suffix}"


# -------------------------------------------------------------------
# ENDPOINTS
# -------------------------------------------------------------------
@router.post("/validate")
def validate_survey(payload: Dict[str, Any]):
    """Structural check of a snapshot. Advisory findings are counted, never fatal."""
    survey = _parse_survey(payload)
    report = analyze_survey(survey)
    return {
        "ok": True,
        "services": len(survey.services),
        "panels": len(survey.panels),
        "errors": len(report.by_severity("error")),
        "warnings": len(report.by_severity("warning")),
    }


@router.post("/edit")
def edit_survey(payload: EditRequest):
    """Apply one edit (or a batch) to a snapshot and return the new snapshot."""
    survey = _parse_survey(payload.survey)
    try:
        edits = _EDIT_LIST.validate_python(payload.edits)
        if payload.edit is not None:
            edits.insert(0, _EDIT.validate_python(payload.edit))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=_validation_detail(e))
    if not edits:
        raise HTTPException(status_code=400, detail="No edit given.")

    editor = SurveyEditor(survey)
    try:
        for edit in edits:
            editor.apply(edit, default_feed_amps=settings.DEFAULT_FEED_AMPS)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StructuralEditError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidEditError as e:
        raise HTTPException(status_code=422, detail=str(e))

    logger.info(f"Applied {len(edits)} edit(s): {', '.join(e.op for e in edits)}")
    return _dump(editor.survey)


@router.post("/report")
def survey_report(payload: Dict[str, Any]):
    survey = _parse_survey(payload)
    return _dump(analyze_survey(survey))


@router.post("/layout")
def survey_layout(payload: Dict[str, Any]):
    """Positioned diagram nodes/edges; `layout` is null when there is nothing to draw."""
    survey = _parse_survey(payload)
    layout = build_layout(survey)
    return {"layout": _dump(layout) if layout is not None else None}


@router.post("/circuits/next")
def next_circuit(payload: NextCircuitRequest):
    survey = _parse_survey(payload.survey)
    try:
        panel = find_panel(survey, payload.panel_id)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    poles = payload.poles or poles_for(payload.voltage, payload.breaker_type)
    return {
        "panelId": panel.id,
        "poles": poles,
        "circuitNumber": next_circuit_number(panel.breakers, poles),
    }


@router.get("/charger-profiles")
def charger_profiles():
    return [p.model_dump() for p in CHARGER_PROFILES]


@router.post("/export/one_line")
def export_one_line(payload: Dict[str, Any]):
    survey = _parse_survey(payload)
    out_path = _out_file("one_line", ".dxf")
    try:
        generate_one_line_dxf(survey, out_path)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return FileResponse(str(out_path), media_type="application/dxf", filename=out_path.name)


@router.post("/export/xlsx")
def export_xlsx(payload: Dict[str, Any]):
    survey = _parse_survey(payload)
    out_path = write_schedule_workbook(survey, out_path=str(_out_file("schedule", ".xlsx")))
    return FileResponse(
        str(out_path),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        filename=out_path.name,
    )


@router.post("/export/text", response_class=PlainTextResponse)
def export_text(payload: Dict[str, Any]):
    survey = _parse_survey(payload)
    return PlainTextResponse(format_survey_text(survey))
