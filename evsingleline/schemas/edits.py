"""
Edit commands accepted by the distribution tree model.

One command turns snapshot S into snapshot S'. `changes`/`fields` dicts may
use either camelCase JSON keys or Python field names.
"""
from __future__ import annotations

from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import Field, field_validator

from evsingleline.schemas.survey import BreakerKind, SurveyModel, normalize_voltage_system


class AddServiceEdit(SurveyModel):
    op: Literal["add_service"] = "add_service"
    fields: Dict[str, Any] = Field(default_factory=dict)


class RemoveServiceEdit(SurveyModel):
    op: Literal["remove_service"] = "remove_service"
    service_id: str


class AddPanelEdit(SurveyModel):
    op: Literal["add_panel"] = "add_panel"
    parent_id: Optional[str] = None
    service_id: Optional[str] = None
    feed_amps: Optional[float] = Field(None, ge=0)
    fields: Dict[str, Any] = Field(default_factory=dict)


class RemovePanelEdit(SurveyModel):
    op: Literal["remove_panel"] = "remove_panel"
    panel_id: str


class UpdatePanelEdit(SurveyModel):
    op: Literal["update_panel"] = "update_panel"
    panel_id: str
    changes: Dict[str, Any]


class AddBreakerEdit(SurveyModel):
    op: Literal["add_breaker"] = "add_breaker"
    panel_id: str
    breaker_type: BreakerKind = "load"
    fields: Dict[str, Any] = Field(default_factory=dict)


class AddEvChargerEdit(SurveyModel):
    op: Literal["add_ev_charger"] = "add_ev_charger"
    panel_id: str
    profile_id: Optional[str] = None
    fields: Dict[str, Any] = Field(default_factory=dict)


class UpdateBreakerEdit(SurveyModel):
    op: Literal["update_breaker"] = "update_breaker"
    panel_id: str
    breaker_id: str
    changes: Dict[str, Any]


class RemoveBreakerEdit(SurveyModel):
    op: Literal["remove_breaker"] = "remove_breaker"
    panel_id: str
    breaker_id: str


class SetTransformerEdit(SurveyModel):
    """`secondary_voltage=None` removes the transformer."""
    op: Literal["set_transformer"] = "set_transformer"
    panel_id: str
    kva: float = Field(0, ge=0)
    primary_voltage: Optional[str] = None
    secondary_voltage: Optional[str] = None

    @field_validator("primary_voltage", "secondary_voltage", mode="before")
    @classmethod
    def _norm_voltage(cls, v):
        return normalize_voltage_system(v)


Edit = Annotated[
    Union[
        AddServiceEdit,
        RemoveServiceEdit,
        AddPanelEdit,
        RemovePanelEdit,
        UpdatePanelEdit,
        AddBreakerEdit,
        AddEvChargerEdit,
        UpdateBreakerEdit,
        RemoveBreakerEdit,
        SetTransformerEdit,
    ],
    Field(discriminator="op"),
]
