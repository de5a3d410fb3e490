"""
Survey snapshot: service entrances, panels, breakers and transformers.

The snapshot is what the persistence layer reads and writes verbatim as JSON
(camelCase keys). Panels live in a flat list keyed by id; parent/feeder links
are ids, never object references.
"""
from __future__ import annotations

import re
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

VoltageSystem = Literal["120/240V", "120/208V", "277/480V"]
Condition = Literal["existing", "new"]
LoadType = Literal["continuous", "noncontinuous"]
BreakerKind = Literal["load", "subpanel", "evcharger"]


class SurveyModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


def normalize_voltage_system(raw) -> Optional[str]:
    """
    Map common notations onto the closed set of voltage-system tags.
      '120/240V', '240/120', '240V', '1PH 240'  -> '120/240V'
      '208Y/120V', '120/208', '208'             -> '120/208V'
      '480Y/277V', '277/480', '480V'            -> '277/480V'
    Blank -> None. Anything else raises ValueError.
    """
    if raw is None:
        return None
    s = str(raw).strip().upper()
    if not s:
        return None
    nums = {int(n) for n in re.findall(r"\d+", s)}
    if 480 in nums:
        return "277/480V"
    if 208 in nums:
        return "120/208V"
    if 240 in nums:
        return "120/240V"
    raise ValueError(f"Unsupported voltage system '{raw}'. Use 120/240V, 120/208V or 277/480V.")


def _blank_to_zero(v):
    if v is None:
        return 0
    if isinstance(v, str):
        s = v.strip().upper().rstrip("A").strip()
        return s or 0
    return v


class SiteInfo(SurveyModel):
    customer_name: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    survey_date: str = ""
    technician_name: str = ""
    notes: str = ""


class ServiceEntrance(SurveyModel):
    id: str
    service_name: str = ""
    utility_provider: str = ""
    service_voltage: VoltageSystem = "120/240V"
    service_phase: Optional[Literal["single", "three"]] = None
    service_amperage: float = Field(0, ge=0)
    meter_number: str = ""
    condition: Condition = "existing"

    @field_validator("service_voltage", mode="before")
    @classmethod
    def _norm_voltage(cls, v):
        return normalize_voltage_system(v) or "120/240V"

    @field_validator("service_amperage", mode="before")
    @classmethod
    def _amps(cls, v):
        return _blank_to_zero(v)

    @model_validator(mode="after")
    def _derive_phase(self):
        if self.service_phase is None:
            self.service_phase = "single" if self.service_voltage == "120/240V" else "three"
        return self


class Transformer(SurveyModel):
    kva: float = Field(0, ge=0)
    primary_voltage: VoltageSystem
    secondary_voltage: VoltageSystem

    @field_validator("kva", mode="before")
    @classmethod
    def _kva(cls, v):
        return _blank_to_zero(v)

    @field_validator("primary_voltage", "secondary_voltage", mode="before")
    @classmethod
    def _norm_voltage(cls, v):
        return normalize_voltage_system(v)


class _BreakerBase(SurveyModel):
    id: str
    circuit_number: str = ""
    label: str = ""
    amps: float = Field(0, ge=0)
    voltage: str = ""
    condition: Condition = "existing"
    load_type: LoadType = "noncontinuous"

    @field_validator("amps", mode="before")
    @classmethod
    def _amps(cls, v):
        return _blank_to_zero(v)

    @field_validator("voltage", mode="before")
    @classmethod
    def _volts(cls, v):
        if v is None:
            return ""
        s = str(v).strip().upper().rstrip("V").strip()
        if s.endswith(".0"):
            s = s[:-2]
        return s

    @field_validator("circuit_number", mode="before")
    @classmethod
    def _ckt(cls, v):
        if v is None:
            return ""
        return ",".join(tok.strip() for tok in str(v).split(",") if tok.strip())


class LoadBreaker(_BreakerBase):
    type: Literal["load"] = "load"


class SubpanelBreaker(_BreakerBase):
    type: Literal["subpanel"] = "subpanel"
    sub_panel_id: str


class EvChargerBreaker(_BreakerBase):
    type: Literal["evcharger"] = "evcharger"
    load_type: LoadType = "continuous"
    charger_level: str = ""
    charger_amps: float = Field(0, ge=0)
    charger_ports: int = Field(1, ge=1)
    profile_id: Optional[str] = None
    wire_run_feet: float = Field(0, ge=0)
    wire_size: str = ""
    conduit_type: str = ""
    install_location: str = ""

    @field_validator("charger_amps", "wire_run_feet", mode="before")
    @classmethod
    def _blank_numbers(cls, v):
        return _blank_to_zero(v)

    @field_validator("charger_ports", mode="before")
    @classmethod
    def _ports(cls, v):
        if v in (None, ""):
            return 1
        return v

    @field_validator("charger_level", mode="before")
    @classmethod
    def _level(cls, v):
        # Older surveys stored 'Level 3 DCFC'
        s = str(v or "").strip()
        return "Level 3" if s.upper().startswith("LEVEL 3") else s


Breaker = Annotated[Union[LoadBreaker, SubpanelBreaker, EvChargerBreaker], Field(discriminator="type")]

BREAKER_TYPES: Dict[str, type] = {
    "load": LoadBreaker,
    "subpanel": SubpanelBreaker,
    "evcharger": EvChargerBreaker,
}


class Panel(SurveyModel):
    id: str
    service_id: Optional[str] = None
    parent_panel_id: Optional[str] = None
    feed_breaker_id: Optional[str] = None
    panel_name: str = ""
    panel_location: str = ""
    panel_make: str = ""
    panel_model: str = ""
    main_breaker_amps: float = Field(0, ge=0)
    bus_rating_amps: float = Field(0, ge=0)
    total_spaces: int = Field(0, ge=0)
    spare_spaces: int = Field(0, ge=0)
    condition: Condition = "existing"
    transformer: Optional[Transformer] = None
    panel_voltage: Optional[VoltageSystem] = None
    breakers: List[Breaker] = Field(default_factory=list)

    @field_validator("main_breaker_amps", "bus_rating_amps", "total_spaces", "spare_spaces", mode="before")
    @classmethod
    def _blank_numbers(cls, v):
        return _blank_to_zero(v)

    @field_validator("parent_panel_id", "feed_breaker_id", "service_id", mode="before")
    @classmethod
    def _blank_ids(cls, v):
        # "" was the legacy marker for a root (MDP) panel
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return v

    @field_validator("panel_voltage", mode="before")
    @classmethod
    def _norm_voltage(cls, v):
        return normalize_voltage_system(v)

    @property
    def is_root(self) -> bool:
        return self.parent_panel_id is None

    def display_name(self, fallback: str = "Panel") -> str:
        return self.panel_name or fallback


class Survey(SurveyModel):
    version: str = "2.0.0"
    site_info: SiteInfo = Field(default_factory=SiteInfo)
    services: List[ServiceEntrance] = Field(default_factory=list)
    panels: List[Panel] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_links(self):
        """Reject snapshots whose panel/feeder links are not bidirectional or form a cycle."""
        service_ids = {s.id for s in self.services}
        if len(service_ids) != len(self.services):
            raise ValueError("Duplicate service id")

        panels: Dict[str, Panel] = {}
        for p in self.panels:
            if p.id in panels:
                raise ValueError(f"Duplicate panel id '{p.id}'")
            panels[p.id] = p

        seen_breakers: set[str] = set()
        for p in self.panels:
            for b in p.breakers:
                if b.id in seen_breakers:
                    raise ValueError(f"Duplicate breaker id '{b.id}'")
                seen_breakers.add(b.id)

        for p in self.panels:
            if p.service_id is not None and p.service_id not in service_ids:
                raise ValueError(f"Panel '{p.id}' references unknown service '{p.service_id}'")

            if p.parent_panel_id is None:
                if p.feed_breaker_id is not None:
                    raise ValueError(f"Root panel '{p.id}' cannot have a feed breaker")
                continue

            parent = panels.get(p.parent_panel_id)
            if parent is None:
                raise ValueError(f"Panel '{p.id}' references unknown parent '{p.parent_panel_id}'")
            if p.service_id is not None and parent.service_id is not None and p.service_id != parent.service_id:
                raise ValueError(f"Panel '{p.id}' belongs to a different service than its parent")
            feeder = next((b for b in parent.breakers if b.id == p.feed_breaker_id), None)
            if feeder is None or feeder.type != "subpanel" or feeder.sub_panel_id != p.id:
                raise ValueError(
                    f"Panel '{p.id}' must be fed by a subpanel breaker in '{parent.id}' that points back to it"
                )

        for p in self.panels:
            for b in p.breakers:
                if b.type != "subpanel":
                    continue
                child = panels.get(b.sub_panel_id)
                if child is None or child.parent_panel_id != p.id or child.feed_breaker_id != b.id:
                    raise ValueError(f"Subpanel breaker '{b.id}' in '{p.id}' has a dangling sub-panel link")

        for p in self.panels:
            chain = {p.id}
            cur = p
            while cur.parent_panel_id is not None:
                if cur.parent_panel_id in chain:
                    raise ValueError(f"Panel '{p.id}' is its own ancestor")
                chain.add(cur.parent_panel_id)
                cur = panels[cur.parent_panel_id]
        return self
