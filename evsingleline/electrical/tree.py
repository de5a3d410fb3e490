"""
Distribution tree model.

Panels form a forest rooted at one or more MDP panels per service. A child
panel and the `subpanel` breaker that feeds it reference each other by id;
every operation here updates both sides inside a single edit.

`SurveyEditor` never mutates a snapshot it has handed out: each edit works on
a deep copy and swaps it in as the new current snapshot.
"""
from __future__ import annotations

import itertools
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from evsingleline.core.errors import EntityNotFoundError, InvalidEditError, StructuralEditError
from evsingleline.electrical.circuits import next_circuit_number
from evsingleline.electrical.profiles import get_profile
from evsingleline.electrical.units import (
    breaker_poles,
    charger_levels_for,
    charger_voltage_for_level,
    line_to_line_voltage,
    load_voltages_for,
    poles_for,
)
from evsingleline.schemas import edits as E
from evsingleline.schemas.survey import (
    BREAKER_TYPES,
    Breaker,
    EvChargerBreaker,
    LoadBreaker,
    Panel,
    ServiceEntrance,
    SubpanelBreaker,
    Survey,
    Transformer,
)

logger = logging.getLogger(__name__)

IdFactory = Callable[[], str]

DEFAULT_SYSTEM = "120/240V"

_PANEL_STRUCTURAL = {"id", "service_id", "parent_panel_id", "feed_breaker_id", "breakers"}
_PANEL_TRANSFORMER = {"transformer", "panel_voltage"}
_BREAKER_STRUCTURAL = {"id", "type", "sub_panel_id"}


# -- id factories ---------------------------------------------------------------
def counter_ids(prefix: str = "") -> IdFactory:
    """Monotonic ids scoped to one factory: 'p1', 'p2', ..."""
    counter = itertools.count(1)
    return lambda: f"{prefix}{next(counter)}"


def uuid_ids() -> IdFactory:
    return lambda: uuid.uuid4().hex


# -- pure reads -----------------------------------------------------------------
def find_service(survey: Survey, service_id: str) -> ServiceEntrance:
    for s in survey.services:
        if s.id == service_id:
            return s
    raise EntityNotFoundError("Service", service_id)


def find_panel(survey: Survey, panel_id: str) -> Panel:
    for p in survey.panels:
        if p.id == panel_id:
            return p
    raise EntityNotFoundError("Panel", panel_id)


def find_breaker(panel: Panel, breaker_id: str) -> Breaker:
    for b in panel.breakers:
        if b.id == breaker_id:
            return b
    raise EntityNotFoundError("Breaker", breaker_id)


def children_of(survey: Survey, panel_id: str) -> List[Panel]:
    """Direct sub-panels, in the order of their feeder breakers in the parent."""
    kids = [p for p in survey.panels if p.parent_panel_id == panel_id]
    if not kids:
        return []
    parent = find_panel(survey, panel_id)
    feeder_order = {b.id: i for i, b in enumerate(parent.breakers) if b.type == "subpanel"}
    return sorted(kids, key=lambda p: feeder_order.get(p.feed_breaker_id, len(feeder_order)))


def descendants_of(survey: Survey, panel_id: str) -> List[Panel]:
    """All panels below `panel_id`, depth-first."""
    out: List[Panel] = []
    for child in children_of(survey, panel_id):
        out.append(child)
        out.extend(descendants_of(survey, child.id))
    return out


def _root_of(survey: Survey, panel: Panel) -> Panel:
    cur = panel
    while cur.parent_panel_id is not None:
        cur = find_panel(survey, cur.parent_panel_id)
    return cur


def _owning_service_id(survey: Survey, root: Panel) -> Optional[str]:
    if root.service_id is not None:
        return root.service_id
    return survey.services[0].id if survey.services else None


def service_for(survey: Survey, panel_id: str) -> Optional[ServiceEntrance]:
    """Service that owns the tree containing `panel_id`; unowned roots belong to the first service."""
    root = _root_of(survey, find_panel(survey, panel_id))
    sid = _owning_service_id(survey, root)
    if sid is None:
        return None
    return find_service(survey, sid)


def root_panels(survey: Survey, service_id: Optional[str] = None) -> List[Panel]:
    """MDP panels. With `service_id`, only the roots that service owns."""
    roots = [p for p in survey.panels if p.is_root]
    if service_id is None:
        return roots
    return [p for p in roots if _owning_service_id(survey, p) == service_id]


def service_panels(survey: Survey, service_id: str) -> List[Panel]:
    """Every panel in the trees owned by `service_id`, roots first then depth-first."""
    out: List[Panel] = []
    for root in root_panels(survey, service_id):
        out.append(root)
        out.extend(descendants_of(survey, root.id))
    return out


def effective_voltage(survey: Survey, panel_id: str) -> str:
    """
    Voltage system on a panel's bus: its own override (set by a transformer),
    else its parent's effective voltage, else the owning service's voltage.
    """
    panel = find_panel(survey, panel_id)
    if panel.panel_voltage:
        return panel.panel_voltage
    if panel.parent_panel_id is not None:
        return effective_voltage(survey, panel.parent_panel_id)
    service = service_for(survey, panel.id)
    return service.service_voltage if service else DEFAULT_SYSTEM


def supply_voltage(survey: Survey, panel_id: str) -> str:
    """Voltage system arriving at a panel: its parent's bus, or the service for a root."""
    panel = find_panel(survey, panel_id)
    if panel.parent_panel_id is not None:
        return effective_voltage(survey, panel.parent_panel_id)
    service = service_for(survey, panel.id)
    return service.service_voltage if service else DEFAULT_SYSTEM


def _field_names(model_cls: type[BaseModel], data: Dict[str, Any]) -> Dict[str, Any]:
    """Translate camelCase keys to field names; reject keys the model does not know."""
    lookup: Dict[str, str] = {}
    for name, info in model_cls.model_fields.items():
        lookup[name] = name
        if info.alias:
            lookup[info.alias] = name
    out: Dict[str, Any] = {}
    unknown = []
    for key, value in data.items():
        if key not in lookup:
            unknown.append(key)
            continue
        out[lookup[key]] = value
    if unknown:
        raise InvalidEditError(f"Unknown {model_cls.__name__} field(s): {', '.join(sorted(unknown))}")
    return out


def _validate(model_cls, data: Dict[str, Any]):
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise InvalidEditError(str(e)) from e


# -- editor ---------------------------------------------------------------------
class SurveyEditor:
    """
    Applies edits to a survey snapshot.

        editor = SurveyEditor(survey, id_factory=counter_ids("id-"))
        sub = editor.add_panel(parent_id=mdp.id, panel_name="EV Panel")
        editor.survey   # new snapshot; `survey` is unchanged
    """

    def __init__(self, survey: Optional[Survey] = None, id_factory: Optional[IdFactory] = None):
        self._survey = survey if survey is not None else Survey()
        self._new_id = id_factory or uuid_ids()

    @property
    def survey(self) -> Survey:
        return self._survey

    def _begin(self) -> Survey:
        return self._survey.model_copy(deep=True)

    def _commit(self, draft: Survey) -> Survey:
        self._survey = draft
        return draft

    # ---- services ----
    def add_service(self, **fields) -> ServiceEntrance:
        """Add an independent service together with its root (MDP) panel."""
        fields = _field_names(ServiceEntrance, fields)
        fields.pop("id", None)
        draft = self._begin()
        service = _validate(ServiceEntrance, {**fields, "id": self._new_id()})
        draft.services.append(service)
        mdp = Panel(id=self._new_id(), service_id=service.id, panel_name="MDP")
        draft.panels.append(mdp)
        self._commit(draft)
        logger.info(f"Added service {service.id} with root panel {mdp.id}")
        return service

    def remove_service(self, service_id: str) -> Survey:
        """Remove a service and every panel it owns. The last service is kept."""
        draft = self._begin()
        find_service(draft, service_id)
        if len(draft.services) <= 1:
            logger.info(f"Refusing to remove last service {service_id}")
            return self._survey
        doomed = {p.id for p in service_panels(draft, service_id)}
        draft.services = [s for s in draft.services if s.id != service_id]
        draft.panels = [p for p in draft.panels if p.id not in doomed]
        logger.info(f"Removed service {service_id} and {len(doomed)} panel(s)")
        return self._commit(draft)

    # ---- panels ----
    def add_panel(
        self,
        parent_id: Optional[str] = None,
        service_id: Optional[str] = None,
        feed_amps: float = 0.0,
        feeder_fields: Optional[Dict[str, Any]] = None,
        **fields,
    ) -> Panel:
        """
        Create a panel. With `parent_id`, also create the `subpanel` breaker
        that feeds it in the parent (auto-numbered unless `feeder_fields`
        carries a circuit number) and link both sides.
        """
        fields = _field_names(Panel, fields)
        blocked = (_PANEL_STRUCTURAL | _PANEL_TRANSFORMER) & fields.keys()
        if blocked:
            raise StructuralEditError(f"Cannot set {', '.join(sorted(blocked))} when adding a panel")
        feeder_fields = _field_names(SubpanelBreaker, feeder_fields or {})
        blocked = _BREAKER_STRUCTURAL & feeder_fields.keys()
        if blocked:
            raise StructuralEditError(f"Cannot set {', '.join(sorted(blocked))} on a feeder breaker")
        if feeder_fields and parent_id is None:
            raise InvalidEditError("A root panel has no feeder breaker")
        draft = self._begin()

        if parent_id is None:
            sid = service_id
            if sid is None and draft.services:
                sid = draft.services[0].id
            if sid is not None:
                find_service(draft, sid)
            panel = _validate(Panel, {**fields, "id": self._new_id(), "service_id": sid})
            draft.panels.append(panel)
            self._commit(draft)
            logger.info(f"Added root panel {panel.id} to service {sid}")
            return panel

        parent = find_panel(draft, parent_id)
        panel_id = self._new_id()
        feeder_id = self._new_id()
        volts = line_to_line_voltage(effective_voltage(draft, parent.id))
        volts_s = str(volts) if volts else ""
        panel = _validate(Panel, {
            **fields,
            "id": panel_id,
            "service_id": parent.service_id,
            "parent_panel_id": parent.id,
            "feed_breaker_id": feeder_id,
        })
        feeder = _validate(SubpanelBreaker, {
            "label": panel.panel_name or "Sub Panel",
            "amps": feed_amps,
            "voltage": volts_s,
            "condition": panel.condition,
            **feeder_fields,
            "id": feeder_id,
            "sub_panel_id": panel.id,
        })
        if not feeder.circuit_number:
            feeder.circuit_number = next_circuit_number(parent.breakers, breaker_poles(feeder))
        parent.breakers.append(feeder)
        draft.panels.append(panel)
        self._commit(draft)
        logger.info(f"Added sub-panel {panel.id} under {parent.id} on circuit {feeder.circuit_number}")
        return panel

    def remove_panel(self, panel_id: str) -> Survey:
        """
        Remove a panel, all of its descendants and its feeder breaker.
        Removing the last root panel of a service is a silent no-op.
        """
        draft = self._begin()
        panel = find_panel(draft, panel_id)
        if panel.is_root:
            sid = _owning_service_id(draft, panel)
            if len(root_panels(draft, sid)) <= 1:
                logger.info(f"Ignoring removal of last root panel {panel_id}")
                return self._survey

        doomed = {panel.id} | {d.id for d in descendants_of(draft, panel.id)}
        for p in draft.panels:
            if p.id in doomed:
                continue
            p.breakers = [b for b in p.breakers if not (b.type == "subpanel" and b.sub_panel_id in doomed)]
        draft.panels = [p for p in draft.panels if p.id not in doomed]
        logger.info(f"Removed panel {panel_id}")
        logger.debug(f"Cascade removed panels: {sorted(doomed)}")
        return self._commit(draft)

    def update_panel(self, panel_id: str, **changes) -> Panel:
        """Replace panel fields. A new name is mirrored onto the feeder breaker label."""
        changes = _field_names(Panel, changes)
        blocked = _PANEL_STRUCTURAL & changes.keys()
        if blocked:
            raise StructuralEditError(f"Cannot change {', '.join(sorted(blocked))} of panel {panel_id}")
        if _PANEL_TRANSFORMER & changes.keys():
            raise StructuralEditError("Use set_transformer to change a panel's transformer or voltage")

        draft = self._begin()
        current = find_panel(draft, panel_id)
        updated = _validate(Panel, {**current.model_dump(), **changes})
        draft.panels[draft.panels.index(current)] = updated

        if "panel_name" in changes and updated.feed_breaker_id and updated.parent_panel_id:
            parent = find_panel(draft, updated.parent_panel_id)
            feeder = find_breaker(parent, updated.feed_breaker_id)
            feeder.label = updated.panel_name

        self._commit(draft)
        logger.info(f"Updated panel {panel_id}: {', '.join(sorted(changes))}")
        return updated

    def set_transformer(self, panel_id: str, transformer: Optional[Transformer]) -> Panel:
        """
        Attach a transformer (the panel's bus becomes its secondary) or, with
        None, remove it so the panel inherits its parent's voltage again.
        """
        draft = self._begin()
        panel = find_panel(draft, panel_id)
        if transformer is None:
            panel.transformer = None
            panel.panel_voltage = None
        else:
            panel.transformer = transformer.model_copy()
            panel.panel_voltage = transformer.secondary_voltage
        self._commit(draft)
        logger.info(f"Transformer on panel {panel_id}: {panel.transformer}")
        return panel

    def step_down(
        self,
        panel_id: str,
        secondary_voltage: Optional[str],
        kva: float = 0.0,
        primary_voltage: Optional[str] = None,
    ) -> Panel:
        """
        Choose a panel's voltage system. Picking the supply voltage (or None)
        removes the transformer; anything else installs one fed at the supply
        voltage.
        """
        supply = primary_voltage or supply_voltage(self._survey, panel_id)
        if not secondary_voltage or secondary_voltage == supply:
            return self.set_transformer(panel_id, None)
        xfmr = _validate(Transformer, {
            "kva": kva,
            "primary_voltage": supply,
            "secondary_voltage": secondary_voltage,
        })
        return self.set_transformer(panel_id, xfmr)

    # ---- breakers ----
    def add_breaker(self, panel_id: str, type: str = "load", **fields) -> Breaker:
        """Add a breaker with the next free circuit number(s)."""
        if type == "subpanel":
            fields = _field_names(SubpanelBreaker, fields)
            fields.pop("id", None)
            fields.pop("type", None)
            label = fields.pop("label", "") or ""
            amps = fields.pop("amps", 0) or 0
            child = self.add_panel(parent_id=panel_id, feed_amps=amps, feeder_fields=fields,
                                   **({"panel_name": label} if label else {}))
            return find_breaker(find_panel(self._survey, panel_id), child.feed_breaker_id)
        if type == "evcharger":
            return self.add_ev_charger(panel_id, **fields)
        if type != "load":
            raise InvalidEditError(f"Unknown breaker type '{type}'")

        fields = _field_names(LoadBreaker, fields)
        fields.pop("id", None)
        fields.pop("type", None)
        draft = self._begin()
        panel = find_panel(draft, panel_id)
        if not fields.get("voltage"):
            fields["voltage"] = load_voltages_for(effective_voltage(draft, panel.id))[0]
        breaker = _validate(LoadBreaker, {**fields, "id": self._new_id()})
        self._place_breaker(panel, breaker)
        self._commit(draft)
        logger.info(f"Added {breaker.type} breaker {breaker.id} to panel {panel_id} on {breaker.circuit_number}")
        return breaker

    def add_ev_charger(self, panel_id: str, profile_id: Optional[str] = None, **fields) -> EvChargerBreaker:
        """
        Add an EV charger breaker. A catalog profile pre-fills level, input
        amps, ports, breaker size and conductor; explicit fields win.
        """
        fields = _field_names(EvChargerBreaker, fields)
        fields.pop("id", None)
        fields.pop("type", None)
        profile = get_profile(profile_id)
        if profile_id and profile is None:
            raise EntityNotFoundError("Charger profile", profile_id)

        draft = self._begin()
        panel = find_panel(draft, panel_id)
        system = effective_voltage(draft, panel.id)

        data: Dict[str, Any] = {}
        if profile:
            data.update(
                label=profile.name,
                charger_level=profile.charger_level,
                charger_amps=profile.charger_amps,
                charger_ports=profile.charger_ports,
                amps=profile.recommended_breaker,
                profile_id=profile.id,
                wire_size=profile.recommended_conductor or "",
            )
        data.update(fields)
        data["charger_level"] = data.get("charger_level") or charger_levels_for(system)[-1]
        if not data.get("voltage"):
            data["voltage"] = charger_voltage_for_level(data["charger_level"], system)

        breaker = _validate(EvChargerBreaker, {**data, "id": self._new_id()})
        self._place_breaker(panel, breaker)
        self._commit(draft)
        logger.info(
            f"Added EV charger {breaker.id} ({breaker.charger_level}, {breaker.charger_amps:g}A) "
            f"to panel {panel_id} on {breaker.circuit_number}"
        )
        return breaker

    @staticmethod
    def _place_breaker(panel: Panel, breaker: Breaker) -> None:
        if not breaker.circuit_number:
            breaker.circuit_number = next_circuit_number(panel.breakers, breaker_poles(breaker))
        panel.breakers.append(breaker)

    def update_breaker(self, panel_id: str, breaker_id: str, **changes) -> Breaker:
        draft = self._begin()
        panel = find_panel(draft, panel_id)
        current = find_breaker(panel, breaker_id)
        model_cls = BREAKER_TYPES[current.type]
        changes = _field_names(model_cls, changes)
        blocked = _BREAKER_STRUCTURAL & changes.keys()
        if blocked:
            raise StructuralEditError(f"Cannot change {', '.join(sorted(blocked))} of breaker {breaker_id}")

        if current.type == "evcharger" and "charger_level" in changes and "voltage" not in changes:
            auto = charger_voltage_for_level(changes["charger_level"], effective_voltage(draft, panel.id))
            if auto:
                changes["voltage"] = auto

        updated = _validate(model_cls, {**current.model_dump(), **changes})
        panel.breakers[panel.breakers.index(current)] = updated
        self._commit(draft)
        logger.info(f"Updated breaker {breaker_id} in panel {panel_id}: {', '.join(sorted(changes))}")
        return updated

    def remove_breaker(self, panel_id: str, breaker_id: str) -> Survey:
        """Remove a breaker. A `subpanel` breaker takes its whole sub-panel tree with it."""
        breaker = find_breaker(find_panel(self._survey, panel_id), breaker_id)
        if breaker.type == "subpanel":
            return self.remove_panel(breaker.sub_panel_id)
        draft = self._begin()
        panel = find_panel(draft, panel_id)
        panel.breakers = [b for b in panel.breakers if b.id != breaker_id]
        logger.info(f"Removed breaker {breaker_id} from panel {panel_id}")
        return self._commit(draft)

    # ---- commands ----
    def apply(self, edit: E.Edit, default_feed_amps: float = 0.0) -> Survey:
        """Run one edit command and return the resulting snapshot."""
        if isinstance(edit, E.AddServiceEdit):
            self.add_service(**edit.fields)
        elif isinstance(edit, E.RemoveServiceEdit):
            self.remove_service(edit.service_id)
        elif isinstance(edit, E.AddPanelEdit):
            feed = edit.feed_amps if edit.feed_amps is not None else default_feed_amps
            self.add_panel(parent_id=edit.parent_id, service_id=edit.service_id, feed_amps=feed, **edit.fields)
        elif isinstance(edit, E.RemovePanelEdit):
            self.remove_panel(edit.panel_id)
        elif isinstance(edit, E.UpdatePanelEdit):
            self.update_panel(edit.panel_id, **edit.changes)
        elif isinstance(edit, E.AddBreakerEdit):
            self.add_breaker(edit.panel_id, type=edit.breaker_type, **edit.fields)
        elif isinstance(edit, E.AddEvChargerEdit):
            self.add_ev_charger(edit.panel_id, profile_id=edit.profile_id, **edit.fields)
        elif isinstance(edit, E.UpdateBreakerEdit):
            self.update_breaker(edit.panel_id, edit.breaker_id, **edit.changes)
        elif isinstance(edit, E.RemoveBreakerEdit):
            self.remove_breaker(edit.panel_id, edit.breaker_id)
        elif isinstance(edit, E.SetTransformerEdit):
            self.step_down(edit.panel_id, edit.secondary_voltage, kva=edit.kva,
                           primary_voltage=edit.primary_voltage)
        else:
            raise InvalidEditError(f"Unsupported edit: {edit!r}")
        return self._survey
