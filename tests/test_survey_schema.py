"""
Tests for the survey snapshot schema: normalization of form input, the
breaker tagged union and the structural link invariants.
"""
import pytest
from pydantic import ValidationError

from evsingleline.electrical.tree import SurveyEditor, counter_ids
from evsingleline.schemas.survey import (
    EvChargerBreaker,
    LoadBreaker,
    Panel,
    ServiceEntrance,
    SubpanelBreaker,
    Survey,
    Transformer,
    normalize_voltage_system,
)


# ============================================================================
# Helper Functions
# ============================================================================

def make_survey(voltage: str = "120/240V", service_amps: float = 200, **mdp) -> Survey:
    """One service `svc1` owning one root panel `mdp`; extra kwargs go to the MDP."""
    mdp.setdefault("panel_name", "MDP")
    return Survey(
        services=[ServiceEntrance(id="svc1", service_name="Main Service",
                                  service_voltage=voltage, service_amperage=service_amps)],
        panels=[Panel(id="mdp", service_id="svc1", **mdp)],
    )


def make_editor(survey: Survey = None, **kwargs) -> SurveyEditor:
    """Editor with deterministic ids: id1, id2, ..."""
    return SurveyEditor(survey or make_survey(**kwargs), id_factory=counter_ids("id"))


def linked_snapshot() -> dict:
    """camelCase JSON for a 277/480V MDP feeding one sub-panel."""
    return {
        "services": [{"id": "s1", "serviceVoltage": "277/480V", "serviceAmperage": 400}],
        "panels": [
            {
                "id": "mdp", "serviceId": "s1", "panelName": "MDP",
                "breakers": [
                    {"id": "f1", "type": "subpanel", "subPanelId": "sub", "amps": 100,
                     "voltage": "480", "circuitNumber": "1,3"},
                ],
            },
            {"id": "sub", "serviceId": "s1", "parentPanelId": "mdp", "feedBreakerId": "f1",
             "panelName": "EV Panel"},
        ],
    }


# ============================================================================
# Normalization
# ============================================================================

class TestVoltageSystems:
    """Voltage-system tags are a closed set reached from common notations"""

    @pytest.mark.parametrize("raw,expected", [
        ("120/240V", "120/240V"),
        ("240/120", "120/240V"),
        ("240V", "120/240V"),
        ("208Y/120V", "120/208V"),
        ("120/208", "120/208V"),
        ("480Y/277V", "277/480V"),
        ("480", "277/480V"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_voltage_system(raw) == expected

    def test_blank_is_none(self):
        assert normalize_voltage_system("  ") is None
        assert normalize_voltage_system(None) is None

    def test_unknown_voltage_rejected(self):
        with pytest.raises(ValidationError, match="Unsupported voltage system"):
            ServiceEntrance(id="s", service_voltage="600V")

    def test_phase_derived_from_voltage(self):
        assert ServiceEntrance(id="s", service_voltage="120/240V").service_phase == "single"
        assert ServiceEntrance(id="s", service_voltage="480Y/277V").service_phase == "three"


class TestFormInput:
    """Form fields arrive as strings and blanks"""

    def test_blank_numbers_become_zero(self):
        p = Panel(id="p", main_breaker_amps="", total_spaces=None, bus_rating_amps="225A")
        assert p.main_breaker_amps == 0
        assert p.total_spaces == 0
        assert p.bus_rating_amps == 225

    def test_blank_parent_is_root(self):
        """The legacy empty-string parent marks an MDP"""
        p = Panel(id="p", parent_panel_id="", feed_breaker_id="")
        assert p.is_root
        assert p.feed_breaker_id is None

    def test_breaker_voltage_stored_without_unit(self):
        assert LoadBreaker(id="b", voltage="240V").voltage == "240"
        assert LoadBreaker(id="b", voltage=208.0).voltage == "208"

    def test_circuit_number_whitespace(self):
        assert LoadBreaker(id="b", circuit_number=" 1, 3 ,").circuit_number == "1,3"

    def test_negative_amps_rejected(self):
        with pytest.raises(ValidationError):
            LoadBreaker(id="b", amps=-5)


class TestBreakerUnion:
    """Breakers are a tagged union on `type`"""

    def test_discriminated_parse(self):
        p = Panel.model_validate({
            "id": "p",
            "breakers": [
                {"id": "a", "type": "load"},
                {"id": "b", "type": "evcharger", "chargerAmps": "40"},
            ],
        })
        assert isinstance(p.breakers[0], LoadBreaker)
        assert isinstance(p.breakers[1], EvChargerBreaker)
        assert p.breakers[1].charger_amps == 40

    def test_ev_charger_is_continuous_by_default(self):
        assert EvChargerBreaker(id="e").load_type == "continuous"
        assert LoadBreaker(id="l").load_type == "noncontinuous"

    def test_legacy_dcfc_level(self):
        assert EvChargerBreaker(id="e", charger_level="Level 3 DCFC").charger_level == "Level 3"

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            Panel.model_validate({"id": "p", "breakers": [{"id": "x", "type": "motor"}]})

    def test_subpanel_requires_target(self):
        with pytest.raises(ValidationError):
            SubpanelBreaker(id="f")


# ============================================================================
# Structural invariants
# ============================================================================

class TestSnapshotLinks:
    """A snapshot handed in from outside must have consistent links"""

    def test_valid_linked_snapshot(self):
        s = Survey.model_validate(linked_snapshot())
        assert [p.id for p in s.panels] == ["mdp", "sub"]
        assert s.panels[1].feed_breaker_id == "f1"

    def test_camel_case_round_trip(self):
        s = Survey.model_validate(linked_snapshot())
        dumped = s.model_dump(by_alias=True)
        assert dumped["panels"][1]["parentPanelId"] == "mdp"
        assert dumped["panels"][0]["breakers"][0]["subPanelId"] == "sub"
        assert Survey.model_validate(dumped) == s

    def test_missing_feeder_rejected(self):
        data = linked_snapshot()
        data["panels"][0]["breakers"] = []
        with pytest.raises(ValidationError, match="must be fed by a subpanel breaker"):
            Survey.model_validate(data)

    def test_feeder_pointing_elsewhere_rejected(self):
        data = linked_snapshot()
        data["panels"][1]["feedBreakerId"] = "nope"
        with pytest.raises(ValidationError):
            Survey.model_validate(data)

    def test_dangling_subpanel_breaker_rejected(self):
        data = linked_snapshot()
        data["panels"][0]["breakers"].append(
            {"id": "f2", "type": "subpanel", "subPanelId": "ghost"}
        )
        with pytest.raises(ValidationError, match="dangling"):
            Survey.model_validate(data)

    def test_root_with_feed_breaker_rejected(self):
        data = linked_snapshot()
        data["panels"][0]["feedBreakerId"] = "f1"
        with pytest.raises(ValidationError, match="cannot have a feed breaker"):
            Survey.model_validate(data)

    def test_duplicate_ids_rejected(self):
        data = linked_snapshot()
        data["panels"][1]["id"] = "mdp"
        with pytest.raises(ValidationError, match="Duplicate panel id"):
            Survey.model_validate(data)

        data = linked_snapshot()
        data["panels"][1]["breakers"] = [{"id": "f1", "type": "load"}]
        with pytest.raises(ValidationError, match="Duplicate breaker id"):
            Survey.model_validate(data)

    def test_unknown_service_rejected(self):
        data = linked_snapshot()
        data["panels"][0]["serviceId"] = "s9"
        with pytest.raises(ValidationError, match="unknown service"):
            Survey.model_validate(data)

    def test_cross_service_child_rejected(self):
        data = linked_snapshot()
        data["services"].append({"id": "s2"})
        data["panels"][1]["serviceId"] = "s2"
        with pytest.raises(ValidationError, match="different service"):
            Survey.model_validate(data)

    def test_cycle_rejected(self):
        """Two panels feeding each other satisfy every link check but form a cycle"""
        data = {
            "panels": [
                {"id": "a", "parentPanelId": "b", "feedBreakerId": "fb",
                 "breakers": [{"id": "fa", "type": "subpanel", "subPanelId": "b"}]},
                {"id": "b", "parentPanelId": "a", "feedBreakerId": "fa",
                 "breakers": [{"id": "fb", "type": "subpanel", "subPanelId": "a"}]},
            ],
        }
        with pytest.raises(ValidationError, match="own ancestor"):
            Survey.model_validate(data)

    def test_transformer_voltages_normalized(self):
        xf = Transformer(kva="45", primary_voltage="480", secondary_voltage="208Y/120")
        assert xf.kva == 45
        assert (xf.primary_voltage, xf.secondary_voltage) == ("277/480V", "120/208V")
