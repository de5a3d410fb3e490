"""
Code-compliance calculator: spaces, load, feeders, transformers, NEC 625.40
EV sizing, NEC demand, peak kW and service capacity.
"""
import math

import pytest

from evsingleline.electrical.compliance import (
    analyze_survey,
    ev_breaker_sizing,
    feeder_alignment,
    nec_demand,
    panel_load,
    panel_load_findings,
    peak_kw,
    service_rating,
    space_accounting,
    space_findings,
    transformer_capacity,
)
from evsingleline.electrical.tree import find_panel
from evsingleline.schemas.survey import (
    EvChargerBreaker,
    LoadBreaker,
    Panel,
    SubpanelBreaker,
    Transformer,
)
from tests.test_survey_schema import make_editor, make_survey


def load(amps, voltage="120", continuous=False, id=None):
    return LoadBreaker(id=id or f"l{amps}-{voltage}", amps=amps, voltage=voltage,
                       load_type="continuous" if continuous else "noncontinuous")


def ev(amps, charger_amps, voltage="240", level="Level 2", id="ev1"):
    return EvChargerBreaker(id=id, amps=amps, voltage=voltage, charger_amps=charger_amps,
                            charger_level=level, label="Bay 1")


def codes(findings):
    return [f.code for f in findings]


# ============================================================================
# Spaces
# ============================================================================

class TestSpaceAccounting:

    def test_poles_are_summed(self):
        p = Panel(id="p", total_spaces=12, spare_spaces=2,
                  breakers=[load(20), load(30, "240", id="dryer"), ev(125, 81, "480", "Level 3")])
        sp = space_accounting(p)
        assert sp.spaces_used == 1 + 2 + 3
        assert sp.accounted == 8
        assert sp.unaccounted == 4

    def test_feeder_counts_in_parent(self):
        p = Panel(id="p", breakers=[SubpanelBreaker(id="f", sub_panel_id="c", voltage="240")])
        assert space_accounting(p).spaces_used == 2

    def test_over_accounted_is_error(self):
        p = Panel(id="p", panel_name="LP-1", total_spaces=4, spare_spaces=2,
                  breakers=[load(30, "240", id="a"), load(20, id="b")])
        [f] = space_findings(p)
        assert (f.severity, f.code, f.shortfall) == ("error", "SPACES_EXCEEDED", 1)
        assert "exceeds available spaces by 1" in f.message

    def test_under_accounted_is_info(self):
        p = Panel(id="p", total_spaces=4, breakers=[load(20)])
        [f] = space_findings(p)
        assert (f.severity, f.code, f.shortfall) == ("info", "SPACES_UNACCOUNTED", 3)
        assert "3 spaces unaccounted" in f.message

    def test_exact_or_unknown_size_is_silent(self):
        assert space_findings(Panel(id="p", total_spaces=2, breakers=[load(30, "240")])) == []
        assert space_findings(Panel(id="p", breakers=[load(30, "240")])) == []


# ============================================================================
# Load and feeders
# ============================================================================

class TestPanelLoad:

    def test_feed_through_separate(self):
        p = Panel(id="p", main_breaker_amps=100,
                  breakers=[load(20), ev(50, 40), SubpanelBreaker(id="f", sub_panel_id="c", amps=60)])
        pl = panel_load(p)
        assert (pl.load_amps, pl.feed_through_amps, pl.total_amps) == (70, 60, 130)
        [f] = panel_load_findings(p, pl)
        assert f.code == "PANEL_OVERLOAD"
        assert f.shortfall == 30

    def test_within_main(self):
        p = Panel(id="p", main_breaker_amps=100, breakers=[load(20)])
        assert panel_load_findings(p) == []

    def test_no_main_no_check(self):
        p = Panel(id="p", breakers=[load(200)])
        assert panel_load_findings(p) == []


class TestFeederAlignment:

    def _sub(self, feed_amps, voltage="120/240V", **child):
        ed = make_editor(voltage=voltage)
        sub = ed.add_panel(parent_id="mdp", feed_amps=feed_amps, panel_name="Sub", **child)
        return ed, sub

    def test_feeder_below_child_main(self):
        ed, sub = self._sub(60, main_breaker_amps=100)
        found = feeder_alignment(ed.survey, find_panel(ed.survey, sub.id))
        assert codes(found) == ["FEEDER_BELOW_MAIN"]
        assert found[0].shortfall == 40
        assert "Sub" in found[0].message and "MDP" in found[0].message

    def test_feeder_below_child_load(self):
        ed, sub = self._sub(40)
        ed.add_breaker(sub.id, amps=30)
        ed.add_breaker(sub.id, amps=20)
        found = feeder_alignment(ed.survey, find_panel(ed.survey, sub.id))
        assert codes(found) == ["FEEDER_BELOW_LOAD"]
        assert found[0].shortfall == 10

    def test_feeder_below_transformer_primary(self):
        ed, sub = self._sub(50, voltage="277/480V")
        ed.step_down(sub.id, "120/208V", kva=45)
        [f] = feeder_alignment(ed.survey, find_panel(ed.survey, sub.id))
        assert f.code == "FEEDER_BELOW_XFMR_PRIMARY"
        assert f.shortfall == pytest.approx(45000 / (480 * math.sqrt(3)) - 50, abs=0.01)

    def test_unrated_feeder_is_info(self):
        ed, sub = self._sub(0, main_breaker_amps=100)
        [f] = feeder_alignment(ed.survey, find_panel(ed.survey, sub.id))
        assert (f.severity, f.code) == ("info", "FEEDER_UNRATED")

    def test_aligned_feeder(self):
        ed, sub = self._sub(100, main_breaker_amps=100)
        assert feeder_alignment(ed.survey, find_panel(ed.survey, sub.id)) == []

    def test_root_has_no_feeder(self):
        survey = make_survey()
        assert feeder_alignment(survey, survey.panels[0]) == []


class TestTransformerCapacity:

    def _panel(self, main=0, loads=()):
        return Panel(id="x", panel_name="XP", main_breaker_amps=main, breakers=list(loads),
                     transformer=Transformer(kva=45, primary_voltage="277/480V", secondary_voltage="120/208V"),
                     panel_voltage="120/208V")

    def test_load_over_secondary_fla(self):
        p = self._panel(loads=[load(100, "208", id="a"), load(30, "208", id="b")])
        [f] = transformer_capacity(p)
        assert f.code == "XFMR_OVERLOAD"
        assert "124.9A" in f.message
        assert f.shortfall == pytest.approx(130 - 45000 / (208 * math.sqrt(3)), abs=0.01)

    def test_main_over_secondary_fla(self):
        p = self._panel(main=150)
        assert codes(transformer_capacity(p)) == ["XFMR_MAIN_ABOVE_FLA"]

    def test_within_capacity(self):
        p = self._panel(main=120, loads=[load(100, "208")])
        assert transformer_capacity(p) == []

    def test_main_at_rounded_fla_passes(self):
        """45 kVA at 208V is 124.9A; a standard 125A main is a match"""
        assert transformer_capacity(self._panel(main=125)) == []
        [f] = transformer_capacity(self._panel(main=126))
        assert (f.code, f.shortfall) == ("XFMR_MAIN_ABOVE_FLA", 1)

    def test_feed_through_not_counted(self):
        """A large feeder breaker serves its own panel, not this secondary"""
        feeder = SubpanelBreaker(id="f", amps=125, voltage="208", sub_panel_id="child")
        p = self._panel(loads=[load(20, "208", id="a"), feeder])
        assert transformer_capacity(p) == []

    def test_zero_kva_skipped(self):
        p = Panel(id="x", transformer=Transformer(kva=0, primary_voltage="480", secondary_voltage="208"),
                  breakers=[load(500, "208")])
        assert transformer_capacity(p) == []


# ============================================================================
# EV sizing (NEC 625.40)
# ============================================================================

class TestEvBreakerSizing:

    def test_undersized_breaker_flagged(self):
        """40A continuous needs 50A; a 45A breaker is 5A short"""
        p = Panel(id="p", panel_name="EV Panel", breakers=[ev(45, 40)])
        [f] = ev_breaker_sizing(p)
        assert (f.severity, f.code, f.shortfall, f.breaker_id) == ("warning", "EV_BREAKER_UNDERSIZED", 5, "ev1")
        assert "use 50A" in f.message
        assert "Bay 1" in f.message and "EV Panel" in f.message

    def test_exact_minimum_passes(self):
        assert ev_breaker_sizing(Panel(id="p", breakers=[ev(50, 40)])) == []

    def test_suggests_next_standard_size(self):
        """33A needs 42A, which rounds up to a 45A breaker"""
        [f] = ev_breaker_sizing(Panel(id="p", breakers=[ev(40, 33)]))
        assert f.shortfall == 2
        assert "use 45A" in f.message

    def test_missing_breaker_is_info(self):
        [f] = ev_breaker_sizing(Panel(id="p", breakers=[ev(0, 40)]))
        assert (f.severity, f.code, f.shortfall) == ("info", "EV_BREAKER_UNSET", 50)

    def test_profile_and_manual_chargers_checked_alike(self):
        ed = make_editor(voltage="277/480V")
        from_profile = ed.add_ev_charger("mdp", profile_id="dc60", amps=100)
        manual = ed.add_ev_charger("mdp", charger_amps=81, amps=100)
        found = ev_breaker_sizing(find_panel(ed.survey, "mdp"))
        assert [f.breaker_id for f in found] == [from_profile.id, manual.id]
        assert {f.shortfall for f in found} == {2}


# ============================================================================
# Demand and peak
# ============================================================================

class TestNecDemand:

    def test_formula(self):
        d = nec_demand([load(80, continuous=True), load(20)])
        assert (d.continuous, d.non_continuous, d.total_demand) == (80, 20, 120)

    def test_continuous_rounded_up(self):
        assert nec_demand([load(33, continuous=True)]).total_demand == 42

    def test_ev_chargers_are_continuous(self):
        d = nec_demand([ev(50, 40), load(20)])
        assert d.total_demand == math.ceil(50 * 1.25) + 20

    def test_feeders_excluded(self):
        d = nec_demand([SubpanelBreaker(id="f", sub_panel_id="c", amps=200), load(20)])
        assert d.total_demand == 20

    def test_empty(self):
        assert nec_demand([]).total_demand == 0


class TestPeakKw:

    def test_ev_and_other(self):
        pk = peak_kw([load(20, "240"), ev(100, 81, "480", "Level 3")])
        assert pk.other_kw == pytest.approx(4.8)
        assert pk.ev_kw == pytest.approx(480 * 81 * math.sqrt(3) / 1000, abs=0.01)
        assert pk.total_kw == pytest.approx(pk.ev_kw + pk.other_kw, abs=0.01)

    def test_feeders_excluded(self):
        pk = peak_kw([SubpanelBreaker(id="f", sub_panel_id="c", amps=200, voltage="240")])
        assert pk.total_kw == 0


# ============================================================================
# Service and whole survey
# ============================================================================

class TestService:

    def test_rating_is_min_of_service_and_main(self):
        survey = make_survey(service_amps=200, main_breaker_amps=150)
        assert service_rating(survey, survey.services[0]) == 150

    def test_rating_falls_back(self):
        survey = make_survey(service_amps=200)
        assert service_rating(survey, survey.services[0]) == 200
        survey = make_survey(service_amps=0, main_breaker_amps=100)
        assert service_rating(survey, survey.services[0]) == 100

    def test_demand_over_rating_is_error(self):
        ed = make_editor(service_amps=100)
        ed.add_ev_charger("mdp", charger_amps=64, amps=80)
        report = analyze_survey(ed.survey)
        svc = report.services[0]
        assert svc.demand.total_demand == 100
        assert "DEMAND_EXCEEDS_SERVICE" not in codes(svc.findings)

        ed.add_breaker("mdp", amps=15)
        svc = analyze_survey(ed.survey).services[0]
        [err] = [f for f in svc.findings if f.code == "DEMAND_EXCEEDS_SERVICE"]
        assert err.severity == "error"
        assert err.shortfall == 15

    def test_capacity_caution(self):
        ed = make_editor(service_amps=200)
        ed.add_breaker("mdp", amps=100, voltage="240")
        ed.add_breaker("mdp", amps=70, voltage="240")
        svc = analyze_survey(ed.survey).services[0]
        assert svc.capacity_used_pct == 85
        assert codes(svc.findings) == ["CAPACITY_CAUTION"]

    def test_capacity_exceeded(self):
        ed = make_editor(service_amps=200)
        ed.add_breaker("mdp", amps=150, voltage="240")
        ed.add_breaker("mdp", amps=60, voltage="240")
        svc = analyze_survey(ed.survey).services[0]
        assert svc.capacity_used_pct == 105
        assert "CAPACITY_EXCEEDED" in codes(svc.findings)
        assert "DEMAND_EXCEEDS_SERVICE" in codes(svc.findings)

    def test_downstream_load_counts_once(self):
        ed = make_editor(service_amps=400)
        sub = ed.add_panel(parent_id="mdp", feed_amps=100)
        ed.add_breaker(sub.id, amps=40, voltage="240")
        svc = analyze_survey(ed.survey).services[0]
        assert svc.total_load_amps == 40
        assert svc.demand.total_demand == 40


class TestAnalyzeSurvey:

    def _site(self):
        ed = make_editor(voltage="277/480V", service_amps=400, main_breaker_amps=400, total_spaces=12)
        sub = ed.add_panel(parent_id="mdp", feed_amps=60, panel_name="EV Panel")
        ed.step_down(sub.id, "120/208V", kva=45)
        ed.add_ev_charger(sub.id, charger_amps=40, amps=45, label="Bay 1")
        ed.add_ev_charger("mdp", profile_id="dc60")
        return ed.survey

    def test_one_report_per_panel_and_service(self):
        report = analyze_survey(self._site())
        assert [r.panel_name for r in report.panels] == ["MDP", "EV Panel"]
        assert report.panels[1].voltage_system == "120/208V"
        assert len(report.services) == 1

    def test_findings_flattened(self):
        report = analyze_survey(self._site())
        found = codes(report.findings)
        assert "EV_BREAKER_UNDERSIZED" in found
        assert "SPACES_UNACCOUNTED" in found
        assert report.findings == [f for r in report.panels for f in r.findings] + report.services[0].findings

    def test_whole_survey_totals(self):
        report = analyze_survey(self._site())
        assert report.demand.total_demand == math.ceil((45 + 125) * 1.25)
        assert report.peak.total_kw == pytest.approx(sum(r.peak.total_kw for r in report.panels), abs=0.02)

    def test_pure(self):
        survey = self._site()
        before = survey.model_dump()
        analyze_survey(survey)
        assert survey.model_dump() == before

    def test_empty_survey(self):
        survey = make_editor().survey
        assert analyze_survey(survey).findings == []
