"""
Electrical unit conversions.

Pure helpers for voltage systems, pole counts, transformer full-load amps and
power. Nothing here reads or writes a survey; breakers are accepted duck-typed
(anything with `voltage`, `type`, `amps` and, for chargers, `charger_amps`).
"""
from __future__ import annotations

import math
from typing import Dict, List, Optional, Tuple, Union

SQRT3 = math.sqrt(3)

# tag -> (line-to-line volts, line-to-neutral volts, phases)
VOLTAGE_SYSTEMS: Dict[str, Tuple[int, int, int]] = {
    "120/240V": (240, 120, 1),
    "120/208V": (208, 120, 3),
    "277/480V": (480, 277, 3),
}

# Standard OCPD sizes per NEC 240.6(A)
STANDARD_BREAKER_SIZES: List[int] = [
    15, 20, 25, 30, 35, 40, 45, 50, 60, 70, 80, 90, 100,
    110, 125, 150, 175, 200, 225, 250, 300, 350, 400,
    450, 500, 600, 700, 800,
]

STANDARD_KVA_SIZES: List[float] = [
    15, 25, 30, 37.5, 45, 50, 75, 100, 112.5, 150, 167, 225, 300, 500,
]

EV_CONTINUOUS_FACTOR = 1.25   # NEC 625.40 / 210.20(A)

Number = Union[int, float, str, None]


def _num(v: Number) -> float:
    """Lenient float parse: '240', '240V', 240, '' and None all work."""
    if v is None:
        return 0.0
    if isinstance(v, (int, float)):
        return float(v)
    s = str(v).strip().upper().rstrip("V").strip()
    try:
        return float(s)
    except ValueError:
        return 0.0


def line_to_line_voltage(system: str) -> int:
    """'120/240V' -> 240, '120/208V' -> 208, '277/480V' -> 480; unknown -> 0."""
    return VOLTAGE_SYSTEMS.get(system, (0, 0, 0))[0]


def line_to_neutral_voltage(system: str) -> int:
    return VOLTAGE_SYSTEMS.get(system, (0, 0, 0))[1]


def is_three_phase(system: str) -> bool:
    return VOLTAGE_SYSTEMS.get(system, (0, 0, 1))[2] == 3


def transformer_fla(kva: Number, system: str) -> float:
    """
    Full-load amps of a transformer winding.
      single-phase: kVA*1000 / V
      three-phase:  kVA*1000 / (V*sqrt(3))
    Returns 0 when kVA or the line-to-line voltage is not positive.
    """
    k = _num(kva)
    v = line_to_line_voltage(system)
    if k <= 0 or v <= 0:
        return 0.0
    if is_three_phase(system):
        return k * 1000 / (v * SQRT3)
    return k * 1000 / v


def poles_for(voltage: Number, kind: str = "load") -> int:
    """
    Breaker spaces for a circuit voltage:
      120/277V -> 1 pole
      208/240/480V -> 2 poles
      480V EV charger (three-phase DCFC feed) -> 3 poles
    """
    v = int(_num(voltage))
    if v == 480 and kind == "evcharger":
        return 3
    if v in (208, 240, 480):
        return 2
    return 1


def breaker_poles(breaker) -> int:
    return poles_for(breaker.voltage, breaker.type)


def breaker_kw(breaker) -> float:
    """Nameplate kW of a general breaker: V x A / 1000."""
    return _num(breaker.voltage) * _num(breaker.amps) / 1000


def charger_power_kw(breaker) -> float:
    """
    AC input power of an EV charger. Single-phase: V x I / 1000.
    480V chargers are three-phase DC fast chargers and take the sqrt(3) factor.
    """
    v = _num(breaker.voltage)
    i = _num(getattr(breaker, "charger_amps", 0))
    if v <= 0 or i <= 0:
        return 0.0
    kw = v * i / 1000
    if int(v) == 480:
        kw *= SQRT3
    return kw


def load_voltages_for(system: str) -> List[str]:
    """Branch-circuit voltages available on a bus of the given system."""
    ll = line_to_line_voltage(system)
    ln = line_to_neutral_voltage(system)
    if not ll:
        return ["120", "240"]
    return [str(ln), str(ll)]


def charger_levels_for(system: str) -> List[str]:
    if line_to_line_voltage(system) == 480:
        return ["Level 3"]
    return ["Level 1", "Level 2"]


def charger_voltage_for_level(level: Optional[str], system: str) -> str:
    """Level 1 -> 120, Level 2 -> bus line-to-line (208/240), Level 3 -> 480."""
    lvl = (level or "").strip().upper()
    if lvl == "LEVEL 1":
        return "120"
    if lvl == "LEVEL 2":
        return "208" if line_to_line_voltage(system) == 208 else "240"
    if lvl.startswith("LEVEL 3"):
        return "480"
    return ""


def step_down_options(system: str) -> List[str]:
    """Secondary systems a sub-panel transformer can produce from `system`."""
    if system == "277/480V":
        return ["120/208V", "120/240V"]
    return []


def next_breaker_size(amps: Number) -> int:
    """Smallest standard breaker >= amps (largest standard size if none)."""
    a = _num(amps)
    for size in STANDARD_BREAKER_SIZES:
        if size >= a:
            return size
    return STANDARD_BREAKER_SIZES[-1]


def min_breaker_amps_for_ev(charger_amps: Number) -> int:
    """NEC 625.40: branch OCPD >= 125% of the charger's continuous current."""
    return math.ceil(_num(charger_amps) * EV_CONTINUOUS_FACTOR)


def phase_label(system: str) -> str:
    return "3Φ" if is_three_phase(system) else "1Φ"
