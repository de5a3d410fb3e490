"""
Circuit numbering for panelboards.

Panel positions follow the standard odd/even layout: same-phase positions on
one side of the bus are 2 apart, so an n-pole breaker starting at k occupies
k, k+2, ..., k+2(n-1). Numbers are proposed once at creation time; existing
(possibly hand-edited) numbers are never rewritten.
"""
from __future__ import annotations

import itertools
import re
from typing import Iterable, List, Set

_CKT_TOKEN = re.compile(r"^\s*(\d+)\s*$")


def parse_circuit_numbers(text: str | None) -> List[int]:
    """'1,3,5' -> [1, 3, 5]. Blank or non-numeric tokens are skipped."""
    out: List[int] = []
    for tok in (text or "").split(","):
        m = _CKT_TOKEN.match(tok)
        if m:
            n = int(m.group(1))
            if n >= 1:
                out.append(n)
    return out


def format_circuit_numbers(numbers: Iterable[int]) -> str:
    return ",".join(str(n) for n in numbers)


def occupied_circuits(breakers: Iterable) -> Set[int]:
    occupied: Set[int] = set()
    for b in breakers:
        occupied.update(parse_circuit_numbers(b.circuit_number))
    return occupied


def next_circuit_number(breakers: Iterable, poles: int = 1) -> str:
    """
    Propose circuit number(s) for a new breaker of `poles` poles: the lowest
    k >= 1 whose positions k, k+2, ..., k+2(poles-1) are all free.

    >>> next_circuit_number([], 2)
    '1,3'
    >>> next_circuit_number([], 1)
    '1'
    """
    poles = max(1, int(poles))
    occupied = occupied_circuits(breakers)
    for k in itertools.count(1):
        slots = [k + 2 * i for i in range(poles)]
        if not any(s in occupied for s in slots):
            return format_circuit_numbers(slots)
    raise AssertionError("unreachable: start positions are unbounded")
