"""
Circuit numbering: odd/even panel positions, same-phase slots two apart.
"""
from evsingleline.electrical.circuits import (
    next_circuit_number,
    occupied_circuits,
    parse_circuit_numbers,
)
from evsingleline.schemas.survey import LoadBreaker


def brk(ckt: str, id: str = None) -> LoadBreaker:
    return LoadBreaker(id=id or f"b{ckt}", circuit_number=ckt)


class TestParsing:

    def test_parse(self):
        assert parse_circuit_numbers("1,3,5") == [1, 3, 5]
        assert parse_circuit_numbers(" 2 , 4") == [2, 4]

    def test_junk_tokens_skipped(self):
        """Hand-typed circuit numbers may contain anything"""
        assert parse_circuit_numbers("1, A, 3-5, , 0") == [1]
        assert parse_circuit_numbers("") == []
        assert parse_circuit_numbers(None) == []

    def test_occupied_is_union(self):
        assert occupied_circuits([brk("1,3"), brk("2"), brk("spare")]) == {1, 2, 3}


class TestNextCircuitNumber:

    def test_empty_panel(self):
        assert next_circuit_number([], 1) == "1"
        assert next_circuit_number([], 2) == "1,3"
        assert next_circuit_number([], 3) == "1,3,5"

    def test_second_two_pole_takes_lowest_free_start(self):
        """After 1,3 the even side at 2,4 is the lowest free pair"""
        first = next_circuit_number([], 2)
        assert next_circuit_number([brk(first)], 2) == "2,4"

    def test_single_pole_fills_lowest_gap(self):
        assert next_circuit_number([brk("1,3")], 1) == "2"
        assert next_circuit_number([brk("1"), brk("2"), brk("4")], 1) == "3"

    def test_three_pole_after_two_pole(self):
        assert next_circuit_number([brk("1,3")], 3) == "2,4,6"

    def test_even_start_below_odd_gap(self):
        """A free even pair beats the next free odd pair"""
        assert next_circuit_number([brk("1"), brk("5")], 2) == "2,4"
        assert next_circuit_number([brk("1")], 2) == "2,4"

    def test_start_skips_occupied_positions(self):
        assert next_circuit_number([brk("1"), brk("2"), brk("3")], 2) == "4,6"
        assert next_circuit_number([brk("1,3"), brk("2,4")], 2) == "5,7"

    def test_hand_edited_numbers_respected(self):
        breakers = [brk("1, 3"), brk("x"), brk("5")]
        assert next_circuit_number(breakers, 1) == "2"
        assert next_circuit_number(breakers, 2) == "2,4"
        assert next_circuit_number(breakers + [brk("2")], 2) == "4,6"

    def test_existing_numbers_untouched(self):
        breakers = [brk("9"), brk("1")]
        next_circuit_number(breakers, 2)
        assert [b.circuit_number for b in breakers] == ["9", "1"]
