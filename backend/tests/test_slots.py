from datetime import date

from therapy_scheduler.services.ports import Rule
from therapy_scheduler.services.slots import SLOT_MINUTES, generate_slots
from therapy_scheduler.services.timeutils import to_minutes

D = date(2030, 6, 3)


def test_three_hour_rule_yields_two_slots():
    slots = generate_slots(Rule(1, "09:00", "12:00"), D)
    assert [(s.start_time, s.end_time) for s in slots] == [("09:00", "10:30"), ("10:30", "12:00")]


def test_generation_is_deterministic():
    rule = Rule(1, "09:00", "12:00")
    assert generate_slots(rule, D) == generate_slots(rule, D)


def test_session_and_break_windows():
    first = generate_slots(Rule(1, "14:15", "15:45"), D)[0]
    assert first.status == "available"
    assert (first.session_start, first.session_end) == ("14:15", "15:15")
    assert (first.break_start, first.break_end) == ("15:15", "15:45")


def test_remainder_is_left_unused():
    slots = generate_slots(Rule(1, "09:00", "13:00"), D)
    assert [s.start_time for s in slots] == ["09:00", "10:30"]
    assert slots[-1].end_time == "12:00"


def test_window_shorter_than_one_slot_yields_nothing():
    assert generate_slots(Rule(1, "09:00", "10:29"), D) == []


def test_slots_tile_without_gaps_or_overlaps():
    slots = generate_slots(Rule(1, "07:00", "21:00"), D)
    for prev, nxt in zip(slots, slots[1:]):
        assert prev.end_time == nxt.start_time
    for s in slots:
        assert to_minutes(s.end_time) - to_minutes(s.start_time) == SLOT_MINUTES
        assert to_minutes(s.end_time) <= to_minutes("21:00")
