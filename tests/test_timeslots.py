import pytest
from pydantic import ValidationError

from models import ScheduleOption, TimeOfDay
from timeslots import choose_option, is_compatible, matches_time_of_day, overlaps, time_to_minutes


def _opt(text):
    days, time = text.split(" ")
    return ScheduleOption(days=days.split("/"), time=time)


def test_time_to_minutes():
    assert time_to_minutes("00:00") == 0
    assert time_to_minutes("08:30") == 510
    assert time_to_minutes("8:30") == 510
    assert time_to_minutes("24:00") == 1440


@pytest.mark.parametrize("bad", ["", "8h30", "25:00", "12:60", "24:30", "12:5", "١٤:٠٠", "１４:００", None])
def test_time_to_minutes_rejects_malformed(bad):
    with pytest.raises(ValueError):
        time_to_minutes(bad)


def test_schedule_option_parses_compact_time():
    opt = ScheduleOption(days=["Lunes", "Jueves"], time="8:30-12:30")
    assert opt.days == ("Lunes", "Jueves")
    assert opt.start == "08:30"
    assert opt.end == "12:30"
    assert opt.time == "08:30-12:30"


def test_schedule_option_requires_start_before_end():
    with pytest.raises(ValidationError):
        ScheduleOption(days=["Lunes"], start="18:00", end="14:00")
    with pytest.raises(ValidationError):
        ScheduleOption(days=["Lunes"], start="14:00", end="14:00")


def test_schedule_option_requires_a_weekday():
    with pytest.raises(ValidationError):
        ScheduleOption(days=[], time="14:00-18:00")


def test_overlap_needs_shared_day_and_time():
    assert overlaps(_opt("Lunes 14:00-18:00"), _opt("Lunes 16:00-20:00"))
    assert overlaps(_opt("Lunes/Jueves 14:00-18:00"), _opt("Jueves 17:00-19:00"))
    assert not overlaps(_opt("Lunes 14:00-18:00"), _opt("Martes 14:00-18:00"))
    assert not overlaps(_opt("Lunes 08:30-12:30"), _opt("Lunes 14:00-18:00"))


def test_touching_ranges_do_not_conflict():
    assert not overlaps(_opt("Martes 18:30-20:30"), _opt("Martes 20:30-22:30"))
    assert not overlaps(_opt("Martes 20:30-22:30"), _opt("Martes 18:30-20:30"))


def test_is_compatible():
    placed = [_opt("Lunes 14:00-18:00"), _opt("Martes 18:30-22:30")]
    assert is_compatible(_opt("Lunes 18:30-22:30"), placed)
    assert not is_compatible(_opt("Martes 20:30-22:30"), placed)
    assert is_compatible(_opt("Martes 20:30-22:30"), [])


def test_time_of_day_windows():
    assert matches_time_of_day(_opt("Sábado 08:30-12:30"), TimeOfDay.MORNING)
    assert not matches_time_of_day(_opt("Lunes 14:00-18:00"), TimeOfDay.MORNING)
    assert matches_time_of_day(_opt("Lunes 14:00-18:00"), TimeOfDay.AFTERNOON)
    assert matches_time_of_day(_opt("Lunes 18:30-22:30"), TimeOfDay.NIGHT)
    assert not matches_time_of_day(_opt("Lunes 14:00-18:00"), TimeOfDay.NIGHT)
    assert matches_time_of_day(_opt("Lunes 14:00-18:00"), TimeOfDay.DAY)
    assert not matches_time_of_day(_opt("Lunes 18:30-22:30"), TimeOfDay.DAY)
    assert matches_time_of_day(_opt("Lunes 18:30-22:30"), "none")


def test_choose_option_prefers_time_of_day():
    options = [_opt("Lunes 14:00-18:00"), _opt("Lunes 18:30-22:30")]
    assert choose_option(options, [], TimeOfDay.NIGHT) == options[1]
    assert choose_option(options, [], TimeOfDay.NONE) == options[0]
    # no morning option: fall back to the first compatible one
    assert choose_option(options, [], TimeOfDay.MORNING) == options[0]


def test_choose_option_skips_conflicts_and_exclusions():
    options = [_opt("Lunes 14:00-18:00"), _opt("Lunes 18:30-22:30")]
    assert choose_option(options, [_opt("Lunes 15:00-16:00")]) == options[1]
    assert choose_option(options, [], excluded=[options[0]]) == options[1]
    assert choose_option(options, [_opt("Lunes 08:00-23:00")]) is None
