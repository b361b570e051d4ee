from datetime import datetime, time, timedelta, timezone

import pytest

from StickyRelay.cogs.Repeater.ConditionEvaluator import (
    ConditionEvaluator,
    parse_forum_tag_condition,
    parse_thread_sticky_messages,
    parse_time_conditions,
    serialize_time_conditions,
)
from StickyRelay.cogs.Repeater.dto.ForumTagConditionDto import ForumTagConditionDto
from StickyRelay.cogs.Repeater.dto.RepeaterDto import RepeaterDto
from StickyRelay.cogs.Repeater.dto.TimeConditionDto import (
    TimeConditionDto,
    business_hours,
    evening_hours,
    weekend,
)

from .conftest import T0, make_record

SATURDAY_10 = datetime(2024, 1, 6, 10, 0, tzinfo=timezone.utc)
TUESDAY_10 = datetime(2024, 1, 9, 10, 0, tzinfo=timezone.utc)

TAG_A = 11
TAG_B = 22


def repeater(**overrides) -> RepeaterDto:
    record = make_record(**overrides)
    record.id = 1
    return RepeaterDto.from_record(record)


def test_no_time_conditions_always_displays():
    assert ConditionEvaluator.should_display_at_current_time(repeater(), TUESDAY_10)


def test_weekend_condition_only_matches_weekend():
    r = repeater(time_conditions=[weekend().to_storage()])
    assert ConditionEvaluator.should_display_at_current_time(r, SATURDAY_10)
    assert not ConditionEvaluator.should_display_at_current_time(r, TUESDAY_10)


def test_any_matching_condition_is_enough():
    r = repeater(time_conditions=[weekend().to_storage(), business_hours().to_storage()])
    assert ConditionEvaluator.should_display_at_current_time(r, SATURDAY_10)
    assert ConditionEvaluator.should_display_at_current_time(r, TUESDAY_10)
    assert not ConditionEvaluator.should_display_at_current_time(
        r, TUESDAY_10.replace(hour=20)
    )


def test_disabled_condition_never_matches():
    disabled = weekend().model_copy(update={"enabled": False})
    r = repeater(time_conditions=[disabled.to_storage()])
    assert not ConditionEvaluator.should_display_at_current_time(r, SATURDAY_10)


def test_overnight_range_wraps_midnight():
    condition = TimeConditionDto(start_time=time(23, 0), end_time=time(2, 0))
    assert condition.is_active_at(TUESDAY_10.replace(hour=23, minute=30))
    assert condition.is_active_at(TUESDAY_10.replace(hour=1, minute=59))
    assert not condition.is_active_at(TUESDAY_10.replace(hour=12))


def test_missing_bound_is_unbounded():
    only_start = TimeConditionDto(start_time=time(18, 0))
    assert only_start.is_active_at(TUESDAY_10.replace(hour=23, minute=59))
    assert not only_start.is_active_at(TUESDAY_10)


def test_end_time_is_inclusive():
    assert evening_hours().is_active_at(TUESDAY_10.replace(hour=23, minute=0))


def test_days_of_week_outside_range_rejected():
    with pytest.raises(ValueError):
        TimeConditionDto(days_of_week={7})


def test_malformed_time_conditions_fail_open(caplog):
    assert parse_time_conditions("{not json", 5) == []
    assert parse_time_conditions({"start_time": "09:00"}, 5) == []
    assert parse_time_conditions([{"start_time": "25:99"}], 5) == []
    assert "5" in caplog.text

    r = repeater(time_conditions="garbage")
    assert r.time_conditions == []
    assert ConditionEvaluator.should_display_at_current_time(r, TUESDAY_10)


def test_time_conditions_survive_storage_round_trip():
    stored = serialize_time_conditions([business_hours()])
    parsed = parse_time_conditions(stored)
    assert parsed[0].days_of_week == {1, 2, 3, 4, 5}
    assert parsed[0].start_time == time(9, 0)


@pytest.mark.parametrize(
    "thread_tags, expected",
    [
        ({TAG_A}, True),
        ({TAG_A, TAG_B}, False),
        (set(), False),
    ],
)
def test_forum_tag_filter(thread_tags, expected):
    condition = ForumTagConditionDto(required_tags={TAG_A}, excluded_tags={TAG_B})
    r = repeater(thread_auto_sticky=True, forum_tag_conditions=condition.to_storage())
    assert ConditionEvaluator.should_display_for_forum_tags(r, thread_tags) is expected


def test_forum_tags_need_only_one_required_tag():
    condition = ForumTagConditionDto(required_tags={TAG_A, TAG_B})
    r = repeater(thread_auto_sticky=True, forum_tag_conditions=condition.to_storage())
    assert ConditionEvaluator.should_display_for_forum_tags(r, {TAG_B})


def test_forum_tags_require_auto_sticky():
    assert not ConditionEvaluator.should_display_for_forum_tags(repeater(), {TAG_A})
    assert ConditionEvaluator.should_display_for_forum_tags(
        repeater(thread_auto_sticky=True), set()
    )


def test_disabled_or_malformed_forum_condition_is_permissive():
    disabled = ForumTagConditionDto(required_tags={TAG_A}, enabled=False)
    r = repeater(thread_auto_sticky=True, forum_tag_conditions=disabled.to_storage())
    assert ConditionEvaluator.should_display_for_forum_tags(r, set())

    assert parse_forum_tag_condition("[1, 2]", 3) is None
    broken = repeater(thread_auto_sticky=True, forum_tag_conditions="{oops")
    assert ConditionEvaluator.should_display_for_forum_tags(broken, set())


def test_expiry_by_max_triggers():
    r = repeater(max_triggers=3, display_count=2)
    assert not ConditionEvaluator.has_expired(r, T0)
    r.display_count = 3
    assert ConditionEvaluator.has_expired(r, T0)


def test_expiry_by_max_age():
    r = repeater(max_age_seconds=3600)
    assert not ConditionEvaluator.has_expired(r, T0 + timedelta(minutes=59))
    assert ConditionEvaluator.has_expired(r, T0 + timedelta(hours=1, seconds=1))


def test_guild_now_uses_configured_timezone():
    evaluator = ConditionEvaluator("UTC", {"7": "Asia/Tokyo"})
    assert evaluator.guild_now(7, T0).hour == 19
    assert evaluator.guild_now(8, T0).hour == 10
    assert ConditionEvaluator("Not/AZone").guild_now(1, T0).hour == 10


def test_thread_sticky_map_keys_become_ints():
    assert parse_thread_sticky_messages({"5": 50, "6": 60}) == {5: 50, 6: 60}
    assert parse_thread_sticky_messages("nonsense", 1) == {}
