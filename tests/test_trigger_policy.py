from datetime import time, timedelta

from StickyRelay.cogs.Repeater.dto.RepeaterDto import RepeaterDto
from StickyRelay.cogs.Repeater.TriggerPolicy import (
    AfterMessagesTrigger,
    ImmediateTrigger,
    OnActivityTrigger,
    OnNoActivityTrigger,
    TimeIntervalTrigger,
    build_trigger,
)
from StickyRelay.share.enums.TriggerMode import TriggerMode

from .conftest import T0, make_record

POLL = timedelta(seconds=60)
FIVE_MINUTES = timedelta(minutes=5)


def dto(**overrides) -> RepeaterDto:
    record = make_record(**overrides)
    record.id = 1
    return RepeaterDto.from_record(record)


def test_first_fire_is_one_interval_after_creation():
    trigger = TimeIntervalTrigger(interval=FIVE_MINUTES)
    assert trigger.initial_delay(T0, T0, POLL) == FIVE_MINUTES
    assert trigger.initial_delay(T0, T0 + timedelta(minutes=2), POLL) == timedelta(minutes=3)


def test_past_anchor_wraps_modulo_interval():
    trigger = TimeIntervalTrigger(interval=FIVE_MINUTES)
    # 锚点 T+5m 已过去 7 分钟，下一个对齐点是 T+15m
    assert trigger.initial_delay(T0, T0 + timedelta(minutes=12), POLL) == timedelta(minutes=3)


def test_exactly_on_aligned_slot_fires_now():
    trigger = TimeIntervalTrigger(interval=FIVE_MINUTES)
    assert trigger.initial_delay(T0, T0 + timedelta(minutes=15), POLL) == timedelta(0)


def test_start_time_of_day_aligns_first_fire():
    trigger = TimeIntervalTrigger(interval=timedelta(days=1), start_time_of_day=time(12, 30))
    assert trigger.initial_delay(T0, T0, POLL) == timedelta(hours=2, minutes=30)

    earlier = TimeIntervalTrigger(interval=timedelta(days=1), start_time_of_day=time(9, 0))
    assert earlier.initial_delay(T0, T0, POLL) == timedelta(hours=23)


def test_polling_and_immediate_delays():
    assert OnActivityTrigger(threshold=5, window=FIVE_MINUTES).initial_delay(T0, T0, POLL) == POLL
    assert AfterMessagesTrigger(threshold=3).rearm_delay(POLL) == POLL
    immediate = ImmediateTrigger(interval=FIVE_MINUTES)
    assert immediate.initial_delay(T0, T0, POLL) == timedelta(0)
    assert immediate.rearm_delay(POLL) == FIVE_MINUTES


def test_build_trigger_carries_only_mode_fields():
    assert build_trigger(dto()) == TimeIntervalTrigger(interval=FIVE_MINUTES)
    assert build_trigger(dto(trigger_mode=TriggerMode.ON_NO_ACTIVITY)) == OnNoActivityTrigger(
        window=FIVE_MINUTES
    )
    assert build_trigger(
        dto(trigger_mode=TriggerMode.AFTER_MESSAGES, activity_threshold=10)
    ) == AfterMessagesTrigger(threshold=10)
    assert build_trigger(dto(trigger_mode=TriggerMode.IMMEDIATE)).mode == TriggerMode.IMMEDIATE


def test_unknown_trigger_mode_falls_back_to_interval():
    assert dto(trigger_mode=42).trigger_mode == TriggerMode.TIME_INTERVAL
