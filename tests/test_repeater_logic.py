import asyncio
from datetime import timedelta

import pytest
from pydantic import ValidationError

from StickyRelay.cogs.Repeater.qo.CreateRepeaterQo import CreateRepeaterQo
from StickyRelay.cogs.Repeater.qo.UpdateRepeaterQo import UpdateRepeaterQo
from StickyRelay.cogs.Repeater.RepeaterNotFoundError import RepeaterNotFoundError
from StickyRelay.share.enums.RunnerState import RunnerState
from StickyRelay.share.enums.TriggerMode import TriggerMode

from .conftest import CHANNEL_ID, GUILD_ID, T0, Env, make_record


def create_qo(**overrides) -> CreateRepeaterQo:
    values = {"guild_id": GUILD_ID, "channel_id": CHANNEL_ID, "message": "每日提醒"}
    values.update(overrides)
    return CreateRepeaterQo(**values)


def test_create_starts_runner_and_persists(env: Env):
    async def scenario():
        await env.registry.load_guild(GUILD_ID)
        runner = await env.logic.create_repeater(create_qo(message="@everyone 看这里"))

        assert runner.state == RunnerState.ARMED
        assert runner.next_fire_at == T0 + timedelta(minutes=5)
        assert env.logic.list_repeaters(GUILD_ID) == [runner]

        record = env.store.records[runner.id]
        assert record.message == "@\u200beveryone 看这里"
        assert record.interval_seconds == 300

        await env.scheduler.advance(timedelta(minutes=5))
        assert env.transport.sent[0][2] == "@\u200beveryone 看这里"

    asyncio.run(scenario())


def test_create_keeps_mentions_when_allowed(env: Env):
    async def scenario():
        runner = await env.logic.create_repeater(
            create_qo(message="<@&5> @here", allow_mentions=True)
        )
        assert runner.repeater.message == "<@&5> @here"

    asyncio.run(scenario())


@pytest.mark.parametrize("mode", [TriggerMode.ON_ACTIVITY, TriggerMode.AFTER_MESSAGES])
def test_activity_modes_require_positive_threshold(env: Env, mode):
    async def scenario():
        with pytest.raises(ValueError):
            await env.logic.create_repeater(create_qo(trigger_mode=mode, activity_threshold=0))
        assert env.store.records == {}

    asyncio.run(scenario())


def test_query_objects_validate_ranges():
    with pytest.raises(ValidationError):
        create_qo(interval=timedelta(seconds=4))
    with pytest.raises(ValidationError):
        create_qo(activity_time_window=timedelta(hours=7))
    with pytest.raises(ValidationError):
        create_qo(priority=101)
    with pytest.raises(ValidationError):
        UpdateRepeaterQo(max_triggers=0)

    assert UpdateRepeaterQo(max_age=None).changes() == {"max_age": None}
    assert UpdateRepeaterQo().changes() == {}


def test_update_message_takes_effect_on_next_send(env: Env):
    async def scenario():
        (runner,) = await env.load(make_record())
        dto = await env.logic.update_repeater(
            GUILD_ID, runner.id, UpdateRepeaterQo(message="新的内容")
        )
        assert dto.message == "新的内容"
        assert env.store.records[runner.id].message == "新的内容"
        # 只修改内容时不重新布置定时器
        assert runner.next_fire_at == T0 + timedelta(minutes=5)

        await runner.trigger_now()
        assert env.transport.sent[-1][2] == "新的内容"

    asyncio.run(scenario())


def test_update_interval_rearms(env: Env):
    async def scenario():
        (runner,) = await env.load(make_record())
        await env.scheduler.advance(timedelta(minutes=2))
        await env.logic.update_repeater(
            GUILD_ID, runner.id, UpdateRepeaterQo(interval=timedelta(minutes=10))
        )
        assert runner.next_fire_at == T0 + timedelta(minutes=10)
        assert env.store.records[runner.id].interval_seconds == 600

        await env.scheduler.advance(timedelta(minutes=4))
        assert env.transport.sent == []

    asyncio.run(scenario())


def test_update_channel_moves_runner(env: Env):
    async def scenario():
        env.transport.add_channel(101)
        (runner,) = await env.load(make_record())
        await env.logic.update_repeater(GUILD_ID, runner.id, UpdateRepeaterQo(channel_id=101))

        assert env.registry.runners_for_channel(GUILD_ID, 101) == [runner]
        assert env.store.records[runner.id].channel_id == 101
        await runner.trigger_now()
        assert env.transport.bot_messages(101) != []
        assert env.transport.bot_messages(CHANNEL_ID) == []

    asyncio.run(scenario())


def test_update_rejects_invalid_threshold(env: Env):
    async def scenario():
        (runner,) = await env.load(make_record())
        with pytest.raises(ValueError):
            await env.logic.update_repeater(
                GUILD_ID,
                runner.id,
                UpdateRepeaterQo(trigger_mode=TriggerMode.AFTER_MESSAGES, activity_threshold=0),
            )
        assert runner.repeater.trigger_mode == TriggerMode.TIME_INTERVAL

    asyncio.run(scenario())


def test_toggle_enabled_stops_and_resumes(env: Env):
    async def scenario():
        (runner,) = await env.load(make_record())
        assert await env.logic.toggle_enabled(GUILD_ID, runner.id) is False
        assert runner.state == RunnerState.STOPPED
        assert env.store.records[runner.id].is_enabled is False
        assert await env.logic.trigger_repeater(GUILD_ID, runner.id) is False

        await env.scheduler.advance(timedelta(minutes=11))
        assert env.transport.sent == []

        assert await env.logic.toggle_enabled(GUILD_ID, runner.id) is True
        assert runner.state == RunnerState.ARMED
        assert runner.next_fire_at == T0 + timedelta(minutes=15)

    asyncio.run(scenario())


def test_toggle_flags(env: Env):
    async def scenario():
        (runner,) = await env.load(make_record())
        assert await env.logic.toggle_redundancy(GUILD_ID, runner.id) is True
        assert runner.repeater.no_redundant
        assert await env.logic.toggle_conversation_detection(GUILD_ID, runner.id) is True
        assert env.store.records[runner.id].conversation_detection is True

    asyncio.run(scenario())


def test_delete_and_not_found(env: Env):
    async def scenario():
        (runner,) = await env.load(make_record())
        await runner.trigger_now()

        deleted = await env.logic.delete_repeater(GUILD_ID, runner.id)
        assert deleted.id == runner.id
        assert runner.state == RunnerState.STOPPED
        assert env.store.deleted == [runner.id]

        with pytest.raises(RepeaterNotFoundError):
            env.logic.get_repeater(GUILD_ID, runner.id)
        with pytest.raises(RepeaterNotFoundError):
            await env.logic.trigger_repeater(GUILD_ID, runner.id)

        await env.scheduler.advance(timedelta(minutes=10))
        assert len(env.transport.sent) == 1

    asyncio.run(scenario())


def test_statistics(env: Env):
    async def scenario():
        await env.load(
            make_record(display_count=7),
            make_record(trigger_mode=TriggerMode.IMMEDIATE, is_enabled=False, display_count=2),
            make_record(conversation_detection=True),
        )
        stats = env.logic.get_statistics(GUILD_ID)
        assert stats.total == 3
        assert stats.enabled == 2
        assert stats.disabled == 1
        assert stats.total_displays == 9
        assert stats.conversation_aware == 1
        assert stats.trigger_mode_distribution == {
            TriggerMode.TIME_INTERVAL: 2,
            TriggerMode.IMMEDIATE: 1,
        }
        assert stats.most_active.id == 1
        assert env.logic.get_repeater_by_index(GUILD_ID, 2).id == 3

    asyncio.run(scenario())
