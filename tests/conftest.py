import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Any, Optional

import pytest

from StickyRelay.cogs.Repeater.ConditionEvaluator import ConditionEvaluator
from StickyRelay.cogs.Repeater.dto.RepeaterDto import RepeaterDto
from StickyRelay.cogs.Repeater.MessagingTransport import ChannelHandle, MessageSnapshot
from StickyRelay.cogs.Repeater.RepeaterEventRouter import RepeaterEventRouter
from StickyRelay.cogs.Repeater.RepeaterLogic import RepeaterLogic
from StickyRelay.cogs.Repeater.RepeaterRegistry import RepeaterRegistry
from StickyRelay.cogs.Repeater.RepeaterSettings import RepeaterSettings
from StickyRelay.models.GuildRepeater import GuildRepeater

# 2024-01-06 是星期六
T0 = datetime(2024, 1, 6, 10, 0, tzinfo=timezone.utc)
BOT_ID = 999
GUILD_ID = 1
CHANNEL_ID = 100


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def set(self, moment: datetime):
        self.current = moment

    def advance(self, delta: timedelta):
        self.current += delta


class ManualHandle:
    def __init__(self, due: datetime, callback):
        self.due = due
        self.callback = callback
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler:
    """只有在测试调用 advance() 时才执行到期回调的调度器。"""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.handles: list[ManualHandle] = []

    def call_later(self, delay: float, callback) -> ManualHandle:
        handle = ManualHandle(self.clock.now() + timedelta(seconds=max(0.0, delay)), callback)
        self.handles.append(handle)
        return handle

    def pending(self) -> list[ManualHandle]:
        return [h for h in self.handles if not h.cancelled()]

    def next_due(self) -> Optional[datetime]:
        pending = self.pending()
        return min(h.due for h in pending) if pending else None

    async def advance(self, delta: timedelta = timedelta(0)):
        target = self.clock.now() + delta
        while True:
            due = sorted((h for h in self.pending() if h.due <= target), key=lambda h: h.due)
            if not due:
                break
            handle = due[0]
            self.handles.remove(handle)
            if handle.due > self.clock.now():
                self.clock.set(handle.due)
            await handle.callback()
        self.clock.set(target)

    def cancel_all(self):
        for handle in self.handles:
            handle.cancel()
        self.handles.clear()


class FakeTransport:
    """内存中的频道与消息，记录所有发送与删除。"""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.channels: dict[int, ChannelHandle] = {}
        self.messages: dict[int, list[MessageSnapshot]] = {}
        self.sent: list[tuple[int, int, str, bool]] = []
        self.deleted: list[tuple[int, int]] = []
        self.send_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        self.history_error: Optional[Exception] = None
        self.send_gate: Optional[asyncio.Event] = None
        self.in_flight = 0
        self.max_in_flight = 0
        self._ids = count(10_000)

    def add_channel(
        self,
        channel_id: int = CHANNEL_ID,
        guild_id: int = GUILD_ID,
        *,
        is_forum: bool = False,
        is_thread: bool = False,
    ) -> ChannelHandle:
        handle = ChannelHandle(
            id=channel_id,
            guild_id=guild_id,
            name=f"channel-{channel_id}",
            guild_name="Test Guild",
            is_forum=is_forum,
            is_thread=is_thread,
        )
        self.channels[channel_id] = handle
        self.messages.setdefault(channel_id, [])
        return handle

    def post(
        self,
        channel_id: int = CHANNEL_ID,
        *,
        author_is_bot: bool = False,
        created_at: Optional[datetime] = None,
    ) -> int:
        message_id = next(self._ids)
        self.messages.setdefault(channel_id, []).append(
            MessageSnapshot(
                id=message_id,
                author_id=BOT_ID if author_is_bot else 42,
                author_is_bot=author_is_bot,
                created_at=created_at or self.clock.now(),
            )
        )
        return message_id

    def bot_messages(self, channel_id: int = CHANNEL_ID) -> list[int]:
        return [m.id for m in self.messages.get(channel_id, []) if m.author_is_bot]

    async def resolve_channel(self, channel_id: int) -> Optional[ChannelHandle]:
        await asyncio.sleep(0)
        return self.channels.get(channel_id)

    async def send_message(self, channel: ChannelHandle, content: str, *, silent: bool = False) -> int:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.send_gate is not None:
                await self.send_gate.wait()
            await asyncio.sleep(0)
            if self.send_error is not None:
                raise self.send_error
            message_id = self.post(channel.id, author_is_bot=True)
            self.sent.append((channel.id, message_id, content, silent))
            return message_id
        finally:
            self.in_flight -= 1

    async def delete_message(self, channel: ChannelHandle, message_id: int) -> None:
        await asyncio.sleep(0)
        if self.delete_error is not None:
            raise self.delete_error
        messages = self.messages.get(channel.id, [])
        self.messages[channel.id] = [m for m in messages if m.id != message_id]
        self.deleted.append((channel.id, message_id))

    async def get_last_message_id(self, channel: ChannelHandle) -> Optional[int]:
        messages = self.messages.get(channel.id, [])
        return messages[-1].id if messages else None

    async def get_recent_messages(self, channel: ChannelHandle, limit: int) -> list[MessageSnapshot]:
        if self.history_error is not None:
            raise self.history_error
        return list(reversed(self.messages.get(channel.id, [])))[:limit]


class FakeStore:
    """以 GuildRepeater 记录为存储单元的内存仓库。"""

    def __init__(self):
        self.records: dict[int, GuildRepeater] = {}
        self.deleted: list[int] = []
        self.fail_loads = False
        self._ids = count(1)

    def add(self, record: GuildRepeater) -> GuildRepeater:
        record.id = next(self._ids)
        self.records[record.id] = record
        return record

    async def load_repeaters(self, guild_id: int) -> list[RepeaterDto]:
        if self.fail_loads:
            raise RuntimeError("数据库不可用")
        return [
            RepeaterDto.from_record(r)
            for r in sorted(self.records.values(), key=lambda r: r.id)
            if r.guild_id == guild_id
        ]

    async def get_repeater(self, guild_id: int, repeater_id: int) -> Optional[RepeaterDto]:
        record = self.records.get(repeater_id)
        if record is None or record.guild_id != guild_id:
            return None
        return RepeaterDto.from_record(record)

    async def insert_repeater(self, record: GuildRepeater) -> RepeaterDto:
        return RepeaterDto.from_record(self.add(record))

    async def update_repeater(
        self, guild_id: int, repeater_id: int, values: dict[str, Any]
    ) -> Optional[RepeaterDto]:
        record = self.records.get(repeater_id)
        if record is None or record.guild_id != guild_id:
            return None
        for key, value in values.items():
            setattr(record, key, value)
        return RepeaterDto.from_record(record)

    async def delete_repeater(self, guild_id: int, repeater_id: int) -> bool:
        record = self.records.get(repeater_id)
        if record is None or record.guild_id != guild_id:
            return False
        del self.records[repeater_id]
        self.deleted.append(repeater_id)
        return True

    async def update_stats(self, repeater_id: int, display_count: int, last_displayed: datetime):
        record = self.records.get(repeater_id)
        if record is not None:
            record.display_count = display_count
            record.last_displayed = last_displayed.replace(tzinfo=None)

    async def set_last_message(self, repeater_id: int, message_id: Optional[int]):
        record = self.records.get(repeater_id)
        if record is not None:
            record.last_message_id = message_id

    async def set_thread_sticky_messages(self, repeater_id: int, mapping: dict[int, int]):
        record = self.records.get(repeater_id)
        if record is not None:
            record.thread_sticky_messages = {str(k): v for k, v in mapping.items()} or None


async def wait_until(predicate, attempts: int = 50):
    """让出事件循环，直到 predicate 成立。"""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


def make_record(**overrides) -> GuildRepeater:
    values: dict[str, Any] = {
        "guild_id": GUILD_ID,
        "channel_id": CHANNEL_ID,
        "message": "hello %channel.name%",
        "interval_seconds": 300,
        "date_added": T0.replace(tzinfo=None),
    }
    values.update(overrides)
    return GuildRepeater(**values)


@dataclass
class Env:
    clock: FakeClock
    scheduler: ManualScheduler
    transport: FakeTransport
    store: FakeStore
    registry: RepeaterRegistry
    router: RepeaterEventRouter
    logic: RepeaterLogic

    async def load(self, *records: GuildRepeater, guild_id: int = GUILD_ID):
        for record in records:
            self.store.add(record)
        await self.registry.load_guild(guild_id)
        return self.registry.list_guild(guild_id)


def build_env(
    settings: Optional[RepeaterSettings] = None, store: Optional[FakeStore] = None
) -> Env:
    clock = FakeClock()
    scheduler = ManualScheduler(clock)
    transport = FakeTransport(clock)
    transport.add_channel()
    store = store or FakeStore()
    registry = RepeaterRegistry(
        transport=transport,
        store=store,
        scheduler=scheduler,  # type: ignore[arg-type]
        clock=clock,  # type: ignore[arg-type]
        evaluator=ConditionEvaluator(),
        settings=settings or RepeaterSettings(),
    )
    return Env(
        clock=clock,
        scheduler=scheduler,
        transport=transport,
        store=store,
        registry=registry,
        router=RepeaterEventRouter(registry),
        logic=RepeaterLogic(registry),
    )


@pytest.fixture
def env() -> Env:
    return build_env()
