from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING, Optional, Union

from StickyRelay.share.enums.TriggerMode import TriggerMode
from StickyRelay.share.TimeUtils import TimeUtils

if TYPE_CHECKING:
    from StickyRelay.cogs.Repeater.ActivityMonitor import ActivityMonitor
    from StickyRelay.cogs.Repeater.dto.RepeaterDto import RepeaterDto
    from StickyRelay.cogs.Repeater.MessagingTransport import ChannelHandle


@dataclass(frozen=True)
class TimeIntervalTrigger:
    """固定间隔触发，可选地将首次触发对齐到每天的某个时刻 (UTC)。"""

    interval: timedelta
    start_time_of_day: Optional[time] = None

    mode = TriggerMode.TIME_INTERVAL
    polls = False

    def initial_delay(self, date_added: datetime, now: datetime, poll: timedelta) -> timedelta:
        """
        计算首次触发的延迟。

        锚点为 `date_added` 之后（含）第一次出现的 `start_time_of_day`，未设置时为
        `date_added + interval`。锚点已过去时，按 interval 取模得到下一个对齐点。
        """
        if self.start_time_of_day is not None:
            anchor = TimeUtils.next_time_of_day(date_added, self.start_time_of_day)
        else:
            anchor = date_added + self.interval

        if anchor > now:
            return anchor - now

        elapsed = (now - anchor) % self.interval
        if not elapsed:
            return timedelta(0)
        return self.interval - elapsed

    def rearm_delay(self, poll: timedelta) -> timedelta:
        return self.interval


@dataclass(frozen=True)
class _PollingTrigger:
    polls = True

    def initial_delay(self, date_added: datetime, now: datetime, poll: timedelta) -> timedelta:
        return poll

    def rearm_delay(self, poll: timedelta) -> timedelta:
        return poll


@dataclass(frozen=True)
class OnActivityTrigger(_PollingTrigger):
    """时间窗内消息数达到阈值时触发。"""

    threshold: int
    window: timedelta

    mode = TriggerMode.ON_ACTIVITY

    async def should_fire(
        self,
        monitor: "ActivityMonitor",
        repeater: "RepeaterDto",
        channel: "ChannelHandle",
        now: datetime,
    ) -> bool:
        return await monitor.has_sufficient_activity(repeater, channel, now)


@dataclass(frozen=True)
class OnNoActivityTrigger(_PollingTrigger):
    """时间窗内没有任何消息时触发。"""

    window: timedelta

    mode = TriggerMode.ON_NO_ACTIVITY

    async def should_fire(self, monitor, repeater, channel, now) -> bool:
        return await monitor.is_channel_quiet(channel, self.window, now)


@dataclass(frozen=True)
class AfterMessagesTrigger(_PollingTrigger):
    """上次发送后累计 N 条非机器人消息时触发。"""

    threshold: int

    mode = TriggerMode.AFTER_MESSAGES

    async def should_fire(self, monitor, repeater, channel, now) -> bool:
        return await monitor.has_reached_message_threshold(repeater, channel)


@dataclass(frozen=True)
class ImmediateTrigger:
    """创建时立即发送，之后在频道有新消息时重新置底，并按 interval 兜底重发。"""

    interval: timedelta

    mode = TriggerMode.IMMEDIATE
    polls = False

    def initial_delay(self, date_added: datetime, now: datetime, poll: timedelta) -> timedelta:
        return timedelta(0)

    def rearm_delay(self, poll: timedelta) -> timedelta:
        return self.interval


Trigger = Union[
    TimeIntervalTrigger,
    OnActivityTrigger,
    OnNoActivityTrigger,
    AfterMessagesTrigger,
    ImmediateTrigger,
]


def build_trigger(repeater: "RepeaterDto") -> Trigger:
    """根据重复播报的配置构造对应的触发策略。"""
    mode = repeater.trigger_mode
    if mode == TriggerMode.ON_ACTIVITY:
        return OnActivityTrigger(
            threshold=repeater.activity_threshold, window=repeater.activity_time_window
        )
    if mode == TriggerMode.ON_NO_ACTIVITY:
        return OnNoActivityTrigger(window=repeater.activity_time_window)
    if mode == TriggerMode.AFTER_MESSAGES:
        return AfterMessagesTrigger(threshold=repeater.activity_threshold)
    if mode == TriggerMode.IMMEDIATE:
        return ImmediateTrigger(interval=repeater.interval)
    return TimeIntervalTrigger(
        interval=repeater.interval, start_time_of_day=repeater.start_time_of_day
    )
