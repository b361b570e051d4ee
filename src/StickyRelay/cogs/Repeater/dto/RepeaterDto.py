import logging
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING, Any, Optional

from StickyRelay.cogs.Repeater.dto.ForumTagConditionDto import ForumTagConditionDto
from StickyRelay.cogs.Repeater.dto.TimeConditionDto import TimeConditionDto
from StickyRelay.share.BaseDto import BaseDto
from StickyRelay.share.enums.TriggerMode import TriggerMode
from StickyRelay.share.TimeUtils import TimeUtils

if TYPE_CHECKING:
    from StickyRelay.models.GuildRepeater import GuildRepeater

logger = logging.getLogger(__name__)


class RepeaterDto(BaseDto):
    """
    重复播报配置在内存中的类型化副本，由对应的 RepeatRunner 独占。
    所有时间均为带时区的 UTC 时间。
    """

    id: int
    guild_id: int
    channel_id: int
    message: str

    trigger_mode: TriggerMode = TriggerMode.TIME_INTERVAL
    interval: timedelta = timedelta(minutes=5)
    start_time_of_day: Optional[time] = None
    activity_threshold: int = 5
    activity_time_window: timedelta = timedelta(minutes=5)
    conversation_detection: bool = False
    conversation_threshold: int = 5
    priority: int = 50

    time_conditions: list[TimeConditionDto] = []
    forum_tag_condition: Optional[ForumTagConditionDto] = None
    max_age: Optional[timedelta] = None
    max_triggers: Optional[int] = None

    no_redundant: bool = False
    thread_auto_sticky: bool = False
    thread_only_mode: bool = False
    suppress_notifications: bool = False
    is_enabled: bool = True

    last_message_id: Optional[int] = None
    display_count: int = 0
    last_displayed: Optional[datetime] = None
    thread_sticky_messages: dict[int, int] = {}
    date_added: datetime
    activity_based_last_check: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: "GuildRepeater") -> "RepeaterDto":
        """
        从数据库记录构造内存副本。JSON 条件在这里一次性解析，解析失败按 “不限制” 处理。
        """
        from StickyRelay.cogs.Repeater.ConditionEvaluator import (
            parse_forum_tag_condition,
            parse_thread_sticky_messages,
            parse_time_conditions,
        )

        if record.id is None:
            raise ValueError("记录尚未持久化，缺少 ID")

        return cls(
            id=record.id,
            guild_id=record.guild_id,
            channel_id=record.channel_id,
            message=record.message,
            trigger_mode=_parse_trigger_mode(record.trigger_mode, record.id),
            interval=timedelta(seconds=max(1, record.interval_seconds or 0)),
            start_time_of_day=TimeUtils.parse_time_of_day(record.start_time_of_day),
            activity_threshold=record.activity_threshold,
            activity_time_window=timedelta(seconds=record.activity_time_window_seconds or 300),
            conversation_detection=record.conversation_detection,
            conversation_threshold=record.conversation_threshold,
            priority=record.priority,
            time_conditions=parse_time_conditions(record.time_conditions, record.id),
            forum_tag_condition=parse_forum_tag_condition(record.forum_tag_conditions, record.id),
            max_age=(
                timedelta(seconds=record.max_age_seconds)
                if record.max_age_seconds is not None
                else None
            ),
            max_triggers=record.max_triggers,
            no_redundant=record.no_redundant,
            thread_auto_sticky=record.thread_auto_sticky,
            thread_only_mode=record.thread_only_mode,
            suppress_notifications=record.suppress_notifications,
            is_enabled=record.is_enabled,
            last_message_id=record.last_message_id,
            display_count=record.display_count,
            last_displayed=(
                TimeUtils.as_utc(record.last_displayed) if record.last_displayed else None
            ),
            thread_sticky_messages=parse_thread_sticky_messages(
                record.thread_sticky_messages, record.id
            ),
            date_added=TimeUtils.as_utc(record.date_added),
        )

    def to_record_values(self) -> dict[str, Any]:
        """转换为可写回 GuildRepeater 的列值。"""
        from StickyRelay.cogs.Repeater.ConditionEvaluator import (
            serialize_forum_tag_condition,
            serialize_time_conditions,
        )

        return {
            "channel_id": self.channel_id,
            "message": self.message,
            "trigger_mode": int(self.trigger_mode),
            "interval_seconds": int(self.interval.total_seconds()),
            "start_time_of_day": TimeUtils.format_time_of_day(self.start_time_of_day),
            "activity_threshold": self.activity_threshold,
            "activity_time_window_seconds": int(self.activity_time_window.total_seconds()),
            "conversation_detection": self.conversation_detection,
            "conversation_threshold": self.conversation_threshold,
            "priority": self.priority,
            "time_conditions": serialize_time_conditions(self.time_conditions),
            "forum_tag_conditions": serialize_forum_tag_condition(self.forum_tag_condition),
            "max_age_seconds": int(self.max_age.total_seconds()) if self.max_age else None,
            "max_triggers": self.max_triggers,
            "no_redundant": self.no_redundant,
            "thread_auto_sticky": self.thread_auto_sticky,
            "thread_only_mode": self.thread_only_mode,
            "suppress_notifications": self.suppress_notifications,
            "is_enabled": self.is_enabled,
        }


def _parse_trigger_mode(value: int, repeater_id: int) -> TriggerMode:
    try:
        return TriggerMode(value)
    except ValueError:
        logger.warning(f"重复播报 {repeater_id} 的触发模式 {value} 无效，按时间间隔处理。")
        return TriggerMode.TIME_INTERVAL
