from datetime import time, timedelta
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from StickyRelay.cogs.Repeater.dto.ForumTagConditionDto import ForumTagConditionDto
from StickyRelay.cogs.Repeater.dto.TimeConditionDto import TimeConditionDto
from StickyRelay.share.enums.TriggerMode import TriggerMode

MIN_INTERVAL = timedelta(seconds=5)
MAX_INTERVAL = timedelta(minutes=25000)
MIN_ACTIVITY_WINDOW = timedelta(seconds=30)
MAX_ACTIVITY_WINDOW = timedelta(hours=6)


def check_interval(value: Optional[timedelta]) -> Optional[timedelta]:
    if value is not None and not MIN_INTERVAL <= value <= MAX_INTERVAL:
        raise ValueError("发送间隔必须在 5 秒到 25000 分钟之间")
    return value


def check_activity_window(value: Optional[timedelta]) -> Optional[timedelta]:
    if value is not None and not MIN_ACTIVITY_WINDOW <= value <= MAX_ACTIVITY_WINDOW:
        raise ValueError("活跃度时间窗必须在 30 秒到 6 小时之间")
    return value


class CreateRepeaterQo(BaseModel):
    """
    创建重复播报的查询对象
    """

    guild_id: int
    channel_id: int
    message: str = Field(min_length=1)
    allow_mentions: bool = False

    trigger_mode: TriggerMode = TriggerMode.TIME_INTERVAL
    interval: timedelta = timedelta(minutes=5)
    start_time_of_day: Optional[time] = None
    activity_threshold: int = 5
    activity_time_window: timedelta = timedelta(minutes=5)
    conversation_detection: bool = False
    conversation_threshold: int = Field(default=5, ge=0)
    priority: int = Field(default=50, ge=0, le=100)

    time_conditions: list[TimeConditionDto] = []
    forum_tag_condition: Optional[ForumTagConditionDto] = None
    max_age: Optional[timedelta] = None
    max_triggers: Optional[int] = Field(default=None, ge=1)

    no_redundant: bool = False
    thread_auto_sticky: bool = False
    thread_only_mode: bool = False
    suppress_notifications: bool = False
    is_enabled: bool = True

    @field_validator("interval")
    @classmethod
    def _check_interval(cls, value):
        return check_interval(value)

    @field_validator("activity_time_window")
    @classmethod
    def _check_window(cls, value):
        return check_activity_window(value)
