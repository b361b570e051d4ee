from datetime import time, timedelta
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from StickyRelay.cogs.Repeater.dto.ForumTagConditionDto import ForumTagConditionDto
from StickyRelay.cogs.Repeater.dto.TimeConditionDto import TimeConditionDto
from StickyRelay.cogs.Repeater.qo.CreateRepeaterQo import check_activity_window, check_interval
from StickyRelay.share.enums.TriggerMode import TriggerMode


class UpdateRepeaterQo(BaseModel):
    """
    修改重复播报的查询对象。
    只有显式传入的字段会被修改；可空字段显式传入 None 表示清除。
    """

    channel_id: Optional[int] = None
    message: Optional[str] = Field(default=None, min_length=1)
    allow_mentions: bool = False

    trigger_mode: Optional[TriggerMode] = None
    interval: Optional[timedelta] = None
    start_time_of_day: Optional[time] = None
    activity_threshold: Optional[int] = None
    activity_time_window: Optional[timedelta] = None
    conversation_detection: Optional[bool] = None
    conversation_threshold: Optional[int] = Field(default=None, ge=0)
    priority: Optional[int] = Field(default=None, ge=0, le=100)

    time_conditions: Optional[list[TimeConditionDto]] = None
    forum_tag_condition: Optional[ForumTagConditionDto] = None
    max_age: Optional[timedelta] = None
    max_triggers: Optional[int] = Field(default=None, ge=1)

    no_redundant: Optional[bool] = None
    thread_auto_sticky: Optional[bool] = None
    thread_only_mode: Optional[bool] = None
    suppress_notifications: Optional[bool] = None
    is_enabled: Optional[bool] = None

    @field_validator("interval")
    @classmethod
    def _check_interval(cls, value):
        return check_interval(value)

    @field_validator("activity_time_window")
    @classmethod
    def _check_window(cls, value):
        return check_activity_window(value)

    def changes(self) -> dict[str, Any]:
        """显式设置的字段及其值 (不含 allow_mentions)。"""
        result = {name: getattr(self, name) for name in self.model_fields_set}
        result.pop("allow_mentions", None)
        if result.get("time_conditions") is None and "time_conditions" in result:
            result["time_conditions"] = []
        return result
