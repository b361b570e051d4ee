import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable, Optional

from pydantic import ValidationError

from StickyRelay.cogs.Repeater.dto.ForumTagConditionDto import ForumTagConditionDto
from StickyRelay.cogs.Repeater.dto.TimeConditionDto import TimeConditionDto
from StickyRelay.share.TimeUtils import TimeUtils

if TYPE_CHECKING:
    from StickyRelay.cogs.Repeater.dto.RepeaterDto import RepeaterDto

logger = logging.getLogger(__name__)


class ConditionEvaluator:
    """
    判断重复播报当前是否允许发送的纯函数集合。

    条件数据在加载时已经解析为类型化对象；解析失败的条件被视为 “不限制”，
    因此这里的判断不会因为配置错误而阻止发送。
    """

    def __init__(self, default_timezone: str = "UTC", guild_timezones: dict | None = None):
        self.default_timezone = default_timezone
        self.guild_timezones = {int(k): v for k, v in (guild_timezones or {}).items()}

    def guild_now(self, guild_id: int, now_utc: datetime) -> datetime:
        """将 UTC 时间转换为服务器所配置时区的本地时间。"""
        tz_name = self.guild_timezones.get(guild_id, self.default_timezone)
        return TimeUtils.to_local(now_utc, tz_name)

    @staticmethod
    def should_display_at_current_time(repeater: "RepeaterDto", local_now: datetime) -> bool:
        """
        没有时间条件时始终允许；否则只要任意一个条件命中即允许。
        """
        if not repeater.time_conditions:
            return True
        return any(condition.is_active_at(local_now) for condition in repeater.time_conditions)

    @staticmethod
    def should_display_for_forum_tags(repeater: "RepeaterDto", thread_tags: Iterable[int]) -> bool:
        """
        判断新帖子的标签是否满足自动置底的条件。
        未开启自动置底时一律不满足；未配置或已停用的标签条件视为不限制。
        """
        if not repeater.thread_auto_sticky:
            return False
        condition = repeater.forum_tag_condition
        if condition is None or not condition.enabled:
            return True
        return condition.is_valid_for_tags(thread_tags)

    @staticmethod
    def has_expired(repeater: "RepeaterDto", now: datetime) -> bool:
        """超过最长存活时间，或发送次数达到上限时视为过期。"""
        if repeater.max_age is not None and now - repeater.date_added > repeater.max_age:
            return True
        if repeater.max_triggers is not None and repeater.display_count >= repeater.max_triggers:
            return True
        return False


# --- 存储边界上的解析与序列化 ---


def _load_json(raw: Any) -> Any:
    if isinstance(raw, (bytes, str)):
        return json.loads(raw)
    return raw


def parse_time_conditions(raw: Any, repeater_id: Optional[int] = None) -> list[TimeConditionDto]:
    """
    解析存储的时间条件列表。为空或解析失败时返回空列表（即不限制时间）。
    """
    if raw is None or raw == "" or raw == []:
        return []
    try:
        data = _load_json(raw)
        if not isinstance(data, list):
            raise ValueError("时间条件必须是列表")
        return [TimeConditionDto.model_validate(item) for item in data]
    except (ValueError, TypeError, ValidationError) as e:
        logger.warning(f"重复播报 {repeater_id} 的时间条件无法解析，按不限制处理: {e}")
        return []


def parse_forum_tag_condition(
    raw: Any, repeater_id: Optional[int] = None
) -> Optional[ForumTagConditionDto]:
    """
    解析存储的论坛标签条件。为空或解析失败时返回 None（即所有帖子都满足）。
    """
    if raw is None or raw == "" or raw == {}:
        return None
    try:
        data = _load_json(raw)
        if not isinstance(data, dict):
            raise ValueError("论坛标签条件必须是对象")
        return ForumTagConditionDto.model_validate(data)
    except (ValueError, TypeError, ValidationError) as e:
        logger.warning(f"重复播报 {repeater_id} 的论坛标签条件无法解析，按不限制处理: {e}")
        return None


def parse_thread_sticky_messages(raw: Any, repeater_id: Optional[int] = None) -> dict[int, int]:
    """解析 帖子ID -> 消息ID 映射；JSON 的键是字符串，这里统一转为 int。"""
    if not raw:
        return {}
    try:
        data = _load_json(raw)
        return {int(thread_id): int(message_id) for thread_id, message_id in data.items()}
    except (ValueError, TypeError, AttributeError) as e:
        logger.warning(f"重复播报 {repeater_id} 的帖子置底记录无法解析，已清空: {e}")
        return {}


def serialize_time_conditions(conditions: list[TimeConditionDto]) -> Optional[list[dict]]:
    return [condition.to_storage() for condition in conditions] or None


def serialize_forum_tag_condition(condition: Optional[ForumTagConditionDto]) -> Optional[dict]:
    return condition.to_storage() if condition else None
