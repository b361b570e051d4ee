from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import BigInteger, Column, Index
from sqlmodel import Field, text

from StickyRelay.models.BaseModel import BaseModel
from StickyRelay.share.database_types import JSON_TYPE
from StickyRelay.share.enums.TriggerMode import TriggerMode
from StickyRelay.share.TimeUtils import TimeUtils


class GuildRepeater(BaseModel, table=True):
    """
    重复播报 (置底消息) 配置表

    时长字段统一以秒为单位存储；时间条件、论坛标签条件和帖子置底消息映射以 JSON 存储，
    在加载到内存时一次性解析为类型化对象。
    """

    __tablename__ = "guild_repeater"  # type: ignore

    guild_id: int = Field(sa_type=BigInteger, index=True, description="服务器ID")
    channel_id: int = Field(sa_type=BigInteger, index=True, description="目标频道ID")
    message: str = Field(description="消息模板")

    trigger_mode: int = Field(
        default=TriggerMode.TIME_INTERVAL,
        description="触发模式: 0-时间间隔, 1-活跃时, 2-安静时, 3-立即, 4-每N条消息",
    )
    interval_seconds: int = Field(default=300, description="发送间隔（秒）")
    start_time_of_day: Optional[str] = Field(default=None, description="首次发送的对齐时刻 HH:MM")
    activity_threshold: int = Field(default=5, description="活跃度阈值（消息数）")
    activity_time_window_seconds: int = Field(default=300, description="活跃度统计时间窗（秒）")
    conversation_detection: bool = Field(default=False, description="是否在对话进行中暂缓发送")
    conversation_threshold: int = Field(default=5, description="每分钟达到多少条消息视为对话中")
    priority: int = Field(default=50, description="优先级 0~100，仅用于展示排序")

    time_conditions: Optional[List[Any]] = Field(
        default=None, sa_column=Column(JSON_TYPE), description="时间条件列表"
    )
    forum_tag_conditions: Optional[Dict[str, Any]] = Field(
        default=None, sa_column=Column(JSON_TYPE), description="论坛标签条件"
    )
    max_age_seconds: Optional[int] = Field(default=None, description="最长存活时间（秒）")
    max_triggers: Optional[int] = Field(default=None, description="最多发送次数")

    no_redundant: bool = Field(default=False, description="消息已在底部时不重复发送")
    thread_auto_sticky: bool = Field(default=False, description="是否自动在新帖子中置底")
    thread_only_mode: bool = Field(default=False, description="只在帖子中发送，不在父频道发送")
    suppress_notifications: bool = Field(default=False, description="以静默消息发送")
    is_enabled: bool = Field(default=True, index=True, description="是否启用")

    last_message_id: Optional[int] = Field(
        default=None, sa_type=BigInteger, description="最近一次发送的消息ID"
    )
    display_count: int = Field(default=0, description="累计发送次数")
    last_displayed: Optional[datetime] = Field(default=None, description="最近一次发送的UTC时间")
    thread_sticky_messages: Optional[Dict[str, int]] = Field(
        default=None, sa_column=Column(JSON_TYPE), description="帖子ID -> 置底消息ID"
    )
    date_added: datetime = Field(
        default_factory=TimeUtils.naive_utcnow,
        sa_column_kwargs={"server_default": text("CURRENT_TIMESTAMP")},
        description="创建时间",
    )

    __table_args__ = (Index("idx_guild_repeater_guild_channel", "guild_id", "channel_id"),)
