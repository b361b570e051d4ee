from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class MessageReceivedEvent(BaseModel):
    """
    网关消息事件的精简副本。
    `parent_id` 仅在消息位于帖子中时存在，为帖子所属的父频道。
    """

    guild_id: int
    channel_id: int
    message_id: int
    author_id: int
    author_is_bot: bool
    created_at: datetime
    parent_id: Optional[int] = None

    @property
    def in_thread(self) -> bool:
        return self.parent_id is not None


class ThreadCreatedEvent(BaseModel):
    """新帖子创建事件"""

    guild_id: int
    thread_id: int
    parent_id: int
    parent_is_forum: bool
    applied_tags: list[int] = []
    created_at: datetime


class ThreadClosedEvent(BaseModel):
    """帖子被删除或归档"""

    guild_id: int
    thread_id: int
