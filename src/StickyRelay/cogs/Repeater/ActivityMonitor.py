import logging
from datetime import datetime, timedelta
from typing import Optional

from StickyRelay.cogs.Repeater.dto.RepeaterDto import RepeaterDto
from StickyRelay.cogs.Repeater.MessagingTransport import (
    ChannelHandle,
    DeliveryError,
    MessageSnapshot,
    MessagingTransport,
)

logger = logging.getLogger(__name__)

QUIET_HISTORY_LIMIT = 50
CONVERSATION_HISTORY_LIMIT = 20
MAX_HISTORY_LIMIT = 100


class ActivityMonitor:
    """
    基于频道最近消息的只读活跃度查询。
    读取失败时一律返回 False 并记录日志，不会把异常抛给调用方。
    """

    def __init__(self, transport: MessagingTransport):
        self.transport = transport

    async def _recent(self, channel: ChannelHandle, limit: int) -> Optional[list[MessageSnapshot]]:
        try:
            return await self.transport.get_recent_messages(channel, min(limit, MAX_HISTORY_LIMIT))
        except DeliveryError as e:
            logger.warning(f"读取频道 {channel.id} 的消息历史失败: {e}")
            return None

    async def has_sufficient_activity(
        self, repeater: RepeaterDto, channel: ChannelHandle, now: datetime
    ) -> bool:
        """
        统计 [max(now - 时间窗, 上次检查时间), now] 内的消息数是否达到阈值。
        每次调用都会把 `activity_based_last_check` 推进到 now。
        """
        since = now - repeater.activity_time_window
        if repeater.activity_based_last_check and repeater.activity_based_last_check > since:
            since = repeater.activity_based_last_check
        repeater.activity_based_last_check = now

        messages = await self._recent(channel, repeater.activity_threshold + 10)
        if messages is None:
            return False
        count = sum(1 for m in messages if since <= m.created_at <= now)
        logger.debug(
            f"重复播报 {repeater.id}: 自 {since.isoformat()} 起有 {count} 条消息，"
            f"阈值 {repeater.activity_threshold}"
        )
        return count >= repeater.activity_threshold

    async def is_channel_quiet(self, channel: ChannelHandle, window: timedelta, now: datetime) -> bool:
        messages = await self._recent(channel, QUIET_HISTORY_LIMIT)
        if messages is None:
            return False
        return not any(now - m.created_at < window for m in messages)

    async def has_reached_message_threshold(
        self, repeater: RepeaterDto, channel: ChannelHandle
    ) -> bool:
        """
        自上次发送以来（不含）的非机器人消息数是否达到阈值。
        置底消息本身不计入。
        """
        messages = await self._recent(channel, repeater.activity_threshold + 10)
        if messages is None:
            return False
        count = sum(
            1
            for m in messages
            if not m.author_is_bot
            and m.id != repeater.last_message_id
            and (repeater.last_displayed is None or m.created_at > repeater.last_displayed)
        )
        return count >= repeater.activity_threshold

    async def is_conversation_active(
        self, channel: ChannelHandle, threshold: int, now: datetime
    ) -> bool:
        if threshold <= 0:
            return False
        messages = await self._recent(channel, max(CONVERSATION_HISTORY_LIMIT, threshold))
        if messages is None:
            return False
        recent = sum(1 for m in messages if now - m.created_at < timedelta(minutes=1))
        return recent >= threshold
