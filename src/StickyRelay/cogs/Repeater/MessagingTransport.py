import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol

import aiohttp
import discord

from StickyRelay.share.StickyRelayBot import StickyRelayBot

logger = logging.getLogger(__name__)


# --- 错误分类 ---


class DeliveryError(Exception):
    """消息投递失败的基类"""


class PermissionDeniedError(DeliveryError):
    """缺少权限 (403)。属于永久性错误，重复播报会被移除。"""


class ChannelMissingError(DeliveryError):
    """目标频道已不存在 (404)。属于永久性错误，重复播报会被移除。"""


class TransientDeliveryError(DeliveryError):
    """网络抖动、速率限制、Discord 5xx 等暂时性错误，下一次触发即为重试。"""


@dataclass
class ChannelHandle:
    """
    解析后的频道/帖子句柄。
    `raw` 保存底层 discord.py 对象，只由传输层自身使用。
    """

    id: int
    guild_id: int
    name: str
    is_forum: bool = False
    is_thread: bool = False
    guild_name: str = ""
    raw: Any = field(default=None, repr=False, compare=False)

    @property
    def mention(self) -> str:
        return f"<#{self.id}>"


@dataclass(frozen=True)
class MessageSnapshot:
    id: int
    author_id: int
    author_is_bot: bool
    created_at: datetime


class MessagingTransport(Protocol):
    async def resolve_channel(self, channel_id: int) -> Optional[ChannelHandle]: ...

    async def send_message(
        self, channel: ChannelHandle, content: str, *, silent: bool = False
    ) -> int: ...

    async def delete_message(self, channel: ChannelHandle, message_id: int) -> None: ...

    async def get_last_message_id(self, channel: ChannelHandle) -> Optional[int]: ...

    async def get_recent_messages(
        self, channel: ChannelHandle, limit: int
    ) -> list[MessageSnapshot]: ...


def classify_error(error: BaseException, action: str) -> DeliveryError:
    """将 discord.py / aiohttp 的异常映射为投递错误类型。"""
    if isinstance(error, discord.Forbidden):
        return PermissionDeniedError(f"{action}: 权限不足 ({error.text})")
    if isinstance(error, discord.NotFound):
        return ChannelMissingError(f"{action}: 目标不存在 ({error.text})")
    if isinstance(error, discord.HTTPException):
        return TransientDeliveryError(f"{action}: HTTP {error.status} ({error.text})")
    if isinstance(error, (aiohttp.ClientError, asyncio.TimeoutError)):
        return TransientDeliveryError(f"{action}: 网络错误 {error!r}")
    return TransientDeliveryError(f"{action}: {error!r}")


class DiscordMessagingTransport:
    """
    基于 discord.py 的消息传输实现。
    所有 API 调用都通过 bot.api_scheduler 以低优先级提交，让交互请求优先。
    """

    def __init__(self, bot: StickyRelayBot, priority: int = 5):
        self.bot = bot
        self.priority = priority

    async def _call(self, coro, action: str):
        try:
            return await self.bot.api_scheduler.submit(coro=coro, priority=self.priority)
        except (discord.HTTPException, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise classify_error(e, action) from e

    @staticmethod
    def _to_handle(channel: Any) -> ChannelHandle:
        guild = getattr(channel, "guild", None)
        return ChannelHandle(
            id=channel.id,
            guild_id=guild.id if guild else 0,
            guild_name=guild.name if guild else "",
            name=getattr(channel, "name", str(channel.id)),
            is_forum=isinstance(channel, discord.ForumChannel),
            is_thread=isinstance(channel, discord.Thread),
            raw=channel,
        )

    async def resolve_channel(self, channel_id: int) -> Optional[ChannelHandle]:
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self._call(self.bot.fetch_channel(channel_id), "获取频道")
            except ChannelMissingError:
                return None
        if not isinstance(channel, (discord.TextChannel, discord.Thread, discord.ForumChannel)):
            logger.warning(f"频道 {channel_id} 不是文本频道、帖子或论坛，无法用于重复播报。")
            return None
        return self._to_handle(channel)

    async def send_message(self, channel: ChannelHandle, content: str, *, silent: bool = False) -> int:
        if channel.is_forum:
            raise PermissionDeniedError(f"论坛频道 {channel.id} 不能直接发送消息")
        message = await self._call(channel.raw.send(content, silent=silent), "发送消息")
        return message.id

    async def delete_message(self, channel: ChannelHandle, message_id: int) -> None:
        try:
            await self._call(channel.raw.get_partial_message(message_id).delete(), "删除消息")
        except ChannelMissingError:
            # 消息已经不存在，视为删除成功
            logger.debug(f"频道 {channel.id} 中的消息 {message_id} 已不存在。")

    async def get_last_message_id(self, channel: ChannelHandle) -> Optional[int]:
        messages = await self.get_recent_messages(channel, 1)
        return messages[0].id if messages else None

    async def get_recent_messages(self, channel: ChannelHandle, limit: int) -> list[MessageSnapshot]:
        if channel.is_forum:
            return []

        async def _fetch() -> list[discord.Message]:
            return [message async for message in channel.raw.history(limit=limit)]

        messages = await self._call(_fetch(), "读取消息历史")
        return [
            MessageSnapshot(
                id=message.id,
                author_id=message.author.id,
                author_is_bot=message.author.bot,
                created_at=message.created_at,
            )
            for message in messages
        ]
