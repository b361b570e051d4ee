import logging

import discord
from discord.ext import commands

from StickyRelay.cogs.Repeater.dto.GatewayEventDto import (
    MessageReceivedEvent,
    ThreadClosedEvent,
    ThreadCreatedEvent,
)
from StickyRelay.cogs.Repeater.RepeaterEventRouter import RepeaterEventRouter
from StickyRelay.cogs.Repeater.RepeaterRegistry import RepeaterRegistry
from StickyRelay.share.StickyRelayBot import StickyRelayBot

logger = logging.getLogger(__name__)


class RepeaterListener(commands.Cog):
    """
    将 Discord 网关事件转换为重复播报的注册表与路由调用。
    """

    def __init__(self, bot: StickyRelayBot, registry: RepeaterRegistry, router: RepeaterEventRouter):
        self.bot = bot
        self.registry = registry
        self.router = router

    async def cog_unload(self):
        """卸载时停止所有 Runner，并等待已分发的任务结束。"""
        await self.registry.shutdown()
        await self.router.drain()

    async def _load_guild(self, guild: discord.Guild):
        try:
            await self.registry.load_guild(guild.id)
        except Exception as e:
            logger.error(f"加载服务器 {guild.id} 的重复播报失败: {e}", exc_info=True)

    @commands.Cog.listener()
    async def on_ready(self):
        """启动时为所有尚未加载的服务器加载重复播报。"""
        for guild in self.bot.guilds:
            if not self.registry.is_loaded(guild.id):
                await self._load_guild(guild)
        logger.info(f"重复播报模块已就绪，共 {len(self.bot.guilds)} 个服务器。")

    @commands.Cog.listener()
    async def on_guild_available(self, guild: discord.Guild):
        await self._load_guild(guild)

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild):
        await self._load_guild(guild)

    @commands.Cog.listener()
    async def on_guild_unavailable(self, guild: discord.Guild):
        await self.registry.unload_guild(guild.id)

    @commands.Cog.listener()
    async def on_guild_remove(self, guild: discord.Guild):
        # 离开服务器只停止运行，保留数据库记录
        await self.registry.unload_guild(guild.id)

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        if message.guild is None or message.author.bot:
            return

        parent_id = message.channel.parent_id if isinstance(message.channel, discord.Thread) else None
        self.router.on_message(
            MessageReceivedEvent(
                guild_id=message.guild.id,
                channel_id=message.channel.id,
                message_id=message.id,
                author_id=message.author.id,
                author_is_bot=message.author.bot,
                created_at=message.created_at,
                parent_id=parent_id,
            )
        )

    @commands.Cog.listener()
    async def on_thread_create(self, thread: discord.Thread):
        if thread.parent_id is None:
            return

        parent = thread.parent
        self.router.on_thread_created(
            ThreadCreatedEvent(
                guild_id=thread.guild.id,
                thread_id=thread.id,
                parent_id=thread.parent_id,
                parent_is_forum=isinstance(parent, discord.ForumChannel),
                applied_tags=[tag.id for tag in thread.applied_tags],
                created_at=thread.created_at or discord.utils.utcnow(),
            )
        )

    @commands.Cog.listener()
    async def on_raw_thread_delete(self, payload: discord.RawThreadDeleteEvent):
        self.router.on_thread_closed(
            ThreadClosedEvent(guild_id=payload.guild_id, thread_id=payload.thread_id)
        )

    @commands.Cog.listener()
    async def on_thread_update(self, before: discord.Thread, after: discord.Thread):
        if after.archived and not before.archived:
            self.router.on_thread_closed(
                ThreadClosedEvent(guild_id=after.guild.id, thread_id=after.id)
            )
