from datetime import datetime
from typing import Any, Optional

from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from StickyRelay.models.GuildRepeater import GuildRepeater
from StickyRelay.share.TimeUtils import TimeUtils


class RepeaterService:
    """
    重复播报记录的数据访问服务。
    只负责读写数据库，提交由调用方的 UnitOfWork 控制。
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_guild_repeaters(self, guild_id: int) -> list[GuildRepeater]:
        """
        获取服务器的所有重复播报，按 ID 升序排列。
        """
        result = await self.session.exec(
            select(GuildRepeater)
            .where(GuildRepeater.guild_id == guild_id)
            .order_by(col(GuildRepeater.id))
        )
        return list(result.all())

    async def get_repeater(self, guild_id: int, repeater_id: int) -> Optional[GuildRepeater]:
        result = await self.session.exec(
            select(GuildRepeater).where(
                GuildRepeater.id == repeater_id, GuildRepeater.guild_id == guild_id
            )
        )
        return result.one_or_none()

    async def create_repeater(self, repeater: GuildRepeater) -> GuildRepeater:
        """
        插入一条新的重复播报记录，并刷新以拿到自增 ID。
        """
        self.session.add(repeater)
        await self.session.flush()
        await self.session.refresh(repeater)
        return repeater

    async def update_repeater(
        self, guild_id: int, repeater_id: int, values: dict[str, Any]
    ) -> Optional[GuildRepeater]:
        """
        按列名更新记录。

        Returns:
            更新后的记录；不存在时返回 None。
        """
        repeater = await self.get_repeater(guild_id, repeater_id)
        if repeater is None:
            return None
        for key, value in values.items():
            setattr(repeater, key, value)
        self.session.add(repeater)
        await self.session.flush()
        return repeater

    async def delete_repeater(self, guild_id: int, repeater_id: int) -> bool:
        repeater = await self.get_repeater(guild_id, repeater_id)
        if repeater is None:
            return False
        await self.session.delete(repeater)
        await self.session.flush()
        return True

    async def update_stats(
        self, repeater_id: int, display_count: int, last_displayed: datetime
    ) -> None:
        repeater = await self.session.get(GuildRepeater, repeater_id)
        if repeater is None:
            return
        repeater.display_count = display_count
        repeater.last_displayed = TimeUtils.as_naive_utc(last_displayed)
        self.session.add(repeater)

    async def set_last_message(self, repeater_id: int, message_id: Optional[int]) -> None:
        repeater = await self.session.get(GuildRepeater, repeater_id)
        if repeater is None:
            return
        repeater.last_message_id = message_id
        self.session.add(repeater)

    async def set_thread_sticky_messages(self, repeater_id: int, mapping: dict[int, int]) -> None:
        repeater = await self.session.get(GuildRepeater, repeater_id)
        if repeater is None:
            return
        # JSON 对象的键只能是字符串
        repeater.thread_sticky_messages = {str(k): v for k, v in mapping.items()} or None
        self.session.add(repeater)
