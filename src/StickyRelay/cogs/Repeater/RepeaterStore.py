import logging
from datetime import datetime
from typing import Any, Optional, Protocol

from StickyRelay.cogs.Repeater.dto.RepeaterDto import RepeaterDto
from StickyRelay.models.GuildRepeater import GuildRepeater
from StickyRelay.share.DatabaseHandler import DatabaseHandler
from StickyRelay.share.UnitOfWork import UnitOfWork

logger = logging.getLogger(__name__)


class RepeaterStore(Protocol):
    async def load_repeaters(self, guild_id: int) -> list[RepeaterDto]: ...

    async def get_repeater(self, guild_id: int, repeater_id: int) -> Optional[RepeaterDto]: ...

    async def insert_repeater(self, record: GuildRepeater) -> RepeaterDto: ...

    async def update_repeater(
        self, guild_id: int, repeater_id: int, values: dict[str, Any]
    ) -> Optional[RepeaterDto]: ...

    async def delete_repeater(self, guild_id: int, repeater_id: int) -> bool: ...

    async def update_stats(
        self, repeater_id: int, display_count: int, last_displayed: datetime
    ) -> None: ...

    async def set_last_message(self, repeater_id: int, message_id: Optional[int]) -> None: ...

    async def set_thread_sticky_messages(self, repeater_id: int, mapping: dict[int, int]) -> None: ...


class SqlRepeaterStore:
    """
    基于 UnitOfWork 的持久化实现，每次调用使用独立的事务。
    返回值统一转换为 RepeaterDto，ORM 对象不会离开这一层。
    """

    def __init__(self, db_handler: DatabaseHandler):
        self.db_handler = db_handler

    async def load_repeaters(self, guild_id: int) -> list[RepeaterDto]:
        async with UnitOfWork(self.db_handler) as uow:
            records = await uow.repeaters.get_guild_repeaters(guild_id)
            return [RepeaterDto.from_record(record) for record in records]

    async def get_repeater(self, guild_id: int, repeater_id: int) -> Optional[RepeaterDto]:
        async with UnitOfWork(self.db_handler) as uow:
            record = await uow.repeaters.get_repeater(guild_id, repeater_id)
            return RepeaterDto.from_record(record) if record else None

    async def insert_repeater(self, record: GuildRepeater) -> RepeaterDto:
        async with UnitOfWork(self.db_handler) as uow:
            created = await uow.repeaters.create_repeater(record)
            dto = RepeaterDto.from_record(created)
            await uow.commit()
        logger.debug(f"已创建重复播报 {dto.id} (服务器 {dto.guild_id})")
        return dto

    async def update_repeater(
        self, guild_id: int, repeater_id: int, values: dict[str, Any]
    ) -> Optional[RepeaterDto]:
        async with UnitOfWork(self.db_handler) as uow:
            record = await uow.repeaters.update_repeater(guild_id, repeater_id, values)
            if record is None:
                return None
            dto = RepeaterDto.from_record(record)
            await uow.commit()
            return dto

    async def delete_repeater(self, guild_id: int, repeater_id: int) -> bool:
        async with UnitOfWork(self.db_handler) as uow:
            deleted = await uow.repeaters.delete_repeater(guild_id, repeater_id)
            await uow.commit()
            return deleted

    async def update_stats(
        self, repeater_id: int, display_count: int, last_displayed: datetime
    ) -> None:
        async with UnitOfWork(self.db_handler) as uow:
            await uow.repeaters.update_stats(repeater_id, display_count, last_displayed)

    async def set_last_message(self, repeater_id: int, message_id: Optional[int]) -> None:
        async with UnitOfWork(self.db_handler) as uow:
            await uow.repeaters.set_last_message(repeater_id, message_id)

    async def set_thread_sticky_messages(self, repeater_id: int, mapping: dict[int, int]) -> None:
        async with UnitOfWork(self.db_handler) as uow:
            await uow.repeaters.set_thread_sticky_messages(repeater_id, mapping)
