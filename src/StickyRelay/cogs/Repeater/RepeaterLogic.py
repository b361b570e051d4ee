import logging
from typing import Any, Optional

from StickyRelay.cogs.Repeater.dto.RepeaterDto import RepeaterDto
from StickyRelay.cogs.Repeater.dto.RepeaterStatisticsDto import RepeaterStatisticsDto
from StickyRelay.cogs.Repeater.PlaceholderRenderer import sanitize_mentions
from StickyRelay.cogs.Repeater.qo.CreateRepeaterQo import CreateRepeaterQo
from StickyRelay.cogs.Repeater.qo.UpdateRepeaterQo import UpdateRepeaterQo
from StickyRelay.cogs.Repeater.RepeaterNotFoundError import RepeaterNotFoundError
from StickyRelay.cogs.Repeater.RepeaterRegistry import RepeaterRegistry
from StickyRelay.cogs.Repeater.RepeatRunner import RepeatRunner
from StickyRelay.models.GuildRepeater import GuildRepeater
from StickyRelay.share.enums.TriggerMode import TriggerMode
from StickyRelay.share.TimeUtils import TimeUtils

logger = logging.getLogger(__name__)

# 修改这些字段后需要重新布置触发器
_SCHEDULE_FIELDS = frozenset(
    {
        "channel_id",
        "trigger_mode",
        "interval",
        "start_time_of_day",
        "activity_threshold",
        "activity_time_window",
        "thread_only_mode",
        "is_enabled",
    }
)


class RepeaterLogic:
    """
    重复播报管理命令的业务逻辑。

    每个修改操作都会先写入数据库，再在返回前同步到正在运行的 Runner，
    因此调用方拿到返回值时，新的配置已经生效。
    """

    def __init__(self, registry: RepeaterRegistry):
        self.registry = registry

    @staticmethod
    def _validate_activity(trigger_mode: TriggerMode, activity_threshold: int):
        if trigger_mode in (TriggerMode.ON_ACTIVITY, TriggerMode.AFTER_MESSAGES) and (
            activity_threshold <= 0
        ):
            raise ValueError(f"触发模式 {trigger_mode.name} 需要大于 0 的活跃度阈值")

    def _require_runner(self, guild_id: int, repeater_id: int) -> RepeatRunner:
        runner = self.registry.get_runner(guild_id, repeater_id)
        if runner is None:
            raise RepeaterNotFoundError(guild_id, repeater_id)
        return runner

    # --- 创建与修改 ---

    async def create_repeater(self, qo: CreateRepeaterQo) -> RepeatRunner:
        """
        创建一个新的重复播报并立即开始运行。

        Raises:
            ValueError: 活跃度相关模式的阈值无效。
        """
        self._validate_activity(qo.trigger_mode, qo.activity_threshold)

        now = self.registry.ctx.clock.now()
        draft = RepeaterDto(
            id=0,
            guild_id=qo.guild_id,
            channel_id=qo.channel_id,
            message=qo.message if qo.allow_mentions else sanitize_mentions(qo.message),
            trigger_mode=qo.trigger_mode,
            interval=qo.interval,
            start_time_of_day=qo.start_time_of_day,
            activity_threshold=qo.activity_threshold,
            activity_time_window=qo.activity_time_window,
            conversation_detection=qo.conversation_detection,
            conversation_threshold=qo.conversation_threshold,
            priority=qo.priority,
            time_conditions=qo.time_conditions,
            forum_tag_condition=qo.forum_tag_condition,
            max_age=qo.max_age,
            max_triggers=qo.max_triggers,
            no_redundant=qo.no_redundant,
            thread_auto_sticky=qo.thread_auto_sticky,
            thread_only_mode=qo.thread_only_mode,
            suppress_notifications=qo.suppress_notifications,
            is_enabled=qo.is_enabled,
            date_added=now,
        )
        record = GuildRepeater(
            guild_id=qo.guild_id,
            date_added=TimeUtils.as_naive_utc(now),
            **draft.to_record_values(),
        )
        repeater = await self.registry.store.insert_repeater(record)
        runner = self.registry.create_runner(repeater)
        logger.info(
            f"在服务器 {qo.guild_id} 的频道 {qo.channel_id} 创建了重复播报 {repeater.id} "
            f"(模式: {repeater.trigger_mode.name})"
        )
        return runner

    async def update_repeater(
        self, guild_id: int, repeater_id: int, qo: UpdateRepeaterQo
    ) -> RepeaterDto:
        """
        修改重复播报。影响调度的修改会重置 Runner，禁用会停止 Runner。

        Raises:
            RepeaterNotFoundError: 重复播报不存在。
            ValueError: 修改后的活跃度阈值无效。
        """
        runner = self._require_runner(guild_id, repeater_id)
        changes = qo.changes()
        if not changes:
            return runner.repeater
        if "message" in changes and not qo.allow_mentions:
            changes["message"] = sanitize_mentions(changes["message"])

        candidate = runner.repeater.model_copy(update=changes)
        self._validate_activity(candidate.trigger_mode, candidate.activity_threshold)

        stored = await self.registry.store.update_repeater(
            guild_id, repeater_id, candidate.to_record_values()
        )
        if stored is None:
            raise RepeaterNotFoundError(guild_id, repeater_id)

        self._apply(runner, changes)
        logger.debug(f"重复播报 {repeater_id} 已更新: {sorted(changes)}")
        return runner.repeater

    def _apply(self, runner: RepeatRunner, changes: dict[str, Any]):
        """把修改同步到 Runner 的内存副本，必要时重新布置触发器。"""
        new_channel_id = changes.get("channel_id")
        for name, value in changes.items():
            if name != "channel_id":
                setattr(runner.repeater, name, value)
        if new_channel_id is not None and new_channel_id != runner.channel_id:
            self.registry.move_runner(runner, new_channel_id)

        if _SCHEDULE_FIELDS.isdisjoint(changes):
            return
        if runner.repeater.is_enabled:
            runner.reset()
        else:
            runner.stop()

    async def toggle_enabled(self, guild_id: int, repeater_id: int) -> bool:
        runner = self._require_runner(guild_id, repeater_id)
        value = not runner.repeater.is_enabled
        await self.update_repeater(guild_id, repeater_id, UpdateRepeaterQo(is_enabled=value))
        return value

    async def toggle_redundancy(self, guild_id: int, repeater_id: int) -> bool:
        runner = self._require_runner(guild_id, repeater_id)
        value = not runner.repeater.no_redundant
        await self.update_repeater(guild_id, repeater_id, UpdateRepeaterQo(no_redundant=value))
        return value

    async def toggle_conversation_detection(self, guild_id: int, repeater_id: int) -> bool:
        runner = self._require_runner(guild_id, repeater_id)
        value = not runner.repeater.conversation_detection
        await self.update_repeater(
            guild_id, repeater_id, UpdateRepeaterQo(conversation_detection=value)
        )
        return value

    # --- 删除与触发 ---

    async def delete_repeater(self, guild_id: int, repeater_id: int) -> RepeaterDto:
        runner = self._require_runner(guild_id, repeater_id)
        await self.registry.remove_repeater(runner.repeater)
        return runner.repeater

    async def trigger_repeater(self, guild_id: int, repeater_id: int) -> bool:
        """立即发送一次。返回 False 表示该重复播报当前不能手动触发 (已禁用或仅帖子模式)。"""
        runner = self._require_runner(guild_id, repeater_id)
        return await runner.trigger_now()

    # --- 查询 ---

    def get_repeater(self, guild_id: int, repeater_id: int) -> RepeaterDto:
        return self._require_runner(guild_id, repeater_id).repeater

    def get_repeater_by_index(self, guild_id: int, index: int) -> Optional[RepeatRunner]:
        """按列表序号 (从 0 开始，按 ID 排序) 获取。"""
        return self.registry.get_by_index(guild_id, index)

    def list_repeaters(self, guild_id: int) -> list[RepeatRunner]:
        return self.registry.list_guild(guild_id)

    def get_statistics(self, guild_id: int) -> RepeaterStatisticsDto:
        return RepeaterStatisticsDto.from_repeaters(
            [runner.repeater for runner in self.registry.list_guild(guild_id)]
        )
