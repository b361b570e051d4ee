import asyncio
import logging
from collections import defaultdict
from typing import Optional

from StickyRelay.cogs.Repeater.ActivityMonitor import ActivityMonitor
from StickyRelay.cogs.Repeater.ConditionEvaluator import ConditionEvaluator
from StickyRelay.cogs.Repeater.dto.RepeaterDto import RepeaterDto
from StickyRelay.cogs.Repeater.MessagingTransport import MessagingTransport
from StickyRelay.cogs.Repeater.PlaceholderRenderer import PlaceholderRenderer
from StickyRelay.cogs.Repeater.RepeaterSettings import RepeaterSettings
from StickyRelay.cogs.Repeater.RepeaterStore import RepeaterStore
from StickyRelay.cogs.Repeater.RepeatRunner import RepeatRunner, RunnerContext
from StickyRelay.share.TaskScheduler import Clock, TaskScheduler

logger = logging.getLogger(__name__)


class RepeaterRegistry:
    """
    管理所有服务器的 RepeatRunner。

    结构: 服务器ID -> 频道ID -> {重复播报ID -> Runner}。
    涉及 I/O 的批量变更 (加载/卸载服务器) 通过 `_lock` 串行执行。
    """

    def __init__(
        self,
        transport: MessagingTransport,
        store: RepeaterStore,
        scheduler: TaskScheduler,
        clock: Optional[Clock] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        settings: Optional[RepeaterSettings] = None,
        renderer: Optional[PlaceholderRenderer] = None,
    ):
        self.store = store
        self.ctx = RunnerContext(
            transport=transport,
            store=store,
            scheduler=scheduler,
            clock=clock or Clock(),
            evaluator=evaluator or ConditionEvaluator(),
            monitor=ActivityMonitor(transport),
            renderer=renderer or PlaceholderRenderer(),
            settings=settings or RepeaterSettings(),
            remover=self._on_runner_removed,
        )
        self._guilds: dict[int, dict[int, dict[int, RepeatRunner]]] = {}
        self._lock = asyncio.Lock()
        self._ready_guilds: set[int] = set()

    def is_loaded(self, guild_id: int) -> bool:
        return guild_id in self._ready_guilds

    # --- 服务器生命周期 ---

    async def load_guild(self, guild_id: int) -> int:
        """
        从数据库加载服务器的所有重复播报并创建 Runner。
        已存在的 Runner 会先被停止并替换，因此重复调用是安全的。

        Returns:
            加载的重复播报数量。
        """
        async with self._lock:
            previous = self.list_guild(guild_id)
            self._stop_guild(guild_id)
            # 旧 Runner 进行中的发送会写回消息ID，必须在读取记录之前结束
            for runner in previous:
                await runner.wait_idle()

            try:
                records = await self.store.load_repeaters(guild_id)
            except Exception:
                self._guilds.pop(guild_id, None)
                self._ready_guilds.discard(guild_id)
                raise

            channels: dict[int, dict[int, RepeatRunner]] = defaultdict(dict)
            for record in records:
                runner = RepeatRunner(record, self.ctx)
                channels[record.channel_id][record.id] = runner
            self._guilds[guild_id] = dict(channels)
            self._ready_guilds.add(guild_id)

        logger.info(f"服务器 {guild_id} 加载了 {len(records)} 个重复播报。")
        return len(records)

    async def unload_guild(self, guild_id: int):
        """停止并丢弃服务器的所有 Runner，数据库记录保持不变。"""
        async with self._lock:
            count = self._stop_guild(guild_id)
            self._guilds.pop(guild_id, None)
            self._ready_guilds.discard(guild_id)
        if count:
            logger.info(f"服务器 {guild_id} 已卸载 {count} 个重复播报。")

    def _stop_guild(self, guild_id: int) -> int:
        runners = self.list_guild(guild_id)
        for runner in runners:
            runner.dispose()
        return len(runners)

    async def shutdown(self):
        """Bot 关闭时停止所有 Runner。"""
        async with self._lock:
            for guild_id in list(self._guilds):
                self._stop_guild(guild_id)
            self._guilds.clear()
            self._ready_guilds.clear()
        logger.info("所有重复播报已停止。")

    # --- 注册与查询 ---

    def create_runner(self, repeater: RepeaterDto) -> RepeatRunner:
        runner = RepeatRunner(repeater, self.ctx)
        self.register(runner)
        return runner

    def register(self, runner: RepeatRunner):
        channels = self._guilds.setdefault(runner.guild_id, {})
        channels.setdefault(runner.channel_id, {})[runner.id] = runner

    def unregister(self, runner: RepeatRunner):
        channels = self._guilds.get(runner.guild_id)
        if not channels:
            return
        runners = channels.get(runner.channel_id)
        if runners and runners.get(runner.id) is runner:
            del runners[runner.id]
            if not runners:
                del channels[runner.channel_id]

    def get_runner(self, guild_id: int, repeater_id: int) -> Optional[RepeatRunner]:
        for runners in self._guilds.get(guild_id, {}).values():
            runner = runners.get(repeater_id)
            if runner is not None:
                return runner
        return None

    def list_guild(self, guild_id: int) -> list[RepeatRunner]:
        """服务器的所有 Runner，按重复播报 ID 排序。"""
        runners = [
            runner
            for channel_runners in self._guilds.get(guild_id, {}).values()
            for runner in channel_runners.values()
        ]
        return sorted(runners, key=lambda r: r.id)

    def get_by_index(self, guild_id: int, index: int) -> Optional[RepeatRunner]:
        """按列表序号 (从 0 开始) 获取 Runner。"""
        runners = self.list_guild(guild_id)
        if 0 <= index < len(runners):
            return runners[index]
        return None

    def runners_for_channel(self, guild_id: int, channel_id: int) -> list[RepeatRunner]:
        return list(self._guilds.get(guild_id, {}).get(channel_id, {}).values())

    def move_runner(self, runner: RepeatRunner, new_channel_id: int):
        """修改 Runner 的目标频道并更新索引。调用方负责持久化和 reset()。"""
        self.unregister(runner)
        runner.repeater.channel_id = new_channel_id
        self.register(runner)

    # --- 移除 ---

    async def remove_repeater(self, repeater: RepeaterDto, reason: str = "手动删除") -> bool:
        """停止 Runner 并删除数据库记录。"""
        runner = self.get_runner(repeater.guild_id, repeater.id)
        if runner is not None:
            runner.dispose()
            self.unregister(runner)
        deleted = await self.store.delete_repeater(repeater.guild_id, repeater.id)
        logger.info(f"重复播报 {repeater.id} (服务器 {repeater.guild_id}) 已移除: {reason}")
        return deleted

    async def _on_runner_removed(self, runner: RepeatRunner, reason: str):
        try:
            await self.remove_repeater(runner.repeater, reason)
        except Exception as e:
            self.unregister(runner)
            logger.error(f"删除重复播报 {runner.id} 的记录失败: {e}", exc_info=True)
