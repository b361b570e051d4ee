import asyncio
import logging
from datetime import timedelta
from typing import Coroutine

from StickyRelay.cogs.Repeater.dto.GatewayEventDto import (
    MessageReceivedEvent,
    ThreadClosedEvent,
    ThreadCreatedEvent,
)
from StickyRelay.cogs.Repeater.RepeaterRegistry import RepeaterRegistry
from StickyRelay.share.enums.RunnerState import RunnerState
from StickyRelay.share.enums.TriggerMode import TriggerMode

logger = logging.getLogger(__name__)


class RepeaterEventRouter:
    """
    把网关事件分发给相关的 Runner。

    分发只创建后台任务，从不等待 Runner 的发送完成，
    因此事件监听器不会被慢速的 Discord API 调用阻塞。
    """

    def __init__(self, registry: RepeaterRegistry):
        self.registry = registry
        self._tasks: set[asyncio.Task] = set()

    def _spawn(self, coro: Coroutine, description: str):
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_task_done(t, description))

    def _on_task_done(self, task: asyncio.Task, description: str):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"{description} 失败: {error}", exc_info=error)

    async def drain(self):
        """等待所有已分发的任务完成。"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _is_own_message(self, guild_id: int, message_id: int) -> bool:
        return any(
            runner.repeater.last_message_id == message_id
            or runner.threads.is_tracked_message(message_id)
            for runner in self.registry.list_guild(guild_id)
        )

    def on_message(self, event: MessageReceivedEvent) -> int:
        """
        处理新消息:
        - 帖子中: 追踪该帖子的 Runner 重新置底;
        - 父频道中: 该频道的立即模式 Runner 重新发送。

        Returns:
            被分发的 Runner 数量。
        """
        if event.author_is_bot or not self.registry.is_loaded(event.guild_id):
            return 0
        if self._is_own_message(event.guild_id, event.message_id):
            return 0

        dispatched = 0
        if event.in_thread:
            for runner in self.registry.list_guild(event.guild_id):
                if runner.state != RunnerState.STOPPED and event.channel_id in runner.threads:
                    self._spawn(
                        runner.reposition_thread_sticky(event.channel_id),
                        f"重复播报 {runner.id} 在帖子 {event.channel_id} 中重新置底",
                    )
                    dispatched += 1
        else:
            for runner in self.registry.runners_for_channel(event.guild_id, event.channel_id):
                if (
                    runner.state != RunnerState.STOPPED
                    and runner.repeater.trigger_mode == TriggerMode.IMMEDIATE
                    and not runner.repeater.thread_only_mode
                ):
                    self._spawn(
                        runner.on_channel_message(event.message_id),
                        f"立即模式重复播报 {runner.id} 重新发送",
                    )
                    dispatched += 1
        return dispatched

    def on_thread_created(self, event: ThreadCreatedEvent) -> int:
        """
        新帖子创建时，为开启了自动置底的 Runner 安排初始置底消息。
        帖子创建后需要等待一小段时间，避免抢在帖子首条消息之前发送。
        """
        if not self.registry.is_loaded(event.guild_id):
            return 0

        ctx = self.registry.ctx
        age = ctx.clock.now() - event.created_at
        delay = max(ctx.settings.thread_debounce - age, timedelta(0))

        dispatched = 0
        for runner in self.registry.runners_for_channel(event.guild_id, event.parent_id):
            repeater = runner.repeater
            if runner.state == RunnerState.STOPPED or not repeater.thread_auto_sticky:
                continue
            if event.parent_is_forum and not ctx.evaluator.should_display_for_forum_tags(
                repeater, event.applied_tags
            ):
                logger.debug(f"帖子 {event.thread_id} 的标签不满足重复播报 {runner.id} 的条件。")
                continue

            ctx.scheduler.call_later(
                delay.total_seconds(),
                lambda runner=runner: runner.post_thread_sticky(event.thread_id),
            )
            dispatched += 1

        if dispatched:
            logger.debug(f"帖子 {event.thread_id} 将在 {delay.total_seconds():.1f} 秒后置底 {dispatched} 条消息。")
        return dispatched

    def on_thread_closed(self, event: ThreadClosedEvent) -> int:
        """帖子被删除或归档后，追踪它的 Runner 丢弃对应的置底记录。"""
        if not self.registry.is_loaded(event.guild_id):
            return 0

        dispatched = 0
        for runner in self.registry.list_guild(event.guild_id):
            if event.thread_id in runner.threads:
                self._spawn(
                    runner.forget_thread(event.thread_id),
                    f"重复播报 {runner.id} 停止追踪帖子 {event.thread_id}",
                )
                dispatched += 1
        return dispatched
