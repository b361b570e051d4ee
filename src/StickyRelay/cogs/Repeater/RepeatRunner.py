import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from StickyRelay.cogs.Repeater.ActivityMonitor import ActivityMonitor
from StickyRelay.cogs.Repeater.ConditionEvaluator import ConditionEvaluator
from StickyRelay.cogs.Repeater.dto.RepeaterDto import RepeaterDto
from StickyRelay.cogs.Repeater.MessagingTransport import (
    ChannelHandle,
    ChannelMissingError,
    MessagingTransport,
    PermissionDeniedError,
    TransientDeliveryError,
)
from StickyRelay.cogs.Repeater.PlaceholderRenderer import PlaceholderRenderer, RenderContext
from StickyRelay.cogs.Repeater.RepeaterSettings import RepeaterSettings
from StickyRelay.cogs.Repeater.RepeaterStore import RepeaterStore
from StickyRelay.cogs.Repeater.ThreadStickyTracker import ThreadStickyTracker
from StickyRelay.cogs.Repeater.TriggerPolicy import Trigger, build_trigger
from StickyRelay.share.enums.RunnerState import RunnerState
from StickyRelay.share.enums.TriggerMode import TriggerMode
from StickyRelay.share.TaskScheduler import Clock, ScheduledHandle, TaskScheduler
from StickyRelay.share.TimeUtils import TimeUtils

logger = logging.getLogger(__name__)

_MODE_INDICATORS = {
    TriggerMode.ON_ACTIVITY: "📈",
    TriggerMode.ON_NO_ACTIVITY: "📉",
    TriggerMode.IMMEDIATE: "⚡",
    TriggerMode.AFTER_MESSAGES: "💬",
}


@dataclass
class RunnerContext:
    """所有 Runner 共享的协作者，由 RepeaterRegistry 创建一次。"""

    transport: MessagingTransport
    store: RepeaterStore
    scheduler: TaskScheduler
    clock: Clock
    evaluator: ConditionEvaluator
    monitor: ActivityMonitor
    renderer: PlaceholderRenderer
    settings: RepeaterSettings
    remover: Callable[["RepeatRunner", str], Awaitable[None]]


class RepeatRunner:
    """
    单个重复播报的运行器。

    状态:
    - ARMED: 定时器已就绪或等待事件
    - TRIGGERING: 正在执行一次 删除-发送 流程
    - STOPPED: 已停止 (被禁用、被移除或 Bot 关闭)

    一次发送流程始终在 `_lock` 内执行，保证同一频道最多只有一条被追踪的消息。
    每次重新布置定时器都会递增 `_generation`，过期的定时回调会直接返回。
    """

    def __init__(self, repeater: RepeaterDto, ctx: RunnerContext):
        self.repeater = repeater
        self.ctx = ctx
        self.trigger: Trigger = build_trigger(repeater)
        self.threads = ThreadStickyTracker(repeater.thread_sticky_messages)

        self._lock = asyncio.Lock()
        self._thread_locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._persist_lock = asyncio.Lock()
        self._handle: Optional[ScheduledHandle] = None
        self._generation = 0
        self._next_fire_at: Optional[datetime] = None
        self._stopped = True
        self._disposed = False
        self._triggering = False

        self.reset()

    # --- 状态 ---

    @property
    def id(self) -> int:
        return self.repeater.id

    @property
    def guild_id(self) -> int:
        return self.repeater.guild_id

    @property
    def channel_id(self) -> int:
        return self.repeater.channel_id

    @property
    def state(self) -> RunnerState:
        if self._stopped:
            return RunnerState.STOPPED
        if self._triggering:
            return RunnerState.TRIGGERING
        return RunnerState.ARMED

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def next_fire_at(self) -> Optional[datetime]:
        return self._next_fire_at

    # --- 生命周期 ---

    def reset(self):
        """按当前配置重新布置触发器。禁用的重复播报保持 STOPPED。"""
        if self._disposed:
            return
        self._cancel_timer()
        self.trigger = build_trigger(self.repeater)
        self.repeater.activity_based_last_check = None

        if not self.repeater.is_enabled:
            self._stopped = True
            return

        self._stopped = False
        if self.repeater.thread_only_mode:
            # 只响应帖子事件，不在父频道定时发送
            return

        now = self.ctx.clock.now()
        delay = self.trigger.initial_delay(
            self.repeater.date_added, now, self.ctx.settings.activity_poll
        )
        self._arm(delay)

    def stop(self):
        """停止定时器。进行中的发送会在下一个副作用之前检查到停止标志。"""
        self._stopped = True
        self._cancel_timer()

    def dispose(self):
        """永久停止，之后 reset() 不再生效。"""
        self.stop()
        self._disposed = True

    async def wait_idle(self):
        """等待进行中的发送流程 (包括帖子置底) 结束，使其结果已写入数据库。"""
        async with self._lock:
            pass
        for lock in list(self._thread_locks.values()):
            async with lock:
                pass

    def _cancel_timer(self):
        self._generation += 1
        self._next_fire_at = None
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _arm(self, delay: timedelta, *, recheck: bool = False):
        if self._stopped:
            return
        self._cancel_timer()
        generation = self._generation
        self._next_fire_at = self.ctx.clock.now() + delay
        self._handle = self.ctx.scheduler.call_later(
            delay.total_seconds(), lambda: self._on_timer(generation, recheck)
        )

    def _schedule_next(self):
        self._arm(self.trigger.rearm_delay(self.ctx.settings.activity_poll))

    async def _on_timer(self, generation: int, recheck: bool):
        if generation != self._generation or self._stopped:
            return
        # 当前任务就是定时任务本身，后续的 _arm 不能取消它
        self._handle = None
        self._next_fire_at = None
        await self._run_cycle(
            evaluate_trigger=recheck or self.trigger.polls,
            skip_if_busy=recheck,
            generation=generation,
        )

    # --- 外部触发 ---

    async def trigger_now(self) -> bool:
        """
        手动触发一次发送，跳过活跃度判断。

        Returns:
            是否实际进入了发送流程 (禁用、仅帖子模式或已停止时为 False)。
        """
        if self._stopped or self.repeater.thread_only_mode:
            return False
        self._cancel_timer()
        await self._run_cycle(evaluate_trigger=False)
        return True

    async def on_channel_message(self, message_id: int):
        """父频道收到新消息时调用。只有立即模式会重新置底。"""
        if (
            self._stopped
            or self.repeater.thread_only_mode
            or self.repeater.trigger_mode != TriggerMode.IMMEDIATE
            or message_id == self.repeater.last_message_id
        ):
            return
        await self._run_cycle(evaluate_trigger=False, reposition=True)

    # --- 发送流程 ---

    async def _run_cycle(
        self,
        *,
        evaluate_trigger: bool,
        skip_if_busy: bool = False,
        generation: Optional[int] = None,
        reposition: bool = False,
    ):
        if self._stopped:
            return
        if skip_if_busy and self._lock.locked():
            logger.debug(f"重复播报 {self.id} 正在发送中，跳过本次对话复查。")
            return

        async with self._lock:
            # 等锁期间定时器可能已被重新布置，此时这次定时触发作废
            if self._stopped or (generation is not None and generation != self._generation):
                return
            self._triggering = True
            try:
                await self._fire(evaluate_trigger, reposition)
            except (PermissionDeniedError, ChannelMissingError) as e:
                logger.warning(f"重复播报 {self.id} 在频道 {self.channel_id} 遇到永久性错误: {e}")
                await self._remove(str(e))
            except TransientDeliveryError as e:
                logger.warning(f"重复播报 {self.id} 在频道 {self.channel_id} 发送失败，稍后重试: {e}")
                self._schedule_next()
            except Exception as e:
                logger.error(f"重复播报 {self.id} 执行时发生意外错误: {e}", exc_info=True)
                self._schedule_next()
            finally:
                self._triggering = False

    async def _fire(self, evaluate_trigger: bool, reposition: bool = False):
        repeater = self.repeater
        ctx = self.ctx
        now = ctx.clock.now()

        if ctx.evaluator.has_expired(repeater, now):
            await self._remove("已过期")
            return

        local_now = ctx.evaluator.guild_now(repeater.guild_id, now)
        if not ctx.evaluator.should_display_at_current_time(repeater, local_now):
            logger.debug(f"重复播报 {repeater.id} 当前不在时间条件内，跳过。")
            self._schedule_next()
            return

        channel = await ctx.transport.resolve_channel(repeater.channel_id)
        if channel is None:
            await self._remove(f"频道 {repeater.channel_id} 不存在")
            return

        if channel.is_forum:
            # 论坛频道本身不能承载消息，只在帖子中置底
            logger.debug(f"重复播报 {repeater.id} 的目标是论坛频道，跳过父频道发送。")
            # 定时器仍需继续，否则过期检查不会再执行
            self._schedule_next()
            return

        if reposition and repeater.last_message_id is not None:
            # 排队期间前一次发送可能已经把消息放到了最底部
            if await ctx.transport.get_last_message_id(channel) == repeater.last_message_id:
                logger.debug(f"重复播报 {repeater.id} 的消息仍在频道底部，无需重新发送。")
                return

        if evaluate_trigger and self.trigger.polls:
            if not await self.trigger.should_fire(ctx.monitor, repeater, channel, now):
                self._schedule_next()
                return

        if repeater.conversation_detection and await ctx.monitor.is_conversation_active(
            channel, repeater.conversation_threshold, now
        ):
            logger.debug(f"频道 {channel.id} 正在对话中，重复播报 {repeater.id} 暂缓发送。")
            self._arm(ctx.settings.conversation_recheck, recheck=True)
            return

        if repeater.no_redundant and repeater.last_message_id is not None:
            last_id = await ctx.transport.get_last_message_id(channel)
            if last_id == repeater.last_message_id:
                self._schedule_next()
                return

        if repeater.last_message_id is not None:
            await self._delete_quietly(channel, repeater.last_message_id)

        if self._stopped:
            return

        content = ctx.renderer.render(
            repeater.message,
            RenderContext(
                channel=channel,
                repeater_id=repeater.id,
                display_count=repeater.display_count + 1,
                now=now,
            ),
        )
        message_id = await ctx.transport.send_message(
            channel, content, silent=repeater.suppress_notifications
        )

        repeater.display_count += 1
        repeater.last_displayed = now
        repeater.last_message_id = message_id
        await ctx.store.update_stats(repeater.id, repeater.display_count, now)
        await ctx.store.set_last_message(repeater.id, message_id)
        logger.debug(f"重复播报 {repeater.id} 已在频道 {channel.id} 发送第 {repeater.display_count} 次。")

        if repeater.max_triggers is not None and repeater.display_count >= repeater.max_triggers:
            await self._remove(f"已达到最大发送次数 {repeater.max_triggers}")
            return

        self._schedule_next()

    async def _delete_quietly(self, channel: ChannelHandle, message_id: int):
        """删除上一条消息；权限错误向上抛出，暂时性错误只记录。"""
        try:
            await self.ctx.transport.delete_message(channel, message_id)
        except TransientDeliveryError as e:
            logger.warning(f"删除重复播报 {self.id} 的旧消息 {message_id} 失败: {e}")

    async def _remove(self, reason: str):
        logger.info(f"正在移除重复播报 {self.id} (频道 {self.channel_id}): {reason}")
        self.dispose()
        await self.ctx.remover(self, reason)

    # --- 帖子置底 ---

    async def post_thread_sticky(self, thread_id: int):
        """在新帖子中发送初始置底消息并开始追踪。"""
        await self._place_in_thread(thread_id, require_tracked=False)

    async def reposition_thread_sticky(self, thread_id: int):
        """帖子中有新消息时，将置底消息移到最底部。"""
        await self._place_in_thread(thread_id, require_tracked=True)

    async def _place_in_thread(self, thread_id: int, *, require_tracked: bool):
        if self._stopped:
            return

        async with self._thread_locks[thread_id]:
            if self._stopped or (require_tracked and thread_id not in self.threads):
                return

            now = self.ctx.clock.now()
            if self.ctx.evaluator.has_expired(self.repeater, now):
                async with self._lock:
                    if not self._stopped:
                        await self._remove("已过期")
                return
            local_now = self.ctx.evaluator.guild_now(self.guild_id, now)
            if not self.ctx.evaluator.should_display_at_current_time(self.repeater, local_now):
                return

            try:
                thread = await self.ctx.transport.resolve_channel(thread_id)
                if thread is None:
                    raise ChannelMissingError(f"帖子 {thread_id} 不存在")

                previous = self.threads.get(thread_id)
                if previous is not None:
                    await self._delete_quietly(thread, previous)
                if self._stopped:
                    return

                content = self.ctx.renderer.render(
                    self.repeater.message,
                    RenderContext(
                        channel=thread,
                        repeater_id=self.id,
                        display_count=self.repeater.display_count,
                        now=now,
                    ),
                )
                message_id = await self.ctx.transport.send_message(
                    thread, content, silent=self.repeater.suppress_notifications
                )
                self.threads.set(thread_id, message_id)
            except (PermissionDeniedError, ChannelMissingError) as e:
                # 帖子被删除或锁定不影响父频道，只停止追踪该帖子
                logger.warning(f"重复播报 {self.id} 无法在帖子 {thread_id} 中置底，停止追踪: {e}")
                if self.threads.remove(thread_id) is None:
                    return
            except TransientDeliveryError as e:
                logger.warning(f"重复播报 {self.id} 在帖子 {thread_id} 中置底失败: {e}")
                return

            await self._persist_threads()

    async def forget_thread(self, thread_id: int):
        """帖子被删除或归档后停止追踪，不再尝试删除其中的消息。"""
        async with self._thread_locks[thread_id]:
            if self.threads.remove(thread_id) is None:
                return
            logger.debug(f"重复播报 {self.id} 停止追踪帖子 {thread_id}。")
            await self._persist_threads()

    async def _persist_threads(self):
        # 各帖子的置底在不同的锁下进行，快照与写入必须一起串行，
        # 否则较早的快照可能覆盖较新的记录
        async with self._persist_lock:
            snapshot = self.threads.snapshot()
            self.repeater.thread_sticky_messages = snapshot
            try:
                await self.ctx.store.set_thread_sticky_messages(self.id, dict(snapshot))
            except Exception as e:
                logger.error(f"保存重复播报 {self.id} 的帖子置底记录失败: {e}", exc_info=True)

    # --- 展示 ---

    def describe(self) -> str:
        """列表中的一行摘要。"""
        repeater = self.repeater
        mode = _MODE_INDICATORS.get(repeater.trigger_mode, "")
        priority = f"[P{repeater.priority}]" if repeater.priority != 50 else ""
        redundant = "| ✍" if repeater.no_redundant else ""
        disabled = "[❌]" if not repeater.is_enabled else ""
        message = repeater.message if len(repeater.message) <= 33 else repeater.message[:30] + "..."
        return (
            f"<#{repeater.channel_id}> {mode}{priority}{redundant}{disabled}"
            f"| {TimeUtils.format_duration(repeater.interval)} | {message}"
        )

    def __repr__(self) -> str:
        return f"<RepeatRunner id={self.id} guild={self.guild_id} state={self.state.value}>"
