import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[Any]]


class ScheduledHandle(Protocol):
    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Clock:
    """
    当前时间的来源。
    重复播报相关的所有时间计算都通过它获取 “现在”，测试中可以替换为可控的时钟。
    """

    def now(self) -> datetime:
        """返回带时区信息的 UTC 时间。"""
        return datetime.now(timezone.utc)


class _TaskHandle:
    def __init__(self, task: asyncio.Task):
        self._task = task

    def cancel(self) -> None:
        self._task.cancel()

    def cancelled(self) -> bool:
        return self._task.cancelled()


class TaskScheduler:
    """
    基于 asyncio 的延迟任务调度器。

    每次 `call_later` 都会创建一个独立的后台任务：先睡眠 `delay` 秒，再执行回调。
    回调抛出的异常只会被记录，不会影响其他定时器。
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def call_later(self, delay: float, callback: TimerCallback) -> ScheduledHandle:
        task = asyncio.create_task(self._run_later(max(0.0, delay), callback))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return _TaskHandle(task)

    async def _run_later(self, delay: float, callback: TimerCallback):
        await asyncio.sleep(delay)
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"定时回调执行失败: {e}", exc_info=True)

    def cancel_all(self) -> None:
        """取消所有尚未执行的定时任务，在 Bot 关闭时调用。"""
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
