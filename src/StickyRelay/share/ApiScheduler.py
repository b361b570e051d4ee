import asyncio
import logging
from itertools import count
from typing import Any, Coroutine, NamedTuple

logger = logging.getLogger(__name__)

_SENTINEL_PRIORITY = 1 << 30


class APIRequest(NamedTuple):
    """
    优先级队列中的一个 API 请求。
    - priority: 优先级，数字越小越先执行。
    - sequence: 同优先级下的提交顺序，保证先进先出。
    - coro: 待执行的 Discord API 协程。
    - future: 用于把结果或异常交还给提交方。
    """

    priority: int
    sequence: int
    coro: Coroutine[Any, Any, Any]
    future: asyncio.Future


class APIScheduler:
    """
    带优先级的中央 API 请求调度器。
    交互请求（优先级 1）会先于重复播报等后台请求（优先级 5~7）执行，
    总并发数由 Semaphore 限制，避免撞上 Discord 的速率限制。
    """

    def __init__(self, concurrent_requests: int = 10):
        """
        :param concurrent_requests: 同时发往 Discord API 的最大请求数。
        """
        self._queue: asyncio.PriorityQueue = asyncio.PriorityQueue()
        self._semaphore = asyncio.Semaphore(concurrent_requests)
        self._task: asyncio.Task | None = None
        self._is_running = False
        self._sequence = count()
        self._workers: set[asyncio.Task] = set()

    async def _dispatcher_loop(self):
        """主循环：取出最高优先级的请求并交给 worker 执行。"""
        logger.info("API 调度器循环已启动。")
        while self._is_running:
            await self._semaphore.acquire()
            try:
                request = await self._queue.get()
                if request.coro is None:
                    # 哨兵请求，排在所有真实请求之后
                    self._semaphore.release()
                    self._queue.task_done()
                    break

                worker = asyncio.create_task(self._worker(request))
                self._workers.add(worker)
                worker.add_done_callback(self._workers.discard)
                self._queue.task_done()
            except asyncio.CancelledError:
                self._semaphore.release()
                logger.info("API 调度器循环被取消。")
                break
            except Exception:
                self._semaphore.release()
                logger.exception("API 调度器循环出现异常。")
                await asyncio.sleep(1)

    async def _worker(self, request: APIRequest):
        """执行单个请求，并把结果写回 future。"""
        try:
            result = await request.coro
            if not request.future.done():
                request.future.set_result(result)
        except Exception as e:
            # 异常交给提交方判断是否致命，这里只记 debug
            logger.debug(f"API 请求 (优先级: {request.priority}) 失败: {e!r}")
            if not request.future.done():
                request.future.set_exception(e)
        finally:
            self._semaphore.release()

    async def submit(self, coro: Coroutine, priority: int) -> Any:
        """
        提交一个 API 请求并等待其结果。

        :param coro: 要执行的 API 协程。
        :param priority: 优先级 (1=最高, 10=最低)。
        :return: 协程的返回值；协程抛出的异常会原样抛给调用方。
        """
        if not self._is_running:
            coro.close()
            raise RuntimeError("API 调度器没有在运行")

        future = asyncio.get_running_loop().create_future()
        request = APIRequest(
            priority=priority, sequence=next(self._sequence), coro=coro, future=future
        )
        await self._queue.put(request)
        return await future

    def start(self):
        """启动调度器后台任务。"""
        if self._is_running:
            return
        self._is_running = True
        self._task = asyncio.create_task(self._dispatcher_loop())

    async def stop(self):
        """停止调度器，等待主循环退出。"""
        if not self._is_running or not self._task:
            return

        logger.info("即将停止 API 调度器...")
        self._is_running = False
        sentinel = APIRequest(
            priority=_SENTINEL_PRIORITY,
            sequence=next(self._sequence),
            coro=None,  # type: ignore
            future=None,  # type: ignore
        )
        await self._queue.put(sentinel)
        await self._task
        logger.info("API 调度器已停止。")
