"""
任务队列编排器 - 串行执行排队的任务

状态：Idle →（enqueue 触发）→ Draining →（队列清空）→ Idle

- enqueue(task)：立即返回，FIFO 追加；空闲时启动后台 worker
- worker：逐个取出任务交给 AgentLoop.run()，单个任务抛出的异常
  被记录为失败，不影响后续任务
- stop()：清空待处理任务，并请求当前运行在下一轮开始前停止

同一时刻最多只有一个运行：由唯一的 worker 句柄（asyncio.Task）保证，
而不是给队列加锁；多个生产者可以并发 enqueue。
"""
import asyncio
from collections import deque
from typing import Callable, Deque, List, Optional

from loguru import logger

from .agent import AgentLoop
from .models import RunOutcome, TaskRecord, TaskStatus
from .telemetry import BaseTelemetry, NullTelemetry


class Orchestrator:
    """
    任务队列编排器

    使用方式：
        orchestrator = Orchestrator(agent)
        orchestrator.enqueue("打开设置")
        orchestrator.enqueue("打开相机")
        await orchestrator.join()

    Args:
        agent: 共享的 AgentLoop 实例
        telemetry: 任务事件上报
        max_steps: 传给 AgentLoop.run() 的最大步数，None 使用 agent 默认值
        loop: 绑定的事件循环；不传时在第一次从事件循环内调用 enqueue 时绑定
    """

    def __init__(
        self,
        agent: AgentLoop,
        telemetry: Optional[BaseTelemetry] = None,
        max_steps: Optional[int] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.agent = agent
        self.telemetry = telemetry or NullTelemetry()
        self.max_steps = max_steps
        self.records: List[TaskRecord] = []
        self._queue: Deque[str] = deque()
        self._worker: Optional[asyncio.Task] = None
        self._loop = loop
        self._current_task: Optional[str] = None
        self._cancel_current = False

    @property
    def is_running(self) -> bool:
        """是否有 worker 正在处理队列"""
        return self._worker is not None and not self._worker.done()

    @property
    def current_task(self) -> Optional[str]:
        return self._current_task

    @property
    def pending(self) -> List[str]:
        return list(self._queue)

    def enqueue(self, task: str) -> None:
        """
        追加任务并在空闲时启动 worker，始终立即返回

        可以从其他线程调用：会通过 call_soon_threadsafe 切换到绑定的事件循环。
        """
        if not task or not task.strip():
            logger.debug("📥 [Orchestrator] 忽略空任务")
            return
        self._queue.append(task)
        logger.info(f"📥 [Orchestrator] 任务入队: {task} (pending={len(self._queue)})")
        self._call_in_loop(self._ensure_worker)

    def stop(self) -> None:
        """清空待处理任务，并请求当前运行在下一轮开始前停止"""
        self._call_in_loop(self._stop_now)

    async def start(self) -> None:
        """在当前事件循环上绑定编排器，并处理绑定前入队的任务"""
        self._loop = asyncio.get_running_loop()
        self._ensure_worker()

    async def join(self) -> None:
        """等待当前 worker 处理完队列"""
        while self._worker is not None:
            worker = self._worker
            await asyncio.wait({worker})
            if self._worker is worker:
                self._worker = None

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """停止并等待 worker 退出，超时后取消"""
        self._stop_now()
        worker = self._worker
        if worker is None:
            return
        done, _ = await asyncio.wait({worker}, timeout=timeout)
        if not done:
            logger.warning("⚠️ [Orchestrator] worker 未在超时内退出，取消")
            worker.cancel()
            await asyncio.wait({worker})
        if self._worker is worker:
            self._worker = None

    def _call_in_loop(self, fn: Callable[[], None]) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None and (self._loop is None or running is self._loop):
            self._loop = running
            fn()
        elif self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(fn)
        else:
            # 尚未绑定事件循环：任务留在队列中，start() 时再处理
            logger.debug("📥 [Orchestrator] 事件循环未绑定，等待 start()")
            if fn == self._stop_now:
                fn()

    def _ensure_worker(self) -> None:
        if self.is_running or not self._queue:
            return
        logger.info("▶️ [Orchestrator] 启动任务处理 worker")
        self._worker = self._loop.create_task(self._drain())

    def _stop_now(self) -> None:
        dropped = len(self._queue)
        self._queue.clear()
        if self.is_running:
            self._cancel_current = True
            self.agent.stop()
        logger.info(f"🛑 [Orchestrator] 停止：丢弃 {dropped} 个待处理任务")

    async def _drain(self) -> None:
        try:
            while self._queue:
                task = self._queue.popleft()
                self._current_task = task
                self._cancel_current = False
                await self._process(task)
        finally:
            self._current_task = None
            if self._worker is asyncio.current_task():
                self._worker = None
            logger.info("⏹️ [Orchestrator] 队列已清空，worker 退出")

    async def _process(self, task: str) -> None:
        record = TaskRecord(task=task, status=TaskStatus.RUNNING)
        self.records.append(record)
        await self._report_started(task)

        if self._cancel_current:
            record.status = TaskStatus.ABORTED
            record.outcome = RunOutcome.STOPPED
            await self._report_completed(task, False, "stopped")
            return

        try:
            logger.info(f"⚙️ [Orchestrator] 执行任务: {task}")
            result = await self.agent.run(task, self.max_steps)
        except asyncio.CancelledError:
            logger.warning(f"⚠️ [Orchestrator] 任务被取消: {task}")
            record.status = TaskStatus.ABORTED
            record.outcome = RunOutcome.STOPPED
            await self._report_completed(task, False, "cancelled")
            raise
        except Exception as e:
            logger.exception(f"❌ [Orchestrator] 任务执行异常: {task}")
            record.status = TaskStatus.FAILED
            record.error = str(e) or type(e).__name__
            await self._report_completed(task, False, record.error)
            return

        record.outcome = result.outcome
        record.data = {"steps": result.steps_taken, "message": result.message}
        if result.success:
            record.status = TaskStatus.SUCCESS
        elif result.outcome == RunOutcome.STOPPED:
            record.status = TaskStatus.ABORTED
        else:
            record.status = TaskStatus.FAILED
        logger.info(
            f"✅ [Orchestrator] 任务结束: {task} status={record.status.value} "
            f"outcome={result.outcome.value}"
        )
        await self._report_completed(task, result.success, None if result.success else result.message)

    async def _report_started(self, task: str) -> None:
        try:
            await self.telemetry.on_task_started(task)
        except Exception as e:
            logger.warning(f"⚠️ [Orchestrator] 遥测上报失败 (started): {e}")

    async def _report_completed(self, task: str, success: bool, error: Optional[str]) -> None:
        try:
            await self.telemetry.on_task_completed(task, success, error)
        except Exception as e:
            logger.warning(f"⚠️ [Orchestrator] 遥测上报失败 (completed): {e}")
