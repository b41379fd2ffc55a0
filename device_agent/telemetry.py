"""
任务遥测 - 任务开始 / 结束事件

Orchestrator 以 fire-and-forget 方式调用，实现抛出的异常会被记录并忽略，
不影响队列继续处理。
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from loguru import logger


class BaseTelemetry(ABC):
    """遥测抽象基类"""

    @abstractmethod
    async def on_task_started(self, task: str) -> None:
        ...

    @abstractmethod
    async def on_task_completed(self, task: str, success: bool, error: Optional[str] = None) -> None:
        ...


class NullTelemetry(BaseTelemetry):
    """不上报任何事件"""

    async def on_task_started(self, task: str) -> None:
        return None

    async def on_task_completed(self, task: str, success: bool, error: Optional[str] = None) -> None:
        return None


class LoggingTelemetry(BaseTelemetry):
    """把任务事件写入日志，同时保留在内存中便于查询"""

    def __init__(self) -> None:
        self.events: List[Tuple[str, str, Optional[bool], Optional[str]]] = []

    async def on_task_started(self, task: str) -> None:
        self.events.append(("started", task, None, None))
        logger.info(f"📊 [Telemetry] task started: {task}")

    async def on_task_completed(self, task: str, success: bool, error: Optional[str] = None) -> None:
        self.events.append(("completed", task, success, error))
        status = "completed" if success else "failed"
        logger.info(f"📊 [Telemetry] task {status}: {task}" + (f" ({error})" if error else ""))
