"""
设备代理模块 - 自主操控 Android 设备完成自然语言任务

核心流程：感知 → 决策 → 执行 → 记录 循环
快照 → 组装上下文 → LLM 决策 → 执行动作 → 追加历史 → 直到完成

任务由 Orchestrator 排队，逐个交给共享的 AgentLoop 串行执行。
"""
from .agent import AgentLoop
from .history import AgentHistory
from .memory import MemoryManager
from .models import (
    ActionResult,
    AgentOutput,
    HistoryEntry,
    RunOutcome,
    RunResult,
    Snapshot,
    TaskRecord,
    TaskStatus,
    UIElement,
)
from .orchestrator import Orchestrator

__all__ = [
    "AgentLoop",
    "AgentHistory",
    "MemoryManager",
    "Orchestrator",
    "ActionResult",
    "AgentOutput",
    "HistoryEntry",
    "RunOutcome",
    "RunResult",
    "Snapshot",
    "TaskRecord",
    "TaskStatus",
    "UIElement",
]
