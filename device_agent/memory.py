"""
上下文管理 (MemoryManager) - 为 LLM 组装有序消息

每次运行：
- seed(task)：记录新任务
- update(...)：每轮循环调用一次，把上一步的结果折叠进 agent_history，
  并用当前快照生成新的状态消息
- add_context_message(text)：一次性的补充消息（例如 JSON 格式纠正），
  在下一次 update 之后随状态消息一起发送，再下一次 update 时清空
- messages()：system → state → context 的完整消息列表
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from loguru import logger

from config import settings
from .filesystem import FileSystem
from .models import ActionResult, AgentOutput, Snapshot, StepInfo
from .prompts import build_state_message, build_system_prompt

_ERROR_PREVIEW_CHARS = 200


@dataclass(frozen=True)
class HistoryItem:
    """agent_history 中的一条摘要"""
    step_number: Optional[int] = None
    evaluation: Optional[str] = None
    memory: Optional[str] = None
    next_goal: Optional[str] = None
    action_results: Optional[str] = None
    error: Optional[str] = None
    system_message: Optional[str] = None

    def to_prompt_string(self) -> str:
        step = f"step_{self.step_number}" if self.step_number is not None else "step_unknown"
        if self.error is not None:
            content = self.error
        elif self.system_message is not None:
            content = self.system_message
        else:
            content = "\n".join(
                line for line in [
                    f"Evaluation of Previous Step: {self.evaluation}" if self.evaluation else None,
                    f"Memory: {self.memory}" if self.memory else None,
                    f"Next Goal: {self.next_goal}" if self.next_goal else None,
                    self.action_results,
                ] if line
            )
        return f"<{step}>\n{content}\n</{step}>"


def format_action_results(results: Sequence[ActionResult]) -> str:
    lines = []
    for i, result in enumerate(results, 1):
        if result.long_term_memory:
            lines.append(f"Action {i}: {result.long_term_memory}")
        elif result.extracted_content and not result.include_extracted_content_only_once:
            lines.append(f"Action {i}: {result.extracted_content}")
        elif result.error:
            lines.append(f"Action {i}: ERROR - {result.error[:_ERROR_PREVIEW_CHARS]}")
    return "\n".join(lines)


class MemoryManager:
    """
    Agent 短期记忆与 prompt 组装

    Args:
        system_prompt: system 消息内容，默认由 build_system_prompt 生成
        file_system: 工作区，用于在状态消息中展示文件
        max_history_items: agent_history 最多保留的条目数，None 表示不截断
        sensitive_data: 占位符 → 敏感值，发送前替换为 <secret>占位符</secret>
    """

    def __init__(
        self,
        system_prompt: Optional[str] = None,
        file_system: Optional[FileSystem] = None,
        max_history_items: Optional[int] = None,
        sensitive_data: Optional[Dict[str, str]] = None,
    ) -> None:
        self.file_system = file_system
        self.max_history_items = (
            max_history_items if max_history_items is not None else settings.agent_max_history_items
        )
        self.sensitive_data = sensitive_data or {}
        self.task = ""
        self.system_message: Dict[str, str] = {
            "role": "system",
            "content": self._filter(system_prompt or build_system_prompt()),
        }
        self.state_message: Optional[Dict[str, str]] = None
        self.context_messages: List[Dict[str, str]] = []
        self._pending_context: List[Dict[str, str]] = []
        self._last_step_number: Optional[int] = None
        self.history_items: List[HistoryItem] = []
        self.read_state = ""
        self.reset()

    def reset(self) -> None:
        """清空本次会话的记忆（system prompt 保留）"""
        self.task = ""
        self.state_message = None
        self.context_messages = []
        self._pending_context = []
        self._last_step_number = None
        self.history_items = [HistoryItem(step_number=0, system_message="Agent initialized")]
        self.read_state = ""

    def seed(self, task: str) -> None:
        """记录新任务"""
        self.task = task
        self.history_items.append(
            HistoryItem(step_number=0, system_message=f"<user_request> added: {task}")
        )

    def update(
        self,
        decision: Optional[AgentOutput],
        results: Optional[Sequence[ActionResult]],
        step_info: Optional[StepInfo],
        snapshot: Snapshot,
    ) -> None:
        """
        每轮循环调用一次：折叠上一步结果并生成新的状态消息

        Args:
            decision: 上一步的决策（首步为 None）
            results: 上一步的动作结果
            step_info: 当前步骤信息
            snapshot: 当前屏幕快照
        """
        self._update_history(decision, results, step_info)

        content = build_state_message(
            task=self.task,
            snapshot=snapshot,
            agent_history=self.agent_history_description(),
            step_info=step_info,
            read_state=self.read_state,
            file_system=self.file_system.describe() if self.file_system else "",
            sensitive_data=self._sensitive_data_description(),
        )
        self.state_message = {"role": "user", "content": self._filter(content)}
        self.context_messages = self._pending_context
        self._pending_context = []

    def add_context_message(self, text: str) -> None:
        """追加一条补充消息，在下一次 update 后生效"""
        self._pending_context.append({"role": "user", "content": self._filter(text)})

    def messages(self) -> List[Dict[str, str]]:
        """按 system → state → context 顺序返回消息"""
        ordered = [self.system_message]
        if self.state_message is not None:
            ordered.append(self.state_message)
        return [dict(m) for m in ordered + self.context_messages]

    def _update_history(
        self,
        decision: Optional[AgentOutput],
        results: Optional[Sequence[ActionResult]],
        step_info: Optional[StepInfo],
    ) -> None:
        step_number = step_info.step_number if step_info else None
        if step_number is not None and step_number == self._last_step_number:
            # 同一步重试：上一步的结果已经折叠过，只记录这次决策失败
            self.history_items.append(
                HistoryItem(step_number=step_number, error="Agent failed to produce a valid output.")
            )
            return
        self._last_step_number = step_number

        # 一次性读取内容只展示一轮
        self.read_state = ""
        for result in results or []:
            if result.include_extracted_content_only_once and result.extracted_content:
                self.read_state += result.extracted_content + "\n"

        if decision is None:
            if step_number == 1:
                item = HistoryItem(step_number=step_number, error="Agent not asked to create output yet")
            else:
                item = HistoryItem(step_number=step_number, error="Agent failed to produce a valid output.")
        else:
            results_text = format_action_results(results or [])
            item = HistoryItem(
                step_number=step_number,
                evaluation=decision.evaluation_previous_goal,
                memory=decision.memory,
                next_goal=decision.next_goal,
                action_results=f"Action Results:\n{results_text}" if results_text else None,
            )
        self.history_items.append(item)

    def agent_history_description(self) -> str:
        """生成 agent_history，超过 max_history_items 时保留首条和最近的条目"""
        items = self.history_items
        max_items = self.max_history_items
        if max_items is None or len(items) <= max_items:
            return "\n".join(item.to_prompt_string() for item in items)

        omitted = len(items) - max_items
        recent = items[-(max_items - 1):] if max_items > 1 else []
        logger.debug(f"🧠 [MemoryManager] agent_history 截断 {omitted} 条")
        parts = [items[0].to_prompt_string(), f"<sys>[... {omitted} previous steps omitted...]</sys>"]
        parts += [item.to_prompt_string() for item in recent]
        return "\n".join(parts)

    def _sensitive_data_description(self) -> Optional[str]:
        if not self.sensitive_data:
            return None
        placeholders = ", ".join(self.sensitive_data)
        return (
            f"Here are placeholders for sensitive data:\n{placeholders}\n"
            f"To use them, write <secret>the placeholder name</secret>"
        )

    def _filter(self, text: str) -> str:
        for key, value in self.sensitive_data.items():
            if value:
                text = text.replace(value, f"<secret>{key}</secret>")
        return text
