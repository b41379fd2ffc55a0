"""
Snapshot / Decision / Result / History 数据模型

定义自主任务引擎的核心数据结构，包括：
- Snapshot：一次屏幕感知的结构化快照
- ActionResult：单个动作的执行结果（success 只能在 is_done 时为 True）
- StepInfo：当前步骤信息
- AgentOutput：LLM 每一步给出的决策
- HistoryEntry / StepMetadata：单步审计记录
- RunState：AgentLoop 私有的运行状态
- RunOutcome / RunResult：一次运行的结束原因与结果
- TaskStatus / TaskRecord：任务队列中每个任务的最终记录
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from .actions import Action

if TYPE_CHECKING:
    from .history import AgentHistory


class TaskStatus(str, Enum):
    """任务状态"""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    ABORTED = "aborted"


class RunOutcome(str, Enum):
    """一次运行的结束原因"""
    DONE = "done"
    MAX_FAILURES = "max_failures"
    MAX_STEPS = "max_steps"
    STOPPED = "stopped"


@dataclass(frozen=True)
class UIElement:
    """
    快照中的一个可交互元素

    Attributes:
        element_id: 在 ui_representation 中显示的编号 [N]
        attributes: 原始属性（bounds / resource-id / class / text ...）
        text: 元素可见文本
    """
    element_id: int
    attributes: Dict[str, str] = field(default_factory=dict)
    text: str = ""

    @property
    def bounds(self) -> Optional[str]:
        return self.attributes.get("bounds")

    @property
    def resource_id(self) -> str:
        return self.attributes.get("resource-id", "")

    @property
    def class_name(self) -> str:
        return self.attributes.get("class", "").replace("android.", "", 1)

    def describe(self) -> str:
        text = self.text.replace("\n", " ")
        return f"text:{text} <{self.resource_id}> <{self.class_name}>"


@dataclass(frozen=True)
class Snapshot:
    """
    屏幕快照

    Attributes:
        activity_label: 当前前台 Activity 名称
        ui_representation: 面向 LLM 的 UI 文本描述
        element_index: 编号 → 元素，供 ActionExecutor 计算点击坐标
        is_keyboard_open: 软键盘是否可见
        is_scrollable: 界面上是否有可滚动容器
    """
    activity_label: str
    ui_representation: str
    element_index: Dict[int, UIElement] = field(default_factory=dict)
    is_keyboard_open: bool = False
    is_scrollable: bool = False


@dataclass(frozen=True)
class ActionResult:
    """
    单个动作的执行结果

    普通动作成功时 success 保持 None；只有 done 动作（is_done=True）
    才能携带 success=True。
    """
    is_done: Optional[bool] = False
    success: Optional[bool] = None
    error: Optional[str] = None
    attachments: Optional[Tuple[str, ...]] = None
    long_term_memory: Optional[str] = None
    extracted_content: Optional[str] = None
    include_extracted_content_only_once: bool = False

    def __post_init__(self) -> None:
        if self.success is True and self.is_done is not True:
            raise ValueError(
                "success=True can only be set when is_done=True. "
                "For regular actions that succeed, leave success as None."
            )


@dataclass(frozen=True)
class StepInfo:
    """当前步骤信息"""
    step_number: int
    max_steps: int

    def is_last_step(self) -> bool:
        return self.step_number >= self.max_steps - 1


@dataclass(frozen=True)
class AgentOutput:
    """
    LLM 对单步给出的结构化决策

    thinking / evaluation_previous_goal / memory / next_goal 均为可选，
    actions 按顺序执行。
    """
    actions: Tuple[Action, ...] = ()
    thinking: Optional[str] = None
    evaluation_previous_goal: Optional[str] = None
    memory: Optional[str] = None
    next_goal: Optional[str] = None


@dataclass(frozen=True)
class StepMetadata:
    """单步耗时信息"""
    step_start_time: float
    step_end_time: float
    step_number: int

    @property
    def duration_seconds(self) -> float:
        return self.step_end_time - self.step_start_time


@dataclass(frozen=True)
class HistoryEntry:
    """
    单步审计记录，写入 AgentHistory 后不可修改

    Attributes:
        decision: 本步的 LLM 决策
        results: 按执行顺序排列的动作结果
        snapshot: 决策所依据的屏幕快照
        metadata: 耗时信息
    """
    decision: AgentOutput
    results: Tuple[ActionResult, ...]
    snapshot: Snapshot
    metadata: Optional[StepMetadata] = None

    @property
    def is_done(self) -> bool:
        return any(r.is_done is True for r in self.results)


@dataclass
class RunState:
    """
    AgentLoop 私有运行状态

    只由正在执行的 AgentLoop 修改，Orchestrator 不读写其中字段。
    """
    step_number: int = 1
    consecutive_failures: int = 0
    last_decision: Optional[AgentOutput] = None
    last_results: Optional[List[ActionResult]] = None
    stopped: bool = False


@dataclass
class RunResult:
    """
    一次 AgentLoop.run() 的结果

    Attributes:
        task: 任务文本
        outcome: 结束原因
        steps_taken: 成功记录到 History 的步数
        history: 本次运行的审计记录
        final_result: 触发结束的 done 结果（如有）
    """
    task: str
    outcome: RunOutcome
    steps_taken: int
    history: "AgentHistory"
    final_result: Optional[ActionResult] = None

    @property
    def success(self) -> bool:
        return (
            self.outcome == RunOutcome.DONE
            and self.final_result is not None
            and self.final_result.success is True
        )

    @property
    def message(self) -> str:
        if self.outcome == RunOutcome.DONE:
            memory = self.final_result.long_term_memory if self.final_result else None
            return memory or "task finished"
        if self.outcome == RunOutcome.MAX_FAILURES:
            return "max failures reached"
        if self.outcome == RunOutcome.MAX_STEPS:
            return "max steps reached"
        return "stopped"


@dataclass
class TaskRecord:
    """
    队列中单个任务的最终记录

    Attributes:
        task: 任务文本
        status: 最终状态
        error: run() 抛出的异常描述
        outcome: 正常结束时的 RunOutcome
        data: 额外数据
    """
    task: str
    status: TaskStatus = TaskStatus.PENDING
    error: Optional[str] = None
    outcome: Optional[RunOutcome] = None
    data: Dict[str, Any] = field(default_factory=dict)
