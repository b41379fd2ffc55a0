"""
AgentLoop - 感知 → 决策 → 执行 → 记录 循环

⭐ 这是整个 device_agent 中最关键的模块。

执行流程（每一轮）：
1. 感知：perception.analyze() 获取屏幕快照
2. 准备上下文：memory.update(...)，每轮恰好一次（重试轮也一样）
3. 决策：oracle.generate(memory.messages())
   - 返回 None：连续失败 +1，追加纠正提示；达到 max_failures 终止，
     否则等待 retry_delay 后重试同一步（步数不增加）
4. 执行：按顺序执行动作，遇到 error 立即停止本步剩余动作
5. 记录：HistoryEntry 追加到 AgentHistory
6. 任一结果 is_done → 结束；否则步数 +1，进入下一轮

结束原因：DONE / MAX_FAILURES / MAX_STEPS / STOPPED
"""
import asyncio
import time
from typing import List, Optional

from loguru import logger

from config import settings
from .executors.action_executor import ActionExecutor
from .history import AgentHistory
from .llm import BaseOracle
from .memory import MemoryManager
from .models import (
    ActionResult,
    HistoryEntry,
    RunOutcome,
    RunResult,
    RunState,
    StepInfo,
    StepMetadata,
)
from .perception import BasePerception
from .prompts import CORRECTIVE_NOTE


class AgentLoop:
    """
    自主任务执行循环

    使用方式：
        agent = AgentLoop(perception, memory, oracle, executor)
        result = await agent.run("打开设置")

    RunState 只由 run() 修改；外部只能通过 stop() 请求在下一轮开始前停止。
    """

    def __init__(
        self,
        perception: BasePerception,
        memory: MemoryManager,
        oracle: BaseOracle,
        executor: ActionExecutor,
        max_steps: Optional[int] = None,
        max_failures: Optional[int] = None,
        retry_delay: Optional[float] = None,
        step_delay: Optional[float] = None,
        max_actions_per_step: Optional[int] = None,
        share_run_budget: Optional[bool] = None,
    ) -> None:
        self.perception = perception
        self.memory = memory
        self.oracle = oracle
        self.executor = executor
        self.max_steps = max_steps if max_steps is not None else settings.agent_max_steps
        self.max_failures = max_failures if max_failures is not None else settings.agent_max_failures
        self.retry_delay = retry_delay if retry_delay is not None else settings.agent_retry_delay
        self.step_delay = step_delay if step_delay is not None else settings.agent_step_delay
        self.max_actions_per_step = (
            max_actions_per_step if max_actions_per_step is not None
            else settings.agent_max_actions_per_step
        )
        self.share_run_budget = (
            share_run_budget if share_run_budget is not None else settings.share_run_budget
        )
        self.state = RunState()
        self.history = AgentHistory()
        self._stop_requested = False

    def stop(self) -> None:
        """请求停止：在下一轮循环开始前生效，不回滚已下发的动作"""
        logger.info("🛑 [AgentLoop] 收到停止请求")
        self._stop_requested = True

    async def run(self, task: str, max_steps: Optional[int] = None) -> RunResult:
        """
        执行一个任务直到完成、失败或步数耗尽

        Args:
            task: 自然语言任务
            max_steps: 本次运行的最大步数，默认使用构造参数

        Returns:
            RunResult: 结束原因与审计记录
        """
        max_steps = max_steps if max_steps is not None else self.max_steps
        if not self.share_run_budget:
            self.state = RunState()
            self.memory.reset()
        self.history = AgentHistory()
        self.state.stopped = False
        self._stop_requested = False
        self.memory.seed(task)

        state = self.state
        outcome: Optional[RunOutcome] = None
        final_result: Optional[ActionResult] = None
        logger.info(f"🚀 [AgentLoop] ===== 开始任务: '{task}' =====")

        while not state.stopped and state.step_number <= max_steps:
            if self._stop_requested:
                outcome = RunOutcome.STOPPED
                break

            logger.info(f"🔄 [AgentLoop] === Step {state.step_number}/{max_steps} ===")
            step_start = time.time()

            # 1. 感知
            snapshot = await self.perception.analyze()

            # 2. 准备上下文
            step_info = StepInfo(state.step_number, max_steps)
            self.memory.update(state.last_decision, state.last_results, step_info, snapshot)

            # 3. 决策
            decision = await self.oracle.generate(self.memory.messages())
            if decision is None:
                state.consecutive_failures += 1
                logger.warning(
                    f"❌ [AgentLoop] LLM 未返回有效决策 "
                    f"({state.consecutive_failures}/{self.max_failures})"
                )
                self.memory.add_context_message(CORRECTIVE_NOTE)
                if state.consecutive_failures >= self.max_failures:
                    logger.error("❌ [AgentLoop] 连续失败次数过多，停止运行")
                    outcome = RunOutcome.MAX_FAILURES
                    break
                await asyncio.sleep(self.retry_delay)
                continue

            state.consecutive_failures = 0
            state.last_decision = decision
            logger.info(f"🤖 [AgentLoop] next_goal: {decision.next_goal}")

            # 4. 执行
            results = await self._execute_actions(decision.actions, snapshot)
            state.last_results = results

            # 5. 记录
            self.history.append(
                HistoryEntry(
                    decision=decision,
                    results=tuple(results),
                    snapshot=snapshot,
                    metadata=StepMetadata(step_start, time.time(), state.step_number),
                )
            )

            done = next((r for r in results if r.is_done is True), None)
            if done is not None:
                logger.info(f"✅ [AgentLoop] 任务完成（第 {state.step_number} 步）")
                state.stopped = True
                outcome = RunOutcome.DONE
                final_result = done

            state.step_number += 1
            if not state.stopped:
                await asyncio.sleep(self.step_delay)

        if outcome is None:
            if self._stop_requested:
                outcome = RunOutcome.STOPPED
            else:
                outcome = RunOutcome.MAX_STEPS
                logger.warning(f"⏰ [AgentLoop] 达到最大步数 ({max_steps})，任务未完成")

        logger.info(f"🏁 [AgentLoop] ===== 任务结束: outcome={outcome.value}, steps={len(self.history)} =====")
        return RunResult(
            task=task,
            outcome=outcome,
            steps_taken=len(self.history),
            history=self.history,
            final_result=final_result,
        )

    async def _execute_actions(self, actions, snapshot) -> List[ActionResult]:
        """按顺序执行动作，遇到 error 停止本步剩余动作"""
        if len(actions) > self.max_actions_per_step:
            logger.warning(
                f"⚠️ [AgentLoop] 动作数 {len(actions)} 超过上限 {self.max_actions_per_step}，截断"
            )
            actions = actions[: self.max_actions_per_step]

        results: List[ActionResult] = []
        for idx, action in enumerate(actions, 1):
            result = await self.executor.execute(action, snapshot)
            results.append(result)
            logger.info(
                f"🛠️ [AgentLoop] 动作 [{idx}/{len(actions)}] {action.name}: "
                f"{result.long_term_memory or result.error or 'OK'}"
            )
            if result.error is not None:
                logger.warning("🛑 [AgentLoop] 动作失败，停止执行本步剩余动作")
                break
        return results
