"""
AgentLoop 测试

测试内容：
- 连续决策失败达到上限时终止，不执行动作、步数不增加
- 动作出错即停止本步剩余动作
- done 之后不再感知
- 步数耗尽
- 端到端：打开设置
- 失败后恢复：失败计数清零，步数只前进一步
- 纠正提示在下一次决策时送达
- 多次运行的预算（默认重置 / share_run_budget 共享）
- stop() 请求
"""
from unittest.mock import MagicMock

import pytest

from conftest import FakeDevice, FakePerception, ScriptedOracle, make_snapshot


class RecordingExecutor:
    """记录执行顺序的执行器替身，可按动作名返回预设结果"""

    def __init__(self, results=None):
        self.executed = []
        self.results = results or {}

    async def execute(self, action, snapshot):
        from device_agent.actions import Done
        from device_agent.models import ActionResult
        self.executed.append(action)
        if isinstance(action, Done):
            return ActionResult(
                is_done=True, success=action.success, long_term_memory=f"Task finished: {action.text}"
            )
        return self.results.get(action.name, ActionResult(long_term_memory=f"did {action.name}"))


def decide(*actions, goal=None):
    from device_agent.models import AgentOutput
    return AgentOutput(actions=tuple(actions), next_goal=goal)


def make_agent(script, executor=None, perception=None, **kwargs):
    from device_agent.agent import AgentLoop
    from device_agent.memory import MemoryManager
    kwargs.setdefault("retry_delay", 0)
    kwargs.setdefault("step_delay", 0)
    return AgentLoop(
        perception=perception or FakePerception(),
        memory=MemoryManager(system_prompt="SYSTEM"),
        oracle=ScriptedOracle(script),
        executor=executor or RecordingExecutor(),
        **kwargs,
    )


# ============================================================
# 决策失败
# ============================================================

class TestDecisionFailures:
    """测试决策失败的计数与终止"""

    @pytest.mark.asyncio
    async def test_max_failures_terminates_without_actions(self):
        from device_agent.models import RunOutcome
        executor = RecordingExecutor()
        agent = make_agent([None, None, None], executor=executor, max_failures=3)
        agent.memory.update = MagicMock(wraps=agent.memory.update)

        result = await agent.run("打开设置")

        assert result.outcome == RunOutcome.MAX_FAILURES
        assert result.success is False
        assert executor.executed == []
        assert len(result.history) == 0
        assert agent.state.step_number == 1
        assert agent.state.consecutive_failures == 3
        assert agent.perception.calls == 3
        assert agent.memory.update.call_count == 3

    @pytest.mark.asyncio
    async def test_recovery_resets_failures_and_advances_one_step(self):
        from device_agent.actions import Back, Done
        from device_agent.models import RunOutcome
        agent = make_agent(
            [None, None, decide(Back()), decide(Done(success=True, text="ok"))],
            max_failures=3,
        )

        result = await agent.run("返回")

        assert result.outcome == RunOutcome.DONE
        assert agent.state.consecutive_failures == 0
        assert [e.metadata.step_number for e in result.history] == [1, 2]
        assert agent.perception.calls == 4

    @pytest.mark.asyncio
    async def test_corrective_note_sent_on_retry(self):
        from device_agent.actions import Done
        from device_agent.prompts import CORRECTIVE_NOTE
        agent = make_agent([None, decide(Done(success=True, text="ok"))])

        await agent.run("任务")

        first, second = agent.oracle.received
        assert all(m["content"] != CORRECTIVE_NOTE for m in first)
        assert second[-1] == {"role": "user", "content": CORRECTIVE_NOTE}
        assert second[0]["role"] == "system"

    @pytest.mark.asyncio
    async def test_corrective_note_not_repeated_after_success(self):
        from device_agent.actions import Back, Done
        from device_agent.prompts import CORRECTIVE_NOTE
        agent = make_agent([None, decide(Back()), decide(Done(success=True, text="ok"))])

        await agent.run("任务")

        third = agent.oracle.received[2]
        assert all(m["content"] != CORRECTIVE_NOTE for m in third)


# ============================================================
# 动作执行
# ============================================================

class TestActionExecution:
    """测试单步内的动作顺序与出错即停"""

    @pytest.mark.asyncio
    async def test_error_stops_remaining_actions(self):
        from device_agent.actions import Back, Home, Wait
        from device_agent.models import ActionResult
        executor = RecordingExecutor(results={"home": ActionResult(error="boom")})
        agent = make_agent([decide(Back(), Home(), Wait())], executor=executor, max_steps=1)

        result = await agent.run("任务")

        assert executor.executed == [Back(), Home()]
        entry = result.history[0]
        assert len(entry.results) == 2
        assert entry.results[1].error == "boom"

    @pytest.mark.asyncio
    async def test_actions_truncated_to_limit(self):
        from device_agent.actions import Back, Home, Wait
        executor = RecordingExecutor()
        agent = make_agent(
            [decide(Back(), Home(), Wait())], executor=executor, max_steps=1, max_actions_per_step=2
        )

        await agent.run("任务")

        assert executor.executed == [Back(), Home()]

    @pytest.mark.asyncio
    async def test_done_stops_without_further_perception(self):
        from device_agent.actions import Back, Done
        from device_agent.models import RunOutcome
        agent = make_agent([decide(Back()), decide(Done(success=True, text="完成")), decide(Back())])

        result = await agent.run("任务")

        assert result.outcome == RunOutcome.DONE
        assert result.steps_taken == 2
        assert agent.perception.calls == 2
        assert len(agent.oracle.received) == 2
        assert result.history.is_done

    @pytest.mark.asyncio
    async def test_done_with_failure_is_not_success(self):
        from device_agent.actions import Done
        from device_agent.models import RunOutcome
        agent = make_agent([decide(Done(success=False, text="无法完成"))])

        result = await agent.run("任务")

        assert result.outcome == RunOutcome.DONE
        assert result.success is False
        assert result.message == "Task finished: 无法完成"

    @pytest.mark.asyncio
    async def test_max_steps(self):
        from device_agent.actions import Back
        from device_agent.models import RunOutcome
        agent = make_agent([decide(Back()) for _ in range(10)], max_steps=3)

        result = await agent.run("任务")

        assert result.outcome == RunOutcome.MAX_STEPS
        assert result.steps_taken == 3
        assert agent.perception.calls == 3
        assert agent.state.step_number == 4

    @pytest.mark.asyncio
    async def test_run_max_steps_argument_overrides_default(self):
        from device_agent.actions import Back
        from device_agent.models import RunOutcome
        agent = make_agent([decide(Back()) for _ in range(10)], max_steps=5)

        result = await agent.run("任务", max_steps=2)

        assert result.outcome == RunOutcome.MAX_STEPS
        assert result.steps_taken == 2

    @pytest.mark.asyncio
    async def test_perception_error_propagates(self):
        from device_agent.exceptions import DeviceError

        class BrokenPerception(FakePerception):
            async def analyze(self):
                raise DeviceError("adb offline")

        agent = make_agent([], perception=BrokenPerception())
        with pytest.raises(DeviceError):
            await agent.run("任务")


# ============================================================
# 端到端
# ============================================================

class TestOpenSettings:
    """使用真实 ActionExecutor + 设备替身的完整流程"""

    @pytest.mark.asyncio
    async def test_open_settings_in_two_steps(self):
        from device_agent.actions import Done, OpenApp
        from device_agent.executors.action_executor import ActionExecutor
        from device_agent.models import RunOutcome
        device = FakeDevice(packages={"settings": "com.android.settings"})
        perception = FakePerception([
            make_snapshot("com.android.launcher/.Launcher"),
            make_snapshot("com.android.settings/.Settings"),
        ])
        agent = make_agent(
            [
                decide(OpenApp(app_name="Settings"), goal="打开设置"),
                decide(Done(success=True, text="Settings is open")),
            ],
            executor=ActionExecutor(device),
            perception=perception,
        )

        result = await agent.run("open settings")

        assert result.outcome == RunOutcome.DONE
        assert result.success is True
        assert result.steps_taken == 2
        assert ("open_app", "com.android.settings") in device.calls
        assert result.history[0].results[0].long_term_memory == "Opened app 'Settings'."
        assert result.history[1].snapshot.activity_label == "com.android.settings/.Settings"
        assert result.message == "Task finished: Settings is open"

    @pytest.mark.asyncio
    async def test_previous_step_results_reach_next_prompt(self):
        from device_agent.actions import Done, OpenApp
        from device_agent.executors.action_executor import ActionExecutor
        agent = make_agent(
            [decide(OpenApp(app_name="Settings")), decide(Done(success=True, text="ok"))],
            executor=ActionExecutor(FakeDevice(packages={"settings": "com.android.settings"})),
        )

        await agent.run("open settings")

        state_message = agent.oracle.received[1][1]["content"]
        assert "Opened app 'Settings'." in state_message
        assert "<user_request>\nopen settings\n</user_request>" in state_message


# ============================================================
# 多次运行
# ============================================================

class TestRunBudget:
    """测试同一 AgentLoop 上多次运行的预算"""

    @pytest.mark.asyncio
    async def test_budget_reset_per_run_by_default(self):
        from device_agent.actions import Back, Done
        from device_agent.models import RunOutcome
        agent = make_agent(
            [decide(Back()), decide(Back()), decide(Done(success=True, text="ok"))],
            max_steps=2,
        )

        first = await agent.run("任务一")
        second = await agent.run("任务二")

        assert first.outcome == RunOutcome.MAX_STEPS
        assert second.outcome == RunOutcome.DONE
        assert second.history[0].metadata.step_number == 1
        assert len(first.history) == 2
        assert len(second.history) == 1
        prompt_text = "\n".join(item.to_prompt_string() for item in agent.memory.history_items)
        assert "任务一" not in prompt_text

    @pytest.mark.asyncio
    async def test_shared_budget_carries_over(self):
        from device_agent.actions import Back, Done
        from device_agent.models import RunOutcome
        agent = make_agent(
            [decide(Back()), decide(Back()), decide(Done(success=True, text="ok"))],
            max_steps=2,
            share_run_budget=True,
        )

        first = await agent.run("任务一")
        second = await agent.run("任务二")

        assert first.outcome == RunOutcome.MAX_STEPS
        assert second.outcome == RunOutcome.MAX_STEPS
        assert second.steps_taken == 0
        assert agent.perception.calls == 2


# ============================================================
# 停止
# ============================================================

class TestStop:
    """测试 stop() 请求"""

    @pytest.mark.asyncio
    async def test_stop_takes_effect_before_next_step(self):
        from device_agent.actions import Back
        from device_agent.models import RunOutcome

        agent = make_agent([decide(Back()) for _ in range(5)])
        original_generate = agent.oracle.generate

        async def generate_and_stop(messages):
            agent.stop()
            return await original_generate(messages)

        agent.oracle.generate = generate_and_stop

        result = await agent.run("任务")

        assert result.outcome == RunOutcome.STOPPED
        assert result.steps_taken == 1
        assert agent.perception.calls == 1

    @pytest.mark.asyncio
    async def test_stop_before_run_is_cleared(self):
        from device_agent.actions import Done
        from device_agent.models import RunOutcome
        agent = make_agent([decide(Done(success=True, text="ok"))])
        agent.stop()

        result = await agent.run("任务")

        assert result.outcome == RunOutcome.DONE
