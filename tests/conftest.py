"""
Test configuration
"""
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

# Add project root to path
src_path = Path(__file__).parent.parent
sys.path.insert(0, str(src_path))

# Set minimal environment variables for testing
os.environ.setdefault("AGENT_RETRY_DELAY", "0")
os.environ.setdefault("AGENT_STEP_DELAY", "0")
os.environ.setdefault("EXECUTOR_LLM_URL", "http://llm.test")
os.environ.setdefault("LLM_MAX_RETRY", "1")

from device_agent.exceptions import DeviceError  # noqa: E402
from device_agent.executors.device import BaseDevice, IntentRequest  # noqa: E402
from device_agent.llm import BaseOracle  # noqa: E402
from device_agent.models import AgentOutput, Snapshot, UIElement  # noqa: E402
from device_agent.perception import BasePerception  # noqa: E402


# ============================================================
# 测试替身
# ============================================================

class FakeDevice(BaseDevice):
    """记录所有调用的设备替身"""

    def __init__(
        self,
        packages: Optional[Dict[str, str]] = None,
        fail_on: Sequence[str] = (),
        open_app_result: bool = True,
        launch_result: bool = True,
    ) -> None:
        self.calls: List[Tuple] = []
        self.packages = packages or {}
        self.fail_on = set(fail_on)
        self.open_app_result = open_app_result
        self.launch_result = launch_result

    def _record(self, name: str, *args) -> None:
        if name in self.fail_on:
            raise DeviceError(f"{name} failed")
        self.calls.append((name,) + args)

    async def tap(self, x, y):
        self._record("tap", x, y)

    async def long_press(self, x, y):
        self._record("long_press", x, y)

    async def swipe(self, x1, y1, x2, y2, duration_ms=300):
        self._record("swipe", x1, y1, x2, y2)

    async def type_text(self, text):
        self._record("type_text", text)

    async def press_key(self, keycode):
        self._record("press_key", keycode)

    async def screen_size(self):
        return 1080, 2400

    async def find_package(self, app_name):
        self._record("find_package", app_name)
        return self.packages.get(app_name.lower())

    async def open_app(self, package_name):
        self._record("open_app", package_name)
        return self.open_app_result

    async def launch_intent(self, request: IntentRequest):
        self._record("launch_intent", request)
        return self.launch_result


class FakePerception(BasePerception):
    """按顺序返回预设快照，用完后重复最后一个"""

    def __init__(self, snapshots: Optional[List[Snapshot]] = None) -> None:
        self.snapshots = snapshots or [make_snapshot()]
        self.calls = 0

    async def analyze(self) -> Snapshot:
        self.calls += 1
        idx = min(self.calls - 1, len(self.snapshots) - 1)
        return self.snapshots[idx]


class ScriptedOracle(BaseOracle):
    """按脚本依次返回决策（None 表示决策失败），脚本用完后一直返回 None"""

    def __init__(self, script: Sequence[Optional[AgentOutput]]) -> None:
        self.script = list(script)
        self.received: List[List[Dict[str, str]]] = []

    async def generate(self, messages):
        self.received.append(messages)
        if not self.script:
            return None
        return self.script.pop(0)


def make_snapshot(activity: str = "com.android.launcher/.Launcher", elements=None) -> Snapshot:
    elements = elements if elements is not None else {
        1: UIElement(1, {"bounds": "[0,0][100,200]", "class": "android.widget.TextView"}, "Settings"),
    }
    lines = [f"[{i}] <{e.class_name}> {e.text}" for i, e in elements.items()]
    return Snapshot(
        activity_label=activity,
        ui_representation="\n".join(lines),
        element_index=dict(elements),
    )


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def snapshot():
    return make_snapshot()


@pytest.fixture
def fake_device():
    return FakeDevice(packages={"settings": "com.android.settings"})


@pytest.fixture
def workspace(tmp_path):
    from device_agent.filesystem import FileSystem
    return FileSystem(tmp_path / "workspace")
