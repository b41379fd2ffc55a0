"""
设备操作原语 - 手势 / 按键 / 输入 / 启动应用

BaseDevice 定义 ActionExecutor 依赖的设备接口；
AdbDevice 通过 adb shell 命令在 Android 设备上执行操作。
所有方法失败时抛出 DeviceError，由 ActionExecutor 转换为 ActionResult.error。
"""
import asyncio
import re
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from loguru import logger

from config import settings
from ..exceptions import DeviceError

# Android KeyEvent 码
_KEYCODE_HOME = 3
_KEYCODE_BACK = 4
_KEYCODE_ENTER = 66
_KEYCODE_APP_SWITCH = 187

_LONG_PRESS_MS = 800
_SWIPE_MS = 300


@dataclass
class IntentRequest:
    """一次 am start 调用所需的参数"""
    action: str
    data: Optional[str] = None
    mime_type: Optional[str] = None
    extras: Dict[str, str] = field(default_factory=dict)
    package: Optional[str] = None


class BaseDevice(ABC):
    """设备操作抽象基类"""

    @abstractmethod
    async def tap(self, x: int, y: int) -> None:
        ...

    @abstractmethod
    async def long_press(self, x: int, y: int) -> None:
        ...

    @abstractmethod
    async def swipe(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int = _SWIPE_MS) -> None:
        ...

    @abstractmethod
    async def type_text(self, text: str) -> None:
        ...

    @abstractmethod
    async def press_key(self, keycode: int) -> None:
        ...

    @abstractmethod
    async def screen_size(self) -> Tuple[int, int]:
        ...

    @abstractmethod
    async def find_package(self, app_name: str) -> Optional[str]:
        ...

    @abstractmethod
    async def open_app(self, package_name: str) -> bool:
        ...

    @abstractmethod
    async def launch_intent(self, request: IntentRequest) -> bool:
        ...

    async def back(self) -> None:
        await self.press_key(_KEYCODE_BACK)

    async def home(self) -> None:
        await self.press_key(_KEYCODE_HOME)

    async def switch_app(self) -> None:
        await self.press_key(_KEYCODE_APP_SWITCH)

    async def press_enter(self) -> None:
        await self.press_key(_KEYCODE_ENTER)

    async def scroll_down(self, amount: int) -> None:
        """内容向下滚动：手指从下往上划"""
        width, height = await self.screen_size()
        x = width // 2
        start_y = height * 3 // 4
        end_y = max(start_y - amount, height // 8)
        await self.swipe(x, start_y, x, end_y)

    async def scroll_up(self, amount: int) -> None:
        """内容向上滚动：手指从上往下划"""
        width, height = await self.screen_size()
        x = width // 2
        start_y = height // 4
        end_y = min(start_y + amount, height * 7 // 8)
        await self.swipe(x, start_y, x, end_y)


class AdbDevice(BaseDevice):
    """
    基于 adb 的 Android 设备

    使用方式：
        device = AdbDevice(serial="emulator-5554")
        await device.tap(540, 1200)
    """

    def __init__(
        self,
        adb_path: Optional[str] = None,
        serial: Optional[str] = None,
        timeout: float = 10.0,
    ) -> None:
        self.adb_path = adb_path or settings.adb_path
        self.serial = serial if serial is not None else settings.adb_serial
        self.timeout = timeout
        self._screen_size: Optional[Tuple[int, int]] = None

    def _base_args(self) -> List[str]:
        args = [self.adb_path]
        if self.serial:
            args += ["-s", self.serial]
        return args

    async def run(self, *args: str, timeout: Optional[float] = None) -> str:
        """
        执行 adb 命令并返回 stdout

        Raises:
            DeviceError: 命令超时、无法启动或返回非零退出码
        """
        command = self._base_args() + list(args)
        logger.debug(f"📱 [AdbDevice] {' '.join(command)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise DeviceError(f"无法启动 adb: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=timeout or self.timeout
            )
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise DeviceError(f"adb 命令超时: {' '.join(args)}") from e

        if proc.returncode != 0:
            err = stderr.decode(errors="replace").strip() if stderr else "未知错误"
            raise DeviceError(f"adb 命令失败 ({proc.returncode}): {err}")
        return stdout.decode(errors="replace") if stdout else ""

    async def shell(self, *args: str, timeout: Optional[float] = None) -> str:
        return await self.run("shell", *args, timeout=timeout)

    async def tap(self, x: int, y: int) -> None:
        await self.shell("input", "tap", str(x), str(y))

    async def long_press(self, x: int, y: int) -> None:
        await self.swipe(x, y, x, y, duration_ms=_LONG_PRESS_MS)

    async def swipe(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int = _SWIPE_MS) -> None:
        await self.shell(
            "input", "swipe", str(x1), str(y1), str(x2), str(y2), str(duration_ms)
        )

    async def type_text(self, text: str) -> None:
        # input text 不接受空格，需要转义为 %s
        escaped = text.replace(" ", "%s")
        await self.shell("input", "text", shlex.quote(escaped))

    async def press_key(self, keycode: int) -> None:
        await self.shell("input", "keyevent", str(keycode))

    async def screen_size(self) -> Tuple[int, int]:
        if self._screen_size is None:
            output = await self.shell("wm", "size")
            match = re.search(r"(\d+)x(\d+)", output)
            if not match:
                raise DeviceError(f"无法解析屏幕尺寸: {output.strip()}")
            self._screen_size = (int(match.group(1)), int(match.group(2)))
        return self._screen_size

    async def find_package(self, app_name: str) -> Optional[str]:
        """按应用名查找包名：先精确匹配最后一段，再做包含匹配"""
        output = await self.shell("pm", "list", "packages")
        packages = [
            line.split(":", 1)[1].strip()
            for line in output.splitlines()
            if line.startswith("package:")
        ]
        needle = app_name.strip().lower().replace(" ", "")
        if not needle:
            return None
        for pkg in packages:
            if pkg.lower().rsplit(".", 1)[-1] == needle:
                return pkg
        for pkg in packages:
            if needle in pkg.lower():
                return pkg
        return None

    async def open_app(self, package_name: str) -> bool:
        output = await self.shell(
            "monkey", "-p", package_name, "-c", "android.intent.category.LAUNCHER", "1"
        )
        return "No activities found" not in output

    async def launch_intent(self, request: IntentRequest) -> bool:
        args = ["am", "start", "-a", request.action]
        if request.data:
            args += ["-d", shlex.quote(request.data)]
        if request.mime_type:
            args += ["-t", request.mime_type]
        for key, value in request.extras.items():
            args += ["--es", key, shlex.quote(value)]
        if request.package:
            args += ["-p", request.package]
        output = await self.shell(*args)
        return "Error" not in output

    async def dump_ui(self) -> str:
        """获取当前界面的 uiautomator XML"""
        output = await self.run("exec-out", "uiautomator", "dump", "/dev/tty")
        # uiautomator 会在 XML 末尾追加一行状态说明
        end = output.rfind(">")
        return output[: end + 1] if end >= 0 else output

    async def current_activity(self) -> str:
        output = await self.shell("dumpsys", "activity", "activities")
        match = re.search(r"mResumedActivity.*?\s([\w.]+/[\w.$]+)", output)
        return match.group(1) if match else "unknown"

    async def is_keyboard_open(self) -> bool:
        output = await self.shell("dumpsys", "input_method")
        return "mInputShown=true" in output
