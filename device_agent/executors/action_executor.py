"""
动作执行器 - 把单个 Action 应用到设备上

执行流程：
1. 按动作类型在 handler 注册表中查找处理函数
2. handler 调用设备原语 / 工作区文件系统 / 外部回调
3. 设备级失败（DeviceError、元素不存在、文件错误）统一转换为
   ActionResult(error=...)，不向上抛出

动作之间的顺序和“出错即停”由 AgentLoop 负责，这里只执行一个动作。
"""
import asyncio
import re
from typing import Awaitable, Callable, Dict, Optional, Tuple, Type

from loguru import logger

from ..actions import (
    Action,
    AppendFile,
    Ask,
    Back,
    Done,
    Home,
    InputText,
    LaunchIntent,
    LongPressElement,
    OpenApp,
    ReadFile,
    SearchGoogle,
    Speak,
    SwipeDown,
    SwipeUp,
    SwitchApp,
    TapElement,
    TapElementInputTextPressEnter,
    Wait,
    WriteFile,
)
from ..exceptions import DeviceError
from ..filesystem import FileSystem
from ..models import ActionResult, Snapshot, UIElement
from .device import BaseDevice
from .intents import IntentRegistry

Handler = Callable[["ActionExecutor", Action, Snapshot], Awaitable[ActionResult]]

_BOUNDS_RE = re.compile(r"\[(-?\d+),(-?\d+)\]\[(-?\d+),(-?\d+)\]")

_CHROME_PACKAGE = "com.android.chrome"

# handler 注册表：动作类 → 处理函数
_HANDLERS: Dict[Type[Action], Handler] = {}


def handles(action_class: Type[Action]):
    """注册某个动作类的处理函数"""
    def decorator(fn: Handler) -> Handler:
        _HANDLERS[action_class] = fn
        return fn
    return decorator


def center_of(bounds: str) -> Optional[Tuple[int, int]]:
    """
    解析 "[l,t][r,b]" 格式的 bounds，返回中心坐标

    Returns:
        (x, y) 或 None（格式非法）
    """
    match = _BOUNDS_RE.search(bounds or "")
    if not match:
        return None
    left, top, right, bottom = (int(v) for v in match.groups())
    return (left + right) // 2, (top + bottom) // 2


class ActionExecutor:
    """
    设备动作执行器

    Args:
        device: 设备原语实现
        file_system: 工作区文件系统（文件类动作需要）
        intents: 外部 Intent 目录
        speak: 向用户播报的回调
        ask_user: 向用户提问并返回回答的回调
        wait_seconds: wait 动作的等待时长
    """

    def __init__(
        self,
        device: BaseDevice,
        file_system: Optional[FileSystem] = None,
        intents: Optional[IntentRegistry] = None,
        speak: Optional[Callable[[str], Awaitable[None]]] = None,
        ask_user: Optional[Callable[[str], Awaitable[str]]] = None,
        wait_seconds: float = 5.0,
    ) -> None:
        self.device = device
        self.file_system = file_system
        self.intents = intents or IntentRegistry()
        self.speak = speak
        self.ask_user = ask_user
        self.wait_seconds = wait_seconds

    @staticmethod
    def supported_actions() -> Tuple[Type[Action], ...]:
        return tuple(_HANDLERS)

    async def execute(self, action: Action, snapshot: Snapshot) -> ActionResult:
        """
        执行单个动作

        Args:
            action: 要执行的动作
            snapshot: 决策时的屏幕快照（用于元素定位）

        Returns:
            ActionResult: 执行结果，设备级失败写入 error
        """
        handler = _HANDLERS.get(type(action))
        if handler is None:
            return ActionResult(error=f"Action '{action.name}' is not supported by this executor.")

        try:
            return await handler(self, action, snapshot)
        except DeviceError as e:
            logger.warning(f"⚠️ [ActionExecutor] 设备操作失败: {action.name}: {e}")
            return ActionResult(error=f"Device error while executing '{action.name}': {e}")

    def _element(self, snapshot: Snapshot, element_id: int) -> Tuple[Optional[UIElement], Optional[ActionResult]]:
        element = snapshot.element_index.get(element_id)
        if element is None:
            return None, ActionResult(
                error=f"Element with ID {element_id} not found in the current screen state."
            )
        if element.bounds is None or center_of(element.bounds) is None:
            return None, ActionResult(error=f"Element with ID {element_id} has no bounds information.")
        return element, None


@handles(TapElement)
async def _tap_element(self: ActionExecutor, action: TapElement, snapshot: Snapshot) -> ActionResult:
    element, failure = self._element(snapshot, action.element_id)
    if failure:
        return failure
    x, y = center_of(element.bounds)
    await self.device.tap(x, y)
    return ActionResult(long_term_memory=f"Tapped element {element.describe()}")


@handles(LongPressElement)
async def _long_press_element(self: ActionExecutor, action: LongPressElement, snapshot: Snapshot) -> ActionResult:
    element, failure = self._element(snapshot, action.element_id)
    if failure:
        return failure
    x, y = center_of(element.bounds)
    await self.device.long_press(x, y)
    return ActionResult(long_term_memory=f"Long-pressed element {element.describe()}")


@handles(TapElementInputTextPressEnter)
async def _tap_input_enter(
    self: ActionExecutor, action: TapElementInputTextPressEnter, snapshot: Snapshot
) -> ActionResult:
    element, failure = self._element(snapshot, action.index)
    if failure:
        return failure
    x, y = center_of(element.bounds)
    await self.device.tap(x, y)
    await asyncio.sleep(0.2)  # 等待输入框获得焦点
    await self.device.type_text(action.text)
    await self.device.press_enter()
    return ActionResult(long_term_memory=f"Typed '{action.text}' into element {element.describe()} and pressed enter.")


@handles(InputText)
async def _input_text(self: ActionExecutor, action: InputText, snapshot: Snapshot) -> ActionResult:
    await self.device.type_text(action.text)
    return ActionResult(long_term_memory=f"Input text '{action.text}'.")


@handles(SwipeDown)
async def _swipe_down(self: ActionExecutor, action: SwipeDown, snapshot: Snapshot) -> ActionResult:
    await self.device.scroll_down(action.amount)
    return ActionResult(long_term_memory=f"Scrolled down by {action.amount} pixels.")


@handles(SwipeUp)
async def _swipe_up(self: ActionExecutor, action: SwipeUp, snapshot: Snapshot) -> ActionResult:
    await self.device.scroll_up(action.amount)
    return ActionResult(long_term_memory=f"Scrolled up by {action.amount} pixels.")


@handles(Back)
async def _back(self: ActionExecutor, action: Back, snapshot: Snapshot) -> ActionResult:
    await self.device.back()
    return ActionResult(long_term_memory="Pressed the back button.")


@handles(Home)
async def _home(self: ActionExecutor, action: Home, snapshot: Snapshot) -> ActionResult:
    await self.device.home()
    return ActionResult(long_term_memory="Pressed the home button.")


@handles(SwitchApp)
async def _switch_app(self: ActionExecutor, action: SwitchApp, snapshot: Snapshot) -> ActionResult:
    await self.device.switch_app()
    return ActionResult(long_term_memory="Opened the app switcher.")


@handles(Wait)
async def _wait(self: ActionExecutor, action: Wait, snapshot: Snapshot) -> ActionResult:
    await asyncio.sleep(self.wait_seconds)
    return ActionResult(long_term_memory=f"Waited for {self.wait_seconds:g} seconds.")


@handles(OpenApp)
async def _open_app(self: ActionExecutor, action: OpenApp, snapshot: Snapshot) -> ActionResult:
    package_name = await self.device.find_package(action.app_name)
    if package_name is None:
        return ActionResult(
            error=f"App '{action.app_name}' not found. Maybe try using a different name "
                  f"or use the app drawer by scrolling up."
        )
    if not await self.device.open_app(package_name):
        return ActionResult(
            error=f"Failed to open app '{action.app_name}' (package: {package_name}). "
                  f"Maybe try using a different name or use the app drawer by scrolling up."
        )
    return ActionResult(long_term_memory=f"Opened app '{action.app_name}'.")


@handles(SearchGoogle)
async def _search_google(self: ActionExecutor, action: SearchGoogle, snapshot: Snapshot) -> ActionResult:
    # 只负责打开浏览器，输入和回车由下一步决策完成
    if not await self.device.open_app(_CHROME_PACKAGE):
        return ActionResult(error="Failed to open Chrome to search Google.")
    return ActionResult(long_term_memory=f"Opened Chrome to search Google for '{action.query}'.")


@handles(Speak)
async def _speak(self: ActionExecutor, action: Speak, snapshot: Snapshot) -> ActionResult:
    if self.speak is not None:
        await self.speak(action.message)
    else:
        logger.info(f"🗣️ [ActionExecutor] speak: {action.message}")
    return ActionResult(long_term_memory=f"Spoke the message: \"{action.message[:50]}...\"")


@handles(Ask)
async def _ask(self: ActionExecutor, action: Ask, snapshot: Snapshot) -> ActionResult:
    if self.ask_user is None:
        return ActionResult(error="Asking the user is not available in this environment.")
    answer = await self.ask_user(action.question)
    return ActionResult(
        long_term_memory=f"Asked user: '{action.question}'. User responded: '{answer}'.",
        extracted_content=answer,
        include_extracted_content_only_once=True,
    )


@handles(LaunchIntent)
async def _launch_intent(self: ActionExecutor, action: LaunchIntent, snapshot: Snapshot) -> ActionResult:
    app_intent = self.intents.find(action.intent_name)
    if app_intent is None:
        return ActionResult(
            error=f"Intent '{action.intent_name}' not found. Check intents catalog for valid names."
        )
    request = app_intent.build(action.parameters)
    if request is None:
        return ActionResult(
            error=f"Intent '{action.intent_name}' missing or invalid parameters: {action.parameters}"
        )
    if not await self.device.launch_intent(request):
        return ActionResult(
            error=f"Failed to launch intent '{action.intent_name}' with params {action.parameters}"
        )
    return ActionResult(
        long_term_memory=f"Launched intent '{action.intent_name}' with params {action.parameters}"
    )


@handles(WriteFile)
async def _write_file(self: ActionExecutor, action: WriteFile, snapshot: Snapshot) -> ActionResult:
    if self.file_system is None:
        return ActionResult(error="File system is not available.")
    try:
        self.file_system.write_file(action.file_name, action.content)
    except (OSError, ValueError) as e:
        return ActionResult(error=f"Failed to write to file '{action.file_name}': {e}")
    return ActionResult(long_term_memory=f"Wrote content to '{action.file_name}'.")


@handles(AppendFile)
async def _append_file(self: ActionExecutor, action: AppendFile, snapshot: Snapshot) -> ActionResult:
    if self.file_system is None:
        return ActionResult(error="File system is not available.")
    try:
        self.file_system.append_file(action.file_name, action.content)
    except (OSError, ValueError) as e:
        return ActionResult(error=f"Failed to append to file '{action.file_name}': {e}")
    return ActionResult(long_term_memory=f"Appended content to '{action.file_name}'.")


@handles(ReadFile)
async def _read_file(self: ActionExecutor, action: ReadFile, snapshot: Snapshot) -> ActionResult:
    if self.file_system is None:
        return ActionResult(error="File system is not available.")
    try:
        content = self.file_system.read_file(action.file_name)
    except (OSError, ValueError) as e:
        return ActionResult(error=f"Failed to read file '{action.file_name}': {e}")
    return ActionResult(
        long_term_memory=f"Read content from '{action.file_name}'.",
        extracted_content=content,
        include_extracted_content_only_once=True,
    )


@handles(Done)
async def _done(self: ActionExecutor, action: Done, snapshot: Snapshot) -> ActionResult:
    # done 只是给 AgentLoop 的结束信号
    return ActionResult(
        is_done=True,
        success=action.success,
        long_term_memory=f"Task finished: {action.text}",
        attachments=action.files_to_display,
    )
