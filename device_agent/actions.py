"""
动作定义 - 封闭的动作集合 + 注册表

每个动作是一个不可变 dataclass，只携带自身需要的参数。
ACTION_SPECS 是动作的唯一事实来源：
- LLM 输出解析：{"tap_element": {"element_id": 3}} → TapElement(3)
- system prompt 中的动作说明
- ActionExecutor 的 handler 注册（按动作类分发）
"""
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Mapping, Optional, Tuple, Type

from .exceptions import ActionParseError


@dataclass(frozen=True)
class Action:
    """所有动作的基类"""
    NAME: ClassVar[str] = ""

    @property
    def name(self) -> str:
        return self.NAME


@dataclass(frozen=True)
class TapElement(Action):
    NAME: ClassVar[str] = "tap_element"
    element_id: int


@dataclass(frozen=True)
class LongPressElement(Action):
    NAME: ClassVar[str] = "long_press_element"
    element_id: int


@dataclass(frozen=True)
class TapElementInputTextPressEnter(Action):
    NAME: ClassVar[str] = "tap_element_input_text_and_enter"
    index: int
    text: str


@dataclass(frozen=True)
class InputText(Action):
    NAME: ClassVar[str] = "type"
    text: str


@dataclass(frozen=True)
class SwipeUp(Action):
    NAME: ClassVar[str] = "swipe_up"
    amount: int


@dataclass(frozen=True)
class SwipeDown(Action):
    NAME: ClassVar[str] = "swipe_down"
    amount: int


@dataclass(frozen=True)
class Back(Action):
    NAME: ClassVar[str] = "back"


@dataclass(frozen=True)
class Home(Action):
    NAME: ClassVar[str] = "home"


@dataclass(frozen=True)
class SwitchApp(Action):
    NAME: ClassVar[str] = "switch_app"


@dataclass(frozen=True)
class Wait(Action):
    NAME: ClassVar[str] = "wait"


@dataclass(frozen=True)
class OpenApp(Action):
    NAME: ClassVar[str] = "open_app"
    app_name: str


@dataclass(frozen=True)
class SearchGoogle(Action):
    NAME: ClassVar[str] = "search_google"
    query: str


@dataclass(frozen=True)
class Speak(Action):
    NAME: ClassVar[str] = "speak"
    message: str


@dataclass(frozen=True)
class Ask(Action):
    NAME: ClassVar[str] = "ask"
    question: str


@dataclass(frozen=True)
class LaunchIntent(Action):
    NAME: ClassVar[str] = "launch_intent"
    intent_name: str
    parameters: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class WriteFile(Action):
    NAME: ClassVar[str] = "write_file"
    file_name: str
    content: str


@dataclass(frozen=True)
class AppendFile(Action):
    NAME: ClassVar[str] = "append_file"
    file_name: str
    content: str


@dataclass(frozen=True)
class ReadFile(Action):
    NAME: ClassVar[str] = "read_file"
    file_name: str


@dataclass(frozen=True)
class Done(Action):
    NAME: ClassVar[str] = "done"
    success: bool
    text: str
    files_to_display: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class ParamSpec:
    """动作参数说明"""
    name: str
    type: type
    description: str
    required: bool = True


@dataclass(frozen=True)
class ActionSpec:
    """动作注册项：名称 / 说明 / 参数 / 构造类"""
    name: str
    description: str
    params: Tuple[ParamSpec, ...]
    action_class: Type[Action]


def _spec(action_class: Type[Action], description: str, *params: ParamSpec) -> ActionSpec:
    return ActionSpec(action_class.NAME, description, tuple(params), action_class)


# 动作注册表：名称 → ActionSpec
ACTION_SPECS: Dict[str, ActionSpec] = {
    spec.name: spec
    for spec in [
        _spec(
            TapElement,
            "Tap the element with the specified numeric ID.",
            ParamSpec("element_id", int, "The numeric ID of the element."),
        ),
        _spec(
            LongPressElement,
            "Press and hold the element with the specified numeric ID. "
            "Useful for context menus, selecting text, etc.",
            ParamSpec("element_id", int, "The numeric ID of the element to long press."),
        ),
        _spec(
            TapElementInputTextPressEnter,
            "Taps an element, inputs text, and presses enter. Useful for search bars.",
            ParamSpec("index", int, "The numerical index of the input element."),
            ParamSpec("text", str, "The text to be typed into the element."),
        ),
        _spec(
            InputText,
            "Type text into a focused input field.",
            ParamSpec("text", str, "The text to type."),
        ),
        _spec(
            SwipeUp,
            "Swipe up by the specified amount of pixels.",
            ParamSpec("amount", int, "Amount of pixels to swipe up."),
        ),
        _spec(
            SwipeDown,
            "Swipe down by the specified amount of pixels.",
            ParamSpec("amount", int, "Amount of pixels to swipe down."),
        ),
        _spec(Back, "Go back to the previous screen."),
        _spec(Home, "Go to the device's home screen."),
        _spec(SwitchApp, "Show the app switcher."),
        _spec(Wait, "Wait for a few seconds for loading."),
        _spec(
            OpenApp,
            "Open the app named 'app_name'.",
            ParamSpec("app_name", str, "The name of the app."),
        ),
        _spec(
            SearchGoogle,
            "Search Google with the specified query.",
            ParamSpec("query", str, "The search query to perform on Google."),
        ),
        _spec(
            Speak,
            "Speak the 'message' to the user.",
            ParamSpec("message", str, "The message to speak."),
        ),
        _spec(
            Ask,
            "Ask the 'question' to the user and await a response.",
            ParamSpec("question", str, "The question to ask."),
        ),
        _spec(
            LaunchIntent,
            "Launch an external app intent by name with parameters. "
            "Use this for OS-level actions like dial, share, view_url.",
            ParamSpec("intent_name", str, "The name of the intent to launch (see intents catalog)."),
            ParamSpec(
                "parameters", dict,
                "A map of parameter names to their string values as required by the intent.",
                required=False,
            ),
        ),
        _spec(
            WriteFile,
            "Write content to a file, overwriting existing content.",
            ParamSpec("file_name", str, "The name of the file (e.g., 'notes.txt')."),
            ParamSpec("content", str, "The content to write to the file."),
        ),
        _spec(
            AppendFile,
            "Append content to the end of a file.",
            ParamSpec("file_name", str, "The name of the file to append to."),
            ParamSpec("content", str, "The content to append."),
        ),
        _spec(
            ReadFile,
            "Read the entire content of a file.",
            ParamSpec("file_name", str, "The name of the file to read."),
        ),
        _spec(
            Done,
            "Completes the current task.",
            ParamSpec("success", bool, "True if the task was completed successfully, False otherwise."),
            ParamSpec("text", str, "A summary of the results or a final message for the user."),
            ParamSpec(
                "files_to_display", list,
                "A list of filenames (e.g., ['report.pdf']) to show the user.",
                required=False,
            ),
        ),
    ]
}


def _coerce(param: ParamSpec, value: Any) -> Any:
    """把 JSON 值转换为参数声明的类型"""
    try:
        if param.type is bool:
            if isinstance(value, bool):
                return value
            if isinstance(value, str) and value.strip().lower() in ("true", "false"):
                return value.strip().lower() == "true"
            raise TypeError("expected a boolean")
        if param.type is int:
            if isinstance(value, bool):
                raise TypeError("bool is not an int")
            return int(value)
        if param.type is str:
            return str(value)
        if param.type is list:
            if not isinstance(value, (list, tuple)):
                raise TypeError("expected a list")
            return tuple(str(v) for v in value)
        if param.type is dict:
            if not isinstance(value, Mapping):
                raise TypeError("expected an object")
            return {str(k): str(v) for k, v in value.items()}
    except (TypeError, ValueError) as e:
        raise ActionParseError(f"Invalid value for '{param.name}': {value!r} ({e})") from e
    raise ActionParseError(f"Unsupported parameter type in action registry: {param.type}")


def parse_action(payload: Mapping[str, Any]) -> Action:
    """
    把 LLM 输出的单个动作对象解析为 Action

    Args:
        payload: 形如 {"tap_element": {"element_id": 3}} 的单键对象

    Returns:
        Action: 类型安全的动作

    Raises:
        ActionParseError: 未知动作或参数缺失/类型错误
    """
    if not isinstance(payload, Mapping) or len(payload) != 1:
        raise ActionParseError(f"Action must be a single-key object, got: {payload!r}")

    action_name, raw_params = next(iter(payload.items()))
    spec = ACTION_SPECS.get(action_name)
    if spec is None:
        raise ActionParseError(f"Unknown action received from LLM: {action_name}")

    raw_params = raw_params or {}
    if not isinstance(raw_params, Mapping):
        raise ActionParseError(f"Parameters of '{action_name}' must be an object")

    kwargs: Dict[str, Any] = {}
    for param in spec.params:
        if param.name not in raw_params or raw_params[param.name] is None:
            if param.required:
                raise ActionParseError(f"Missing parameter '{param.name}' for action '{action_name}'")
            continue
        kwargs[param.name] = _coerce(param, raw_params[param.name])
    return spec.action_class(**kwargs)


def parse_actions(payloads: List[Mapping[str, Any]]) -> Tuple[Action, ...]:
    return tuple(parse_action(p) for p in payloads)


def describe_actions(filter_fn: Optional[Callable[[ActionSpec], bool]] = None) -> str:
    """生成 system prompt 中的动作说明"""
    lines = []
    for spec in ACTION_SPECS.values():
        if filter_fn is not None and not filter_fn(spec):
            continue
        params = ", ".join(
            f"{p.name}: {p.type.__name__}{'' if p.required else ' (optional)'}"
            for p in spec.params
        )
        lines.append(f"- {spec.name}({params}): {spec.description}")
    return "\n".join(lines)
