"""
外部 Intent 目录 - launch_intent 动作的可用目标

每个 AppIntent 声明名称、说明和参数，并负责把 LLM 给出的参数
转换为 IntentRequest；参数缺失或非法时返回 None。
"""
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from loguru import logger

from .device import IntentRequest


@dataclass(frozen=True)
class IntentParam:
    name: str
    required: bool
    description: str


@dataclass(frozen=True)
class AppIntent:
    """可被 launch_intent 调用的外部 Intent"""
    name: str
    description: str
    params: Tuple[IntentParam, ...]
    builder: Callable[[Mapping[str, str]], Optional[IntentRequest]]

    def build(self, params: Mapping[str, str]) -> Optional[IntentRequest]:
        for p in self.params:
            if p.required and not str(params.get(p.name, "")).strip():
                return None
        return self.builder(params)


def _build_dial(params: Mapping[str, str]) -> Optional[IntentRequest]:
    number = params.get("phone_number", "").strip().replace(" ", "")
    if not number:
        return None
    return IntentRequest(action="android.intent.action.DIAL", data=f"tel:{number}")


def _build_view_url(params: Mapping[str, str]) -> Optional[IntentRequest]:
    url = params.get("url", "").strip()
    if not url:
        return None
    if "://" not in url:
        url = f"https://{url}"
    return IntentRequest(action="android.intent.action.VIEW", data=url)


def _build_share_text(params: Mapping[str, str]) -> Optional[IntentRequest]:
    text = params.get("text", "")
    extras = {"android.intent.extra.TEXT": text}
    subject = params.get("subject", "").strip()
    if subject:
        extras["android.intent.extra.SUBJECT"] = subject
    return IntentRequest(action="android.intent.action.SEND", mime_type="text/plain", extras=extras)


def _build_email_compose(params: Mapping[str, str]) -> Optional[IntentRequest]:
    to = params.get("to", "").strip()
    extras = {}
    if params.get("subject", "").strip():
        extras["android.intent.extra.SUBJECT"] = params["subject"]
    if params.get("body", "").strip():
        extras["android.intent.extra.TEXT"] = params["body"]
    return IntentRequest(action="android.intent.action.SENDTO", data=f"mailto:{to}", extras=extras)


class IntentRegistry:
    """Intent 注册表，名称查找不区分大小写"""

    def __init__(self, intents: Optional[List[AppIntent]] = None) -> None:
        self._intents: Dict[str, AppIntent] = {}
        for intent in intents if intents is not None else DEFAULT_INTENTS:
            self.register(intent)

    def register(self, intent: AppIntent) -> None:
        key = intent.name.strip()
        if key in self._intents:
            logger.warning(f"⚠️ [IntentRegistry] 重复注册 intent: {key}，覆盖旧定义")
        self._intents[key] = intent

    def find(self, name: str) -> Optional[AppIntent]:
        if name in self._intents:
            return self._intents[name]
        lowered = name.strip().lower()
        for key, intent in self._intents.items():
            if key.lower() == lowered:
                return intent
        return None

    def list_intents(self) -> List[AppIntent]:
        return list(self._intents.values())

    def describe(self) -> str:
        """生成 prompt 中的 intents 目录"""
        lines = []
        for intent in self._intents.values():
            params = ", ".join(
                f"{p.name}{'' if p.required else '?'}: {p.description}" for p in intent.params
            )
            lines.append(f"- {intent.name}: {intent.description} Params: {params or '(none)'}")
        return "\n".join(lines)


DEFAULT_INTENTS: List[AppIntent] = [
    AppIntent(
        name="Dial",
        description="Open the phone dialer with the specified phone number prefilled (no call is placed).",
        params=(IntentParam("phone_number", True, "The phone number to dial."),),
        builder=_build_dial,
    ),
    AppIntent(
        name="ViewUrl",
        description="Open a web URL in the default browser.",
        params=(IntentParam("url", True, "The URL to open."),),
        builder=_build_view_url,
    ),
    AppIntent(
        name="ShareText",
        description="Open the system share sheet with the given text.",
        params=(
            IntentParam("text", True, "The text to share."),
            IntentParam("subject", False, "Optional subject line."),
        ),
        builder=_build_share_text,
    ),
    AppIntent(
        name="EmailCompose",
        description="Compose an email in the default email app.",
        params=(
            IntentParam("to", False, "Comma-separated email recipients."),
            IntentParam("subject", False, "Email subject."),
            IntentParam("body", False, "Email body text."),
        ),
        builder=_build_email_compose,
    ),
]
