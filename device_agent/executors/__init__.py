"""执行器包：设备原语 / 外部 Intent / 动作执行器"""
from .action_executor import ActionExecutor, center_of
from .device import AdbDevice, BaseDevice, IntentRequest
from .intents import AppIntent, IntentParam, IntentRegistry

__all__ = [
    "ActionExecutor",
    "center_of",
    "AdbDevice",
    "BaseDevice",
    "IntentRequest",
    "AppIntent",
    "IntentParam",
    "IntentRegistry",
]
